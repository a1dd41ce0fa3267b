"""Integration-branch state persisted as a machine-authored commit.

The state commit has the fixed subject ``Dev Branch Status``, is authored by
the configured bot identity and carries a YAML document in its body::

    Included PRs:
    - https://github.com/GTNewHorizons/Foo/pull/1
    Removed PRs: []
    Dependencies: []

The body is base64 encoded so the hosting provider does not cross-link every
integration commit back to every included change. Raw YAML bodies are
accepted on decode as well.
"""

from __future__ import annotations

import base64
import binascii
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

import yaml
from jsonschema import Draft7Validator

from .logging import get_logger
from .models import ChangeRequestId, Commit, parse_change_id
from .schemas import get_schemas

STATE_SUBJECT = "Dev Branch Status"
# git's sanitized ``%f`` rendering of the subject, written by older tooling
_LEGACY_SUBJECT = "Dev-Branch-Status"

INCLUDED_KEY = "Included PRs"
REMOVED_KEY = "Removed PRs"
DEPENDENCIES_KEY = "Dependencies"

_VALIDATOR = Draft7Validator(get_schemas()["state"])


def _parse_ids(values: Iterable[str]) -> list[ChangeRequestId]:
    ids: list[ChangeRequestId] = []
    for value in values:
        parsed = parse_change_id(value)
        if parsed is None:
            get_logger().warning(f"Ignoring unparsable change reference in state: {value!r}")
            continue
        ids.append(parsed)
    return ids


@dataclass
class IntegrationBranchState:
    included: list[ChangeRequestId] = field(default_factory=list)
    removed: list[ChangeRequestId] = field(default_factory=list)
    dependencies: list[ChangeRequestId] = field(default_factory=list)

    def to_document(self) -> dict[str, list[str]]:
        return {
            INCLUDED_KEY: [str(i) for i in self.included],
            REMOVED_KEY: [str(i) for i in self.removed],
            DEPENDENCIES_KEY: [str(i) for i in self.dependencies],
        }

    @classmethod
    def from_document(cls, doc: dict[str, Any]) -> IntegrationBranchState:
        return cls(
            included=_parse_ids(doc.get(INCLUDED_KEY) or []),
            removed=_parse_ids(doc.get(REMOVED_KEY) or []),
            dependencies=_parse_ids(doc.get(DEPENDENCIES_KEY) or []),
        )


def encode_state(state: IntegrationBranchState) -> str:
    text = yaml.safe_dump(state.to_document(), sort_keys=False)
    return base64.b64encode(text.encode("utf-8")).decode("ascii")


def _candidates(body: str) -> list[str]:
    out: list[str] = []
    compact = "".join(body.split())
    if compact:
        try:
            out.append(base64.b64decode(compact, validate=True).decode("utf-8"))
        except (binascii.Error, UnicodeDecodeError):
            pass
    out.append(body)
    return out


def decode_state(body: str) -> IntegrationBranchState | None:
    """Decode a state commit body; ``None`` when it holds no valid state document."""
    for text in _candidates(body or ""):
        try:
            doc = yaml.safe_load(text)
        except yaml.YAMLError:
            continue
        if isinstance(doc, dict) and _VALIDATOR.is_valid(doc):
            return IntegrationBranchState.from_document(doc)
    return None


def is_state_commit(commit: Commit, identity_name: str) -> bool:
    return commit.subject in (STATE_SUBJECT, _LEGACY_SUBJECT) and commit.author_name == identity_name


def find_state(commits: Sequence[Commit], identity_name: str) -> IntegrationBranchState | None:
    """Newest decodable state among ``commits`` (given newest first)."""
    for commit in commits:
        if not is_state_commit(commit, identity_name):
            continue
        state = decode_state(commit.body)
        if state is not None:
            return state
        get_logger().warning(f"State commit {commit.sha[:12]} has an undecodable body")
    return None


__all__ = [
    "STATE_SUBJECT",
    "IntegrationBranchState",
    "encode_state",
    "decode_state",
    "is_state_commit",
    "find_state",
]
