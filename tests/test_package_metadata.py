from __future__ import annotations

import re
from importlib import import_module
from pathlib import Path
from typing import Any

import pytest


def test_dunder_all_exports() -> None:
    module = import_module("mergemaster")
    expected = {
        "load_config",
        "MergeConfig",
        "resolve_changes",
        "IntegrationOrchestrator",
        "ReleaseScheduler",
        "__version__",
    }
    assert expected <= set(module.__all__)


@pytest.mark.parametrize(
    "attribute, expected_type",
    [
        ("load_config", "function"),
        ("resolve_changes", "function"),
        ("IntegrationOrchestrator", "type"),
        ("ReleaseScheduler", "type"),
    ],
)
def test_dunder_getattr_lazy_loading(attribute: str, expected_type: str) -> None:
    module = import_module("mergemaster")
    value: Any = getattr(module, attribute)
    if expected_type == "function":
        assert callable(value)
    else:
        assert isinstance(value, type)


def test_unknown_attribute_raises() -> None:
    module = import_module("mergemaster")
    with pytest.raises(AttributeError):
        module.does_not_exist  # noqa: B018


def test_version_matches_pyproject() -> None:
    module = import_module("mergemaster")
    pyproject = Path(__file__).resolve().parents[1] / "pyproject.toml"
    match = re.search(r'^version = "([^"]+)"', pyproject.read_text(encoding="utf-8"), re.MULTILINE)
    assert match is not None
    assert match.group(1) == module.__version__
