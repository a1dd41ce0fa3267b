"""Working-copy adapter over the ``git`` and ``gh`` command line tools.

One ``GitWorkspace`` owns the clone of a single repository under the
configured scratchpad (``<root>/<organization>/<name>``). Mutating commands
raise ``CommandError``; discovery reads (does a branch exist, is a ref tagged,
what is the latest tag) answer ``False`` / ``None`` / ``[]`` instead, since an
absent branch or tag is an ordinary outcome.

Remote writes are never skipped here: dry-run handling belongs to the
callers, which simply do not call ``push`` / ``force_push`` / ``push_tag``.
"""

from __future__ import annotations

import shutil
import subprocess  # nosec B404 - subprocess is required for git / GitHub CLI invocation
from datetime import datetime
from pathlib import Path
from typing import Protocol

from .errors import CommandError
from .logging import get_logger
from .models import ChangeRequestId, Commit, RepositoryId
from .retry import run_with_retries

_FIELD = "%x1f"
_LOG_FORMAT = _FIELD.join(["%H", "%aN", "%aE", "%aI", "%cN", "%cE", "%cI", "%s", "%b"])


class WorkspaceProtocol(Protocol):  # pragma: no cover - interface only
    repo: RepositoryId

    @property
    def path(self) -> Path: ...

    def checkout_branch(self, branch: str) -> bool: ...

    def checkout_new_branch(self, branch: str) -> None: ...

    def delete_branch(self, branch: str) -> bool: ...

    def branch_exists(self, branch: str) -> bool: ...

    def checkout_change(self, change: ChangeRequestId, local_branch: str) -> None: ...

    def merge(self, ref: str, message: str | None = None) -> None: ...

    def abort_merge(self) -> None: ...

    def has_changes(self) -> bool: ...

    def commit(self, subject: str, body: str = "", allow_empty: bool = False) -> None: ...

    def force_push(self, branch: str, remote_ref: str | None = None) -> None: ...

    def get_commits(self, ref: str, limit: int | None = None) -> list[Commit]: ...

    def has_file(self, relative: str) -> bool: ...


def _parse_log(output: str) -> list[Commit]:
    commits: list[Commit] = []
    for record in output.split("\0"):
        record = record.strip("\n")
        if not record:
            continue
        fields = record.split("\x1f")
        if len(fields) < 9:  # noqa: PLR2004
            continue
        sha, a_name, a_email, a_date, c_name, c_email, c_date, subject = fields[:8]
        commits.append(
            Commit(
                sha=sha,
                author_name=a_name,
                author_email=a_email,
                author_date=datetime.fromisoformat(a_date),
                committer_name=c_name,
                committer_email=c_email,
                committer_date=datetime.fromisoformat(c_date),
                subject=subject,
                body="\x1f".join(fields[8:]).strip(),
            )
        )
    return commits


class GitWorkspace:
    def __init__(
        self,
        repo: RepositoryId,
        root: Path,
        identity_name: str = "MergeMasterXXL",
        identity_email: str = "N/A",
    ):
        self.repo = repo
        self.root = Path(root)
        self.identity_name = identity_name
        self.identity_email = identity_email
        self.logger = get_logger()
        self._gh_path = shutil.which("gh") or "gh"
        self._git_path = shutil.which("git") or "git"

    @property
    def path(self) -> Path:
        return self.root / self.repo.organization / self.repo.name

    # --- internal helpers -------------------------------------------------
    def _exec(self, cmd: list[str], *, cwd: Path | None = None, retry: bool = False) -> str:
        self.logger.debug(f"Executing: {' '.join(cmd)}", repo=str(self.repo))

        def _call() -> str:
            return subprocess.check_output(  # nosec B603 - command uses controlled arguments
                cmd, cwd=str(cwd or self.path), text=True, stderr=subprocess.STDOUT
            )

        try:
            return run_with_retries(_call) if retry else _call()
        except subprocess.CalledProcessError as exc:
            raise CommandError(cmd, str(exc.output or ""), exc.returncode) from exc
        except OSError as exc:
            raise CommandError(cmd, str(exc)) from exc

    def _git(self, *args: str, retry: bool = False) -> str:
        return self._exec([self._git_path, *args], retry=retry)

    def _probe(self, *args: str) -> str | None:
        """Run a read-only git query; ``None`` when it fails."""
        try:
            return self._git(*args)
        except CommandError as exc:
            self.logger.debug(f"git {' '.join(args)} failed: {exc.output.strip()}", repo=str(self.repo))
            return None

    # --- lifecycle --------------------------------------------------------
    def clone(self) -> str:
        """Fresh clone via ``gh``; returns the default branch name."""
        self.remove()
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._exec(
            [self._gh_path, "repo", "clone", str(self.repo), str(self.path)],
            cwd=self.path.parent,
            retry=True,
        )
        self._git("config", "user.name", self.identity_name)
        self._git("config", "user.email", self.identity_email)
        self.logger.info(f"Cloned {self.repo} to {self.path}", repo=str(self.repo))
        head = self._probe("symbolic-ref", "--short", "refs/remotes/origin/HEAD")
        if head and head.strip().startswith("origin/"):
            return head.strip()[len("origin/") :]
        return (self._probe("rev-parse", "--abbrev-ref", "HEAD") or "master").strip()

    def remove(self) -> None:
        if self.path.exists():
            shutil.rmtree(self.path, ignore_errors=True)

    # --- branches ---------------------------------------------------------
    def checkout_branch(self, branch: str) -> bool:
        """Check out ``branch`` (creating a tracking branch from origin when needed)."""
        return self._probe("checkout", branch) is not None

    def checkout_new_branch(self, branch: str) -> None:
        self._git("checkout", "-b", branch)

    def delete_branch(self, branch: str) -> bool:
        return self._probe("branch", "-D", branch) is not None

    def branch_exists(self, branch: str) -> bool:
        return any(
            self._probe("rev-parse", "--verify", "--quiet", ref) is not None
            for ref in (f"refs/heads/{branch}", f"refs/remotes/origin/{branch}")
        )

    def checkout_change(self, change: ChangeRequestId, local_branch: str) -> None:
        self._exec(
            [self._gh_path, "pr", "checkout", change.url, "--branch", local_branch, "--force"],
            retry=True,
        )

    # --- merging and committing -------------------------------------------
    def merge(self, ref: str, message: str | None = None) -> None:
        args = ["merge", "--no-ff", "--no-edit"]
        if message:
            args += ["-m", message]
        self._git(*args, ref)

    def abort_merge(self) -> None:
        if self._probe("merge", "--abort") is None:
            # nothing to abort (the merge failed before touching the index)
            self._probe("reset", "--hard", "HEAD")

    def has_changes(self) -> bool:
        return bool(self._git("status", "--porcelain").strip())

    def commit(self, subject: str, body: str = "", allow_empty: bool = False) -> None:
        self._git("add", "-A")
        args = ["commit", "--no-edit", "-m", subject]
        if body:
            args += ["-m", body]
        if allow_empty:
            args.append("--allow-empty")
        self._git(*args)

    # --- remote writes ----------------------------------------------------
    def push(self, branch: str) -> None:
        self._git("push", "origin", branch, retry=True)

    def force_push(self, branch: str, remote_ref: str | None = None) -> None:
        refspec = f"{branch}:{remote_ref}" if remote_ref else branch
        self._git("push", "--force", "origin", refspec, retry=True)

    # --- history ----------------------------------------------------------
    def get_commits(self, ref: str, limit: int | None = None) -> list[Commit]:
        args = ["log", "-z", f"--format={_LOG_FORMAT}"]
        if limit is not None:
            args.append(f"-n{limit}")
        out = self._probe(*args, ref, "--")
        if out is None:
            self.logger.warning(f"Could not fetch commits for '{ref}'", repo=str(self.repo))
            return []
        return _parse_log(out)

    def count_commits(self, revision_range: str) -> int:
        out = self._probe("rev-list", "--count", revision_range)
        return int(out.strip()) if out and out.strip().isdigit() else 0

    def rev_parse(self, ref: str) -> str:
        return self._git("rev-parse", ref).strip()

    def has_file(self, relative: str) -> bool:
        return (self.path / relative).exists()

    # --- tags -------------------------------------------------------------
    def latest_reachable_tag(self, ref: str = "HEAD") -> str | None:
        out = self._probe("describe", "--abbrev=0", "--tags", ref)
        return out.strip() if out and out.strip() else None

    def recent_tags(self, limit: int = 5) -> list[str]:
        """The ``limit`` most recently created tags, oldest first."""
        out = self._probe("tag", "-l", "--sort=creatordate")
        if out is None:
            return []
        names = [line.strip() for line in out.splitlines() if line.strip()]
        return names[-limit:] if limit > 0 else names

    def tag_for_ref(self, ref: str) -> str | None:
        out = self._probe("describe", "--tags", "--exact-match", ref)
        return out.strip() if out and out.strip() else None

    def create_tag(self, name: str, ref: str = "HEAD") -> None:
        self._git("tag", "-f", name, ref)

    def push_tag(self, name: str) -> None:
        self._git("push", "--force", "origin", f"refs/tags/{name}", retry=True)


__all__ = ["GitWorkspace", "WorkspaceProtocol"]
