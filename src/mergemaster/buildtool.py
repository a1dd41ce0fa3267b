"""Gradle wrapper adapter: formatting, dependency/buildscript updates, version pinning.

Both tree-mutating operations are no-ops for repositories without a
``gradlew`` script. Their output is committed by the caller.
"""

from __future__ import annotations

import re
import subprocess  # nosec B404 - subprocess is required for gradle wrapper invocation
from collections.abc import Mapping
from pathlib import Path

from .errors import CommandError
from .logging import get_logger
from .models import RepositoryId

GRADLE_WRAPPER = "gradlew"
DEPENDENCY_MANIFEST = "dependencies.gradle"


def pin_dependency_versions(
    text: str, overrides: Mapping[RepositoryId, str]
) -> tuple[str, int]:
    """Rewrite ``com.github.<org>:<name>:<version>`` coordinates to pinned versions.

    Returns the new text and the number of coordinates rewritten.
    """
    total = 0
    for repo, version in overrides.items():
        pattern = re.compile(
            r"(com\.github\." + re.escape(repo.organization) + ":" + re.escape(repo.name) + r":)([^:'\"\s)]+)"
        )
        text, count = pattern.subn(lambda m, v=version: m.group(1) + v, text)
        total += count
    return text, total


class BuildTool:
    def __init__(self, wrapper: str = GRADLE_WRAPPER):
        self.wrapper = wrapper
        self.logger = get_logger()

    def available(self, path: Path) -> bool:
        return (Path(path) / self.wrapper).exists()

    def _gradle(self, path: Path, task: str) -> None:
        cmd = [f"./{self.wrapper}", task]
        self.logger.info(f"Executing: {' '.join(cmd)}", path=str(path))
        try:
            subprocess.check_output(  # nosec B603 - command uses controlled arguments
                cmd, cwd=str(path), text=True, stderr=subprocess.STDOUT
            )
        except subprocess.CalledProcessError as exc:
            raise CommandError(cmd, str(exc.output or ""), exc.returncode) from exc

    def apply_formatting(self, path: Path) -> bool:
        """Run ``spotlessApply``; ``False`` when the repository has no wrapper."""
        if not self.available(path):
            return False
        self._gradle(path, "spotlessApply")
        return True

    def pin_versions(self, path: Path, overrides: Mapping[RepositoryId, str]) -> int:
        manifest = Path(path) / DEPENDENCY_MANIFEST
        if not overrides or not manifest.exists():
            return 0
        text, count = pin_dependency_versions(manifest.read_text(encoding="utf-8"), overrides)
        if count:
            manifest.write_text(text, encoding="utf-8")
            self.logger.info(f"Pinned {count} dependency version(s) in {manifest.name}", path=str(path))
        return count

    def update_dependencies(self, path: Path, overrides: Mapping[RepositoryId, str] | None = None) -> bool:
        """Pin freshly tagged dependency versions, then update dependencies and buildscript."""
        if overrides:
            self.pin_versions(path, overrides)
        if not self.available(path):
            return False
        self._gradle(path, "updateDependencies")
        self._gradle(path, "updateBuildscript")
        return True


__all__ = ["BuildTool", "pin_dependency_versions", "DEPENDENCY_MANIFEST"]
