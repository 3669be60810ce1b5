"""Read-only git queries through the git binary."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path
from typing import List, Optional, Sequence

LOGGER = logging.getLogger(__name__)


class VCSError(RuntimeError):
    """Raised when a git query cannot be answered."""


class VCSTimeout(VCSError):
    """Raised when a git query exceeds its time budget."""


class GitClient:
    """Answers HEAD, ancestry and historical-content questions for a repository."""

    def __init__(self, *, binary: str = "git", timeout: float = 5.0) -> None:
        self.binary = binary
        self.timeout = timeout

    def _run(self, args: Sequence[str], cwd: Path) -> subprocess.CompletedProcess:
        command: List[str] = [self.binary, *args]
        LOGGER.debug("Running %s in %s", " ".join(command), cwd)
        try:
            return subprocess.run(
                command,
                cwd=cwd,
                capture_output=True,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise VCSTimeout(f"{' '.join(command)} timed out after {self.timeout}s") from exc
        except OSError as exc:
            raise VCSError(f"Unable to run {self.binary}: {exc}") from exc

    @staticmethod
    def _failure(result: subprocess.CompletedProcess, what: str) -> VCSError:
        stderr = result.stderr.decode("utf-8", errors="replace").strip()
        return VCSError(f"{what} failed (exit {result.returncode}): {stderr}")

    def repo_root_for(self, path: Path) -> Optional[Path]:
        """Return the repository root containing ``path``, or None outside a repository."""
        path = Path(path)
        directory = path if path.is_dir() else path.parent
        if not directory.exists():
            return None
        try:
            result = self._run(["rev-parse", "--show-toplevel"], cwd=directory)
        except VCSTimeout:
            raise
        except VCSError as exc:
            LOGGER.debug("No repository for %s: %s", path, exc)
            return None
        if result.returncode != 0:
            return None
        return Path(result.stdout.decode("utf-8").strip())

    def current_head(self, repo_root: Path) -> str:
        result = self._run(["rev-parse", "HEAD"], cwd=repo_root)
        if result.returncode != 0:
            raise self._failure(result, "rev-parse HEAD")
        return result.stdout.decode("utf-8").strip()

    def commit_exists(self, repo_root: Path, commit: str) -> bool:
        result = self._run(["cat-file", "-e", f"{commit}^{{commit}}"], cwd=repo_root)
        return result.returncode == 0

    def is_ancestor(self, repo_root: Path, commit: str, head: str) -> bool:
        """True when ``commit`` is ``head`` or one of its ancestors.

        A commit the repository does not know (rebased away and collected, or
        recorded in another clone) is not an ancestor.
        """
        result = self._run(["merge-base", "--is-ancestor", commit, head], cwd=repo_root)
        if result.returncode == 0:
            return True
        if result.returncode == 1:
            return False
        if not self.commit_exists(repo_root, commit):
            LOGGER.debug("Commit %s is unknown to %s", commit, repo_root)
            return False
        raise self._failure(result, f"merge-base --is-ancestor {commit} {head}")

    def show_file_at(self, repo_root: Path, commit: str, rel_path: str) -> bytes:
        spec = f"{commit}:{Path(rel_path).as_posix()}"
        result = self._run(["show", spec], cwd=repo_root)
        if result.returncode != 0:
            raise self._failure(result, f"show {spec}")
        return result.stdout
