"""Application configuration defaults."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path

DEFAULT_STORE_DIR = "comments"


@dataclass(slots=True)
class AppConfig:
    context_before: int = 5
    context_after: int = 5
    store_dir: Path | str = DEFAULT_STORE_DIR
    git_binary: str = "git"
    vcs_timeout: float = 5.0
    match_threshold: float = 0.4
    match_distance: int = 1000

    def __post_init__(self) -> None:
        if self.context_before < 0 or self.context_after < 0:
            raise ValueError("Context sizes must be non-negative")
        if not 0.0 <= self.match_threshold <= 1.0:
            raise ValueError("match_threshold must be between 0.0 and 1.0")
        if self.vcs_timeout <= 0:
            raise ValueError("vcs_timeout must be positive")

    def resolve_store_dir(self, repo_root: Path | None = None) -> Path:
        store_dir = Path(self.store_dir)
        if store_dir.is_absolute() or repo_root is None:
            return store_dir
        return repo_root / store_dir
