"""Tests for application configuration."""

from __future__ import annotations

from pathlib import Path

import pytest

from codenotes.config import AppConfig


class TestAppConfig:
    """Test AppConfig dataclass."""

    def test_default_config(self) -> None:
        """Should create config with default values."""
        config = AppConfig()

        assert config.context_before == 5
        assert config.context_after == 5
        assert config.store_dir == "comments"
        assert config.git_binary == "git"
        assert config.vcs_timeout == 5.0
        assert config.match_threshold == 0.4

    def test_custom_config(self) -> None:
        """Should create config with custom values."""
        config = AppConfig(
            context_before=2,
            context_after=3,
            store_dir=Path("/custom/notes"),
            vcs_timeout=1.5,
        )

        assert config.context_before == 2
        assert config.context_after == 3
        assert config.store_dir == Path("/custom/notes")
        assert config.vcs_timeout == 1.5

    def test_negative_context_rejected(self) -> None:
        """Should refuse negative context sizes."""
        with pytest.raises(ValueError):
            AppConfig(context_before=-1)

    def test_threshold_out_of_range_rejected(self) -> None:
        """Should refuse thresholds outside [0, 1]."""
        with pytest.raises(ValueError):
            AppConfig(match_threshold=1.5)

    def test_non_positive_timeout_rejected(self) -> None:
        """Should refuse a zero timeout."""
        with pytest.raises(ValueError):
            AppConfig(vcs_timeout=0)

    def test_resolve_store_dir_relative_with_root(self) -> None:
        """Should resolve relative store dir against the repository root."""
        config = AppConfig()

        assert config.resolve_store_dir(Path("/repo")) == Path("/repo/comments")

    def test_resolve_store_dir_absolute(self) -> None:
        """Should return absolute store dir as-is."""
        config = AppConfig(store_dir=Path("/var/notes"))

        assert config.resolve_store_dir(Path("/repo")) == Path("/var/notes")

    def test_resolve_store_dir_no_root(self) -> None:
        """Should return relative store dir when no root is known."""
        config = AppConfig()

        assert config.resolve_store_dir(None) == Path("comments")
