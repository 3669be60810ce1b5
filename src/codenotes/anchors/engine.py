"""Entry points for creating and recovering anchors."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from codenotes.anchors.gate import RepoContext, RevisionGate
from codenotes.anchors.recovery import RecoveryEngine
from codenotes.anchors.store import AnchorStore
from codenotes.config import AppConfig
from codenotes.models import Anchor, LineRange, RecoveredAnchor
from codenotes.patching.codec import PatchCodec
from codenotes.utils.files import read_source_text
from codenotes.vcs.git import GitClient, VCSError

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class SourceLocation:
    """Where a source file lives and where its anchors are kept."""

    source: Path
    repo_root: Optional[Path]
    logical_path: str
    anchor_path: Path
    degraded: bool = False


class AnchorEngine:
    """Coordinates capture, persistence, recovery and revision gating.

    Constructed once per process and shared by every request handler; it owns
    the store and therefore the per-path locks.
    """

    def __init__(
        self,
        config: AppConfig | None = None,
        *,
        store: AnchorStore | None = None,
        vcs: GitClient | None = None,
        codec: PatchCodec | None = None,
    ) -> None:
        self.config = config or AppConfig()
        self.store = store or AnchorStore()
        self.vcs = vcs or GitClient(binary=self.config.git_binary, timeout=self.config.vcs_timeout)
        self.codec = codec or PatchCodec(
            match_threshold=self.config.match_threshold,
            match_distance=self.config.match_distance,
        )
        self.recovery = RecoveryEngine(self.codec)
        self.gate = RevisionGate(self.vcs)
        self._roots: Dict[Path, Optional[Path]] = {}

    def _repo_root(self, source: Path, strict: bool) -> Tuple[Optional[Path], bool]:
        """Repository root of ``source`` and whether it came from the cache after a failure."""
        directory = source.parent
        try:
            repo_root = self.vcs.repo_root_for(source)
        except VCSError as exc:
            if strict:
                raise
            repo_root = self._roots.get(directory)
            LOGGER.warning("Repository lookup failed for %s, using %s: %s", source, repo_root, exc)
            return repo_root, True
        self._roots[directory] = repo_root
        return repo_root, False

    def locate(self, source: Path, *, strict: bool = False) -> SourceLocation:
        """Resolve the repository and anchor file of ``source``.

        When the repository lookup fails the last root known for the directory
        is used (none if never seen) and the location is marked degraded, unless
        ``strict`` is set.

        Raises:
            VCSError: the repository lookup failed and ``strict`` is set.
        """
        source = Path(source).absolute()
        repo_root, degraded = self._repo_root(source, strict)
        if repo_root is not None:
            try:
                relative = source.resolve().relative_to(repo_root.resolve())
            except ValueError:
                LOGGER.warning("%s is outside repository %s", source, repo_root)
            else:
                anchor_path = self.config.resolve_store_dir(repo_root) / f"{relative}.json"
                return SourceLocation(source, repo_root, relative.as_posix(), anchor_path, degraded)
        return SourceLocation(
            source, None, str(source), source.with_name(source.name + ".json"), degraded
        )

    def repo_context(self, location: SourceLocation) -> RepoContext:
        if location.repo_root is None:
            return RepoContext()
        if location.degraded:
            return RepoContext(root=location.repo_root)
        try:
            head = self.vcs.current_head(location.repo_root)
        except VCSError as exc:
            LOGGER.warning("Cannot read HEAD of %s: %s", location.repo_root, exc)
            return RepoContext(root=location.repo_root)
        return RepoContext(root=location.repo_root, head=head)

    def create_anchor(
        self,
        source: Path,
        selection: LineRange,
        message: str,
        *,
        text: str | None = None,
    ) -> Anchor:
        """Capture ``selection`` of ``source`` and persist it as a new anchor.

        ``text`` is the live content when the caller has it (an editor buffer);
        otherwise the file is read from disk. Nothing is persisted on failure.

        Raises:
            ValueError: empty message or empty file.
            OSError: the source or anchor file could not be read or written.
            VCSError: the repository or its current commit could not be determined.
            AnchorFileError: the existing anchor file is invalid.
        """
        if not message or not message.strip():
            raise ValueError("Annotation message must not be empty")
        location = self.locate(source, strict=True)
        if text is None:
            text = read_source_text(location.source)

        base_revision = ""
        if location.repo_root is not None:
            base_revision = self.vcs.current_head(location.repo_root)

        patches, effective = self.codec.capture(
            text,
            selection,
            before=self.config.context_before,
            after=self.config.context_after,
        )
        anchor = Anchor.new(message, base_revision, self.codec.to_text(patches))
        self.store.append_anchor(location.anchor_path, anchor)
        LOGGER.info(
            "Anchored %s lines %d-%d at %s",
            location.logical_path,
            effective.start,
            effective.end,
            base_revision or "<no vcs>",
        )
        return anchor

    def _recover(self, location: SourceLocation, text: str | None) -> List[RecoveredAnchor]:
        anchors = self.store.read_anchors(location.anchor_path)
        if not anchors:
            return []
        if text is None:
            text = read_source_text(location.source)
        return self.recovery.recover(anchors, text)

    def _visible(
        self,
        location: SourceLocation,
        text: str | None,
        context: RepoContext | None,
    ) -> List[RecoveredAnchor]:
        recovered = self._recover(location, text)
        if not recovered:
            return []
        if context is None:
            context = self.repo_context(location)
        return [
            item
            for item in recovered
            if not item.stale and self.gate.is_visible(item.anchor, context)
        ]

    def recover(self, source: Path, text: str | None = None) -> List[RecoveredAnchor]:
        """Every anchor of ``source`` with its current range (None when stale)."""
        return self._recover(self.locate(source), text)

    def recover_visible(
        self,
        source: Path,
        text: str | None = None,
        context: RepoContext | None = None,
    ) -> List[RecoveredAnchor]:
        """Anchors of ``source`` that are both locatable and on the current history."""
        return self._visible(self.locate(source), text, context)

    def recover_at_revision(self, source: Path, revision: str) -> List[RecoveredAnchor]:
        """Visible anchors against the content of ``source`` at ``revision``.

        Raises:
            ValueError: ``source`` is not inside a repository.
            VCSError: the revision or file could not be read.
        """
        location = self.locate(source, strict=True)
        if location.repo_root is None:
            raise ValueError(f"{location.source} is not inside a git repository")
        blob = self.vcs.show_file_at(location.repo_root, revision, location.logical_path)
        text = blob.decode("utf-8", errors="replace")
        context = RepoContext(root=location.repo_root, head=revision)
        return self._visible(location, text, context)

    def remove_anchor(self, source: Path, anchor_id: str) -> bool:
        location = self.locate(source, strict=True)
        return self.store.remove_anchor(location.anchor_path, anchor_id)
