"""Decide whether an anchor's base revision still applies to the checkout."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Tuple

from codenotes.models import Anchor
from codenotes.vcs.git import GitClient, VCSError

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class RepoContext:
    """Repository state a recovery pass is evaluated against.

    ``head`` is None when there is no repository or it could not be queried;
    in that case every anchor is visible.
    """

    root: Optional[Path] = None
    head: Optional[str] = None


class RevisionGate:
    """Hides anchors whose base revision is not in the history of HEAD.

    Verdicts are cached for the latest HEAD seen in each repository only; a
    new HEAD starts an empty cache.
    """

    def __init__(self, vcs: GitClient) -> None:
        self.vcs = vcs
        self._cache: Dict[str, Tuple[str, Dict[str, bool]]] = {}

    def _verdicts(self, context: RepoContext) -> Dict[str, bool]:
        root = str(context.root)
        entry = self._cache.get(root)
        if entry is None or entry[0] != context.head:
            entry = self._cache[root] = (context.head, {})
        return entry[1]

    def is_visible(self, anchor: Anchor, context: RepoContext) -> bool:
        revision = anchor.base_revision
        if not revision or context.root is None or context.head is None:
            return True
        if revision == context.head:
            return True

        verdicts = self._verdicts(context)
        cached = verdicts.get(revision)
        if cached is not None:
            return cached
        try:
            visible = self.vcs.is_ancestor(context.root, revision, context.head)
        except VCSError as exc:
            # Indeterminate; not cached so a later pass can retry.
            LOGGER.warning("Cannot check ancestry of %s, showing anchor %s: %s", revision, anchor.id, exc)
            return True
        verdicts[revision] = visible
        if not visible:
            LOGGER.info("Anchor %s: commit %s is not on the current branch", anchor.id, revision)
        return visible
