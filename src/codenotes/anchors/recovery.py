"""Relocate anchors against the current content of their file."""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from codenotes.models import Anchor, LineRange, RecoveredAnchor
from codenotes.patching.codec import PatchCodec, PatchFormatError

LOGGER = logging.getLogger(__name__)


class RecoveryEngine:
    """Computes the current line range of each anchor; no I/O."""

    def __init__(self, codec: PatchCodec) -> None:
        self.codec = codec

    def locate(self, anchor: Anchor, text: str) -> Optional[LineRange]:
        """Current range of ``anchor`` in ``text``, or None when it is stale.

        Raises:
            PatchFormatError: the stored context patch is unusable.
        """
        patches = self.codec.from_text(anchor.context_patch)
        if len(patches) != 1:
            raise PatchFormatError(f"Expected one context hunk, found {len(patches)}")
        for idx, hunk in enumerate(self.codec.hunks(patches)):
            LOGGER.debug(
                "anchor %s hunk %d: start1=%d length1=%d start2=%d length2=%d",
                anchor.id,
                idx,
                hunk.start1,
                hunk.length1,
                hunk.start2,
                hunk.length2,
            )

        window = self.codec.split_context(patches[0])
        offset = self.codec.relocate(patches[0], text)
        if offset is None:
            return None

        last_line = max(len(text.splitlines()) - 1, 0)
        start = min(text.count("\n", 0, offset), last_line)
        end = min(start + window.selection_lines - 1, last_line)
        return LineRange(start, end)

    def recover(self, anchors: Iterable[Anchor], text: str) -> List[RecoveredAnchor]:
        """Locate every anchor; one failing anchor never affects the others."""
        recovered: List[RecoveredAnchor] = []
        for anchor in anchors:
            try:
                line_range = self.locate(anchor, text)
            except PatchFormatError as exc:
                LOGGER.warning("Anchor %s has an unusable context patch: %s", anchor.id, exc)
                line_range = None
            if line_range is None:
                LOGGER.info("Anchor %s is stale", anchor.id)
            else:
                LOGGER.debug("Anchor %s at lines %d-%d", anchor.id, line_range.start, line_range.end)
            recovered.append(RecoveredAnchor(anchor=anchor, range=line_range))
        return recovered
