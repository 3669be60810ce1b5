"""Patch codec built on diff-match-patch."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Set, Tuple

from diff_match_patch import diff_match_patch, patch_obj

from codenotes.models import LineRange

LOGGER = logging.getLogger(__name__)

DIFF_DELETE = diff_match_patch.DIFF_DELETE
DIFF_INSERT = diff_match_patch.DIFF_INSERT
DIFF_EQUAL = diff_match_patch.DIFF_EQUAL

# Candidate window starts compared per relocation, nearest first.
MAX_CANDIDATES = 12


class PatchFormatError(ValueError):
    """Raised when serialized patch text cannot be used."""


@dataclass(frozen=True, slots=True)
class Hunk:
    start1: int
    length1: int
    start2: int
    length2: int


@dataclass(frozen=True, slots=True)
class ContextWindow:
    """Texts of a captured hunk: unchanged lines, selection, unchanged lines."""

    before: str
    selection: str
    after: str

    @property
    def selection_lines(self) -> int:
        return max(len(self.selection.splitlines()), 1)


class PatchCodec:
    """Compute, serialize and re-apply patches with fuzzy relocation.

    ``match_threshold`` bounds the share of a relocated window that may have
    changed (0.0 exact, 1.0 anything). ``match_distance`` is the drift, in
    characters, that costs as much as a fully changed window when ranking
    candidate positions; it is never smaller than the window itself.
    ``diff_timeout`` caps the seconds spent comparing one candidate.
    """

    def __init__(
        self,
        *,
        match_threshold: float = 0.4,
        match_distance: int = 1000,
        delete_threshold: float = 0.5,
        diff_timeout: float = 0.1,
    ) -> None:
        self.match_threshold = match_threshold
        self.match_distance = match_distance
        self.delete_threshold = delete_threshold
        self.diff_timeout = diff_timeout

    def _engine(self, pattern_length: int = 0) -> diff_match_patch:
        # One engine per call: the library keeps its tolerances as mutable attributes.
        dmp = diff_match_patch()
        dmp.Match_Threshold = self.match_threshold
        dmp.Match_Distance = max(self.match_distance, pattern_length)
        dmp.Patch_DeleteThreshold = self.delete_threshold
        dmp.Diff_Timeout = self.diff_timeout
        return dmp

    def make(self, old_text: str, new_text: str) -> List[patch_obj]:
        return self._engine().patch_make(old_text, new_text)

    def apply(self, patches: Sequence[patch_obj], text: str) -> Tuple[str, List[bool]]:
        """Apply patches to text, returning the new text and one flag per hunk."""
        if not patches:
            return text, []
        result, applied = self._engine().patch_apply(list(patches), text)
        return result, list(applied)

    @staticmethod
    def hunks(patches: Sequence[patch_obj]) -> List[Hunk]:
        return [
            Hunk(
                start1=patch.start1 or 0,
                length1=patch.length1,
                start2=patch.start2 or 0,
                length2=patch.length2,
            )
            for patch in patches
        ]

    def to_text(self, patches: Sequence[patch_obj]) -> str:
        return self._engine().patch_toText(list(patches))

    def from_text(self, text: str) -> List[patch_obj]:
        try:
            return self._engine().patch_fromText(text)
        except (ValueError, IndexError) as exc:
            raise PatchFormatError(f"Invalid patch text: {exc}") from exc

    def capture(
        self,
        text: str,
        selection: LineRange,
        *,
        before: int,
        after: int,
    ) -> Tuple[List[patch_obj], LineRange]:
        """Capture a selection and its surrounding lines as a single hunk.

        The selected lines appear as removed and re-added so that the hunk
        records where the selection starts and ends inside the window. Line
        indices past the end of the file are clamped to the last line.

        Returns:
            (patches, effective_selection)
        """
        lines = text.splitlines(keepends=True)
        if not lines:
            raise ValueError("Cannot anchor a range in an empty file")

        last = len(lines) - 1
        start = min(selection.start, last)
        end = min(selection.end, last)
        window_start = max(0, start - before)
        window_end = min(len(lines), end + after + 1)

        head = "".join(lines[window_start:start])
        body = "".join(lines[start : end + 1])
        tail = "".join(lines[end + 1 : window_end])

        patch = patch_obj()
        patch.start1 = patch.start2 = len("".join(lines[:window_start]))
        patch.length1 = patch.length2 = len(head) + len(body) + len(tail)
        if head:
            patch.diffs.append((DIFF_EQUAL, head))
        patch.diffs.append((DIFF_DELETE, body))
        patch.diffs.append((DIFF_INSERT, body))
        if tail:
            patch.diffs.append((DIFF_EQUAL, tail))

        LOGGER.debug(
            "Captured lines %d-%d with window %d-%d (%d chars)",
            start,
            end,
            window_start,
            window_end - 1,
            patch.length1,
        )
        return [patch], LineRange(start, end)

    @staticmethod
    def split_context(patch: patch_obj) -> ContextWindow:
        before: List[str] = []
        selection: List[str] = []
        after: List[str] = []
        for op, data in patch.diffs:
            if op == DIFF_DELETE:
                if after:
                    raise PatchFormatError("Context patch selects more than one region")
                selection.append(data)
            elif op == DIFF_EQUAL:
                (after if selection else before).append(data)
        if not selection:
            raise PatchFormatError("Context patch has no selected lines")
        return ContextWindow("".join(before), "".join(selection), "".join(after))

    @staticmethod
    def _candidates(
        dmp: diff_match_patch, text: str, pattern: str, expected: int
    ) -> List[int]:
        """Window start offsets worth scoring, nearest to ``expected`` first.

        Sources: the recorded offset, the closest exact copies of the window,
        the closest exact copy of each of its lines, and a bitap match of the
        window's first characters around the recorded offset.
        """
        found: Set[int] = {expected}
        for pos in (text.find(pattern, expected), text.rfind(pattern, 0, expected + len(pattern))):
            if pos >= 0:
                found.add(pos)

        offset = 0
        for line in pattern.splitlines(keepends=True):
            if len(line.strip()) >= 3:
                at = expected + offset
                for pos in (text.find(line, at), text.rfind(line, 0, at + len(line))):
                    if pos >= offset:
                        found.add(pos - offset)
            offset += len(line)

        pos = dmp.match_main(text, pattern[: dmp.Match_MaxBits], expected)
        if pos >= 0:
            found.add(pos)
        ordered = sorted(found, key=lambda candidate: (abs(candidate - expected), candidate))
        return ordered[:MAX_CANDIDATES]

    def relocate(self, patch: patch_obj, text: str) -> Optional[int]:
        """Offset in ``text`` where the selection of a context hunk now starts.

        Each candidate position is scored as the share of the window that
        changed plus its drift from the recorded offset over the match
        distance; the lowest score within ``match_threshold`` wins. Returns
        None when no candidate is close enough.
        """
        window = self.split_context(patch)
        pattern = window.before + window.selection + window.after
        if not text:
            return None
        expected = min(patch.start1 or 0, len(text))
        dmp = self._engine(len(pattern))

        best: Optional[Tuple[float, int, list]] = None
        for candidate in self._candidates(dmp, text, pattern, expected):
            drift = abs(candidate - expected) / dmp.Match_Distance
            if best is not None and drift >= best[0]:
                break
            segment = text[candidate : candidate + len(pattern)]
            diffs = dmp.diff_main(pattern, segment, False)
            changed = dmp.diff_levenshtein(diffs) / len(pattern)
            if changed > self.match_threshold:
                continue
            score = changed + drift
            if best is None or score < best[0]:
                best = (score, candidate, diffs)

        if best is None:
            return None
        score, candidate, diffs = best
        LOGGER.debug("Window relocated from %d to %d (score %.3f)", expected, candidate, score)
        return candidate + dmp.diff_xIndex(diffs, len(window.before))
