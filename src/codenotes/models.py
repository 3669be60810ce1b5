"""Core CodeNotes data models."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import List, Optional


@dataclass(frozen=True, slots=True)
class LineRange:
    """Inclusive, zero-based span of lines."""

    start: int
    end: int

    def __post_init__(self) -> None:
        if self.start < 0:
            raise ValueError(f"Line range start must be >= 0, got {self.start}")
        if self.end < self.start:
            raise ValueError(f"Line range end {self.end} is before start {self.start}")

    @property
    def line_count(self) -> int:
        return self.end - self.start + 1


@dataclass(frozen=True, slots=True)
class Anchor:
    """An annotation bound to a context patch rather than to line numbers."""

    id: str
    message: str
    base_revision: str
    context_patch: str

    @classmethod
    def new(cls, message: str, base_revision: str, context_patch: str) -> "Anchor":
        if not message.strip():
            raise ValueError("Annotation message must not be empty")
        return cls(
            id=uuid.uuid4().hex,
            message=message,
            base_revision=base_revision,
            context_patch=context_patch,
        )


@dataclass(slots=True)
class AnchorFile:
    """Ordered anchors of one tracked source file."""

    anchors: List[Anchor] = field(default_factory=list)

    def find(self, anchor_id: str) -> Optional[Anchor]:
        for anchor in self.anchors:
            if anchor.id == anchor_id:
                return anchor
        return None


@dataclass(frozen=True, slots=True)
class RecoveredAnchor:
    """Result of one recovery pass for a single anchor."""

    anchor: Anchor
    range: Optional[LineRange]

    @property
    def stale(self) -> bool:
        return self.range is None
