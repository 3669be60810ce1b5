"""JSON anchor files, one per tracked source file."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from codenotes.models import Anchor, AnchorFile
from codenotes.utils.files import atomic_write_text
from codenotes.utils.locks import PathLocks

LOGGER = logging.getLogger(__name__)


class AnchorFileError(ValueError):
    """Raised when an anchor file exists but does not hold valid anchors."""


class AnchorRecord(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(min_length=1)
    message: str = Field(min_length=1)
    base_revision: str = Field("", alias="baseRevision")
    context_patch: str = Field(min_length=1, alias="contextPatch")

    @classmethod
    def from_anchor(cls, anchor: Anchor) -> "AnchorRecord":
        return cls(
            id=anchor.id,
            message=anchor.message,
            base_revision=anchor.base_revision,
            context_patch=anchor.context_patch,
        )

    def to_anchor(self) -> Anchor:
        return Anchor(
            id=self.id,
            message=self.message,
            base_revision=self.base_revision,
            context_patch=self.context_patch,
        )


class AnchorFileRecord(BaseModel):
    anchors: List[AnchorRecord] = Field(default_factory=list)

    @field_validator("anchors")
    @classmethod
    def _unique_ids(cls, anchors: List[AnchorRecord]) -> List[AnchorRecord]:
        seen = set()
        for record in anchors:
            if record.id in seen:
                raise ValueError(f"duplicate anchor id {record.id}")
            seen.add(record.id)
        return anchors


def _decode(data: str, path: Path) -> AnchorFile:
    try:
        record = AnchorFileRecord.model_validate(json.loads(data))
    except (json.JSONDecodeError, ValidationError) as exc:
        raise AnchorFileError(f"Invalid anchor file {path}: {exc}") from exc
    return AnchorFile(anchors=[item.to_anchor() for item in record.anchors])


def _encode(anchor_file: AnchorFile) -> str:
    record = AnchorFileRecord(anchors=[AnchorRecord.from_anchor(a) for a in anchor_file.anchors])
    return json.dumps(record.model_dump(by_alias=True), indent=2, ensure_ascii=False) + "\n"


class AnchorStore:
    """Persistence layer for anchor files.

    Every operation on a path holds that path's lock: reads share it, writes
    (including the whole read-modify-write of an append) hold it exclusively.
    Unrelated paths never contend.
    """

    def __init__(self, locks: PathLocks | None = None) -> None:
        self._locks = locks or PathLocks()

    def _read(self, path: Path) -> Optional[AnchorFile]:
        try:
            data = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        return _decode(data, path)

    def _write(self, path: Path, anchor_file: AnchorFile) -> None:
        atomic_write_text(path, _encode(anchor_file))
        LOGGER.debug("Saved %d anchors to %s", len(anchor_file.anchors), path)

    def load(self, path: Path) -> Optional[AnchorFile]:
        """Load an anchor file; None when it does not exist.

        Raises:
            AnchorFileError: the file exists but is not a valid anchor file.
            OSError: the file could not be read.
        """
        path = Path(path)
        with self._locks.for_path(path).read():
            LOGGER.debug("Load anchor file: %s", path)
            return self._read(path)

    def read_anchors(self, path: Path) -> List[Anchor]:
        """Anchors stored at ``path``, or an empty list when unavailable."""
        try:
            anchor_file = self.load(path)
        except AnchorFileError as exc:
            LOGGER.warning("Ignoring unreadable anchor file: %s", exc)
            return []
        return list(anchor_file.anchors) if anchor_file else []

    def save(self, path: Path, anchor_file: AnchorFile) -> None:
        path = Path(path)
        with self._locks.for_path(path).write():
            self._write(path, anchor_file)

    def append_anchor(self, path: Path, anchor: Anchor) -> AnchorFile:
        """Append an anchor, creating the file on first use.

        An existing but invalid file is never overwritten.
        """
        path = Path(path)
        with self._locks.for_path(path).write():
            anchor_file = self._read(path) or AnchorFile()
            if anchor_file.find(anchor.id) is not None:
                raise ValueError(f"Anchor {anchor.id} already exists in {path}")
            anchor_file.anchors.append(anchor)
            self._write(path, anchor_file)
        LOGGER.info("Added anchor %s to %s", anchor.id, path)
        return anchor_file

    def remove_anchor(self, path: Path, anchor_id: str) -> bool:
        path = Path(path)
        with self._locks.for_path(path).write():
            anchor_file = self._read(path)
            if anchor_file is None or anchor_file.find(anchor_id) is None:
                return False
            anchor_file.anchors = [a for a in anchor_file.anchors if a.id != anchor_id]
            self._write(path, anchor_file)
        LOGGER.info("Removed anchor %s from %s", anchor_id, path)
        return True
