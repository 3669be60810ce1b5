"""FastAPI application exposing annotations over HTTP."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, List

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

from codenotes import __version__
from codenotes.anchors.engine import AnchorEngine
from codenotes.anchors.store import AnchorFileError
from codenotes.config import AppConfig
from codenotes.models import LineRange, RecoveredAnchor
from codenotes.vcs.git import VCSError

LOGGER = logging.getLogger(__name__)


class CreateAnchorPayload(BaseModel):
    path: Path
    start_line: int = Field(ge=0)
    end_line: int = Field(ge=0)
    message: str


class AnchorView(BaseModel):
    id: str
    message: str
    base_revision: str
    start_line: int | None = None
    end_line: int | None = None
    stale: bool = False


def _to_view(item: RecoveredAnchor) -> AnchorView:
    return AnchorView(
        id=item.anchor.id,
        message=item.anchor.message,
        base_revision=item.anchor.base_revision,
        start_line=item.range.start if item.range else None,
        end_line=item.range.end if item.range else None,
        stale=item.stale,
    )


def _resolve_source(path: Path) -> Path:
    source = path.expanduser()
    if not source.is_file():
        raise HTTPException(status_code=404, detail=f"File not found: {source}")
    return source


def _engine(request: Request) -> AnchorEngine:
    return request.app.state.engine


def create_app(engine: AnchorEngine | None = None) -> FastAPI:
    api = FastAPI(title="CodeNotes", version=__version__)
    api.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    api.state.engine = engine or AnchorEngine(AppConfig())

    @api.get("/anchors")
    async def list_anchors(request: Request, path: Path, include_stale: bool = False) -> dict[str, Any]:
        source = _resolve_source(path)
        engine = _engine(request)
        recover = engine.recover if include_stale else engine.recover_visible
        try:
            recovered = await asyncio.to_thread(recover, source)
        except (OSError, VCSError) as exc:
            LOGGER.error("Unable to recover anchors for %s: %s", source, exc)
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return {"path": str(source), "anchors": [_to_view(item) for item in recovered]}

    @api.post("/anchors")
    async def create_anchor(request: Request, payload: CreateAnchorPayload) -> dict[str, Any]:
        source = _resolve_source(payload.path)
        engine = _engine(request)
        try:
            selection = LineRange(payload.start_line, payload.end_line)
            anchor = await asyncio.to_thread(engine.create_anchor, source, selection, payload.message)
            visible: List[RecoveredAnchor] = await asyncio.to_thread(engine.recover_visible, source)
        except (ValueError, AnchorFileError) as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        except (OSError, VCSError) as exc:
            LOGGER.exception("Unable to add anchor to %s", source)
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        return {
            "status": "ok",
            "anchor_id": anchor.id,
            "anchors": [_to_view(item) for item in visible],
        }

    @api.delete("/anchors/{anchor_id}")
    async def delete_anchor(request: Request, anchor_id: str, path: Path) -> dict[str, Any]:
        source = path.expanduser()
        try:
            removed = await asyncio.to_thread(_engine(request).remove_anchor, source, anchor_id)
        except AnchorFileError as exc:
            raise HTTPException(status_code=409, detail=str(exc)) from exc
        except (OSError, VCSError) as exc:
            raise HTTPException(status_code=500, detail=str(exc)) from exc
        if not removed:
            raise HTTPException(status_code=404, detail=f"Anchor {anchor_id} not found")
        return {"status": "ok", "deleted_id": anchor_id}

    return api


app = create_app()
