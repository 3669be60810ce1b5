"""Language server publishing annotations as diagnostics."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from lsprotocol import types
from pygls.lsp.server import LanguageServer

from codenotes import __version__
from codenotes.anchors.engine import AnchorEngine
from codenotes.anchors.store import AnchorFileError
from codenotes.models import LineRange, RecoveredAnchor
from codenotes.utils.files import read_source_text, uri_to_path
from codenotes.vcs.git import VCSError

LOGGER = logging.getLogger(__name__)

ADD_COMMAND = "comment.add"
ADD_TITLE = "Add a new comment"
DIAGNOSTIC_SOURCE = "codenotes"


class InvalidArguments(ValueError):
    """Raised when a command receives arguments of the wrong shape."""


class CodeNotesServer(LanguageServer):
    """Language server owning the anchor engine shared by all handlers."""

    def __init__(
        self, engine: AnchorEngine, *args: Any, debounce: float = 0.15, **kwargs: Any
    ) -> None:
        super().__init__(*args, **kwargs)
        self.engine = engine
        self.debounce = debounce
        self.pending_publishes: Dict[str, asyncio.Task] = {}


def _field(value: Any, name: str) -> Any:
    if isinstance(value, dict):
        return value.get(name)
    return getattr(value, name, None)


def _selection_from_range(value: Any) -> LineRange:
    """Convert an LSP range (object or JSON dict) into the selected lines."""
    start, end = _field(value, "start"), _field(value, "end")
    if start is None or end is None:
        raise InvalidArguments("invalid argument type for range")
    try:
        start_line = int(_field(start, "line"))
        end_line = int(_field(end, "line"))
        end_char = int(_field(end, "character") or 0)
    except (TypeError, ValueError) as exc:
        raise InvalidArguments("invalid argument type for range") from exc
    # A selection ending at column 0 does not include that line.
    if end_line > start_line and end_char == 0:
        end_line -= 1
    try:
        return LineRange(start_line, end_line)
    except ValueError as exc:
        raise InvalidArguments(str(exc)) from exc


def parse_add_arguments(arguments: Sequence[Any]) -> Tuple[str, LineRange, str]:
    """Validate ``comment.add`` arguments: (uri, range, message)."""
    if len(arguments) != 3:
        raise InvalidArguments("invalid arguments count")
    uri, selection, message = arguments
    if not isinstance(uri, str) or not uri:
        raise InvalidArguments("invalid argument type for URI")
    line_range = _selection_from_range(selection)
    if not isinstance(message, str) or not message.strip():
        raise InvalidArguments("invalid argument type for contentBody")
    return uri, line_range, message


def to_diagnostics(recovered: Sequence[RecoveredAnchor], text: str) -> List[types.Diagnostic]:
    lines = text.splitlines()
    diagnostics: List[types.Diagnostic] = []
    for item in recovered:
        if item.range is None:
            continue
        end = item.range.end
        end_char = len(lines[end]) if end < len(lines) else 0
        diagnostics.append(
            types.Diagnostic(
                range=types.Range(
                    start=types.Position(line=item.range.start, character=0),
                    end=types.Position(line=end, character=end_char),
                ),
                message=item.anchor.message,
                severity=types.DiagnosticSeverity.Hint,
                source=DIAGNOSTIC_SOURCE,
            )
        )
    return diagnostics


def _live_text(ls: CodeNotesServer, uri: str) -> Optional[str]:
    """Buffer content of an open document; None means read it from disk."""
    document = ls.workspace.get_text_document(uri)
    if document.version is None:
        return None
    return document.source


def _recover_visible(
    engine: AnchorEngine, path: Path, text: Optional[str]
) -> Tuple[List[RecoveredAnchor], str]:
    if text is None:
        text = read_source_text(path)
    return engine.recover_visible(path, text), text


async def _recover_and_publish(ls: CodeNotesServer, uri: str) -> None:
    await asyncio.sleep(ls.debounce)
    path = uri_to_path(uri)
    try:
        visible, text = await asyncio.to_thread(
            _recover_visible, ls.engine, path, _live_text(ls, uri)
        )
    except (OSError, VCSError, AnchorFileError) as exc:
        LOGGER.error("Cannot recover anchors for %s: %s", path, exc)
        return
    ls.text_document_publish_diagnostics(
        types.PublishDiagnosticsParams(uri=uri, diagnostics=to_diagnostics(visible, text))
    )


async def publish_anchors(ls: CodeNotesServer, uri: str) -> None:
    """Recover visible anchors for ``uri`` and publish them as diagnostics.

    A later call for the same ``uri`` supersedes this one: if it is still
    waiting out the debounce delay it never runs, otherwise its result is
    dropped.
    """
    previous = ls.pending_publishes.get(uri)
    if previous is not None:
        previous.cancel()
    task = asyncio.ensure_future(_recover_and_publish(ls, uri))
    ls.pending_publishes[uri] = task
    try:
        await task
    except asyncio.CancelledError:
        if ls.pending_publishes.get(uri) is task:
            raise
        LOGGER.debug("Diagnostics for %s superseded", uri)
    finally:
        if ls.pending_publishes.get(uri) is task:
            del ls.pending_publishes[uri]


async def did_open(ls: CodeNotesServer, params: types.DidOpenTextDocumentParams) -> None:
    await publish_anchors(ls, params.text_document.uri)


async def did_change(ls: CodeNotesServer, params: types.DidChangeTextDocumentParams) -> None:
    await publish_anchors(ls, params.text_document.uri)


def code_action(ls: CodeNotesServer, params: types.CodeActionParams) -> List[types.CodeAction]:
    command = types.Command(
        title=ADD_TITLE,
        command=ADD_COMMAND,
        arguments=[params.text_document.uri, params.range],
    )
    return [types.CodeAction(title=ADD_TITLE, kind=types.CodeActionKind.QuickFix, command=command)]


async def add_comment(ls: CodeNotesServer, *arguments: Any) -> None:
    LOGGER.info("Execute command %s with %d arguments", ADD_COMMAND, len(arguments))
    uri, selection, message = parse_add_arguments(arguments)
    path = uri_to_path(uri)
    text = _live_text(ls, uri)
    await asyncio.to_thread(ls.engine.create_anchor, path, selection, message, text=text)
    await publish_anchors(ls, uri)


def build_server(engine: AnchorEngine) -> CodeNotesServer:
    server = CodeNotesServer(engine, DIAGNOSTIC_SOURCE, __version__)
    server.feature(types.TEXT_DOCUMENT_DID_OPEN)(did_open)
    server.feature(types.TEXT_DOCUMENT_DID_CHANGE)(did_change)
    server.feature(
        types.TEXT_DOCUMENT_CODE_ACTION,
        types.CodeActionOptions(code_action_kinds=[types.CodeActionKind.QuickFix]),
    )(code_action)
    server.command(ADD_COMMAND)(add_comment)
    return server
