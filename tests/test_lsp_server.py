"""Tests for the language server handlers."""

from __future__ import annotations

import asyncio
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import MagicMock

import pytest
from lsprotocol import types

from codenotes.anchors.engine import AnchorEngine
from codenotes.config import AppConfig
from codenotes.lsp.server import (
    ADD_COMMAND,
    CodeNotesServer,
    InvalidArguments,
    add_comment,
    build_server,
    code_action,
    did_change,
    did_open,
    parse_add_arguments,
    to_diagnostics,
)
from codenotes.models import Anchor, LineRange, RecoveredAnchor
from codenotes.vcs.git import GitClient

TEXT = "".join(f"value_{i} = compute({i})\n" for i in range(20))


@pytest.fixture
def engine() -> AnchorEngine:
    vcs = MagicMock(spec=GitClient)
    vcs.repo_root_for.return_value = None
    return AnchorEngine(AppConfig(), vcs=vcs)


@pytest.fixture
def source(tmp_path: Path) -> Path:
    path = tmp_path / "module.py"
    path.write_text(TEXT, encoding="utf-8")
    return path


@pytest.fixture
def ls(engine: AnchorEngine) -> MagicMock:
    server = MagicMock()
    server.engine = engine
    server.debounce = 0
    server.pending_publishes = {}
    server.workspace.get_text_document.return_value = SimpleNamespace(version=1, source=TEXT)
    return server


def _published(ls: MagicMock) -> types.PublishDiagnosticsParams:
    return ls.text_document_publish_diagnostics.call_args[0][0]


def _lsp_range(start: int, end: int, end_char: int = 0) -> dict:
    return {"start": {"line": start, "character": 0}, "end": {"line": end, "character": end_char}}


class TestParseAddArguments:
    """Tests for command argument validation."""

    def test_valid_arguments(self) -> None:
        uri, selection, message = parse_add_arguments(
            ["file:///tmp/a.py", _lsp_range(2, 4, 5), "note"]
        )

        assert uri == "file:///tmp/a.py"
        assert selection == LineRange(2, 4)
        assert message == "note"

    def test_accepts_range_objects(self) -> None:
        lsp_range = types.Range(
            start=types.Position(line=1, character=0),
            end=types.Position(line=1, character=3),
        )

        _, selection, _ = parse_add_arguments(["file:///tmp/a.py", lsp_range, "note"])

        assert selection == LineRange(1, 1)

    def test_end_at_column_zero_excludes_line(self) -> None:
        _, selection, _ = parse_add_arguments(["file:///tmp/a.py", _lsp_range(2, 5), "note"])

        assert selection == LineRange(2, 4)

    @pytest.mark.parametrize(
        "arguments, message",
        [
            (["file:///tmp/a.py", _lsp_range(0, 1)], "count"),
            ([42, _lsp_range(0, 1), "note"], "URI"),
            (["file:///tmp/a.py", "0-1", "note"], "range"),
            (["file:///tmp/a.py", {"start": {"line": "x"}, "end": {"line": 1}}, "note"], "range"),
            (["file:///tmp/a.py", _lsp_range(0, 1), 7], "contentBody"),
            (["file:///tmp/a.py", _lsp_range(0, 1), "  "], "contentBody"),
        ],
    )
    def test_invalid_arguments(self, arguments: list, message: str) -> None:
        with pytest.raises(InvalidArguments, match=message):
            parse_add_arguments(arguments)

    def test_reversed_range_rejected(self) -> None:
        with pytest.raises(InvalidArguments):
            parse_add_arguments(["file:///tmp/a.py", _lsp_range(5, 2, 3), "note"])


class TestToDiagnostics:
    """Tests for diagnostic conversion."""

    def test_hint_per_located_anchor(self) -> None:
        anchor = Anchor.new("fix this", "", "patch")
        stale = Anchor.new("gone", "", "patch")

        diagnostics = to_diagnostics(
            [RecoveredAnchor(anchor, LineRange(3, 4)), RecoveredAnchor(stale, None)], TEXT
        )

        assert len(diagnostics) == 1
        diagnostic = diagnostics[0]
        assert diagnostic.message == "fix this"
        assert diagnostic.severity == types.DiagnosticSeverity.Hint
        assert diagnostic.source == "codenotes"
        assert diagnostic.range.start == types.Position(line=3, character=0)
        assert diagnostic.range.end == types.Position(line=4, character=len("value_4 = compute(4)"))

    def test_without_text(self) -> None:
        anchor = Anchor.new("fix this", "", "patch")

        diagnostics = to_diagnostics([RecoveredAnchor(anchor, LineRange(3, 4))], "")

        assert diagnostics[0].range.end == types.Position(line=4, character=0)


class TestHandlers:
    """Tests for protocol handlers."""

    def test_did_open_publishes_visible_anchors(
        self, ls: MagicMock, engine: AnchorEngine, source: Path
    ) -> None:
        engine.create_anchor(source, LineRange(10, 12), "fix this")
        params = types.DidOpenTextDocumentParams(
            text_document=types.TextDocumentItem(
                uri=source.as_uri(), language_id="python", version=1, text=TEXT
            )
        )

        asyncio.run(did_open(ls, params))

        published = _published(ls)
        assert published.uri == source.as_uri()
        assert [d.message for d in published.diagnostics] == ["fix this"]
        assert published.diagnostics[0].range.start.line == 10

    def test_did_change_uses_live_buffer(
        self, ls: MagicMock, engine: AnchorEngine, source: Path
    ) -> None:
        engine.create_anchor(source, LineRange(10, 12), "fix this")
        edited = "# header\n# header\n" + TEXT
        ls.workspace.get_text_document.return_value = SimpleNamespace(version=2, source=edited)
        params = types.DidChangeTextDocumentParams(
            text_document=types.VersionedTextDocumentIdentifier(uri=source.as_uri(), version=2),
            content_changes=[],
        )

        asyncio.run(did_change(ls, params))

        assert _published(ls).diagnostics[0].range.start.line == 12

    def test_closed_document_uses_disk_text(
        self, ls: MagicMock, engine: AnchorEngine, source: Path
    ) -> None:
        """Diagnostics span whole lines of the file read from disk."""
        engine.create_anchor(source, LineRange(10, 12), "fix this")
        ls.workspace.get_text_document.return_value = SimpleNamespace(version=None, source="")
        params = types.DidOpenTextDocumentParams(
            text_document=types.TextDocumentItem(
                uri=source.as_uri(), language_id="python", version=1, text=""
            )
        )

        asyncio.run(did_open(ls, params))

        end = _published(ls).diagnostics[0].range.end
        assert end == types.Position(line=12, character=len("value_12 = compute(12)"))

    def test_newer_change_supersedes_pending_one(
        self, ls: MagicMock, engine: AnchorEngine, source: Path
    ) -> None:
        engine.create_anchor(source, LineRange(10, 12), "fix this")
        ls.debounce = 0.05

        def change(version: int) -> types.DidChangeTextDocumentParams:
            return types.DidChangeTextDocumentParams(
                text_document=types.VersionedTextDocumentIdentifier(
                    uri=source.as_uri(), version=version
                ),
                content_changes=[],
            )

        async def edit_twice() -> None:
            await asyncio.gather(did_change(ls, change(2)), did_change(ls, change(3)))

        asyncio.run(edit_twice())

        ls.text_document_publish_diagnostics.assert_called_once()
        assert ls.pending_publishes == {}

    def test_unreadable_file_publishes_nothing(self, ls: MagicMock, tmp_path: Path) -> None:
        missing = tmp_path / "missing.py"
        missing.with_name("missing.py.json").write_text(
            '{"anchors": [{"id": "a", "message": "m", "contextPatch": "p"}]}', encoding="utf-8"
        )
        ls.workspace.get_text_document.return_value = SimpleNamespace(version=None, source=None)
        params = types.DidOpenTextDocumentParams(
            text_document=types.TextDocumentItem(
                uri=missing.as_uri(), language_id="python", version=1, text=""
            )
        )

        asyncio.run(did_open(ls, params))

        ls.text_document_publish_diagnostics.assert_not_called()

    def test_code_action_offers_add_comment(self, ls: MagicMock, source: Path) -> None:
        lsp_range = types.Range(
            start=types.Position(line=1, character=0),
            end=types.Position(line=2, character=4),
        )
        params = types.CodeActionParams(
            text_document=types.TextDocumentIdentifier(uri=source.as_uri()),
            range=lsp_range,
            context=types.CodeActionContext(diagnostics=[]),
        )

        actions = code_action(ls, params)

        assert len(actions) == 1
        assert actions[0].kind == types.CodeActionKind.QuickFix
        assert actions[0].command.command == ADD_COMMAND
        assert actions[0].command.arguments == [source.as_uri(), lsp_range]

    def test_add_comment_persists_and_publishes(
        self, ls: MagicMock, engine: AnchorEngine, source: Path
    ) -> None:
        asyncio.run(add_comment(ls, source.as_uri(), _lsp_range(10, 13), "fix this"))

        recovered = engine.recover(source)
        assert [item.anchor.message for item in recovered] == ["fix this"]
        assert recovered[0].range == LineRange(10, 12)
        assert _published(ls).diagnostics[0].range.start.line == 10

    def test_add_comment_rejects_bad_arguments(
        self, ls: MagicMock, engine: AnchorEngine, source: Path
    ) -> None:
        with pytest.raises(InvalidArguments):
            asyncio.run(add_comment(ls, source.as_uri(), _lsp_range(1, 2)))

        assert engine.recover(source) == []
        ls.text_document_publish_diagnostics.assert_not_called()


class TestBuildServer:
    """Tests for server construction."""

    def test_server_carries_engine(self, engine: AnchorEngine) -> None:
        server = build_server(engine)

        assert isinstance(server, CodeNotesServer)
        assert server.engine is engine
