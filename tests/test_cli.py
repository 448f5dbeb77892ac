"""
Tests for the clipsync command line.

Covers:
- Argument parsing
- History commands against a state file in a temp dir
- Search filters and JSON export
- Sync commands without a configured backend
- Key export
"""

import json
from datetime import date
from unittest.mock import patch

import pytest

from clipsync.cli.__main__ import build_parser, run
from clipsync.config import Settings


@pytest.fixture
def settings(tmp_path):
    settings = Settings(data_dir=tmp_path, _env_file=None)
    with patch("clipsync.cli.__main__.get_settings", return_value=settings):
        yield settings


async def invoke(*argv) -> int:
    return await run(build_parser().parse_args(list(argv)))


class TestParser:
    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_history_options(self):
        args = build_parser().parse_args(["history", "-l", "5", "--json"])
        assert args.command == "history"
        assert args.limit == 5
        assert args.json is True

    def test_sync_disable_clear_remote(self):
        args = build_parser().parse_args(["sync", "disable", "--clear-remote"])
        assert args.sync_action == "disable"
        assert args.clear_remote is True

    def test_search_type_choices(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["search", "x", "--type", "video"])

    def test_search_query_optional(self):
        args = build_parser().parse_args(["search", "--length", "short", "--period", "week"])
        assert args.query == ""
        assert args.length == "short"
        assert args.period == "week"

    def test_export_output(self):
        assert build_parser().parse_args(["export"]).output is None
        assert build_parser().parse_args(["export", "-o", "out.json"]).output == "out.json"


class TestHistoryCommands:
    @pytest.mark.asyncio
    async def test_add_then_history(self, settings, capsys):
        assert await invoke("add", "https://example.com") == 0
        assert await invoke("history", "--json") == 0

        out = capsys.readouterr().out
        assert "✓ Added url item" in out
        history = json.loads(out[out.index("[") :])
        assert history[0]["content"] == "https://example.com"

    @pytest.mark.asyncio
    async def test_duplicate_add(self, settings, capsys):
        await invoke("add", "same")
        await invoke("add", "same")

        assert "Nothing added" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_empty_history(self, settings, capsys):
        await invoke("history")
        assert "(No clipboard history)" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_search_and_delete(self, settings, capsys):
        await invoke("add", "groceries: milk")
        await invoke("search", "milk", "--json")
        out = capsys.readouterr().out
        item_id = json.loads(out[out.index("[") :])[0]["id"]

        await invoke("favorite", str(item_id))
        await invoke("delete", str(item_id))
        await invoke("delete", str(item_id))

        out = capsys.readouterr().out
        assert "✓ Added to favorites" in out
        assert f"✓ Deleted {item_id}" in out
        assert f"✗ No item {item_id}" in out

    @pytest.mark.asyncio
    async def test_search_filters(self, settings, capsys):
        await invoke("add", "https://docs.example.com/guide", "--source", "https://docs.example.com/guide")
        await invoke("add", "w" * 260)
        capsys.readouterr()

        await invoke("search", "--source", "docs", "--json")
        by_source = json.loads(capsys.readouterr().out)
        await invoke("search", "--length", "long", "--period", "today", "--json")
        long_today = json.loads(capsys.readouterr().out)

        assert [i["content"] for i in by_source] == ["https://docs.example.com/guide"]
        assert [len(i["content"]) for i in long_today] == [260]

    @pytest.mark.asyncio
    async def test_search_invalid_date(self, settings, capsys):
        assert await invoke("search", "--since", "someday") == 1
        assert "Invalid date" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_export_to_file(self, settings, tmp_path, capsys):
        await invoke("add", "keep a copy")
        target = tmp_path / "backup.json"

        assert await invoke("export", "--output", str(target)) == 0

        data = json.loads(target.read_text())
        assert [i["content"] for i in data["history"]] == ["keep a copy"]
        assert data["settings"]["theme"] == "auto"
        assert "exportDate" in data
        assert "✓ Exported 1 items" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_export_default_name(self, settings, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)

        await invoke("export")

        assert (tmp_path / f"clipsync-export-{date.today().isoformat()}.json").exists()

    @pytest.mark.asyncio
    async def test_export_to_stdout(self, settings, capsys):
        await invoke("add", "printed")
        capsys.readouterr()

        await invoke("export", "-o", "-")

        assert json.loads(capsys.readouterr().out)["history"][0]["content"] == "printed"


class TestSyncCommands:
    @pytest.mark.asyncio
    async def test_status_not_configured(self, settings, capsys):
        assert await invoke("sync", "status") == 0
        assert "not configured" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_sync_now_not_configured(self, settings, capsys):
        assert await invoke("sync", "now") == 1
        assert "✗ Cloud sync is not configured" in capsys.readouterr().out

    @pytest.mark.asyncio
    async def test_key_export(self, settings, capsys):
        await invoke("key", "export")

        jwk = json.loads(capsys.readouterr().out.splitlines()[0])
        assert jwk["kty"] == "oct"

    @pytest.mark.asyncio
    async def test_key_import_invalid(self, settings, capsys):
        assert await invoke("key", "import", "nonsense") == 1
        assert "Invalid key material" in capsys.readouterr().out
