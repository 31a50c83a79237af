"""Tests for the command line entry point."""

from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

import pytest
from conftest import FakeTaskStore, make_item

from taskmirror import __version__
from taskmirror.cli import build_parser, build_runtime_config, load_file_config, main
from taskmirror.errors import ConfigurationError, IndexWriteError, SourceFetchError
from taskmirror.service import MirrorService
from taskmirror.sources import StaticSource
from taskmirror.sync.index import MemoryTaskIndexStore


@pytest.fixture(autouse=True)
def no_dotenv(monkeypatch):
    monkeypatch.setattr("taskmirror.cli.load_dotenv", lambda: False)


@pytest.fixture(autouse=True)
def quiet_logging(monkeypatch):
    monkeypatch.setattr("taskmirror.cli.setup_logging", MagicMock())


@pytest.fixture
def creds(monkeypatch):
    monkeypatch.setenv("CLICKUP_API_KEY", "pk")
    monkeypatch.setenv("CLICKUP_WORKSPACE_ID", "9001")
    monkeypatch.setenv("TASKMIRROR_SOURCE", "none")


def _fake_service(config, index_store=None):
    return MirrorService(
        config,
        source=StaticSource([make_item("f1")]),
        store=FakeTaskStore(),
        index_store=index_store or MemoryTaskIndexStore(),
    )


class TestParser:
    def test_subcommand_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])

    def test_serve_options(self):
        args = build_parser().parse_args(
            ["--debug", "serve", "--port", "8080", "--interval", "15", "--no-schedule"]
        )
        assert args.command == "serve"
        assert args.debug is True
        assert args.port == 8080
        assert args.interval == 15
        assert args.no_schedule is True

    def test_version(self, capsys):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["--version"])
        assert __version__ in capsys.readouterr().out


class TestCron:
    def test_prints_expression(self, capsys):
        assert main(["cron", "90"]) == 0
        assert capsys.readouterr().out.strip() == "30 */1 * * *"

    def test_rejects_zero(self, capsys):
        assert main(["cron", "0"]) == 2
        assert "at least 1" in capsys.readouterr().err


class TestConfigErrors:
    def test_missing_credentials_exit_2(self, capsys):
        assert main(["sync"]) == 2
        assert "Configuration error" in capsys.readouterr().err

    def test_invalid_config_file_exit_2(self, tmp_path, capsys, creds):
        cfg = tmp_path / ".taskmirror" / "config.yml"
        cfg.parent.mkdir()
        cfg.write_text("mirror:\n  interval_minutes: 0\n")
        assert main(["sync"]) == 2
        assert "Invalid config file" in capsys.readouterr().err

    def test_load_file_config_wraps_yaml_errors(self, tmp_path):
        cfg = tmp_path / ".taskmirror" / "config.yml"
        cfg.parent.mkdir()
        cfg.write_text("clickup: [unclosed\n")
        with pytest.raises(ConfigurationError, match="Invalid config file"):
            load_file_config()

    def test_build_runtime_config_reads_file(self, tmp_path, creds):
        cfg = tmp_path / ".taskmirror" / "config.yml"
        cfg.parent.mkdir()
        cfg.write_text("clickup:\n  list: From File\nmirror:\n  interval_minutes: 45\n")
        config = build_runtime_config({"port": 9000})
        assert config.container_path == ["Drive Mirror", "From File"]
        assert config.interval_minutes == 45
        assert config.port == 9000


class TestSyncCommand:
    def test_text_report(self, creds, capsys):
        with patch.object(MirrorService, "from_config", side_effect=_fake_service):
            assert main(["sync"]) == 0
        out = capsys.readouterr().out
        assert "Mirrored 1 items: 1 created" in out

    def test_json_report(self, creds, capsys):
        with patch.object(MirrorService, "from_config", side_effect=_fake_service):
            assert main(["sync", "--json"]) == 0
        data = json.loads(capsys.readouterr().out)
        assert data["counts"]["created"] == 1

    def test_index_not_saved_exit_1(self, creds):
        class Failing(MemoryTaskIndexStore):
            def save(self, index):
                raise IndexWriteError("disk full")

        with patch.object(
            MirrorService,
            "from_config",
            side_effect=lambda config: _fake_service(config, Failing()),
        ):
            assert main(["sync"]) == 1

    def test_source_error_exit_1(self, creds, capsys):
        service = MagicMock()
        service.run_pass.side_effect = SourceFetchError("drive", "unreachable")
        with patch.object(MirrorService, "from_config", return_value=service):
            assert main(["sync"]) == 1
        assert "[drive] unreachable" in capsys.readouterr().err

    def test_index_path_override(self, creds, tmp_path):
        seen = {}

        def capture(config):
            seen["path"] = config.index_path
            return _fake_service(config)

        with patch.object(MirrorService, "from_config", side_effect=capture):
            main(["--index-path", str(tmp_path / "idx.json"), "sync"])
        assert seen["path"] == tmp_path / "idx.json"


class TestCheckCommand:
    def test_all_ok(self, creds, capsys):
        service = MagicMock()
        service.verify_connections.return_value = {
            "clickup": {"status": True, "message": "Connected to workspace: Acme"},
            "none": {"status": False, "message": "No remote source configured"},
        }
        with patch.object(MirrorService, "from_config", return_value=service):
            assert main(["check"]) == 0
        out = capsys.readouterr().out
        assert "[OK  ] clickup" in out
        assert "[FAIL] none" in out

    def test_clickup_failure(self, creds):
        service = MagicMock()
        service.verify_connections.return_value = {
            "clickup": {"status": False, "message": "Connection failed"},
        }
        with patch.object(MirrorService, "from_config", return_value=service):
            assert main(["check"]) == 1


class TestServeCommand:
    def test_runs_uvicorn(self, creds):
        with patch("uvicorn.run") as run, patch.object(
            MirrorService, "from_config", side_effect=_fake_service
        ):
            assert main(["serve", "--port", "8123", "--no-schedule"]) == 0
        kwargs = run.call_args.kwargs
        assert kwargs["port"] == 8123
        assert kwargs["log_config"] is None
