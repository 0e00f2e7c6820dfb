"""
Command-line parsing and the offline paths of run_cli.
"""

from mnemo import __version__
from mnemo.presentation.cli.main import create_parser, run_cli


class TestParser:
    def test_search_arguments(self):
        args = create_parser().parse_args(
            ["search", "what did I read about rust", "--user", "u1", "-n", "5", "--policy", "planning", "--context-only"]
        )
        assert args.command == "search"
        assert args.query == "what did I read about rust"
        assert args.user == "u1"
        assert args.limit == 5
        assert args.policy == "planning"
        assert args.context_only is True

    def test_capture_arguments(self):
        args = create_parser().parse_args(["capture", "-u", "u1", "--text", "hello", "--url", "https://a.com"])
        assert args.command == "capture"
        assert args.text == "hello"
        assert args.file is None
        assert args.source == "cli"

    def test_queue_commands(self):
        parser = create_parser()
        assert parser.parse_args(["queue-status", "--limit", "3"]).limit == 3
        assert parser.parse_args(["cancel", "job-1"]).job_id == "job-1"
        assert parser.parse_args(["clean-queue"]).command == "clean-queue"


class TestRunCli:
    def test_version(self, capsys):
        assert run_cli(["--version"]) == 0
        assert __version__ in capsys.readouterr().out

    def test_no_command_prints_help(self, capsys):
        assert run_cli([]) == 0
        assert "usage" in capsys.readouterr().out.lower()

    def test_search_without_providers_fails(self, tmp_path, capsys, monkeypatch):
        monkeypatch.delenv("MNEMO_DB_URL", raising=False)
        monkeypatch.delenv("MNEMO_LLM_PROVIDER", raising=False)
        config = tmp_path / "mnemo.yaml"
        config.write_text(
            f"database:\n  url: sqlite:///{tmp_path / 'cli.db'}\n"
            "cache:\n  backend: memory\n"
            "vector:\n  backend: memory\n"
            "llm:\n  provider: none\n",
            encoding="utf-8",
        )
        assert run_cli(["--config", str(config), "search", "rust notes", "--user", "u1"]) == 1
        assert "CAPABILITY_UNAVAILABLE" in capsys.readouterr().err
