"""Tests for the og-exporter command line."""

import io
from unittest.mock import patch

import yaml
from rich.console import Console

from ogexporter.cli import build_parser, explain_table, main, settings_from_args
from ogexporter.config.loader import load_query_table
from ogexporter.core.errors import ExitCode

QUERIES = """
pg_lock:
  priority: 5
  query:
    - name: pg_lock
      sql: SELECT mode, count(*) AS count FROM pg_locks GROUP BY mode
      timeout: 1
    - name: pg_lock_legacy
      sql: SELECT mode, 0 AS count FROM pg_locks
      status: disable
  metrics:
    - mode:
        usage: LABEL
    - count:
        usage: GAUGE
"""


def _write_queries(tmp_path):
    path = tmp_path / "queries.yaml"
    path.write_text(QUERIES, encoding="utf-8")
    return path


class TestSettingsFromArgs:
    def test_flags_override_defaults(self):
        args = build_parser().parse_args(
            [
                "--url",
                "postgresql://db:26000/postgres",
                "--constant-labels",
                "env=prod",
                "--web.listen-address",
                "127.0.0.1:9187",
                "--parallel",
                "2",
                "--time-to-string",
            ]
        )

        settings = settings_from_args(args)

        assert settings.server_labels() == {"env": "prod", "server": "db:26000"}
        assert settings.listen_address == "127.0.0.1:9187"
        assert settings.parallel == 2
        assert settings.time_to_string is True

    def test_unset_flags_keep_defaults(self):
        settings = settings_from_args(build_parser().parse_args([]))

        assert settings.fail_fast is False
        assert settings.telemetry_path == "/metrics"


class TestMain:
    """Tests for main()."""

    def test_dry_run(self, tmp_path, capsys):
        path = _write_queries(tmp_path)

        assert main(["--config", str(path), "--dry-run"]) == ExitCode.SUCCESS

        dumped = yaml.safe_load(capsys.readouterr().out)
        assert list(dumped) == ["pg_lock"]
        assert dumped["pg_lock"]["priority"] == 5
        assert [q["status"] for q in dumped["pg_lock"]["query"]] == ["enable", "disable"]

    def test_missing_config(self, tmp_path):
        assert main(["--config", str(tmp_path / "missing.yaml"), "--dry-run"]) == ExitCode.CONFIG_ERROR

    def test_invalid_settings(self):
        assert main(["--parallel", "0"]) == ExitCode.CONFIG_ERROR

    def test_serves_by_default(self, tmp_path):
        with patch("ogexporter.cli.uvicorn.run") as run:
            assert main(["--config", str(_write_queries(tmp_path)), "--web.listen-address", ":9999"]) == 0

        _, kwargs = run.call_args
        assert kwargs["host"] == "0.0.0.0"
        assert kwargs["port"] == 9999


class TestExplain:
    def test_explain_table(self, tmp_path):
        table = load_query_table(_write_queries(tmp_path))
        console = Console(file=io.StringIO(), width=200)

        console.print(explain_table(table))
        output = console.file.getvalue()

        assert "pg_lock_legacy" in output
        assert "disable" in output
        assert "1s" in output
