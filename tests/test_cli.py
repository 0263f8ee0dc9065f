"""
Tests for the CLI interface.
"""
import json
import os
import tempfile
from datetime import datetime, timezone
from unittest.mock import patch

import pytest
import yaml
from typer.testing import CliRunner

from usage_ledger.cli.main import app, EXIT_CODE_PASS, EXIT_CODE_FAIL
from usage_ledger.storage.models import UsageEvent
from usage_ledger.storage.repository import JsonFileUsageStore, SqlUsageStore

runner = CliRunner()


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Keep the developer's environment out of the CLI settings."""
    for name in ("POSTGRES_URL", "USAGE_LEDGER_DATABASE_URL", "USAGE_LEDGER_DATA_FILE",
                 "USAGE_LEDGER_LOG_LEVEL", "GROQ_API_KEY"):
        monkeypatch.delenv(name, raising=False)


class TestCLI:
    """Test CLI commands."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.data_file = os.path.join(self.temp_dir, "usage.json")
        self.config_path = self._write_config({"storage": {"data_file": self.data_file}})

    def teardown_method(self):
        """Clean up test environment."""
        import shutil
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _write_config(self, config_data: dict, filename: str = "config.yaml") -> str:
        config_path = os.path.join(self.temp_dir, filename)
        with open(config_path, 'w', encoding='utf-8') as f:
            yaml.dump(config_data, f)
        return config_path

    def _append(self, **overrides):
        fields = dict(
            id="evt_1",
            user_id="user_abc",
            user_name="User ABC",
            timestamp=datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc),
            model="llama-3.3-70b-versatile",
            prompt_tokens=1200,
            completion_tokens=300,
            total_tokens=1500,
            persona="ahli-koding",
        )
        fields.update(overrides)
        JsonFileUsageStore(self.data_file).append(UsageEvent(**fields))

    def test_no_command_shows_hint(self):
        result = runner.invoke(app, ["--config", self.config_path])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Use --help" in result.output

    def test_invalid_config(self):
        """Test that a broken config file exits with failure."""
        bad_config = self._write_config({"budget": {"daily": 1}}, "bad.yaml")

        result = runner.invoke(app, ["--config", bad_config, "usage"])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Invalid configuration" in result.output

    def test_missing_config(self):
        result = runner.invoke(app, ["--config", "/nonexistent/config.yaml", "usage"])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Config file not found" in result.output

    def test_init_file_backend(self):
        result = runner.invoke(app, ["--config", self.config_path, "init"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "skipped" in result.output
        assert "using local file store" in result.output

    def test_init_relational_backend(self):
        db_path = os.path.join(self.temp_dir, "usage.db")
        config_path = self._write_config({"storage": {"database_url": f"sqlite:///{db_path}"}}, "db.yaml")

        result = runner.invoke(app, ["--config", config_path, "init"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Table token_usage created or already exists" in result.output
        assert os.path.exists(db_path)

    def test_init_failure(self):
        db_path = os.path.join(self.temp_dir, "missing", "usage.db")
        config_path = self._write_config({"storage": {"database_url": f"sqlite:///{db_path}"}}, "db.yaml")

        result = runner.invoke(app, ["--config", config_path, "init"])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Error initializing database" in result.output

    def test_usage_total(self):
        self._append()

        result = runner.invoke(app, ["--config", self.config_path, "usage", "--type", "total"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Token Usage Summary" in result.output
        assert "Total tokens: 1,500" in result.output

    def test_usage_json(self):
        self._append()

        result = runner.invoke(app, ["--config", self.config_path, "usage", "-t", "persona", "--json"])

        assert result.exit_code == EXIT_CODE_PASS
        assert json.loads(result.output) == [
            {"persona": "ahli-koding", "totalTokens": 1500, "requestCount": 1}
        ]

    def test_usage_all_on_empty_store(self):
        result = runner.invoke(app, ["--config", self.config_path, "usage"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Total tokens: 0" in result.output
        assert "No usage recorded yet" in result.output

    def test_usage_records(self):
        self._append()

        result = runner.invoke(app, ["--config", self.config_path, "usage", "--type", "records"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Recent requests" in result.output

    def test_usage_rejects_zero_days(self):
        result = runner.invoke(app, ["--config", self.config_path, "usage", "--days", "0"])

        assert result.exit_code != EXIT_CODE_PASS

    def test_seed_demo(self):
        result = runner.invoke(app, ["--config", self.config_path, "seed-demo", "--count", "12", "--seed", "7"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Inserted 12 demo usage events" in result.output
        assert len(JsonFileUsageStore(self.data_file).read_all()) == 12

    def test_usage_rejects_huge_days(self):
        result = runner.invoke(app, ["--config", self.config_path, "usage", "--days", "1000000"])

        assert result.exit_code != EXIT_CODE_PASS
        assert not isinstance(result.exception, OverflowError)

    def test_seed_demo_fresh_database(self):
        db_path = os.path.join(self.temp_dir, "fresh.db")
        config_path = self._write_config({"storage": {"database_url": f"sqlite:///{db_path}"}}, "db.yaml")

        result = runner.invoke(app, ["--config", config_path, "seed-demo", "--count", "4", "--seed", "1"])

        assert result.exit_code == EXIT_CODE_PASS
        assert "Inserted 4 demo usage events" in result.output
        assert len(SqlUsageStore(database_url=f"sqlite:///{db_path}").read_all()) == 4

    def test_seed_demo_init_failure(self):
        db_path = os.path.join(self.temp_dir, "missing", "usage.db")
        config_path = self._write_config({"storage": {"database_url": f"sqlite:///{db_path}"}}, "db.yaml")

        result = runner.invoke(app, ["--config", config_path, "seed-demo", "--count", "2"])

        assert result.exit_code == EXIT_CODE_FAIL
        assert "Error initializing database" in result.output
        assert "Inserted" not in result.output

    @patch('uvicorn.run')
    def test_serve(self, mock_run):
        result = runner.invoke(app, ["--config", self.config_path, "serve", "--port", "9001"])

        assert result.exit_code == EXIT_CODE_PASS
        mock_run.assert_called_once()
        assert mock_run.call_args.kwargs["port"] == 9001
