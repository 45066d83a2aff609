"""Tests for the command-line interface.

Tests exit codes, default data directory layout and --dry-run.
"""

import json
import subprocess
import sys

import pytest

from mongo_extractor.__main__ import EXIT_APPLICATION_ERROR, EXIT_OK, EXIT_USER_ERROR, run

pytestmark = [
    pytest.mark.usefixtures("restore_logging"),
    pytest.mark.skipif(sys.platform == "win32", reason="needs an executable script"),
]


@pytest.fixture
def data_dir(tmp_path, sample_parameters, fake_mongoexport, monkeypatch):
    monkeypatch.setenv("MONGO_EXTRACTOR_MONGOEXPORT", str(fake_mongoexport.executable))
    monkeypatch.setenv("MONGO_EXTRACTOR_MAX_RETRIES", "1")
    directory = tmp_path / "data"
    directory.mkdir()
    (directory / "config.json").write_text(json.dumps({"parameters": sample_parameters}), encoding="utf-8")
    return directory


class TestCLIHelp:
    """Tests for CLI help and basic invocation."""

    def test_help_flag(self):
        result = subprocess.run(
            [sys.executable, "-m", "mongo_extractor", "--help"],
            capture_output=True,
            text=True,
        )

        assert result.returncode == 0
        assert "--data-dir" in result.stdout
        assert "--dry-run" in result.stdout


class TestCLIRun:
    """Tests for a run with the data directory layout."""

    def test_success(self, data_dir, fake_mongoexport):
        fake_mongoexport.configure(stdout=['{"_id":{"$oid":"5f1d7a"}}'])

        assert run(["--data-dir", str(data_dir)]) == EXIT_OK

        tables = data_dir / "out" / "tables"
        assert (tables / "restaurants.csv").read_text(encoding="utf-8") == '"_id"\n"5f1d7a"\n'
        assert (tables / "restaurants.csv.manifest").exists()
        assert not (data_dir / "out" / "state.json").exists()

    def test_explicit_paths(self, data_dir, fake_mongoexport, tmp_path):
        output = tmp_path / "elsewhere" / "tables"

        code = run(["--config", str(data_dir / "config.json"), "--output", str(output)])

        assert code == EXIT_OK
        assert (output / "restaurants.csv").exists()

    def test_missing_config_is_user_error(self, tmp_path, capsys):
        assert run(["--data-dir", str(tmp_path / "nowhere")]) == EXIT_USER_ERROR

        assert "Configuration file not found" in capsys.readouterr().out

    def test_classified_failure_is_user_error(self, data_dir, fake_mongoexport, capsys):
        fake_mongoexport.configure(stderr="Failed: EOF", exit_code=1)

        assert run(["--data-dir", str(data_dir)]) == EXIT_USER_ERROR

        assert "Timeout occurred while waiting for data" in capsys.readouterr().out

    def test_unclassified_failure_is_application_error(self, data_dir, fake_mongoexport, capsys):
        fake_mongoexport.configure(stderr="unexpected crash", exit_code=134)

        assert run(["--data-dir", str(data_dir)]) == EXIT_APPLICATION_ERROR

        out = capsys.readouterr().out
        assert 'Export "restaurants" failed.' in out
        assert "unexpected crash" in out
        assert "s3cret" not in out

    def test_settings_from_env_file(self, tmp_path, sample_parameters, fake_mongoexport, monkeypatch):
        # setenv first so the variables loaded from the file are removed afterwards
        for name in ("MONGO_EXTRACTOR_MONGOEXPORT", "MONGO_EXTRACTOR_MAX_RETRIES"):
            monkeypatch.setenv(name, "")
            monkeypatch.delenv(name)
        directory = tmp_path / "data"
        directory.mkdir()
        (directory / "config.json").write_text(json.dumps({"parameters": sample_parameters}), encoding="utf-8")
        env_file = tmp_path / "extractor.env"
        env_file.write_text(
            f"MONGO_EXTRACTOR_MONGOEXPORT={fake_mongoexport.executable}\nMONGO_EXTRACTOR_MAX_RETRIES=1\n",
            encoding="utf-8",
        )
        fake_mongoexport.configure(stdout=['{"_id":"a"}'])

        assert run(["--data-dir", str(directory), "--env-file", str(env_file)]) == EXIT_OK

        assert len(fake_mongoexport.calls()) == 1
        assert (directory / "out" / "tables" / "restaurants.csv").exists()

    def test_json_log(self, data_dir, capsys):
        assert run(["--data-dir", str(data_dir), "--json-log"]) == EXIT_OK

        lines = [json.loads(line) for line in capsys.readouterr().out.splitlines() if line.startswith("{")]
        assert any(line["message"] == 'Exporting "restaurants"' for line in lines)


class TestCLIDryRun:
    """Tests for --dry-run functionality."""

    def test_commands_logged_not_run(self, data_dir, fake_mongoexport, capsys):
        assert run(["--data-dir", str(data_dir), "--dry-run"]) == EXIT_OK

        out = capsys.readouterr().out
        assert "[DRY RUN]" in out
        assert '{"borough": "Bronx"}' in out
        assert "s3cret" not in out
        assert fake_mongoexport.calls() == []
        assert not (data_dir / "out").exists()

    def test_incremental_filter_from_state(self, data_dir, capsys, sample_parameters):
        del sample_parameters["query"]
        sample_parameters["incrementalFetchingColumn"] = "updatedAt"
        (data_dir / "config.json").write_text(json.dumps({"parameters": sample_parameters}), encoding="utf-8")
        (data_dir / "in").mkdir()
        (data_dir / "in" / "state.json").write_text(json.dumps({"lastFetchedRow": 41}), encoding="utf-8")

        assert run(["--data-dir", str(data_dir), "--dry-run"]) == EXIT_OK

        assert '{"updatedAt":{"$gte":41}}' in capsys.readouterr().out
