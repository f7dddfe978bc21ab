"""Tests for settings, environment helpers and outcome reports."""

import pytest
from pydantic import ValidationError

from study_results.config import (
    DEFAULT_KEEP_ALIVE_SECONDS,
    DEFAULT_MAX_RESULTS_DB_QUERY_SIZE,
    ResultSettings,
    get_database_url,
    get_study_logs_path,
    load_env_file,
)
from study_results.reports import Ok, RemovalReport, Skip


class TestResultSettings:
    def test_defaults(self):
        settings = ResultSettings()
        assert settings.max_results_db_query_size == DEFAULT_MAX_RESULTS_DB_QUERY_SIZE == 100
        assert settings.keep_alive_seconds == DEFAULT_KEEP_ALIVE_SECONDS == 30
        assert settings.allow_superuser is False

    @pytest.mark.parametrize("kwargs", [{"max_results_db_query_size": 0}, {"keep_alive_seconds": -1}])
    def test_rejects_non_positive_values(self, kwargs):
        with pytest.raises(ValidationError):
            ResultSettings(**kwargs)

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("SR_MAX_RESULTS_DB_QUERY_SIZE", "25")
        monkeypatch.setenv("SR_KEEP_ALIVE_SECONDS", "5")
        monkeypatch.setenv("SR_ALLOW_SUPERUSER", "true")

        settings = ResultSettings.from_env()

        assert settings.max_results_db_query_size == 25
        assert settings.keep_alive_seconds == 5.0
        assert settings.allow_superuser is True


class TestEnvironment:
    def test_load_env_file_does_not_override(self, tmp_path, monkeypatch):
        env_file = tmp_path / ".env.local"
        env_file.write_text("SR_DATABASE_URL=sqlite:///from-file.db\nSR_STUDY_LOGS_PATH=/tmp/logs\n")
        monkeypatch.setenv("SR_DATABASE_URL", "sqlite:///already-set.db")
        # Registered with monkeypatch so the value loaded from the file is removed afterwards
        monkeypatch.setenv("SR_STUDY_LOGS_PATH", "unset")
        monkeypatch.delenv("SR_STUDY_LOGS_PATH")

        load_env_file(env_file)

        assert get_database_url() == "sqlite:///already-set.db"
        assert get_study_logs_path() is not None

    def test_missing_env_file_is_ignored(self, tmp_path):
        load_env_file(tmp_path / "missing.env")

    def test_study_logs_path_unset(self, monkeypatch):
        monkeypatch.delenv("SR_STUDY_LOGS_PATH", raising=False)
        assert get_study_logs_path() is None


class TestRemovalReport:
    def test_outcomes_by_kind(self):
        report = RemovalReport()
        report.ok("component_result", 3)
        report.ok("component_result", 4)
        report.skip("upload_dir", 4, "permission denied")
        report.ok("study_result", 1)
        report.ok("group_result", 9)
        report.study_ids.add(7)

        assert report.removed_component_result_ids == [3, 4]
        assert report.removed_study_result_ids == [1]
        assert report.removed_group_result_ids == [9]
        assert report.skipped == [Skip("upload_dir", 4, "permission denied")]
        assert Ok("study_result", 1) in report.outcomes
        assert report.summary() == "4 processed, 1 skipped, 1 studies"
