import io
import json
import zipfile

import pytest
from click.testing import CliRunner
from sqlalchemy import create_engine

from cli.db_admin import cli as db_cli
from cli.results_admin import cli
from study_results.db import init_db, session_scope
from study_results.db.repository import ResultRepository
from study_results.uploads import ResultUploads


@pytest.fixture
def engine(tmp_path):
    """File database so the CLI's own engine sees the seeded rows."""
    engine = create_engine(f"sqlite:///{tmp_path / 'results.db'}")
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def run(engine, tmp_path):
    runner = CliRunner()
    env = {
        "SR_RESULT_UPLOADS_PATH": str(tmp_path / "uploads"),
        "SR_STUDY_LOGS_PATH": str(tmp_path / "logs"),
    }

    def _run(*args, **kwargs):
        return runner.invoke(cli, ["--database-url", str(engine.url), *map(str, args)], env=env, **kwargs)

    return _run


def _count_study_results(session_factory, study_id):
    with session_scope(session_factory) as session:
        return ResultRepository(session).count_study_results_by_study(study_id)


def test_export_study(world, run, tmp_path):
    output = tmp_path / "study.json"
    result = run("export-study", world["study"], "--user-id", world["alice"], "-o", output)

    assert result.exit_code == 0, result.output
    assert "✓ Exported study results" in result.output
    assert [row["id"] for row in json.loads(output.read_text())] == [world["a"], world["b"], world["c"]]


def test_export_study_without_access(world, run, tmp_path):
    result = run("export-study", world["study"], "--user-id", world["bob"], "-o", tmp_path / "study.json")

    assert result.exit_code == 1
    assert "✗ No access" in result.output


def test_export_results_as_zip(world, run, tmp_path):
    output = tmp_path / "results.zip"
    result = run(
        "export-results",
        "--study-result-ids",
        world["a"],
        "--user-id",
        world["alice"],
        "--type",
        "data_only",
        "-o",
        output,
    )

    assert result.exit_code == 0, result.output
    assert "Exported 2 component results" in result.output
    with zipfile.ZipFile(io.BytesIO(output.read_bytes())) as archive:
        assert len(archive.namelist()) == 2


def test_export_results_requires_a_selector(world, run, tmp_path):
    result = run("export-results", "--user-id", world["alice"], "-o", tmp_path / "results.zip")

    assert result.exit_code == 2
    assert "--*-ids" in result.output


def test_export_data(world, run, tmp_path):
    output = tmp_path / "data.txt"
    result = run("export-data", "--component-ids", world["component2"], "--user-id", world["alice"], "-o", output)

    assert result.exit_code == 0, result.output
    assert output.read_text() == "r1c2\n"


def test_remove_study_results(world, run, session_factory):
    result = run("remove-study-results", f"{world['a']},{world['c']}", "--user-id", world["alice"], "--yes")

    assert result.exit_code == 0, result.output
    assert "✓ Removed 2 study results and 3 component results" in result.output
    assert _count_study_results(session_factory, world["study"]) == 1


def test_remove_study_results_reports_freed_uploads(world, run, tmp_path):
    upload_dir = ResultUploads(tmp_path / "uploads").get_result_uploads_dir(world["a"], world["a1"])
    upload_dir.mkdir(parents=True)
    (upload_dir / "recording.wav").write_bytes(b"\0" * 2048)

    result = run("remove-study-results", world["a"], "--user-id", world["alice"], "--yes")

    assert result.exit_code == 0, result.output
    assert "freed 2.0 KiB of uploaded files" in result.output
    assert not upload_dir.exists()


def test_remove_needs_confirmation(world, run, session_factory):
    result = run("remove-study-results", world["a"], "--user-id", world["alice"], input="n\n")

    assert result.exit_code == 1
    assert _count_study_results(session_factory, world["study"]) == 3


def test_remove_component_results_with_empty_study_results(world, run, session_factory):
    result = run(
        "remove-component-results", world["b1"], "--user-id", world["alice"], "--remove-empty-study-results", "--yes"
    )

    assert result.exit_code == 0, result.output
    assert "1 component results and 1 empty study results" in result.output
    assert _count_study_results(session_factory, world["study"]) == 2


def test_remove_component_results_malformed_ids(world, run):
    result = run("remove-component-results", "3-1", "--user-id", world["alice"], "--yes")

    assert result.exit_code == 1
    assert "✗ Invalid ID range" in result.output


def test_remove_worker(world, run, session_factory):
    result = run("remove-worker", world["worker"], "--user-id", world["alice"], "--yes")

    assert result.exit_code == 0, result.output
    assert f"✓ Removed worker {world['worker']} and 3 study results" in result.output
    assert _count_study_results(session_factory, world["study"]) == 0


def test_db_check(world, engine):
    result = CliRunner().invoke(db_cli, ["check"], env={"SR_DATABASE_URL": str(engine.url)})

    assert result.exit_code == 0, result.output
    assert "✓ Database connection successful" in result.output
    assert "Studies: 1" in result.output


def test_db_init_without_url(monkeypatch):
    monkeypatch.delenv("SR_DATABASE_URL", raising=False)
    monkeypatch.delenv("DATABASE_URL", raising=False)
    monkeypatch.setattr("cli.db_admin.load_env_file", lambda: None)

    result = CliRunner().invoke(db_cli, ["init"])

    assert result.exit_code == 1
    assert "✗ Configuration error" in result.output
