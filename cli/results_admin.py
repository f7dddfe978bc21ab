"""Export and removal of study results from the command line."""

import logging
from pathlib import Path
from typing import Dict, Optional

import click

from study_results.config import (
    ResultSettings,
    get_result_uploads_path,
    get_study_logs_path,
    load_env_file,
)
from study_results.db import get_engine, make_session_factory, session_scope
from study_results.db.repository import ResultRepository
from study_results.exceptions import ResultsError
from study_results.ids import ComponentResultIdsExtractor, extract_ids
from study_results.remover import ResultRemover
from study_results.serialization import human_readable_bytes
from study_results.streamer import ResultsType, ResultStreamer
from study_results.study_log import StudyLogger
from study_results.uploads import ResultUploads

logger = logging.getLogger(__name__)

SELECTOR_OPTIONS = (
    ("study_ids", "studyIds"),
    ("component_ids", "componentIds"),
    ("component_result_ids", "componentResultIds"),
    ("study_result_ids", "studyResultIds"),
    ("batch_ids", "batchIds"),
    ("group_ids", "groupIds"),
)


class Services:
    """Streamer and remover wired to the configured database and directories."""

    def __init__(self, database_url: Optional[str] = None, echo: bool = False):
        engine = get_engine(echo=echo, url=database_url)
        self.session_factory = make_session_factory(engine)
        uploads = ResultUploads(get_result_uploads_path())
        study_logger = StudyLogger(get_study_logs_path())
        settings = ResultSettings.from_env()
        self.streamer = ResultStreamer(self.session_factory, uploads, study_logger, settings)
        self.remover = ResultRemover(self.session_factory, uploads, study_logger, settings)

    def extract_component_result_ids(self, selector: Dict[str, str]):
        with session_scope(self.session_factory) as session:
            return ComponentResultIdsExtractor(ResultRepository(session)).extract(selector)


def _selector(options: Dict[str, Optional[str]]) -> Dict[str, str]:
    selector = {field: options[name] for name, field in SELECTOR_OPTIONS if options.get(name)}
    if not selector:
        raise click.UsageError("Select results with at least one of the --*-ids options")
    return selector


def _fail(e: Exception) -> None:
    click.echo(f"✗ {e}", err=True)
    raise click.Abort() from e


def selector_options(func):
    """Add one ``--<entity>-ids`` option per selector field."""
    for name, field in reversed(SELECTOR_OPTIONS):
        flag = "--" + name.replace("_", "-")
        func = click.option(flag, name, default=None, help=f"{field}: comma-separated IDs or ranges, e.g. '1,4-6'")(
            func
        )
    return func


@click.group()
@click.option("--database-url", envvar="SR_DATABASE_URL", default=None, help="Overrides SR_DATABASE_URL")
@click.option("--echo", is_flag=True, help="Echo SQL statements")
@click.option("-v", "--verbose", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx: click.Context, database_url: Optional[str], echo: bool, verbose: bool):
    """Study result export and removal commands."""
    load_env_file()
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s: %(message)s",
    )
    ctx.obj = {"database_url": database_url, "echo": echo}


def _services(ctx: click.Context) -> Services:
    try:
        return Services(ctx.obj["database_url"], ctx.obj["echo"])
    except ValueError as e:
        click.echo(f"✗ Configuration error: {e}", err=True)
        raise click.Abort() from e


@cli.command("export-study")
@click.argument("study_id", type=int)
@click.option("--user-id", type=int, required=True, help="Exporting user")
@click.option("--output", "-o", type=click.Path(dir_okay=False, path_type=Path), required=True)
@click.pass_context
def export_study(ctx: click.Context, study_id: int, user_id: int, output: Path):
    """Write all study results of a study as a JSON array.

    Example:
        sr-results export-study 3 --user-id 1 -o study_3.json
    """
    services = _services(ctx)
    try:
        with open(output, "wb") as sink:
            report = services.streamer.write_study_results_by_study(study_id, user_id, sink)
    except ResultsError as e:
        _fail(e)
    click.echo(f"✓ Exported study results of study {study_id} to {output} ({report.summary()})")


@cli.command("export-results")
@selector_options
@click.option("--user-id", type=int, required=True, help="Exporting user")
@click.option(
    "--type",
    "results_type",
    type=click.Choice([t.value for t in ResultsType], case_sensitive=False),
    default=ResultsType.COMBINED.value,
    show_default=True,
)
@click.option("--output", "-o", type=click.Path(dir_okay=False, path_type=Path), required=True)
@click.pass_context
def export_results(ctx: click.Context, user_id: int, results_type: str, output: Path, **options):
    """Export selected component results as zip (or metadata JSON).

    Example:
        sr-results export-results --study-result-ids 10-20 --user-id 1 -o results.zip
    """
    services = _services(ctx)
    results_type = ResultsType(results_type.upper())
    try:
        ids = services.extract_component_result_ids(_selector(options))
        with open(output, "wb") as sink:
            report = services.streamer.write_results(ids, user_id, results_type, sink)
    except ResultsError as e:
        _fail(e)
    click.echo(f"✓ Exported {len(report.ids('component_result'))} component results to {output}")
    for skip in report.skipped:
        click.echo(f"  skipped {skip.kind} {skip.entity_id}: {skip.reason}")


@cli.command("export-data")
@selector_options
@click.option("--user-id", type=int, required=True, help="Exporting user")
@click.option("--output", "-o", type=click.Path(dir_okay=False, path_type=Path), required=True)
@click.pass_context
def export_data(ctx: click.Context, user_id: int, output: Path, **options):
    """Write the result data of selected component results, one per line."""
    services = _services(ctx)
    try:
        ids = services.extract_component_result_ids(_selector(options))
        with open(output, "wb") as sink:
            report = services.streamer.write_component_result_data(ids, user_id, sink)
    except ResultsError as e:
        _fail(e)
    click.echo(f"✓ Exported result data to {output} ({report.summary()})")


@cli.command("remove-study-results")
@click.argument("study_result_ids")
@click.option("--user-id", type=int, required=True, help="Removing user")
@click.confirmation_option(prompt="Remove these study results including all their data and files?")
@click.pass_context
def remove_study_results(ctx: click.Context, study_result_ids: str, user_id: int):
    """Remove study results, e.g. '5,8-12'."""
    services = _services(ctx)
    try:
        report = services.remover.remove_study_results(extract_ids(study_result_ids), user_id)
    except ResultsError as e:
        _fail(e)
    click.echo(
        f"✓ Removed {len(report.removed_study_result_ids)} study results and "
        f"{len(report.removed_component_result_ids)} component results"
    )
    if report.upload_bytes:
        click.echo(f"  freed {human_readable_bytes(report.upload_bytes)} of uploaded files")
    for skip in report.skipped:
        click.echo(f"  skipped {skip.kind} {skip.entity_id}: {skip.reason}")


@cli.command("remove-component-results")
@click.argument("component_result_ids")
@click.option("--user-id", type=int, required=True, help="Removing user")
@click.option("--remove-empty-study-results", is_flag=True, help="Also remove study results left empty")
@click.confirmation_option(prompt="Remove these component results including their data and files?")
@click.pass_context
def remove_component_results(
    ctx: click.Context, component_result_ids: str, user_id: int, remove_empty_study_results: bool
):
    """Remove component results, e.g. '5,8-12'."""
    services = _services(ctx)
    try:
        report = services.remover.remove_component_results(
            extract_ids(component_result_ids), user_id, remove_empty_study_results
        )
    except ResultsError as e:
        _fail(e)
    click.echo(
        f"✓ Removed {len(report.removed_component_result_ids)} component results and "
        f"{len(report.removed_study_result_ids)} empty study results"
    )
    for skip in report.skipped:
        click.echo(f"  skipped {skip.kind} {skip.entity_id}: {skip.reason}")


@cli.command("remove-worker")
@click.argument("worker_id", type=int)
@click.option("--user-id", type=int, required=True, help="Removing user")
@click.confirmation_option(prompt="Remove this worker and all its results?")
@click.pass_context
def remove_worker(ctx: click.Context, worker_id: int, user_id: int):
    """Remove a worker together with all its study results."""
    services = _services(ctx)
    try:
        report = services.remover.remove_worker(worker_id, user_id)
    except ResultsError as e:
        _fail(e)
    click.echo(f"✓ Removed worker {worker_id} and {len(report.removed_study_result_ids)} study results")


if __name__ == "__main__":
    cli()
