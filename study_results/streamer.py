"""Paginated export of result data.

Every export reads the database page by page, each page in its own
transaction, and writes what it reads straight into a sink. Two flavours
per operation:

* ``write_*`` writes into a caller-supplied binary file and returns an
  ``ExportReport`` once done.
* ``stream_*`` returns a lazy iterator of byte chunks (for HTTP response
  bodies). Selectors are validated before the iterator is returned, so a
  missing user or entity fails the call instead of the stream.

Export is best-effort: an entity the user may not see, or one that
vanished between the count and the page fetch, is logged and skipped.
A database error stops a row or data export (a zip or metadata export skips
the affected study instead) but never leaves the JSON output unclosed.
"""

from __future__ import annotations

import io
import logging
import os
import tempfile
import zipfile
from contextlib import contextmanager
from enum import Enum
from pathlib import Path
from typing import Any, BinaryIO, Callable, Dict, Iterable, Iterator, List, NamedTuple, Optional, Set, TextIO, Tuple

from sqlalchemy.exc import SQLAlchemyError

from study_results.checker import Checker
from study_results.config import ResultSettings
from study_results.db.models import JATOS_WORKER, MT_SANDBOX_WORKER, MT_WORKER, UserRecord
from study_results.db.repository import ResultRepository
from study_results.db.session import SessionFactory, session_scope
from study_results.exceptions import NotFoundError, ResultsError
from study_results.json_stream import JsonStreamWriter
from study_results.reports import ExportReport
from study_results.serialization import (
    UploadFileMetadata,
    component_result_metadata,
    component_result_row,
    human_readable_bytes,
    study_result_metadata,
    study_result_row,
)
from study_results.streaming import stream_from_producer
from study_results.study_log import StudyLogger
from study_results.uploads import ResultUploads, get_results_path_for_zip
from study_results.zip_util import add_data_to_zip, add_dir_to_zip, add_fileobj_to_zip

logger = logging.getLogger(__name__)

EXPORT_RESULTS_MSG = "Exported results (files and/or data)"
EXPORT_DATA_MSG = "Exported result data to file"
METADATA_FILENAME = "metadata.json"


class ResultsType(Enum):
    """What a zip export contains."""

    COMBINED = "COMBINED"
    DATA_ONLY = "DATA_ONLY"
    FILES_ONLY = "FILES_ONLY"
    METADATA_ONLY = "METADATA_ONLY"

    @property
    def includes_data(self) -> bool:
        return self in (ResultsType.COMBINED, ResultsType.DATA_ONLY)

    @property
    def includes_files(self) -> bool:
        return self in (ResultsType.COMBINED, ResultsType.FILES_ONLY)

    @property
    def includes_metadata(self) -> bool:
        return self in (ResultsType.COMBINED, ResultsType.METADATA_ONLY)


class _Pass(NamedTuple):
    """One count query plus the matching page fetch."""

    count: Callable[[ResultRepository], int]
    fetch: Callable[[ResultRepository, int, int], list]


_PageSerializer = Callable[[ResultRepository, Checker, UserRecord, list, ExportReport], List[str]]


@contextmanager
def _text_sink(sink: BinaryIO) -> Iterator[TextIO]:
    """UTF-8 text view of a binary sink; the sink itself stays open."""
    fp = io.TextIOWrapper(sink, encoding="utf-8", newline="")
    try:
        yield fp
        fp.flush()
    finally:
        fp.detach()


class ResultStreamer:
    """Exports study results, component results and their data."""

    def __init__(
        self,
        session_factory: SessionFactory,
        uploads: ResultUploads,
        study_logger: Optional[StudyLogger] = None,
        settings: Optional[ResultSettings] = None,
    ):
        """Initialize streamer.

        Args:
            session_factory: Opens one session per page
            uploads: File store of uploaded result files
            study_logger: Receives one export event per study
            settings: Page size, keep-alive interval and superuser access
        """
        self.session_factory = session_factory
        self.uploads = uploads
        self.study_logger = study_logger or StudyLogger()
        self.settings = settings or ResultSettings()

    @property
    def page_size(self) -> int:
        return self.settings.max_results_db_query_size

    @contextmanager
    def _unit_of_work(self) -> Iterator[Tuple[ResultRepository, Checker]]:
        with session_scope(self.session_factory) as session:
            repository = ResultRepository(session)
            yield repository, Checker(repository, self.settings.allow_superuser)

    @staticmethod
    def _require_user(repository: ResultRepository, user_id: int) -> UserRecord:
        user = repository.find_user(user_id)
        if user is None:
            raise NotFoundError(f"A user with ID {user_id} doesn't exist")
        return user

    def _stream(self, produce: Callable[[BinaryIO], ExportReport], name: str, keep_alive: bool) -> Iterator[bytes]:
        keep_alive_seconds = self.settings.keep_alive_seconds if keep_alive else None
        return stream_from_producer(
            lambda sink: produce(sink).summary(), keep_alive_seconds=keep_alive_seconds, name=name
        )

    def _log_export(self, report: ExportReport, user_id: int, msg: str) -> None:
        if not report.study_ids:
            return
        with self._unit_of_work() as (repository, _):
            user = repository.find_user(user_id)
            for study in repository.find_studies_by_ids(sorted(report.study_ids)):
                self.study_logger.log(study, user, msg)

    # ========================================================================
    # JSON arrays of rows
    # ========================================================================

    def _write_json_rows(
        self, passes: Iterable[_Pass], user_id: int, sink: BinaryIO, serialize_page: _PageSerializer
    ) -> ExportReport:
        """Write ``[row,\\nrow,...]`` for every entity the passes yield."""
        report = ExportReport()
        with _text_sink(sink) as fp:
            writer = JsonStreamWriter(fp, separator=",\n")
            writer.start_array()
            offset = 0
            try:
                for count, fetch in passes:
                    offset = 0
                    with self._unit_of_work() as (repository, _):
                        total = count(repository)
                    for offset in range(0, total, self.page_size):
                        with self._unit_of_work() as (repository, checker):
                            user = self._require_user(repository, user_id)
                            page = fetch(repository, offset, self.page_size)
                            logger.debug(f"Fetched {len(page)} of {total} entities at offset {offset}")
                            rows = serialize_page(repository, checker, user, page, report)
                        for row in rows:
                            writer.raw(row)
            except (ResultsError, SQLAlchemyError) as e:
                # The array is still closed so the output stays valid JSON
                logger.error(f"Export stopped at offset {offset}, the remaining entities are left out: {e}")
                report.skip("page", offset, str(e))
            writer.end_array()
        return report

    @staticmethod
    def _study_result_rows(
        repository: ResultRepository, checker: Checker, user: UserRecord, page: list, report: ExportReport
    ) -> List[str]:
        counts = repository.count_component_results_for_study_result_ids([sr.id for sr in page])
        rows = []
        for study_result in page:
            try:
                study = checker.check_study_result(study_result, user, False)
                batch = repository.find_batch(study_result.batch_id)
                if batch is None:
                    raise NotFoundError(f"A batch with ID {study_result.batch_id} doesn't exist")
            except (ResultsError, SQLAlchemyError) as e:
                logger.warning(f"Skipped study result {study_result.id}: {e}")
                report.skip("study_result", study_result.id, str(e))
                continue
            rows.append(study_result_row(study_result, study, batch, counts.get(study_result.id, 0)).to_json())
            report.ok("study_result", study_result.id)
            report.study_ids.add(study.id)
        return rows

    @staticmethod
    def _component_result_rows(
        repository: ResultRepository, checker: Checker, user: UserRecord, page: list, report: ExportReport
    ) -> List[str]:
        rows = []
        for component_result in page:
            try:
                study = checker.check_component_result(component_result, user, False)
                component = repository.find_component(component_result.component_id)
                study_result = None
                batch = None
                if component_result.study_result_id is not None:
                    study_result = repository.find_study_result(component_result.study_result_id)
                if study_result is not None:
                    batch = repository.find_batch(study_result.batch_id)
            except (ResultsError, SQLAlchemyError) as e:
                logger.warning(f"Skipped component result {component_result.id}: {e}")
                report.skip("component_result", component_result.id, str(e))
                continue
            rows.append(component_result_row(component_result, component, study_result, batch).to_json())
            report.ok("component_result", component_result.id)
            report.study_ids.add(study.id)
        return rows

    # --- study results of a study ---

    def _passes_by_study(self, study_id: int, user_id: int) -> List[_Pass]:
        with self._unit_of_work() as (repository, checker):
            user = self._require_user(repository, user_id)
            checker.check_standard_for_study(repository.find_study(study_id), study_id, user)
        return [
            _Pass(
                lambda r: r.count_study_results_by_study(study_id),
                lambda r, offset, limit: r.find_study_results_by_study(study_id, offset, limit),
            )
        ]

    def write_study_results_by_study(self, study_id: int, user_id: int, sink: BinaryIO) -> ExportReport:
        passes = self._passes_by_study(study_id, user_id)
        return self._write_json_rows(passes, user_id, sink, self._study_result_rows)

    def stream_study_results_by_study(self, study_id: int, user_id: int) -> Iterator[bytes]:
        """Stream all study results of a study as a JSON array."""
        passes = self._passes_by_study(study_id, user_id)
        return self._stream(
            lambda sink: self._write_json_rows(passes, user_id, sink, self._study_result_rows),
            f"study-results-of-study-{study_id}",
            keep_alive=True,
        )

    # --- study results of a batch ---

    def _passes_by_batch(self, batch_id: int, user_id: int, worker_type: Optional[str]) -> List[_Pass]:
        with self._unit_of_work() as (repository, checker):
            user = self._require_user(repository, user_id)
            checker.check_standard_for_batch(repository.find_batch(batch_id), batch_id, user)

        def batch_pass(include: Optional[str], exclude: Optional[str]) -> _Pass:
            return _Pass(
                lambda r: r.count_study_results_by_batch(batch_id, include, exclude),
                lambda r, offset, limit: r.find_study_results_by_batch(batch_id, offset, limit, include, exclude),
            )

        if not worker_type:
            return [batch_pass(None, JATOS_WORKER)]
        passes = [batch_pass(worker_type, None)]
        # MTurk sandbox runs are listed together with real MTurk runs
        if worker_type == MT_WORKER:
            passes.append(batch_pass(MT_SANDBOX_WORKER, None))
        return passes

    def write_study_results_by_batch(
        self, batch_id: int, user_id: int, sink: BinaryIO, worker_type: Optional[str] = None
    ) -> ExportReport:
        passes = self._passes_by_batch(batch_id, user_id, worker_type)
        return self._write_json_rows(passes, user_id, sink, self._study_result_rows)

    def stream_study_results_by_batch(
        self, batch_id: int, user_id: int, worker_type: Optional[str] = None
    ) -> Iterator[bytes]:
        """Stream the study results of a batch as a JSON array.

        Args:
            batch_id: Batch ID
            user_id: Must be a member of the batch's study
            worker_type: Only results of this worker type. If empty, all
                results except those of Jatos workers
        """
        passes = self._passes_by_batch(batch_id, user_id, worker_type)
        return self._stream(
            lambda sink: self._write_json_rows(passes, user_id, sink, self._study_result_rows),
            f"study-results-of-batch-{batch_id}",
            keep_alive=True,
        )

    # --- study results of a group ---

    def _passes_by_group(self, group_result_id: int, user_id: int) -> List[_Pass]:
        with self._unit_of_work() as (repository, checker):
            user = self._require_user(repository, user_id)
            checker.check_standard_for_group(repository.find_group_result(group_result_id), group_result_id, user)
        return [
            _Pass(
                lambda r: r.count_study_results_by_group(group_result_id),
                lambda r, offset, limit: r.find_study_results_by_group(group_result_id, offset, limit),
            )
        ]

    def write_study_results_by_group(self, group_result_id: int, user_id: int, sink: BinaryIO) -> ExportReport:
        passes = self._passes_by_group(group_result_id, user_id)
        return self._write_json_rows(passes, user_id, sink, self._study_result_rows)

    def stream_study_results_by_group(self, group_result_id: int, user_id: int) -> Iterator[bytes]:
        """Stream active and past members of a group as a JSON array."""
        passes = self._passes_by_group(group_result_id, user_id)
        return self._stream(
            lambda sink: self._write_json_rows(passes, user_id, sink, self._study_result_rows),
            f"study-results-of-group-{group_result_id}",
            keep_alive=True,
        )

    # --- study results of a worker ---

    def _passes_by_worker(self, worker_id: int, user_id: int) -> List[_Pass]:
        with self._unit_of_work() as (repository, checker):
            user = self._require_user(repository, user_id)
            worker = repository.find_worker(worker_id)
            checker.check_worker(worker, worker_id)
            checker.check_user_allowed_to_access_worker(user, worker)
        return [
            _Pass(
                lambda r: r.count_study_results_by_worker(worker_id, user_id),
                lambda r, offset, limit: r.find_study_results_by_worker(worker_id, user_id, offset, limit),
            )
        ]

    def write_study_results_by_worker(self, worker_id: int, user_id: int, sink: BinaryIO) -> ExportReport:
        passes = self._passes_by_worker(worker_id, user_id)
        return self._write_json_rows(passes, user_id, sink, self._study_result_rows)

    def stream_study_results_by_worker(self, worker_id: int, user_id: int) -> Iterator[bytes]:
        """Stream a worker's study results in studies of the user as a JSON array."""
        passes = self._passes_by_worker(worker_id, user_id)
        return self._stream(
            lambda sink: self._write_json_rows(passes, user_id, sink, self._study_result_rows),
            f"study-results-of-worker-{worker_id}",
            keep_alive=True,
        )

    # --- component results of a component ---

    def _passes_by_component(self, component_id: int, user_id: int) -> List[_Pass]:
        with self._unit_of_work() as (repository, checker):
            user = self._require_user(repository, user_id)
            checker.check_standard_for_component(component_id, repository.find_component(component_id), user)
        return [
            _Pass(
                lambda r: r.count_component_results_by_component(component_id),
                lambda r, offset, limit: r.find_component_results_by_component(component_id, offset, limit),
            )
        ]

    def write_component_results(self, component_id: int, user_id: int, sink: BinaryIO) -> ExportReport:
        passes = self._passes_by_component(component_id, user_id)
        return self._write_json_rows(passes, user_id, sink, self._component_result_rows)

    def stream_component_results(self, component_id: int, user_id: int) -> Iterator[bytes]:
        """Stream all component results of a component as a JSON array."""
        passes = self._passes_by_component(component_id, user_id)
        return self._stream(
            lambda sink: self._write_json_rows(passes, user_id, sink, self._component_result_rows),
            f"component-results-of-component-{component_id}",
            keep_alive=True,
        )

    # ========================================================================
    # Explicit component result IDs
    # ========================================================================

    def _existing_component_result_ids(self, component_result_ids: Iterable[int], user_id: int) -> List[int]:
        """Sorted, deduplicated IDs after checking the user and every ID exist.

        Raises:
            NotFoundError: For the user or the first ID that doesn't exist
        """
        ids = sorted(set(component_result_ids))
        with self._unit_of_work() as (repository, _):
            self._require_user(repository, user_id)
            existing = set(repository.find_component_result_ids_by_component_result_ids(ids))
        for crid in ids:
            if crid not in existing:
                raise NotFoundError(f"A component result with ID {crid} doesn't exist")
        return ids

    def _write_component_result_data(self, ids: List[int], user_id: int, sink: BinaryIO) -> ExportReport:
        report = ExportReport()
        with _text_sink(sink) as fp:
            for offset in range(0, len(ids), self.page_size):
                try:
                    self._write_data_page(ids[offset : offset + self.page_size], user_id, fp, report)
                except (ResultsError, SQLAlchemyError) as e:
                    logger.error(f"Export stopped at offset {offset}, the remaining data is left out: {e}")
                    report.skip("page", offset, str(e))
                    break
        self._log_export(report, user_id, EXPORT_DATA_MSG)
        return report

    def _write_data_page(self, page_ids: List[int], user_id: int, fp: TextIO, report: ExportReport) -> None:
        with self._unit_of_work() as (repository, checker):
            user = self._require_user(repository, user_id)
            page = repository.find_component_results_by_ids(page_ids)
            for crid in sorted(set(page_ids) - {cr.id for cr in page}):
                logger.warning(f"Skipped component result {crid}: it doesn't exist anymore")
                report.skip("component_result", crid, "doesn't exist")
            for component_result in page:
                try:
                    study = checker.check_component_result(component_result, user, False)
                except ResultsError as e:
                    logger.warning(f"Skipped component result {component_result.id}: {e}")
                    report.skip("component_result", component_result.id, str(e))
                    continue
                # Payloads are loaded and written one at a time
                data = repository.get_data(component_result.id)
                if data is None:
                    report.skip("component_result", component_result.id, "no data")
                    continue
                fp.write(data)
                fp.write("\n")
                report.ok("component_result", component_result.id)
                report.study_ids.add(study.id)

    def write_component_result_data(
        self, component_result_ids: Iterable[int], user_id: int, sink: BinaryIO
    ) -> ExportReport:
        """Write the data of the component results, one payload per line, ordered by ID."""
        ids = self._existing_component_result_ids(component_result_ids, user_id)
        return self._write_component_result_data(ids, user_id, sink)

    def stream_component_result_data(self, component_result_ids: Iterable[int], user_id: int) -> Iterator[bytes]:
        """Stream the data of the component results as plain text.

        No keep-alive filler is sent, so a long export relies on the
        transport's timeouts.
        """
        ids = self._existing_component_result_ids(component_result_ids, user_id)
        return self._stream(
            lambda sink: self._write_component_result_data(ids, user_id, sink),
            "component-result-data",
            keep_alive=False,
        )

    # ========================================================================
    # Zip archives and metadata
    # ========================================================================

    def _upload_files_metadata(self, study_result_id: int, component_result_id: int) -> List[UploadFileMetadata]:
        root = self.uploads.get_result_uploads_dir(study_result_id, component_result_id)
        files = []
        for relative in self.uploads.list_upload_files(study_result_id, component_result_id):
            size = (root / relative).stat().st_size
            files.append(
                UploadFileMetadata(
                    filename=relative.as_posix(), size=size, size_human_readable=human_readable_bytes(size)
                )
            )
        return files

    def _export_component_result(
        self,
        study_result_id: int,
        component_result_id: int,
        user_id: int,
        results_type: ResultsType,
        zip_file: Optional[zipfile.ZipFile],
        report: ExportReport,
    ) -> Optional[Dict[str, Any]]:
        """Add one component result to the archive.

        Returns:
            Its metadata if the results type includes metadata, else None
        """
        path = get_results_path_for_zip(study_result_id, component_result_id)
        metadata = None
        try:
            with self._unit_of_work() as (repository, checker):
                user = self._require_user(repository, user_id)
                component_result = repository.find_component_result(component_result_id)
                if component_result is None:
                    raise NotFoundError(f"A component result with ID {component_result_id} doesn't exist")
                checker.check_component_result(component_result, user, False)
                if results_type.includes_metadata:
                    component = repository.find_component(component_result.component_id)
                    files = self._upload_files_metadata(study_result_id, component_result_id)
                    metadata = component_result_metadata(component_result, component, study_result_id, files).to_dict()
                if results_type.includes_data:
                    add_data_to_zip(zip_file, repository.get_data(component_result_id), f"{path}/data.txt")
            if results_type.includes_files:
                add_dir_to_zip(
                    zip_file, f"{path}/files", self.uploads.get_result_uploads_dir(study_result_id, component_result_id)
                )
        except BrokenPipeError:
            raise
        except (ResultsError, SQLAlchemyError, OSError) as e:
            logger.warning(f"Skipped component result {component_result_id}: {e}")
            report.skip("component_result", component_result_id, str(e))
            return None
        report.ok("component_result", component_result_id)
        return metadata

    def _export(
        self,
        ids: List[int],
        user_id: int,
        results_type: ResultsType,
        zip_file: Optional[zipfile.ZipFile],
        metadata: Optional[JsonStreamWriter],
        wrap_object: Optional[Dict[str, Any]],
    ) -> ExportReport:
        """Export the component results study by study, study result by study result.

        A study that fails midway (e.g. the database went away) is logged and
        skipped; its metadata is closed so the document stays valid JSON.
        """
        report = ExportReport()
        if metadata is not None:
            if wrap_object:
                metadata.start_object()
                for key, value in wrap_object.items():
                    metadata.field(key, value)
                metadata.start_array("data")
            else:
                metadata.start_array()
        depth = metadata.depth if metadata is not None else 0

        try:
            with self._unit_of_work() as (repository, _):
                study_result_ids = repository.find_study_result_ids_by_component_result_ids(ids)
                study_ids = repository.find_study_ids_by_study_result_ids(study_result_ids)
                orphan_ids = repository.find_component_result_ids_without_study_result(ids)
        except SQLAlchemyError as e:
            logger.error(f"Export of {len(ids)} component results failed: {e}")
            for crid in ids:
                report.skip("component_result", crid, str(e))
            study_result_ids = study_ids = orphan_ids = []

        for crid in orphan_ids:
            logger.error(f"Skipped component result {crid}: it has no study result")
            report.skip("component_result", crid, "has no study result")

        for study_id in study_ids:
            try:
                self._export_study(
                    study_id, study_result_ids, set(ids), user_id, results_type, zip_file, metadata, report
                )
            except (ResultsError, SQLAlchemyError) as e:
                logger.error(f"Export of study {study_id} stopped, its remaining results are left out: {e}")
                report.skip("study", study_id, str(e))
                if metadata is not None:
                    metadata.close(depth)

        if metadata is not None:
            metadata.close()
        return report

    def _export_study(
        self,
        study_id: int,
        study_result_ids: List[int],
        selected: Set[int],
        user_id: int,
        results_type: ResultsType,
        zip_file: Optional[zipfile.ZipFile],
        metadata: Optional[JsonStreamWriter],
        report: ExportReport,
    ) -> None:
        with self._unit_of_work() as (repository, checker):
            user = self._require_user(repository, user_id)
            study = repository.find_study(study_id)
            try:
                checker.check_standard_for_study(study, study_id, user)
            except ResultsError as e:
                logger.warning(f"Skipped results of study {study_id}: {e}")
                report.skip("study", study_id, str(e))
                return
            study_result_ids_of_study = repository.find_study_result_ids_in_study(study_result_ids, study_id)
        report.study_ids.add(study_id)

        if metadata is not None:
            metadata.start_object()
            metadata.field("studyId", study.id)
            metadata.field("studyUuid", study.uuid)
            metadata.field("studyTitle", study.title)
            metadata.start_array("studyResults")

        for offset in range(0, len(study_result_ids_of_study), self.page_size):
            page = []
            with self._unit_of_work() as (repository, _):
                page_ids = study_result_ids_of_study[offset : offset + self.page_size]
                for study_result in repository.find_study_results_by_ids(page_ids):
                    crids = [
                        crid
                        for crid in repository.find_component_result_ids_by_study_result(study_result.id)
                        if crid in selected
                    ]
                    study_result_meta = None
                    if metadata is not None:
                        batch = repository.find_batch(study_result.batch_id)
                        worker = None
                        if study_result.worker_id is not None:
                            worker = repository.find_worker(study_result.worker_id)
                        study_result_meta = study_result_metadata(study_result, batch, worker).to_dict()
                    page.append((study_result.id, study_result_meta, crids))

            for study_result_id, study_result_meta, crids in page:
                if metadata is not None:
                    metadata.start_object()
                    for key, value in study_result_meta.items():
                        metadata.field(key, value)
                    metadata.start_array("componentResults")
                for crid in crids:
                    component_result_meta = self._export_component_result(
                        study_result_id, crid, user_id, results_type, zip_file, report
                    )
                    if metadata is not None and component_result_meta is not None:
                        metadata.value(component_result_meta)
                if metadata is not None:
                    metadata.end_array()
                    metadata.end_object()

        if metadata is not None:
            metadata.end_array()
            metadata.end_object()

    def _write_results(
        self,
        ids: List[int],
        user_id: int,
        results_type: ResultsType,
        sink: BinaryIO,
        wrap_object: Optional[Dict[str, Any]],
    ) -> ExportReport:
        if results_type is ResultsType.METADATA_ONLY:
            with _text_sink(sink) as fp:
                return self._export(ids, user_id, results_type, None, JsonStreamWriter(fp), wrap_object)

        with zipfile.ZipFile(sink, mode="w", compression=zipfile.ZIP_DEFLATED) as zip_file:
            if not results_type.includes_metadata:
                report = self._export(ids, user_id, results_type, zip_file, None, None)
            else:
                # metadata.json is built on disk next to the archive and added last
                with tempfile.TemporaryFile() as metadata_file:
                    with _text_sink(metadata_file) as fp:
                        report = self._export(ids, user_id, results_type, zip_file, JsonStreamWriter(fp), wrap_object)
                    metadata_file.seek(0)
                    add_fileobj_to_zip(zip_file, METADATA_FILENAME, metadata_file)
        self._log_export(report, user_id, EXPORT_RESULTS_MSG)
        return report

    def write_results(
        self,
        component_result_ids: Iterable[int],
        user_id: int,
        results_type: ResultsType,
        sink: BinaryIO,
        wrap_object: Optional[Dict[str, Any]] = None,
    ) -> ExportReport:
        """Export component results into ``sink``.

        Args:
            component_result_ids: Component results to export
            user_id: Exporting user
            results_type: METADATA_ONLY writes a JSON document, every other
                type writes a zip archive
            sink: Writable binary file, doesn't need to be seekable
            wrap_object: Extra top-level metadata keys; the study list then
                goes under ``data``

        Returns:
            Outcome per component result

        Raises:
            NotFoundError: If the user or one of the component results doesn't exist
        """
        ids = self._existing_component_result_ids(component_result_ids, user_id)
        return self._write_results(ids, user_id, results_type, sink, wrap_object)

    def stream_results(
        self,
        component_result_ids: Iterable[int],
        user_id: int,
        results_type: ResultsType,
        wrap_object: Optional[Dict[str, Any]] = None,
    ) -> Iterator[bytes]:
        """Stream what ``write_results`` would write.

        Only METADATA_ONLY streams get keep-alive filler. Zip streams get
        none, so a long export relies on the transport's timeouts.
        """
        ids = self._existing_component_result_ids(component_result_ids, user_id)
        return self._stream(
            lambda sink: self._write_results(ids, user_id, results_type, sink, wrap_object),
            f"results-{results_type.value.lower()}",
            keep_alive=results_type is ResultsType.METADATA_ONLY,
        )

    def write_result_metadata(
        self,
        component_result_ids: Iterable[int],
        user_id: int,
        wrap_object: Optional[Dict[str, Any]] = None,
    ) -> Path:
        """Write the results' metadata into a temporary JSON file.

        The caller owns the returned file and has to delete it.
        """
        fd, name = tempfile.mkstemp(prefix="results_metadata_", suffix=".json")
        path = Path(name)
        try:
            with os.fdopen(fd, "wb") as sink:
                self.write_results(component_result_ids, user_id, ResultsType.METADATA_ONLY, sink, wrap_object)
        except Exception:
            path.unlink(missing_ok=True)
            raise
        return path
