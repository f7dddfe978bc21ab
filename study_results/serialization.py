"""Pydantic models for exported result rows and zip metadata.

Rows are what the JSON array streams contain (one object per study result
or component result). Metadata models describe results inside
``metadata.json`` of a zip export. All field names are camelCase on the
wire.

Builders take already-resolved parent records; they never query.
"""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from study_results.db.models import (
    DATA_SHORT_MAX_CHARS,
    BatchRecord,
    ComponentRecord,
    ComponentResultRecord,
    StudyRecord,
    StudyResultRecord,
    WorkerRecord,
)
from study_results.uploads import get_results_path


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    def to_dict(self, exclude_none: bool = False) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=exclude_none)


def duration_pretty(start: Optional[datetime], end: Optional[datetime]) -> Optional[str]:
    """Format the time between ``start`` and ``end`` as HH:MM:SS (None if unfinished)."""
    if start is None or end is None:
        return None
    seconds = max(int((end - start).total_seconds()), 0)
    hours, remainder = divmod(seconds, 3600)
    minutes, seconds = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d}"


def human_readable_bytes(size: int) -> str:
    """Binary-prefixed size, e.g. ``1.5 KiB``."""
    if size < 1024:
        return f"{size} B"
    value = float(size)
    for unit in ("KiB", "MiB", "GiB", "TiB"):
        value /= 1024
        if value < 1024:
            break
    return f"{value:.1f} {unit}"


def group_result_id(study_result: StudyResultRecord) -> Optional[int]:
    """Active group if there is one, otherwise the history group."""
    if study_result.active_group_result_id is not None:
        return study_result.active_group_result_id
    return study_result.history_group_result_id


# ============================================================================
# Rows streamed as JSON arrays
# ============================================================================


class StudyResultRow(_CamelModel):
    id: int
    uuid: str
    study_id: int
    study_title: str
    study_code: Optional[str] = None
    batch_id: int
    batch_title: str
    worker_id: Optional[int] = None
    worker_type: str
    group_id: Optional[int] = None
    study_state: str
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    last_seen_date: Optional[datetime] = None
    duration: Optional[str] = None
    message: Optional[str] = None
    confirmation_code: Optional[str] = None
    component_result_count: int = 0


class ComponentResultRow(_CamelModel):
    id: int
    study_id: int
    component_id: int
    component_title: str
    study_result_id: Optional[int] = None
    study_result_uuid: Optional[str] = None
    study_code: Optional[str] = None
    group_id: Optional[int] = None
    batch_title: Optional[str] = None
    component_state: str
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    duration: Optional[str] = None
    message: Optional[str] = None
    data_short: str = ""
    is_data_short_shortened: bool = False
    data_size: int = 0


def study_result_row(
    study_result: StudyResultRecord,
    study: StudyRecord,
    batch: BatchRecord,
    component_result_count: int,
) -> StudyResultRow:
    return StudyResultRow(
        id=study_result.id,
        uuid=study_result.uuid,
        study_id=study.id,
        study_title=study.title,
        study_code=study_result.study_code,
        batch_id=batch.id,
        batch_title=batch.title,
        worker_id=study_result.worker_id,
        worker_type=study_result.worker_type,
        group_id=group_result_id(study_result),
        study_state=study_result.state,
        start_date=study_result.start_date,
        end_date=study_result.end_date,
        last_seen_date=study_result.last_seen_date,
        duration=duration_pretty(study_result.start_date, study_result.end_date),
        message=study_result.message,
        confirmation_code=study_result.confirmation_code,
        component_result_count=component_result_count,
    )


def component_result_row(
    component_result: ComponentResultRecord,
    component: ComponentRecord,
    study_result: Optional[StudyResultRecord],
    batch: Optional[BatchRecord],
) -> ComponentResultRow:
    return ComponentResultRow(
        id=component_result.id,
        study_id=component.study_id,
        component_id=component.id,
        component_title=component.title,
        study_result_id=study_result.id if study_result else None,
        study_result_uuid=study_result.uuid if study_result else None,
        study_code=study_result.study_code if study_result else None,
        group_id=group_result_id(study_result) if study_result else None,
        batch_title=batch.title if batch else None,
        component_state=component_result.state,
        start_date=component_result.start_date,
        end_date=component_result.end_date,
        duration=duration_pretty(component_result.start_date, component_result.end_date),
        message=component_result.message,
        data_short=component_result.data_short or "",
        is_data_short_shortened=component_result.data_size > DATA_SHORT_MAX_CHARS,
        data_size=component_result.data_size,
    )


# ============================================================================
# metadata.json entries
# ============================================================================


class UploadFileMetadata(_CamelModel):
    filename: str
    size: int
    size_human_readable: str


class DataMetadata(_CamelModel):
    size: int
    size_human_readable: str
    filename: Optional[str] = None


class ComponentResultMetadata(_CamelModel):
    id: int
    component_id: int
    component_uuid: str
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    duration: Optional[str] = None
    component_state: str
    path: str
    data: DataMetadata
    files: List[UploadFileMetadata] = []


class StudyResultMetadata(_CamelModel):
    id: int
    uuid: str
    study_code: Optional[str] = None
    comment: Optional[str] = None
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    duration: Optional[str] = None
    last_seen_date: Optional[datetime] = None
    study_state: str
    message: Optional[str] = None
    url_query_parameters: Optional[Dict[str, Any]] = None
    worker_id: Optional[int] = None
    worker_type: str
    batch_id: int
    batch_uuid: str
    batch_title: str
    group_id: Optional[int] = None
    confirmation_code: Optional[str] = None


def component_result_metadata(
    component_result: ComponentResultRecord,
    component: ComponentRecord,
    study_result_id: int,
    files: List[UploadFileMetadata],
) -> ComponentResultMetadata:
    data = DataMetadata(
        size=component_result.data_size,
        size_human_readable=human_readable_bytes(component_result.data_size),
        filename="data.txt" if component_result.data_size > 0 else None,
    )
    return ComponentResultMetadata(
        id=component_result.id,
        component_id=component.id,
        component_uuid=component.uuid,
        start_date=component_result.start_date,
        end_date=component_result.end_date,
        duration=duration_pretty(component_result.start_date, component_result.end_date),
        component_state=component_result.state,
        path=get_results_path(study_result_id, component_result.id),
        data=data,
        files=files,
    )


def _parse_url_query_parameters(raw: Optional[str]) -> Optional[Dict[str, Any]]:
    if not raw or raw == "{}":
        return None
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def study_result_metadata(
    study_result: StudyResultRecord,
    batch: BatchRecord,
    worker: Optional[WorkerRecord],
) -> StudyResultMetadata:
    return StudyResultMetadata(
        id=study_result.id,
        uuid=study_result.uuid,
        study_code=study_result.study_code,
        comment=(worker.comment or None) if worker is not None else None,
        start_date=study_result.start_date,
        end_date=study_result.end_date,
        duration=duration_pretty(study_result.start_date, study_result.end_date),
        last_seen_date=study_result.last_seen_date,
        study_state=study_result.state,
        message=study_result.message or None,
        url_query_parameters=_parse_url_query_parameters(study_result.url_query_parameters),
        worker_id=study_result.worker_id,
        worker_type=study_result.worker_type,
        batch_id=batch.id,
        batch_uuid=batch.uuid,
        batch_title=batch.title,
        group_id=group_result_id(study_result),
        confirmation_code=study_result.confirmation_code,
    )
