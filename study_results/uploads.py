"""On-disk storage of uploaded result files.

Layout::

    <base>/study-result_<srid>/comp-result_<crid>/<uploaded files>

Inside exported zip archives the same files live under
``study_result_<srid>/comp-result_<crid>/files/``.
"""

from __future__ import annotations

import logging
import shutil
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger(__name__)


def get_results_path_for_zip(study_result_id: int, component_result_id: int) -> str:
    """Path of a component result's entries in a zip archive ('/' separated)."""
    return f"study_result_{study_result_id}/comp-result_{component_result_id}"


def get_results_path(study_result_id: int, component_result_id: int) -> str:
    """Path of a component result's entries after unpacking an export."""
    return f"/study_result_{study_result_id}/comp-result_{component_result_id}"


class ResultUploads:
    """File store for result uploads rooted at ``base_path``."""

    def __init__(self, base_path: Path):
        self.base_path = Path(base_path)

    def get_result_uploads_dir(self, study_result_id: int, component_result_id: Optional[int] = None) -> Path:
        """Directory of a study result's uploads, or of one component result's."""
        path = self.base_path / f"study-result_{study_result_id}"
        if component_result_id is not None:
            path = path / f"comp-result_{component_result_id}"
        return path

    def list_upload_files(self, study_result_id: int, component_result_id: int) -> List[Path]:
        """Uploaded files of a component result, relative to its upload dir.

        A missing directory means no files.
        """
        root = self.get_result_uploads_dir(study_result_id, component_result_id)
        if not root.is_dir():
            return []
        return sorted(path.relative_to(root) for path in root.rglob("*") if path.is_file())

    def get_result_upload_dir_size(self, study_result_id: int) -> int:
        """Size in bytes of all files uploaded for a study result (directories not counted)."""
        root = self.get_result_uploads_dir(study_result_id)
        if not root.exists():
            return 0
        try:
            return sum(path.stat().st_size for path in root.rglob("*") if path.is_file())
        except OSError as e:
            logger.warning(f"Could not determine upload size of study result {study_result_id}: {e}")
            return 0

    def remove_result_uploads_dir(self, study_result_id: int, component_result_id: Optional[int] = None) -> None:
        """Delete an upload directory if it exists.

        Raises:
            OSError: If the directory exists but can't be deleted
        """
        path = self.get_result_uploads_dir(study_result_id, component_result_id)
        if path.is_dir():
            shutil.rmtree(path)
            logger.debug(f"Removed result uploads dir {path}")
