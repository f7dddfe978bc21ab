"""Per-study event log.

Each study gets its own log file ``<study uuid>.log`` with one JSON object
per line. Result exports and removals are recorded there. Failing to write
the log never fails the operation that is being logged.
"""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Optional

from study_results.db.models import StudyRecord, UserRecord

logger = logging.getLogger(__name__)


class StudyLogger:
    """Writes study log entries to ``logs_path`` (if set) and to the logging system."""

    def __init__(self, logs_path: Optional[Path] = None):
        self.logs_path = Path(logs_path) if logs_path is not None else None

    def get_path(self, study: StudyRecord) -> Optional[Path]:
        if self.logs_path is None:
            return None
        return self.logs_path / f"{study.uuid}.log"

    def log(self, study: StudyRecord, user: Optional[UserRecord], msg: str) -> None:
        """Record ``msg`` for ``study``, performed by ``user``."""
        entry = {"timestamp": int(time.time() * 1000), "msg": msg}
        if user is not None:
            entry["userUsername"] = user.username
        logger.info(f"Study {study.id}: {msg}" + (f" (user {user.username})" if user is not None else ""))

        path = self.get_path(study)
        if path is None:
            return
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "a", encoding="utf-8") as log_file:
                log_file.write("\n" + json.dumps(entry))
        except OSError as e:
            logger.error(f"Study log couldn't be written: {path}: {e}")
