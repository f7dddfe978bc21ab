"""Export and removal of study result data.

``ResultStreamer`` exports results page by page as JSON, plain text or zip
archives. ``ResultRemover`` removes results and cleans up workers, groups
and upload directories.
"""

from study_results.exceptions import BadRequestError, ForbiddenError, NotFoundError, ResultsError
from study_results.remover import ResultRemover
from study_results.streamer import ResultsType, ResultStreamer

__all__ = [
    "BadRequestError",
    "ForbiddenError",
    "NotFoundError",
    "ResultsError",
    "ResultRemover",
    "ResultStreamer",
    "ResultsType",
]
