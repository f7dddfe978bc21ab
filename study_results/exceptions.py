"""Exceptions raised by result export and removal."""


class ResultsError(Exception):
    """Base class for result lifecycle errors."""


class BadRequestError(ResultsError):
    """Malformed selector input or unknown entity state."""


class ForbiddenError(ResultsError):
    """The user may not act on the entity, or its study is locked."""


class NotFoundError(ResultsError):
    """A referenced entity does not exist."""
