"""Exception types raised by the opening tree."""


class OpeningTreeError(Exception):
    """Base class for tree errors."""


class TreeFormatError(OpeningTreeError, ValueError):
    """An import payload is missing required fields or is not valid JSON."""


class TreeIntegrityError(OpeningTreeError):
    """A stored move does not reproduce the position it claims to lead to."""
