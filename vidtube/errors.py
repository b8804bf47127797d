# errors.py
# Raised below the HTTP layer; routers map them onto status codes.


class InvalidArgumentError(ValueError):
    """Malformed input detected before any query is issued (400)."""


class NotFoundError(LookupError):
    """The requested record does not exist (404)."""


class ConflictError(ValueError):
    """A uniqueness constraint would be violated (409)."""
