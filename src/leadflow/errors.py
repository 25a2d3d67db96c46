"""Domain errors raised by leadflow services.

The API layer maps each class to an HTTP status code through
``status_code``; background actions turn them into status-field updates.
"""


class LeadflowError(Exception):
    """Base exception for leadflow domain errors."""

    status_code = 400
    error = "Bad request"


class NotAuthenticatedError(LeadflowError):
    """Raised when an operation requires a caller identity and none was given."""

    status_code = 401
    error = "Not authenticated"


class NotAuthorizedError(LeadflowError):
    """Raised when the caller does not own the requested resource."""

    status_code = 403
    error = "Not authorized"


class NotFoundError(LeadflowError):
    """Raised when a requested record does not exist."""

    status_code = 404
    error = "Not found"


class ValidationError(LeadflowError):
    """Raised when input fails validation."""

    status_code = 400
    error = "Invalid input"


class InvalidStatusTransitionError(LeadflowError):
    """Raised when a status update would move a record backwards."""

    status_code = 409
    error = "Invalid status transition"

    def __init__(self, entity: str, current: str, requested: str):
        super().__init__(
            f"Cannot move {entity} from '{current}' to '{requested}'"
        )
        self.entity = entity
        self.current = current
        self.requested = requested


class ChatLinkExpiredError(LeadflowError):
    """Raised when a chat link is expired."""

    status_code = 410
    error = "Chat link expired"

    def __init__(self, message: str = "This chat link has expired"):
        super().__init__(message)


class SessionInactiveError(LeadflowError):
    """Raised when writing to a chat session that is no longer active."""

    status_code = 409
    error = "Session inactive"

    def __init__(self, message: str = "This chat session is no longer active"):
        super().__init__(message)
