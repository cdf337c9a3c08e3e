"""Error taxonomy for the chat core.

HTTP-facing errors carry the status code the API layer maps them to.
PersistenceFailure and CompletionServiceFailure never reach the client as
HTTP errors: the first is logged and the turn continues, the second is
turned into an in-stream apology.
"""


class ChatCoreError(Exception):
    """Base class for chat core errors."""

    status_code = 500
    error_code = "internal_error"


class ValidationError(ChatCoreError):
    """Request is missing a required field or carries an invalid one."""

    status_code = 400
    error_code = "validation_error"


class TenantNotFound(ChatCoreError):
    """No tenant matches the identifier by slug or by code."""

    status_code = 404
    error_code = "unknown_city"

    def __init__(self, identifier: str):
        super().__init__(f"Unknown city: {identifier}")
        self.identifier = identifier


class RetrievalFailure(ChatCoreError):
    """Embedding or similarity search failed. Never treated as zero results."""

    status_code = 500
    error_code = "retrieval_failed"

    def __init__(self, reason: str, message: str = ""):
        super().__init__(message or reason)
        self.reason = reason


class PersistenceFailure(ChatCoreError):
    """A bookkeeping write (message, conversation, ticket, gap) failed."""

    error_code = "persistence_failed"


class CompletionServiceFailure(ChatCoreError):
    """The language-model service failed while generating an answer."""

    error_code = "completion_failed"


class ConversationNotFound(ChatCoreError):
    """No conversation with this id belongs to the tenant."""

    status_code = 404
    error_code = "conversation_not_found"


class Unauthorized(ChatCoreError):
    """Missing or malformed staff session cookie."""

    status_code = 401
    error_code = "unauthorized"


class Forbidden(ChatCoreError):
    """Staff session belongs to a different tenant."""

    status_code = 403
    error_code = "forbidden"
