"""
Error taxonomy for the chat core.

Identity and not-found errors on profile resolution degrade silently,
transient backend errors on send are surfaced and recoverable, everything
else is mapped to an HTTP error by the routers.
"""

from typing import Optional

from fastapi import HTTPException, status


class ChatError(Exception):
    """Base class for chat core errors"""

    code = "chat_error"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str = ""):
        super().__init__(message or self.code)
        self.message = message or self.code


class IdentityError(ChatError):
    """Malformed or missing participant identifier"""

    code = "invalid_identity"


class SelfChatError(IdentityError):
    """A conversation needs two distinct participants"""

    code = "self_chat"


class NotFoundError(ChatError):
    """Referenced profile, conversation or message is missing"""

    code = "not_found"
    status_code = status.HTTP_404_NOT_FOUND


class PermissionDeniedError(ChatError):
    """The backend (or a participant check) rejected the operation"""

    code = "forbidden"
    status_code = status.HTTP_403_FORBIDDEN


class ConflictError(ChatError):
    """A unique record already exists"""

    code = "conflict"
    status_code = status.HTTP_409_CONFLICT


class BackendError(ChatError):
    """Transient network or write failure in the document store"""

    code = "backend_unavailable"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class EmptyMessageError(ChatError):
    code = "empty_message"


class InvalidTimezoneError(ChatError):
    code = "invalid_timezone"


class SendFailedError(ChatError):
    """Message write failed; the composed text was put back in the draft"""

    code = "send_failed"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, message: str = "", draft: Optional[str] = None):
        super().__init__(message or "Could not send your message. Please try again.")
        self.draft = draft


def to_http_exception(error: ChatError) -> HTTPException:
    """Convert a chat error to the API's error payload shape"""
    detail = {"error": error.code, "message": error.message}
    if isinstance(error, SendFailedError) and error.draft is not None:
        detail["draft"] = error.draft
    return HTTPException(status_code=error.status_code, detail=detail)
