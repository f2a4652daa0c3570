"""
Dispatch error taxonomy.

Every failure that crosses a layer boundary is a ``DispatchError`` whose
``kind`` is the discriminant. Callers branch on ``kind`` only, never on
message text. ``detail`` is technical context for server-side logs;
``user_message`` is what a caller may show to an end user.
"""
from enum import Enum
from typing import Optional, Tuple


class ErrorKind(str, Enum):
    NOT_CONFIGURED = "not_configured"
    ALL_CANDIDATES_FAILED = "all_candidates_failed"
    QUOTA_EXCEEDED = "quota_exceeded"
    KEY_REVOKED = "key_revoked"
    TIMEOUT = "timeout"
    CREATE_FAILED = "create_failed"
    CREDITS_EXCEEDED = "credits_exceeded"
    TASK_FAILED = "task_failed"
    BOTH_EXHAUSTED = "both_exhausted"
    VALIDATION = "validation"


class ErrorCategory(str, Enum):
    CONFIGURATION = "configuration"
    CAPACITY = "capacity"
    REVOKED_CREDENTIAL = "revoked_credential"
    REMOTE_TASK_FAILURE = "remote_task_failure"
    UPSTREAM = "upstream"
    TIMEOUT = "timeout"
    VALIDATION = "validation"


ERROR_CATEGORIES = {
    ErrorKind.NOT_CONFIGURED: ErrorCategory.CONFIGURATION,
    ErrorKind.QUOTA_EXCEEDED: ErrorCategory.CAPACITY,
    ErrorKind.CREDITS_EXCEEDED: ErrorCategory.CAPACITY,
    ErrorKind.BOTH_EXHAUSTED: ErrorCategory.CAPACITY,
    ErrorKind.KEY_REVOKED: ErrorCategory.REVOKED_CREDENTIAL,
    ErrorKind.TASK_FAILED: ErrorCategory.REMOTE_TASK_FAILURE,
    ErrorKind.ALL_CANDIDATES_FAILED: ErrorCategory.UPSTREAM,
    ErrorKind.CREATE_FAILED: ErrorCategory.UPSTREAM,
    ErrorKind.TIMEOUT: ErrorCategory.TIMEOUT,
    ErrorKind.VALIDATION: ErrorCategory.VALIDATION,
}

# (HTTP status, sanitized default message)
ERROR_RESPONSES = {
    ErrorKind.NOT_CONFIGURED: (
        503,
        "This AI service is not configured. Please contact the administrator.",
    ),
    ErrorKind.ALL_CANDIDATES_FAILED: (
        502,
        "The AI service could not produce an answer. Please try again later.",
    ),
    ErrorKind.QUOTA_EXCEEDED: (
        503,
        "The AI service quota has been exceeded. The quota resets daily; please try again later.",
    ),
    ErrorKind.KEY_REVOKED: (
        403,
        "The AI service credential has been revoked and must be replaced. "
        "Please contact the administrator.",
    ),
    ErrorKind.TIMEOUT: (
        504,
        "The request took too long to process. Please try a simpler query or try again later.",
    ),
    ErrorKind.CREATE_FAILED: (
        502,
        "The automation service could not start your task. Please try again later.",
    ),
    ErrorKind.CREDITS_EXCEEDED: (
        503,
        "The automation service has run out of credits. "
        "Please contact the administrator to add credits.",
    ),
    ErrorKind.TASK_FAILED: (
        502,
        "The automation service could not complete your task.",
    ),
    ErrorKind.BOTH_EXHAUSTED: (
        503,
        "All AI services are temporarily unavailable. Please try again later.",
    ),
    ErrorKind.VALIDATION: (
        400,
        "Prompt must be a non-empty string.",
    ),
}

GENERIC_ERROR_MESSAGE = "An error occurred while processing your request. Please try again later."


class DispatchError(Exception):
    """A classified failure from validation, an adapter, or the fallback policy."""

    def __init__(
        self,
        kind: ErrorKind,
        detail: str = "",
        user_message: Optional[str] = None,
        backend: Optional[str] = None,
    ):
        super().__init__(f"{kind.value}: {detail}" if detail else kind.value)
        self.kind = kind
        self.detail = detail
        self.backend = backend
        self._user_message = user_message

    @property
    def category(self) -> ErrorCategory:
        return ERROR_CATEGORIES[self.kind]

    @property
    def user_message(self) -> str:
        if self._user_message:
            return self._user_message
        return ERROR_RESPONSES[self.kind][1]

    @property
    def http_status(self) -> int:
        return ERROR_RESPONSES[self.kind][0]


def error_response(error: BaseException) -> Tuple[int, str]:
    """
    Map any exception to (HTTP status, user-presentable message).

    Unclassified exceptions collapse to a generic 500 so technical details
    never reach the caller.
    """
    if isinstance(error, DispatchError):
        return error.http_status, error.user_message
    return 500, GENERIC_ERROR_MESSAGE
