"""
Error taxonomy shared by the tool executor, the agents and the HTTP surface.

Every error carries a ``user_message``: a single sentence that is safe to show
to the end user. Raw details stay in ``str(error)`` and only reach the logs.
"""

import re
from enum import Enum


GENERIC_ERROR_MESSAGE = "An unexpected error occurred. Please try again."

# Longest backend detail shown to the user; the full text goes to the logs
MAX_DETAIL_LENGTH = 160


def user_detail(detail: str) -> str:
    """First line of a backend detail, whitespace collapsed and capped in length."""
    lines = [line for line in detail.splitlines() if line.strip()]
    if not lines:
        return ""
    text = re.sub(r"\s+", " ", lines[0]).strip()
    if len(text) <= MAX_DETAIL_LENGTH:
        return text
    cut = text[:MAX_DETAIL_LENGTH].rsplit(" ", 1)[0]
    return cut.rstrip(" .,;:") + "..."


class RPCErrorCode(str, Enum):
    """Closed set of error codes returned by backend procedures."""
    UNAUTHORIZED = "UNAUTHORIZED"
    NOT_FOUND = "NOT_FOUND"
    BAD_REQUEST = "BAD_REQUEST"
    FORBIDDEN = "FORBIDDEN"
    CONFLICT = "CONFLICT"
    UNKNOWN = "UNKNOWN"


class AssistantError(Exception):
    """Base class for all errors raised inside an assistant run."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    @property
    def user_message(self) -> str:
        return GENERIC_ERROR_MESSAGE


class ValidationError(AssistantError):
    """Tool input failed validation. Never reaches the backend."""

    def __init__(self, messages: list[str] | str):
        if isinstance(messages, str):
            messages = [messages]
        self.messages = messages
        super().__init__("; ".join(messages))

    @property
    def user_message(self) -> str:
        return f"Invalid input: {'; '.join(self.messages)}"


class RPCError(AssistantError):
    """A backend procedure returned an error."""

    code: RPCErrorCode = RPCErrorCode.UNKNOWN

    def __init__(self, detail: str = "", code: RPCErrorCode | None = None):
        if code is not None:
            self.code = code
        self.detail = detail
        super().__init__(detail or self.code.value)

    @property
    def user_message(self) -> str:
        return user_detail(self.detail) or "An error occurred while processing your request."


class AuthError(RPCError):
    """The caller is not authenticated or not allowed to touch the resource."""

    code = RPCErrorCode.UNAUTHORIZED

    @property
    def user_message(self) -> str:
        if self.code == RPCErrorCode.FORBIDDEN:
            return "You don't have permission to access this resource."
        return "You don't have permission to perform this action."


class NotFoundError(RPCError):
    code = RPCErrorCode.NOT_FOUND

    @property
    def user_message(self) -> str:
        return "The requested resource was not found."


class BadRequestError(RPCError):
    code = RPCErrorCode.BAD_REQUEST

    @property
    def user_message(self) -> str:
        detail = user_detail(self.detail)
        return f"Invalid request: {detail}" if detail else "Invalid request."


class ConflictError(RPCError):
    code = RPCErrorCode.CONFLICT

    @property
    def user_message(self) -> str:
        return "This change conflicts with the current state of the resource. Please refresh and try again."


class TransportError(RPCError):
    """Network failure, timeout or an unclassified backend error."""

    code = RPCErrorCode.UNKNOWN

    @property
    def user_message(self) -> str:
        return GENERIC_ERROR_MESSAGE


class BudgetExceededError(AssistantError):
    """An agent ran out of turns or steps. Terminal for the run."""

    def __init__(self, agent: str, limit: str, ceiling: int):
        self.agent = agent
        self.limit = limit
        self.ceiling = ceiling
        super().__init__(f"Agent '{agent}' exceeded {limit} ceiling of {ceiling}")

    @property
    def user_message(self) -> str:
        return (
            "I've reached the investigation limit for this request. "
            "Try narrowing the question or asking a follow-up."
        )


class ConfirmationRequired(AssistantError):
    """A commit was attempted without a matching preview. Not a failure."""

    def __init__(self, tool_name: str):
        self.tool_name = tool_name
        super().__init__(f"Confirmation required for {tool_name}")

    @property
    def user_message(self) -> str:
        return "Please review the preview and confirm before this change is made."


_CODE_TO_ERROR: dict[RPCErrorCode, type[RPCError]] = {
    RPCErrorCode.UNAUTHORIZED: AuthError,
    RPCErrorCode.FORBIDDEN: AuthError,
    RPCErrorCode.NOT_FOUND: NotFoundError,
    RPCErrorCode.BAD_REQUEST: BadRequestError,
    RPCErrorCode.CONFLICT: ConflictError,
    RPCErrorCode.UNKNOWN: TransportError,
}

_STATUS_TO_CODE: dict[int, RPCErrorCode] = {
    400: RPCErrorCode.BAD_REQUEST,
    401: RPCErrorCode.UNAUTHORIZED,
    403: RPCErrorCode.FORBIDDEN,
    404: RPCErrorCode.NOT_FOUND,
    409: RPCErrorCode.CONFLICT,
    422: RPCErrorCode.BAD_REQUEST,
}


def rpc_error_from_code(code: str | None, detail: str = "") -> RPCError:
    """Build the error matching a backend error code. Unknown codes map to TransportError."""
    try:
        rpc_code = RPCErrorCode((code or "").upper())
    except ValueError:
        rpc_code = RPCErrorCode.UNKNOWN
    return _CODE_TO_ERROR[rpc_code](detail, code=rpc_code)


def rpc_error_from_status(status_code: int, detail: str = "") -> RPCError:
    """Build the error matching an HTTP status when the body carries no code."""
    code = _STATUS_TO_CODE.get(status_code, RPCErrorCode.UNKNOWN)
    return rpc_error_from_code(code.value, detail)


def user_message_for(error: BaseException) -> str:
    """User-safe text for any exception. Never includes internals of unknown errors."""
    if isinstance(error, AssistantError):
        return error.user_message
    return GENERIC_ERROR_MESSAGE
