"""Custom exceptions for deepcode."""


class DeepcodeError(Exception):
    """Base exception for deepcode."""

    pass


class ConfigurationError(DeepcodeError):
    """Configuration-related errors."""

    pass


class LLMError(DeepcodeError):
    """LLM-related errors."""

    pass


class LLMAPIError(LLMError):
    """LLM API errors (rate limit, auth, etc.)."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class RequestAbortedError(DeepcodeError):
    """An in-flight request was cancelled through its cancellation token."""

    def __init__(self, message: str = "Request aborted"):
        super().__init__(message)


class ToolError(DeepcodeError):
    """Tool execution errors."""

    pass


class ToolNotFoundError(ToolError):
    """Tool not found in registry."""

    def __init__(self, tool_name: str):
        super().__init__(f"Unknown tool: {tool_name}")
        self.tool_name = tool_name


class ToolValidationError(ToolError):
    """Tool arguments failed validation."""

    def __init__(self, tool_name: str, message: str):
        super().__init__(message)
        self.tool_name = tool_name


class SessionError(DeepcodeError):
    """Session-related errors."""

    pass


class SessionBusyError(SessionError):
    """Session already has an active run."""

    def __init__(self, session_id: str):
        super().__init__(f"Session is already running: {session_id}")
        self.session_id = session_id
