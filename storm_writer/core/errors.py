"""
Application errors for clean API error handling.

Use ServiceUnavailableError when a dependency (LLM provider, store) is misconfigured
so the API can return 503 with a user-facing message. LLMError covers provider calls
that fail or return unusable output; InvalidTransitionError covers operations the
research session does not allow in its current stage.
"""


class ServiceUnavailableError(Exception):
    """Raised when a required service (e.g. LLM provider API key) is unavailable or misconfigured."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class LLMError(Exception):
    """Raised when an LLM call fails or its output cannot be used."""

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


class InvalidTransitionError(Exception):
    """Raised when a pipeline operation is not allowed from the session's current stage."""

    def __init__(self, operation: str, stage: str) -> None:
        self.operation = operation
        self.stage = stage
        self.message = f"Cannot {operation} while stage is {stage}"
        super().__init__(self.message)
