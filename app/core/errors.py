"""
Error Types

Exceptions that cross module boundaries. Each carries what the HTTP
layer may show to a client; raw exception text never does.
"""


class ConfigurationError(RuntimeError):
    """Required configuration is missing or invalid. Raised at startup only."""


class ChatRequestError(Exception):
    """
    A chat request that cannot be served.

    Attributes:
        status_code: HTTP status to respond with
        message: Client-safe description
    """

    def __init__(self, status_code: int, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message


class InvalidChatRequest(ChatRequestError):
    """Missing, malformed or empty message array."""

    def __init__(self, message: str = "Invalid request: messages must be a non-empty array"):
        super().__init__(400, message)
