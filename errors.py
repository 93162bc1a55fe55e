"""
Error taxonomy for the persona service.

Adapters translate raw httpx / anthropic failures into these kinds before the
error crosses a component boundary. The HTTP layer maps each kind to a status
code.
"""
from typing import List, Optional


class PersonaError(Exception):
    """Base class for every error raised by the service."""


# ============================================================================
# Configuration
# ============================================================================

class ConfigurationError(PersonaError):
    """Missing or malformed setting. Fatal to the current call, never retried."""


class InvalidEnvironmentError(ConfigurationError):
    def __init__(self, environment: str):
        self.environment = environment
        super().__init__(f"Invalid environment: {environment}")


# ============================================================================
# Upstream services
# ============================================================================

class UpstreamError(PersonaError):
    """Transient failure talking to the embedding or completion service."""


class EmbeddingError(UpstreamError):
    def __init__(self, message: str, text: Optional[str] = None, attempts: int = 0):
        self.text = text
        self.attempts = attempts
        super().__init__(message)


class EmbeddingRetryExhaustedError(EmbeddingError):
    """Every retry for one text failed."""


class CompletionError(UpstreamError):
    pass


# ============================================================================
# Stores
# ============================================================================

class StoreError(PersonaError):
    def __init__(self, message: str, operation: str = "", status_code: Optional[int] = None):
        self.operation = operation
        self.status_code = status_code
        super().__init__(message)


class MessageStoreError(StoreError):
    pass


class VectorStoreError(StoreError):
    pass


class SyncBatchError(PersonaError):
    """A batch could not be stored; none of its progress was kept."""

    def __init__(self, message: str, message_ids: Optional[List[str]] = None):
        self.message_ids = message_ids or []
        super().__init__(message)


# ============================================================================
# Response generation
# ============================================================================

class GenerationError(PersonaError):
    code = "generation_failed"


class GenerationTimeoutError(GenerationError):
    code = "generation_timeout"

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"Response generation timed out after {timeout:g}s")


# ============================================================================
# Not-found outcomes
# ============================================================================

class NotFoundError(PersonaError):
    pass


class UserNotFoundError(NotFoundError):
    def __init__(self, username: str):
        self.username = username
        super().__init__(f"User {username} not found")


class NoMessagesError(NotFoundError):
    def __init__(self, username: str):
        self.username = username
        super().__init__(f"No messages found for user {username}")
