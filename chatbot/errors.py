"""Exception types for the chatbot core.

Every failure the core raises on purpose is one of the classes below. The
HTTP layer maps them to responses in a single handler, so new failure kinds
belong here and nowhere else.
"""


class ChatbotError(Exception):
    """Base exception for all chatbot errors."""
    status = 500

    def __init__(self, message: str = "", status: int = None):
        super().__init__(message)
        self.message = message
        if status is not None:
            self.status = status


class InvalidRequest(ChatbotError):
    """Raised when caller input is missing or malformed."""
    status = 400


class Unauthorized(ChatbotError):
    """Raised when a caller touches a chat log they do not own."""
    status = 403


class ChunkNotFound(ChatbotError):
    """Raised when a chunk id does not exist in the knowledge store."""
    status = 404


class LogNotFound(ChatbotError):
    """Raised when an update targets a missing chat log."""
    status = 404


class OwnerNotFound(ChatbotError):
    """Raised when an update targets a missing owner record."""
    status = 404


class EmbeddingFailure(ChatbotError):
    """Raised when the embedding model errors or returns no vectors."""


class ChunkingFailure(ChatbotError):
    """Raised when chunking output is malformed or empty."""


class RetrievalFailure(ChatbotError):
    """Raised when query expansion, embedding or search fails for any variant."""


class GenerationFailure(ChatbotError):
    """Raised when the language model call fails."""
