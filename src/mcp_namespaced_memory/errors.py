"""Error taxonomy shared by the storage adapters, services and protocol layers."""


class MemoryServiceError(Exception):
    """Base class for all service errors."""


class NotFoundError(MemoryServiceError):
    """Update/delete target is missing, soft-deleted, or lives in another namespace."""

    def __init__(self, memory_id: str, namespace: str):
        self.memory_id = memory_id
        self.namespace = namespace
        super().__init__(f"Memory {memory_id} not found in {namespace}")


class InvalidInputError(MemoryServiceError, ValueError):
    """Caller input rejected before any downstream call."""


class DownstreamUnavailableError(MemoryServiceError):
    """An external collaborator (embedding provider, vector index) failed."""


class EmbeddingError(DownstreamUnavailableError):
    """Embedding provider unreachable or returned malformed output."""


class StorageError(DownstreamUnavailableError):
    """Vector index errors, including an open circuit breaker."""


class SessionConflictError(MemoryServiceError):
    """A session snapshot was saved against a stale version."""

    def __init__(self, session_id: str, expected_version: int, actual_version: int):
        self.session_id = session_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        super().__init__(
            f"Session {session_id} was modified concurrently "
            f"(expected version {expected_version}, found {actual_version})"
        )
