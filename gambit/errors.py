from __future__ import annotations


class GambitError(Exception):
    """Base class for errors raised by the training engine."""


class BufferUnderflowError(GambitError):
    def __init__(self, requested: int, available: int) -> None:
        super().__init__(
            f"Requested {requested} experiences but the buffer holds only {available}."
        )
        self.requested = requested
        self.available = available


class SeedStateError(GambitError, RuntimeError):
    pass


class InvalidActionError(GambitError, ValueError):
    pass


class CheckpointError(GambitError):
    pass


class ConfigurationError(GambitError, ValueError):
    pass


class TrainingSessionError(GambitError, RuntimeError):
    def __init__(self, message: str, session_id: str = "") -> None:
        super().__init__(message)
        self.session_id = session_id
