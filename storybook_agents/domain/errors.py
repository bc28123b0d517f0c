from __future__ import annotations


class StorybookError(Exception):
    """Base class for pipeline errors."""


class ValidationError(StorybookError):
    """Malformed or missing input supplied by the caller."""


class InvalidTransitionError(ValidationError):
    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Cannot move run from phase '{current}' to '{target}'")
        self.current = current
        self.target = target


class NotFoundError(StorybookError):
    def __init__(self, kind: str, key: object) -> None:
        super().__init__(f"{kind} not found: {key}")
        self.kind = kind
        self.key = key


class UpstreamServiceError(StorybookError):
    """Text or image service failure, including timeouts."""


class PersistenceError(StorybookError):
    """Draft, record or asset storage failure."""


class Cancelled(StorybookError):
    """A batch request observed its cancellation signal."""
