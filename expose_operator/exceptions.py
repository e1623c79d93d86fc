"""Expose operator exceptions."""

from typing import List, Optional


class ExposeError(Exception):
    """Base exception for expose operator errors."""

    pass


class ConfigurationError(ExposeError):
    """Raised when a service or the operator configuration cannot be exposed."""

    pass


class AnnotationError(ConfigurationError):
    """Raised when the embedded ingress annotations block cannot be parsed."""

    def __init__(self, namespace: str, name: str, cause: Exception):
        self.namespace = namespace
        self.name = name
        self.cause = cause
        super().__init__(f"service {namespace}/{name} has malformed ingress annotations: {cause}")


class ResourceConflictError(ExposeError):
    """Raised when a routing resource name is held by a resource we do not own."""

    pass


class ClusterError(ExposeError):
    """Wraps a failed cluster API call with the object it was acting on."""

    def __init__(self, operation: str, kind: str, namespace: str, name: str, cause: Exception):
        self.operation = operation
        self.kind = kind
        self.namespace = namespace
        self.name = name
        self.cause = cause
        super().__init__(f"failed to {operation} {kind} {namespace}/{name}: {cause}")

    @property
    def status(self) -> Optional[int]:
        return getattr(self.cause, 'status', None)

    @property
    def is_conflict(self) -> bool:
        """Stale resourceVersion; the caller should retry the whole Add"""
        return self.status == 409


class CleanError(ExposeError):
    """Aggregate of the deletions a Clean or Delete call could not complete."""

    def __init__(self, namespace: str, name: str, errors: List[Exception]):
        self.namespace = namespace
        self.name = name
        self.errors = errors
        details = '; '.join(str(e) for e in errors)
        super().__init__(f"failed to clean service {namespace}/{name}: {details}")


class SyncError(ExposeError):
    """Raised after a sync pass when some routing resources could not be reaped."""

    def __init__(self, errors: List[Exception]):
        self.errors = errors
        details = '; '.join(str(e) for e in errors)
        super().__init__(f"sync could not delete {len(errors)} resource(s): {details}")
