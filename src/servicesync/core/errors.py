"""
Error taxonomy for ServiceSync.

- NotFoundError: the collaborator's read found nothing (drives the create path).
- TransientAPIError: any other control-plane failure; the outer loop retries the cycle.
- LinkageError: the owner reference cannot be attached (contract violation).
- ReconcileError: what the convergence driver raises, tagged with phase + resource.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


class ServiceSyncError(Exception):
    """Base error for ServiceSync."""


class NotFoundError(ServiceSyncError):
    """Raised by a read when the resource does not exist."""

    def __init__(self, namespace: str, name: str) -> None:
        super().__init__(f'service "{namespace}/{name}" not found')
        self.namespace = namespace
        self.name = name


@dataclass(eq=False)
class TransientAPIError(ServiceSyncError):
    """Control-plane/transport error with context."""
    status: int
    method: str
    url: str
    body: str = ""
    message: str = ""

    def __str__(self) -> str:
        base = f"TransientAPIError(status={self.status}, {self.method} {self.url})"
        if self.message:
            base += f": {self.message}"
        if self.body:
            base += f" body={self.body[:200]}"
        return base


class LinkageError(ServiceSyncError):
    """Raised when owner linkage cannot be recorded on the managed resource."""


class ReconcileError(ServiceSyncError):
    """A failed convergence cycle.

    `phase` is the state-machine phase that failed, `resource` is "namespace/name".
    The underlying error is kept as `cause` (and chained via ``raise ... from``).
    """

    _VERBS = {
        "start": "set the controller reference for",
        "reading": "get",
        "creating": "create",
        "writing": "update",
        "confirming": "get existing",
    }

    def __init__(self, phase: str, resource: str, cause: Optional[BaseException] = None) -> None:
        verb = self._VERBS.get(phase, phase)
        msg = f'failed to {verb} service "{resource}"'
        if cause is not None:
            msg += f": {cause}"
        super().__init__(msg)
        self.phase = phase
        self.resource = resource
        self.cause = cause


class ReconcileCancelled(ReconcileError):
    """The request context was cancelled or its deadline passed."""
