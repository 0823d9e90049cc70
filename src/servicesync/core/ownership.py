"""
Owner linkage: record the owner as the controller of the managed Service.

Rules (controller-reference semantics):
  - the owner needs api_version, kind, name and uid
  - a namespaced owner must live in the Service's namespace
  - a Service already controlled by a different owner cannot be re-parented
  - an existing reference to the same owner is replaced in place, otherwise appended
"""

from __future__ import annotations

from .errors import LinkageError
from .models import OwnerIdentity, OwnerReference, Service


def _group(api_version: str) -> str:
    # "apps/v1" -> "apps"; the core group ("v1") has an empty name
    return api_version.split("/", 1)[0] if "/" in api_version else ""


def _same_owner(ref: OwnerReference, owner: OwnerReference) -> bool:
    # Group + kind + name identify the owner.
    return (
        _group(ref.api_version) == _group(owner.api_version)
        and ref.kind == owner.kind
        and ref.name == owner.name
    )


def controller_reference(owner: OwnerIdentity) -> OwnerReference:
    return OwnerReference(
        api_version=owner.api_version,
        kind=owner.kind,
        name=owner.name,
        uid=owner.uid,
        controller=True,
        block_owner_deletion=True,
    )


def set_controller_reference(owner: OwnerIdentity, service: Service) -> None:
    """Attach `owner` as controller of `service` (in place). Raises LinkageError."""
    missing = [
        f for f, v in (
            ("api_version", owner.api_version),
            ("kind", owner.kind),
            ("name", owner.name),
            ("uid", owner.uid),
        ) if not v
    ]
    if missing:
        raise LinkageError(f"owner is missing {', '.join(missing)}")

    if owner.namespace and owner.namespace != service.namespace:
        raise LinkageError(
            f'cross-namespace owner references are disallowed, owner\'s namespace '
            f'"{owner.namespace}", obj\'s namespace "{service.namespace}"'
        )

    ref = controller_reference(owner)
    for existing in service.owner_references:
        if existing.controller and not _same_owner(existing, ref):
            raise LinkageError(
                f'service "{service.key}" is already owned by another {existing.kind} controller {existing.name}'
            )

    for i, existing in enumerate(service.owner_references):
        if _same_owner(existing, ref):
            service.owner_references[i] = ref
            return
    service.owner_references.append(ref)
