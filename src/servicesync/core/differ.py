"""
State differ: compare an observed Service with the desired one.

Field groups, all evaluated (no short-circuit):
  - owner references: structural equality, replaced wholesale
  - ports: order-insensitive (sorted by name), replaced wholesale
  - selector: structural equality (a missing selector equals an empty one), replaced wholesale
  - type: equality, replaced
  - annotations: additive merge; keys only present on the current object survive
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Callable, List, Sequence, Tuple, TypeVar

from .models import PortBinding, Service

T = TypeVar("T")

FIELD_OWNER_REFERENCES = "ownerReferences"
FIELD_PORTS = "ports"
FIELD_SELECTOR = "selector"
FIELD_TYPE = "type"
FIELD_ANNOTATIONS = "annotations"


def unordered_equal(
    current: Sequence[T],
    desired: Sequence[T],
    key: Callable[[T], Any],
    eq: Callable[[T, T], bool],
) -> bool:
    """Compare two collections ignoring order.

    Copies of both are stable-sorted by `key` and compared pairwise with `eq`.
    The inputs are not modified.
    """
    if len(current) != len(desired):
        return False
    for c, d in zip(sorted(current, key=key), sorted(desired, key=key)):
        if not eq(c, d):
            return False
    return True


def _port_eq(c: PortBinding, d: PortBinding) -> bool:
    return (
        c.name == d.name
        and c.port == d.port
        and c.target_port_value == d.target_port_value
        and c.protocol == d.protocol
    )


def ports_match(current: Sequence[PortBinding], desired: Sequence[PortBinding]) -> bool:
    return unordered_equal(current, desired, key=lambda p: p.name, eq=_port_eq)


@dataclass
class DiffResult:
    patched: Service
    changed: bool = False
    fields: List[str] = field(default_factory=list)


def compare(current: Service, desired: Service) -> DiffResult:
    """Return a merged copy of `current` plus which field groups drifted."""
    patched = current.copy()
    fields: List[str] = []

    if patched.owner_references != desired.owner_references:
        patched.owner_references = copy.deepcopy(desired.owner_references)
        fields.append(FIELD_OWNER_REFERENCES)

    if not ports_match(patched.ports, desired.ports):
        patched.ports = copy.deepcopy(desired.ports)
        fields.append(FIELD_PORTS)

    if (patched.selector or {}) != (desired.selector or {}):
        patched.selector = copy.deepcopy(desired.selector)
        fields.append(FIELD_SELECTOR)

    if patched.type != desired.type:
        patched.type = desired.type
        fields.append(FIELD_TYPE)

    if patched.annotations is None and desired.annotations:
        patched.annotations = {}
    annotations_changed = False
    for k, v in (desired.annotations or {}).items():
        if k not in patched.annotations or patched.annotations[k] != v:
            patched.annotations[k] = v
            annotations_changed = True
    if annotations_changed:
        fields.append(FIELD_ANNOTATIONS)

    return DiffResult(patched=patched, changed=bool(fields), fields=fields)


def diff(current: Service, desired: Service) -> Tuple[Service, bool]:
    """(patched, changed): `current` with every drifted field group taken from `desired`."""
    res = compare(current, desired)
    return res.patched, res.changed
