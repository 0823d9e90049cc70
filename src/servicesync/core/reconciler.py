"""
Convergence driver for the managed Service (one cycle per call).

    START -> READING -> NOT_FOUND -> CREATING -> CONFIRMING -> DONE
                     -> FOUND -> DIFFING -> UNCHANGED -> DONE
                                         -> CHANGED -> WRITING -> CONFIRMING -> DONE

- Every phase but DONE has one error exit: a ReconcileError tagged with the phase.
- No internal retry; a failed cycle is simply re-run by the outer loop.
- `plan()` walks the same machine but stops before CREATING / WRITING (dry run).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, FrozenSet, List, Optional, Union

from .context import ContextCancelled, RequestContext
from .control_plane import ServiceAPI
from .desired import DesiredStateBuilder
from .differ import compare
from .errors import NotFoundError, ReconcileCancelled, ReconcileError, ServiceSyncError
from .models import OwnerIdentity, Service
from .ownership import set_controller_reference

Linker = Callable[[OwnerIdentity, Service], None]


class Phase(str, Enum):
    START = "start"
    READING = "reading"
    NOT_FOUND = "not_found"
    CREATING = "creating"
    FOUND = "found"
    DIFFING = "diffing"
    UNCHANGED = "unchanged"
    CHANGED = "changed"
    WRITING = "writing"
    CONFIRMING = "confirming"
    DONE = "done"


ACTION_CREATED = "created"
ACTION_UPDATED = "updated"
ACTION_UNCHANGED = "unchanged"


@dataclass
class _Cycle:
    ctx: RequestContext
    owner: OwnerIdentity
    namespace: str
    desired: Optional[Service] = None
    current: Optional[Service] = None
    patched: Optional[Service] = None
    result: Optional[Service] = None
    action: str = ""
    fields: List[str] = field(default_factory=list)
    trace: List[Phase] = field(default_factory=list)


@dataclass(frozen=True)
class Outcome:
    """Result of a completed cycle."""
    state: Service
    action: str
    fields: List[str]
    trace: List[Phase]


@dataclass(frozen=True)
class Plan:
    """What a cycle would do, without writing anything."""
    action: str  # "create" | "update" | "none"
    desired: Service
    current: Optional[Service] = None
    patched: Optional[Service] = None
    fields: List[str] = field(default_factory=list)


class ServiceReconciler:
    def __init__(
        self,
        api: ServiceAPI,
        builder: Optional[DesiredStateBuilder] = None,
        *,
        linker: Linker = set_controller_reference,
        logger: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None,
    ) -> None:
        self.api = api
        self.builder = builder or DesiredStateBuilder()
        self.linker = linker
        self.log = logger or logging.getLogger("svcsync.reconciler")
        self._handlers: Dict[Phase, Callable[[_Cycle], Phase]] = {
            Phase.START: self._start,
            Phase.READING: self._read,
            Phase.NOT_FOUND: lambda c: Phase.CREATING,
            Phase.CREATING: self._create,
            Phase.FOUND: lambda c: Phase.DIFFING,
            Phase.DIFFING: self._diff,
            Phase.UNCHANGED: self._unchanged,
            Phase.CHANGED: lambda c: Phase.WRITING,
            Phase.WRITING: self._write,
            Phase.CONFIRMING: self._confirm,
        }

    # ------------- Public API -------------

    def reconcile(self, ctx: RequestContext, owner: OwnerIdentity, namespace: str) -> Service:
        """Converge the Service and return its authoritative post-cycle state."""
        return self.run(ctx, owner, namespace).state

    def run(self, ctx: RequestContext, owner: OwnerIdentity, namespace: str) -> Outcome:
        cycle = _Cycle(ctx=ctx, owner=owner, namespace=namespace)
        self._drive(cycle)
        assert cycle.result is not None
        return Outcome(state=cycle.result, action=cycle.action, fields=list(cycle.fields), trace=list(cycle.trace))

    def plan(self, ctx: RequestContext, owner: OwnerIdentity, namespace: str) -> Plan:
        """Dry run: read and diff, never create or update."""
        cycle = _Cycle(ctx=ctx, owner=owner, namespace=namespace)
        last = self._drive(cycle, stop_at=frozenset({Phase.CREATING, Phase.WRITING}))
        assert cycle.desired is not None
        if last == Phase.CREATING:
            return Plan(action="create", desired=cycle.desired)
        if last == Phase.WRITING:
            return Plan(
                action="update",
                desired=cycle.desired,
                current=cycle.current,
                patched=cycle.patched,
                fields=list(cycle.fields),
            )
        return Plan(action="none", desired=cycle.desired, current=cycle.current)

    # ------------- State machine -------------

    def _drive(self, cycle: _Cycle, stop_at: FrozenSet[Phase] = frozenset()) -> Phase:
        phase = Phase.START
        while phase != Phase.DONE and phase not in stop_at:
            cycle.trace.append(phase)
            try:
                phase = self._handlers[phase](cycle)
            except ContextCancelled as e:
                raise ReconcileCancelled(phase.value, self._key(cycle), e) from e
            except ServiceSyncError as e:
                raise ReconcileError(phase.value, self._key(cycle), e) from e
        return phase

    @staticmethod
    def _key(cycle: _Cycle) -> str:
        name = cycle.desired.name if cycle.desired else "?"
        return f"{cycle.namespace}/{name}"

    def _start(self, c: _Cycle) -> Phase:
        c.desired = self.builder.build(c.owner.name, c.namespace)
        self.linker(c.owner, c.desired)
        return Phase.READING

    def _read(self, c: _Cycle) -> Phase:
        c.ctx.check()
        try:
            c.current = self.api.read(c.ctx, c.namespace, c.desired.name)
        except NotFoundError:
            self.log.debug("service %s not found, creating it", self._key(c))
            return Phase.NOT_FOUND
        return Phase.FOUND

    def _create(self, c: _Cycle) -> Phase:
        c.ctx.check()
        self.api.create(c.ctx, c.desired)
        c.action = ACTION_CREATED
        self.log.info("successfully created service svc.name=%s svc.namespace=%s", c.desired.name, c.namespace)
        return Phase.CONFIRMING

    def _diff(self, c: _Cycle) -> Phase:
        res = compare(c.current, c.desired)
        c.patched = res.patched
        c.fields = res.fields
        return Phase.CHANGED if res.changed else Phase.UNCHANGED

    def _unchanged(self, c: _Cycle) -> Phase:
        c.result = c.current
        c.action = ACTION_UNCHANGED
        self.log.debug("service %s is up to date", self._key(c))
        return Phase.DONE

    def _write(self, c: _Cycle) -> Phase:
        c.ctx.check()
        self.log.debug("service %s drifted on %s", self._key(c), ", ".join(c.fields))
        self.api.update(c.ctx, c.patched)
        c.action = ACTION_UPDATED
        return Phase.CONFIRMING

    def _confirm(self, c: _Cycle) -> Phase:
        c.ctx.check()
        c.result = self.api.read(c.ctx, c.namespace, c.desired.name)
        if c.action == ACTION_UPDATED:
            self.log.info("successfully updated service svc.name=%s svc.namespace=%s", c.desired.name, c.namespace)
        return Phase.DONE
