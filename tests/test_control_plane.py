import threading
from types import SimpleNamespace

import pytest

from conftest import FakeControlPlane
from servicesync.core import context as context_mod
from servicesync.core.context import ContextCancelled, RequestContext
from servicesync.core.control_plane import ControlPlaneClient
from servicesync.core.errors import NotFoundError, ReconcileCancelled, TransientAPIError
from servicesync.core.models import OwnerIdentity, PortBinding, Service
from servicesync.core.reconciler import ServiceReconciler


def _svc(ns="ns", name="agent"):
    return Service(
        namespace=ns,
        name=name,
        labels={"app": "x"},
        annotations={"a": "1"},
        selector={"app": "x"},
        cluster_ip="None",
        ports=[PortBinding(port=8443, target_port=8443)],
    )


def test_read_missing_raises_not_found(api_server):
    client = ControlPlaneClient(api_server, token="TEST", timeout_sec=2)
    with pytest.raises(NotFoundError):
        client.read(RequestContext.background(), "ns", "agent")


def test_create_then_read_round_trip(api_server):
    client = ControlPlaneClient(api_server, token="TEST", timeout_sec=2)
    ctx = RequestContext.background()
    created = client.create(ctx, _svc())

    assert FakeControlPlane.last_body["kind"] == "Service"
    assert FakeControlPlane.last_body["spec"]["clusterIP"] == "None"
    assert created.resource_version == "100"

    got = client.read(ctx, "ns", "agent")
    assert got.selector == {"app": "x"}
    assert got.ports == [PortBinding(port=8443, target_port=8443)]
    assert got.raw["metadata"]["uid"] == "svc-uid"


def test_update_sends_resource_version_and_conflicts_surface(api_server):
    client = ControlPlaneClient(api_server, token="TEST", timeout_sec=2)
    ctx = RequestContext.background()
    client.create(ctx, _svc())

    current = client.read(ctx, "ns", "agent")
    current.type = "NodePort"
    updated = client.update(ctx, current)
    assert updated.resource_version == "101"

    # stale write: the API's optimistic concurrency rejects it, no retry here
    with pytest.raises(TransientAPIError) as ei:
        client.update(ctx, current)
    assert ei.value.status == 409
    assert FakeControlPlane.calls["PUT"] == 2


def test_server_error_is_transient(api_server):
    client = ControlPlaneClient(api_server, token="TEST", timeout_sec=2)
    with pytest.raises(TransientAPIError) as ei:
        client.read(RequestContext.background(), "boom", "agent")
    assert ei.value.status == 500
    assert "etcd unavailable" in ei.value.body
    assert FakeControlPlane.calls["GET"] == 1


def test_unauthorized_is_not_not_found(api_server):
    client = ControlPlaneClient(api_server, token="WRONG", timeout_sec=2)
    with pytest.raises(TransientAPIError) as ei:
        client.read(RequestContext.background(), "ns", "agent")
    assert ei.value.status == 401


def test_timeout_is_transient(api_server):
    client = ControlPlaneClient(api_server, token="TEST", timeout_sec=0.1)
    with pytest.raises(TransientAPIError) as ei:
        client.read(RequestContext.background(), "slow", "agent")
    assert ei.value.status == 0
    assert "timed out" in str(ei.value)


def test_deadline_caps_request_timeout(api_server):
    client = ControlPlaneClient(api_server, token="TEST", timeout_sec=5)
    with pytest.raises(ContextCancelled):
        client.read(RequestContext(timeout_sec=0.1), "slow", "agent")


def _pin_clock(monkeypatch, *early):
    """monotonic() returns `early` in order, then 100.0 forever."""
    ticks = list(early)

    def clock():
        return ticks.pop(0) if ticks else 100.0

    monkeypatch.setattr(context_mod, "time", SimpleNamespace(monotonic=clock))


def test_deadline_expiring_after_check_is_a_cancellation(api_server, monkeypatch):
    _pin_clock(monkeypatch, 99.0)
    client = ControlPlaneClient(api_server, token="TEST", timeout_sec=5)
    with pytest.raises(ContextCancelled, match="deadline exceeded"):
        client.read(RequestContext(deadline=100.0), "ns", "agent")
    assert FakeControlPlane.calls["GET"] == 0


def test_deadline_expiring_mid_cycle_is_wrapped(api_server, monkeypatch):
    # reconciler check, client check, then the timeout computation hits the deadline
    _pin_clock(monkeypatch, 99.0, 99.0)
    owner = OwnerIdentity(api_version="example.com/v1", kind="Owner", name="cluster", uid="owner-uid")
    reconciler = ServiceReconciler(ControlPlaneClient(api_server, token="TEST", timeout_sec=5))

    with pytest.raises(ReconcileCancelled) as ei:
        reconciler.reconcile(RequestContext(deadline=100.0), owner, "obs")
    assert ei.value.phase == "reading"
    assert ei.value.resource == "obs/node-observability-agent"
    assert FakeControlPlane.calls == {"GET": 0, "POST": 0, "PUT": 0}


def test_cancelled_context_sends_nothing(api_server):
    client = ControlPlaneClient(api_server, token="TEST", timeout_sec=2)
    ctx = RequestContext.background()
    ctx.cancel()
    with pytest.raises(ContextCancelled):
        client.read(ctx, "ns", "agent")
    assert FakeControlPlane.calls["GET"] == 0


def test_cancel_does_not_abort_request_in_flight(api_server):
    client = ControlPlaneClient(api_server, token="TEST", timeout_sec=2)
    ctx = RequestContext.background()
    timer = threading.Timer(0.1, ctx.cancel)
    timer.start()
    try:
        # the slow GET still completes; only the next check sees the cancel
        with pytest.raises(NotFoundError):
            client.read(ctx, "slow", "agent")
    finally:
        timer.join()
    assert ctx.cancelled
    with pytest.raises(ContextCancelled, match="context cancelled"):
        client.read(ctx, "ns", "agent")
    assert FakeControlPlane.calls["GET"] == 1


def test_connection_refused_is_transient():
    client = ControlPlaneClient("http://127.0.0.1:9", token="TEST", timeout_sec=1)
    with pytest.raises(TransientAPIError) as ei:
        client.read(RequestContext.background(), "ns", "agent")
    assert ei.value.status == 0


def test_base_url_required():
    with pytest.raises(ValueError):
        ControlPlaneClient("")


def test_reconcile_end_to_end_over_http(api_server):
    owner = OwnerIdentity(api_version="example.com/v1", kind="Owner", name="cluster", uid="owner-uid")
    client = ControlPlaneClient(api_server, token="TEST", timeout_sec=2)
    reconciler = ServiceReconciler(client)
    ctx = RequestContext.background()

    first = reconciler.run(ctx, owner, "obs")
    assert first.action == "created"
    assert FakeControlPlane.calls == {"GET": 2, "POST": 1, "PUT": 0}

    # someone else edits the Service behind our back
    stored = FakeControlPlane.objects[("obs", "node-observability-agent")]
    stored["spec"]["ports"] = [{"name": "metrics", "port": 9090, "targetPort": 9090, "protocol": "TCP"}]
    stored["metadata"]["annotations"]["team"] = "obs"

    second = reconciler.run(ctx, owner, "obs")
    assert second.action == "updated"
    assert second.fields == ["ports"]
    assert second.state.annotations["team"] == "obs"
    assert [p.port for p in second.state.ports] == [8443]

    third = reconciler.run(ctx, owner, "obs")
    assert third.action == "unchanged"
    assert FakeControlPlane.calls["PUT"] == 1
