import copy
import json
import re
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import urlparse

import pytest

from servicesync.core.errors import NotFoundError, TransientAPIError
from servicesync.core.models import OwnerIdentity, Service

_ITEM = re.compile(r"^/api/v1/namespaces/([^/]+)/services/([^/]+)$")
_COLL = re.compile(r"^/api/v1/namespaces/([^/]+)/services$")


class FakeControlPlane(BaseHTTPRequestHandler):
    # class-level state so tests can inspect calls and stored objects
    calls = {"GET": 0, "POST": 0, "PUT": 0}
    objects = {}
    last_body = None

    protocol_version = "HTTP/1.1"

    def _auth_ok(self) -> bool:
        return self.headers.get("Authorization", "").strip() == "Bearer TEST"

    def _send_json(self, status: int, obj) -> None:
        raw = json.dumps(obj).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(raw)))
        self.end_headers()
        self.wfile.write(raw)

    def _status(self, code: int, reason: str, message: str) -> None:
        self._send_json(code, {"kind": "Status", "status": "Failure", "reason": reason, "message": message, "code": code})

    def _body(self):
        length = int(self.headers.get("Content-Length", "0"))
        raw = self.rfile.read(length) if length else b"{}"
        return json.loads(raw.decode("utf-8"))

    def do_GET(self):  # noqa: N802
        FakeControlPlane.calls["GET"] += 1
        if not self._auth_ok():
            self._status(401, "Unauthorized", "Unauthorized")
            return
        m = _ITEM.match(urlparse(self.path).path)
        if not m:
            self._status(404, "NotFound", "the server could not find the requested resource")
            return
        ns, name = m.groups()
        if ns == "boom":
            self._status(500, "InternalError", "etcd unavailable")
            return
        if ns == "slow":
            time.sleep(0.5)
        obj = FakeControlPlane.objects.get((ns, name))
        if obj is None:
            self._status(404, "NotFound", f'services "{name}" not found')
            return
        self._send_json(200, obj)

    def do_POST(self):  # noqa: N802
        FakeControlPlane.calls["POST"] += 1
        m = _COLL.match(urlparse(self.path).path)
        body = self._body()
        FakeControlPlane.last_body = body
        if not m:
            self._status(404, "NotFound", "not found")
            return
        key = (m.group(1), body["metadata"]["name"])
        if key in FakeControlPlane.objects:
            self._status(409, "AlreadyExists", f'services "{key[1]}" already exists')
            return
        body["metadata"]["resourceVersion"] = "100"
        body["metadata"]["uid"] = "svc-uid"
        FakeControlPlane.objects[key] = body
        self._send_json(201, body)

    def do_PUT(self):  # noqa: N802
        FakeControlPlane.calls["PUT"] += 1
        m = _ITEM.match(urlparse(self.path).path)
        body = self._body()
        FakeControlPlane.last_body = body
        key = m.groups() if m else None
        current = FakeControlPlane.objects.get(key)
        if current is None:
            self._status(404, "NotFound", "not found")
            return
        if body["metadata"].get("resourceVersion") != current["metadata"]["resourceVersion"]:
            self._status(409, "Conflict", "the object has been modified; please apply your changes to the latest version")
            return
        body["metadata"]["resourceVersion"] = str(int(current["metadata"]["resourceVersion"]) + 1)
        FakeControlPlane.objects[key] = body
        self._send_json(200, body)

    def log_message(self, fmt, *args):  # silence test server logs
        return


@pytest.fixture
def api_server():
    FakeControlPlane.calls = {"GET": 0, "POST": 0, "PUT": 0}
    FakeControlPlane.objects = {}
    FakeControlPlane.last_body = None
    server = ThreadingHTTPServer(("127.0.0.1", 0), FakeControlPlane)
    t = threading.Thread(target=server.serve_forever, daemon=True)
    t.start()
    yield f"http://{server.server_address[0]}:{server.server_address[1]}"
    server.shutdown()
    server.server_close()
    t.join(timeout=1.0)



class FakeServiceAPI:
    """In-memory stand-in for the control plane (read/create/update)."""

    def __init__(self, objects=None):
        self.objects = {}
        self.calls = {"read": 0, "create": 0, "update": 0}
        self.log = []
        self.fail = {}  # method -> exception to raise
        self.on_read = None  # optional hook(ctx, namespace, name) before each read
        for manifest in objects or []:
            meta = manifest["metadata"]
            self.objects[(meta["namespace"], meta["name"])] = copy.deepcopy(manifest)

    def _maybe_fail(self, method):
        exc = self.fail.get(method)
        if exc is not None:
            raise exc

    def read(self, ctx, namespace, name):
        self.calls["read"] += 1
        self.log.append("read")
        if self.on_read:
            self.on_read(ctx, namespace, name)
        self._maybe_fail("read")
        manifest = self.objects.get((namespace, name))
        if manifest is None:
            raise NotFoundError(namespace, name)
        return Service.from_manifest(copy.deepcopy(manifest))

    def create(self, ctx, service):
        self.calls["create"] += 1
        self.log.append("create")
        self._maybe_fail("create")
        manifest = service.to_manifest()
        manifest["metadata"]["resourceVersion"] = "1"
        manifest["metadata"]["uid"] = "svc-uid"
        self.objects[(service.namespace, service.name)] = manifest
        return Service.from_manifest(copy.deepcopy(manifest))

    def update(self, ctx, service):
        self.calls["update"] += 1
        self.log.append("update")
        self._maybe_fail("update")
        key = (service.namespace, service.name)
        if key not in self.objects:
            raise TransientAPIError(status=404, method="PUT", url="/fake", message="Not Found")
        manifest = service.to_manifest()
        rv = int(self.objects[key]["metadata"].get("resourceVersion") or "0")
        manifest["metadata"]["resourceVersion"] = str(rv + 1)
        self.objects[key] = manifest
        return Service.from_manifest(copy.deepcopy(manifest))

    @property
    def writes(self):
        return self.calls["create"] + self.calls["update"]


@pytest.fixture
def owner():
    return OwnerIdentity(
        api_version="nodeobservability.olm.openshift.io/v1alpha2",
        kind="NodeObservability",
        name="cluster",
        uid="0b4c8a4e-1111-2222-3333-444455556666",
    )


@pytest.fixture
def fake_api():
    return FakeServiceAPI()
