"""
Control-plane client for core/v1 Services.

- requests.Session with bearer token, JSON in/out.
- read / create / update map to GET / POST / PUT on /api/v1/namespaces/{ns}/services.
- 404 on read -> NotFoundError; any other failure -> TransientAPIError.
- No retries: the outer control loop re-runs the whole cycle.
- Per-request timeout is capped by the request context's deadline.

Usage:
    client = ControlPlaneClient("https://api.cluster:6443", token)
    svc = client.read(ctx, "openshift-node-observability-operator", "node-observability-agent")
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional, Protocol, Union

import requests

from .context import RequestContext
from .errors import NotFoundError, TransientAPIError
from .models import Manifest, Service

_SNIPPET = 200


class ServiceAPI(Protocol):
    """What the convergence driver needs from its surroundings."""

    def read(self, ctx: RequestContext, namespace: str, name: str) -> Service: ...

    def create(self, ctx: RequestContext, service: Service) -> Any: ...

    def update(self, ctx: RequestContext, service: Service) -> Any: ...


class ControlPlaneClient:
    """Minimal JSON client for the Service endpoints of the control-plane API."""

    def __init__(
        self,
        base_url: str,
        token: str = "",
        *,
        verify_tls: bool = True,
        ca_file: Optional[str] = None,
        timeout_sec: float = 30,
        session: Optional[requests.Session] = None,
        logger: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None,
    ) -> None:
        if not base_url:
            raise ValueError("base_url is required")
        self.base_url = base_url.rstrip("/")
        self.timeout = float(timeout_sec)
        self.verify: Union[bool, str] = ca_file or bool(verify_tls)
        self.log = logger or logging.getLogger("svcsync.http")

        self.session = session or requests.Session()
        self.session.headers.update({
            "Accept": "application/json",
            "Content-Type": "application/json",
            "User-Agent": "ServiceSync/HTTPClient",
        })
        if token:
            self.session.headers["Authorization"] = f"Bearer {token}"

    # ------------- Public API -------------

    def read(self, ctx: RequestContext, namespace: str, name: str) -> Service:
        try:
            data = self._request(ctx, "GET", self.service_path(namespace, name))
        except TransientAPIError as e:
            if e.status == 404:
                raise NotFoundError(namespace, name) from e
            raise
        return Service.from_manifest(data)

    def create(self, ctx: RequestContext, service: Service) -> Service:
        data = self._request(ctx, "POST", self.collection_path(service.namespace), service.to_manifest())
        return Service.from_manifest(data) if data else service

    def update(self, ctx: RequestContext, service: Service) -> Service:
        data = self._request(ctx, "PUT", self.service_path(service.namespace, service.name), service.to_manifest())
        return Service.from_manifest(data) if data else service

    # ------------- Path builders -------------

    @staticmethod
    def collection_path(namespace: str) -> str:
        return f"api/v1/namespaces/{namespace}/services"

    @staticmethod
    def service_path(namespace: str, name: str) -> str:
        return f"api/v1/namespaces/{namespace}/services/{name}"

    # ------------- Internal -------------

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _request(
        self,
        ctx: RequestContext,
        method: str,
        path: str,
        body: Optional[Manifest] = None,
    ) -> Dict[str, Any]:
        ctx.check()
        url = self._url(path)
        try:
            resp = self.session.request(
                method=method,
                url=url,
                json=body,
                timeout=ctx.timeout(self.timeout),
                verify=self.verify,
            )
        except requests.Timeout as exc:
            # A timeout caused by the caller's deadline is a cancellation, not an API error.
            ctx.check()
            self.log.warning("%s %s timed out: %s", method, path, exc)
            raise TransientAPIError(status=0, method=method, url=url, message="timed out") from exc
        except requests.RequestException as exc:
            self.log.warning("%s %s failed: %s", method, path, exc)
            raise TransientAPIError(status=0, method=method, url=url, message=str(exc)) from exc

        if resp.status_code >= 400:
            snippet = resp.text[:_SNIPPET]
            if resp.status_code == 404 and method == "GET":
                self.log.debug("%s %s -> 404", method, path)
            else:
                self.log.warning("%s %s -> %s: %s", method, path, resp.status_code, snippet)
            raise TransientAPIError(
                status=resp.status_code,
                method=method,
                url=url,
                body=snippet,
                message=resp.reason or "",
            )

        self.log.debug("%s %s -> %s", method, path, resp.status_code)
        if not resp.content:
            return {}
        try:
            data = resp.json()
        except ValueError as exc:
            raise TransientAPIError(
                status=resp.status_code, method=method, url=url,
                body=resp.text[:_SNIPPET], message=f"invalid JSON: {exc}",
            ) from exc
        if not isinstance(data, dict):
            raise TransientAPIError(
                status=resp.status_code, method=method, url=url,
                body=json.dumps(data)[:_SNIPPET], message="expected a JSON object",
            )
        return data
