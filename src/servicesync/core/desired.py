"""
Desired-state builder: owner name + namespace -> the target Service.

Pure and deterministic; everything that used to be a process-wide constant
(service name, port, label key, certificate annotation) lives in `ServiceSettings`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

from .models import CLUSTER_IP_NONE, PROTOCOL_TCP, TYPE_CLUSTER_IP, PortBinding, Service

DEFAULT_SERVICE_NAME = "node-observability-agent"
DEFAULT_PORT = 8443
DEFAULT_LABEL_KEY = "app"
DEFAULT_CERT_ANNOTATION = "service.beta.openshift.io/serving-cert-secret-name"


@dataclass(frozen=True)
class ServiceSettings:
    name: str = DEFAULT_SERVICE_NAME
    port: int = DEFAULT_PORT
    target_port: Optional[int] = None  # defaults to `port`
    label_key: str = DEFAULT_LABEL_KEY
    cert_annotation: str = DEFAULT_CERT_ANNOTATION
    secret_name: Optional[str] = None  # defaults to `name`

    @property
    def effective_target_port(self) -> int:
        return self.port if self.target_port is None else self.target_port

    @property
    def effective_secret_name(self) -> str:
        return self.secret_name or self.name


class DesiredStateBuilder:
    def __init__(self, settings: Optional[ServiceSettings] = None) -> None:
        self.settings = settings or ServiceSettings()

    def labels(self, owner_name: str) -> Dict[str, str]:
        return {self.settings.label_key: owner_name}

    def build(self, owner_name: str, namespace: str) -> Service:
        """Return the desired headless ClusterIP Service for `owner_name` in `namespace`."""
        if not owner_name:
            raise ValueError("owner_name is required")
        if not namespace:
            raise ValueError("namespace is required")

        s = self.settings
        return Service(
            namespace=namespace,
            name=s.name,
            labels=self.labels(owner_name),
            annotations={s.cert_annotation: s.effective_secret_name},
            selector=self.labels(owner_name),
            type=TYPE_CLUSTER_IP,
            cluster_ip=CLUSTER_IP_NONE,
            ports=[PortBinding(port=s.port, target_port=s.effective_target_port, protocol=PROTOCOL_TCP)],
        )
