"""
Data model for the managed Service.

- PortBinding / OwnerReference / Service mirror the core/v1 fields this engine compares.
- `Service.from_manifest` keeps the raw object so `to_manifest` never drops fields we
  do not model (status, clusterIPs, managedFields, nodePort, ...).
- Missing maps stay `None`; an empty map stays `{}`.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

Manifest = Dict[str, Any]

PROTOCOL_TCP = "TCP"
PROTOCOL_UDP = "UDP"
PROTOCOL_SCTP = "SCTP"
PROTOCOLS = (PROTOCOL_TCP, PROTOCOL_UDP, PROTOCOL_SCTP)

TYPE_CLUSTER_IP = "ClusterIP"
TYPE_NODE_PORT = "NodePort"
TYPE_LOAD_BALANCER = "LoadBalancer"
TYPE_EXTERNAL_NAME = "ExternalName"

CLUSTER_IP_NONE = "None"


@dataclass
class PortBinding:
    port: int
    target_port: Union[int, str]
    protocol: str = PROTOCOL_TCP
    name: str = ""
    extra: Dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def target_port_value(self) -> int:
        """Integer value of the target port; a named target port counts as 0."""
        if isinstance(self.target_port, int):
            return self.target_port
        return 0

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "PortBinding":
        known = {"name", "port", "targetPort", "protocol"}
        port = int(d.get("port", 0))
        target = d.get("targetPort", port)
        return cls(
            name=str(d.get("name") or ""),
            port=port,
            target_port=target,
            protocol=str(d.get("protocol") or PROTOCOL_TCP),
            extra={k: copy.deepcopy(v) for k, v in d.items() if k not in known},
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = copy.deepcopy(self.extra)
        if self.name:
            out["name"] = self.name
        out["port"] = self.port
        out["targetPort"] = self.target_port
        out["protocol"] = self.protocol
        return out


@dataclass
class OwnerReference:
    api_version: str
    kind: str
    name: str
    uid: str
    controller: Optional[bool] = None
    block_owner_deletion: Optional[bool] = None

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "OwnerReference":
        return cls(
            api_version=str(d.get("apiVersion", "")),
            kind=str(d.get("kind", "")),
            name=str(d.get("name", "")),
            uid=str(d.get("uid", "")),
            controller=d.get("controller"),
            block_owner_deletion=d.get("blockOwnerDeletion"),
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "apiVersion": self.api_version,
            "kind": self.kind,
            "name": self.name,
            "uid": self.uid,
        }
        if self.controller is not None:
            out["controller"] = self.controller
        if self.block_owner_deletion is not None:
            out["blockOwnerDeletion"] = self.block_owner_deletion
        return out


@dataclass(frozen=True)
class OwnerIdentity:
    """The higher-level object responsible for the Service's lifecycle."""
    api_version: str
    kind: str
    name: str
    uid: str
    namespace: str = ""  # empty for cluster-scoped owners


@dataclass
class Service:
    namespace: str
    name: str
    labels: Optional[Dict[str, str]] = None
    annotations: Optional[Dict[str, str]] = None
    owner_references: List[OwnerReference] = field(default_factory=list)
    selector: Optional[Dict[str, str]] = None
    type: str = TYPE_CLUSTER_IP
    cluster_ip: str = ""
    ports: List[PortBinding] = field(default_factory=list)
    resource_version: str = ""
    raw: Manifest = field(default_factory=dict, compare=False, repr=False)

    @property
    def key(self) -> str:
        return f"{self.namespace}/{self.name}"

    def copy(self) -> "Service":
        return copy.deepcopy(self)

    @classmethod
    def from_manifest(cls, manifest: Manifest) -> "Service":
        meta = manifest.get("metadata") or {}
        spec = manifest.get("spec") or {}
        labels = meta.get("labels")
        annotations = meta.get("annotations")
        selector = spec.get("selector")
        return cls(
            namespace=str(meta.get("namespace", "")),
            name=str(meta.get("name", "")),
            labels=dict(labels) if labels is not None else None,
            annotations=dict(annotations) if annotations is not None else None,
            owner_references=[OwnerReference.from_dict(o) for o in meta.get("ownerReferences") or []],
            selector=dict(selector) if selector is not None else None,
            type=str(spec.get("type") or TYPE_CLUSTER_IP),
            cluster_ip=str(spec.get("clusterIP") or ""),
            ports=[PortBinding.from_dict(p) for p in spec.get("ports") or []],
            resource_version=str(meta.get("resourceVersion") or ""),
            raw=copy.deepcopy(manifest),
        )

    def to_manifest(self) -> Manifest:
        out = copy.deepcopy(self.raw)
        out["apiVersion"] = "v1"
        out["kind"] = "Service"
        meta = out.setdefault("metadata", {})
        spec = out.setdefault("spec", {})

        meta["name"] = self.name
        meta["namespace"] = self.namespace
        _set_or_pop(meta, "labels", dict(self.labels) if self.labels is not None else None)
        _set_or_pop(meta, "annotations", dict(self.annotations) if self.annotations is not None else None)
        _set_or_pop(meta, "ownerReferences", [o.to_dict() for o in self.owner_references] or None)
        _set_or_pop(meta, "resourceVersion", self.resource_version or None)

        _set_or_pop(spec, "selector", dict(self.selector) if self.selector is not None else None)
        spec["type"] = self.type
        _set_or_pop(spec, "clusterIP", self.cluster_ip or None)
        spec["ports"] = [p.to_dict() for p in self.ports]
        return out


def _set_or_pop(d: Dict[str, Any], key: str, value: Any) -> None:
    if value is None:
        d.pop(key, None)
    else:
        d[key] = value
