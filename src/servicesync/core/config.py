from __future__ import annotations

import os
import uuid
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

import yaml
from dotenv import find_dotenv, load_dotenv

from .desired import ServiceSettings
from .models import OwnerIdentity


# ---------- Typed sections ----------

@dataclass
class AppSection:
    run_id: Optional[str] = None
    dry_run: bool = False


@dataclass
class ApiSection:
    base_url: str = ""
    token: str = ""          # secret – never log in clear text
    verify_tls: bool = True
    ca_file: str = ""
    timeout_sec: int = 30


@dataclass
class ServiceSection:
    name: str = "node-observability-agent"
    port: int = 8443
    target_port: Optional[int] = None
    label_key: str = "app"
    cert_annotation: str = "service.beta.openshift.io/serving-cert-secret-name"
    secret_name: Optional[str] = None

    def to_settings(self) -> ServiceSettings:
        return ServiceSettings(
            name=self.name,
            port=int(self.port),
            target_port=int(self.target_port) if self.target_port not in (None, "") else None,
            label_key=self.label_key,
            cert_annotation=self.cert_annotation,
            secret_name=self.secret_name or None,
        )


@dataclass
class OwnerSection:
    api_version: str = "nodeobservability.olm.openshift.io/v1alpha2"
    kind: str = "NodeObservability"
    name: str = ""
    uid: str = ""
    namespace: str = ""   # empty for cluster-scoped owners

    def to_identity(self) -> OwnerIdentity:
        return OwnerIdentity(
            api_version=self.api_version,
            kind=self.kind,
            name=self.name,
            uid=self.uid,
            namespace=self.namespace,
        )


@dataclass
class TargetSection:
    namespace: str = ""


@dataclass
class LoggingSection:
    base_dir: str = "logs"
    console_level: str = "INFO"   # INFO..CRITICAL
    file_level: str = "DEBUG"     # DEBUG..CRITICAL


@dataclass
class AppConfig:
    """Typed configuration object built by `load_config`."""
    app: AppSection
    api: ApiSection
    service: ServiceSection
    owner: OwnerSection
    target: TargetSection
    logging: LoggingSection

    @property
    def run_id(self) -> str:
        """
        Return a stable run identifier for this process.
        Generated lazily when first accessed if not provided.
        """
        if not self.app.run_id:
            self.app.run_id = uuid.uuid4().hex[:12]
        return self.app.run_id


# ---------- Defaults ----------

_DEFAULT_FILES: Tuple[str, ...] = (
    "./servicesync.yml",
    os.path.expanduser("~/.config/servicesync/config.yml"),
    "/etc/servicesync/config.yml",
)

_DEFAULTS: Dict[str, Any] = {
    "app": {"run_id": None, "dry_run": False},
    "api": {
        "base_url": "",
        "token": "",
        "verify_tls": True,
        "ca_file": "",
        "timeout_sec": 30,
    },
    "service": {
        "name": "node-observability-agent",
        "port": 8443,
        "target_port": None,
        "label_key": "app",
        "cert_annotation": "service.beta.openshift.io/serving-cert-secret-name",
        "secret_name": None,
    },
    "owner": {
        "api_version": "nodeobservability.olm.openshift.io/v1alpha2",
        "kind": "NodeObservability",
        "name": "",
        "uid": "",
        "namespace": "",
    },
    "target": {"namespace": ""},
    "logging": {"base_dir": "logs", "console_level": "INFO", "file_level": "DEBUG"},
}


# ---------- Utilities ----------

def _deep_merge(base: Dict[str, Any], ext: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """
    Deep-merge for dicts: maps merge recursively, lists/scalars override.
    `ext` wins over `base`. Returns a new dict.
    """
    if not ext:
        return dict(base)
    out: Dict[str, Any] = dict(base)
    for k, v in ext.items():
        if isinstance(v, dict) and isinstance(out.get(k), dict):
            out[k] = _deep_merge(out[k], v)
        else:
            out[k] = v
    return out


def _read_yaml_file(path: str) -> Dict[str, Any]:
    with open(path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Top-level YAML must be a mapping: {path}")
    return data


def _load_first_existing(files: Tuple[str, ...]) -> Dict[str, Any]:
    for p in files:
        if os.path.exists(p):
            return _read_yaml_file(p)
    return {}


def _env_to_dict(prefix: str = "SVCSYNC_") -> Dict[str, Any]:
    """
    Convert SVCSYNC_FOO__BAR=val to {"foo": {"bar": "val"}} (lowercased keys).
    """
    out: Dict[str, Any] = {}
    plen = len(prefix)
    for key, val in os.environ.items():
        if not key.startswith(prefix):
            continue
        path = key[plen:].lower().split("__")
        cursor = out
        for part in path[:-1]:
            cursor = cursor.setdefault(part, {})
        cursor[path[-1]] = val
    return out


def _interpolate_env(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """
    Replace values like "${VAR}" with os.environ["VAR"] when present.
    """
    def repl(v: Any) -> Any:
        if isinstance(v, str) and v.startswith("${") and v.endswith("}"):
            return os.environ.get(v[2:-1], "")
        return v

    def walk(obj: Any) -> Any:
        if isinstance(obj, dict):
            return {k: walk(repl(v)) for k, v in obj.items()}
        if isinstance(obj, list):
            return [walk(x) for x in obj]
        return repl(obj)

    return walk(cfg)


_BOOL_KEYS = {"verify_tls", "dry_run"}
_INT_KEYS = {"timeout_sec", "port", "target_port"}


def _coerce_types(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """
    Minimal type coercion for booleans and integers in known keys.
    """
    def to_bool(x: Any) -> bool:
        return str(x).strip().lower() in {"1", "true", "yes", "y", "on"}

    def walk(obj: Any, key: str = "") -> Any:
        if isinstance(obj, dict):
            return {k: walk(v, k) for k, v in obj.items()}
        if isinstance(obj, list):
            return [walk(v, key) for v in obj]
        if obj is None:
            return obj
        if key in _BOOL_KEYS:
            return to_bool(obj)
        if key in _INT_KEYS:
            try:
                return int(obj)
            except (TypeError, ValueError) as exc:
                raise ValueError(f"Configuration key '{key}' must be an integer, got {obj!r}") from exc
        return obj

    return walk(cfg)


def _validate(cfg: Dict[str, Any]) -> None:
    """
    Validate required fields (a dry run still reads, so they are always needed).
    """
    missing = []
    if not cfg.get("api", {}).get("base_url"):
        missing.append("api.base_url")
    if not cfg.get("owner", {}).get("name"):
        missing.append("owner.name")
    if not cfg.get("owner", {}).get("uid"):
        missing.append("owner.uid")
    if not cfg.get("target", {}).get("namespace"):
        missing.append("target.namespace")
    if missing:
        raise ValueError("Missing required configuration: " + ", ".join(missing))


# ---------- Public API ----------

def load_config(
    cli_overrides: Optional[Dict[str, Any]] = None,
    files: Tuple[str, ...] = _DEFAULT_FILES,
    env_prefix: str = "SVCSYNC_",
    *,
    validate: bool = True,
    dotenv: bool = True,
) -> AppConfig:
    """
    Build an AppConfig from (in precedence order):
      1) CLI overrides
      2) Environment variables (prefix SVCSYNC_, nested via __; `.env` is loaded first)
      3) YAML file (first existing)
      4) Built-in defaults

    Also performs:
      - ${ENV_VAR} interpolation
      - basic type coercion (bool/int)
      - validation of required fields (unless validate=False)
    """
    if dotenv:
        # Real environment variables win over the .env file.
        env_file = find_dotenv(usecwd=True)
        if env_file:
            load_dotenv(env_file, override=False)

    file_cfg = _load_first_existing(files)
    env_cfg = _env_to_dict(env_prefix)

    # Combine: defaults <- file <- env <- cli
    merged = _deep_merge(_DEFAULTS, file_cfg)
    merged = _deep_merge(merged, env_cfg)
    merged = _deep_merge(merged, cli_overrides or {})

    merged = _interpolate_env(merged)
    merged = _coerce_types(merged)

    if validate:
        _validate(merged)

    return AppConfig(
        app=AppSection(**merged.get("app", {})),
        api=ApiSection(**merged.get("api", {})),
        service=ServiceSection(**merged.get("service", {})),
        owner=OwnerSection(**merged.get("owner", {})),
        target=TargetSection(**merged.get("target", {})),
        logging=LoggingSection(**merged.get("logging", {})),
    )
