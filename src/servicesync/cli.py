"""
Command-line interface for ServiceSync.

Usage (examples):
  - Plan only (reads, never writes):
      python -m servicesync.cli reconcile --owner-name cluster --owner-uid 1234 \
        --namespace node-observability-operator --base-url https://api.cluster:6443 --dry-run

  - Converge:
      servicesync reconcile --owner-name cluster --owner-uid 1234 \
        --namespace node-observability-operator --base-url https://api.cluster:6443 --token "$TOKEN"
"""

from __future__ import annotations

import argparse
import sys
from typing import Any, Dict, Iterable

from .core.config import AppConfig, load_config
from .core.context import RequestContext
from .core.control_plane import ControlPlaneClient
from .core.desired import DesiredStateBuilder
from .core.errors import ReconcileError
from .core.logging_setup import build_logger
from .core.reconciler import ServiceReconciler


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="servicesync", description="ServiceSync CLI")

    sub = p.add_subparsers(dest="cmd", required=True)

    r = sub.add_parser("reconcile", help="Run one convergence cycle for the managed Service")

    # Owner / target
    r.add_argument("--owner-name", default=None, help="Owner object name")
    r.add_argument("--owner-uid", default=None, help="Owner object UID")
    r.add_argument("--owner-kind", default=None, help="Owner kind")
    r.add_argument("--owner-api-version", default=None, help="Owner apiVersion")
    r.add_argument("--owner-namespace", default=None, help="Owner namespace (empty for cluster-scoped owners)")
    r.add_argument("--namespace", default=None, help="Namespace of the managed Service")

    r.add_argument("--dry-run", action="store_true", help="Plan only, no writes")
    r.add_argument("--deadline-sec", type=float, default=None, help="Abort the cycle after this many seconds")

    # API
    r.add_argument("--base-url", default=None, help="Control-plane API base URL")
    r.add_argument("--token", default=None, help="Bearer token")
    r.add_argument("--verify-tls", default=None, choices=["true", "false"], help="Verify TLS (https)")
    r.add_argument("--ca-file", default=None, help="CA bundle for the API server")
    r.add_argument("--timeout-sec", type=int, default=None, help="Per-request timeout seconds")

    # Logging
    r.add_argument("--logs-dir", default=None, help="Logs base directory")
    r.add_argument("--console-level", default=None, help="Console log level (INFO..CRITICAL)")
    r.add_argument("--file-level", default=None, help="File log level (DEBUG..CRITICAL)")

    return p


def _overrides(args: argparse.Namespace) -> Dict[str, Any]:
    """Only options given on the command line override file/env configuration."""
    mapping = {
        ("app", "dry_run"): True if args.dry_run else None,
        ("owner", "name"): args.owner_name,
        ("owner", "uid"): args.owner_uid,
        ("owner", "kind"): args.owner_kind,
        ("owner", "api_version"): args.owner_api_version,
        ("owner", "namespace"): args.owner_namespace,
        ("target", "namespace"): args.namespace,
        ("api", "base_url"): args.base_url,
        ("api", "token"): args.token,
        ("api", "verify_tls"): args.verify_tls,
        ("api", "ca_file"): args.ca_file,
        ("api", "timeout_sec"): args.timeout_sec,
        ("logging", "base_dir"): args.logs_dir,
        ("logging", "console_level"): args.console_level,
        ("logging", "file_level"): args.file_level,
    }
    out: Dict[str, Any] = {}
    for (section, key), value in mapping.items():
        if value is not None:
            out.setdefault(section, {})[key] = value
    return out


def _reconcile_cmd(args: argparse.Namespace) -> int:
    try:
        cfg: AppConfig = load_config(_overrides(args))
    except ValueError as e:
        print(f"configuration error: {e}", file=sys.stderr)
        return 2

    logger = build_logger(
        run_id=cfg.run_id,
        action="reconcile",
        base_dir=cfg.logging.base_dir,
        console_level=cfg.logging.console_level,
        file_level=cfg.logging.file_level,
        extra={"namespace": cfg.target.namespace, "owner": cfg.owner.name},
    )
    logger.info("Starting servicesync reconcile (dry_run=%s)", cfg.app.dry_run)

    client = ControlPlaneClient(
        base_url=cfg.api.base_url,
        token=cfg.api.token,
        verify_tls=bool(cfg.api.verify_tls),
        ca_file=cfg.api.ca_file or None,
        timeout_sec=int(cfg.api.timeout_sec),
        logger=logger,
    )
    reconciler = ServiceReconciler(
        client,
        DesiredStateBuilder(cfg.service.to_settings()),
        logger=logger,
    )
    ctx = RequestContext(timeout_sec=args.deadline_sec)
    owner = cfg.owner.to_identity()
    namespace = cfg.target.namespace

    try:
        if cfg.app.dry_run:
            plan = reconciler.plan(ctx, owner, namespace)
            summary = f"plan={plan.action} name={plan.desired.key}"
            if plan.fields:
                summary += f" fields={','.join(plan.fields)}"
        else:
            outcome = reconciler.run(ctx, owner, namespace)
            summary = f"action={outcome.action} name={outcome.state.key}"
            if outcome.fields:
                summary += f" fields={','.join(outcome.fields)}"
    except ReconcileError as e:
        logger.error("Reconcile failed (phase=%s): %s", e.phase, e)
        print(f"error: {e}", file=sys.stderr)
        return 2

    logger.info("Reconcile summary: %s", summary)
    print(summary)
    return 0


def main(argv: Iterable[str] | None = None) -> int:
    parser = _build_arg_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    if args.cmd == "reconcile":
        return _reconcile_cmd(args)

    parser.error("Unknown command")  # pragma: no cover
    return 2  # pragma: no cover


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
