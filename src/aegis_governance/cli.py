# AEGIS Governance
# Copyright (C) 2025 Phoenix Link (Pty) Ltd. All Rights Reserved.
#
# This file is part of AEGIS Governance.
#
# AEGIS Governance is dual-licensed:
#
# 1. Open Source: GNU Affero General Public License v3.0 (AGPL-3.0)
# 2. Commercial: Available from Phoenix Link (Pty) Ltd
#
# Contributions require a signed CLA. See COPYRIGHT.md and CLA.md.
"""aegis-gov -- operator CLI for a governance orchestrator.

Talks to a remote orchestrator through ExternalRuntime (settings from
``governance.yaml``), or serves the orchestrator API in-process::

    aegis-gov snapshot --workspace ws-1
    aegis-gov hotreload --workspace ws-1 --bundle policy.yaml --actor-id alice --reason "allow analysts"
    aegis-gov revalidate --workspace ws-1 --agent a1 --agent a2
    aegis-gov serve --port 8700
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import sys
from pathlib import Path
from typing import Any

import yaml

from aegis_governance.core.config import GovernanceSettings, load_settings
from aegis_governance.errors import GovernanceError, ValidationError
from aegis_governance.models import Actor
from aegis_governance.runtime.base import DEFAULT_POLICY_SET, OrchestratorRuntime
from aegis_governance.runtime.external import ExternalRuntime

logger = logging.getLogger("aegis_governance.cli")

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_PARTIAL = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="aegis-gov",
        description="AEGIS Governance -- policy hot-reload and agent governance",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to governance.yaml (default: ~/.aegis/governance.yaml)",
    )
    parser.add_argument("--base-url", default=None, help="Orchestrator URL (overrides config)")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: WARNING)",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    def workspace_command(name: str, help_text: str) -> argparse.ArgumentParser:
        cmd = sub.add_parser(name, help=help_text)
        cmd.add_argument("--workspace", "-w", required=True, help="Workspace id")
        return cmd

    snapshot = workspace_command("snapshot", "Show the published policy snapshot")
    snapshot.add_argument("--policy-set", default=DEFAULT_POLICY_SET)

    reload_cmd = workspace_command("hotreload", "Publish a new policy version and revalidate")
    reload_cmd.add_argument("--bundle", required=True, help="Policy bundle file (YAML or JSON)")
    reload_cmd.add_argument("--policy-set", default=DEFAULT_POLICY_SET)
    reload_cmd.add_argument("--actor-id", default=os.environ.get("USER", "operator"))
    reload_cmd.add_argument("--reason", default="")

    revalidate = workspace_command("revalidate", "Re-evaluate governed agents")
    revalidate.add_argument("--agent", action="append", dest="agents", help="Agent id (repeatable)")
    revalidate.add_argument("--policy-set", default=DEFAULT_POLICY_SET)

    status = workspace_command("status", "Show one agent's runtime status")
    status.add_argument("--agent", required=True)

    statuses = workspace_command("statuses", "List agent statuses")
    statuses.add_argument("--page", type=int, default=1)
    statuses.add_argument("--limit", type=int, default=50)

    explain = workspace_command("explain", "Explain an agent's governance status")
    explain.add_argument("--agent", required=True)

    serve = sub.add_parser("serve", help="Serve the orchestrator API with an embedded runtime")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8700)
    return parser


def load_bundle(path: str | Path) -> dict[str, Any]:
    """Read a policy bundle from YAML (JSON is valid YAML)."""
    raw = yaml.safe_load(Path(path).read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValidationError(f"Policy bundle {path} is not a mapping")
    return raw


def _emit(data: Any) -> None:
    print(json.dumps(data, indent=2, sort_keys=False))


async def run_command(args: argparse.Namespace, runtime: OrchestratorRuntime) -> int:
    """Execute one CLI command against a runtime."""
    ws = args.workspace
    if args.command == "snapshot":
        _emit((await runtime.get_policy_snapshot(ws, args.policy_set)).to_dict())
    elif args.command == "hotreload":
        actor = Actor(type="user", id=args.actor_id, reason=args.reason)
        result = await runtime.hot_reload_policy(ws, args.policy_set, load_bundle(args.bundle), actor)
        _emit(result.to_dict())
        if result.revalidated.failed:
            print(f"Failed to revalidate: {', '.join(result.revalidated.failed)}", file=sys.stderr)
            return EXIT_PARTIAL
    elif args.command == "revalidate":
        result = await runtime.revalidate_agents(ws, args.agents, args.policy_set)
        _emit(result.to_dict())
        if result.failed:
            print(f"Failed to revalidate: {', '.join(result.failed)}", file=sys.stderr)
            return EXIT_PARTIAL
    elif args.command == "status":
        _emit((await runtime.get_agent_status(ws, args.agent)).to_dict())
    elif args.command == "statuses":
        agents, total = await runtime.list_agent_statuses(ws, args.page, args.limit)
        _emit({"agents": [a.to_dict() for a in agents], "total": total})
    elif args.command == "explain":
        _emit((await runtime.get_governance_explanation(ws, args.agent)).to_dict())
    return EXIT_OK


async def _run_remote(args: argparse.Namespace, settings: GovernanceSettings) -> int:
    async with ExternalRuntime.from_settings(settings.external) as runtime:
        return await run_command(args, runtime)


def _serve(args: argparse.Namespace, settings: GovernanceSettings) -> int:
    import uvicorn

    from aegis_governance.api.server import create_app
    from aegis_governance.context import GovernanceContext
    from aegis_governance.runtime.embedded import EmbeddedRuntime

    context = GovernanceContext.from_settings(settings)
    app = create_app(
        EmbeddedRuntime(context),
        api_key=settings.external.api_key or None,
        event_log=context.event_log,
        metrics=context.metrics,
    )
    uvicorn.run(app, host=args.host, port=args.port)
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        settings = load_settings(args.config)
        if args.base_url:
            settings.external.base_url = args.base_url.rstrip("/")
        if args.command == "serve":
            return _serve(args, settings)
        return asyncio.run(_run_remote(args, settings))
    except GovernanceError as exc:
        print(f"error [{exc.code}]: {exc.message}", file=sys.stderr)
        return EXIT_ERROR
    except OSError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_ERROR


if __name__ == "__main__":
    sys.exit(main())
