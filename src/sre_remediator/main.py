"""CLI entrypoint for the SRE remediator."""

from __future__ import annotations

import argparse
import logging
import signal
import sys
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

from sre_remediator import __version__
from sre_remediator.config import Settings, get_settings

COMMANDS = ("run", "serve", "agent")
HELP_FLAGS = ("-h", "--help", "--version")
# Options whose value is a separate token that may look like a command
VALUE_OPTIONS = ("--kubeconfig", "--context", "--namespace", "-n", "--filter", "--interval", "--host", "--port")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    argv = list(sys.argv[1:] if argv is None else argv)
    parser = argparse.ArgumentParser(
        description="SRE Remediator: detect unhealthy Kubernetes workloads, apply AI-generated fixes and verify the rollout.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--kubeconfig",
        type=Path,
        default=None,
        help="Path to kubeconfig (default: KUBECONFIG env or ~/.kube/config)",
    )
    common.add_argument(
        "--context",
        default=None,
        help="Kubernetes context to use",
    )
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        help="Enable verbose logging",
    )

    cycle_args = argparse.ArgumentParser(add_help=False, parents=[common])
    cycle_args.add_argument(
        "--namespace",
        "-n",
        default=None,
        help="Kubernetes namespace to analyze (default: all namespaces)",
    )
    cycle_args.add_argument(
        "--filter",
        dest="filters",
        action="append",
        default=None,
        help="Analyzer to run; repeat for several (default: active or all analyzers)",
    )
    cycle_args.add_argument(
        "--dry-run",
        action="store_true",
        help="Generate corrected manifests but do not apply them",
    )
    cycle_args.add_argument(
        "--no-cache",
        action="store_true",
        help="Always ask the AI backend instead of reusing cached responses",
    )
    cycle_args.add_argument(
        "--explain",
        action="store_true",
        help="Ask the AI backend to explain each issue in the report",
    )
    cycle_args.add_argument(
        "--anonymize",
        action="store_true",
        help="Mask resource names before sending them to the AI backend",
    )

    sub = parser.add_subparsers(dest="command")
    sub.add_parser("run", parents=[cycle_args], help="Run one analyze/remediate/verify cycle (default)")
    serve = sub.add_parser("serve", parents=[cycle_args], help="Run a cycle every --interval seconds until interrupted")
    serve.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between cycles (default: from env or 60)",
    )
    agent = sub.add_parser("agent", parents=[common], help="Serve the cluster HTTP API")
    agent.add_argument("--host", default=None, help="Bind address (default: from env or 0.0.0.0)")
    agent.add_argument("--port", type=int, default=None, help="Port (default: from env or 8080)")

    # "run" is the default command
    if not _names_command(argv):
        argv.insert(0, "run")
    return parser.parse_args(argv)


def _names_command(argv: list[str]) -> bool:
    """Whether argv's first positional token is a subcommand (or help/version is asked for)."""
    tokens = iter(argv)
    for token in tokens:
        if token in HELP_FLAGS:
            return True
        if token in VALUE_OPTIONS:
            next(tokens, None)
        elif not token.startswith("-"):
            return token in COMMANDS
    return False


def _apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    if args.kubeconfig:
        settings.kubeconfig = args.kubeconfig
    if args.context:
        settings.context = args.context
    if getattr(args, "namespace", None):
        settings.namespace = args.namespace
    if getattr(args, "filters", None):
        settings.filters = args.filters
    for flag in ("dry_run", "no_cache", "explain", "anonymize"):
        if getattr(args, flag, False):
            setattr(settings, flag, True)
    if getattr(args, "interval", None):
        settings.interval_seconds = args.interval
    if getattr(args, "host", None):
        settings.agent_host = args.host
    if getattr(args, "port", None):
        settings.agent_port = args.port
    return settings


def _run(settings: Settings) -> int:
    from sre_remediator.agent import print_result, run_cycle

    cycle = run_cycle(settings=settings)
    print_result(cycle, Console())
    if cycle.config_error:
        return 2
    return 0 if cycle.all_resolved else 1


def _serve(settings: Settings) -> int:
    from sre_remediator.agent import OrchestrationLoop, build_accessor, print_result, run_cycle
    from sre_remediator.cache import new_cache

    accessor = build_accessor(settings)
    cache = new_cache(settings)
    console = Console()
    loop = OrchestrationLoop(
        lambda cancel: print_result(run_cycle(settings, accessor, cache, cancel), console),
        interval=settings.interval_seconds,
        overlap_policy=settings.overlap_policy,
    )
    signal.signal(signal.SIGTERM, lambda *_: loop.stop(timeout=0))
    try:
        loop.run_forever()
    except KeyboardInterrupt:
        pass
    finally:
        loop.stop(timeout=settings.rollout_timeout_seconds)
    return 0


def _agent(settings: Settings) -> int:
    import uvicorn

    from sre_remediator.agent import build_accessor
    from sre_remediator.server import create_app

    accessor = build_accessor(settings)
    app = create_app(accessor, field_manager=settings.field_manager, ready=accessor.ping)
    uvicorn.run(app, host=settings.agent_host, port=settings.agent_port, log_config=None)
    return 0


def main(argv: list[str] | None = None) -> int:
    """Entrypoint for sre-remediator CLI."""
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True)],
    )
    logger = logging.getLogger("sre_remediator")
    if not args.verbose and args.command == "run":
        logger.setLevel(logging.WARNING)

    try:
        settings = _apply_overrides(get_settings(), args)
        if args.command == "serve":
            return _serve(settings)
        if args.command == "agent":
            return _agent(settings)
        return _run(settings)
    except Exception as e:
        logging.exception("Remediator failed")
        print(f"Error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
