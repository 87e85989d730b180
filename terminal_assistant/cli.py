"""Command-line entry point.

    terminal-assistant ask "how many IPs are banned in fail2ban?"
    terminal-assistant ask --json -v "which services failed?"
    terminal-assistant serve-tool
    terminal-assistant stats
"""

from __future__ import annotations

import argparse
import json
import logging
import signal
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from terminal_assistant.agent.metrics import summarize_metrics
from terminal_assistant.config import load_config
from terminal_assistant.domain.command_safety import CommandValidator
from terminal_assistant.graph.graph import Orchestrator, build_runner
from terminal_assistant.tools.shell_tool import ShellTool, serve_stdio

logger = logging.getLogger(__name__)


def configure_logging(verbosity: int) -> None:
    # Verbosity levels: 0=WARNING, 1=INFO (-v), 2+=DEBUG (-vv)
    level = logging.WARNING
    if verbosity >= 2:
        level = logging.DEBUG
    elif verbosity == 1:
        level = logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
        stream=sys.stderr,
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="terminal-assistant", description="Answer questions about this machine.")
    parser.add_argument("-v", "--verbose", action="count", default=0, help="-v for INFO, -vv for DEBUG")
    parser.add_argument("--backend", choices=["session", "oneshot", "ssh"], help="command backend (default: TA_BACKEND)")
    sub = parser.add_subparsers(dest="command", required=True)

    ask = sub.add_parser("ask", help="answer one question")
    ask.add_argument("question", nargs="+")
    ask.add_argument("--json", action="store_true", help="print the full result object")
    ask.add_argument("--max-iterations", type=int)
    ask.add_argument("--max-time", type=float, help="wall-clock budget in seconds")

    sub.add_parser("serve-tool", help="serve the run_shell_command tool to MCP clients over stdio")

    stats = sub.add_parser("stats", help="summarize recorded run metrics")
    stats.add_argument("--limit", type=int, default=500)
    return parser


def _ask(args: argparse.Namespace) -> int:
    cfg = load_config()
    if args.backend:
        cfg.backend = args.backend
    if args.max_iterations:
        cfg.max_iterations = args.max_iterations
    if args.max_time:
        cfg.max_execution_time_sec = args.max_time

    with Orchestrator(cfg=cfg) as orchestrator:
        previous = signal.getsignal(signal.SIGINT)

        def _on_interrupt(signum, frame):
            logger.warning("Interrupted; cancelling run")
            orchestrator.cancel()

        signal.signal(signal.SIGINT, _on_interrupt)
        try:
            result = orchestrator.run(" ".join(args.question))
        finally:
            signal.signal(signal.SIGINT, previous)

    if args.json:
        print(json.dumps(result.model_dump(), indent=2))
    elif result.success:
        print(result.direct_answer)
    else:
        print(f"Error: {result.error or 'no answer produced'}", file=sys.stderr)
    return 0 if result.success else 1


def _serve_tool(args: argparse.Namespace) -> int:
    cfg = load_config()
    if args.backend:
        cfg.backend = args.backend
    runner = build_runner(cfg)
    try:
        serve_stdio(ShellTool(runner, CommandValidator(policy_path=cfg.policy_path or None)))
    finally:
        runner.close()
    return 0


def _stats(args: argparse.Namespace) -> int:
    cfg = load_config()
    print(summarize_metrics(Path(cfg.metrics_path), limit=args.limit))
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()
    args = _build_parser().parse_args(argv)
    configure_logging(args.verbose)
    if args.command == "ask":
        return _ask(args)
    if args.command == "stats":
        return _stats(args)
    return _serve_tool(args)


if __name__ == "__main__":
    sys.exit(main())
