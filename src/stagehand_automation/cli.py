from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Optional, Sequence

from .config import DEFAULT_CONFIG, load_config
from .errors import ParseError
from .executors import Transport
from .inventory import InventoryLoader
from .playbook import PlaybookLoader
from .runner import Orchestrator
from .types import FAILED, UNREACHABLE, HostReport, TaskResult

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_FAILED = 2
EXIT_UNREACHABLE = 4


class Ansi:
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    RED = "\033[91m"
    BLUE = "\033[94m"
    ORANGE = "\033[38;5;208m"
    RESET = "\033[0m"


def colorize(text: str, color: Optional[str]) -> str:
    if not color:
        return text
    if not sys.stdout.isatty() or os.environ.get("NO_COLOR"):
        return text
    return f"{color}{text}{Ansi.RESET}"


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="stagehand", description="Stagehand convergence runner")
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG,
        help=f"Path to stagehand config file (default: {DEFAULT_CONFIG})",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Python logging level (default: INFO)",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    play = commands.add_parser("play", help="Converge inventory hosts to a playbook")
    play.add_argument(
        "playbook",
        nargs="?",
        default=None,
        type=Path,
        help="Path to a playbook (default from config)",
    )
    play.add_argument(
        "-i",
        "--inventory",
        type=Path,
        help="Path to an inventory file (default from config or /etc/stagehand/hosts)",
    )
    play.add_argument("--check", action="store_true", help="Report changes without making them")
    play.add_argument("-f", "--forks", type=int, help="Number of hosts converged in parallel")
    return parser.parse_args(argv)


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(levelname)s %(name)s - %(message)s",
    )


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level)

    try:
        cfg = load_config(args.config)
    except ValueError as exc:
        print(colorize(f"Config load failed: {exc}", Ansi.RED), file=sys.stderr)
        return EXIT_ERROR

    playbook_path = args.playbook or cfg.playbook
    if playbook_path is None:
        print(colorize("No playbook given and none configured", Ansi.RED), file=sys.stderr)
        return EXIT_ERROR
    inventory_path = args.inventory or cfg.inventory
    forks = args.forks or cfg.forks

    try:
        inventory = InventoryLoader(
            {"remote_user": cfg.remote_user, "private_key_file": cfg.private_key_file}
        ).load(inventory_path)
        plays = PlaybookLoader(cfg.roles_path).load(playbook_path)
        orchestrator = Orchestrator(
            inventory,
            transport=Transport(dry_run=args.check, timeout=cfg.ssh_timeout),
            forks=forks,
            dry_run=args.check,
            force_handlers=cfg.force_handlers,
            report_callback=print_report,
        )
        outcomes = orchestrator.run_playbook(plays)
    except ParseError as exc:
        print(colorize(f"Playbook validation failed: {exc}", Ansi.RED), file=sys.stderr)
        return EXIT_ERROR
    except ValueError as exc:
        print(colorize(f"Invalid settings: {exc}", Ansi.RED), file=sys.stderr)
        return EXIT_ERROR

    recap = Recap()
    for reports in outcomes:
        for report in reports.values():
            recap.add(report)
    print(recap.render())
    return recap.exit_code()


def print_report(report: HostReport) -> None:
    effective_level = logging.getLogger().getEffectiveLevel()
    if report.outcome == UNREACHABLE:
        print(colorize(f"{report.host.name} unreachable - {report.message}", Ansi.RED))
        return
    for result in report.results:
        if should_display_result(result, effective_level):
            print(format_result(result))


def format_result(result: TaskResult) -> str:
    status = "changed" if result.changed else "ok"
    color: Optional[str] = Ansi.BLUE
    if result.failed:
        if "unknown capability" in result.details.lower():
            status = "unknown"
            color = Ansi.ORANGE
        else:
            status = "failed"
            color = Ansi.RED
    elif result.changed:
        color = Ansi.GREEN
    kind = "handler" if result.handler else result.action
    resource = f"[{result.resource}]" if result.resource else ""
    line = f"{result.host}::{kind}{resource} {status} - {result.task}: {result.details}"
    return colorize(line, color)


def should_display_result(result: TaskResult, log_level: int) -> bool:
    if result.failed or result.changed:
        return True
    return log_level <= logging.INFO


class Recap:
    def __init__(self) -> None:
        self.hosts: dict[str, dict[str, int]] = {}
        self.problems: list[str] = []
        self.failed = False
        self.unreachable = False

    def add(self, report: HostReport) -> None:
        counts = self.hosts.setdefault(
            report.host.name, {"ok": 0, "changed": 0, "failed": 0, "unreachable": 0}
        )
        counts["ok"] += report.ok
        counts["changed"] += report.changed
        if report.outcome == FAILED:
            self.failed = True
            counts["failed"] += 1
            self.problems.append(f"{report.host.name}: {report.failed_task} - {report.message}")
        elif report.outcome == UNREACHABLE:
            self.unreachable = True
            counts["unreachable"] += 1
            self.problems.append(f"{report.host.name}: unreachable - {report.message}")

    def render(self) -> str:
        lines = ["RECAP"]
        for host, counts in self.hosts.items():
            parts = " | ".join(f"{key}={value}" for key, value in counts.items())
            if counts["failed"] or counts["unreachable"]:
                color = Ansi.RED
            elif counts["changed"]:
                color = Ansi.YELLOW
            else:
                color = Ansi.GREEN
            lines.append(colorize(f"{host}: {parts}", color))
        lines.extend(colorize(problem, Ansi.RED) for problem in self.problems)
        return "\n".join(lines)

    def exit_code(self) -> int:
        code = EXIT_OK
        if self.failed:
            code |= EXIT_FAILED
        if self.unreachable:
            code |= EXIT_UNREACHABLE
        return code


if __name__ == "__main__":
    raise SystemExit(main())
