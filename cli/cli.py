import argparse
import asyncio
import sys

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from aisec.io.findings_writer import write_findings_jsonl
from aisec.orchestrator import ScanOrchestrator
from aisec.scheduler.types import ScanPhase
from aisec.store import SORT_KEYS, sort_findings
from aisec.types import Severity, ToolKind
from aisec.utils import set_log_level
from config.settings import get_settings

console = Console()

SEVERITY_STYLES = {
    Severity.CRITICAL: "bold white on red",
    Severity.HIGH: "bold red",
    Severity.MEDIUM: "yellow",
    Severity.LOW: "cyan",
    Severity.INFO: "dim",
    Severity.UNKNOWN: "dim",
}

PHASE_STYLES = {
    ScanPhase.COMPLETED: "bold green",
    ScanPhase.ERROR: "bold red",
}


# --- Helper Functions ---

def print_header():
    console.print(Panel.fit(
        Text("aisec ... Security Scan Orchestrator", style="bold cyan"),
        border_style="blue",
    ))


def print_error(message, details=None):
    console.print(f"[bold red]❌ Error:[/bold red] {message}")
    if details:
        console.print(Panel(str(details), title="Details", border_style="red"))


def print_success(message):
    console.print(f"[bold green]✅ Success:[/bold green] {message}")


def print_log(lines):
    if not lines:
        return
    console.print(Panel("\n".join(lines), title="Scan Log", border_style="blue"))


def print_findings(findings, sort_key):
    table = Table(title=f"Findings ({len(findings)})", show_header=True, header_style="bold magenta")
    table.add_column("Severity")
    table.add_column("Tool", style="dim")
    table.add_column("Rule")
    table.add_column("Location", style="dim")
    table.add_column("Message", overflow="fold")

    for finding in sort_findings(findings, sort_key):
        table.add_row(
            Text(finding.severity.value, style=SEVERITY_STYLES[finding.severity]),
            finding.tool.value,
            finding.rule_id,
            finding.location_label(),
            finding.title or finding.message,
        )
    console.print(table)


def print_sessions(sessions):
    table = Table(title="Sessions", show_header=True, header_style="bold magenta")
    table.add_column("Tool", style="dim")
    table.add_column("Task")
    table.add_column("Phase")
    table.add_column("Last error", overflow="fold")

    for session in sessions:
        table.add_row(
            session.tool.value,
            session.task_id or "-",
            Text(session.phase.value, style=PHASE_STYLES.get(session.phase, "")),
            session.last_error or "",
        )
    console.print(table)


# --- Commands ---

async def run_scan(args) -> int:
    settings = get_settings()
    orchestrator = ScanOrchestrator.from_settings(settings, enable_ai=not args.no_ai and settings.AI_ENABLED)
    kinds = [ToolKind(t) for t in args.tool] if args.tool else list(ToolKind)

    try:
        with console.status(f"[bold yellow]Scanning {args.subject}...", spinner="earth"):
            await orchestrator.start_all(args.subject, kinds)
            await orchestrator.wait_all()
    finally:
        await orchestrator.aclose()

    sessions = [orchestrator.session(kind) for kind in kinds]

    print_log(orchestrator.log_buffer.lines())
    print_findings(orchestrator.store.all(), args.sort)
    print_sessions(sessions)

    if args.output:
        path = write_findings_jsonl(sort_findings(orchestrator.store.all(), args.sort), args.output)
        print_success(f"Findings written to {path}")

    failed = [s for s in sessions if s.phase == ScanPhase.ERROR]
    if failed:
        print_error(f"{len(failed)} scan(s) ended in error", "\n".join(
            f"{s.tool.value}: {s.last_error}" for s in failed
        ))
        return 1
    return 0


def build_parser():
    parser = argparse.ArgumentParser(prog="aisec", description="Security scan orchestrator CLI")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)
    scan_parser = subparsers.add_parser("scan", help="Scan a repository with the remote tools")
    scan_parser.add_argument("subject", help="Repository URL or owner/repo")
    scan_parser.add_argument(
        "--tool",
        action="append",
        choices=[t.value for t in ToolKind],
        help="Tool to run (repeatable; default: all)",
    )
    scan_parser.add_argument("--no-ai", action="store_true", help="Skip AI enrichment")
    scan_parser.add_argument("--output", help="Write findings to this JSONL file")
    scan_parser.add_argument("--sort", choices=SORT_KEYS, default="severity")
    scan_parser.set_defaults(func=run_scan)
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    if args.verbose:
        set_log_level("DEBUG")

    print_header()
    try:
        code = asyncio.run(args.func(args))
    except KeyboardInterrupt:
        print_error("Interrupted")
        code = 130
    sys.exit(code)


if __name__ == "__main__":
    main()
