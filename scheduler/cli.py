"""
Command-line interface for the timetable scheduler.

Usage:
    python -m scheduler validate input.json
    python -m scheduler solve input.json --db sqlite:///school.db --timetable T1 -o result.json
    python -m scheduler conflicts --db sqlite:///school.db --timetable T1
    python -m scheduler workload --db sqlite:///school.db --timetable T1 --teacher T001
"""

from __future__ import annotations

import json
import logging
import time
from pathlib import Path
from typing import Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table
from rich.text import Text

from .data.models import ScheduleInput, load_schedule_from_json
from .errors import SchedulerError
from .output.conflicts import ConflictReport, ConflictSeverity
from .output.schema import SolveResult
from .output.workload import WorkloadAnalysis, WorkloadStatus
from .problem_builder import ProblemBuilder
from .service import TimetableService

app = typer.Typer(
    name="scheduler",
    help="School timetable scheduler using CP-SAT seeding and local search.",
    add_completion=False,
)

console = Console()

RESULT_WAIT_SECONDS = 60.0

SEVERITY_COLORS = {
    ConflictSeverity.NONE: "green",
    ConflictSeverity.LOW: "cyan",
    ConflictSeverity.MEDIUM: "yellow",
    ConflictSeverity.HIGH: "red",
    ConflictSeverity.CRITICAL: "bold red",
}

STATUS_COLORS = {
    WorkloadStatus.UNDERUTILIZED: "cyan",
    WorkloadStatus.OPTIMAL: "green",
    WorkloadStatus.OVERLOADED: "yellow",
    WorkloadStatus.SEVERELY_OVERLOADED: "red",
}


# =============================================================================
# Helper Functions
# =============================================================================

def configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
        force=True,
    )


def load_input(input_path: Path) -> ScheduleInput:
    """Load and validate input data."""
    if not input_path.exists():
        console.print(f"[red]Error:[/red] Input file not found: {input_path}")
        raise typer.Exit(code=1)

    try:
        return load_schedule_from_json(input_path)
    except (ValidationError, json.JSONDecodeError) as e:
        console.print(f"[red]Error loading input:[/red] {e}")
        raise typer.Exit(code=1)


def open_service(db: str) -> TimetableService:
    try:
        return TimetableService(db)
    except Exception as e:
        console.print(f"[red]Error opening database:[/red] {e}")
        raise typer.Exit(code=1)


def print_summary(result: SolveResult) -> None:
    """Print solve summary to console."""
    status_color = "green" if result.feasible else "red"
    label = "FEASIBLE" if result.feasible else "INFEASIBLE"
    status_text = Text(f"{label} ({result.status})", style=f"bold {status_color}")

    elapsed = result.stats.get("elapsedSeconds", 0.0)
    console.print(Panel(
        status_text,
        title="Solve Status",
        subtitle=f"Score {result.final_score} in {elapsed:.2f}s",
    ))

    table = Table(title="Summary", show_header=False, box=None)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="white")

    table.add_row("Assigned Lessons", str(len(result.assigned_slots)))
    table.add_row("Unassigned Lessons", str(len(result.unassigned_lessons)))
    if result.skipped_requirements:
        table.add_row("Skipped Requirements", str(len(result.skipped_requirements)))
    table.add_row("Construction", str(result.stats.get("constructionMethod")))
    table.add_row("Iterations", str(result.stats.get("iterations")))
    table.add_row("Termination", str(result.stats.get("termination")))
    if result.materialization is not None:
        persisted = result.materialization
        table.add_row(
            "Persisted",
            f"{persisted.slots_written} slots (revision {persisted.revision})"
            if persisted.persisted else f"no: {persisted.reason}",
        )

    console.print(table)

    penalties = {name: count for name, count in result.breakdown.items() if count}
    if penalties:
        detail = Table(title="Constraint Breakdown", show_header=True, header_style="bold cyan")
        detail.add_column("Constraint")
        detail.add_column("Penalty", justify="right")
        for name, count in sorted(penalties.items()):
            style = "red" if name in result.hard_violations else "white"
            detail.add_row(name, f"[{style}]{count}[/{style}]")
        console.print(detail)

    for skipped in result.skipped_requirements:
        console.print(
            f"  [yellow]Skipped:[/yellow] {skipped.class_id} / {skipped.course_id} "
            f"({skipped.weekly_hours}h, {skipped.reason})"
        )


# =============================================================================
# Commands
# =============================================================================

@app.command()
def validate(
    input_file: Path = typer.Argument(
        ...,
        help="Path to input JSON file to validate",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose", "-v",
        help="Show detailed validation results",
    ),
) -> None:
    """
    Validate input data.

    Checks for:
    - Valid JSON structure
    - Schema compliance
    - Reference integrity (course and teacher IDs)
    - Slot capacity

    Example:
        python -m scheduler validate input.json
    """
    configure_logging(verbose)
    console.print(f"\n[bold]Validating:[/bold] {input_file}\n")

    if not input_file.exists():
        console.print(f"[red]Error:[/red] File not found: {input_file}")
        raise typer.Exit(code=1)

    console.print("[cyan]1. Checking JSON syntax...[/cyan]")
    try:
        with open(input_file) as f:
            json.load(f)
        console.print("   [green]JSON syntax is valid[/green]")
    except json.JSONDecodeError as e:
        console.print(f"   [red]Invalid JSON:[/red] {e}")
        raise typer.Exit(code=1)

    console.print("[cyan]2. Validating against schema...[/cyan]")
    try:
        schedule_input = load_schedule_from_json(input_file)
        console.print("   [green]Schema validation passed[/green]")
    except ValidationError as e:
        console.print("   [red]Schema validation failed:[/red]")
        for line in str(e).split("\n"):
            console.print(f"   {line}")
        raise typer.Exit(code=1)

    console.print("[cyan]3. Checking references...[/cyan]")
    issues = ProblemBuilder(schedule_input).validate()
    if issues:
        console.print("   [red]Problem cannot be built:[/red]")
        for issue in issues:
            console.print(f"   - {issue}")
        raise typer.Exit(code=1)
    console.print("   [green]All references resolve[/green]")

    console.print("[cyan]4. Checking capacity...[/cyan]")
    warnings = []
    total_hours = schedule_input.total_weekly_hours
    total_slots = schedule_input.total_slots
    if total_hours > total_slots:
        warnings.append(f"Total lessons ({total_hours}) exceed available slots ({total_slots})")

    teacher_hours: dict[str, int] = {}
    courses = {c.id: c for c in schedule_input.courses}
    for group in schedule_input.classes:
        for req in group.requirements:
            teacher_id = courses[req.course_id].teacher_id
            if req.weekly_hours > 0 and teacher_id:
                teacher_hours[teacher_id] = teacher_hours.get(teacher_id, 0) + req.weekly_hours
    for teacher in schedule_input.teachers:
        hours = teacher_hours.get(teacher.id, 0)
        if hours > teacher.max_weekly_hours:
            warnings.append(
                f"Teacher '{teacher.name}' has {hours} hours but max is {teacher.max_weekly_hours}"
            )

    if warnings:
        console.print("   [yellow]Warnings found:[/yellow]")
        for w in warnings:
            console.print(f"   - {w}")
    else:
        console.print("   [green]No capacity issues[/green]")

    console.print("\n[bold]Summary:[/bold]")
    table = Table(show_header=False, box=None)
    table.add_column("Entity", style="cyan")
    table.add_column("Count", style="white")
    for key, value in schedule_input.summary().items():
        table.add_row(key.replace("_", " ").capitalize(), str(value))
    console.print(table)

    if verbose:
        console.print("\n[bold]Teacher hours:[/bold]")
        for teacher_id, hours in sorted(teacher_hours.items()):
            console.print(f"  {teacher_id}: {hours}")

    console.print("\n[green]Validation complete.[/green]\n")


@app.command()
def solve(
    input_file: Path = typer.Argument(
        ...,
        help="Path to input JSON file with scheduling data",
        exists=True,
    ),
    db: str = typer.Option(
        "sqlite://",
        "--db",
        help="Database URL the schedule is materialized into",
    ),
    timetable: str = typer.Option(
        "default",
        "--timetable",
        help="Timetable ID to store the inputs and schedule under",
    ),
    output: Optional[Path] = typer.Option(
        None,
        "--output", "-o",
        help="Path to write the result JSON",
    ),
    timeout: Optional[int] = typer.Option(
        None,
        "--timeout", "-t",
        help="Search time in seconds (defaults to the configured budget)",
        min=1,
        max=3600,
    ),
    allow_conflicts: bool = typer.Option(
        False,
        "--allow-conflicts",
        help="Persist the schedule even if hard conflicts remain",
    ),
    from_current: bool = typer.Option(
        False,
        "--from-current",
        help="Start from the timetable's stored schedule instead of building a new one",
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose", "-v",
        help="Enable verbose output",
    ),
) -> None:
    """
    Solve a timetable and persist the resulting schedule.

    Example:
        python -m scheduler solve input.json --db sqlite:///school.db --timetable T1
    """
    configure_logging(verbose)
    console.print(f"\n[bold]Loading input from:[/bold] {input_file}")
    schedule_input = load_input(input_file)
    console.print(
        f"[green]Loaded:[/green] {schedule_input.total_weekly_hours} lessons, "
        f"{len(schedule_input.teachers)} teachers, {len(schedule_input.rooms)} rooms"
    )

    with open_service(db) as service:
        try:
            service.register_timetable(timetable, schedule_input)
            job_id = service.start_solve(
                timetable, time_budget=timeout, allow_conflicts=allow_conflicts, from_current=from_current,
            )
        except SchedulerError as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(code=1)

        console.print(f"\n[bold]Solving[/bold] (job {job_id})...")
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=console,
            transient=True,
        ) as progress:
            task = progress.add_task("Searching...", total=None)
            try:
                info = service.get_solve_status(job_id)
                while not info.status.is_terminal:
                    best = info.best_score if info.best_score is not None else "-"
                    progress.update(task, description=f"Searching... best {best}")
                    time.sleep(0.2)
                    info = service.get_solve_status(job_id)
            except KeyboardInterrupt:
                service.cancel_solve(job_id)
                console.print("[yellow]Cancelling, keeping best solution so far[/yellow]")

        try:
            result = service.get_result(job_id, wait=RESULT_WAIT_SECONDS)
        except SchedulerError as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(code=1)

    console.print()
    print_summary(result)

    if output:
        output.parent.mkdir(parents=True, exist_ok=True)
        with open(output, "w") as f:
            f.write(result.to_json())
        console.print(f"\n[green]Result saved to:[/green] {output}")

    if not result.feasible:
        console.print("\n[red]No conflict-free schedule found.[/red]")
        raise typer.Exit(code=1)

    console.print()


@app.command()
def conflicts(
    db: str = typer.Option(
        ...,
        "--db",
        help="Database URL holding the timetable",
    ),
    timetable: str = typer.Option(
        ...,
        "--timetable",
        help="Timetable ID to inspect",
    ),
    format: str = typer.Option(
        "table",
        "--format", "-f",
        help="Output format: table or json",
    ),
) -> None:
    """
    Report conflicts in a stored schedule.

    Example:
        python -m scheduler conflicts --db sqlite:///school.db --timetable T1
    """
    with open_service(db) as service:
        try:
            report = service.detect_conflicts(timetable)
        except SchedulerError as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(code=1)

    if format == "json":
        console.print_json(report.to_json())
    else:
        _show_conflicts(report)


def _show_conflicts(report: ConflictReport) -> None:
    color = SEVERITY_COLORS[report.overall_severity]
    console.print(Panel(
        f"[{color}]{report.overall_severity.value.upper()}[/{color}]",
        title=f"Conflicts in {report.timetable_id}",
        subtitle=f"{report.total_conflicts} found",
    ))

    if not report.has_conflicts:
        console.print("[green]No conflicts found.[/green]")
        return

    table = Table(show_header=True, header_style="bold cyan")
    table.add_column("Severity")
    table.add_column("Type")
    table.add_column("Entity")
    table.add_column("Description")

    for conflict in report.all_conflicts:
        sev_color = SEVERITY_COLORS[conflict.severity]
        table.add_row(
            f"[{sev_color}]{conflict.severity.value}[/{sev_color}]",
            conflict.type.value,
            conflict.entity_name,
            conflict.description,
        )
    console.print(table)

    if report.suggestions:
        console.print("\n[bold yellow]Suggestions:[/bold yellow]")
        for suggestion in report.suggestions:
            console.print(f"  [yellow]*[/yellow] {suggestion.suggestion}")


@app.command()
def workload(
    db: str = typer.Option(
        ...,
        "--db",
        help="Database URL holding the timetable",
    ),
    timetable: str = typer.Option(
        ...,
        "--timetable",
        help="Timetable ID to inspect",
    ),
    teacher: Optional[str] = typer.Option(
        None,
        "--teacher", "-T",
        help="Analyze one teacher (default: all teachers)",
    ),
    format: str = typer.Option(
        "table",
        "--format", "-f",
        help="Output format: table or json",
    ),
) -> None:
    """
    Analyze teacher workload in a stored schedule.

    Examples:
        python -m scheduler workload --db sqlite:///school.db --timetable T1
        python -m scheduler workload --db sqlite:///school.db --timetable T1 --teacher T001
    """
    with open_service(db) as service:
        try:
            analysis = service.analyze_workload(timetable, teacher)
        except SchedulerError as e:
            console.print(f"[red]Error:[/red] {e}")
            raise typer.Exit(code=1)

    analyses = analysis if isinstance(analysis, list) else [analysis]

    if format == "json":
        console.print_json(json.dumps([a.to_dict() for a in analyses], indent=2))
    elif teacher:
        _show_teacher_workload(analyses[0])
    else:
        _show_workload_table(analyses)


def _show_workload_table(analyses: list[WorkloadAnalysis]) -> None:
    table = Table(title="Teacher Workload", show_header=True, header_style="bold cyan")
    table.add_column("Teacher")
    table.add_column("Hours", justify="right")
    table.add_column("Load", justify="right")
    table.add_column("Status")
    table.add_column("Gaps", justify="right")
    table.add_column("Ranking")

    for analysis in analyses:
        color = STATUS_COLORS[analysis.status]
        table.add_row(
            analysis.teacher_name,
            f"{analysis.total_hours}/{analysis.max_weekly_hours}",
            f"{analysis.workload_percentage:.0f}%",
            f"[{color}]{analysis.status.value}[/{color}]",
            str(analysis.total_gaps),
            analysis.comparison.ranking.value if analysis.comparison else "-",
        )
    console.print(table)


def _show_teacher_workload(analysis: WorkloadAnalysis) -> None:
    color = STATUS_COLORS[analysis.status]
    console.print(Panel(
        f"[bold]{analysis.teacher_name}[/bold] ({analysis.teacher_id})\n"
        f"{analysis.total_hours}/{analysis.max_weekly_hours} hours, "
        f"[{color}]{analysis.workload_percentage:.0f}% {analysis.status.value}[/{color}]",
        title="Teacher Workload",
    ))

    table = Table(show_header=True, header_style="bold")
    table.add_column("Day", style="cyan")
    table.add_column("Hours", justify="right")
    table.add_column("Gaps", justify="right")
    table.add_column("Longest Run", justify="right")
    table.add_column("Efficiency")
    for day in analysis.daily_breakdown:
        table.add_row(
            day.day_name,
            str(day.hours),
            str(day.gaps),
            str(day.consecutive_hours),
            day.efficiency.value,
        )
    console.print(table)

    if analysis.schedule_issues:
        console.print("\n[bold yellow]Issues:[/bold yellow]")
        for issue in analysis.schedule_issues:
            console.print(f"  [yellow]*[/yellow] {issue}")

    if analysis.recommendations:
        console.print("\n[bold]Recommendations:[/bold]")
        for rec in analysis.recommendations:
            console.print(f"  {rec.priority.value.upper()}: {rec.description}")


# =============================================================================
# Main Entry Point
# =============================================================================

def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
