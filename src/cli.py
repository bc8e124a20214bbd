"""Command Line Interface for Checkup-Ledger.

This module provides a Typer CLI for recording health check results,
applying lifecycle commands, browsing list views and history, printing
statistics and serving the HTTP API.

The CLI uses the repository configured through ``CL_DB_TYPE`` /
``CL_DB_PATH``; use the DuckDB backend to keep records between invocations.
"""

import json
from datetime import date
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from src.adapters.side_effects import (
    LoggingNotificationAdapter,
    LoggingSurveyAdapter,
    StaticApprovalAuthority,
)
from src.adapters.storage import create_repository
from src.domain.enums import FollowUpUrgency, LifecycleCommandKind
from src.domain.health_check_result import HealthCheckResult
from src.domain.ports import HealthCheckResultRepositoryPort, LifecycleError, StorageError
from src.domain.services.lifecycle_manager import HealthCheckResultLifecycleManager, LifecycleCommand
from src.domain.services.query_service import (
    HealthCheckResultQuery,
    HealthCheckResultQueryService,
    build_filter_criteria,
)
from src.domain.services.statistics import StatisticsService
from src.infrastructure.logging_config import setup_logging
from src.infrastructure.settings import APP_VERSION, MAX_PAGE_SIZE, settings

app = typer.Typer(
    name="checkup-ledger",
    help="Checkup-Ledger: health check result lifecycle and list views",
    add_completion=False
)
console = Console()


def get_repository() -> HealthCheckResultRepositoryPort:
    """Create the configured repository adapter."""
    try:
        return create_repository(settings.db_config)
    except Exception as e:
        console.print(f"[red]✗[/red] Failed to create repository: {str(e)}")
        raise typer.Exit(code=1)


def build_manager(repository: HealthCheckResultRepositoryPort) -> HealthCheckResultLifecycleManager:
    side_effects = settings.side_effects
    return HealthCheckResultLifecycleManager(
        repository,
        survey=LoggingSurveyAdapter() if side_effects.survey_enabled else None,
        notifications=LoggingNotificationAdapter() if side_effects.notifications_enabled else None,
        approval_authority=StaticApprovalAuthority(side_effects.approver_ids),
    )


def _fail(error: Exception) -> None:
    if isinstance(error, LifecycleError):
        console.print(f"[red]✗[/red] {error} [dim](guard: {error.guard})[/dim]")
    else:
        console.print(f"[red]✗[/red] {error}")
    raise typer.Exit(code=1)


def _record_table(records: list[HealthCheckResult], title: str) -> Table:
    table = Table(title=title)
    table.add_column("Code", style="cyan")
    table.add_column("Patient")
    table.add_column("Staff")
    table.add_column("Checkup", style="dim")
    table.add_column("Status", style="bold")
    table.add_column("Follow-up")
    table.add_column("ID", style="dim")
    for record in records:
        table.add_row(
            record.code,
            record.subject.full_name or record.subject.id,
            record.staff.full_name or record.staff.id,
            record.checkup_date.isoformat(),
            record.status.value,
            record.follow_up_date.isoformat() if record.follow_up_date else "-",
            record.id,
        )
    return table


@app.command()
def create(
    input_file: Path = typer.Argument(..., help="JSON file with subject, staff, checkup_date and details", exists=True),
    actor: str = typer.Option(..., "--actor", "-a", help="Acting staff id"),
) -> None:
    """Record a new health check result awaiting approval."""
    try:
        request = json.loads(input_file.read_text())
    except json.JSONDecodeError as e:
        console.print(f"[red]✗[/red] Invalid JSON in {input_file}: {str(e)}")
        raise typer.Exit(code=1)

    repository = get_repository()
    try:
        result = build_manager(repository).create(request, actor)
        record = repository.get(result.record_id)
        console.print(f"[green]✓[/green] Created {record.code} ({record.id}) in {result.new_status.value}")
    except (LifecycleError, StorageError) as e:
        _fail(e)
    finally:
        repository.close()


@app.command("apply")
def apply_command(
    command: LifecycleCommandKind = typer.Argument(..., help="Lifecycle command to apply"),
    record_id: str = typer.Argument(..., help="Record id"),
    actor: str = typer.Option(..., "--actor", "-a", help="Acting staff id"),
    reason: Optional[str] = typer.Option(None, "--reason", "-r", help="Cancellation reason"),
    follow_up_date: Optional[str] = typer.Option(None, "--follow-up-date", help="Follow-up date (YYYY-MM-DD)"),
    payload_file: Optional[Path] = typer.Option(None, "--payload-file", help="JSON payload (e.g. Edit details)", exists=True),
) -> None:
    """Apply one lifecycle command to a record.

    Examples:
        checkup-ledger apply Approve <id> --actor staff-1
        checkup-ledger apply CancelForAdjustment <id> --actor staff-1 --reason "needs more tests"
        checkup-ledger apply ScheduleFollowUp <id> --actor staff-1 --follow-up-date 2026-11-02
    """
    payload = {}
    if payload_file is not None:
        try:
            payload = json.loads(payload_file.read_text())
        except json.JSONDecodeError as e:
            console.print(f"[red]✗[/red] Invalid JSON in {payload_file}: {str(e)}")
            raise typer.Exit(code=1)
        if not isinstance(payload, dict):
            console.print(f"[red]✗[/red] Payload in {payload_file} must be a JSON object")
            raise typer.Exit(code=1)
    if reason is not None:
        payload["reason"] = reason
    if follow_up_date is not None:
        payload["follow_up_date"] = follow_up_date

    repository = get_repository()
    try:
        result = build_manager(repository).execute(
            LifecycleCommand(record_id=record_id, command=command, actor_id=actor, payload=payload)
        )
        console.print(f"[green]✓[/green] {command.value}: now {result.new_status.value}")
        for warning in result.warnings:
            console.print(f"[yellow]⚠[/yellow] {warning.kind.value}: {warning.message}")
    except (LifecycleError, StorageError) as e:
        _fail(e)
    finally:
        repository.close()


@app.command("list")
def list_records(
    view: str = typer.Option("all", "--view", "-v", help="List view"),
    user: Optional[str] = typer.Option(None, "--user", help="Search patient"),
    staff: Optional[str] = typer.Option(None, "--staff", help="Search staff"),
    code: Optional[str] = typer.Option(None, "--code", help="Search record code"),
    follow_up_status: Optional[FollowUpUrgency] = typer.Option(None, "--follow-up-status", help="Overdue, Today or Upcoming"),
    sort_by: str = typer.Option("checkup_date", "--sort-by", help="Field to sort by"),
    ascending: bool = typer.Option(False, "--asc", help="Sort ascending"),
    page: int = typer.Option(1, "--page", min=1),
    page_size: Optional[int] = typer.Option(None, "--page-size", min=1, max=MAX_PAGE_SIZE),
) -> None:
    """List health check results through a view."""
    repository = get_repository()
    try:
        query = HealthCheckResultQuery(
            view=view,
            search={k: v for k, v in {"user": user, "staff": staff, "code": code}.items() if v},
            criteria=build_filter_criteria(follow_up_urgency=[follow_up_status] if follow_up_status else None),
            sort_by=sort_by,
            ascending=ascending,
            page=page,
            page_size=page_size or settings.default_page_size,
        )
        result = HealthCheckResultQueryService(repository).search(query)
        console.print(_record_table(result.items, f"{view} (page {page})"))
        console.print(f"[dim]{result.pagination.total} matching records[/dim]")
    except (LifecycleError, StorageError) as e:
        _fail(e)
    finally:
        repository.close()


@app.command()
def history(record_id: str = typer.Argument(..., help="Record id")) -> None:
    """Show the chronological history of one record."""
    repository = get_repository()
    try:
        entries = build_manager(repository).history(record_id)
        table = Table(title=f"History of {record_id}")
        table.add_column("When", style="dim")
        table.add_column("Action", style="cyan")
        table.add_column("By")
        table.add_column("From")
        table.add_column("To", style="bold")
        table.add_column("Details")
        for entry in entries:
            table.add_row(
                entry.action_date.isoformat(timespec="seconds"),
                entry.action.value,
                entry.performed_by,
                entry.previous_status.value if entry.previous_status else "-",
                entry.new_status.value,
                entry.change_details or "",
            )
        console.print(table)
    except (LifecycleError, StorageError) as e:
        _fail(e)
    finally:
        repository.close()


@app.command()
def stats(
    today: Optional[str] = typer.Option(None, "--today", help="Reference date (YYYY-MM-DD)"),
) -> None:
    """Print status, follow-up and monthly statistics."""
    repository = get_repository()
    try:
        result = StatisticsService(repository).compute(today=date.fromisoformat(today) if today else None)
    finally:
        repository.close()

    if result.is_failure():
        console.print(f"[red]✗[/red] Failed to compute statistics: {result.error}")
        raise typer.Exit(code=1)

    statistics = result.value
    status_table = Table(title=f"Status distribution ({statistics.total_results} results)")
    status_table.add_column("Status", style="cyan")
    status_table.add_column("Count", justify="right", style="green")
    for name, count in statistics.status_distribution.model_dump().items():
        status_table.add_row(name, str(count))
    console.print(status_table)

    follow_ups = statistics.follow_up_statistics
    follow_up_table = Table(show_header=False, box=None, padding=(0, 2))
    follow_up_table.add_row("Follow-ups:", str(follow_ups.total_follow_ups))
    follow_up_table.add_row("Upcoming:", str(follow_ups.upcoming_follow_ups))
    follow_up_table.add_row("Today:", str(follow_ups.follow_ups_today))
    follow_up_table.add_row("Overdue:", str(follow_ups.overdue_follow_ups))
    console.print(follow_up_table)

    if statistics.monthly_distribution:
        monthly_table = Table(title="Checkups per month")
        monthly_table.add_column("Month")
        monthly_table.add_column("Count", justify="right")
        for month in statistics.monthly_distribution:
            monthly_table.add_row(f"{month.year}-{month.month:02d}", str(month.count))
        console.print(monthly_table)


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, "--host", help="Bind address"),
    port: Optional[int] = typer.Option(None, "--port", help="Port"),
    reload: bool = typer.Option(False, "--reload", help="Reload on code changes"),
) -> None:
    """Serve the HTTP API with uvicorn."""
    import uvicorn
    uvicorn.run(
        "src.api.main:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=reload,
        log_level=settings.log_level.lower(),
    )


@app.command()
def info() -> None:
    """Display configuration."""
    console.print("[bold blue]Configuration[/bold blue]\n")

    info_table = Table(show_header=False, box=None, padding=(0, 2))
    info_table.add_row("Application:", settings.app_name)
    info_table.add_row("Repository:", settings.db_config.db_type)
    if settings.db_config.db_type == "duckdb":
        info_table.add_row("Database Path:", settings.get_db_path())
    side_effects = settings.side_effects
    info_table.add_row("Surveys:", "Enabled" if side_effects.survey_enabled else "Disabled")
    info_table.add_row("Notifications:", "Enabled" if side_effects.notifications_enabled else "Disabled")
    info_table.add_row("Approvers:", ", ".join(side_effects.approver_ids) or "any staff")
    info_table.add_row("Page Size:", str(settings.default_page_size))
    console.print(info_table)


@app.callback()
def main_callback(
    version: bool = typer.Option(False, "--version", help="Show version information"),
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging"),
) -> None:
    """Checkup-Ledger: health check result lifecycle and list views."""
    if version:
        console.print(f"Checkup-Ledger v{APP_VERSION}")
        raise typer.Exit()
    setup_logging(use_json=settings.log_json, log_level="DEBUG" if verbose else settings.log_level)


if __name__ == "__main__":
    app()
