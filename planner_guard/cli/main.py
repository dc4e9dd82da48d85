"""
CLI interface for the planner guard.

Administrative access to rate limit state, usage and input validation.
"""

import logging
import sys
from dataclasses import dataclass
from typing import Optional

import typer
import yaml
from rich.console import Console
from rich.table import Table

from planner_guard.config.loader import PlannerConfig, load_planner_config, resolve_config_path
from planner_guard.core.errors import PlannerError
from planner_guard.core.rate_limiter import RateLimiter
from planner_guard.core.security import analyze_user_agent, validate_input_security
from planner_guard.core.usage import calculate_usage_statistics, generate_usage_alert
from planner_guard.storage.db import DEFAULT_DB_PATH
from planner_guard.storage.repository import RateLimitRepository, UsageRepository, initialize_schema

app = typer.Typer()
console = Console()

EXIT_CODE_PASS = 0
EXIT_CODE_FAIL = 1


@dataclass
class CLIState:
    db_path: str
    config: PlannerConfig


def _state(ctx: typer.Context) -> CLIState:
    return ctx.obj


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    db: str = typer.Option(DEFAULT_DB_PATH, "--db", help="Path to SQLite database file"),
    config: Optional[str] = typer.Option(
        None,
        "--config",
        "-c",
        help="Path to YAML config (defaults to $PLANNER_GUARD_CONFIG)",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """Planner Guard CLI."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    try:
        planner_config = load_planner_config(resolve_config_path(config))
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        console.print(f"[red]Error loading config:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    ctx.obj = CLIState(db_path=db, config=planner_config)
    if ctx.invoked_subcommand is None:
        console.print("Planner Guard - Use --help to see available commands")


@app.command()
def init(ctx: typer.Context):
    """Initialize the planner guard database."""
    state = _state(ctx)
    try:
        initialize_schema(state.db_path)
        console.print("[green]✓[/] Database initialized successfully")
        sys.exit(EXIT_CODE_PASS)
    except Exception as e:
        console.print(f"[red]Error initializing database:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)


@app.command()
def status(
    ctx: typer.Context,
    user_id: str = typer.Argument(..., help="User identifier"),
    ip: Optional[str] = typer.Option(None, "--ip", help="Client IP address"),
):
    """Show rate limit state for a user."""
    state = _state(ctx)
    limiter = RateLimiter(RateLimitRepository(state.db_path), state.config.rate_limit)
    try:
        result = limiter.check(user_id, ip)
        record = limiter.get_record(user_id, ip)
    except PlannerError as e:
        console.print(f"[red]Error:[/] {e.message} (run `planner-guard init` first?)")
        sys.exit(EXIT_CODE_FAIL)

    table = Table(title=f"Rate limit: {user_id}" + (f" @ {ip}" if ip else ""))
    table.add_column("Field")
    table.add_column("Value")
    table.add_row("Allowed", "[green]yes[/]" if result.allowed else "[red]no[/]")
    table.add_row("Requests in window", f"{result.current_count}/{state.config.rate_limit.max_requests}")
    table.add_row("Remaining", str(result.remaining_requests))
    table.add_row("Window resets", result.window_reset.isoformat(timespec="seconds"))
    table.add_row("Blocked", "[red]yes[/]" if result.is_blocked else "no")
    if result.blocked_until:
        table.add_row("Blocked until", result.blocked_until.isoformat(timespec="seconds"))
    table.add_row(
        "Suspicious activity",
        f"{record.suspicious_activity_count if record else 0}/{state.config.rate_limit.suspicion_threshold}",
    )
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


@app.command()
def reset(
    ctx: typer.Context,
    user_id: str = typer.Argument(..., help="User identifier"),
    ip: Optional[str] = typer.Option(None, "--ip", help="Client IP address"),
):
    """Reset rate limit counters and clear any block for a user."""
    state = _state(ctx)
    limiter = RateLimiter(RateLimitRepository(state.db_path), state.config.rate_limit)
    try:
        limiter.reset(user_id, ip)
    except PlannerError as e:
        console.print(f"[red]Error:[/] {e.message}")
        sys.exit(EXIT_CODE_FAIL)
    console.print(f"[green]✓[/] Rate limit reset for {user_id}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def validate(
    text: str = typer.Argument(..., help="Text to validate"),
    user_agent: Optional[str] = typer.Option(None, "--user-agent", "-u", help="User agent to analyze"),
):
    """Run text through the security validator.

    Exits with code 1 when the text is rejected.
    """
    verdict = validate_input_security(text)

    if verdict.is_valid:
        console.print(f"[green]✓ Valid[/] (risk: {verdict.risk_level.label})")
        console.print(f"Sanitized: {verdict.sanitized_input}")
    else:
        console.print(f"[red]✗ Rejected[/] (risk: {verdict.risk_level.label})")
        for issue in verdict.issues:
            console.print(f"  - {issue}")

    if user_agent is not None:
        analysis = analyze_user_agent(user_agent)
        console.print(
            f"\n[bold]User agent:[/bold] bot={analysis.is_bot} "
            f"suspicious={analysis.is_suspicious} risk={analysis.risk_level.label}"
        )
        for reason in analysis.reasons:
            console.print(f"  - {reason}")

    sys.exit(EXIT_CODE_PASS if verdict.is_valid else EXIT_CODE_FAIL)


@app.command()
def usage(
    ctx: typer.Context,
    user_id: str = typer.Argument(..., help="User identifier"),
):
    """Show conversation usage for a user."""
    state = _state(ctx)
    try:
        record = UsageRepository(state.db_path).get_or_create(user_id)
    except Exception as e:
        console.print(f"[red]Error:[/] {str(e)}")
        sys.exit(EXIT_CODE_FAIL)

    stats = calculate_usage_statistics(
        record, state.config.usage.free_conversations, state.config.usage.paid_conversations
    )
    table = Table(title=f"Usage: {user_id} ({record.subscription_status.value})")
    table.add_column("Plan")
    table.add_column("Used", justify="right")
    table.add_column("Remaining", justify="right")
    table.add_column("Usage", justify="right")
    table.add_row("Free", str(stats.free_used), str(stats.free_remaining), f"{stats.free_percentage}%")
    table.add_row("Paid", str(stats.paid_used), str(stats.paid_remaining), f"{stats.paid_percentage}%")
    table.add_row("Total", str(stats.total_used), str(stats.total_remaining), f"{stats.total_percentage}%")
    console.print(table)
    console.print(f"Tokens used: {record.total_tokens_used:,}")

    alert = generate_usage_alert(stats, record.subscription_status)
    if alert:
        color = {"info": "blue", "warning": "yellow", "critical": "red"}[alert.level.value]
        console.print(f"[{color}]{alert.level.value.upper()}:[/] {alert.message}")
    sys.exit(EXIT_CODE_PASS)


@app.command()
def models(ctx: typer.Context):
    """Show configured completion models and limits."""
    ai = _state(ctx).config.ai
    tokens = _state(ctx).config.tokens
    table = Table(title="Completion models")
    table.add_column("Setting")
    table.add_column("Value")
    table.add_row("Primary model", ai.primary_model)
    table.add_row("Fallback model", ai.fallback_model)
    table.add_row("Max response tokens", str(tokens.max_response_tokens))
    table.add_row("Max conversation tokens", str(tokens.max_conversation_tokens))
    table.add_row("Temperature", str(ai.temperature))
    table.add_row("Timeout (s)", str(ai.timeout_seconds))
    table.add_row("Max retries", str(ai.max_retries))
    console.print(table)
    sys.exit(EXIT_CODE_PASS)


if __name__ == "__main__":
    app()
