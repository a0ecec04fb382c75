"""CLI entry point - thin adapter over vigil-core."""

from __future__ import annotations

import asyncio
import os
import tomllib
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import TypeVar

import typer
from dotenv import load_dotenv
from pydantic import ValidationError
from rich import print as rprint
from rich.console import Console, Group, RenderableType
from rich.live import Live
from rich.panel import Panel
from rich.progress_bar import ProgressBar
from rich.table import Table

from vigil_core import (
    VERSION,
    OnboardingController,
    build_status_result,
    format_elapsed,
)
from vigil_core.ports import (
    DispatchError,
    LogSinkProtocol,
    SessionError,
    SourceError,
    StatusSourceProtocol,
    StatusWriterProtocol,
)
from vigil_io.backend import (
    PostgrestStatusSource,
    PostgrestStatusWriter,
    WebhookStageStarter,
)
from vigil_io.storage.log_sink import build_log_sink
from vigil_schemas.config import (
    BackendConfig,
    LoggingConfig,
    LogSinkConfig,
    VigilConfig,
)
from vigil_schemas.primitives import JsonValue, LogSinkType, StageBadge
from vigil_schemas.progress import TrackState
from vigil_schemas.responses import (
    AdvanceResult,
    ApiResponse,
    ErrorResponse,
    MetaInfo,
    OnboardingStatusResult,
    RetryResult,
)
from vigil_schemas.tracks import resolve_tracks
from vigil_schemas.validation import validate_vigil_config

CONFIG_OPTION = typer.Option(
    Path("vigil.toml"),
    "--config",
    "-c",
    help="Path to vigil TOML config",
)
WORKSPACE_OPTION = typer.Option(
    ..., "--workspace", "-w", help="Workspace to observe"
)
TRACK_OPTION = typer.Option(..., "--track", "-t", help="Track to retry")

WATCH_REFRESH_SECONDS = 0.5

app = typer.Typer(
    help="Onboarding progress observer",
    no_args_is_help=True,
)


@app.callback()
def main() -> None:
    """Vigil CLI."""


@app.command()
def version() -> None:
    """Display version information."""
    rprint(f"[bold]vigil[/bold] v{VERSION}")


@app.command("status")
def status(
    workspace_id: str = WORKSPACE_OPTION,
    config_path: Path = CONFIG_OPTION,
    json_output: bool = typer.Option(False, "--json", help="Output status as JSON"),
) -> None:
    """Poll once and show the progress of every track.

    Status is read-only: no stage-start calls are made.

    Raises:
        typer.Exit: If a track failed or the status could not be read.
    """
    try:
        config = _load_config(config_path)
        result = asyncio.run(
            _status_async(
                config,
                config_path,
                workspace_id,
                allow_console_logs=not json_output,
            )
        )
        if json_output:
            response: ApiResponse[OnboardingStatusResult] = ApiResponse(
                data=result,
                error=None,
                meta=MetaInfo(timestamp=_now_timestamp()),
            )
            print(response.model_dump_json())
        else:
            _render_status(result)
        if _has_failed_track(result):
            raise typer.Exit(code=1)
    except typer.Exit:
        raise
    except Exception as exc:
        error = _error_from_exception(exc)
        if json_output:
            print(_error_response(error).model_dump_json())
            raise typer.Exit(code=1) from None
        rprint(f"[red]Error:[/red] {error.message}")
        raise typer.Exit(code=1) from None


@app.command("watch")
def watch(
    workspace_id: str = WORKSPACE_OPTION,
    config_path: Path = CONFIG_OPTION,
) -> None:
    """Watch onboarding progress until every track completes.

    Stage-start calls fire as dependencies are satisfied. Press Ctrl-C to
    skip ahead; background jobs keep running.

    Raises:
        typer.Exit: If the session could not be started.
    """
    try:
        config = _load_config(config_path)
        controller = _build_controller(
            config,
            config_path,
            workspace_id,
            triggers=True,
            allow_console_logs=False,
        )
    except Exception as exc:
        error = _error_from_exception(exc)
        rprint(f"[red]Error:[/red] {error.message}")
        raise typer.Exit(code=1) from None
    console = Console()
    try:
        advance = asyncio.run(_watch_async(controller, console))
    except KeyboardInterrupt:
        advance = controller.advance(skip=True)
    if advance.skipped:
        rprint(
            f"Skipped after {format_elapsed(controller.elapsed_seconds())}; "
            "background jobs keep running."
        )
        return
    rprint(f"[green]All tracks complete.[/green] Session {advance.session_id}")


@app.command("retry")
def retry(
    workspace_id: str = WORKSPACE_OPTION,
    track_id: str = TRACK_OPTION,
    config_path: Path = CONFIG_OPTION,
    json_output: bool = typer.Option(False, "--json", help="Output result as JSON"),
) -> None:
    """Retry a failed track.

    Raises:
        typer.Exit: If the track cannot be retried.
    """
    try:
        config = _load_config(config_path)
        result = asyncio.run(
            _retry_async(
                config,
                config_path,
                workspace_id,
                track_id,
                allow_console_logs=not json_output,
            )
        )
        if json_output:
            response: ApiResponse[RetryResult] = ApiResponse(
                data=result,
                error=None,
                meta=MetaInfo(timestamp=_now_timestamp()),
            )
            print(response.model_dump_json())
            return
        action = "restarted" if result.dispatched else "reset"
        rprint(f"Track {_format_enum(result.track_id)} {action}")
    except Exception as exc:
        error = _error_from_exception(exc)
        if json_output:
            print(_error_response(error).model_dump_json())
            raise typer.Exit(code=1) from None
        rprint(f"[red]Error:[/red] {error.message}")
        raise typer.Exit(code=1) from None


ResponseT = TypeVar("ResponseT")


class _ConfigError(Exception):
    """Raised for CLI configuration issues."""


class _DispatchFailedError(Exception):
    """Raised when a retried stage-start call fails."""


def _now_timestamp() -> str:
    timestamp = datetime.now(UTC).isoformat()
    return timestamp.replace("+00:00", "Z")


async def _status_async(
    config: VigilConfig,
    config_path: Path,
    workspace_id: str,
    *,
    allow_console_logs: bool,
) -> OnboardingStatusResult:
    controller = _build_controller(
        config,
        config_path,
        workspace_id,
        triggers=False,
        allow_console_logs=allow_console_logs,
    )
    await controller.refresh()
    return build_status_result(controller, updated_at=_now_timestamp())


async def _watch_async(
    controller: OnboardingController, console: Console
) -> AdvanceResult:
    with Live(console=console, refresh_per_second=4) as live:
        async with controller:
            while True:
                result = build_status_result(controller, updated_at=_now_timestamp())
                live.update(_build_status_panel(result, watching=True))
                if controller.can_continue:
                    return controller.advance()
                await asyncio.sleep(WATCH_REFRESH_SECONDS)


async def _retry_async(
    config: VigilConfig,
    config_path: Path,
    workspace_id: str,
    track_id: str,
    *,
    allow_console_logs: bool,
) -> RetryResult:
    controller = _build_controller(
        config,
        config_path,
        workspace_id,
        triggers=True,
        allow_console_logs=allow_console_logs,
    )
    await controller.refresh()
    dispatched = await controller.retry_track(track_id)
    await controller.wait_for_dispatches()
    latest = controller.latest
    state = latest.track(track_id) if latest is not None else None
    if state is not None and state.dispatch_error is not None:
        raise _DispatchFailedError(state.dispatch_error)
    return RetryResult(
        session_id=controller.session_id,
        track_id=track_id,
        dispatched=dispatched,
    )


def _build_controller(
    config: VigilConfig,
    config_path: Path,
    workspace_id: str,
    *,
    triggers: bool,
    allow_console_logs: bool,
) -> OnboardingController:
    tracks = resolve_tracks(config.tracks)
    source, writer = _build_backend(
        config.backend, [track.workflow_type for track in tracks.tracks]
    )
    starter = None
    if (
        triggers
        and config.triggers.enabled
        and config.triggers.webhook_base_url is not None
    ):
        starter = WebhookStageStarter(config.triggers.webhook_base_url, writer)
    return OnboardingController(
        workspace_id,
        source,
        tracks=tracks,
        polling=config.polling,
        starter=starter,
        writer=writer if triggers else None,
        callback_base_url=config.callback_base_url,
        log_sink=_build_command_log_sink(
            config, config_path, workspace_id, allow_console_logs
        ),
    )


def _build_backend(
    backend: BackendConfig, workflow_types: list[str]
) -> tuple[StatusSourceProtocol, StatusWriterProtocol]:
    api_key = _resolve_api_key(backend)
    source = PostgrestStatusSource(backend, api_key, workflow_types=workflow_types)
    writer = PostgrestStatusWriter(backend, api_key)
    return source, writer


def _resolve_api_key(backend: BackendConfig) -> str:
    api_key = os.getenv(backend.api_key_env)
    if not api_key:
        raise _ConfigError(f"Missing API key environment variable: {backend.api_key_env}")
    return api_key


def _build_command_log_sink(
    config: VigilConfig,
    config_path: Path,
    workspace_id: str,
    allow_console_logs: bool,
) -> LogSinkProtocol:
    logging_config = _build_logging_config(config, allow_console_logs)
    log_path = _resolve_path(Path(logging_config.logs_dir), config_path.parent)
    return build_log_sink(
        logging_config, log_path=log_path / f"vigil-{workspace_id}.jsonl"
    )


def _build_logging_config(
    config: VigilConfig, allow_console_logs: bool
) -> LoggingConfig:
    if allow_console_logs:
        return config.logging
    sinks = [sink for sink in config.logging.sinks if sink.type != LogSinkType.CONSOLE]
    if not sinks:
        sinks = [LogSinkConfig(type=LogSinkType.FILE)]
    return LoggingConfig(sinks=sinks, logs_dir=config.logging.logs_dir)


def _resolve_path(path: Path, base_dir: Path) -> Path:
    if path.is_absolute():
        return path
    return base_dir / path


def _load_config(config_path: Path) -> VigilConfig:
    _load_dotenv(config_path)
    if not config_path.exists():
        raise _ConfigError(f"Config not found: {config_path}")
    try:
        with open(config_path, "rb") as handle:
            payload: dict[str, JsonValue] = tomllib.load(handle)
    except (OSError, tomllib.TOMLDecodeError) as exc:
        raise _ConfigError(f"Failed to read config: {exc}") from exc
    return validate_vigil_config(payload)


def _load_dotenv(config_path: Path) -> None:
    env_path = config_path.parent / ".env"
    if env_path.exists():
        load_dotenv(env_path, override=False)


def _has_failed_track(result: OnboardingStatusResult) -> bool:
    if result.progress is None:
        return False
    return any(track.badge == StageBadge.ERROR for track in result.progress.tracks)


_BADGE_STYLES = {
    StageBadge.PENDING.value: ("Pending", "dim"),
    StageBadge.IN_PROGRESS.value: ("In Progress", "yellow"),
    StageBadge.DONE.value: ("Done", "green"),
    StageBadge.ERROR.value: ("Error", "red"),
}


def _render_status(result: OnboardingStatusResult) -> None:
    rprint(_build_status_panel(result, watching=False))


def _build_status_panel(result: OnboardingStatusResult, *, watching: bool) -> Panel:
    header = Table.grid(padding=(0, 1))
    header.add_column(justify="right", style="bold")
    header.add_column()
    header.add_row("Workspace", result.workspace_id)
    if watching:
        header.add_row("Elapsed", format_elapsed(result.elapsed_seconds))
    header.add_row("Updated", result.updated_at)
    header.add_row(
        "Continue",
        "[green]ready[/green]" if result.can_continue else "waiting for all tracks",
    )
    renderables: list[RenderableType] = [header]
    progress = result.progress
    if progress is None:
        renderables.append("[yellow]No progress read yet[/yellow]")
    else:
        if progress.connection_error is not None:
            renderables.append(f"[red]{progress.connection_error}[/red]")
        renderables.append(_build_track_table(progress.tracks))
        errors = _build_error_table(progress.tracks)
        if errors is not None:
            renderables.append(errors)
    if watching:
        renderables.append(
            "[dim]Ctrl-C to skip ahead; background jobs keep running[/dim]"
        )
    return Panel(Group(*renderables), title="vigil onboarding", expand=True)


def _build_track_table(tracks: list[TrackState]) -> Table:
    table = Table(title="Tracks", show_lines=False)
    table.add_column("Track")
    table.add_column("Phase")
    table.add_column("Status")
    table.add_column("Progress")
    table.add_column("")
    table.add_column("Counts")
    table.add_column("ETA")
    for track in tracks:
        label, style = _BADGE_STYLES[_format_enum(track.badge)]
        table.add_row(
            track.title,
            _format_phase(track),
            f"[{style}]{label}[/{style}]",
            ProgressBar(total=100, completed=track.progress_percent, width=20),
            _format_percent(track.progress_percent),
            _format_counts(track),
            _format_eta(track.eta_seconds),
        )
    return table


def _build_error_table(tracks: list[TrackState]) -> Table | None:
    rows: list[tuple[str, str, str]] = []
    for track in tracks:
        if track.error is not None:
            rows.append((track.title, track.error, "vigil retry"))
        if track.dispatch_error is not None:
            rows.append((track.title, track.dispatch_error, "retry dispatch"))
    if not rows:
        return None
    table = Table(title="Errors", show_lines=False)
    table.add_column("Track")
    table.add_column("Error")
    table.add_column("Action")
    for row in rows:
        table.add_row(*row)
    return table


def _format_phase(track: TrackState) -> str:
    if track.current_item:
        return f"{track.phase_label}: {track.current_item}"
    if track.bulk_total:
        return f"{track.phase_label} ({track.bulk_current or 0}/{track.bulk_total})"
    return track.phase_label


def _format_counts(track: TrackState) -> str:
    if not track.counts:
        return "-"
    return ", ".join(f"{count.value} {count.label}" for count in track.counts)


def _format_eta(seconds: float | None) -> str:
    if seconds is None:
        return "n/a"
    remaining = int(seconds)
    if remaining <= 0:
        return "0s"
    minutes, seconds = divmod(remaining, 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h {minutes}m"
    if minutes:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


def _format_percent(percent: float | None) -> str:
    if percent is None:
        return "n/a"
    return f"{percent:.0f}%"


def _format_enum(value: Enum | str | int | float | bool | None) -> str:
    if isinstance(value, Enum):
        return str(value.value)
    return str(value)


def _error_response(error: ErrorResponse) -> ApiResponse[ResponseT]:
    return ApiResponse(
        data=None,
        error=error,
        meta=MetaInfo(timestamp=_now_timestamp()),
    )


def _error_from_exception(exc: Exception) -> ErrorResponse:
    if isinstance(exc, SessionError | SourceError | DispatchError):
        return exc.info.to_error_response()
    if isinstance(exc, _DispatchFailedError):
        return ErrorResponse(code="dispatch_failed", message=str(exc), details=None)
    if isinstance(exc, ValidationError):
        message = "Config validation failed"
        errors = exc.errors()
        if errors:
            first = errors[0]
            loc = first.get("loc", [])
            label = ".".join(str(part) for part in loc) if loc else ""
            detail = first.get("msg", "")
            if label and detail:
                message = f"Config validation failed: {label} - {detail}"
            elif detail:
                message = f"Config validation failed: {detail}"
        return ErrorResponse(code="validation_error", message=message, details=None)
    if isinstance(exc, _ConfigError):
        return ErrorResponse(code="config_error", message=str(exc), details=None)
    if isinstance(exc, ValueError):
        return ErrorResponse(code="validation_error", message=str(exc), details=None)
    return ErrorResponse(code="runtime_error", message=str(exc), details=None)


if __name__ == "__main__":
    app()
