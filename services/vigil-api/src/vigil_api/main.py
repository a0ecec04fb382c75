"""API entry point - thin adapter over vigil-core."""

import os
import tomllib
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from pathlib import Path
from uuid import UUID

import uvicorn
from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from vigil_api.sessions import ControllerFactory, SessionRegistry
from vigil_core import VERSION, OnboardingController, build_status_result
from vigil_core.ports import (
    ChangeFeedProtocol,
    SessionError,
    SessionErrorCode,
    SourceError,
)
from vigil_io.backend import (
    InMemoryChangeFeed,
    PostgrestStatusSource,
    PostgrestStatusWriter,
    WebhookStageStarter,
)
from vigil_io.storage.log_sink import build_log_sink
from vigil_schemas.config import VigilConfig
from vigil_schemas.primitives import JsonValue
from vigil_schemas.responses import (
    ApiResponse,
    ErrorResponse,
    MetaInfo,
    RetryResult,
    SessionResult,
)
from vigil_schemas.tracks import resolve_tracks
from vigil_schemas.validation import validate_vigil_config

CONFIG_ENV = "VIGIL_CONFIG"

_SESSION_ERROR_STATUS = {
    SessionErrorCode.UNKNOWN_SESSION.value: 404,
    SessionErrorCode.UNKNOWN_TRACK.value: 404,
    SessionErrorCode.RETRY_UNAVAILABLE.value: 409,
    SessionErrorCode.NOT_READY.value: 409,
}


def _now_timestamp() -> str:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


def _envelope(
    data: BaseModel | dict[str, JsonValue] | None, status_code: int = 200
) -> JSONResponse:
    response: ApiResponse[object] = ApiResponse(
        data=data,
        error=None,
        meta=MetaInfo(timestamp=_now_timestamp(), request_id=None),
    )
    return JSONResponse(content=response.model_dump(mode="json"), status_code=status_code)


def _error_envelope(error: ErrorResponse, status_code: int) -> JSONResponse:
    response: ApiResponse[object] = ApiResponse(
        data=None,
        error=error,
        meta=MetaInfo(timestamp=_now_timestamp(), request_id=None),
    )
    return JSONResponse(content=response.model_dump(mode="json"), status_code=status_code)


def load_config(config_path: Path) -> VigilConfig:
    """Load observer configuration from a TOML file.

    A ``.env`` file beside the config is loaded first without overriding the
    process environment.

    Args:
        config_path: Path to the TOML config.

    Returns:
        VigilConfig: Validated configuration.

    Raises:
        RuntimeError: If the file cannot be read.
    """
    env_path = config_path.parent / ".env"
    if env_path.exists():
        load_dotenv(env_path, override=False)
    try:
        with open(config_path, "rb") as handle:
            payload: dict[str, JsonValue] = tomllib.load(handle)
    except (OSError, tomllib.TOMLDecodeError) as exc:
        raise RuntimeError(f"Failed to read config {config_path}: {exc}") from exc
    return validate_vigil_config(payload)


def build_controller_factory(config: VigilConfig) -> ControllerFactory:
    """Build controllers wired to the configured backend.

    Args:
        config: Observer configuration.

    Returns:
        ControllerFactory: Factory used by the session registry.

    Raises:
        RuntimeError: If the backend API key is not set.
    """
    api_key = os.getenv(config.backend.api_key_env)
    if not api_key:
        raise RuntimeError(
            f"Missing API key environment variable: {config.backend.api_key_env}"
        )
    tracks = resolve_tracks(config.tracks)
    source = PostgrestStatusSource(
        config.backend,
        api_key,
        workflow_types=[track.workflow_type for track in tracks.tracks],
    )
    writer = PostgrestStatusWriter(config.backend, api_key)
    starter = None
    if config.triggers.enabled and config.triggers.webhook_base_url is not None:
        starter = WebhookStageStarter(config.triggers.webhook_base_url, writer)
    log_sink = build_log_sink(
        config.logging, log_path=Path(config.logging.logs_dir) / "vigil-api.jsonl"
    )

    def factory(workspace_id: str, feed: ChangeFeedProtocol) -> OnboardingController:
        return OnboardingController(
            workspace_id,
            source,
            tracks=tracks,
            polling=config.polling,
            starter=starter,
            writer=writer,
            callback_base_url=config.callback_base_url,
            change_feed=feed,
            log_sink=log_sink,
        )

    return factory


def create_app(
    factory: ControllerFactory | None = None,
    *,
    feed: InMemoryChangeFeed | None = None,
) -> FastAPI:
    """Create the API application.

    Args:
        factory: Controller factory; loaded from ``$VIGIL_CONFIG`` when None.
        feed: Change feed shared by sessions.

    Returns:
        FastAPI: Configured application.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        resolved = factory
        if resolved is None:
            config_path = Path(os.getenv(CONFIG_ENV, "vigil.toml"))
            resolved = build_controller_factory(load_config(config_path))
        registry = SessionRegistry(resolved, feed=feed)
        app.state.sessions = registry
        try:
            yield
        finally:
            await registry.unmount_all()

    app = FastAPI(
        title="vigil",
        description="Onboarding progress observer API",
        version=str(VERSION),
        lifespan=lifespan,
    )

    @app.exception_handler(SessionError)
    async def session_error_handler(
        request: Request, exc: SessionError
    ) -> JSONResponse:
        error = exc.info.to_error_response()
        return _error_envelope(error, _SESSION_ERROR_STATUS.get(error.code, 400))

    @app.exception_handler(SourceError)
    async def source_error_handler(request: Request, exc: SourceError) -> JSONResponse:
        return _error_envelope(exc.info.to_error_response(), 502)

    @app.get("/health")
    async def health() -> JSONResponse:
        """Health check endpoint.

        Returns:
            ApiResponse envelope containing status and version.
        """
        return _envelope({"status": "ok", "version": str(VERSION)})

    @app.post("/workspaces/{workspace_id}/sessions")
    async def mount_session(workspace_id: str, request: Request) -> JSONResponse:
        """Mount a new observer session for a workspace."""
        registry = _registry(request)
        controller = await registry.mount(workspace_id)
        return _envelope(
            SessionResult(
                session_id=controller.session_id,
                workspace_id=workspace_id,
                mounted=controller.mounted,
            ),
            status_code=201,
        )

    @app.get("/sessions/{session_id}")
    async def get_session(session_id: UUID, request: Request) -> JSONResponse:
        """Return the latest progress of a session."""
        controller = _registry(request).get(session_id)
        return _envelope(build_status_result(controller, updated_at=_now_timestamp()))

    @app.delete("/sessions/{session_id}")
    async def unmount_session(session_id: UUID, request: Request) -> JSONResponse:
        """Unmount a session, stopping its polls and pending dispatches."""
        controller = await _registry(request).unmount(session_id)
        return _envelope(
            SessionResult(
                session_id=session_id,
                workspace_id=controller.workspace_id,
                mounted=False,
            )
        )

    @app.post("/sessions/{session_id}/tracks/{track_id}/retry")
    async def retry_track(
        session_id: UUID, track_id: str, request: Request
    ) -> JSONResponse:
        """Retry a failed track."""
        controller = _registry(request).get(session_id)
        dispatched = await controller.retry_track(track_id)
        return _envelope(
            RetryResult(
                session_id=controller.session_id,
                track_id=track_id,
                dispatched=dispatched,
            )
        )

    @app.post("/sessions/{session_id}/tracks/{track_id}/retry-dispatch")
    async def retry_dispatch(
        session_id: UUID, track_id: str, request: Request
    ) -> JSONResponse:
        """Re-attempt only the failed stage-start call of a track."""
        controller = _registry(request).get(session_id)
        dispatched = await controller.retry_dispatch(track_id)
        return _envelope(
            RetryResult(
                session_id=controller.session_id,
                track_id=track_id,
                dispatched=dispatched,
            )
        )

    @app.post("/sessions/{session_id}/advance")
    async def advance(
        session_id: UUID, request: Request, skip: bool = False
    ) -> JSONResponse:
        """Leave the progress view through Continue or Skip.

        The session is unmounted once the action is accepted.
        """
        registry = _registry(request)
        result = registry.get(session_id).advance(skip=skip)
        await registry.unmount(session_id)
        return _envelope(result)

    @app.post("/workspaces/{workspace_id}/notify")
    async def notify(
        workspace_id: str, request: Request, table: str | None = None
    ) -> JSONResponse:
        """Wake every session of a workspace for an immediate poll."""
        notified = _registry(request).feed.publish(workspace_id, table)
        return _envelope(
            {"workspace_id": workspace_id, "notified": notified}
        )

    return app


def _registry(request: Request) -> SessionRegistry:
    return request.app.state.sessions


app = create_app()


def main() -> None:
    """Run the API server."""
    uvicorn.run("vigil_api.main:app", host="0.0.0.0", port=8000, reload=True)


if __name__ == "__main__":
    main()
