"""Webhook stage starter for the workflow automation backend."""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime

import httpx

from vigil_core.ports.dispatch import (
    DispatchError,
    DispatchErrorCode,
    DispatchErrorDetails,
    DispatchErrorInfo,
    StageStarterProtocol,
    StageStartRequest,
)
from vigil_core.ports.source import SourceError, StatusWrite, StatusWriterProtocol
from vigil_schemas.primitives import Timestamp

DEFAULT_WEBHOOK_TIMEOUT_SECONDS = 30.0
MAX_REASON_LENGTH = 200


def _now_timestamp() -> Timestamp:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


class WebhookStageStarter(StageStarterProtocol):
    """Starts a stage by posting to its webhook, then writes the handoff record.

    The webhook receives the workspace and the callback URL the job reports
    back to. Once the call is accepted, a handoff status record is upserted
    so the next poll sees the stage as started.
    """

    def __init__(
        self,
        webhook_base_url: str,
        writer: StatusWriterProtocol,
        *,
        http_client: httpx.AsyncClient | None = None,
        timeout_seconds: float = DEFAULT_WEBHOOK_TIMEOUT_SECONDS,
        clock: Callable[[], Timestamp] | None = None,
    ) -> None:
        """Initialize the stage starter.

        Args:
            webhook_base_url: Base URL the workflow path is appended to.
            writer: Status writer for the handoff record.
            http_client: Optional pre-configured HTTP client for dependency
                injection. If None, a client is created per call.
            timeout_seconds: HTTP timeout for webhook calls.
            clock: Timestamp factory for the handoff record.
        """
        self._webhook_base_url = webhook_base_url.rstrip("/")
        self._writer = writer
        self._http_client = http_client
        self._timeout_seconds = timeout_seconds
        self._clock = clock or _now_timestamp

    async def start_stage(self, request: StageStartRequest) -> None:
        """Fire the webhook and write the handoff record.

        Args:
            request: Stage-start request.

        Raises:
            DispatchError: If the webhook call or the handoff write fails.
        """
        if self._http_client is not None:
            await self._post(self._http_client, request)
        else:
            async with httpx.AsyncClient(timeout=self._timeout_seconds) as client:
                await self._post(client, request)
        await self._write_handoff(request)

    async def _post(self, client: httpx.AsyncClient, request: StageStartRequest) -> None:
        url = f"{self._webhook_base_url}/{request.workflow}"
        payload = {
            "workspace_id": request.workspace_id,
            "callback_url": request.callback_url,
        }
        try:
            response = await client.post(url, json=payload)
        except httpx.HTTPError as exc:
            raise DispatchError(
                DispatchErrorInfo(
                    code=DispatchErrorCode.REQUEST_FAILED,
                    message=f"Could not reach the {request.workflow} workflow",
                    details=DispatchErrorDetails(
                        track_id=request.track_id,
                        workflow=request.workflow,
                        reason=str(exc) or type(exc).__name__,
                    ),
                )
            ) from exc
        if response.is_error:
            raise DispatchError(
                DispatchErrorInfo(
                    code=DispatchErrorCode.REJECTED,
                    message=(
                        f"Failed to start {request.workflow} "
                        f"(HTTP {response.status_code})"
                    ),
                    details=DispatchErrorDetails(
                        track_id=request.track_id,
                        workflow=request.workflow,
                        status_code=response.status_code,
                        reason=response.text[:MAX_REASON_LENGTH] or None,
                    ),
                )
            )

    async def _write_handoff(self, request: StageStartRequest) -> None:
        timestamp = self._clock()
        record = StatusWrite(
            workspace_id=request.workspace_id,
            workflow_type=request.workflow_type,
            status=request.handoff_status,
            details={
                "message": request.handoff_message,
                "callback_url": request.callback_url,
                "triggered_at": timestamp,
            },
            updated_at=timestamp,
        )
        try:
            await self._writer.write_status(record)
        except SourceError as exc:
            raise DispatchError(
                DispatchErrorInfo(
                    code=DispatchErrorCode.HANDOFF_FAILED,
                    message=f"Started {request.workflow} but could not record it",
                    details=DispatchErrorDetails(
                        track_id=request.track_id,
                        workflow=request.workflow,
                        reason=exc.info.message,
                    ),
                )
            ) from exc
