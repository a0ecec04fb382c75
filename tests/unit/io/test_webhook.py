"""Unit tests for the webhook stage starter."""

import json

import httpx
import pytest
import respx

from tests.helpers.snapshots import WORKSPACE
from vigil_core.ports import (
    DispatchError,
    DispatchErrorCode,
    SourceError,
    SourceErrorCode,
    SourceErrorInfo,
    StageStartRequest,
    StatusWrite,
)
from vigil_io.backend.memory import InMemoryStatusSource
from vigil_io.backend.webhook import WebhookStageStarter

WEBHOOK_BASE = "https://hooks.example.com/webhook/"
TRIGGERED_AT = "2026-03-02T09:30:00Z"


def _request() -> StageStartRequest:
    return StageStartRequest(
        workspace_id=WORKSPACE,
        track_id="scrape",
        workflow="competitor-scrape",
        workflow_type="competitor_scrape",
        callback_url="https://app.example.com/api/n8n-competitor-callback",
        handoff_status="scraping",
        handoff_message="Competitor analysis queued",
    )


class FailingWriter:
    """Status writer whose writes always fail."""

    async def write_status(self, record: StatusWrite) -> None:
        raise SourceError(
            SourceErrorInfo(
                code=SourceErrorCode.WRITE_FAILED,
                message="Failed to write competitor_scrape status",
            )
        )


@pytest.mark.asyncio
async def test_start_stage_posts_and_writes_handoff() -> None:
    """An accepted call is followed by the handoff record."""
    writer = InMemoryStatusSource()
    starter = WebhookStageStarter(WEBHOOK_BASE, writer, clock=lambda: TRIGGERED_AT)
    with respx.mock as router:
        route = router.post("https://hooks.example.com/webhook/competitor-scrape").mock(
            return_value=httpx.Response(200, json={"ok": True})
        )
        await starter.start_stage(_request())

    assert json.loads(route.calls.last.request.content) == {
        "workspace_id": WORKSPACE,
        "callback_url": "https://app.example.com/api/n8n-competitor-callback",
    }
    assert len(writer.writes) == 1
    handoff = writer.writes[0]
    assert handoff.workflow_type == "competitor_scrape"
    assert handoff.status == "scraping"
    assert handoff.updated_at == TRIGGERED_AT
    assert handoff.details == {
        "message": "Competitor analysis queued",
        "callback_url": "https://app.example.com/api/n8n-competitor-callback",
        "triggered_at": TRIGGERED_AT,
    }


@pytest.mark.asyncio
async def test_rejected_call_raises_without_handoff() -> None:
    """Error responses are reported with their status and body."""
    writer = InMemoryStatusSource()
    starter = WebhookStageStarter(WEBHOOK_BASE, writer)
    with respx.mock as router:
        router.post("https://hooks.example.com/webhook/competitor-scrape").mock(
            return_value=httpx.Response(502, text="Bad gateway")
        )
        with pytest.raises(DispatchError) as exc_info:
            await starter.start_stage(_request())

    info = exc_info.value.info
    assert info.code == DispatchErrorCode.REJECTED
    assert info.message == "Failed to start competitor-scrape (HTTP 502)"
    assert info.details is not None
    assert info.details.status_code == 502
    assert info.details.reason == "Bad gateway"
    assert writer.writes == []


@pytest.mark.asyncio
async def test_unreachable_webhook_raises_request_failed() -> None:
    """Transport errors never write a handoff record."""
    writer = InMemoryStatusSource()
    starter = WebhookStageStarter(WEBHOOK_BASE, writer)
    with respx.mock as router:
        router.post("https://hooks.example.com/webhook/competitor-scrape").mock(
            side_effect=httpx.ConnectTimeout
        )
        with pytest.raises(DispatchError) as exc_info:
            await starter.start_stage(_request())

    assert exc_info.value.info.code == DispatchErrorCode.REQUEST_FAILED
    assert exc_info.value.info.message == "Could not reach the competitor-scrape workflow"
    assert writer.writes == []


@pytest.mark.asyncio
async def test_handoff_write_failure_is_reported() -> None:
    """A started stage that cannot be recorded is still a failure."""
    starter = WebhookStageStarter(WEBHOOK_BASE, FailingWriter())
    with respx.mock as router:
        router.post("https://hooks.example.com/webhook/competitor-scrape").mock(
            return_value=httpx.Response(200)
        )
        with pytest.raises(DispatchError) as exc_info:
            await starter.start_stage(_request())

    info = exc_info.value.info
    assert info.code == DispatchErrorCode.HANDOFF_FAILED
    assert info.details is not None
    assert info.details.reason == "Failed to write competitor_scrape status"
