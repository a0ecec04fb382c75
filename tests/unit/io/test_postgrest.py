"""Unit tests for the PostgREST status adapters."""

import json

import httpx
import pytest
import respx

from tests.helpers.snapshots import WORKSPACE
from vigil_core.ports import SourceError, SourceErrorCode, StatusWrite
from vigil_io.backend.postgrest import (
    PostgrestStatusSource,
    PostgrestStatusWriter,
    parse_content_range,
)
from vigil_schemas.config import (
    DEFAULT_JOB_TABLES,
    BackendConfig,
    CountQueryConfig,
    SignalSourceConfig,
)

BASE_URL = "https://db.example.com"
STATUS_URL = f"{BASE_URL}/rest/v1/n8n_workflow_progress"
QUEUE_URL = f"{BASE_URL}/rest/v1/email_import_queue"
SIGNAL_URL = f"{BASE_URL}/rest/v1/email_import_progress"
JOBS_URL = f"{BASE_URL}/rest/v1/scraping_jobs"

STATUS_ROWS = [
    {
        "workspace_id": WORKSPACE,
        "workflow_type": "email_import",
        "status": "classifying",
        "details": {"total_emails": 600},
        "updated_at": "2026-03-02T09:29:30.123456+00:00",
    },
    {
        "workspace_id": WORKSPACE,
        "workflow_type": "email_import",
        "status": "pending",
        "details": None,
        "updated_at": "2026-03-02T09:00:00+00:00",
    },
    {
        "workspace_id": WORKSPACE,
        "workflow_type": "competitor_discovery",
        "status": "",
        "details": {},
        "updated_at": "2026-03-02T09:00:00+00:00",
    },
]


def _config(**overrides: object) -> BackendConfig:
    payload: dict[str, object] = {
        "url": BASE_URL,
        "counts": [
            CountQueryConfig(key="emails_received", table="email_import_queue"),
            CountQueryConfig(
                key="emails_classified",
                table="email_import_queue",
                filters={"category": "not.is.null"},
            ),
        ],
        "signals": [
            SignalSourceConfig(
                table="email_import_progress",
                prefix="email",
                columns=["current_phase", "voice_profile_complete", "stats"],
            )
        ],
        "job_tables": [],
    }
    payload.update(overrides)
    return BackendConfig.model_validate(payload)


def _count_response(request: httpx.Request) -> httpx.Response:
    if request.url.params.get("category") == "not.is.null":
        return httpx.Response(200, headers={"Content-Range": "*/240"})
    return httpx.Response(200, headers={"Content-Range": "0-0/600"})


def _mock_backend(router: respx.MockRouter) -> dict[str, respx.Route]:
    return {
        "status": router.get(STATUS_URL).mock(
            return_value=httpx.Response(200, json=STATUS_ROWS)
        ),
        "counts": router.head(QUEUE_URL).mock(side_effect=_count_response),
        "signals": router.get(SIGNAL_URL).mock(
            return_value=httpx.Response(
                200,
                json=[
                    {
                        "current_phase": "classifying",
                        "voice_profile_complete": False,
                        "stats": {"batches": 3},
                    }
                ],
            )
        ),
    }


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("0-24/3573", 3573),
        ("*/0", 0),
        ("*/*", None),
        ("0-24", None),
        (None, None),
    ],
)
def test_parse_content_range(value: str | None, expected: int | None) -> None:
    """Totals are read from the part after the slash."""
    assert parse_content_range(value) == expected


@pytest.mark.asyncio
async def test_fetch_snapshot_combines_rows_counts_and_signals() -> None:
    """A snapshot carries the newest row per type, counts and flat signals."""
    with respx.mock(assert_all_called=True) as router:
        routes = _mock_backend(router)
        source = PostgrestStatusSource(
            _config(),
            "secret-key",
            workflow_types=["competitor_discovery", "email_import"],
            clock=lambda: "2026-03-02T09:30:00Z",
        )
        snapshot = await source.fetch_snapshot(WORKSPACE)

    assert set(snapshot.records) == {"email_import"}
    assert snapshot.records["email_import"].status == "classifying"
    assert snapshot.counts == {"emails_received": 600, "emails_classified": 240}
    assert snapshot.signals == {
        "email.current_phase": "classifying",
        "email.voice_profile_complete": False,
    }
    assert snapshot.fetched_at == "2026-03-02T09:30:00Z"

    status_request = routes["status"].calls.last.request
    assert status_request.headers["apikey"] == "secret-key"
    assert status_request.headers["Authorization"] == "Bearer secret-key"
    assert status_request.url.params["workspace_id"] == f"eq.{WORKSPACE}"
    assert status_request.url.params["order"] == "updated_at.desc"
    assert (
        status_request.url.params["workflow_type"]
        == "in.(competitor_discovery,email_import)"
    )
    count_request = routes["counts"].calls.last.request
    assert count_request.headers["Prefer"] == "count=exact"
    signal_request = routes["signals"].calls.last.request
    assert signal_request.url.params["limit"] == "1"


@pytest.mark.asyncio
async def test_count_failures_degrade_to_zero() -> None:
    """A failed or totalless count query does not fail the snapshot."""
    with respx.mock as router:
        router.get(STATUS_URL).mock(return_value=httpx.Response(200, json=[]))
        router.head(QUEUE_URL).mock(
            side_effect=[httpx.Response(500), httpx.Response(200)]
        )
        router.get(SIGNAL_URL).mock(side_effect=httpx.ConnectError)
        source = PostgrestStatusSource(_config(), "secret-key")
        snapshot = await source.fetch_snapshot(WORKSPACE)

    assert snapshot.records == {}
    assert snapshot.counts == {"emails_received": 0, "emails_classified": 0}
    assert snapshot.signals == {}


@pytest.mark.asyncio
async def test_status_http_error_raises_source_error() -> None:
    """A failed status query fails the whole tick."""
    with respx.mock as router:
        router.get(STATUS_URL).mock(return_value=httpx.Response(503))
        source = PostgrestStatusSource(_config(counts=[], signals=[]), "secret-key")
        with pytest.raises(SourceError) as exc_info:
            await source.fetch_snapshot(WORKSPACE)

    info = exc_info.value.info
    assert info.code == SourceErrorCode.REQUEST_FAILED
    assert info.details is not None
    assert info.details.status_code == 503


@pytest.mark.asyncio
async def test_status_connection_error_raises_source_error() -> None:
    """Transport errors are reported as request failures."""
    with respx.mock as router:
        router.get(STATUS_URL).mock(side_effect=httpx.ConnectError)
        source = PostgrestStatusSource(_config(counts=[], signals=[]), "secret-key")
        with pytest.raises(SourceError) as exc_info:
            await source.fetch_snapshot(WORKSPACE)

    assert exc_info.value.info.code == SourceErrorCode.REQUEST_FAILED


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(200, content=b"not json"),
        httpx.Response(200, json={"rows": []}),
    ],
)
@pytest.mark.asyncio
async def test_status_invalid_payload(response: httpx.Response) -> None:
    """Non-list payloads are rejected."""
    with respx.mock as router:
        router.get(STATUS_URL).mock(return_value=response)
        source = PostgrestStatusSource(_config(counts=[], signals=[]), "secret-key")
        with pytest.raises(SourceError) as exc_info:
            await source.fetch_snapshot(WORKSPACE)

    assert exc_info.value.info.code == SourceErrorCode.INVALID_PAYLOAD


@pytest.mark.asyncio
async def test_injected_client_is_used() -> None:
    """A caller-provided client serves every query."""
    seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.path)
        return httpx.Response(200, json=[])

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        source = PostgrestStatusSource(
            _config(counts=[], signals=[]), "secret-key", http_client=client
        )
        snapshot = await source.fetch_snapshot(WORKSPACE)

    assert seen == ["/rest/v1/n8n_workflow_progress"]
    assert snapshot.records == {}


@pytest.mark.asyncio
async def test_writer_upserts_on_workspace_and_type() -> None:
    """Writes merge into the existing row for the workflow type."""
    record = StatusWrite(
        workspace_id=WORKSPACE,
        workflow_type="competitor_scrape",
        status="pending",
        details={"message": "Competitor analysis queued"},
        updated_at="2026-03-02T09:30:00Z",
    )
    with respx.mock as router:
        route = router.post(STATUS_URL).mock(return_value=httpx.Response(201))
        writer = PostgrestStatusWriter(_config(), "secret-key")
        await writer.write_status(record)

    request = route.calls.last.request
    assert request.url.params["on_conflict"] == "workspace_id,workflow_type"
    assert request.headers["Prefer"] == "resolution=merge-duplicates,return=minimal"
    assert json.loads(request.content) == {
        "workspace_id": WORKSPACE,
        "workflow_type": "competitor_scrape",
        "status": "pending",
        "details": {"message": "Competitor analysis queued"},
        "updated_at": "2026-03-02T09:30:00Z",
    }


@pytest.mark.asyncio
async def test_writer_error_raises_write_failed() -> None:
    """Rejected writes surface the HTTP status."""
    record = StatusWrite(
        workspace_id=WORKSPACE,
        workflow_type="email_import",
        status="pending",
        updated_at="2026-03-02T09:30:00Z",
    )
    with respx.mock as router:
        router.post(STATUS_URL).mock(return_value=httpx.Response(409))
        writer = PostgrestStatusWriter(_config(), "secret-key")
        with pytest.raises(SourceError) as exc_info:
            await writer.write_status(record)

    info = exc_info.value.info
    assert info.code == SourceErrorCode.WRITE_FAILED
    assert info.details is not None
    assert info.details.status_code == 409


@pytest.mark.asyncio
async def test_job_table_row_becomes_status_record() -> None:
    """The newest website job is read as the website workflow's record."""
    with respx.mock(assert_all_called=True) as router:
        router.get(STATUS_URL).mock(return_value=httpx.Response(200, json=[]))
        jobs = router.get(JOBS_URL).mock(
            return_value=httpx.Response(
                200,
                json=[
                    {
                        "status": "scraping",
                        "total_pages_found": 40,
                        "pages_processed": 12,
                        "faqs_found": 0,
                        "error_message": None,
                    }
                ],
            )
        )
        source = PostgrestStatusSource(
            _config(counts=[], signals=[], job_tables=DEFAULT_JOB_TABLES),
            "secret-key",
            workflow_types=["website_scrape"],
        )
        snapshot = await source.fetch_snapshot(WORKSPACE)

    record = snapshot.records["website_scrape"]
    assert record.status == "scraping"
    assert record.details == {
        "total_pages_found": 40,
        "pages_processed": 12,
        "faqs_found": 0,
    }
    assert record.updated_at is None
    params = jobs.calls.last.request.url.params
    assert params["job_type"] == "eq.own_website"
    assert params["order"] == "created_at.desc"
    assert params["limit"] == "1"
    assert params["select"] == (
        "status,total_pages_found,pages_processed,faqs_found,error_message"
    )


@pytest.mark.asyncio
async def test_job_tables_outside_observed_types_are_not_read() -> None:
    """Only job tables for observed workflow types are queried."""
    with respx.mock as router:
        router.get(STATUS_URL).mock(return_value=httpx.Response(200, json=[]))
        jobs = router.get(JOBS_URL).mock(return_value=httpx.Response(200, json=[]))
        source = PostgrestStatusSource(
            _config(counts=[], signals=[], job_tables=DEFAULT_JOB_TABLES),
            "secret-key",
            workflow_types=["email_import"],
        )
        snapshot = await source.fetch_snapshot(WORKSPACE)

    assert not jobs.called
    assert snapshot.records == {}


@pytest.mark.asyncio
async def test_job_table_failure_fails_the_tick() -> None:
    """Job rows are status rows, so a failed query raises."""
    with respx.mock as router:
        router.get(STATUS_URL).mock(return_value=httpx.Response(200, json=[]))
        router.get(JOBS_URL).mock(return_value=httpx.Response(500))
        source = PostgrestStatusSource(
            _config(counts=[], signals=[], job_tables=DEFAULT_JOB_TABLES),
            "secret-key",
        )
        with pytest.raises(SourceError) as exc_info:
            await source.fetch_snapshot(WORKSPACE)

    info = exc_info.value.info
    assert info.code == SourceErrorCode.REQUEST_FAILED
    assert info.details is not None
    assert info.details.table == "scraping_jobs"


@pytest.mark.asyncio
async def test_writer_updates_job_table_status() -> None:
    """Retries of job-table workflows update the job row's status column."""
    record = StatusWrite(
        workspace_id=WORKSPACE,
        workflow_type="website_scrape",
        status="pending",
        details={"message": "Retry requested"},
        updated_at="2026-03-02T09:30:00Z",
    )
    with respx.mock as router:
        route = router.patch(JOBS_URL).mock(return_value=httpx.Response(204))
        writer = PostgrestStatusWriter(
            _config(job_tables=DEFAULT_JOB_TABLES), "secret-key"
        )
        await writer.write_status(record)

    request = route.calls.last.request
    assert request.url.params["workspace_id"] == f"eq.{WORKSPACE}"
    assert request.url.params["job_type"] == "eq.own_website"
    assert request.headers["Prefer"] == "return=minimal"
    assert json.loads(request.content) == {"status": "pending"}
