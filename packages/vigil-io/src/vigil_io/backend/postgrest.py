"""PostgREST adapters for status records and corroborating counts."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from datetime import UTC, datetime

import httpx
from pydantic import ValidationError

from vigil_core.ports.source import (
    SourceError,
    SourceErrorCode,
    SourceErrorDetails,
    SourceErrorInfo,
    StatusSourceProtocol,
    StatusWrite,
    StatusWriterProtocol,
)
from vigil_schemas.config import (
    BackendConfig,
    CountQueryConfig,
    JobTableConfig,
    SignalSourceConfig,
)
from vigil_schemas.primitives import JsonValue, Timestamp
from vigil_schemas.records import SourceSnapshot, WorkflowStatusRecord

logger = logging.getLogger(__name__)

STATUS_COLUMNS = "workspace_id,workflow_type,status,details,updated_at"


def _now_timestamp() -> Timestamp:
    return datetime.now(UTC).isoformat().replace("+00:00", "Z")


def parse_content_range(value: str | None) -> int | None:
    """Parse the total from a PostgREST ``Content-Range`` header.

    Args:
        value: Header value such as ``0-24/3573`` or ``*/0``.

    Returns:
        int | None: Total row count, or None when the header has no total.
    """
    if not value or "/" not in value:
        return None
    total = value.rsplit("/", 1)[1].strip()
    if not total.isdigit():
        return None
    return int(total)


class _PostgrestAdapter:
    def __init__(
        self,
        config: BackendConfig,
        api_key: str,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._config = config
        self._api_key = api_key
        self._http_client = http_client

    def _table_url(self, table: str) -> str:
        return f"{self._config.url}/rest/v1/{table}"

    def _headers(self, prefer: str | None = None) -> dict[str, str]:
        headers = {
            "apikey": self._api_key,
            "Authorization": f"Bearer {self._api_key}",
        }
        if prefer is not None:
            headers["Prefer"] = prefer
        return headers

    def _new_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._config.timeout_seconds)


class PostgrestStatusSource(_PostgrestAdapter, StatusSourceProtocol):
    """Reads status and job rows, counts and progress rows over PostgREST."""

    def __init__(
        self,
        config: BackendConfig,
        api_key: str,
        *,
        workflow_types: list[str] | None = None,
        http_client: httpx.AsyncClient | None = None,
        clock: Callable[[], Timestamp] | None = None,
    ) -> None:
        """Initialize the status source.

        Args:
            config: Backend connection settings and query definitions.
            api_key: Backend API key.
            workflow_types: Workflow types to read (all rows when omitted).
            http_client: Optional pre-configured HTTP client for dependency
                injection. If None, a client is created per fetch.
            clock: Timestamp factory for ``fetched_at``.
        """
        super().__init__(config, api_key, http_client)
        self._workflow_types = list(workflow_types or [])
        self._clock = clock or _now_timestamp

    async def fetch_snapshot(self, workspace_id: str) -> SourceSnapshot:
        """Fetch status rows, job rows, counts and signals concurrently.

        Args:
            workspace_id: Tenant identifier.

        Returns:
            SourceSnapshot: Snapshot for one poll tick.

        Raises:
            SourceError: If the status or job rows cannot be read. Count and signal
                failures degrade to zero and empty values instead.
        """
        if self._http_client is not None:
            return await self._fetch_with_client(self._http_client, workspace_id)
        async with self._new_client() as client:
            return await self._fetch_with_client(client, workspace_id)

    async def _fetch_with_client(
        self, client: httpx.AsyncClient, workspace_id: str
    ) -> SourceSnapshot:
        records, job_records, counts, signals = await asyncio.gather(
            self._fetch_records(client, workspace_id),
            self._fetch_job_records(client, workspace_id),
            self._fetch_counts(client, workspace_id),
            self._fetch_signals(client, workspace_id),
        )
        return SourceSnapshot(
            workspace_id=workspace_id,
            records={**records, **job_records},
            counts=counts,
            signals=signals,
            fetched_at=self._clock(),
        )

    async def _fetch_records(
        self, client: httpx.AsyncClient, workspace_id: str
    ) -> dict[str, WorkflowStatusRecord]:
        table = self._config.status_table
        params = {
            "select": STATUS_COLUMNS,
            "workspace_id": f"eq.{workspace_id}",
            "order": "updated_at.desc",
        }
        if self._workflow_types:
            params["workflow_type"] = f"in.({','.join(self._workflow_types)})"
        rows = await self._get_rows(client, table, params)
        records: dict[str, WorkflowStatusRecord] = {}
        for row in rows:
            try:
                record = WorkflowStatusRecord.model_validate(row)
            except ValidationError as exc:
                logger.warning("Skipping invalid status row in %s: %s", table, exc)
                continue
            records.setdefault(record.workflow_type, record)
        return records

    async def _fetch_job_records(
        self, client: httpx.AsyncClient, workspace_id: str
    ) -> dict[str, WorkflowStatusRecord]:
        jobs = [
            job
            for job in self._config.job_tables
            if not self._workflow_types or job.workflow_type in self._workflow_types
        ]
        records = await asyncio.gather(
            *(self._fetch_job_record(client, workspace_id, job) for job in jobs)
        )
        return {
            record.workflow_type: record for record in records if record is not None
        }

    async def _fetch_job_record(
        self, client: httpx.AsyncClient, workspace_id: str, job: JobTableConfig
    ) -> WorkflowStatusRecord | None:
        columns = [job.status_column, *job.detail_columns]
        if job.updated_column is not None:
            columns.append(job.updated_column)
        params = {
            "select": ",".join(columns),
            "workspace_id": f"eq.{workspace_id}",
            **job.filters,
            "order": f"{job.order_column}.desc",
            "limit": "1",
        }
        rows = await self._get_rows(client, job.table, params)
        if not rows or not isinstance(rows[0], dict):
            return None
        row = rows[0]
        updated_at = row.get(job.updated_column) if job.updated_column else None
        try:
            return WorkflowStatusRecord(
                workspace_id=workspace_id,
                workflow_type=job.workflow_type,
                status=row.get(job.status_column),
                details={
                    column: row[column]
                    for column in job.detail_columns
                    if row.get(column) is not None
                },
                updated_at=updated_at,
            )
        except ValidationError as exc:
            logger.warning("Skipping invalid job row in %s: %s", job.table, exc)
            return None

    async def _get_rows(
        self, client: httpx.AsyncClient, table: str, params: dict[str, str]
    ) -> list[JsonValue]:
        try:
            response = await client.get(
                self._table_url(table), params=params, headers=self._headers()
            )
            response.raise_for_status()
            rows = response.json()
        except httpx.HTTPStatusError as exc:
            raise SourceError(
                SourceErrorInfo(
                    code=SourceErrorCode.REQUEST_FAILED,
                    message=f"Status query failed with HTTP {exc.response.status_code}",
                    details=SourceErrorDetails(
                        table=table, status_code=exc.response.status_code
                    ),
                )
            ) from exc
        except httpx.HTTPError as exc:
            raise SourceError(
                SourceErrorInfo(
                    code=SourceErrorCode.REQUEST_FAILED,
                    message=f"Status query failed: {exc}",
                    details=SourceErrorDetails(table=table, reason=str(exc)),
                )
            ) from exc
        except ValueError as exc:
            raise SourceError(
                SourceErrorInfo(
                    code=SourceErrorCode.INVALID_PAYLOAD,
                    message="Status query returned invalid JSON",
                    details=SourceErrorDetails(table=table, reason=str(exc)),
                )
            ) from exc
        if not isinstance(rows, list):
            raise SourceError(
                SourceErrorInfo(
                    code=SourceErrorCode.INVALID_PAYLOAD,
                    message="Status query must return a list of rows",
                    details=SourceErrorDetails(table=table),
                )
            )
        return rows

    async def _fetch_counts(
        self, client: httpx.AsyncClient, workspace_id: str
    ) -> dict[str, int]:
        queries = self._config.counts
        values = await asyncio.gather(
            *(self._fetch_count(client, workspace_id, query) for query in queries)
        )
        return {query.key: value for query, value in zip(queries, values, strict=True)}

    async def _fetch_count(
        self, client: httpx.AsyncClient, workspace_id: str, query: CountQueryConfig
    ) -> int:
        params = {"select": "*", "workspace_id": f"eq.{workspace_id}", **query.filters}
        try:
            response = await client.head(
                self._table_url(query.table),
                params=params,
                headers=self._headers(prefer="count=exact"),
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            logger.warning("Count query %s failed: %s", query.key, exc)
            return 0
        total = parse_content_range(response.headers.get("content-range"))
        if total is None:
            logger.warning("Count query %s returned no total", query.key)
            return 0
        return total

    async def _fetch_signals(
        self, client: httpx.AsyncClient, workspace_id: str
    ) -> dict[str, JsonValue]:
        sources = self._config.signals
        rows = await asyncio.gather(
            *(self._fetch_signal_row(client, workspace_id, source) for source in sources)
        )
        signals: dict[str, JsonValue] = {}
        for row in rows:
            signals.update(row)
        return signals

    async def _fetch_signal_row(
        self, client: httpx.AsyncClient, workspace_id: str, source: SignalSourceConfig
    ) -> dict[str, JsonValue]:
        params = {
            "select": ",".join(source.columns) or "*",
            "workspace_id": f"eq.{workspace_id}",
            "limit": "1",
        }
        try:
            response = await client.get(
                self._table_url(source.table), params=params, headers=self._headers()
            )
            response.raise_for_status()
            rows = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Signal query on %s failed: %s", source.table, exc)
            return {}
        if not isinstance(rows, list) or not rows or not isinstance(rows[0], dict):
            return {}
        return {
            f"{source.prefix}.{column}": value
            for column, value in rows[0].items()
            if value is None or isinstance(value, str | int | float | bool)
        }


class PostgrestStatusWriter(_PostgrestAdapter, StatusWriterProtocol):
    """Writes status records.

    Records are upserted into the status table keyed by workspace and workflow
    type; workflow types read from a job table update that table's status
    column instead.
    """

    def __init__(
        self,
        config: BackendConfig,
        api_key: str,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize the status writer.

        Args:
            config: Backend connection settings.
            api_key: Backend API key.
            http_client: Optional pre-configured HTTP client for dependency
                injection. If None, a client is created per write.
        """
        super().__init__(config, api_key, http_client)

    async def write_status(self, record: StatusWrite) -> None:
        """Write a status record.

        Args:
            record: Record to write.

        Raises:
            SourceError: If the backend rejects the write.
        """
        if self._http_client is not None:
            await self._write_with_client(self._http_client, record)
            return
        async with self._new_client() as client:
            await self._write_with_client(client, record)

    async def _write_with_client(
        self, client: httpx.AsyncClient, record: StatusWrite
    ) -> None:
        job = self._config.job_table_for(record.workflow_type)
        if job is not None:
            table = job.table
            payload: dict[str, JsonValue] = {job.status_column: record.status}
            if job.updated_column is not None:
                payload[job.updated_column] = record.updated_at
            request = client.patch(
                self._table_url(table),
                params={"workspace_id": f"eq.{record.workspace_id}", **job.filters},
                headers=self._headers(prefer="return=minimal"),
                json=payload,
            )
        else:
            table = self._config.status_table
            request = client.post(
                self._table_url(table),
                params={"on_conflict": "workspace_id,workflow_type"},
                headers=self._headers(
                    prefer="resolution=merge-duplicates,return=minimal"
                ),
                json=record.model_dump(mode="json"),
            )
        try:
            response = await request
            response.raise_for_status()
        except httpx.HTTPError as exc:
            status_code = (
                exc.response.status_code
                if isinstance(exc, httpx.HTTPStatusError)
                else None
            )
            raise SourceError(
                SourceErrorInfo(
                    code=SourceErrorCode.WRITE_FAILED,
                    message=f"Failed to write {record.workflow_type} status",
                    details=SourceErrorDetails(
                        table=table, status_code=status_code, reason=str(exc)
                    ),
                )
            ) from exc
