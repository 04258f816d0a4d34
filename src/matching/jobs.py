"""Job directory sources: a local JSON file and the HRMS jobs API.

Job records are read-only reference data. The HRMS client fails open to
the local list so that a flaky upstream never blocks ingestion; every
failure is still emitted to the audit trail.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Protocol

import httpx

from src.audit.events import emit
from src.config import settings
from src.schemas.context import OperationContext
from src.schemas.documents import JobRecord
from src.schemas.events import EventType, SystemEvent

logger = logging.getLogger(__name__)

# Upstream payloads are not consistent about field names
_JOB_REF_KEYS = ("job_ref", "ref", "jobReference", "jobRef")
_VEHICLE_REG_KEYS = ("vehicle_reg", "vehicleReg", "vehicleRegistration")


class JobDirectory(Protocol):
    async def list_jobs(
        self,
        ctx: OperationContext,
        *,
        job_ref: str | None = None,
        vehicle_reg: str | None = None,
        date: str | None = None,
    ) -> list[JobRecord]: ...


def _first(raw: dict[str, Any], keys: tuple[str, ...]) -> str:
    for key in keys:
        value = raw.get(key)
        if value:
            return str(value)
    return ""


def parse_job(raw: dict[str, Any]) -> JobRecord:
    """Build a JobRecord from an upstream dict, tolerating key variants."""
    return JobRecord(
        id=str(raw.get("id", "")),
        job_ref=_first(raw, _JOB_REF_KEYS),
        vehicle_reg=_first(raw, _VEHICLE_REG_KEYS),
        supplier=raw.get("supplier"),
        date=raw.get("date"),
    )


class LocalJobDirectory:
    """Jobs loaded once from a JSON array on disk.

    Filters are ignored: the matcher scores every local job.
    """

    def __init__(self, path: str | None = None, jobs: list[JobRecord] | None = None) -> None:
        self._path = Path(path or settings.matching.local_jobs_path)
        self._jobs: list[JobRecord] | None = list(jobs) if jobs is not None else None

    def _load(self) -> list[JobRecord]:
        if not self._path.exists():
            logger.info("No local jobs file at %s", self._path)
            return []
        try:
            payload = json.loads(self._path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Failed to load local jobs from %s: %s", self._path, exc)
            return []
        if not isinstance(payload, list):
            logger.warning("Local jobs file %s is not a JSON array", self._path)
            return []
        jobs = [parse_job(item) for item in payload if isinstance(item, dict)]
        logger.info("Loaded %d local jobs from %s", len(jobs), self._path)
        return jobs

    async def list_jobs(
        self,
        ctx: OperationContext,
        *,
        job_ref: str | None = None,
        vehicle_reg: str | None = None,
        date: str | None = None,
    ) -> list[JobRecord]:
        if self._jobs is None:
            self._jobs = self._load()
        return list(self._jobs)


class HrmsJobDirectory:
    """Thin async wrapper around the HRMS jobs endpoint.

    Endpoint: GET {base_url}/api/jobs?job_ref=&vehicle_reg=&date=
    Auth: Bearer token
    """

    def __init__(self, fallback: LocalJobDirectory | None = None) -> None:
        self._base_url = settings.matching.hrms_api_url.rstrip("/")
        self._token = settings.matching.hrms_api_token
        self._timeout = httpx.Timeout(10.0, connect=5.0)
        self._fallback = fallback or LocalJobDirectory()

    async def list_jobs(
        self,
        ctx: OperationContext,
        *,
        job_ref: str | None = None,
        vehicle_reg: str | None = None,
        date: str | None = None,
    ) -> list[JobRecord]:
        params = {
            key: value
            for key, value in (("job_ref", job_ref), ("vehicle_reg", vehicle_reg), ("date", date))
            if value
        }

        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.get(
                    f"{self._base_url}/api/jobs",
                    params=params,
                    headers={"Authorization": f"Bearer {self._token}"},
                )
                response.raise_for_status()
                payload: Any = response.json()

        except httpx.TimeoutException:
            logger.warning("HRMS jobs API timeout (correlation=%s)", ctx.correlation_id)
            return await self._fail_open(ctx, "timeout", job_ref=job_ref, vehicle_reg=vehicle_reg, date=date)

        except httpx.HTTPStatusError as exc:
            logger.warning(
                "HRMS jobs API HTTP error %s (correlation=%s)",
                exc.response.status_code,
                ctx.correlation_id,
            )
            return await self._fail_open(
                ctx,
                f"http_{exc.response.status_code}",
                job_ref=job_ref,
                vehicle_reg=vehicle_reg,
                date=date,
            )

        except httpx.HTTPError as exc:
            logger.warning("HRMS jobs API unreachable: %s (correlation=%s)", exc, ctx.correlation_id)
            return await self._fail_open(ctx, "unreachable", job_ref=job_ref, vehicle_reg=vehicle_reg, date=date)

        if not isinstance(payload, list):
            logger.warning("HRMS jobs API returned a non-list payload")
            return []
        return [parse_job(item) for item in payload if isinstance(item, dict)]

    async def _fail_open(
        self,
        ctx: OperationContext,
        error: str,
        **filters: str | None,
    ) -> list[JobRecord]:
        await emit(SystemEvent(
            event_type=EventType.EXTERNAL_IO_FAILED,
            correlation_id=ctx.correlation_id,
            actor_id=ctx.actor,
            data={"integration": "hrms_jobs", "error": error},
            source_module="matching.jobs",
        ))
        return await self._fallback.list_jobs(ctx, **filters)


def get_job_directory() -> JobDirectory:
    """Directory selected by settings.matching.use_api."""
    if settings.matching.use_api:
        return HrmsJobDirectory()
    return LocalJobDirectory()
