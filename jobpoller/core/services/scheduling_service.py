"""Core service for the scheduling cycle.

Fetches the schedules that are due and triggers each of them on the remote
API. Items are handled independently: one failing item never stops the
others.
"""

import logging
import time
from typing import Any, List

from jobpoller.domain.events.api_events import CycleCompleted
from jobpoller.domain.models.common import CycleName, CycleReport, ScheduleItem
from jobpoller.infrastructure.http.api_client import ApiClient
from jobpoller.infrastructure.http.errors import describe_failure
from jobpoller.infrastructure.resilience.api_retry import ApiRetryService, dispatch_event

logger = logging.getLogger(__name__)

SCHEDULING_CYCLE = CycleName("scheduling")
SCHEDULING_MAX_RETRIES = 2


class SchedulingService:
    """Triggers due schedules on the remote API."""

    def __init__(
        self,
        api_client: ApiClient,
        api_retry_service: ApiRetryService,
        batch_size: int,
        max_retries: int = SCHEDULING_MAX_RETRIES,
    ):
        self.api_client = api_client
        self.api_retry_service = api_retry_service
        self.batch_size = batch_size
        self.max_retries = max_retries

    async def fetch_due(self, limit: int) -> List[Any]:
        """Returns the raw due-schedule payloads (at most `limit`)."""
        response = await self.api_retry_service.execute_with_retry(
            self.api_client.get,
            "/scheduling/due",
            params={"limit": limit},
            max_retries=self.max_retries,
            endpoint_name="scheduling.due",
        )
        body = response.json()
        if not isinstance(body, list):
            raise ValueError(f"Expected a list of due schedules, got {type(body).__name__}")
        return body

    async def trigger(self, item: ScheduleItem) -> Any:
        response = await self.api_retry_service.execute_with_retry(
            self.api_client.post,
            "/scheduling/request",
            json=item.to_request_body(),
            max_retries=self.max_retries,
            endpoint_name="scheduling.request",
        )
        try:
            return response.json()
        except ValueError:
            return response.text

    async def run_once(self) -> CycleReport:
        """Runs one scheduling cycle. Failures are logged, never raised."""
        started = time.perf_counter()
        report = CycleReport(cycle=SCHEDULING_CYCLE)
        logger.info(f"Polling for due schedules (limit={self.batch_size})")
        try:
            due = await self.fetch_due(self.batch_size)
        except Exception as e:
            report.succeeded = False
            diagnostic = describe_failure(e)
            logger.error(f"Error fetching due schedules: {diagnostic}", exc_info=diagnostic["kind"] == "unknown")
            due = []

        if report.succeeded and not due:
            logger.info("No due schedules found")
        elif due:
            logger.info(f"Found {len(due)} due schedule(s)")

        for payload in due:
            await self._trigger_payload(payload, report)

        dispatch_event(CycleCompleted(
            cycle=SCHEDULING_CYCLE,
            succeeded=report.succeeded,
            duration_ms=(time.perf_counter() - started) * 1000,
            summary=report,
        ))
        return report

    async def _trigger_payload(self, payload: Any, report: CycleReport) -> None:
        try:
            item = ScheduleItem.from_payload(payload)
        except ValueError as e:
            report.failed += 1
            logger.error(f"Skipping malformed schedule item: {e}")
            return

        try:
            result = await self.trigger(item)
        except Exception as e:
            report.failed += 1
            logger.error(f"Failed to trigger schedule {item.id}: {describe_failure(e)}")
            return

        report.triggered += 1
        logger.info(f"Triggered schedule {item.id} (scheduledAt={item.next_run_at}): {result}")
