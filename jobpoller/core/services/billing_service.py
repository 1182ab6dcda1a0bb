"""Core service for the billing cycle.

Asks the remote API to process pending billing events. The poller only
triggers the processing; the API does the actual work. Two modes exist:

- batch: one `POST /billing/process-pending` call with a batch limit.
- per-execution: list `GET /billing/pending`, then send one
  `POST /billing/usage-event` per execution.
"""

import logging
import time
from typing import Any, List

from jobpoller.domain.events.api_events import CycleCompleted
from jobpoller.domain.models.common import CycleName, CycleReport, PendingExecution
from jobpoller.infrastructure.http.api_client import ApiClient
from jobpoller.infrastructure.http.errors import describe_failure
from jobpoller.infrastructure.resilience.api_retry import ApiRetryService, dispatch_event

logger = logging.getLogger(__name__)

BILLING_CYCLE = CycleName("billing")
BILLING_MAX_RETRIES = 3


def _response_payload(response: Any) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class BillingService:
    """Triggers billing processing on the remote API."""

    def __init__(
        self,
        api_client: ApiClient,
        api_retry_service: ApiRetryService,
        batch_size: int,
        mode: str = "batch",
        max_retries: int = BILLING_MAX_RETRIES,
    ):
        """Initializes the BillingService with its dependencies."""
        self.api_client = api_client
        self.api_retry_service = api_retry_service
        self.batch_size = batch_size
        self.mode = mode
        self.max_retries = max_retries

    async def process_pending(self, limit: int) -> Any:
        """Requests processing of up to `limit` pending billing events.

        Returns the decoded response body. Raises the last error once the
        retries are exhausted.
        """
        response = await self.api_retry_service.execute_with_retry(
            self.api_client.post,
            "/billing/process-pending",
            json={"limit": limit},
            max_retries=self.max_retries,
            endpoint_name="billing.process_pending",
        )
        return _response_payload(response)

    async def fetch_pending(self, limit: int) -> List[Any]:
        """Returns the raw pending-execution payloads (at most `limit`)."""
        response = await self.api_retry_service.execute_with_retry(
            self.api_client.get,
            "/billing/pending",
            params={"limit": limit},
            max_retries=self.max_retries,
            endpoint_name="billing.pending",
        )
        body = response.json()
        items = body.get("data") if isinstance(body, dict) else None
        if items is None:
            return []
        if not isinstance(items, list):
            raise ValueError(f"Expected a list of pending executions, got {type(items).__name__}")
        return items

    async def send_usage_event(self, execution: PendingExecution) -> Any:
        response = await self.api_retry_service.execute_with_retry(
            self.api_client.post,
            "/billing/usage-event",
            json={"testExecutionId": execution.id},
            max_retries=self.max_retries,
            endpoint_name="billing.usage_event",
        )
        return _response_payload(response)

    async def run_once(self) -> CycleReport:
        """Runs one billing cycle. Failures are logged, never raised."""
        started = time.perf_counter()
        report = CycleReport(cycle=BILLING_CYCLE)
        logger.info(f"Polling for pending billing events (limit={self.batch_size}, mode={self.mode})")
        try:
            if self.mode == "per-execution":
                await self._run_per_execution(report)
            else:
                result = await self.process_pending(self.batch_size)
                report.triggered = 1
                logger.info(f"Billing processing response: {result}")
        except Exception as e:
            report.succeeded = False
            diagnostic = describe_failure(e)
            logger.error(f"Error during billing run: {diagnostic}", exc_info=diagnostic["kind"] == "unknown")

        dispatch_event(CycleCompleted(
            cycle=BILLING_CYCLE,
            succeeded=report.succeeded,
            duration_ms=(time.perf_counter() - started) * 1000,
            summary=report,
        ))
        return report

    async def _run_per_execution(self, report: CycleReport) -> None:
        pending = await self.fetch_pending(self.batch_size)
        if not pending:
            logger.info("No pending billing events found")
            return

        logger.info(f"Found {len(pending)} pending execution(s)")
        for payload in pending:
            await self._send_payload(payload, report)

    async def _send_payload(self, payload: Any, report: CycleReport) -> None:
        try:
            execution = PendingExecution.from_payload(payload)
        except ValueError as e:
            report.failed += 1
            logger.error(f"Skipping malformed pending execution: {e}")
            return

        try:
            await self.send_usage_event(execution)
        except Exception as e:
            report.failed += 1
            logger.error(f"Failed to send billing event for {execution.id}: {describe_failure(e)}")
            return

        report.triggered += 1
        logger.info(f"Billing event sent for execution {execution.id}")
