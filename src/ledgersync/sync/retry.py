"""
RetryDispatcher — asks the provider-side sync functions to pick up failed
or pending work again.

Each entity type with a retry endpoint gets one authenticated POST with
an empty JSON body. A 2xx means the request was accepted, not that any
entity finished syncing. A failure for one type is logged and recorded
and the remaining types are still attempted.

Completion is observed through the SyncRecord table rather than guessed
from a fixed delay: retry_and_wait() notes which entities were errored or
in flight before dispatch, then polls until each errored one has a newer
terminal attempt and none is in flight, or gives up after a timeout.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import httpx

from ledgersync.config import get_settings
from ledgersync.sync.bulk import ALL_ENTITY_TYPES
from ledgersync.sync.statistics import SyncSummary, summarize
from ledgersync.sync.store import SyncRecordStore

logger = logging.getLogger(__name__)

# entity type → remote retry function name
RETRY_ENDPOINTS: Dict[str, str] = {
    "vendor": "sync-vendor",
    "bill": "sync-bill",
    "invoice": "sync-invoice",
    "payment": "sync-payment",
}


class SyncDispatchError(RuntimeError):
    """Raised when a retry endpoint rejects the request or cannot be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class DispatchResult:
    entity_type: str
    dispatched: bool
    status_code: Optional[int] = None
    error: Optional[str] = None

    def as_dict(self) -> dict:
        out = {"entityType": self.entity_type, "dispatched": self.dispatched}
        if self.status_code is not None:
            out["statusCode"] = self.status_code
        if self.error is not None:
            out["error"] = self.error
        return out


@dataclass
class RetryOutcome:
    results: List[DispatchResult] = field(default_factory=list)
    settled: bool = False
    summary: Optional[SyncSummary] = None


class RetryDispatcher:
    """Fires provider retry triggers for one or all entity types."""

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        *,
        store: Optional[SyncRecordStore] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: Optional[float] = None,
    ):
        """
        Args:
            base_url: Root URL of the provider functions; endpoint names are appended.
            token: Bearer credential sent with every call.
            store: SyncRecordStore used by retry_and_wait() to observe completion.
            transport: Optional httpx transport (tests pass httpx.MockTransport).
            timeout: Per-request timeout in seconds.
        """
        settings = get_settings()
        self.base_url = (base_url or settings.functions_base_url).rstrip("/")
        self.token = token if token is not None else settings.service_role_key
        self.store = store
        self._transport = transport
        self._timeout = timeout if timeout is not None else settings.http_timeout_seconds

    def entity_types_in_scope(self, entity_type: Optional[str] = None) -> List[str]:
        if entity_type is None or entity_type == ALL_ENTITY_TYPES:
            return list(RETRY_ENDPOINTS)
        return [entity_type]

    async def retry_failed_syncs(self, entity_type: Optional[str] = None) -> List[DispatchResult]:
        """
        Dispatch retry triggers sequentially.

        Args:
            entity_type: A single entity type, or None for every type with an endpoint.

        Returns:
            One DispatchResult per entity type in scope, in dispatch order.
        """
        results: List[DispatchResult] = []
        async with httpx.AsyncClient(
            transport=self._transport, timeout=self._timeout
        ) as client:
            for entity in self.entity_types_in_scope(entity_type):
                endpoint = RETRY_ENDPOINTS.get(entity)
                if endpoint is None:
                    logger.warning("No retry endpoint for entity type %s", entity)
                    results.append(DispatchResult(entity, False, error="no retry endpoint"))
                    continue
                try:
                    status_code = await self._dispatch(client, entity, endpoint)
                    results.append(DispatchResult(entity, True, status_code=status_code))
                except SyncDispatchError as exc:
                    logger.error("Failed to retry %s syncs: %s", entity, exc)
                    results.append(DispatchResult(
                        entity, False, status_code=exc.status_code, error=str(exc)
                    ))

        dispatched = sum(1 for r in results if r.dispatched)
        logger.info("Sync retry dispatched for %d of %d entity type(s)", dispatched, len(results))
        return results

    async def _dispatch(self, client: httpx.AsyncClient, entity: str, endpoint: str) -> int:
        url = f"{self.base_url}/{endpoint}"
        try:
            response = await client.post(
                url,
                json={},
                headers={"Authorization": f"Bearer {self.token}"},
            )
        except httpx.RequestError as exc:
            raise SyncDispatchError(f"{entity}: network error: {exc}") from exc

        if not response.is_success:
            raise SyncDispatchError(
                f"{entity}: HTTP {response.status_code}: {response.text[:200]}",
                status_code=response.status_code,
            )
        return response.status_code

    async def retry_and_wait(
        self,
        company_id: str,
        entity_type: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
    ) -> RetryOutcome:
        """
        Dispatch retries, then poll SyncRecords until the retried work settles.

        Errored and in-flight entities are captured before dispatch. The
        outcome is settled once each errored entity has a newer terminal
        attempt and nothing is left pending or processing.

        Returns:
            RetryOutcome with the dispatch results, whether the retried work
            finished in time, and fresh statistics.
        """
        if self.store is None:
            raise ValueError("retry_and_wait() needs a SyncRecordStore")
        settings = get_settings()
        scope = [e for e in self.entity_types_in_scope(entity_type) if e in RETRY_ENDPOINTS]
        baseline = self.store.unfinished(company_id, scope)
        outcome = RetryOutcome(results=await self.retry_failed_syncs(entity_type))

        dispatched = [r.entity_type for r in outcome.results if r.dispatched]
        if dispatched:
            outcome.settled = await self.store.wait_until_settled(
                company_id,
                dispatched,
                baseline={k: r for k, r in baseline.items() if r.entity_type in dispatched},
                timeout=timeout if timeout is not None else settings.retry_settle_timeout_seconds,
                poll_interval=(
                    poll_interval if poll_interval is not None
                    else settings.retry_poll_interval_seconds
                ),
            )
        outcome.summary = summarize(self.store.snapshot(company_id))
        return outcome
