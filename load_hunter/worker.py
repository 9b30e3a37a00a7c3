"""
Matching worker: event consumer plus two periodic sweeps.

Usage (example):
    from load_hunter.worker import build_worker

    worker = build_worker(store, resolver)
    await worker.run(stop_event, events=listener.listen())

Every trigger (posting or hunt notification, forward timer, lifecycle timer)
funnels into ``reconcile``, which runs inside the tenant's lane. Tenants are
processed concurrently; within a tenant work is serialized.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import AsyncIterator, Awaitable, Callable, Dict, Iterable, List, Optional

from load_hunter.config import Settings, get_settings
from load_hunter.domain.errors import StoreUnavailableError
from load_hunter.domain.models import ChangeEvent, EventKind, Posting
from load_hunter.geo.resolver import LocationResolver
from load_hunter.infrastructure.store import MatchStore
from load_hunter.matching.canonical import TypeCanonicalizer
from load_hunter.matching.cursor import CursorController
from load_hunter.matching.forward import ForwardMatcher
from load_hunter.matching.lifecycle import LifecycleSweeper
from load_hunter.matching.predicate import MatchPredicate
from load_hunter.utils.logging import get_logger
from load_hunter.utils.profiler import profile_block

log = get_logger(__name__)


class TenantLanes:
    """One ``asyncio.Lock`` per tenant."""

    def __init__(self) -> None:
        self._locks: Dict[str, asyncio.Lock] = {}

    def lock(self, tenant_id: str) -> asyncio.Lock:
        lock = self._locks.get(tenant_id)
        if lock is None:
            lock = self._locks[tenant_id] = asyncio.Lock()
        return lock

    def __len__(self) -> int:
        return len(self._locks)


@dataclass
class ReconcileResult:
    tenant_id: str
    resumed: int = 0
    matched: int = 0
    missed: int = 0
    expired: int = 0


class MatchingWorker:
    """
    Drive the cursor controller, forward matcher and lifecycle sweeper.

    Only ``StoreUnavailableError`` escapes ``run``; any other failure in a
    tenant's tick is logged and retried on the next tick without affecting
    other tenants.
    """

    def __init__(
        self,
        store: MatchStore,
        predicate: MatchPredicate,
        settings: Optional[Settings] = None,
        lanes: Optional[TenantLanes] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.store = store
        self.predicate = predicate
        self.lanes = lanes or TenantLanes()
        self.cursor = CursorController(store, predicate, self.settings, clock=clock)
        self.forward = ForwardMatcher(store, predicate, self.settings, clock=clock)
        self.lifecycle = LifecycleSweeper(store, self.settings, clock=clock)

    async def reconcile(
        self,
        tenant_id: str,
        postings: Optional[Iterable[Posting]] = None,
        resume: bool = False,
        sweep_forward: bool = False,
        sweep_lifecycle: bool = False,
    ) -> ReconcileResult:
        """
        Bring one tenant up to date.

        Parameters
        ----------
        tenant_id : str
            Tenant whose lane the work runs in.
        postings : iterable[Posting] | None
            Specific postings to evaluate (event path).
        resume : bool
            Finish pending hunt activations first.
        sweep_forward : bool
            Walk every open posting above the live floors.
        sweep_lifecycle : bool
            Run missed detection and expiration.
        """
        result = ReconcileResult(tenant_id=tenant_id)
        async with self.lanes.lock(tenant_id):
            if resume:
                result.resumed = await self.cursor.resume_pending(tenant_id)
            if postings:
                result.matched += await self.forward.match_postings(tenant_id, postings)
            if sweep_forward:
                result.matched += await self.forward.sweep(tenant_id)
            if sweep_lifecycle:
                outcome = await self.lifecycle.sweep(tenant_id)
                result.missed = outcome.missed
                result.expired = outcome.expired
        return result

    async def handle_event(self, event: ChangeEvent) -> Optional[ReconcileResult]:
        if event.kind is EventKind.POSTING:
            posting = await self.store.get_posting(event.entity_id)
            if posting is None:
                log.warning("[EVENT] posting vanished", extra={"posting_id": event.entity_id})
                return None
            return await self.reconcile(event.tenant_id, postings=[posting])
        if event.kind is EventKind.HUNT:
            return await self.reconcile(event.tenant_id, resume=True)
        return None

    async def _guarded(self, label: str, tenant_id: str, work: Awaitable[ReconcileResult]) -> Optional[ReconcileResult]:
        try:
            return await work
        except StoreUnavailableError:
            raise
        except Exception:  # noqa: BLE001 - one tenant's failure must not stop the others
            log.exception(f"[SWEEP FAILED] {label}", extra={"tenant_id": tenant_id})
            return None

    async def _for_each_tenant(
        self, label: str, tenants: Iterable[str], **flags
    ) -> List[ReconcileResult]:
        results = await asyncio.gather(
            *(
                self._guarded(label, tenant_id, self.reconcile(tenant_id, **flags))
                for tenant_id in tenants
            )
        )
        return [result for result in results if result is not None]

    async def forward_tick(self) -> List[ReconcileResult]:
        return await self._for_each_tenant("forward", await self.store.list_tenants(), sweep_forward=True)

    async def lifecycle_tick(self) -> List[ReconcileResult]:
        # includes tenants whose hunts are all disabled
        tenants = await self.store.list_active_match_tenants()
        return await self._for_each_tenant("lifecycle", tenants, sweep_lifecycle=True)

    async def resume_all(self) -> List[ReconcileResult]:
        return await self._for_each_tenant("resume", await self.store.list_tenants(), resume=True)

    async def run_once(self) -> List[ReconcileResult]:
        """Resume activations, then one forward and one lifecycle pass for every tenant."""
        tenants = set(await self.store.list_tenants())
        tenants.update(await self.store.list_active_match_tenants())
        return await self._for_each_tenant(
            "once", sorted(tenants), resume=True, sweep_forward=True, sweep_lifecycle=True
        )

    async def _timer(
        self,
        label: str,
        interval: float,
        tick: Callable[[], Awaitable[List[ReconcileResult]]],
        stop: asyncio.Event,
    ) -> None:
        while not stop.is_set():
            with profile_block(label) as stats:
                results = await tick()
            log.info(
                f"[TICK] {label}",
                extra={
                    "tenants": len(results),
                    "matched": sum(result.matched for result in results),
                    "missed": sum(result.missed for result in results),
                    "expired": sum(result.expired for result in results),
                    **stats.as_log_extra(),
                },
            )
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval)
            except asyncio.TimeoutError:
                continue

    async def _consume(self, events: AsyncIterator[ChangeEvent]) -> None:
        async for event in events:
            await self._guarded(event.kind.value, event.tenant_id, self._event_result(event))

    async def _event_result(self, event: ChangeEvent) -> ReconcileResult:
        result = await self.handle_event(event)
        return result or ReconcileResult(tenant_id=event.tenant_id)

    async def run(
        self,
        stop_event: Optional[asyncio.Event] = None,
        events: Optional[AsyncIterator[ChangeEvent]] = None,
    ) -> None:
        """
        Run until ``stop_event`` is set or a fatal store error occurs.

        Raises
        ------
        StoreUnavailableError
            When persistence stays unreachable after retries.
        """
        stop = stop_event or asyncio.Event()
        log.info(
            "[WORKER START]",
            extra={
                "forward_sweep_seconds": self.settings.forward_sweep_seconds,
                "lifecycle_sweep_seconds": self.settings.lifecycle_sweep_seconds,
                "events": events is not None,
            },
        )
        await self.resume_all()

        tasks = [
            asyncio.create_task(
                self._timer("forward", self.settings.forward_sweep_seconds, self.forward_tick, stop)
            ),
            asyncio.create_task(
                self._timer("lifecycle", self.settings.lifecycle_sweep_seconds, self.lifecycle_tick, stop)
            ),
        ]
        if events is not None:
            tasks.append(asyncio.create_task(self._consume(events)))
        stopper = asyncio.create_task(stop.wait())

        try:
            done, _ = await asyncio.wait([*tasks, stopper], return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in [*tasks, stopper]:
                task.cancel()
            await asyncio.gather(*tasks, stopper, return_exceptions=True)

        for task in done:
            if task is not stopper and not task.cancelled() and task.exception() is not None:
                log.error("[WORKER STOPPED]", extra={"error": str(task.exception())})
                raise task.exception()
        log.info("[WORKER STOP]")


def build_worker(
    store: MatchStore,
    resolver: LocationResolver,
    settings: Optional[Settings] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> MatchingWorker:
    """Wire a worker with the configured vehicle-type canonicalizer."""
    settings = settings or get_settings()
    predicate = MatchPredicate(resolver, TypeCanonicalizer.from_settings(settings))
    return MatchingWorker(store, predicate, settings=settings, clock=clock)


__all__ = ["MatchingWorker", "ReconcileResult", "TenantLanes", "build_worker"]
