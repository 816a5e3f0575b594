"""Liveness reconciliation: probe outcomes -> persisted streaks -> index sync.

One cycle:

1. Load every root, dead ones included (a dead root has to be probed to notice
   it came back).
2. Probe them all through the ``LivenessChecker``.
3. Apply the ``LivenessPolicy`` to each root independently. A changed streak is
   saved; a failed save skips that root's index action for this cycle.
4. Crossing into Dead removes the root's links from the index; recovering from
   Dead re-adds them.
5. With ``track_link_liveness`` the links of roots that are alive after this
   cycle get the same treatment with their own streaks.

Entities are independent, so outcomes are applied in whatever order they were
collected. The store write and the index call for an entity run one after the
other, never concurrently.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import asdict, dataclass
import logging

from ..adapters.datastore import AbstractDatastore
from ..domain.liveness import IndexAction, LivenessPolicy, Transition
from ..domain.model import IndexEntry, Link, Outcome, Root
from ..errors import DatastoreError, LivenessCheckError
from ..observability.metrics import STREAK_TRANSITIONS
from ..observability.tracing import create_span
from .index_sync import IndexSync
from .liveness_checker import LivenessChecker


logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ReconcileReport:
    """Counters for one reconciliation cycle."""

    checked: int = 0
    reachable: int = 0
    unreachable: int = 0
    persisted: int = 0
    removals: int = 0
    readds: int = 0
    resyncs: int = 0
    persist_failures: int = 0
    index_failures: int = 0
    links_checked: int = 0
    links_removed: int = 0
    links_readded: int = 0
    aborted: bool = False

    def to_dict(self) -> dict:
        return asdict(self)


class ReconciliationEngine:
    """Apply hysteresis transitions and drive the index accordingly."""

    def __init__(
        self,
        datastore: AbstractDatastore,
        index_sync: IndexSync,
        policy: LivenessPolicy,
        *,
        checker: LivenessChecker | None = None,
        track_link_liveness: bool = False,
    ):
        self.datastore = datastore
        self.index_sync = index_sync
        self.policy = policy
        self.checker = checker
        self.track_link_liveness = track_link_liveness

    async def run_cycle(self) -> ReconcileReport:
        """Probe every root once and reconcile the results."""
        if self.checker is None:
            raise RuntimeError("run_cycle needs a LivenessChecker")

        report = ReconcileReport()
        with create_span("reconcile.cycle", attributes={"track_links": self.track_link_liveness}) as span:
            try:
                roots = [root async for root in self.datastore.list_roots(include_dead=True)]
            except DatastoreError:
                logger.error("Could not load roots; skipping reconciliation cycle", exc_info=True)
                report.aborted = True
                return report

            logger.info("Checking %d roots", len(roots))
            try:
                outcomes = await self.checker.check_all(roots)
            except LivenessCheckError:
                logger.error("Liveness check failed; no outcomes reconciled this cycle", exc_info=True)
                report.aborted = True
                return report

            alive_roots = await self.apply(outcomes, report=report)

            if self.track_link_liveness and alive_roots:
                await self.reconcile_links(alive_roots, report=report)

            span.set_attribute("roots.checked", report.checked)
            span.set_attribute("roots.removed", report.removals)
            span.set_attribute("roots.readded", report.readds)

        logger.info(
            "Reconciliation finished: %d checked, %d removed, %d re-added, %d persist failures",
            report.checked,
            report.removals,
            report.readds,
            report.persist_failures,
        )
        return report

    async def apply(
        self,
        outcomes: Sequence[tuple[Root, Outcome]],
        *,
        report: ReconcileReport | None = None,
    ) -> list[Root]:
        """Reconcile root outcomes; returns the roots that were reachable this cycle."""
        report = report if report is not None else ReconcileReport()
        reachable_roots: list[Root] = []
        for root, outcome in outcomes:
            report.checked += 1
            if outcome is Outcome.REACHABLE:
                report.reachable += 1
            else:
                report.unreachable += 1

            transition = await self._apply_root(root, outcome, report)
            if transition is not None and outcome is Outcome.REACHABLE:
                reachable_roots.append(root)
        return reachable_roots

    async def _apply_root(self, root: Root, outcome: Outcome, report: ReconcileReport) -> Transition | None:
        transition = self.policy.apply(root.unreachable_streak, outcome)

        if transition.changed:
            root.unreachable_streak = transition.streak
            try:
                await self.datastore.save_root(root)
            except DatastoreError as exc:
                logger.warning("Failed to save streak for %s: %s", root.url, exc, exc_info=True)
                report.persist_failures += 1
                root.unreachable_streak = transition.previous
                return None
            report.persisted += 1

        if transition.action is IndexAction.NONE:
            return transition

        STREAK_TRANSITIONS.labels(entity="root", action=transition.action.value).inc()
        try:
            if transition.action is IndexAction.REMOVE:
                if transition.resync:
                    logger.info("Re-syncing removal of dead root %s (streak %d)", root.url, transition.streak)
                    report.resyncs += 1
                else:
                    logger.info("Root %s is dead after %d failed checks", root.url, transition.streak)
                    report.removals += 1
                bulk = await self.index_sync.remove_root_links(self.datastore, root.url)
            else:
                logger.info("Root %s is reachable again", root.url)
                report.readds += 1
                link_policy = self.policy if self.track_link_liveness else None
                bulk = await self.index_sync.readd_root_links(self.datastore, root.url, policy=link_policy)
        except DatastoreError as exc:
            logger.warning("Could not list links of %s for index sync: %s", root.url, exc)
            report.index_failures += 1
            return transition

        if not bulk.succeeded:
            report.index_failures += len(bulk.failed_chunks)
        return transition

    async def reconcile_links(self, roots: Sequence[Root], *, report: ReconcileReport | None = None) -> None:
        """Per-link hysteresis for links under ``roots``, which must be alive."""
        if self.checker is None:
            raise RuntimeError("reconcile_links needs a LivenessChecker")
        report = report if report is not None else ReconcileReport()

        for root in roots:
            if self.policy.is_dead(root.unreachable_streak):
                continue
            try:
                links = [link async for link in self.datastore.list_links(root.url)]
            except DatastoreError as exc:
                logger.warning("Could not list links of %s: %s", root.url, exc)
                continue
            if not links:
                continue

            try:
                outcomes = await self.checker.check_all(links)
            except LivenessCheckError:
                logger.error("Link check for %s failed; skipping its links this cycle", root.url, exc_info=True)
                continue
            await self.apply_links(outcomes, report=report)

    async def apply_links(
        self,
        outcomes: Sequence[tuple[Link, Outcome]],
        *,
        report: ReconcileReport | None = None,
    ) -> ReconcileReport:
        report = report if report is not None else ReconcileReport()
        to_remove: list[str] = []
        to_add: list[IndexEntry] = []

        for link, outcome in outcomes:
            report.links_checked += 1
            transition = self.policy.apply(link.unreachable_streak, outcome)
            if transition.changed:
                previous = link.unreachable_streak
                link.unreachable_streak = transition.streak
                try:
                    await self.datastore.save_link(link)
                except DatastoreError as exc:
                    logger.warning("Failed to save streak for link %s: %s", link.url, exc)
                    report.persist_failures += 1
                    link.unreachable_streak = previous
                    continue
                report.persisted += 1

            if transition.action is IndexAction.REMOVE and link.id is not None:
                to_remove.append(link.id)
            elif transition.action is IndexAction.READD and link.id is not None:
                to_add.append(IndexEntry.from_link(link))
            if transition.action is not IndexAction.NONE:
                STREAK_TRANSITIONS.labels(entity="link", action=transition.action.value).inc()

        if to_remove:
            bulk = await self.index_sync.remove_bulk(to_remove)
            report.links_removed += len(to_remove)
            report.index_failures += len(bulk.failed_chunks)
        if to_add:
            bulk = await self.index_sync.add_bulk(to_add)
            report.links_readded += len(to_add)
            report.index_failures += len(bulk.failed_chunks)
        return report
