"""Geographic consolidation of open batches.

Nearby batches are unioned into the heaviest batch of their neighbourhood so
that one trip covers several localities. A merge pass is deterministic for a
given input: seeds are taken heaviest first and neighbours are absorbed
closest first. Absorbed batches are kept as ``merged`` tombstones and are never
considered again.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

from ...config import settings
from ...models.domain import OPEN_BATCH_STATES, Batch, BatchStatus, Order, live_weight
from ...persistence.repository import DispatchRepository, PersistenceError
from ..geospatial import centroid, haversine_km

logger = logging.getLogger(__name__)

MERGE_SEPARATOR = " + "
TOMBSTONE_PREFIX = "MERGED:"


def has_merge_marker(label: Optional[str]) -> bool:
    text = label or ""
    return MERGE_SEPARATOR in text or text.startswith(TOMBSTONE_PREFIX)


def tombstone_label(old_label: str, new_label: str) -> str:
    return f"{TOMBSTONE_PREFIX} {old_label} → {new_label}"


@dataclass(slots=True)
class MergeCandidate:
    batch: Batch
    orders: list[Order]
    weight_kg: float
    center: Optional[tuple[float, float]]


@dataclass(slots=True)
class Absorption:
    batch_id: str
    locality: str
    weight_kg: float
    distance_km: float


@dataclass(slots=True)
class MergeGroup:
    seed_batch_id: str
    label: str
    weight_kg: float
    absorbed: list[Absorption] = field(default_factory=list)


@dataclass(slots=True)
class MergePlan:
    groups: list[MergeGroup] = field(default_factory=list)
    tombstoned: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)

    @property
    def merged_batch_count(self) -> int:
        return sum(len(group.absorbed) for group in self.groups)


class BatchMerger:
    def __init__(
        self,
        repository: DispatchRepository,
        *,
        capacity_kg: float | None = None,
        radius_km: float | None = None,
    ) -> None:
        self.repository = repository
        self.capacity_kg = capacity_kg if capacity_kg is not None else settings.batch_capacity_kg
        self.radius_km = radius_km if radius_km is not None else settings.merge_radius_km

    def merge_pass(self, candidates: Sequence[Batch] | None = None) -> MergePlan:
        """Run one greedy merge pass over the open batches."""

        plan = MergePlan()
        batches = list(candidates) if candidates is not None else self.repository.list_batches(OPEN_BATCH_STATES)

        eligible: list[MergeCandidate] = []
        for batch in batches:
            if batch.status not in OPEN_BATCH_STATES:
                continue
            orders = self.repository.list_batch_orders(batch.batch_id)
            if has_merge_marker(batch.locality):
                if not orders:
                    self._tombstone_corrupted(batch, plan)
                continue
            weight = live_weight(orders)
            if not orders or weight <= 0:
                continue
            points = [(order.latitude, order.longitude) for order in orders if order.is_geocoded]
            center = centroid(points)
            if center is None:
                logger.warning(f"Batch {batch.batch_id} has no geocoded orders; excluded from merging")
                continue
            eligible.append(MergeCandidate(batch=batch, orders=orders, weight_kg=weight, center=center))

        eligible.sort(key=lambda item: (-item.weight_kg, item.batch.created_at, item.batch.batch_id))
        processed: set[str] = set()

        for seed in eligible:
            if seed.batch.batch_id in processed:
                continue
            processed.add(seed.batch.batch_id)

            nearby: list[tuple[float, MergeCandidate]] = []
            for other in eligible:
                if other.batch.batch_id in processed:
                    continue
                distance = haversine_km(seed.center[0], seed.center[1], other.center[0], other.center[1])
                if distance <= self.radius_km:
                    nearby.append((distance, other))
            if not nearby:
                continue
            nearby.sort(key=lambda pair: (pair[0], pair[1].batch.batch_id))

            group = self._absorb(seed, nearby, processed, plan)
            if group is not None:
                plan.groups.append(group)

        if plan.groups:
            logger.info(
                f"Merge pass combined {plan.merged_batch_count} batches into {len(plan.groups)} groups"
            )
        return plan

    def _absorb(
        self,
        seed: MergeCandidate,
        nearby: list[tuple[float, MergeCandidate]],
        processed: set[str],
        plan: MergePlan,
    ) -> Optional[MergeGroup]:
        seed_id = seed.batch.batch_id
        cumulative = seed.weight_kg
        absorbed: list[tuple[float, MergeCandidate]] = []

        for distance, other in nearby:
            if cumulative + other.weight_kg > self.capacity_kg:
                continue
            moved_kg = 0.0
            try:
                for order in other.orders:
                    self.repository.update_order(order.order_id, batch_id=seed_id)
                    moved_kg += order.weight_kg
            except PersistenceError as exc:
                logger.error(f"Skipping merge of batch {other.batch.batch_id} into {seed_id}: {exc}")
                plan.failed.append(other.batch.batch_id)
                processed.add(other.batch.batch_id)
                # Orders moved before the failure now count against the seed.
                cumulative += moved_kg
                continue
            cumulative += other.weight_kg
            absorbed.append((distance, other))
            processed.add(other.batch.batch_id)

        if not absorbed:
            if cumulative > seed.weight_kg:
                self._refresh_seed(seed_id, None, plan)
            return None

        labels: list[str] = []
        for label in [seed.batch.locality, *(other.batch.locality for _, other in absorbed)]:
            if label not in labels:
                labels.append(label)
        new_label = MERGE_SEPARATOR.join(labels)

        group = MergeGroup(seed_batch_id=seed_id, label=new_label, weight_kg=0.0)
        for distance, other in absorbed:
            try:
                self.repository.update_batch(
                    other.batch.batch_id,
                    status=BatchStatus.MERGED,
                    total_weight_kg=0.0,
                    locality=tombstone_label(other.batch.locality, new_label),
                )
            except PersistenceError as exc:
                logger.error(f"Could not tombstone batch {other.batch.batch_id} after merge: {exc}")
                plan.failed.append(other.batch.batch_id)
            group.absorbed.append(
                Absorption(
                    batch_id=other.batch.batch_id,
                    locality=other.batch.locality,
                    weight_kg=other.weight_kg,
                    distance_km=distance,
                )
            )
            logger.info(
                f"Merged batch {other.batch.batch_id} '{other.batch.locality}' into {seed_id} "
                f"({distance:.2f}km apart)"
            )

        group.weight_kg = self._refresh_seed(seed_id, new_label, plan)
        return group

    def _refresh_seed(self, seed_id: str, label: Optional[str], plan: MergePlan) -> float:
        weight = live_weight(self.repository.list_batch_orders(seed_id))
        try:
            self.repository.update_batch(seed_id, total_weight_kg=weight, locality=label)
        except PersistenceError as exc:
            logger.error(f"Could not update merged batch {seed_id}: {exc}")
            plan.failed.append(seed_id)
        return weight

    def _tombstone_corrupted(self, batch: Batch, plan: MergePlan) -> None:
        logger.warning(f"Batch {batch.batch_id} '{batch.locality}' is merge-labelled but empty; tombstoning")
        try:
            self.repository.update_batch(
                batch.batch_id,
                status=BatchStatus.MERGED,
                total_weight_kg=0.0,
                locality=batch.locality if batch.locality.startswith(TOMBSTONE_PREFIX)
                else f"{TOMBSTONE_PREFIX} {batch.locality}",
            )
        except PersistenceError as exc:
            logger.error(f"Could not tombstone corrupted batch {batch.batch_id}: {exc}")
            plan.failed.append(batch.batch_id)
            return
        plan.tombstoned.append(batch.batch_id)
