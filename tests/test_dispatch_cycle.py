import threading
from datetime import datetime
from zoneinfo import ZoneInfo

import pytest

from dispatch.models.domain import BatchStatus
from dispatch.services.dispatch import DispatchCycle, DispatchScheduler, consolidation_cutoff
from dispatch.services.routing import GeneticRouteOptimizer, OptimizerConfig, RouteService

MANILA = ZoneInfo("Asia/Manila")


def test_cycle_forms_merges_and_assigns(repository, clock, notifier, driver, make_order):
    repository.add_order(make_order("r1", 1000))
    repository.add_order(make_order("r2", 1000))
    repository.add_order(make_order("l1", 1600, locality="Lakeside", lat=8.475, lon=124.640))
    cycle = DispatchCycle(repository, clock=clock)

    report = cycle.run_once()

    assert len(report.formation.created_batches) == 2
    assert report.promoted == []
    assert report.merge.merged_batch_count == 1
    assert list(report.assignments.values()) == [driver.driver_id]
    (batch_id,) = report.assignments
    batch = repository.get_batch(batch_id)
    assert batch.locality == "Riverside + Lakeside"
    assert batch.status == BatchStatus.ASSIGNED
    assert report.errors == []


def test_cycle_submits_routes_for_new_assignments(repository, clock, driver, make_order, seed_batch):
    seed_batch(
        "Riverside",
        [make_order(f"o{index}", 600, lat=8.47 + index * 0.003, lon=124.63) for index in range(6)],
    )
    routes = RouteService(
        repository,
        GeneticRouteOptimizer(OptimizerConfig(population_size=20, max_generations=20, seed=1)),
        max_workers=1,
    )
    cycle = DispatchCycle(repository, route_service=routes, clock=clock)

    report = cycle.run_once()
    (batch_id,) = report.routes_submitted
    route = routes.submit(batch_id).result(timeout=30)
    routes.shutdown()

    assert sorted(route.sequence) == [f"o{index}" for index in range(6)]


def test_pending_batch_promoted_at_threshold(repository, clock, make_order, seed_batch):
    heavy = seed_batch("Riverside", [make_order("a", 2000), make_order("b", 1600)])
    light = seed_batch("Hilltop", [make_order("c", 500, locality="Hilltop", lat=8.6, lon=124.8)])

    promoted = DispatchCycle(repository, clock=clock).promote()

    assert promoted == [heavy.batch_id]
    assert repository.get_batch(heavy.batch_id).status == BatchStatus.READY_FOR_DELIVERY
    assert repository.get_batch(light.batch_id).status == BatchStatus.PENDING


def test_consolidation_cutoff_promotes_earlier_batches(repository, clock, make_order, seed_batch):
    morning = seed_batch("Riverside", [make_order("a", 300)])
    clock.advance(hours=10, minutes=30)  # 20:30
    late = seed_batch("Lakeside", [make_order("b", 300, locality="Lakeside")])

    promoted = DispatchCycle(repository, clock=clock).promote()

    assert promoted == [morning.batch_id]
    assert repository.get_batch(late.batch_id).status == BatchStatus.PENDING


def test_cutoff_belongs_to_service_day():
    early = datetime(2024, 5, 7, 7, 0, tzinfo=MANILA)
    evening = datetime(2024, 5, 7, 21, 0, tzinfo=MANILA)

    assert consolidation_cutoff(early) == datetime(2024, 5, 6, 20, 0, tzinfo=MANILA)
    assert consolidation_cutoff(evening) == datetime(2024, 5, 7, 20, 0, tzinfo=MANILA)


def test_failing_stage_does_not_stop_later_stages(repository, clock, driver, make_order, seed_batch, monkeypatch):
    batch = seed_batch("Riverside", [make_order("a", 3600)], status=BatchStatus.READY_FOR_DELIVERY)
    cycle = DispatchCycle(repository, clock=clock)

    def broken_merge(*args, **kwargs):
        raise RuntimeError("merge exploded")

    monkeypatch.setattr(cycle.merger, "merge_pass", broken_merge)
    report = cycle.run_once()

    assert report.errors == ["merge: merge exploded"]
    assert report.assignments == {batch.batch_id: driver.driver_id}


def test_scheduler_wakes_at_day_boundary(repository, clock):
    clock.now = datetime(2024, 5, 7, 7, 59, 50, tzinfo=MANILA)
    scheduler = DispatchScheduler(DispatchCycle(repository, clock=clock), interval_seconds=15)

    assert scheduler.seconds_until_next_run() == pytest.approx(10.0)

    clock.now = datetime(2024, 5, 7, 9, 0, tzinfo=MANILA)
    assert scheduler.seconds_until_next_run() == pytest.approx(15.0)


def test_scheduler_runs_on_trigger(repository, clock):
    class CountingCycle(DispatchCycle):
        def __init__(self, *args, **kwargs):
            super().__init__(*args, **kwargs)
            self.runs = 0
            self.ran = threading.Event()

        def run_once(self):
            report = super().run_once()
            self.runs += 1
            if self.runs >= 2:
                self.ran.set()
            return report

    cycle = CountingCycle(repository, clock=clock)
    scheduler = DispatchScheduler(cycle, interval_seconds=3600)
    scheduler.start()
    try:
        scheduler.trigger()
        assert cycle.ran.wait(timeout=5)
    finally:
        scheduler.stop()

    assert not scheduler.running
    assert scheduler.last_report is not None
