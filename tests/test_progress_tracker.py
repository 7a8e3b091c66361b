import threading

import pytest

from dispatch.models.domain import BatchStatus, DeliveryStatus
from dispatch.services.batching import cancel_batch
from dispatch.services.notifications import BATCH_DELIVERED, Notifier
from dispatch.services.progress import DeliveryPermissionError, DeliveryProgressTracker
from dispatch.services.routing.models import Route

STOPS = ["s1", "s2", "s3", "s4", "s5"]


def _route(sequence, unrouted=()):
    return Route(
        sequence=list(sequence),
        unrouted_stop_ids=list(unrouted),
        total_distance_km=12.0,
        estimated_duration_hours=2.0,
        optimization_score=80.0,
        fitness=60.0,
        fuel_cost_estimate=72.0,
    )


@pytest.fixture
def assigned_batch(seed_batch, make_order, driver):
    orders = [make_order(stop_id, 700) for stop_id in STOPS]
    return seed_batch("Riverside", orders, status=BatchStatus.ASSIGNED, driver_id=driver.driver_id)


def test_next_stop_is_first_uncompleted_in_planned_order(repository, notifier, driver, assigned_batch):
    tracker = DeliveryProgressTracker(repository, notifier)
    route = _route(STOPS)
    batch_id = assigned_batch.batch_id

    assert tracker.complete_stop(batch_id, route, "s1", driver.driver_id).next_stop_id == "s2"
    result = tracker.complete_stop(batch_id, route, "s3", driver.driver_id)
    assert result.next_stop_id == "s2"
    assert tracker.complete_stop(batch_id, route, "s2", driver.driver_id).next_stop_id == "s4"
    result = tracker.complete_stop(batch_id, route, "s4", driver.driver_id)
    assert result.next_stop_id == "s5"
    assert result.completed_count == 4
    assert result.batch_status == BatchStatus.DELIVERING


def test_route_order_not_insertion_order(repository, notifier, driver, assigned_batch):
    tracker = DeliveryProgressTracker(repository, notifier)
    route = _route(["s4", "s2", "s5", "s1", "s3"])

    result = tracker.complete_stop(assigned_batch.batch_id, route, "s4", driver.driver_id)

    assert result.next_stop_id == "s2"


def test_first_completion_moves_batch_to_delivering(repository, notifier, driver, assigned_batch):
    tracker = DeliveryProgressTracker(repository, notifier)
    tracker.complete_stop(assigned_batch.batch_id, _route(STOPS), "s1", driver.driver_id)

    assert repository.get_batch(assigned_batch.batch_id).status == BatchStatus.DELIVERING
    assert repository.get_order("s1").delivery_status == DeliveryStatus.DELIVERED


def test_batch_delivered_exactly_once(repository, notifier, driver, assigned_batch):
    tracker = DeliveryProgressTracker(repository, notifier)
    route = _route(STOPS)
    batch_id = assigned_batch.batch_id

    results = [tracker.complete_stop(batch_id, route, stop_id, driver.driver_id) for stop_id in reversed(STOPS)]
    retry = tracker.complete_stop(batch_id, route, "s1", driver.driver_id)

    assert [result.batch_completed for result in results] == [False, False, False, False, True]
    assert results[-1].next_stop_id is None
    assert retry.already_completed
    assert not retry.batch_completed
    assert repository.get_batch(batch_id).status == BatchStatus.DELIVERED
    assert [event for event, _ in notifier.events] == [BATCH_DELIVERED]


def test_completing_twice_is_idempotent(repository, notifier, driver, assigned_batch):
    tracker = DeliveryProgressTracker(repository, notifier)
    route = _route(STOPS)

    first = tracker.complete_stop(assigned_batch.batch_id, route, "s2", driver.driver_id)
    second = tracker.complete_stop(assigned_batch.batch_id, route, "s2", driver.driver_id)

    assert not first.already_completed
    assert second.already_completed
    assert first.completed_count == second.completed_count == 1
    assert first.next_stop_id == second.next_stop_id == "s1"


def test_concurrent_completions_finalize_once(repository, notifier, driver, assigned_batch):
    tracker = DeliveryProgressTracker(repository, notifier)
    route = _route(STOPS)
    barrier = threading.Barrier(len(STOPS) * 2)

    def tap(stop_id):
        barrier.wait()
        tracker.complete_stop(assigned_batch.batch_id, route, stop_id, driver.driver_id)

    threads = [threading.Thread(target=tap, args=(stop_id,)) for stop_id in STOPS * 2]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert repository.get_batch(assigned_batch.batch_id).status == BatchStatus.DELIVERED
    assert len(notifier.events) == 1


def test_other_driver_is_rejected(repository, notifier, assigned_batch):
    tracker = DeliveryProgressTracker(repository, notifier)

    with pytest.raises(DeliveryPermissionError):
        tracker.complete_stop(assigned_batch.batch_id, _route(STOPS), "s1", "intruder")
    with pytest.raises(PermissionError):
        tracker.complete_stop(assigned_batch.batch_id, _route(STOPS), "s1", "intruder")
    assert repository.get_order("s1").delivery_status == DeliveryStatus.PENDING


def test_unknown_stop_is_rejected(repository, notifier, driver, assigned_batch):
    tracker = DeliveryProgressTracker(repository, notifier)

    with pytest.raises(ValueError):
        tracker.complete_stop(assigned_batch.batch_id, _route(STOPS), "nope", driver.driver_id)


def test_unrouted_stops_come_last(repository, notifier, driver, assigned_batch):
    tracker = DeliveryProgressTracker(repository, notifier)
    route = _route(["s2", "s3", "s4", "s5"], unrouted=["s1"])
    for stop_id in ["s2", "s3", "s4"]:
        tracker.complete_stop(assigned_batch.batch_id, route, stop_id, driver.driver_id)

    progress = tracker.progress(assigned_batch.batch_id, route)

    assert progress.next_stop_id == "s5"
    assert progress.remaining_stop_ids == ["s5", "s1"]
    assert progress.percent_complete == pytest.approx(60.0)


def test_delivery_notification_failure_is_ignored(repository, driver, assigned_batch):
    class BrokenNotifier(Notifier):
        def publish(self, event, payload):
            raise RuntimeError("redirect failed")

    tracker = DeliveryProgressTracker(repository, BrokenNotifier())
    route = _route(STOPS)
    for stop_id in STOPS:
        result = tracker.complete_stop(assigned_batch.batch_id, route, stop_id, driver.driver_id)

    assert result.batch_completed
    assert repository.get_batch(assigned_batch.batch_id).status == BatchStatus.DELIVERED


def test_retry_on_cancelled_batch_is_a_no_op(repository, notifier, driver, assigned_batch):
    tracker = DeliveryProgressTracker(repository, notifier)
    route = _route(STOPS)
    batch_id = assigned_batch.batch_id
    tracker.complete_stop(batch_id, route, "s1", driver.driver_id)
    cancel_batch(repository, batch_id)

    retry = tracker.complete_stop(batch_id, route, "s1", driver.driver_id)

    assert retry.already_completed
    assert not retry.batch_completed
    assert retry.next_stop_id is None
    assert retry.batch_status == BatchStatus.CANCELLED
    assert repository.get_batch(batch_id).status == BatchStatus.CANCELLED
    assert notifier.events == []


def test_authorize_and_forget(repository, notifier, driver, assigned_batch):
    tracker = DeliveryProgressTracker(repository, notifier)
    batch_id = assigned_batch.batch_id

    assert tracker.authorize(batch_id, driver.driver_id).batch_id == batch_id
    with pytest.raises(DeliveryPermissionError):
        tracker.authorize(batch_id, "intruder")
    with pytest.raises(LookupError):
        tracker.authorize("missing", driver.driver_id)

    tracker.complete_stop(batch_id, _route(STOPS), "s1", driver.driver_id)
    assert tracker.tracked_batch_ids() == [batch_id]
    tracker.forget(batch_id)
    assert tracker.tracked_batch_ids() == []
