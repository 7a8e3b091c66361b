import pytest

from dispatch.models.domain import BatchStatus, live_weight
from dispatch.persistence.repository import PersistenceError
from dispatch.services.batching import BatchMerger
from dispatch.services.batching.merger import has_merge_marker
from dispatch.services.geospatial import haversine_km


def _weight(repository, batch_id):
    return live_weight(repository.list_batch_orders(batch_id))


def test_two_close_batches_merge_into_heavier(repository, make_order, seed_batch):
    riverside = seed_batch("Riverside", [make_order("r1", 1200), make_order("r2", 800)])
    lakeside = seed_batch(
        "Lakeside", [make_order("l1", 1400, locality="Lakeside", lat=8.475, lon=124.640)]
    )

    plan = BatchMerger(repository).merge_pass()

    assert len(plan.groups) == 1
    group = plan.groups[0]
    assert group.seed_batch_id == riverside.batch_id
    assert group.label == "Riverside + Lakeside"
    assert group.weight_kg == pytest.approx(3400)

    seed = repository.get_batch(riverside.batch_id)
    assert seed.locality == "Riverside + Lakeside"
    assert seed.total_weight_kg == pytest.approx(3400)
    assert sorted(seed.order_ids) == ["l1", "r1", "r2"]

    tombstone = repository.get_batch(lakeside.batch_id)
    assert tombstone.status == BatchStatus.MERGED
    assert tombstone.total_weight_kg == 0
    assert tombstone.order_ids == []
    assert tombstone.locality == "MERGED: Lakeside → Riverside + Lakeside"


def test_distant_batches_are_not_merged(repository, make_order, seed_batch):
    seed_batch("Riverside", [make_order("r1", 1000)])
    seed_batch("Uptown", [make_order("u1", 1000, locality="Uptown", lat=8.62, lon=124.63)])

    plan = BatchMerger(repository).merge_pass()

    assert plan.groups == []
    assert all(batch.status == BatchStatus.PENDING for batch in repository.list_batches())


def test_every_merge_respects_radius_and_ceiling(repository, make_order, seed_batch):
    coordinates = [(8.480, 124.630), (8.482, 124.633), (8.470, 124.628), (8.500, 124.650), (8.530, 124.700)]
    for index, (lat, lon) in enumerate(coordinates):
        seed_batch(f"L{index}", [make_order(f"o{index}", 900 + 300 * index, locality=f"L{index}", lat=lat, lon=lon)])

    merger = BatchMerger(repository)
    centers = {
        batch.batch_id: (coordinates[index][0], coordinates[index][1])
        for index, batch in enumerate(sorted(repository.list_batches(), key=lambda b: b.locality))
    }
    plan = merger.merge_pass()

    assert plan.groups
    for group in plan.groups:
        seed_center = centers[group.seed_batch_id]
        for absorbed in group.absorbed:
            other = centers[absorbed.batch_id]
            assert haversine_km(*seed_center, *other) <= 5.0
        assert _weight(repository, group.seed_batch_id) <= 5000.0


def test_overflowing_candidate_skipped_for_later_fitting_one(repository, make_order, seed_batch):
    seed = seed_batch("Center", [make_order("s", 3000, locality="Center", lat=8.480, lon=124.630)])
    big = seed_batch("Near", [make_order("n", 2500, locality="Near", lat=8.481, lon=124.630)])
    small = seed_batch("Far", [make_order("f", 1500, locality="Far", lat=8.495, lon=124.630)])

    plan = BatchMerger(repository).merge_pass()

    absorbed = {item.batch_id for group in plan.groups for item in group.absorbed}
    assert small.batch_id in absorbed
    assert big.batch_id not in absorbed
    assert _weight(repository, seed.batch_id) == pytest.approx(4500)
    assert repository.get_batch(big.batch_id).status == BatchStatus.PENDING


def test_absorption_follows_distance_order(repository, make_order, seed_batch):
    seed = seed_batch("Center", [make_order("s", 3000, locality="Center", lat=8.480, lon=124.630)])
    seed_batch("Farther", [make_order("a", 1000, locality="Farther", lat=8.500, lon=124.630)])
    seed_batch("Closer", [make_order("b", 1000, locality="Closer", lat=8.485, lon=124.630)])

    plan = BatchMerger(repository).merge_pass()

    assert [item.locality for item in plan.groups[0].absorbed] == ["Closer", "Farther"]
    assert repository.get_batch(seed.batch_id).locality == "Center + Closer + Farther"


def test_merged_batches_are_never_candidates_again(repository, make_order, seed_batch):
    seed_batch("Riverside", [make_order("r1", 2000)])
    seed_batch("Lakeside", [make_order("l1", 1400, locality="Lakeside", lat=8.475, lon=124.640)])
    merger = BatchMerger(repository)
    merger.merge_pass()

    seed_batch("Eastside", [make_order("e1", 500, locality="Eastside", lat=8.481, lon=124.631)])
    second = merger.merge_pass()

    assert second.groups == []
    merged = [batch for batch in repository.list_batches() if batch.status == BatchStatus.MERGED]
    assert len(merged) == 1
    assert has_merge_marker(merged[0].locality)


def test_merge_labelled_empty_batch_is_tombstoned(repository, seed_batch):
    corrupted = seed_batch("North + South", [])

    plan = BatchMerger(repository).merge_pass()

    assert plan.tombstoned == [corrupted.batch_id]
    batch = repository.get_batch(corrupted.batch_id)
    assert batch.status == BatchStatus.MERGED
    assert batch.locality.startswith("MERGED:")


def test_batches_without_geocoded_orders_are_not_merged(repository, make_order, seed_batch):
    seed_batch("Riverside", [make_order("r1", 2000)])
    blind = seed_batch("Nowhere", [make_order("n1", 1000, locality="Nowhere", lat=None, lon=None)])

    plan = BatchMerger(repository).merge_pass()

    assert plan.groups == []
    assert repository.get_batch(blind.batch_id).status == BatchStatus.PENDING


def test_failed_absorption_does_not_abort_pass(repository, make_order, seed_batch, monkeypatch):
    seed = seed_batch("Center", [make_order("s", 2000, locality="Center", lat=8.480, lon=124.630)])
    broken = seed_batch("Broken", [make_order("x", 500, locality="Broken", lat=8.481, lon=124.630)])
    healthy = seed_batch("Healthy", [make_order("h", 500, locality="Healthy", lat=8.490, lon=124.630)])
    original = repository.update_order

    def flaky(order_id, **kwargs):
        if order_id == "x":
            raise PersistenceError("row locked")
        return original(order_id, **kwargs)

    monkeypatch.setattr(repository, "update_order", flaky)
    plan = BatchMerger(repository).merge_pass()

    assert plan.failed == [broken.batch_id]
    assert [item.batch_id for item in plan.groups[0].absorbed] == [healthy.batch_id]
    assert repository.get_batch(broken.batch_id).status == BatchStatus.PENDING
    assert repository.get_batch(seed.batch_id).locality == "Center + Healthy"


def test_merge_pass_is_deterministic(make_order, seed_batch, repository):
    seed_batch("A", [make_order("a", 1000, locality="A", lat=8.480, lon=124.630)])
    seed_batch("B", [make_order("b", 1000, locality="B", lat=8.481, lon=124.631)])
    seed_batch("C", [make_order("c", 1000, locality="C", lat=8.482, lon=124.632)])
    candidates = repository.list_batches()

    plan = BatchMerger(repository).merge_pass(candidates)

    assert len(plan.groups) == 1
    assert plan.merged_batch_count == 2
