from datetime import date, datetime, timezone
from pathlib import Path

import pytest

from dispatch.models.domain import ApprovalStatus, BatchStatus, DeliveryStatus
from dispatch.persistence.database import SupabaseRepository, batch_from_row, order_from_row
from dispatch.persistence.filesystem import FileStorage
from dispatch.persistence.repository import PersistenceError


class FakeQuery:
    def __init__(self, table, calls, rows=None, error=None):
        self.table = table
        self.calls = calls
        self.rows = rows or []
        self.error = error

    def __getattr__(self, name):
        def _record(*args, **kwargs):
            self.calls.append((self.table, name, args))
            return self

        return _record

    def execute(self):
        if self.error:
            raise self.error
        return type("Response", (), {"data": self.rows})()


class FakeClient:
    def __init__(self, rows=None, error=None):
        self.calls: list = []
        self.rows = rows or {}
        self.error = error

    def table(self, name):
        return FakeQuery(name, self.calls, self.rows.get(name), self.error)


def test_file_storage_creates_run_directory(tmp_path: Path) -> None:
    storage = FileStorage(root=tmp_path)
    run_dir = storage.make_run_directory(prefix="route batch/1")

    assert run_dir.exists()
    assert run_dir.parent == tmp_path / "outputs"
    assert run_dir.name.startswith("route_batch_1_")


def test_file_storage_writes_json_and_csv(tmp_path: Path) -> None:
    storage = FileStorage(root=tmp_path)
    run_dir = storage.make_run_directory()

    storage.write_json(run_dir / "route.json", {"hello": "world"})
    storage.write_csv(run_dir / "stops.csv", "a,b\n1,2\n")

    assert (run_dir / "route.json").read_text(encoding="utf-8") == '{\n  "hello": "world"\n}'
    assert (run_dir / "stops.csv").read_text(encoding="utf-8") == "a,b\n1,2\n"


def test_order_row_weight_from_line_items():
    row = {
        "id": 17,
        "batch_id": None,
        "total": "1520.50",
        "total_weight": 5,
        "approval_status": "approved",
        "delivery_status": "pending",
        "delivery_address": {"barangay": " Carmen ", "latitude": "8.48", "longitude": 124.63},
        "items": [
            {"quantity": 3, "product": {"weight": 25}},
            {"quantity": 2, "product": {"weight": "12.5"}},
        ],
    }

    order = order_from_row(row)

    assert order.order_id == "17"
    assert order.weight_kg == pytest.approx(100.0)
    assert order.value == pytest.approx(1520.5)
    assert order.locality == "Carmen"
    assert (order.latitude, order.longitude) == (8.48, 124.63)
    assert order.approval_status == ApprovalStatus.APPROVED


def test_order_row_without_items_or_coordinates():
    order = order_from_row({"id": "o1", "total_weight": "42", "delivery_address": None, "approval_status": "approved"})

    assert order.weight_kg == pytest.approx(42.0)
    assert order.locality is None
    assert not order.is_geocoded
    assert order.delivery_status == DeliveryStatus.PENDING


def test_batch_row_parsing():
    batch = batch_from_row(
        {
            "id": "b1",
            "barangay": "Carmen + Lapasan",
            "total_weight": "3400",
            "max_weight": 5000,
            "status": "assigned",
            "driver_id": "d1",
            "created_at": "2024-05-06T02:00:00Z",
            "assigned_at": None,
            "delivery_date": "2024-05-06",
        },
        ["o1", "o2"],
    )

    assert batch.status == BatchStatus.ASSIGNED
    assert batch.created_at == datetime(2024, 5, 6, 2, 0, tzinfo=timezone.utc)
    assert batch.delivery_date == date(2024, 5, 6)
    assert batch.total_weight_kg == pytest.approx(3400)
    assert batch.order_ids == ["o1", "o2"]


def test_supabase_update_batch_payload():
    client = FakeClient()
    repository = SupabaseRepository(client)

    repository.update_batch("b1", status=BatchStatus.MERGED, total_weight_kg=0.0, driver_id=None)

    assert ("order_batches", "update", ({"total_weight": 0.0, "status": "merged", "driver_id": None},)) in client.calls
    assert ("order_batches", "eq", ("id", "b1")) in client.calls


def test_supabase_failures_become_persistence_errors():
    repository = SupabaseRepository(FakeClient(error=RuntimeError("connection reset")))

    with pytest.raises(PersistenceError):
        repository.update_order("o1", batch_id="b1")


def test_supabase_lists_batches_with_members():
    client = FakeClient(
        rows={
            "order_batches": [{"id": "b1", "barangay": "Carmen", "status": "pending", "created_at": "2024-05-06T02:00:00Z"}],
        }
    )
    repository = SupabaseRepository(client)

    batches = repository.list_batches([BatchStatus.PENDING])

    assert [batch.batch_id for batch in batches] == ["b1"]
    assert ("order_batches", "in_", ("status", ["pending"])) in client.calls
