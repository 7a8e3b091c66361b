from datetime import datetime, timedelta
from typing import Callable, Optional
from zoneinfo import ZoneInfo

import pytest

from dispatch.models.domain import Batch, BatchStatus, Driver, Order, live_weight
from dispatch.persistence.repository import InMemoryRepository
from dispatch.services.notifications import Notifier

MANILA = ZoneInfo("Asia/Manila")


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingNotifier(Notifier):
    def __init__(self) -> None:
        self.events: list[tuple[str, dict]] = []

    def publish(self, event: str, payload: dict) -> None:
        self.events.append((event, payload))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 5, 6, 10, 0, tzinfo=MANILA))


@pytest.fixture
def repository() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def make_order() -> Callable[..., Order]:
    def _make(
        order_id: str,
        weight_kg: float,
        locality: Optional[str] = "Riverside",
        lat: Optional[float] = 8.48,
        lon: Optional[float] = 124.63,
    ) -> Order:
        return Order(
            order_id=order_id,
            weight_kg=weight_kg,
            value=weight_kg * 10,
            locality=locality,
            latitude=lat,
            longitude=lon,
        )

    return _make


@pytest.fixture
def seed_batch(repository: InMemoryRepository, clock: FakeClock) -> Callable[..., Batch]:
    """Create a batch that already holds the given orders."""

    def _seed(
        locality: str,
        orders: list[Order],
        *,
        status: BatchStatus = BatchStatus.PENDING,
        created_at: Optional[datetime] = None,
        driver_id: Optional[str] = None,
    ) -> Batch:
        batch = repository.create_batch(locality, created_at=created_at or clock(), max_weight_kg=5000.0)
        for order in orders:
            order.batch_id = batch.batch_id
            repository.add_order(order)
        repository.update_batch(
            batch.batch_id,
            total_weight_kg=live_weight(orders),
            status=status,
            driver_id=driver_id,
        )
        return repository.get_batch(batch.batch_id)

    return _seed


@pytest.fixture
def driver(repository: InMemoryRepository) -> Driver:
    return repository.add_driver(Driver(driver_id="driver-1", name="Dana"))
