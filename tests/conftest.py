"""Shared fakes for the timer tests."""

from typing import Callable, List, Optional, Tuple

import pytest

from studytimer.errors import NotFoundError
from studytimer.scheduler import MS_PER_MINUTE, TimerStateMachine
from studytimer.settings import SettingsStore
from studytimer.storage import MemoryStore

START_MS = 1_700_000_000_000.0


class FakeClock:
    """Wall clock in epoch milliseconds that only moves when told to."""

    def __init__(self, now: float = START_MS) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, minutes: float = 0, ms: float = 0) -> None:
        self.now += minutes * MS_PER_MINUTE + ms


class FakeHandle:
    def __init__(self, interval: float, callback: Callable[[], None]) -> None:
        self.interval = interval
        self.callback = callback
        self.stopped = False

    def stop(self) -> None:
        self.stopped = True


class FakeScheduler:
    """Records interval registrations instead of running them."""

    def __init__(self) -> None:
        self.handles: List[FakeHandle] = []

    def __call__(self, interval: float, callback: Callable[[], None]) -> FakeHandle:
        handle = FakeHandle(interval, callback)
        self.handles.append(handle)
        return handle

    @property
    def active(self) -> List[FakeHandle]:
        return [handle for handle in self.handles if not handle.stopped]

    def fire(self) -> None:
        """Run every live tick callback once."""
        for handle in self.active:
            handle.callback()


class RecordingAccumulator:
    def __init__(self, known: Optional[set] = None) -> None:
        self.calls: List[Tuple[str, int]] = []
        self.known = known

    def credit_minutes(self, category_id: str, minutes: int) -> None:
        if self.known is not None and category_id not in self.known:
            raise NotFoundError(f"Category not found: {category_id}")
        self.calls.append((category_id, minutes))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def scheduler() -> FakeScheduler:
    return FakeScheduler()


@pytest.fixture
def store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture
def settings(store) -> SettingsStore:
    return SettingsStore(store)


@pytest.fixture
def accumulator() -> RecordingAccumulator:
    return RecordingAccumulator()


@pytest.fixture
def strict_accumulator() -> RecordingAccumulator:
    """Accumulator that knows no categories."""
    return RecordingAccumulator(known=set())


@pytest.fixture
def phase_events() -> list:
    return []


@pytest.fixture
def make_timer(settings, store, accumulator, scheduler, clock, phase_events):
    """Build a timer sharing the test's store, clock and fakes."""

    def factory(provider=None, credit_target=None, **options) -> TimerStateMachine:
        kwargs = {
            "scheduler": scheduler,
            "clock": clock,
            "on_phase_complete": lambda old, new: phase_events.append((old, new)),
        }
        kwargs.update(options)
        return TimerStateMachine(
            provider or settings,
            store,
            credit_target or accumulator,
            **kwargs,
        )

    return factory


@pytest.fixture
def timer(make_timer) -> TimerStateMachine:
    return make_timer()
