"""Study timer state machine with catch-up after the process was away."""

from __future__ import annotations

import logging
import math
import time
from collections import deque
from dataclasses import asdict, dataclass, replace
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional, Protocol

from .errors import StudyTimerError, ValidationError
from .storage import KEY_TIMER_STATE, KeyValueStore

LOGGER = logging.getLogger(__name__)

MS_PER_MINUTE = 60 * 1000
TICK_INTERVAL_SECONDS = 0.1


class Phase(Enum):
    """Timer phase types."""
    IDLE = "idle"
    ACTIVE = "active"
    SHORT_REST = "short_rest"
    LONG_REST = "long_rest"


PHASE_LABELS = {
    Phase.IDLE: "Ready",
    Phase.ACTIVE: "Study",
    Phase.SHORT_REST: "Short Rest",
    Phase.LONG_REST: "Long Rest",
}


class DurationProvider(Protocol):
    """Source of phase lengths, consulted on every use."""

    @property
    def cycles_before_long_rest(self) -> int:
        ...

    def duration_of(self, phase: Phase) -> int:
        ...


class Accumulator(Protocol):
    """Receives minutes for each work interval that runs to completion."""

    def credit_minutes(self, category_id: str, minutes: int) -> Any:
        ...


class TickHandle(Protocol):
    def stop(self) -> Any:
        ...


# (interval_seconds, callback) -> handle; Textual's App.set_interval fits.
IntervalScheduler = Callable[[float, Callable[[], None]], TickHandle]


def _now_ms() -> float:
    return time.time() * 1000


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


@dataclass
class TimerSnapshot:
    """Complete timer state; the only thing persisted between runs."""
    phase: Phase = Phase.IDLE
    phase_started_at: Optional[float] = None
    is_paused: bool = False
    paused_remaining_ms: Optional[float] = None
    completed_cycles: int = 0
    category_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready form with the phase as its string value."""
        data = asdict(self)
        data["phase"] = self.phase.value
        return data

    @classmethod
    def from_dict(cls, data: Any) -> Optional["TimerSnapshot"]:
        """Parse a stored snapshot, returning None if it is not well formed."""
        if not isinstance(data, dict):
            return None
        try:
            phase = Phase(data.get("phase"))
        except ValueError:
            return None

        cycles = data.get("completed_cycles", 0)
        if isinstance(cycles, bool) or not isinstance(cycles, int) or cycles < 0:
            return None
        if phase == Phase.IDLE:
            return cls(completed_cycles=cycles)

        category_id = data.get("category_id")
        is_paused = data.get("is_paused", False)
        started_at = data.get("phase_started_at")
        paused_remaining = data.get("paused_remaining_ms")
        if not isinstance(category_id, str) or not category_id:
            return None
        if not isinstance(is_paused, bool):
            return None
        if started_at is not None and not _is_number(started_at):
            return None
        if is_paused:
            if not _is_number(paused_remaining) or paused_remaining < 0:
                return None
        else:
            if started_at is None or paused_remaining is not None:
                return None

        return cls(
            phase=phase,
            phase_started_at=started_at,
            is_paused=is_paused,
            paused_remaining_ms=paused_remaining if is_paused else None,
            completed_cycles=cycles,
            category_id=category_id,
        )


def next_phase(current: Phase, completed_cycles: int, cycles_before_long_rest: int) -> Phase:
    """Phase that follows ``current``.

    ``completed_cycles`` already counts the work phase that is ending.
    """
    if current == Phase.ACTIVE:
        if completed_cycles % cycles_before_long_rest == 0:
            return Phase.LONG_REST
        return Phase.SHORT_REST
    if current in (Phase.SHORT_REST, Phase.LONG_REST):
        return Phase.ACTIVE
    return Phase.IDLE


class TimerStateMachine:
    """Study/rest timer state machine.

    Every command mutates the snapshot, persists it and notifies
    subscribers. Commands and ticks run one at a time through an internal
    queue; a command issued from inside a listener runs after the current
    one finishes.
    """

    def __init__(
        self,
        settings: DurationProvider,
        store: KeyValueStore,
        accumulator: Accumulator,
        *,
        scheduler: Optional[IntervalScheduler] = None,
        clock: Optional[Callable[[], float]] = None,
        on_phase_complete: Optional[Callable[[Phase, Phase], None]] = None,
        tick_interval: float = TICK_INTERVAL_SECONDS,
    ):
        """Initialize the timer in the idle state.

        Args:
            settings: Provides phase durations (ms) and the long-rest cadence.
            store: Key-value store holding the snapshot.
            accumulator: Credited with work minutes on each completed work phase.
            scheduler: Starts the periodic tick; None means the caller drives tick().
            clock: Returns wall-clock time in epoch milliseconds.
            on_phase_complete: Callback(old_phase, new_phase) when a phase ends.
            tick_interval: Seconds between completion checks.
        """
        self._settings = settings
        self._store = store
        self._accumulator = accumulator
        self._scheduler = scheduler
        self._clock = clock or _now_ms
        self.on_phase_complete = on_phase_complete
        self.tick_interval = tick_interval

        self._state = TimerSnapshot()
        self._listeners: List[Callable[[TimerSnapshot], None]] = []
        self._tick_handle: Optional[TickHandle] = None
        self._pending: Deque[Callable[[], None]] = deque()
        self._draining = False

    # Inspection

    @property
    def phase(self) -> Phase:
        """Current phase."""
        return self._state.phase

    @property
    def is_paused(self) -> bool:
        """True while the countdown is frozen."""
        return self._state.is_paused

    @property
    def is_ticking(self) -> bool:
        """True while a periodic tick is scheduled."""
        return self._tick_handle is not None

    def get_state(self) -> TimerSnapshot:
        """Copy of the current snapshot."""
        return replace(self._state)

    def remaining_ms(self, now: Optional[float] = None) -> float:
        """Milliseconds left in the current phase."""
        state = self._state
        if state.phase == Phase.IDLE:
            return 0
        if state.is_paused:
            return state.paused_remaining_ms or 0
        if now is None:
            now = self._clock()
        elapsed = now - (state.phase_started_at or now)
        return max(0, self._settings.duration_of(state.phase) - elapsed)

    @property
    def progress(self) -> float:
        """Progress through current phase (0.0 to 1.0)."""
        total = self._settings.duration_of(self._state.phase)
        if total <= 0:
            return 0.0
        return min(1.0, max(0.0, 1.0 - (self.remaining_ms() / total)))

    @property
    def phase_label(self) -> str:
        """Human-readable phase label."""
        return PHASE_LABELS[self._state.phase]

    @property
    def cycle_display(self) -> str:
        """Position within the long-rest cycle (e.g. '2/4')."""
        cycle_size = self._settings.cycles_before_long_rest
        completed = self._state.completed_cycles
        if self._state.phase == Phase.IDLE:
            return f"0/{cycle_size}"
        if self._state.phase == Phase.ACTIVE:
            current = completed % cycle_size + 1
        else:
            current = (completed - 1) % cycle_size + 1 if completed else 0
        return f"{current}/{cycle_size}"

    def subscribe(self, listener: Callable[[TimerSnapshot], None]) -> Callable[[], None]:
        """Register a listener called with a snapshot copy after each change.

        Returns:
            A function that removes the listener.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # Commands

    def start(self, category_id: Optional[str]) -> None:
        """Begin a work phase credited to ``category_id``."""
        if not isinstance(category_id, str) or not category_id.strip():
            raise ValidationError("Choose a category before starting the timer")
        self._dispatch(lambda: self._start(category_id))

    def pause(self) -> None:
        """Freeze the countdown."""
        self._dispatch(self._pause)

    def resume(self) -> None:
        """Continue a paused countdown from where it stopped."""
        self._dispatch(self._resume)

    def reset(self) -> None:
        """Abandon the session without crediting the current phase."""
        self._dispatch(self._reset)

    def skip_phase(self) -> None:
        """End the current phase now; skipped work is not credited."""
        self._dispatch(self._skip_phase)

    def tick(self) -> None:
        """Check for phase completion; called by the periodic scheduler."""
        self._dispatch(self._tick)

    def restore(self) -> TimerSnapshot:
        """Load the last snapshot and replay phases missed while away.

        Must be called outside timer listeners so the catch-up runs before
        this returns.

        Returns:
            The resulting snapshot.

        Raises:
            StudyTimerError: If called while another timer command is running.
        """
        if self._draining:
            raise StudyTimerError("restore() cannot run from inside a timer listener")
        self._dispatch(self._restore)
        return self.get_state()

    def flush(self) -> None:
        """Persist the current snapshot again (e.g. on shutdown)."""
        self._save()

    def attach_scheduler(self, scheduler: Optional[IntervalScheduler]) -> None:
        """Swap the tick scheduler, restarting the tick if the timer is running."""
        self._stop_tick()
        self._scheduler = scheduler
        if self._state.phase != Phase.IDLE and not self._state.is_paused:
            self._start_tick()

    def stop_ticking(self) -> None:
        """Cancel the periodic tick without changing state."""
        self._stop_tick()

    # Command bodies

    def _start(self, category_id: str) -> None:
        self._state = TimerSnapshot(
            phase=Phase.ACTIVE,
            phase_started_at=self._clock(),
            is_paused=False,
            paused_remaining_ms=None,
            completed_cycles=0,
            category_id=category_id,
        )
        LOGGER.info("Timer started: category=%s", category_id)
        self._save()
        self._start_tick()
        self._notify()

    def _pause(self) -> None:
        if self._state.phase == Phase.IDLE or self._state.is_paused:
            return
        remaining = self.remaining_ms()
        self._state.is_paused = True
        self._state.paused_remaining_ms = remaining
        LOGGER.info("Timer paused: phase=%s remaining=%dms", self._state.phase.value, remaining)
        self._stop_tick()
        self._save()
        self._notify()

    def _resume(self) -> None:
        if not self._state.is_paused:
            return
        remaining = self._state.paused_remaining_ms or 0
        duration = self._settings.duration_of(self._state.phase)
        self._state.phase_started_at = self._clock() - (duration - remaining)
        self._state.is_paused = False
        self._state.paused_remaining_ms = None
        LOGGER.info("Timer resumed: phase=%s remaining=%dms", self._state.phase.value, remaining)
        self._save()
        self._start_tick()
        self._notify()

    def _reset(self) -> None:
        self._stop_tick()
        self._state = TimerSnapshot()
        LOGGER.info("Timer reset")
        self._save()
        self._notify()

    def _skip_phase(self) -> None:
        old_phase = self._state.phase
        if old_phase == Phase.IDLE:
            return
        if old_phase == Phase.ACTIVE:
            # Skipped work counts toward the long-rest cadence but earns no time.
            self._state.completed_cycles += 1
            new_phase = next_phase(
                old_phase, self._state.completed_cycles, self._settings.cycles_before_long_rest
            )
        else:
            new_phase = Phase.ACTIVE
        self._state.phase = new_phase
        self._state.phase_started_at = self._clock()
        self._state.is_paused = False
        self._state.paused_remaining_ms = None
        LOGGER.info("Phase skipped: %s -> %s", old_phase.value, new_phase.value)
        self._save()
        self._start_tick()
        self._notify()
        self._emit_phase_complete(old_phase, new_phase)

    def _tick(self) -> None:
        if self._state.phase == Phase.IDLE or self._state.is_paused:
            return
        if self.remaining_ms() <= 0:
            self._complete_phase()
        self._notify()

    def _complete_phase(self) -> None:
        old_phase = self._state.phase
        if old_phase == Phase.ACTIVE:
            self._credit(self._state.category_id)
            self._state.completed_cycles += 1
        new_phase = next_phase(
            old_phase, self._state.completed_cycles, self._settings.cycles_before_long_rest
        )
        self._state.phase = new_phase
        self._state.phase_started_at = self._clock()
        LOGGER.info(
            "Phase completed: %s -> %s (cycles=%d)",
            old_phase.value,
            new_phase.value,
            self._state.completed_cycles,
        )
        self._save()
        self._notify()
        self._emit_phase_complete(old_phase, new_phase)

    def _restore(self) -> None:
        raw = self._store.get(KEY_TIMER_STATE)
        saved = TimerSnapshot.from_dict(raw) if raw is not None else None
        if raw is not None and saved is None:
            LOGGER.warning("Discarding unreadable timer snapshot: %r", raw)

        if saved is None or saved.phase == Phase.IDLE:
            self._stop_tick()
            self._state = TimerSnapshot()
            self._notify()
            return

        if saved.is_paused:
            # No time passes while paused, however long the process was gone.
            self._stop_tick()
            self._state = saved
            LOGGER.info("Restored paused timer: phase=%s", saved.phase.value)
            self._notify()
            return

        now = self._clock()
        phase = saved.phase
        cycles = saved.completed_cycles
        elapsed = now - (saved.phase_started_at or now)
        if elapsed < 0:
            LOGGER.warning("Snapshot starts %dms in the future; treating as just started", -elapsed)
            elapsed = 0

        replayed = 0
        duration = self._settings.duration_of(phase)
        while phase != Phase.IDLE and elapsed >= duration:
            if duration <= 0:
                LOGGER.error("Phase %s has non-positive duration %s; stopping catch-up", phase.value, duration)
                break
            elapsed -= duration
            if phase == Phase.ACTIVE:
                self._credit(saved.category_id)
                cycles += 1
            phase = next_phase(phase, cycles, self._settings.cycles_before_long_rest)
            duration = self._settings.duration_of(phase)
            replayed += 1

        self._state = TimerSnapshot(
            phase=phase,
            phase_started_at=now - elapsed,
            is_paused=False,
            paused_remaining_ms=None,
            completed_cycles=cycles,
            category_id=saved.category_id,
        )
        LOGGER.info(
            "Restored timer: phase=%s cycles=%d replayed=%d phase(s)",
            phase.value,
            cycles,
            replayed,
        )
        self._save()
        if phase != Phase.IDLE:
            self._start_tick()
        self._notify()

    # Helpers

    def _dispatch(self, command: Callable[[], None]) -> None:
        self._pending.append(command)
        if self._draining:
            return
        self._draining = True
        try:
            while self._pending:
                self._pending.popleft()()
        except BaseException:
            self._pending.clear()
            raise
        finally:
            self._draining = False

    def _credit(self, category_id: Optional[str]) -> None:
        minutes = self._settings.duration_of(Phase.ACTIVE) // MS_PER_MINUTE
        try:
            self._accumulator.credit_minutes(category_id, minutes)
        except Exception:
            LOGGER.exception("Failed to credit %s min to category %s", minutes, category_id)

    def _save(self) -> None:
        try:
            saved = self._store.set(KEY_TIMER_STATE, self._state.to_dict())
        except Exception:
            LOGGER.exception("Failed to persist timer snapshot")
            return
        if saved is False:
            LOGGER.warning("Timer snapshot was not persisted; state survives only in memory")

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self.get_state())
            except Exception:
                LOGGER.exception("Timer listener failed")

    def _emit_phase_complete(self, old_phase: Phase, new_phase: Phase) -> None:
        if self.on_phase_complete is None:
            return
        try:
            self.on_phase_complete(old_phase, new_phase)
        except Exception:
            LOGGER.exception("Phase completion callback failed")

    def _start_tick(self) -> None:
        self._stop_tick()
        if self._scheduler is not None:
            self._tick_handle = self._scheduler(self.tick_interval, self.tick)

    def _stop_tick(self) -> None:
        if self._tick_handle is not None:
            self._tick_handle.stop()
            self._tick_handle = None
