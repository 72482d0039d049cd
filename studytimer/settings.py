"""Timer durations and notification preferences."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, fields, replace
from typing import Any, Callable, Dict, List, Tuple

from .errors import ValidationError
from .scheduler import MS_PER_MINUTE, Phase
from .storage import KEY_SETTINGS, KeyValueStore

LOGGER = logging.getLogger(__name__)

# Inclusive bounds for each duration setting.
LIMITS: Dict[str, Tuple[int, int]] = {
    "work_minutes": (1, 180),
    "break_minutes": (1, 60),
    "long_rest_minutes": (1, 120),
    "cycles_before_long_rest": (1, 10),
}

LABELS = {
    "work_minutes": "Work length",
    "break_minutes": "Short rest length",
    "long_rest_minutes": "Long rest length",
    "cycles_before_long_rest": "Cycles before long rest",
}


@dataclass(frozen=True)
class TimerSettings:
    """User-configurable timer settings."""

    work_minutes: int = 25
    break_minutes: int = 5
    long_rest_minutes: int = 15
    cycles_before_long_rest: int = 4
    sound_enabled: bool = True
    notification_enabled: bool = True

    @classmethod
    def from_dict(cls, data: Any) -> "TimerSettings":
        """Merge stored values over the defaults, dropping anything unusable."""
        defaults = cls()
        if not isinstance(data, dict):
            return defaults
        values: Dict[str, Any] = {}
        for field in fields(cls):
            if field.name not in data:
                continue
            raw = data[field.name]
            default = getattr(defaults, field.name)
            if isinstance(default, bool):
                if isinstance(raw, bool):
                    values[field.name] = raw
                else:
                    LOGGER.warning("Ignoring stored %s=%r", field.name, raw)
                continue
            if isinstance(raw, int) and not isinstance(raw, bool) and _in_range(field.name, raw):
                values[field.name] = raw
            else:
                LOGGER.warning("Ignoring stored %s=%r; using %s", field.name, raw, default)
        return replace(defaults, **values)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _in_range(name: str, value: int) -> bool:
    low, high = LIMITS[name]
    return low <= value <= high


def validate_timer_settings(
    work_minutes: int,
    break_minutes: int,
    long_rest_minutes: int,
    cycles_before_long_rest: int,
) -> None:
    """Raise ValidationError naming the first out-of-range value."""
    candidates = {
        "work_minutes": work_minutes,
        "break_minutes": break_minutes,
        "long_rest_minutes": long_rest_minutes,
        "cycles_before_long_rest": cycles_before_long_rest,
    }
    for name, value in candidates.items():
        low, high = LIMITS[name]
        if isinstance(value, bool) or not isinstance(value, int) or not low <= value <= high:
            raise ValidationError(f"{LABELS[name]} must be between {low} and {high}")


class SettingsStore:
    """Configuration provider backed by the key-value store.

    The timer asks this object for phase durations every time it needs one,
    so changes take effect immediately, including during catch-up.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store
        self._settings = TimerSettings.from_dict(store.get(KEY_SETTINGS))
        self._listeners: List[Callable[[TimerSettings], None]] = []

    @property
    def settings(self) -> TimerSettings:
        """Current settings."""
        return self._settings

    @property
    def cycles_before_long_rest(self) -> int:
        return self._settings.cycles_before_long_rest

    def duration_of(self, phase: Phase) -> int:
        """Length of a phase in milliseconds; zero for idle."""
        if phase == Phase.ACTIVE:
            minutes = self._settings.work_minutes
        elif phase == Phase.SHORT_REST:
            minutes = self._settings.break_minutes
        elif phase == Phase.LONG_REST:
            minutes = self._settings.long_rest_minutes
        else:
            return 0
        return minutes * MS_PER_MINUTE

    def update_timer_settings(
        self,
        work_minutes: int,
        break_minutes: int,
        long_rest_minutes: int,
        cycles_before_long_rest: int,
    ) -> TimerSettings:
        """Validate and store new durations."""
        validate_timer_settings(work_minutes, break_minutes, long_rest_minutes, cycles_before_long_rest)
        return self._apply(
            replace(
                self._settings,
                work_minutes=work_minutes,
                break_minutes=break_minutes,
                long_rest_minutes=long_rest_minutes,
                cycles_before_long_rest=cycles_before_long_rest,
            )
        )

    def update(self, **changes: Any) -> TimerSettings:
        """Update any settings fields; duration fields are range-checked."""
        known = {field.name for field in fields(TimerSettings)}
        unknown = set(changes) - known
        if unknown:
            raise ValidationError(f"Unknown setting(s): {', '.join(sorted(unknown))}")
        for name in ("sound_enabled", "notification_enabled"):
            if name in changes and not isinstance(changes[name], bool):
                raise ValidationError(f"{name} must be true or false")
        candidate = replace(self._settings, **changes)
        validate_timer_settings(
            candidate.work_minutes,
            candidate.break_minutes,
            candidate.long_rest_minutes,
            candidate.cycles_before_long_rest,
        )
        return self._apply(candidate)

    def subscribe(self, listener: Callable[[TimerSettings], None]) -> Callable[[], None]:
        """Register a change listener; returns a function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _apply(self, settings: TimerSettings) -> TimerSettings:
        self._settings = settings
        self._store.set(KEY_SETTINGS, settings.to_dict())
        LOGGER.info("Settings updated: %s", settings)
        for listener in list(self._listeners):
            try:
                listener(settings)
            except Exception:
                LOGGER.exception("Settings listener failed")
        return settings
