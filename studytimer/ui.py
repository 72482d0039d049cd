"""Textual-based UI for the study timer."""

import math
from typing import Callable, List, Optional

from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Vertical
from textual.widgets import Digits, Footer, ProgressBar, Static

from .categories import CategoryStore
from .errors import ValidationError
from .scheduler import Phase, TimerSnapshot, TimerStateMachine

PHASE_CLASSES = {
    Phase.IDLE: "idle",
    Phase.ACTIVE: "active",
    Phase.SHORT_REST: "short-rest",
    Phase.LONG_REST: "long-rest",
}


def format_countdown(remaining_ms: float) -> str:
    """Render milliseconds as MM:SS, rounding up to the next second."""
    total_seconds = max(0, math.ceil(remaining_ms / 1000))
    mins, secs = divmod(total_seconds, 60)
    return f"{mins:02d}:{secs:02d}"


def format_minutes(total_minutes: int) -> str:
    """Render accumulated minutes as 'Xh Ym' or 'Ym'."""
    hours, minutes = divmod(total_minutes, 60)
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


class PhaseHeading(Static):
    """'─── Study 2/4 ───' style heading."""

    def show(self, label: str, cycle: str) -> None:
        self.update(f"─── {label} {cycle} ───")


BADGES = {
    "idle": "■ IDLE",
    "paused": "⏸ PAUSED",
    "running": "▶ RUNNING",
}


class RunStateBadge(Static):
    """Idle/paused/running indicator; the state name doubles as CSS class."""

    def show(self, state: str) -> None:
        self.set_classes(state)
        self.update(BADGES[state])


def run_state(timer: TimerStateMachine) -> str:
    if timer.phase == Phase.IDLE:
        return "idle"
    return "paused" if timer.is_paused else "running"


class StudyTimerApp(App):
    """Study timer application."""

    CSS_PATH = "studytimer.tcss"
    TITLE = "Study Timer"

    BINDINGS = [
        Binding("space", "toggle", "Start/Pause"),
        Binding("n", "skip", "Skip"),
        Binding("r", "reset", "Reset"),
        Binding("c", "next_category", "Category"),
        Binding("q", "quit", "Quit"),
    ]

    def __init__(
        self,
        timer: TimerStateMachine,
        categories: CategoryStore,
        selected_category: Optional[str] = None,
    ) -> None:
        super().__init__()
        self.study_timer = timer
        self.categories = categories
        state = timer.get_state()
        self.selected_category = state.category_id or selected_category
        self._unsubscribers: List[Callable[[], None]] = []

    def compose(self) -> ComposeResult:
        with Vertical(id="timer-container"):
            yield PhaseHeading(id="phase-label")
            yield Digits("00:00", id="big-timer")
            yield RunStateBadge(id="status-badge")
            yield ProgressBar(id="progress", total=100, show_eta=False, show_percentage=False)
            yield Static(id="category-label")
        yield Footer()

    def on_mount(self) -> None:
        self._unsubscribers = [
            self.study_timer.subscribe(self._on_timer_change),
            self.categories.subscribe(lambda _categories: self.redraw()),
        ]
        self.study_timer.attach_scheduler(self.set_interval)
        self.redraw()

    def on_unmount(self) -> None:
        while self._unsubscribers:
            self._unsubscribers.pop()()
        self.study_timer.attach_scheduler(None)
        self.study_timer.flush()

    def _on_timer_change(self, snapshot: TimerSnapshot) -> None:
        if snapshot.category_id:
            self.selected_category = snapshot.category_id
        self.redraw()

    def redraw(self) -> None:
        """Push the timer and category state into the widgets."""
        timer = self.study_timer
        self.query_one("#big-timer", Digits).update(format_countdown(timer.remaining_ms()))
        self.query_one(PhaseHeading).show(timer.phase_label, timer.cycle_display)
        self.query_one(RunStateBadge).show(run_state(timer))
        self.query_one(ProgressBar).update(progress=timer.progress * 100)
        self.query_one("#category-label", Static).update(self._category_text())

        panel = self.query_one("#timer-container")
        for phase, css_class in PHASE_CLASSES.items():
            panel.set_class(phase == timer.phase, css_class)

    def _category_text(self) -> str:
        categories = self.categories.list()
        if not categories:
            return "No categories yet (studytimer categories add NAME)"
        for category in categories:
            if category.id == self.selected_category:
                return f"{category.name} · {format_minutes(category.total_minutes)}"
        return "Press c to choose a category"

    def action_toggle(self) -> None:
        """Start, pause, or resume depending on the current state."""
        if self.study_timer.phase == Phase.IDLE:
            try:
                self.study_timer.start(self.selected_category)
            except ValidationError as exc:
                self.notify(str(exc), severity="error")
        elif self.study_timer.is_paused:
            self.study_timer.resume()
        else:
            self.study_timer.pause()

    def action_skip(self) -> None:
        """Skip to the next phase."""
        self.study_timer.skip_phase()

    def action_reset(self) -> None:
        """Abandon the current session."""
        self.study_timer.reset()

    def action_next_category(self) -> None:
        """Select the next category while idle."""
        if self.study_timer.phase != Phase.IDLE:
            self.notify("Reset the timer to change category", severity="warning")
            return
        categories = self.categories.list()
        if not categories:
            self.notify("Add a category first", severity="warning")
            return
        ids = [category.id for category in categories]
        if self.selected_category in ids:
            index = (ids.index(self.selected_category) + 1) % len(ids)
        else:
            index = 0
        self.selected_category = ids[index]
        self.redraw()


def run_ui(
    timer: TimerStateMachine,
    categories: CategoryStore,
    selected_category: Optional[str] = None,
) -> None:
    """Run the study timer UI.

    Args:
        timer: The restored timer instance.
        categories: Category store shown alongside the timer.
        selected_category: Category id to preselect when idle.
    """
    app = StudyTimerApp(timer, categories, selected_category)
    app.run()
