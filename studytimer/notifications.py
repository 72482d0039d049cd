"""Notification support for the study timer."""

import logging
import platform
import subprocess
import sys
from typing import Callable, List, Optional, Tuple

from .scheduler import Phase
from .settings import TimerSettings

LOGGER = logging.getLogger(__name__)

APP_TITLE = "Study Timer"
NOTIFIER_TIMEOUT_SECONDS = 5


def ring_bell() -> None:
    sys.stdout.write("\a")
    sys.stdout.flush()


def _applescript_quote(text: str) -> str:
    return '"' + text.replace("\\", "\\\\").replace('"', '\\"') + '"'


def desktop_command(system: str, title: str, message: str) -> Optional[List[str]]:
    """Command line that shows a desktop notification, or None if unsupported.

    macOS goes through osascript and Linux through notify-send; other
    platforms only get the bell.
    """
    if system == "Darwin":
        script = f"display notification {_applescript_quote(message)} with title {_applescript_quote(title)}"
        return ["osascript", "-e", script]
    if system == "Linux":
        return ["notify-send", "--app-name", APP_TITLE, title, message]
    return None


def send_desktop_notification(title: str, message: str) -> bool:
    """Show a desktop notification; False when the notifier is missing or fails."""
    command = desktop_command(platform.system(), title, message)
    if command is None:
        return False
    try:
        subprocess.run(command, capture_output=True, timeout=NOTIFIER_TIMEOUT_SECONDS)
    except (subprocess.SubprocessError, OSError):
        LOGGER.debug("%s notification failed", command[0], exc_info=True)
        return False
    return True


def notify(title: str, message: str, bell: bool = True, native: bool = True) -> None:
    """Ring the bell and/or pop a desktop notification.

    Missing notifier binaries are ignored.
    """
    if bell:
        ring_bell()
    if native:
        send_desktop_notification(title, message)


def phase_message(old_phase: Phase, new_phase: Phase) -> Tuple[str, str]:
    """Title and body announcing the phase that just began."""
    if old_phase == Phase.ACTIVE:
        title = "Study block complete!"
        if new_phase == Phase.LONG_REST:
            body = "Long rest time. You've earned it!"
        else:
            body = "Short rest time."
    else:
        title = "Rest over"
        body = "Study time is starting. Ready to focus?"
    return title, body


class PhaseNotifier:
    """Phase-completion sink that honours the sound/notification settings."""

    def __init__(self, settings: Callable[[], TimerSettings], enabled: bool = True) -> None:
        self._settings = settings
        self.enabled = enabled

    def __call__(self, old_phase: Phase, new_phase: Phase) -> None:
        if not self.enabled:
            return
        current = self._settings()
        if not (current.sound_enabled or current.notification_enabled):
            return
        title, body = phase_message(old_phase, new_phase)
        LOGGER.debug("Notifying: %s - %s", title, body)
        notify(
            title,
            body,
            bell=current.sound_enabled,
            native=current.notification_enabled,
        )
