"""Desktop notifications for loop events.

Sends a best-effort desktop notification through whichever notifier is
installed: ``terminal-notifier`` or ``osascript`` on macOS, ``notify-send``
on Linux. When none is available the message is only logged. A failed
notification never raises.

Examples:
    Notify the operator that a checkpoint needs review::

        >>> notifier = DesktopNotifier()
        >>> notifier.send("Ralph", "Checkpoint at iteration 10", urgency="critical")
        True
"""

import logging
from typing import Literal, Protocol

import sh

logger = logging.getLogger(__name__)

type Urgency = Literal["low", "normal", "critical"]


class Notifier(Protocol):
    """Anything that can deliver a short operator-facing message."""

    def send(self, title: str, body: str, urgency: Urgency = "normal") -> bool: ...


def _applescript_quote(value: str) -> str:
    return '"' + value.replace("\\", "\\\\").replace('"', '\\"') + '"'


class DesktopNotifier:
    """Notifier backed by the platform's notification command."""

    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled

    def _backends(
        self, title: str, body: str, urgency: Urgency
    ) -> list[tuple[str, list[str]]]:
        script = (
            f"display notification {_applescript_quote(body)} "
            f"with title {_applescript_quote(title)}"
        )
        return [
            ("terminal-notifier", ["-title", title, "-message", body, "-sound", "default"]),
            ("osascript", ["-e", script]),
            ("notify-send", ["-u", urgency, title, body]),
        ]

    def send(self, title: str, body: str, urgency: Urgency = "normal") -> bool:
        """Send a notification, returning whether a backend accepted it."""
        if not self.enabled:
            return False

        for name, args in self._backends(title, body, urgency):
            try:
                command = sh.Command(name)
            except sh.CommandNotFound:
                continue
            try:
                command(*args)
            except sh.ErrorReturnCode as e:
                logger.warning("Notification via %s failed: %s", name, e)
                return False
            return True

        logger.info("🔔 %s: %s", title, body)
        return False


class NullNotifier:
    """Notifier that drops every message (tests, headless hosts)."""

    def send(self, title: str, body: str, urgency: Urgency = "normal") -> bool:
        return False
