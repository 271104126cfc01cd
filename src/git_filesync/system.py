import logging
import subprocess
import sys
from typing import Protocol

from .constants import APP_NAME

logger = logging.getLogger(APP_NAME)


class Notifier(Protocol):
    """Anything that can deliver a (title, message) notification."""

    def notify(self, title: str, message: str) -> None: ...


class SystemStrategy:
    """Base class defining the interface for desktop notifications.

    Delivery is fire-and-forget: failures are logged, never raised.
    """

    def notify(self, title: str, message: str) -> None:
        """Sends a desktop notification.

        Args:
            title (str): The notification title.
            message (str): The notification body text.
        """
        logger.debug(f"Notification (not delivered): {title}: {message}")


class MacOSStrategy(SystemStrategy):
    """System strategy implementation for macOS."""

    def notify(self, title: str, message: str) -> None:
        """Sends a notification using AppleScript."""
        # Sanitize quotes to prevent AppleScript syntax errors.
        clean_msg = message.replace('"', "'")
        clean_title = title.replace('"', "'")
        script = f'display notification "{clean_msg}" with title "{clean_title}"'
        try:
            subprocess.run(["osascript", "-e", script], stderr=subprocess.DEVNULL)
        except OSError as e:
            logger.debug(f"Notification failed: {e}")


class LinuxStrategy(SystemStrategy):
    """System strategy implementation for Linux."""

    def notify(self, title: str, message: str) -> None:
        """Sends a notification using `notify-send`."""
        try:
            subprocess.run(
                ["notify-send", "--app-name", APP_NAME, title, message],
                stderr=subprocess.DEVNULL,
            )
        except OSError as e:
            logger.debug(f"Notification failed: {e}")


def get_system() -> SystemStrategy:
    """Factory function to retrieve the platform-specific system strategy.

    Returns:
        SystemStrategy: An instance of MacOSStrategy, LinuxStrategy, or the base
        SystemStrategy depending on the operating system.
    """
    if sys.platform == "darwin":
        return MacOSStrategy()
    elif sys.platform.startswith("linux"):
        return LinuxStrategy()
    else:
        return SystemStrategy()
