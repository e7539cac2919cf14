"""Desktop notifications (notify-send, osascript, PowerShell balloon tip)."""

import logging
import shutil

from .environment import OS
from .escaping import applescript_string, powershell_literal
from .shell import spawn_detached

logger = logging.getLogger(__name__)

APP_NAME = "Select2LLM"

_BALLOON = (
    "Add-Type -AssemblyName System.Windows.Forms;"
    "$n = New-Object System.Windows.Forms.NotifyIcon;"
    "$n.Icon = [System.Drawing.SystemIcons]::Information;"
    "$n.Visible = $true;"
    "$n.ShowBalloonTip(5000, {title}, {message}, 'Info');"
    "Start-Sleep -Seconds 6; $n.Dispose()"
)


def notify(message: str, title: str = APP_NAME, os_kind: OS | None = None) -> None:
    """Show a desktop notification without waiting for it. Never raises."""
    logger.info("%s", message)
    try:
        if os_kind is OS.MACOS:
            script = (
                f"display notification {applescript_string(message)} "
                f"with title {applescript_string(title)}"
            )
            spawn_detached(["osascript", "-e", script])
        elif os_kind is OS.WINDOWS:
            script = _BALLOON.format(
                title=powershell_literal(title), message=powershell_literal(message),
            )
            spawn_detached(["powershell", "-NoProfile", "-WindowStyle", "Hidden",
                            "-Command", script])
        elif shutil.which("notify-send"):
            spawn_detached(["notify-send", "--app-name", APP_NAME, title, message])
    except Exception as e:  # notifications are best effort
        logger.debug("Notification failed: %s", e)
