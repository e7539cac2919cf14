"""Operating system and display-server detection."""

import enum
import os
import platform
from dataclasses import dataclass


class OS(enum.Enum):
    WINDOWS = "windows"
    MACOS = "macos"
    LINUX = "linux"
    UNKNOWN = "unknown"


class DisplayServer(enum.Enum):
    X11 = "x11"
    WAYLAND = "wayland"
    NONE = "none"


@dataclass(frozen=True)
class PlatformProfile:
    os: OS
    display_server: DisplayServer = DisplayServer.NONE

    @property
    def supported(self) -> bool:
        if self.os is OS.LINUX:
            return self.display_server is not DisplayServer.NONE
        return self.os is not OS.UNKNOWN

    @property
    def is_wayland(self) -> bool:
        return self.display_server is DisplayServer.WAYLAND

    def __str__(self) -> str:
        if self.os is OS.LINUX:
            return f"linux/{self.display_server.value}"
        return self.os.value


_SYSTEMS = {
    "Windows": OS.WINDOWS,
    "Darwin": OS.MACOS,
    "Linux": OS.LINUX,
}


def detect_display_server(environ) -> DisplayServer:
    """Classify the Linux session from environment variables only."""
    session = environ.get("XDG_SESSION_TYPE", "").strip().lower()
    if session == "wayland":
        return DisplayServer.WAYLAND
    if session == "x11":
        return DisplayServer.X11
    if environ.get("WAYLAND_DISPLAY"):
        return DisplayServer.WAYLAND
    if environ.get("DISPLAY"):
        return DisplayServer.X11
    return DisplayServer.NONE


def detect(environ=None, system: str | None = None) -> PlatformProfile:
    """Return the PlatformProfile of the running process.

    Args:
        environ: Mapping to read variables from (defaults to os.environ).
        system: ``platform.system()`` override, for tests.
    """
    environ = os.environ if environ is None else environ
    os_kind = _SYSTEMS.get(system or platform.system(), OS.UNKNOWN)
    if os_kind is OS.LINUX:
        return PlatformProfile(os_kind, detect_display_server(environ))
    return PlatformProfile(os_kind)
