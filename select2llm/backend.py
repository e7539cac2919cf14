"""Platform backend interface and factory.

A backend bundles every OS-specific primitive the pipeline needs: the copy
trigger, the injection strategy table, the modifier release and the window
geometry probe. Exactly one backend is created per process, chosen from the
detected PlatformProfile.
"""

import abc
import logging
from dataclasses import dataclass

from .environment import OS, DisplayServer, PlatformProfile
from .errors import PlatformUnsupported
from .shell import ToolProbe

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CaptureTarget:
    """The window that had focus when the copy keystroke was sent."""

    window_id: str | None = None
    app_name: str | None = None
    bundle_id: str | None = None

    def __str__(self) -> str:
        if self.window_id:
            return f"window {self.window_id}"
        return self.app_name or self.bundle_id or "unknown target"


@dataclass(frozen=True)
class Geometry:
    x: int
    y: int
    width: int
    height: int


class Backend(abc.ABC):
    """OS-specific primitives used by the copy trigger and injector."""

    name = "base"

    def __init__(self, profile: PlatformProfile, config: dict | None = None,
                 probe: ToolProbe | None = None, clipboard=None):
        self.profile = profile
        self.config = config or {}
        self.probe = probe or ToolProbe(ttl=self.config.get("probe_ttl", 30.0))
        self.clipboard = clipboard
        self.type_timeout = self.config.get("type_timeout", 6.0)
        self.probe_timeout = self.config.get("probe_timeout", 5.0)
        self.restore_delay = self.config.get("clipboard_restore_delay", 0.3)

    @abc.abstractmethod
    async def capture(self) -> CaptureTarget | None:
        """Send the copy keystroke to the focused window.

        Returns the target to type into later, or None where the platform
        cannot identify windows. Raises CopyFailed / WindowNotFound.
        """

    @abc.abstractmethod
    def strategies(self) -> list:
        """Return the ordered InjectionStrategy table for this platform."""

    @abc.abstractmethod
    async def release_modifiers(self, target: CaptureTarget | None) -> None:
        """Send key-up events for ctrl/shift/alt."""

    async def geometry(self, target: CaptureTarget | None) -> Geometry | None:
        """Screen rectangle of ``target``, or None if unavailable."""
        return None

    def required_tools(self) -> tuple[str, ...]:
        """Executables worth reporting in diagnostics."""
        return ()


def create_backend(profile: PlatformProfile, config: dict | None = None,
                   clipboard=None) -> Backend:
    """Instantiate the backend matching ``profile``.

    Raises PlatformUnsupported for unknown systems or display servers.
    """
    if profile.os is OS.LINUX and profile.display_server is DisplayServer.X11:
        from .linux_x11 import X11Backend
        cls = X11Backend
    elif profile.os is OS.LINUX and profile.display_server is DisplayServer.WAYLAND:
        from .linux_wayland import WaylandBackend
        cls = WaylandBackend
    elif profile.os is OS.MACOS:
        from .macos import MacBackend
        cls = MacBackend
    elif profile.os is OS.WINDOWS:
        from .windows import WindowsBackend
        cls = WindowsBackend
    else:
        raise PlatformUnsupported(f"Unsupported platform: {profile}")
    logger.debug("Using %s backend", cls.name)
    return cls(profile, config, clipboard=clipboard)
