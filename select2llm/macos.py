"""macOS backend: NSWorkspace for the frontmost app, CGEvent for key
events, System Events (osascript) for typing."""

import logging

from AppKit import NSWorkspace
from ApplicationServices import AXIsProcessTrusted
from Quartz import (
    CGEventCreateKeyboardEvent,
    CGEventPost,
    CGEventSetFlags,
    kCGEventFlagMaskCommand,
    kCGHIDEventTap,
)

from .backend import Backend, CaptureTarget, Geometry
from .errors import CommandFailed, CopyFailed, Timeout
from .escaping import applescript_string
from .shell import run_command
from .strategies import (
    InjectionStrategy,
    clipboard_round_trip,
    file_staged,
    line_by_line,
)

logger = logging.getLogger(__name__)

# macOS virtual key codes
_KEY_C = 0x08
_KEY_V = 0x09
_KEY_RETURN = 0x24
_MODIFIER_KEYS = (
    0x37,  # command
    0x36,  # right command
    0x38,  # shift
    0x3C,  # right shift
    0x3A,  # option
    0x3D,  # right option
    0x3B,  # control
    0x3E,  # right control
)

_TYPE_FILE_SCRIPT = (
    "on run argv",
    "set t to read (POSIX file (item 1 of argv)) as «class utf8»",
    'tell application "System Events" to keystroke t',
    "end run",
)


def _send_keystroke(key_code: int, flags: int = 0) -> None:
    """Send a single keystroke via CGEvent."""
    event_down = CGEventCreateKeyboardEvent(None, key_code, True)
    event_up = CGEventCreateKeyboardEvent(None, key_code, False)

    if flags:
        CGEventSetFlags(event_down, flags)
        CGEventSetFlags(event_up, flags)

    CGEventPost(kCGHIDEventTap, event_down)
    CGEventPost(kCGHIDEventTap, event_up)


def _send_key_up(key_code: int) -> None:
    event_up = CGEventCreateKeyboardEvent(None, key_code, False)
    CGEventSetFlags(event_up, 0)
    CGEventPost(kCGHIDEventTap, event_up)


def frontmost_application() -> tuple[str, str]:
    """Return (name, bundle id) of the frontmost application."""
    app = NSWorkspace.sharedWorkspace().frontmostApplication()
    if app is None:
        return "", ""
    return app.localizedName() or "", app.bundleIdentifier() or ""


def parse_geometry(output: str) -> Geometry | None:
    try:
        x, y, width, height = (int(float(v)) for v in output.strip().split(","))
    except ValueError:
        return None
    return Geometry(x, y, width, height)


class MacBackend(Backend):
    """Requires the Accessibility permission for synthetic key events."""

    name = "macos"

    async def _osascript(self, *lines: str, args=(), timeout=None):
        cmd = ["osascript"]
        for line in lines:
            cmd += ["-e", line]
        return await run_command([*cmd, *args], timeout=timeout or self.type_timeout)

    async def capture(self) -> CaptureTarget:
        if not AXIsProcessTrusted():
            raise CopyFailed("Accessibility permission not granted")
        name, bundle_id = frontmost_application()
        _send_keystroke(_KEY_C, flags=kCGEventFlagMaskCommand)
        logger.debug("Cmd+C sent to %s", name or "unknown app")
        return CaptureTarget(app_name=name or None, bundle_id=bundle_id or None)

    async def focus(self, target) -> None:
        """Bring ``target`` back to the front if another app took focus."""
        if target is None or not target.bundle_id:
            return
        _, current = frontmost_application()
        if current == target.bundle_id:
            return
        await self._osascript(
            f"tell application id {applescript_string(target.bundle_id)} to activate"
        )

    async def keystroke(self, text, target):
        await self.focus(target)
        await self._osascript(
            f'tell application "System Events" to keystroke {applescript_string(text)}'
        )

    async def keystroke_file(self, path, target):
        await self.focus(target)
        await self._osascript(*_TYPE_FILE_SCRIPT, args=[path])

    async def press_return(self, target):
        _send_keystroke(_KEY_RETURN)

    async def paste(self, target):
        await self.focus(target)
        _send_keystroke(_KEY_V, flags=kCGEventFlagMaskCommand)

    def strategies(self) -> list:
        return [
            InjectionStrategy(
                "applescript-keystroke", self.keystroke,
                requires=("osascript",), single_line=True,
            ),
            InjectionStrategy(
                "applescript-file", file_staged(self.keystroke_file),
                requires=("osascript",),
            ),
            InjectionStrategy(
                "applescript-lines", line_by_line(self.keystroke, self.press_return),
                requires=("osascript",),
            ),
            InjectionStrategy(
                "clipboard-paste",
                clipboard_round_trip(self.clipboard, self.paste, self.restore_delay),
                check=AXIsProcessTrusted,
            ),
        ]

    async def release_modifiers(self, target):
        for key_code in _MODIFIER_KEYS:
            _send_key_up(key_code)

    async def geometry(self, target):
        if target is not None and target.bundle_id:
            process = (
                "first application process whose bundle identifier is "
                + applescript_string(target.bundle_id)
            )
        else:
            process = "first application process whose frontmost is true"
        try:
            result = await self._osascript(
                'tell application "System Events"',
                f"set p to {process}",
                "set {x, y} to position of window 1 of p",
                "set {w, h} to size of window 1 of p",
                'return (x as text) & "," & (y as text) & "," & (w as text) & "," & (h as text)',
                "end tell",
                timeout=self.probe_timeout,
            )
        except (CommandFailed, Timeout) as e:
            logger.debug("Window geometry unavailable: %s", e)
            return None
        return parse_geometry(result.stdout)

    def required_tools(self):
        return ("osascript",)
