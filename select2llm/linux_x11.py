"""Linux X11 backend built on xdotool."""

import logging

from .backend import Backend, CaptureTarget, Geometry
from .errors import CommandFailed, CopyFailed, StaleTarget, Timeout, WindowNotFound
from .shell import run_command
from .strategies import (
    InjectionStrategy,
    clipboard_round_trip,
    file_staged,
    line_by_line,
)

logger = logging.getLogger(__name__)

_GLOBAL_MODIFIERS = (
    "Control_L", "Control_R", "Shift_L", "Shift_R", "Alt_L", "Alt_R",
    "ISO_Level3_Shift", "Super_L", "Super_R",
)

# xdotool prints X errors such as "X Error of failed request:  BadWindow"
_STALE_MARKERS = ("BadWindow", "BadMatch")


def parse_geometry(output: str) -> Geometry | None:
    """Parse ``xdotool getwindowgeometry --shell`` output."""
    values = {}
    for line in output.splitlines():
        key, sep, value = line.partition("=")
        if sep:
            values[key.strip()] = value.strip()
    try:
        return Geometry(
            x=int(values["X"]),
            y=int(values["Y"]),
            width=int(values["WIDTH"]),
            height=int(values["HEIGHT"]),
        )
    except (KeyError, ValueError):
        return None


class X11Backend(Backend):
    """Copy and type through xdotool, clipboard through xclip/xsel."""

    name = "x11"

    def _window_args(self, target):
        if target is not None and target.window_id:
            return ["--window", target.window_id]
        return []

    async def capture(self) -> CaptureTarget:
        try:
            result = await run_command(
                ["xdotool", "getwindowfocus"], timeout=self.probe_timeout,
            )
        except (CommandFailed, Timeout) as e:
            raise WindowNotFound(f"Could not get focused window: {e}") from e
        window_id = result.stdout.strip()
        if not window_id or window_id == "0":
            raise WindowNotFound("No focused window")

        try:
            await run_command(
                ["xdotool", "key", "--clearmodifiers", "--window", window_id, "ctrl+c"],
                timeout=self.type_timeout,
            )
        except (CommandFailed, Timeout) as e:
            raise CopyFailed(f"Could not send ctrl+c: {e}") from e
        logger.debug("ctrl+c sent to window %s", window_id)
        return CaptureTarget(window_id=window_id)

    async def _xdotool(self, command, target, *args):
        window = self._window_args(target)
        try:
            await run_command(
                ["xdotool", command, "--clearmodifiers", *window, *args],
                timeout=self.type_timeout,
            )
        except CommandFailed as e:
            if window and any(m in (e.stderr or "") for m in _STALE_MARKERS):
                raise StaleTarget(f"Window {target.window_id} is gone") from e
            raise

    async def type_text(self, text, target):
        await self._xdotool("type", target, "--", text)

    async def type_file(self, path, target):
        await self._xdotool("type", target, "--file", path)

    async def press_key(self, key, target):
        await self._xdotool("key", target, key)

    async def press_return(self, target):
        await self.press_key("Return", target)

    async def paste(self, target):
        await self.press_key("shift+Insert", target)

    def _has_clipboard_tool(self) -> bool:
        return self.probe.available("xclip") or self.probe.available("xsel")

    def strategies(self) -> list:
        return [
            InjectionStrategy(
                "xdotool-type", self.type_text, requires=("xdotool",), single_line=True,
            ),
            InjectionStrategy(
                "xdotool-file", file_staged(self.type_file), requires=("xdotool",),
            ),
            InjectionStrategy(
                "xdotool-lines", line_by_line(self.type_text, self.press_return),
                requires=("xdotool",),
            ),
            InjectionStrategy(
                "clipboard-paste",
                clipboard_round_trip(self.clipboard, self.paste, self.restore_delay),
                requires=("xdotool",),
                check=self._has_clipboard_tool,
            ),
        ]

    async def release_modifiers(self, target):
        if target is not None and target.window_id:
            await run_command(
                ["xdotool", "keyup", "--window", target.window_id, "ctrl", "shift", "alt"],
                timeout=self.probe_timeout, check=False,
            )
        await run_command(
            ["xdotool", "keyup", *_GLOBAL_MODIFIERS],
            timeout=self.probe_timeout, check=False,
        )

    async def geometry(self, target):
        if target is None or not target.window_id:
            return None
        try:
            result = await run_command(
                ["xdotool", "getwindowgeometry", "--shell", target.window_id],
                timeout=self.probe_timeout,
            )
        except (CommandFailed, Timeout) as e:
            logger.debug("Window geometry unavailable: %s", e)
            return None
        return parse_geometry(result.stdout)

    def required_tools(self):
        return ("xdotool", "xclip", "xsel")
