"""Linux Wayland backend built on wtype / ydotool and wl-clipboard.

Wayland does not let clients see or address other windows: the copy is a
global keystroke, there is no CaptureTarget and no window geometry.
"""

import logging

from .backend import Backend
from .errors import CommandFailed, CopyFailed, Timeout
from .shell import run_command, spawn_detached
from .strategies import (
    InjectionStrategy,
    clipboard_round_trip,
    file_staged,
    line_by_line,
)

logger = logging.getLogger(__name__)

# Linux input event codes (press = :1, release = :0)
_KEY_LEFTCTRL = 29
_KEY_RIGHTCTRL = 97
_KEY_LEFTSHIFT = 42
_KEY_RIGHTSHIFT = 54
_KEY_LEFTALT = 56
_KEY_RIGHTALT = 100
_KEY_LEFTMETA = 125
_KEY_RIGHTMETA = 126
_KEY_C = 46
_KEY_ENTER = 28
_KEY_INSERT = 110

_MODIFIER_CODES = (
    _KEY_LEFTCTRL, _KEY_RIGHTCTRL, _KEY_LEFTSHIFT, _KEY_RIGHTSHIFT,
    _KEY_LEFTALT, _KEY_RIGHTALT, _KEY_LEFTMETA, _KEY_RIGHTMETA,
)


def _chord(*codes: int) -> list[str]:
    """ydotool key arguments pressing ``codes`` in order, releasing in reverse."""
    return [f"{c}:1" for c in codes] + [f"{c}:0" for c in reversed(codes)]


class WaylandBackend(Backend):
    """Global keystrokes through wtype (virtual-keyboard protocol) or
    ydotool (uinput), clipboard through wl-copy/wl-paste."""

    name = "wayland"

    async def ensure_ydotoold(self) -> None:
        """Start the ydotool daemon if it is installed but not running."""
        if not self.probe.available("ydotool", "ydotoold"):
            return
        try:
            result = await run_command(
                ["pgrep", "-x", "ydotoold"], timeout=self.probe_timeout, check=False,
            )
        except (CommandFailed, Timeout) as e:
            logger.debug("Could not check for ydotoold: %s", e)
            return
        if result.returncode != 0:
            logger.info("Starting ydotoold")
            spawn_detached(["ydotoold"])

    async def capture(self) -> None:
        await self.ensure_ydotoold()
        if self.probe.available("wtype"):
            cmd = ["wtype", "-M", "ctrl", "c", "-m", "ctrl"]
        elif self.probe.available("ydotool"):
            cmd = ["ydotool", "key", *_chord(_KEY_LEFTCTRL, _KEY_C)]
        else:
            raise CopyFailed("Neither wtype nor ydotool is installed")
        try:
            await run_command(cmd, timeout=self.type_timeout)
        except (CommandFailed, Timeout) as e:
            raise CopyFailed(f"Could not send ctrl+c: {e}") from e
        logger.debug("ctrl+c sent with %s", cmd[0])
        return None

    async def wtype_text(self, text, target):
        await run_command(["wtype", "--", text], timeout=self.type_timeout)

    async def wtype_file(self, path, target):
        with open(path, "rb") as f:
            data = f.read()
        await run_command(["wtype", "-"], input=data, timeout=self.type_timeout)

    async def ydotool_text(self, text, target):
        await run_command(["ydotool", "type", "--", text], timeout=self.type_timeout)

    async def ydotool_file(self, path, target):
        await run_command(["ydotool", "type", "--file", path], timeout=self.type_timeout)

    async def wtype_return(self, target):
        await run_command(["wtype", "-k", "Return"], timeout=self.type_timeout)

    async def ydotool_return(self, target):
        await run_command(["ydotool", "key", *_chord(_KEY_ENTER)], timeout=self.type_timeout)

    async def paste(self, target):
        if self.probe.available("wtype"):
            cmd = ["wtype", "-M", "shift", "-k", "Insert", "-m", "shift"]
        else:
            cmd = ["ydotool", "key", *_chord(_KEY_LEFTSHIFT, _KEY_INSERT)]
        await run_command(cmd, timeout=self.type_timeout)

    def _has_key_tool(self) -> bool:
        return self.probe.available("wtype") or self.probe.available("ydotool")

    def strategies(self) -> list:
        return [
            InjectionStrategy("wtype", self.wtype_text, requires=("wtype",)),
            InjectionStrategy(
                "wtype-stdin", file_staged(self.wtype_file), requires=("wtype",),
            ),
            InjectionStrategy(
                "ydotool-type", self.ydotool_text, requires=("ydotool",),
                ascii_only=True, single_line=True,
            ),
            InjectionStrategy(
                "ydotool-file", file_staged(self.ydotool_file), requires=("ydotool",),
                ascii_only=True,
            ),
            InjectionStrategy(
                "clipboard-paste",
                clipboard_round_trip(self.clipboard, self.paste, self.restore_delay),
                requires=("wl-copy",),
                check=self._has_key_tool,
            ),
            InjectionStrategy(
                "wtype-lines", line_by_line(self.wtype_text, self.wtype_return),
                requires=("wtype",),
            ),
            InjectionStrategy(
                "ydotool-lines", line_by_line(self.ydotool_text, self.ydotool_return),
                requires=("ydotool",), ascii_only=True,
            ),
        ]

    async def release_modifiers(self, target):
        if self.probe.available("ydotool"):
            await run_command(
                ["ydotool", "key", *[f"{c}:0" for c in _MODIFIER_CODES]],
                timeout=self.probe_timeout, check=False,
            )
        if self.probe.available("wtype"):
            await run_command(
                ["wtype", "-m", "ctrl", "-m", "shift", "-m", "alt"],
                timeout=self.probe_timeout, check=False,
            )

    def required_tools(self):
        return ("wtype", "ydotool", "ydotoold", "wl-copy", "wl-paste")
