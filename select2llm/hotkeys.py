"""Global shortcut registration via pynput."""

import functools
import logging

from .config import ShortcutBinding
from .environment import OS
from .errors import ConfigError

logger = logging.getLogger(__name__)


def combination(binding: ShortcutBinding, os_kind: OS | None = None) -> str:
    """pynput hotkey string for ``binding``, e.g. ``<ctrl>+<shift>+k``.

    On macOS the "ctrl" modifier maps to Command.
    """
    parts = []
    if binding.ctrl:
        parts.append("<cmd>" if os_kind is OS.MACOS else "<ctrl>")
    if binding.shift:
        parts.append("<shift>")
    if binding.alt:
        parts.append("<alt>")
    key = binding.key.lower()
    parts.append(f"<{key}>" if len(key) > 1 else key)
    return "+".join(parts)


class HotkeyListener:
    """Runs pynput's listener thread and dispatches to the callbacks.

    Callbacks run on the listener thread and must hand work off quickly.
    """

    def __init__(self, bindings: list[ShortcutBinding], on_trigger,
                 cancel_hotkey: str | None = "<esc>", on_cancel=None,
                 os_kind: OS | None = None):
        self.hotkeys = {}
        for binding in bindings:
            self._add(combination(binding, os_kind), functools.partial(on_trigger, binding))
        if cancel_hotkey and on_cancel is not None:
            self._add(cancel_hotkey, on_cancel)
        self._listener = None

    def _add(self, combo: str, callback) -> None:
        if combo in self.hotkeys:
            logger.warning("Hotkey %s registered twice, keeping the first", combo)
            return
        self.hotkeys[combo] = callback

    def start(self) -> None:
        # Imported here: pynput needs a display connection at import time.
        from pynput import keyboard

        for combo in self.hotkeys:
            try:
                keyboard.HotKey.parse(combo)
            except ValueError as e:
                raise ConfigError(f"Invalid hotkey {combo!r}: {e}") from e
        self._listener = keyboard.GlobalHotKeys(self.hotkeys)
        self._listener.start()
        logger.info("Listening for %s", ", ".join(self.hotkeys) or "no hotkeys")

    def stop(self) -> None:
        if self._listener is not None:
            self._listener.stop()
            self._listener = None
