"""Building blocks for the per-platform injection strategy tables."""

import asyncio
import contextlib
import logging
import os
import tempfile
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

from .errors import PartialDelivery
from .escaping import is_ascii, is_bmp

logger = logging.getLogger(__name__)

Action = Callable[[str, Any], Awaitable[None]]


@dataclass(frozen=True)
class InjectionStrategy:
    """One way of getting text into the target window.

    ``action`` raises on failure; returning normally means the text was
    delivered. ``requires`` lists executables that must be on PATH.
    """

    name: str
    action: Action
    requires: tuple[str, ...] = ()
    ascii_only: bool = False
    bmp_only: bool = False
    single_line: bool = False
    check: Callable[[], bool] | None = field(default=None, compare=False)

    def eligible(self, text: str, probe) -> bool:
        if self.single_line and "\n" in text:
            return False
        if self.ascii_only and not is_ascii(text):
            return False
        if self.bmp_only and not is_bmp(text):
            return False
        if self.requires and not probe.available(*self.requires):
            return False
        if self.check is not None and not self.check():
            return False
        return True


@contextlib.contextmanager
def staged_text_file(text: str):
    """Write ``text`` to a UTF-8 temp file (no BOM) and yield its path.

    The file is removed when the block exits, whatever the outcome.
    """
    fd, path = tempfile.mkstemp(prefix="select2llm-", suffix=".txt")
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as f:
            f.write(text)
        yield path
    finally:
        try:
            os.unlink(path)
        except OSError as e:
            logger.warning("Could not remove temp file %s: %s", path, e)


def file_staged(type_file) -> Action:
    """Wrap a ``type_file(path, target)`` primitive into a text action."""

    async def action(text, target):
        with staged_text_file(text) as path:
            await type_file(path, target)

    return action


def clipboard_round_trip(clipboard, paste, restore_delay: float = 0.3) -> Action:
    """Paste via the clipboard, restoring the previous contents afterwards.

    A user copying something during ``restore_delay`` loses that copy; the
    window is kept short.
    """

    async def action(text, target):
        saved = await clipboard.snapshot()
        try:
            await clipboard.write(text)
            await asyncio.sleep(0.05)
            await paste(target)
            await asyncio.sleep(restore_delay)
        finally:
            await clipboard.restore(saved)

    return action


def line_by_line(type_line: Action, press_return) -> Action:
    """Type each line separately with a Return key event in between.

    A failure after some lines went through raises PartialDelivery with the
    number of characters of the original text already on screen.
    """

    async def action(text, target):
        lines = text.split("\n")
        last = len(lines) - 1
        delivered = 0
        try:
            for i, segment in enumerate(lines):
                line = segment.rstrip("\r")
                if line:
                    await type_line(line, target)
                delivered += len(segment)
                if i < last:
                    await press_return(target)
                    delivered += 1
        except Exception as e:
            if not delivered:
                raise
            raise PartialDelivery(
                f"Stopped after {delivered} of {len(text)} characters: {e}",
                delivered=delivered,
            ) from e

    return action
