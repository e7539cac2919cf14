"""System clipboard access (read selection, write, snapshot/restore)."""

import asyncio
import logging

import pyperclip

logger = logging.getLogger(__name__)

DEFAULT_MAX_SIZE = 1024 * 1024


class Clipboard:
    """Reads and writes the system clipboard as UTF-8 text.

    pyperclip shells out to xclip/xsel/wl-clipboard/pbcopy or calls the
    Win32 API; calls run in a worker thread so the event loop keeps going.
    """

    def __init__(self, config: dict | None = None, backend=None):
        config = config or {}
        self.max_size = config.get("max_size", DEFAULT_MAX_SIZE)
        self.timeout = config.get("timeout", 5.0)
        self._paste = backend.paste if backend else pyperclip.paste
        self._copy = backend.copy if backend else pyperclip.copy

    async def _call(self, fn, *args):
        return await asyncio.wait_for(asyncio.to_thread(fn, *args), self.timeout)

    async def read(self) -> str:
        """Return the clipboard text, or "" if there is nothing usable."""
        try:
            content = await self._call(self._paste)
        except (pyperclip.PyperclipException, asyncio.TimeoutError, OSError) as e:
            logger.debug("Clipboard read failed: %s", e)
            return ""
        if not isinstance(content, str):
            return ""
        if len(content) > self.max_size:
            logger.warning(
                "Clipboard content too large (%d chars), truncating to %d",
                len(content), self.max_size,
            )
            content = content[: self.max_size]
        return content.strip()

    async def write(self, text: str) -> None:
        await self._call(self._copy, text)

    async def snapshot(self) -> str | None:
        """Return the current contents for a later restore(), or None."""
        try:
            return await self._call(self._paste)
        except (pyperclip.PyperclipException, asyncio.TimeoutError, OSError) as e:
            logger.debug("Clipboard snapshot failed: %s", e)
            return None

    async def restore(self, snapshot: str | None) -> None:
        if snapshot is None:
            return
        try:
            await self.write(snapshot)
        except (pyperclip.PyperclipException, asyncio.TimeoutError, OSError) as e:
            logger.warning("Could not restore clipboard: %s", e)
