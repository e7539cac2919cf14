"""Copy trigger: send the copy keystroke and remember the target window."""

import logging

from .errors import CopyFailed

logger = logging.getLogger(__name__)


class CopyTrigger:
    """Wraps the backend copy so the modifier sanitizer runs exactly once
    after every attempt, whether it succeeded or not."""

    def __init__(self, backend, sanitizer):
        self.backend = backend
        self.sanitizer = sanitizer

    async def capture(self):
        """Return the CaptureTarget (None on Wayland).

        Raises CopyFailed (or its WindowNotFound subclass).
        """
        target = None
        try:
            target = await self.backend.capture()
        except CopyFailed:
            raise
        except Exception as e:
            raise CopyFailed(f"Copy trigger failed: {e}") from e
        finally:
            await self.sanitizer.clear(target)
        logger.debug("Captured %s", target or "no target (global copy)")
        return target
