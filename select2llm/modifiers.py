"""Release ctrl/shift/alt after synthetic key sequences.

Synthetic key-downs can leave the OS believing a modifier is still held when
the matching key-up went to another window; every copy and every injection
session ends with an explicit release.
"""

import logging
import time

logger = logging.getLogger(__name__)


class ModifierSanitizer:
    """Idempotent, never raises. Logs at most once per ``log_interval``."""

    def __init__(self, backend, log_interval: float = 30.0, clock=time.monotonic):
        self.backend = backend
        self.log_interval = log_interval
        self._clock = clock
        self._last_log: float | None = None
        self._suppressed = 0
        self.calls = 0

    def _log(self, message, *args) -> None:
        now = self._clock()
        if self._last_log is not None and now - self._last_log < self.log_interval:
            self._suppressed += 1
            return
        if self._suppressed:
            message += " (%d similar messages suppressed)"
            args = (*args, self._suppressed)
        logger.debug(message, *args)
        self._last_log = now
        self._suppressed = 0

    async def clear(self, target=None) -> None:
        self.calls += 1
        try:
            await self.backend.release_modifiers(target)
        except Exception as e:
            self._log("Modifier release failed: %s", e)
        else:
            self._log("Released modifiers for %s", target or "global session")
