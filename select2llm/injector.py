"""Text injection into the target window through an ordered strategy chain."""

import asyncio
import contextlib
import logging
from dataclasses import dataclass, field

from .errors import InjectionFailed, PartialDelivery, StaleTarget, Timeout
from .notify import notify

logger = logging.getLogger(__name__)

EMERGENCY = "clipboard-only"


@dataclass
class InjectionResult:
    delivered: bool
    strategy: str
    errors: list = field(default_factory=list)

    @property
    def error(self) -> InjectionFailed | None:
        if self.delivered:
            return None
        detail = "; ".join(f"{name}: {err}" for name, err in self.errors) or "no eligible strategy"
        return InjectionFailed(f"All strategies failed ({detail})", strategy=self.strategy)


class InjectionSession:
    """Delivers the chunks of one shortcut invocation to one target.

    Strategies that fail for reasons other than a timeout are skipped for the
    rest of the session. A stale target is dropped and the chain continues
    untargeted. When a strategy got part of the text through, the next one
    only gets the rest. A timeout leaves the amount typed unknown, so the
    rest of the chunk goes to the clipboard instead of being retyped.
    """

    def __init__(self, injector: "Injector", target):
        self.injector = injector
        self.target = target
        self.failed: set[str] = set()
        self.history: list[InjectionResult] = []
        self._undelivered: list[str] = []
        self._notified = False

    async def inject(self, text: str) -> InjectionResult:
        if not text:
            return InjectionResult(True, "noop")
        errors = []
        probe = self.injector.backend.probe
        for strategy in self.injector.strategies:
            if strategy.name in self.failed or not strategy.eligible(text, probe):
                continue
            try:
                await strategy.action(text, self.target)
            except PartialDelivery as e:
                text = text[e.delivered:]
                error = e.__cause__ or e
                logger.warning("Strategy %s failed after %d characters: %s",
                               strategy.name, e.delivered, error)
            except Exception as e:
                error = e
                logger.warning("Strategy %s failed: %s", strategy.name, e)
            else:
                result = InjectionResult(True, strategy.name, errors)
                self.history.append(result)
                return result

            errors.append((strategy.name, error))
            if isinstance(error, StaleTarget):
                logger.warning("Target %s is gone, continuing untargeted", self.target)
                self.target = None
            elif isinstance(error, Timeout):
                # the killed tool may have typed any prefix of the text
                break
            else:
                self.failed.add(strategy.name)

        await self._emergency(text)
        result = InjectionResult(False, EMERGENCY, errors)
        logger.error("%s", result.error)
        self.history.append(result)
        return result

    async def _emergency(self, text: str) -> None:
        """Put everything that could not be typed on the clipboard."""
        self._undelivered.append(text)
        try:
            await self.injector.clipboard.write("".join(self._undelivered))
        except Exception as e:
            logger.error("Could not copy undelivered text to clipboard: %s", e)
            return
        if not self._notified:
            self._notified = True
            self.injector.notifier(
                "Could not type the response. It was copied to the clipboard, "
                "paste it manually.",
                os_kind=self.injector.backend.profile.os,
            )


class Injector:
    """Owns the platform strategy table, built once from the backend.

    Only one session runs at a time; a second one waits for the first.
    """

    def __init__(self, backend, sanitizer, clipboard, config: dict | None = None,
                 notifier=notify):
        config = config or {}
        self.backend = backend
        self.sanitizer = sanitizer
        self.clipboard = clipboard
        self.notifier = notifier
        self.strategies = self._build_table(backend.strategies(), config)
        self._lock = asyncio.Lock()
        logger.debug(
            "Injection strategies for %s: %s",
            backend.name, ", ".join(s.name for s in self.strategies),
        )

    def _build_table(self, strategies, config) -> list:
        order = (config.get("order") or {}).get(self.backend.name)
        if not order:
            return list(strategies)
        by_name = {s.name: s for s in strategies}
        unknown = [name for name in order if name not in by_name]
        if unknown:
            logger.warning("Ignoring unknown %s strategies: %s", self.backend.name, unknown)
        return [by_name[name] for name in order if name in by_name]

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @contextlib.asynccontextmanager
    async def session(self, target):
        async with self._lock:
            session = InjectionSession(self, target)
            try:
                yield session
            finally:
                await self.sanitizer.clear(session.target)

    async def inject(self, text: str, target) -> InjectionResult:
        """Deliver ``text`` as a single-chunk session."""
        async with self.session(target) as session:
            return await session.inject(text)
