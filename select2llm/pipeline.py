"""One shortcut invocation: copy, read, generate, coalesce, inject.

Control flow::

    trigger -> copy -> settle -> clipboard -> settle -> prompt
            -> LLM stream -> coalescer -> queue -> injection session

Chunks go through a single queue with one consumer, so they are typed in
the order the model produced them.
"""

import asyncio
import enum
import inspect
import logging
import time

from .coalescer import StreamCoalescer
from .config import ShortcutBinding, build_prompt
from .errors import Cancelled

logger = logging.getLogger(__name__)


class State(enum.Enum):
    IDLE = "idle"
    CAPTURING = "capturing"
    STREAMING = "streaming"
    INJECTING = "injecting"


class Outcome(enum.Enum):
    REJECTED = "rejected"
    EMPTY = "empty"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class PipelineState:
    """Explicit state machine guarding against overlapping invocations."""

    def __init__(self, debounce: float = 0.8, clock=time.monotonic):
        self.debounce = debounce
        self._clock = clock
        self._last_trigger: float | None = None
        self.state = State.IDLE
        self.cancelled = False

    @property
    def busy(self) -> bool:
        return self.state is not State.IDLE

    def try_begin(self) -> bool:
        now = self._clock()
        if self.busy:
            logger.info("Already %s, ignoring trigger", self.state.value)
            return False
        if self._last_trigger is not None and now - self._last_trigger < self.debounce:
            logger.debug("Trigger within %gs of the previous one, ignoring", self.debounce)
            return False
        self._last_trigger = now
        self.cancelled = False
        self.state = State.CAPTURING
        return True

    def enter(self, state: State) -> None:
        if self.state is not State.IDLE:
            self.state = state

    def check_cancelled(self) -> None:
        if self.cancelled:
            raise Cancelled("Invocation cancelled")

    def reset(self) -> None:
        self.state = State.IDLE


class ShortcutPipeline:
    def __init__(self, backend, copier, clipboard, llm, injector,
                 config: dict | None = None, on_start=None, on_stop=None,
                 clock=time.monotonic, sleep=asyncio.sleep):
        config = config or {}
        self.backend = backend
        self.copier = copier
        self.clipboard = clipboard
        self.llm = llm
        self.injector = injector
        self.delays = config.get("delays", {})
        self.streaming = config.get("streaming", {})
        self.keep_alive = config.get("ollama", {}).get("keep_alive", 5)
        self.on_start = on_start
        self.on_stop = on_stop
        self.state = PipelineState(self.delays.get("debounce", 0.8), clock=clock)
        self._clock = clock
        self._sleep = sleep
        self._coalescer: StreamCoalescer | None = None
        self._producer: asyncio.Task | None = None
        self.session = None

    async def _delay(self, name: str) -> None:
        seconds = self.delays.get(name, 0.25)
        if seconds > 0:
            await self._sleep(seconds)

    async def _hook(self, hook, *args) -> None:
        if hook is None:
            return
        try:
            result = hook(*args)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.warning("Overlay hook failed: %s", e)

    async def _geometry(self, target):
        try:
            return await self.backend.geometry(target)
        except Exception as e:
            logger.debug("Geometry probe failed: %s", e)
            return None

    async def run(self, binding: ShortcutBinding) -> Outcome:
        """Run one invocation of ``binding``.

        Concurrent and debounced triggers return REJECTED without doing
        anything. Copy and LLM errors propagate to the caller.
        """
        if not self.state.try_begin():
            return Outcome.REJECTED

        started = False
        try:
            logger.info("Shortcut %s triggered", binding.label)
            await self._delay("before_copy")
            target = await self.copier.capture()
            await self._delay("after_copy")
            selection = await self.clipboard.read()
            await self._delay("before_process")
            self.state.check_cancelled()

            if not selection:
                logger.warning("No text selected for %s", binding.label)
                return Outcome.EMPTY

            geometry = await self._geometry(target) if binding.overlay else None
            await self._hook(self.on_start, binding, geometry)
            started = True

            prompt = build_prompt(binding.prompt, selection)
            await self._stream(prompt, binding, target)
            return Outcome.CANCELLED if self.state.cancelled else Outcome.COMPLETED
        except Cancelled:
            logger.info("Shortcut %s cancelled", binding.label)
            return Outcome.CANCELLED
        finally:
            self._coalescer = None
            self._producer = None
            self.state.reset()
            if started:
                await self._hook(self.on_stop, binding)

    async def _stream(self, prompt: str, binding: ShortcutBinding, target) -> None:
        coalescer = StreamCoalescer.for_model(
            binding.model, self.streaming,
            wayland=self.backend.profile.is_wayland, clock=self._clock,
        )
        self._coalescer = coalescer
        queue: asyncio.Queue = asyncio.Queue()

        async with self.injector.session(target) as session:
            self.session = session
            consumer = asyncio.create_task(self._consume(queue, session))
            self._producer = asyncio.create_task(
                self._produce(prompt, binding, coalescer, queue)
            )
            try:
                await self._producer
            except asyncio.CancelledError:
                if not (self.state.cancelled and self._producer.cancelled()):
                    raise
            finally:
                queue.put_nowait(None)
                await consumer

    async def _produce(self, prompt, binding, coalescer, queue) -> None:
        self.state.enter(State.STREAMING)
        async for token in self.llm.generate(
            prompt, binding.model, binding.temperature, self.keep_alive,
        ):
            if self.state.cancelled:
                return
            chunk = coalescer.feed(token.text)
            if chunk:
                queue.put_nowait(chunk)
            if token.done:
                break
        if not self.state.cancelled:
            tail = coalescer.finish()
            if tail:
                queue.put_nowait(tail)

    async def _consume(self, queue: asyncio.Queue, session) -> None:
        while True:
            chunk = await queue.get()
            if chunk is None:
                return
            if self.state.cancelled:
                continue
            self.state.enter(State.INJECTING)
            await session.inject(chunk)
            if not self.state.cancelled:
                self.state.enter(State.STREAMING)

    def cancel(self) -> bool:
        """Abort the running invocation. Chunks not yet typed are dropped."""
        if not self.state.busy:
            return False
        self.state.cancelled = True
        self.llm.cancel()
        if self._coalescer is not None:
            self._coalescer.cancel()
        if self._producer is not None and not self._producer.done():
            self._producer.cancel()
        logger.info("Cancelling %s invocation", self.state.state.value)
        return True
