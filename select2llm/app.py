"""Main Select2LLM application - wires the components to global shortcuts."""

import asyncio
import logging
import signal

from .backend import create_backend
from .capture import CopyTrigger
from .clipboard import Clipboard
from .config import load_config, parse_shortcuts
from .environment import detect
from .errors import LLMError, PlatformUnsupported, Select2LLMError
from .hotkeys import HotkeyListener
from .injector import Injector
from .llm import OllamaClient, check_availability
from .modifiers import ModifierSanitizer
from .notify import notify
from .pipeline import ShortcutPipeline

logger = logging.getLogger(__name__)


class Select2LLMApp:
    """Select text, press a shortcut, get the LLM's answer typed back."""

    def __init__(self, config_path: str | None = None, config: dict | None = None,
                 environ=None, notifier=notify):
        self.config = config if config is not None else load_config(config_path)
        self.profile = detect(environ)
        self.notify = notifier
        self.bindings = parse_shortcuts(self.config)

        self.clipboard = Clipboard(self.config["clipboard"])
        self.llm = OllamaClient(self.config["ollama"])
        self.backend = None
        self.pipeline = None
        try:
            self.backend = create_backend(
                self.profile, self.config["injection"], clipboard=self.clipboard,
            )
        except PlatformUnsupported as e:
            logger.warning("%s. Shortcuts are disabled.", e)
            self.notify(f"{e}. Select2LLM cannot copy or type here.",
                        os_kind=self.profile.os)
            return

        self.sanitizer = ModifierSanitizer(
            self.backend, log_interval=self.config["modifiers"]["log_interval"],
        )
        self.injector = Injector(
            self.backend, self.sanitizer, self.clipboard,
            config=self.config["injection"], notifier=self._notify,
        )
        self.pipeline = ShortcutPipeline(
            self.backend,
            CopyTrigger(self.backend, self.sanitizer),
            self.clipboard,
            self.llm,
            self.injector,
            config=self.config,
        )
        self._loop: asyncio.AbstractEventLoop | None = None
        self._stop: asyncio.Event | None = None

    def _notify(self, message: str, **kwargs) -> None:
        self.notify(message, os_kind=self.profile.os)

    # -- hotkey callbacks (listener thread) --------------------------------

    def _on_hotkey(self, binding) -> None:
        if self._loop is None:
            return
        asyncio.run_coroutine_threadsafe(self.handle(binding), self._loop)

    def _on_cancel(self) -> None:
        if self._loop is not None:
            self._loop.call_soon_threadsafe(self.pipeline.cancel)

    # -- event loop --------------------------------------------------------

    async def handle(self, binding) -> None:
        """Run one invocation; nothing raised here reaches the listener."""
        try:
            outcome = await self.pipeline.run(binding)
            logger.info("Shortcut %s: %s", binding.label, outcome.value)
        except LLMError as e:
            logger.error("LLM error: %s", e)
            self._notify(str(e))
        except Select2LLMError as e:
            logger.error("%s failed: %s", binding.label, e)
            self._notify(str(e))
        except Exception as e:
            logger.exception("Unexpected error running %s", binding.label)
            self._notify(f"Error: {str(e)[:60]}")

    async def check_ollama(self) -> bool:
        """Warn once at startup if Ollama or the default model is missing."""
        host = self.llm.host
        if not await check_availability(host):
            logger.warning("Ollama is not running on %s", host)
            self._notify(f"Ollama is not running on {host}")
            return False
        models = {b.model for b in self.bindings} or {self.llm.model}
        for model in sorted(models):
            if not await self.llm.is_model_available(model):
                logger.warning("Ollama running but model '%s' not found", model)
                self._notify(f"Model not found: {model}")
        return True

    async def run_async(self) -> None:
        self._loop = asyncio.get_running_loop()
        self._stop = asyncio.Event()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                self._loop.add_signal_handler(sig, self._stop.set)
            except (NotImplementedError, RuntimeError):
                signal.signal(sig, lambda *_: self._loop.call_soon_threadsafe(self._stop.set))

        listener = HotkeyListener(
            self.bindings, self._on_hotkey,
            cancel_hotkey=self.config.get("cancel_hotkey"),
            on_cancel=self._on_cancel,
            os_kind=self.profile.os,
        )
        listener.start()
        try:
            await self.check_ollama()
            logger.info("Ready. Select text and press a shortcut.")
            await self._stop.wait()
        finally:
            listener.stop()
            self.pipeline.cancel()
            logger.info("Stopped.")

    def run(self) -> None:
        """Start the application (blocks until interrupted)."""
        logger.info("Starting on %s", self.profile)
        logger.info("Ollama host: %s", self.llm.host)
        for binding in self.bindings:
            logger.info("Shortcut %s -> %s", binding.label, binding.model)
        if self.pipeline is None:
            logger.error("No backend for %s, exiting", self.profile)
            return
        if not self.bindings:
            logger.warning("No valid shortcuts configured")
        asyncio.run(self.run_async())

    # -- diagnostics -------------------------------------------------------

    async def diagnose(self) -> list[str]:
        """Lines describing platform, tools, Ollama and installed models."""
        lines = [f"Platform: {self.profile}"]
        if self.backend is None:
            lines.append("Backend: unsupported")
        else:
            lines.append(f"Backend: {self.backend.name}")
            for tool in self.backend.required_tools():
                path = self.backend.probe.path(tool)
                lines.append(f"  {tool}: {path or 'missing'}")
            names = [s.name for s in self.injector.strategies]
            lines.append(f"Injection strategies: {', '.join(names)}")

        available = await check_availability(self.llm.host)
        lines.append(f"Ollama ({self.llm.host}): {'running' if available else 'not available'}")
        if available:
            try:
                models = await self.llm.list_models()
            except LLMError as e:
                lines.append(f"  models: {e}")
            else:
                for m in models:
                    lines.append(f"  {m.name} ({m.size / 1e9:.1f} GB)")
        lines.append(f"Shortcuts: {len(self.bindings)} valid")
        for binding in self.bindings:
            lines.append(f"  {binding.label} -> {binding.model}")
        return lines
