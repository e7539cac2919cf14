"""Streaming text generation using a local LLM via Ollama."""

import logging
from dataclasses import dataclass

import httpx
import ollama

from .errors import LLMError, ModelNotFound

logger = logging.getLogger(__name__)

DEFAULT_HOST = "http://127.0.0.1:11434"
DEFAULT_MODEL = "llama3.2:latest"
RUNNING_BANNER = "Ollama is running"

API_CHECK_TIMEOUT = 5.0
REQUEST_TIMEOUT = 30.0

TEMPERATURE_MIN = 0.0
TEMPERATURE_MAX = 2.0


@dataclass(frozen=True)
class Token:
    text: str
    done: bool = False


@dataclass(frozen=True)
class ModelInfo:
    name: str
    size: int = 0


async def check_availability(host: str = DEFAULT_HOST, timeout: float = API_CHECK_TIMEOUT,
                             transport: httpx.AsyncBaseTransport | None = None) -> bool:
    """Check if an Ollama server answers on ``host``.

    The root endpoint must return 200 with the body "Ollama is running";
    anything else (including another server on the same port) is "not
    available".
    """
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            r = await client.get(host.rstrip("/") + "/")
    except httpx.HTTPError as e:
        logger.warning("Ollama check failed on %s: %s", host, e)
        return False
    available = r.status_code == 200 and r.text.strip() == RUNNING_BANNER
    logger.info("Ollama on %s available: %s (status %d)", host, available, r.status_code)
    return available


def validate_request(prompt, model, temperature) -> list[str]:
    errors = []
    if not prompt or not isinstance(prompt, str):
        errors.append("prompt must be a non-empty string")
    if not model or not isinstance(model, str):
        errors.append("model must be a non-empty string")
    if (isinstance(temperature, bool) or not isinstance(temperature, (int, float))
            or not TEMPERATURE_MIN <= temperature <= TEMPERATURE_MAX):
        errors.append(f"temperature must be between {TEMPERATURE_MIN:g} and {TEMPERATURE_MAX:g}")
    return errors


class OllamaClient:
    """Streams completions from Ollama and exposes the model list."""

    def __init__(self, config: dict | None = None, client: ollama.AsyncClient | None = None):
        config = config or {}
        self.host = config.get("host", DEFAULT_HOST)
        self.model = config.get("model", DEFAULT_MODEL)
        self.temperature = config.get("temperature", 0.8)
        self.keep_alive = config.get("keep_alive", 5)
        self.timeout = config.get("timeout", REQUEST_TIMEOUT)
        self.check_model = config.get("check_model", True)
        self._client = client or ollama.AsyncClient(host=self.host, timeout=self.timeout)
        self._cancelled = False
        self.generating = False

    async def list_models(self) -> list[ModelInfo]:
        """Installed models, sorted by name. Raises LLMError if unreachable."""
        try:
            response = await self._client.list()
        except (ollama.ResponseError, httpx.HTTPError, ConnectionError) as e:
            raise LLMError(f"Could not list models on {self.host}: {e}") from e
        models = [ModelInfo(m.model or "", m.size or 0) for m in response.models]
        return sorted(models, key=lambda m: m.name)

    async def is_model_available(self, model: str | None = None) -> bool:
        """Check if ``model`` is downloaded. A bare name matches its ``:latest`` tag."""
        model = model or self.model
        try:
            models = await self.list_models()
        except LLMError as e:
            logger.warning("%s", e)
            return False
        candidates = {model} if ":" in model else {model, f"{model}:latest"}
        return any(
            m.name in candidates or m.name.startswith(model + "-")
            for m in models
        )

    async def generate(self, prompt: str, model: str | None = None,
                       temperature: float | None = None,
                       keep_alive_minutes: float | None = None):
        """Yield ``Token`` objects as the model streams its response.

        After ``cancel()`` the stream ends quietly; errors raised while
        aborting are not reported.
        """
        model = model or self.model
        temperature = self.temperature if temperature is None else temperature
        keep_alive = self.keep_alive if keep_alive_minutes is None else keep_alive_minutes

        errors = validate_request(prompt, model, temperature)
        if errors:
            raise LLMError("Invalid request: " + ", ".join(errors))
        if self.check_model and not await self.is_model_available(model):
            raise ModelNotFound(f"Model {model} not found on {self.host}")

        self._cancelled = False
        self.generating = True
        logger.info("Generating with %s (temperature %g, %d prompt chars)",
                    model, temperature, len(prompt))
        try:
            stream = await self._client.generate(
                model=model,
                prompt=prompt,
                stream=True,
                keep_alive=f"{keep_alive:g}m",
                options={"temperature": float(temperature)},
            )
            async for part in stream:
                if self._cancelled:
                    break
                yield Token(part["response"] or "", bool(part["done"]))
        except ollama.ResponseError as e:
            if self._cancelled:
                return
            if e.status_code == 404:
                raise ModelNotFound(f"Model {model} not found: {e.error}") from e
            raise LLMError(f"Ollama error: {e.error}") from e
        except (ollama.RequestError, httpx.HTTPError, ConnectionError) as e:
            if self._cancelled:
                logger.debug("Ignoring error after cancel: %s", e)
                return
            raise LLMError(f"Ollama request failed: {e}") from e
        finally:
            self.generating = False

    def cancel(self) -> None:
        """Stop the running stream at the next token."""
        if self.generating:
            logger.info("Generation cancelled")
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled
