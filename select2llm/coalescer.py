"""Coalesce streamed LLM tokens into chunks that are safe to type.

Typing tools run once per chunk, so the chunking decides both latency and
correctness: a chunk boundary must never fall inside a grapheme cluster
(an accented letter typed as base + combining mark, a ZWJ emoji sequence, a
flag) and reasoning segments (``<think>...</think>``) must never reach the
target window.

Two stages:

1. ``StreamCoalescer`` accumulates tokens, filters think segments and picks
   chunk boundaries (minimum size, natural boundaries, soft and hard
   timeouts).
2. ``WaylandThrottle`` (Wayland only) merges released chunks into one buffer
   and rate-limits physical flushes so the compositor's input path is not
   flooded.
"""

import codecs
import logging
import re
import time
import unicodedata
from dataclasses import dataclass

logger = logging.getLogger(__name__)

THINK_OPEN = "<think>"
_THINK_SPAN = re.compile(r"<think>.*?</think>", re.IGNORECASE | re.DOTALL)
_THINK_OPEN = re.compile(re.escape(THINK_OPEN), re.IGNORECASE)
_SENTENCE_END = frozenset(".!?…。！？")

_ZWJ = "\u200d"


@dataclass(frozen=True)
class ChunkPolicy:
    min_chunk: int = 12
    max_wait: float = 0.4
    hard_timeout_factor: float = 3.0

    @property
    def hard_timeout(self) -> float:
        return self.max_wait * self.hard_timeout_factor


DEFAULT_PRESETS = {
    "default": {"min_chunk": 12, "max_wait": 0.4},
    "code": {"min_chunk": 15, "max_wait": 0.5},
    "chat": {"min_chunk": 10, "max_wait": 0.3},
}
CODE_KEYWORDS = ("code", "coder", "coding", "developer", "dev")
CHAT_KEYWORDS = ("chat", "assistant", "conversation", "llama", "gemma")


def select_policy(model: str, config: dict | None = None) -> ChunkPolicy:
    """Pick the chunking preset from keywords in the model name."""
    config = config or {}
    presets = {**DEFAULT_PRESETS, **config.get("presets", {})}
    name = (model or "").lower()
    if any(k in name for k in config.get("code_keywords", CODE_KEYWORDS)):
        preset = "code"
    elif any(k in name for k in config.get("chat_keywords", CHAT_KEYWORDS)):
        preset = "chat"
    else:
        preset = "default"
    values = presets[preset]
    return ChunkPolicy(
        min_chunk=values.get("min_chunk", 12),
        max_wait=values.get("max_wait", 0.4),
        hard_timeout_factor=config.get("hard_timeout_factor", 3.0),
    )


# -- think segments ----------------------------------------------------------

def strip_think(text: str, final: bool = False) -> str:
    """Return the part of ``text`` that may be typed.

    Closed ``<think>`` segments are removed. Everything from an unclosed
    ``<think>`` on is withheld (dropped when ``final``). While the stream is
    running, a trailing partial ``<think`` is also withheld because the
    next token may complete it.
    """
    visible = _THINK_SPAN.sub("", text)
    unclosed = _THINK_OPEN.search(visible)
    if unclosed:
        return visible[:unclosed.start()]
    if not final:
        tail = visible[-(len(THINK_OPEN) - 1):]
        for i in range(len(tail)):
            if THINK_OPEN.startswith(tail[i:].lower()):
                return visible[: len(visible) - len(tail) + i]
    return visible


# -- grapheme boundaries -----------------------------------------------------

def _is_regional_indicator(ch: str) -> bool:
    return 0x1F1E6 <= ord(ch) <= 0x1F1FF


def _extends(ch: str) -> bool:
    """True if ``ch`` attaches to the preceding character."""
    cp = ord(ch)
    return (
        unicodedata.category(ch) in ("Mn", "Me", "Mc")
        or ch == _ZWJ
        or 0xFE00 <= cp <= 0xFE0F          # variation selectors
        or 0xE0100 <= cp <= 0xE01EF
        or 0x1F3FB <= cp <= 0x1F3FF        # emoji skin tones
        or 0xE0020 <= cp <= 0xE007F        # emoji tag sequences
        or 0xDC00 <= cp <= 0xDFFF          # low surrogate
    )


def is_boundary(text: str, i: int) -> bool:
    """True if a grapheme cluster boundary lies between text[i-1] and text[i]."""
    if i <= 0 or i >= len(text):
        return True
    prev, cur = text[i - 1], text[i]
    if prev == "\r" and cur == "\n":
        return False
    if prev == _ZWJ or 0xD800 <= ord(prev) <= 0xDBFF:
        return False
    if _extends(cur):
        return False
    if _is_regional_indicator(prev) and _is_regional_indicator(cur):
        run = 0
        j = i - 1
        while j >= 0 and _is_regional_indicator(text[j]):
            run += 1
            j -= 1
        return run % 2 == 0
    return True


def last_cluster_start(text: str) -> int:
    """Index where the last grapheme cluster of ``text`` begins."""
    i = len(text) - 1
    while i > 0 and not is_boundary(text, i):
        i -= 1
    return max(i, 0)


def _natural_cut(pending: str, minimum: int) -> int:
    """Largest cut >= minimum right after whitespace ending a word or after
    sentence punctuation. 0 if there is none."""
    for cut in range(len(pending), minimum - 1, -1):
        if cut < 1:
            break
        ch = pending[cut - 1]
        if ch.isspace():
            if cut < 2 or pending[cut - 2].isspace():
                continue
        elif ch not in _SENTENCE_END:
            continue
        if is_boundary(pending, cut):
            return cut
    return 0


# -- stages ------------------------------------------------------------------

class WaylandThrottle:
    """Merges chunks and releases them at most every ``min_interval``
    seconds, or immediately once ``max_buffer`` characters are waiting."""

    def __init__(self, min_interval: float = 0.25, max_buffer: int = 800):
        self.min_interval = min_interval
        self.max_buffer = max_buffer
        self.buffer = ""
        self.last_release: float | None = None

    def push(self, chunk: str | None, now: float) -> str | None:
        if chunk:
            self.buffer += chunk
        if not self.buffer:
            return None
        due = (
            self.last_release is None
            or now - self.last_release >= self.min_interval
            or len(self.buffer) >= self.max_buffer
        )
        if not due:
            return None
        out, self.buffer = self.buffer, ""
        self.last_release = now
        return out

    def drain(self, chunk: str | None = None) -> str:
        out = self.buffer + (chunk or "")
        self.buffer = ""
        return out


class StreamCoalescer:
    """Stateful per-request accumulator; ``feed`` returns at most one chunk."""

    def __init__(self, policy: ChunkPolicy | None = None, strip_think: bool = True,
                 throttle: WaylandThrottle | None = None, clock=time.monotonic):
        self.policy = policy or ChunkPolicy()
        self.strip_think = strip_think
        self.throttle = throttle
        self._clock = clock
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self.accumulated = ""
        self.sent = 0
        self.last_flush = clock()
        self.cancelled = False
        self.finished = False

    @classmethod
    def for_model(cls, model: str, config: dict | None = None, wayland: bool = False,
                  clock=time.monotonic) -> "StreamCoalescer":
        config = config or {}
        throttle = None
        if wayland:
            w = config.get("wayland", {})
            throttle = WaylandThrottle(
                min_interval=w.get("min_interval", 0.25),
                max_buffer=w.get("max_buffer", 800),
            )
        return cls(
            policy=select_policy(model, config),
            strip_think=config.get("strip_think", True),
            throttle=throttle,
            clock=clock,
        )

    def _visible(self, final: bool) -> str:
        if not self.strip_think:
            return self.accumulated
        return strip_think(self.accumulated, final=final)

    def _select(self, pending: str, now: float) -> str:
        if pending.endswith("\r"):
            # its "\n" may come with the next token
            pending = pending[:-1]
        if not pending:
            return ""
        policy = self.policy
        minimum = policy.min_chunk
        if len(pending) >= minimum:
            cut = _natural_cut(pending, minimum)
            if cut:
                return pending[:cut]

        elapsed = now - self.last_flush
        if pending[-1].isspace():
            forced = len(pending)
        else:
            forced = last_cluster_start(pending)

        if elapsed >= policy.max_wait and forced >= minimum and (
            pending[-1].isspace() or len(pending) >= 2 * minimum
        ):
            return pending[:forced]
        if elapsed >= policy.hard_timeout and forced > 0:
            return pending[:forced]
        return ""

    def feed(self, token, now: float | None = None) -> str | None:
        """Add a streamed token (str, or raw UTF-8 bytes) and return the text
        to type now, if any."""
        if self.cancelled or self.finished:
            return None
        now = self._clock() if now is None else now
        if isinstance(token, (bytes, bytearray)):
            token = self._decoder.decode(bytes(token))
        self.accumulated += token

        pending = self._visible(final=False)[self.sent:]
        chunk = self._select(pending, now)
        if chunk:
            self.sent += len(chunk)
            self.last_flush = now
        if self.throttle is not None:
            return self.throttle.push(chunk, now)
        return chunk or None

    def finish(self) -> str | None:
        """End of stream: return everything still pending, including the
        Wayland buffer."""
        if self.cancelled or self.finished:
            return None
        self.finished = True
        self.accumulated += self._decoder.decode(b"", final=True)
        visible = self._visible(final=True)
        chunk = visible[self.sent:]
        self.sent = len(visible)
        if self.throttle is not None:
            chunk = self.throttle.drain(chunk)
        return chunk or None

    def cancel(self) -> None:
        """Stop emitting; whatever is pending is discarded."""
        self.cancelled = True
        if self.throttle is not None:
            self.throttle.buffer = ""

    @property
    def filtered_text(self) -> str:
        return self._visible(final=self.finished)
