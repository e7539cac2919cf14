"""Tests for the streaming coalescer: think filtering, chunk policy,
grapheme safety and the Wayland throttle."""

import random
import unicodedata

from select2llm.coalescer import (
    ChunkPolicy,
    StreamCoalescer,
    WaylandThrottle,
    is_boundary,
    select_policy,
    strip_think,
)


def _run(coalescer, tokens, times=None):
    """Feed tokens, return (flushes during the stream, final flush)."""
    out = []
    for i, token in enumerate(tokens):
        now = 0.0 if times is None else times[i]
        chunk = coalescer.feed(token, now=now)
        if chunk:
            out.append(chunk)
    return out, coalescer.finish()


def _fixed(policy=None, **kwargs):
    return StreamCoalescer(policy or ChunkPolicy(), clock=lambda: 0.0, **kwargs)


def test_natural_boundary_flush():
    """Tokens are held until a sentence end makes a chunk of min size."""
    out, tail = _run(_fixed(), ["Hel", "lo ", "wor", "ld."])
    assert out == ["Hello world."]
    assert tail is None


def test_closed_think_segment_is_removed():
    out, tail = _run(_fixed(), ["<think>reasoning here</think>Visible answer."])
    assert "".join(out) + (tail or "") == "Visible answer."
    assert not any("reasoning" in c for c in out)


def test_unclosed_think_segment_emits_nothing():
    coalescer = _fixed()
    out, tail = _run(coalescer, ["<think>partial"])
    assert out == []
    assert tail is None
    assert coalescer.filtered_text == ""


def test_think_tag_split_across_tokens():
    """A tag arriving in pieces is never typed, nor is its content."""
    out, tail = _run(_fixed(), ["Answer: <thi", "nk>secret</th", "ink> done and dusted."])
    typed = "".join(out) + (tail or "")
    assert typed == "Answer:  done and dusted."
    assert "secret" not in typed and "<" not in typed


def test_dangling_partial_tag_is_literal_at_finish():
    out, tail = _run(_fixed(), ["a < b and x <thi"])
    assert "".join(out) + (tail or "") == "a < b and x <thi"


def test_strip_think_is_idempotent():
    samples = [
        "plain text",
        "<think>a</think>b",
        "<THINK>a</Think>b<think>c",
        "<think><think>a</think></think>tail",
        "<thi<think>x</think>nk>y",
        "x </think> y",
    ]
    for text in samples:
        once = strip_think(text, final=True)
        assert strip_think(once, final=True) == once


def test_minimum_size_before_timeouts():
    """Short text waits for the hard timeout (3x max_wait)."""
    coalescer = _fixed(ChunkPolicy(min_chunk=12, max_wait=0.4))
    assert coalescer.feed("Hi. ", now=0.0) is None
    assert coalescer.feed("", now=0.5) is None
    assert coalescer.feed("", now=1.3) == "Hi. "


def test_soft_timeout_flushes_long_pending_text():
    coalescer = _fixed(ChunkPolicy(min_chunk=12, max_wait=0.4))
    assert coalescer.feed("abcdefghijklmnopqrstuvwxy", now=0.0) is None
    assert coalescer.feed("", now=0.5) == "abcdefghijklmnopqrstuvwx"
    assert coalescer.finish() == "y"


def test_hard_timeout_keeps_combining_mark_with_its_base():
    coalescer = _fixed(ChunkPolicy(min_chunk=1, max_wait=0.1))
    assert coalescer.feed("cafe", now=0.0) is None
    assert coalescer.feed("\u0301", now=1.0) == "caf"
    assert coalescer.finish() == "e\u0301"


def test_hard_timeout_keeps_flag_pairs_together():
    coalescer = _fixed(ChunkPolicy(min_chunk=1, max_wait=0.1))
    # J P F (the R of the second flag has not arrived yet)
    assert coalescer.feed("ab\U0001F1EF\U0001F1F5\U0001F1EB", now=1.0) == "ab\U0001F1EF\U0001F1F5"
    coalescer.feed("\U0001F1F7", now=1.0)
    assert coalescer.finish() == "\U0001F1EB\U0001F1F7"


def test_hard_timeout_keeps_zwj_sequence_together():
    coalescer = _fixed(ChunkPolicy(min_chunk=1, max_wait=0.1))
    assert coalescer.feed("x\U0001F469\u200d", now=1.0) == "x"
    coalescer.feed("\U0001F4BB", now=1.0)
    assert coalescer.finish() == "\U0001F469\u200d\U0001F4BB"


def test_crlf_split_across_tokens_stays_together():
    out, tail = _run(_fixed(), ["Hello world.\r", "\nNext line here."])
    assert out == ["Hello world.", "\r\nNext line here."]
    assert tail is None

    coalescer = _fixed()
    chunk = coalescer.feed("abcdefghijklmnopqrstuvwx\r", now=10.0)
    assert chunk and "\r" not in chunk
    assert coalescer.finish().endswith("x\r")


def test_bytes_tokens_hold_partial_utf8():
    coalescer = _fixed()
    data = "café 🎉".encode("utf-8")
    out, tail = _run(coalescer, [data[i:i + 1] for i in range(len(data))])
    typed = "".join(out) + (tail or "")
    assert typed == "café 🎉"
    assert "�" not in typed


def test_wayland_single_flush_for_short_reply():
    coalescer = StreamCoalescer.for_model("llama3.2", {}, wayland=True, clock=lambda: 0.0)
    assert coalescer.feed("café 🎉", now=0.0) is None
    assert coalescer.finish() == "café 🎉"


def test_wayland_throttle_merges_chunks():
    coalescer = StreamCoalescer(
        ChunkPolicy(min_chunk=4, max_wait=0.4),
        throttle=WaylandThrottle(min_interval=0.25, max_buffer=800),
        clock=lambda: 0.0,
    )
    assert coalescer.feed("one two ", now=0.0) == "one two "
    assert coalescer.feed("three ", now=0.1) is None
    assert coalescer.feed("four ", now=0.2) is None
    assert coalescer.feed("five ", now=0.4) == "three four five "
    assert coalescer.finish() is None


def test_wayland_throttle_releases_full_buffer_early():
    throttle = WaylandThrottle(min_interval=10.0, max_buffer=5)
    assert throttle.push("abc", 0.0) == "abc"
    assert throttle.push("de", 0.01) is None
    assert throttle.push("fgh", 0.02) == "defgh"


def test_presets_from_model_name():
    assert select_policy("qwen2.5-coder:7b").min_chunk == 15
    assert select_policy("codellama:13b").min_chunk == 15
    assert select_policy("llama3.2:latest") == ChunkPolicy(10, 0.3)
    assert select_policy("mistral:7b") == ChunkPolicy(12, 0.4)
    custom = select_policy("mistral", {"presets": {"default": {"min_chunk": 20, "max_wait": 1.0}}})
    assert custom == ChunkPolicy(20, 1.0)


def test_cancel_stops_output():
    coalescer = _fixed(ChunkPolicy(min_chunk=1))
    coalescer.feed("pending text", now=0.0)
    coalescer.cancel()
    assert coalescer.feed("more text here. ", now=5.0) is None
    assert coalescer.finish() is None


_VOCAB = [
    "hello", "world", "café", "cafe\u0301", "naïve", "👍🏽", "\U0001F1EF\U0001F1F5",
    "\U0001F469\u200d\U0001F4BB", "日本語", " ", " ", "\n", ".", "!", "<think>hidden</think>",
    "<think>", "</think>", "<", "code()",
]


def _random_stream(rng):
    text = "".join(rng.choice(_VOCAB) for _ in range(rng.randint(5, 60)))
    tokens, i = [], 0
    while i < len(text):
        n = rng.randint(1, 6)
        tokens.append(text[i:i + n])
        i += n
    return text, tokens


def test_random_streams_preserve_text_and_graphemes():
    """Concatenated output equals the filtered stream and every chunk
    boundary is a grapheme boundary."""
    for seed in range(200):
        rng = random.Random(seed)
        text, tokens = _random_stream(rng)
        times, now = [], 0.0
        for _ in tokens:
            now += rng.choice([0.0, 0.05, 0.2, 0.5, 1.5])
            times.append(now)
        coalescer = _fixed(ChunkPolicy(min_chunk=rng.randint(1, 15), max_wait=0.4))
        out, tail = _run(coalescer, tokens, times)
        chunks = out + ([tail] if tail else [])
        typed = "".join(chunks)
        assert typed == strip_think(text, final=True), seed
        offset = 0
        for chunk in chunks[:-1]:
            offset += len(chunk)
            assert is_boundary(typed, offset), (seed, offset)
            assert unicodedata.category(typed[offset]) not in ("Mn", "Me", "Mc")


def test_random_streams_respect_minimum_without_timeouts():
    for seed in range(200):
        rng = random.Random(seed)
        _, tokens = _random_stream(rng)
        policy = ChunkPolicy(min_chunk=rng.randint(1, 15), max_wait=0.4)
        out, _ = _run(_fixed(policy), tokens)
        assert all(len(chunk) >= policy.min_chunk for chunk in out), seed
