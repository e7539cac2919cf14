"""Tests for the injection engine and the strategy building blocks."""

import asyncio
import os

import pytest

from select2llm.backend import CaptureTarget
from select2llm.clipboard import Clipboard
from select2llm.environment import OS, DisplayServer, PlatformProfile
from select2llm.errors import (
    CommandFailed,
    InjectionFailed,
    PartialDelivery,
    StaleTarget,
    Timeout,
)
from select2llm.injector import EMERGENCY, Injector
from select2llm.modifiers import ModifierSanitizer
from select2llm.strategies import (
    InjectionStrategy,
    clipboard_round_trip,
    file_staged,
    line_by_line,
)


class FakeProbe:
    def __init__(self, tools=()):
        self.tools = set(tools)

    def available(self, *tools):
        return all(t in self.tools for t in tools)

    def path(self, tool):
        return f"/usr/bin/{tool}" if tool in self.tools else None


class MemoryClipboard:
    def __init__(self, text=""):
        self.text = text
        self.writes = []

    def paste(self):
        return self.text

    def copy(self, text):
        self.text = text
        self.writes.append(text)


class FakeBackend:
    name = "fake"

    def __init__(self, strategies, tools=()):
        self.profile = PlatformProfile(OS.LINUX, DisplayServer.X11)
        self.probe = FakeProbe(tools)
        self._strategies = strategies
        self.released = []

    def strategies(self):
        return self._strategies

    async def release_modifiers(self, target):
        self.released.append(target)


class Recorder:
    """Strategy action that records calls and optionally raises."""

    def __init__(self, error=None):
        self.error = error
        self.calls = []

    async def __call__(self, text, target):
        self.calls.append((text, target))
        if self.error is not None:
            raise self.error


def _injector(strategies, tools=(), clipboard_text="", config=None):
    backend = FakeBackend(strategies, tools)
    notes = []
    injector = Injector(
        backend,
        ModifierSanitizer(backend),
        Clipboard(backend=MemoryClipboard(clipboard_text)),
        config=config,
        notifier=lambda message, **kw: notes.append(message),
    )
    return injector, backend, notes


TARGET = CaptureTarget(window_id="42")


def test_first_working_strategy_wins():
    broken = Recorder(CommandFailed(["xdotool"], 1, "boom"))
    working = Recorder()
    injector, _, _ = _injector([
        InjectionStrategy("broken", broken),
        InjectionStrategy("working", working),
    ])
    result = asyncio.run(injector.inject("hello", TARGET))
    assert result.delivered and result.strategy == "working"
    assert working.calls == [("hello", TARGET)]
    assert [name for name, _ in result.errors] == ["broken"]
    assert result.error is None


def test_failed_strategy_skipped_for_rest_of_session():
    broken = Recorder(CommandFailed(["wtype"], 1))
    working = Recorder()
    injector, _, _ = _injector([
        InjectionStrategy("broken", broken),
        InjectionStrategy("working", working),
    ])

    async def scenario():
        async with injector.session(TARGET) as session:
            await session.inject("one ")
            await session.inject("two ")
            return session

    session = asyncio.run(scenario())
    assert len(broken.calls) == 1
    assert [t for t, _ in working.calls] == ["one ", "two "]
    assert session.failed == {"broken"}


def test_timeout_is_not_retyped_and_does_not_disable_strategy():
    """A killed typing tool may have typed part of the chunk, so the chunk
    goes to the clipboard instead of through the next strategy."""
    slow = Recorder(Timeout("xdotool", 6))
    working = Recorder()
    injector, _, notes = _injector([
        InjectionStrategy("slow", slow),
        InjectionStrategy("working", working),
    ])

    async def scenario():
        async with injector.session(TARGET) as session:
            await session.inject("a")
            await session.inject("b")

    asyncio.run(scenario())
    assert len(slow.calls) == 2
    assert working.calls == []
    assert asyncio.run(injector.clipboard.read()) == "ab"
    assert len(notes) == 1


class Screen:
    """Collects what the fake typing primitives put on screen."""

    def __init__(self, fail_on=None, error=None):
        self.text = ""
        self.fail_on = fail_on
        self.error = error

    async def type_line(self, text, target):
        if text == self.fail_on:
            raise self.error
        self.text += text

    async def press_return(self, target):
        self.text += "\n"

    async def type_all(self, text, target):
        self.text += text


def test_failure_mid_text_hands_only_the_rest_to_next_strategy():
    screen = Screen(fail_on="second", error=CommandFailed(["wtype"], 1))
    injector, _, _ = _injector([
        InjectionStrategy("lines", line_by_line(screen.type_line, screen.press_return)),
        InjectionStrategy("paste", screen.type_all),
    ])
    result = asyncio.run(injector.inject("first\nsecond", TARGET))
    assert result.delivered and result.strategy == "paste"
    assert screen.text == "first\nsecond"
    assert isinstance(result.errors[0][1], CommandFailed)


def test_timeout_mid_text_never_retypes_delivered_lines():
    screen = Screen(fail_on="second", error=Timeout("wtype", 6))
    injector, _, _ = _injector([
        InjectionStrategy("lines", line_by_line(screen.type_line, screen.press_return)),
        InjectionStrategy("paste", screen.type_all),
    ])
    result = asyncio.run(injector.inject("first\r\nsecond", TARGET))
    assert not result.delivered
    assert screen.text == "first\n"
    assert asyncio.run(injector.clipboard.read()) == "second"


def test_line_by_line_reports_characters_delivered():
    screen = Screen(fail_on="c", error=CommandFailed(["xdotool"], 1))
    action = line_by_line(screen.type_line, screen.press_return)
    with pytest.raises(PartialDelivery) as info:
        asyncio.run(action("a\r\nb\nc", None))
    assert info.value.delivered == len("a\r\nb\n")
    # nothing typed yet: the original error comes through unchanged
    with pytest.raises(CommandFailed):
        asyncio.run(line_by_line(screen.type_line, screen.press_return)("c", None))


def test_ineligible_strategies_are_skipped():
    single = Recorder()
    ascii_only = Recorder()
    needs_tool = Recorder()
    fallback = Recorder()
    injector, _, _ = _injector([
        InjectionStrategy("single", single, single_line=True),
        InjectionStrategy("ascii", ascii_only, ascii_only=True),
        InjectionStrategy("tool", needs_tool, requires=("xdotool",)),
        InjectionStrategy("fallback", fallback),
    ])
    result = asyncio.run(injector.inject("héllo\nworld", TARGET))
    assert result.strategy == "fallback"
    assert single.calls == ascii_only.calls == needs_tool.calls == []


def test_all_strategies_fail_falls_back_to_clipboard():
    """Total failure never raises; undelivered text lands on the clipboard
    and the user is notified once."""
    broken = Recorder(CommandFailed(["ydotool"], 1))
    injector, _, notes = _injector([InjectionStrategy("broken", broken)])

    async def scenario():
        async with injector.session(None) as session:
            first = await session.inject("first ")
            second = await session.inject("second")
            return first, second

    first, second = asyncio.run(scenario())
    assert not first.delivered and first.strategy == EMERGENCY
    assert isinstance(first.error, InjectionFailed)
    assert not second.delivered
    assert asyncio.run(injector.clipboard.read()) == "first second"
    assert len(notes) == 1


def test_stale_target_continues_untargeted():
    stale = Recorder(StaleTarget("window gone"))
    working = Recorder()
    injector, backend, _ = _injector([
        InjectionStrategy("stale", stale),
        InjectionStrategy("working", working),
    ])

    async def scenario():
        async with injector.session(TARGET) as session:
            await session.inject("text")
            return session

    session = asyncio.run(scenario())
    assert session.target is None
    assert working.calls == [("text", None)]
    assert backend.released == [None]


def test_sanitizer_runs_once_per_session():
    working = Recorder()
    injector, backend, _ = _injector([InjectionStrategy("working", working)])

    async def scenario():
        async with injector.session(TARGET) as session:
            for chunk in ("a ", "b ", "c"):
                await session.inject(chunk)

    asyncio.run(scenario())
    assert injector.sanitizer.calls == 1
    assert backend.released == [TARGET]


def test_sanitizer_runs_when_session_body_raises():
    injector, backend, _ = _injector([InjectionStrategy("working", Recorder())])

    async def scenario():
        async with injector.session(TARGET):
            raise RuntimeError("stream failed")

    try:
        asyncio.run(scenario())
    except RuntimeError:
        pass
    assert injector.sanitizer.calls == 1


def test_configured_order_filters_and_reorders():
    a, b, c = Recorder(), Recorder(), Recorder()
    injector, _, _ = _injector(
        [InjectionStrategy("a", a), InjectionStrategy("b", b), InjectionStrategy("c", c)],
        config={"order": {"fake": ["c", "a", "missing"]}},
    )
    assert [s.name for s in injector.strategies] == ["c", "a"]


def test_sessions_do_not_overlap():
    order = []

    async def slow(text, target):
        order.append(f"start {text}")
        await asyncio.sleep(0.01)
        order.append(f"end {text}")

    injector, _, _ = _injector([InjectionStrategy("slow", slow)])

    async def scenario():
        await asyncio.gather(injector.inject("1", None), injector.inject("2", None))

    asyncio.run(scenario())
    assert order == ["start 1", "end 1", "start 2", "end 2"]


def test_staged_file_is_removed_on_success_and_failure():
    seen = []

    async def type_file(path, target):
        seen.append(path)
        with open(path, encoding="utf-8") as f:
            assert f.read() == "naïve 🎉\nline"
        if len(seen) == 2:
            raise CommandFailed(["xdotool"], 1)

    action = file_staged(type_file)
    asyncio.run(action("naïve 🎉\nline", None))
    try:
        asyncio.run(action("naïve 🎉\nline", None))
    except CommandFailed:
        pass
    assert len(seen) == 2
    assert not any(os.path.exists(p) for p in seen)


def test_staged_file_has_no_bom():
    async def type_file(path, target):
        with open(path, "rb") as f:
            assert f.read() == "é".encode("utf-8")

    asyncio.run(file_staged(type_file)("é", None))


def test_line_by_line_presses_return_between_lines():
    events = []

    async def type_line(text, target):
        events.append(text)

    async def press_return(target):
        events.append("<Return>")

    asyncio.run(line_by_line(type_line, press_return)("one\r\n\ntwo", None))
    assert events == ["one", "<Return>", "<Return>", "two"]


def test_clipboard_round_trip_restores_previous_contents():
    memory = MemoryClipboard("previous")
    clipboard = Clipboard(backend=memory)
    pasted = []

    async def paste(target):
        pasted.append(memory.text)

    asyncio.run(clipboard_round_trip(clipboard, paste, restore_delay=0)("new text", None))
    assert pasted == ["new text"]
    assert memory.text == "previous"
