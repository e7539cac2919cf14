"""Tests for clipboard reading and the modifier sanitizer."""

import asyncio

import pyperclip

from select2llm.clipboard import Clipboard
from select2llm.modifiers import ModifierSanitizer


class MemoryClipboard:
    def __init__(self, content=""):
        self.content = content

    def paste(self):
        return self.content

    def copy(self, text):
        self.content = text


class BrokenClipboard:
    def paste(self):
        raise pyperclip.PyperclipException("no clipboard mechanism")

    def copy(self, text):
        raise pyperclip.PyperclipException("no clipboard mechanism")


def test_read_trims_selection():
    clipboard = Clipboard(backend=MemoryClipboard("  selected text \n"))
    assert asyncio.run(clipboard.read()) == "selected text"


def test_read_truncates_large_content():
    clipboard = Clipboard({"max_size": 10}, backend=MemoryClipboard("x" * 50))
    assert asyncio.run(clipboard.read()) == "x" * 10


def test_read_failure_is_empty():
    assert asyncio.run(Clipboard(backend=BrokenClipboard()).read()) == ""
    assert asyncio.run(Clipboard(backend=MemoryClipboard(None)).read()) == ""


def test_snapshot_and_restore():
    memory = MemoryClipboard("keep me")
    clipboard = Clipboard(backend=memory)

    async def scenario():
        saved = await clipboard.snapshot()
        await clipboard.write("temporary")
        await clipboard.restore(saved)

    asyncio.run(scenario())
    assert memory.content == "keep me"


def test_restore_failure_is_logged_not_raised():
    clipboard = Clipboard(backend=BrokenClipboard())
    assert asyncio.run(clipboard.snapshot()) is None
    asyncio.run(clipboard.restore("anything"))


class FlakyBackend:
    def __init__(self):
        self.targets = []

    async def release_modifiers(self, target):
        self.targets.append(target)
        raise RuntimeError("xdotool crashed")


def test_sanitizer_never_raises_and_counts_calls():
    backend = FlakyBackend()
    now = [0.0]
    sanitizer = ModifierSanitizer(backend, log_interval=30.0, clock=lambda: now[0])
    asyncio.run(sanitizer.clear("window"))
    asyncio.run(sanitizer.clear())
    assert sanitizer.calls == 2
    assert backend.targets == ["window", None]
