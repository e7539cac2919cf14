"""Async wrapper around external OS utilities (xdotool, wtype, osascript, ...)."""

import asyncio
import logging
import os
import shutil
import subprocess
import time
from dataclasses import dataclass

from .errors import CommandFailed, Timeout, ToolMissing

logger = logging.getLogger(__name__)

# Seconds
TYPE_TIMEOUT = 6.0
PROBE_TIMEOUT = 5.0
ABORT_TIMEOUT = 1.0

_CREATION_FLAGS = getattr(subprocess, "CREATE_NO_WINDOW", 0)


@dataclass(frozen=True)
class CommandResult:
    returncode: int
    stdout: str
    stderr: str


def utf8_env(base: dict | None = None) -> dict:
    """Return a copy of the environment forcing a UTF-8 locale for children."""
    env = dict(os.environ if base is None else base)
    for var in ("LC_ALL", "LC_CTYPE", "LANG"):
        value = env.get(var, "")
        if value:
            if "utf-8" not in value.lower() and "utf8" not in value.lower():
                env[var] = "C.UTF-8"
            break
    else:
        env["LANG"] = "C.UTF-8"
    env["PYTHONIOENCODING"] = "utf-8"
    return env


async def run_command(
    args,
    input: str | bytes | None = None,
    timeout: float = TYPE_TIMEOUT,
    env: dict | None = None,
    check: bool = True,
) -> CommandResult:
    """Run ``args`` without a shell and wait for it to exit.

    Raises ToolMissing if the executable does not exist, Timeout if it runs
    longer than ``timeout`` seconds (the child is killed), and CommandFailed
    on a non-zero exit status when ``check`` is true.
    """
    args = [str(a) for a in args]
    if isinstance(input, str):
        input = input.encode("utf-8")
    try:
        proc = await asyncio.create_subprocess_exec(
            *args,
            stdin=subprocess.PIPE if input is not None else subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            env=utf8_env() if env is None else env,
            creationflags=_CREATION_FLAGS,
        )
    except FileNotFoundError as e:
        raise ToolMissing(args) from e

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(input), timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise Timeout(args[0], timeout) from None
    except asyncio.CancelledError:
        if proc.returncode is None:
            proc.kill()
        raise

    result = CommandResult(
        returncode=proc.returncode,
        stdout=stdout.decode("utf-8", errors="replace"),
        stderr=stderr.decode("utf-8", errors="replace"),
    )
    if check and result.returncode != 0:
        raise CommandFailed(args, result.returncode, result.stderr)
    return result


def spawn_detached(args) -> bool:
    """Start a background process without waiting for it. Returns False if
    the executable is missing."""
    try:
        subprocess.Popen(
            [str(a) for a in args],
            stdin=subprocess.DEVNULL,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
            start_new_session=os.name != "nt",
            creationflags=_CREATION_FLAGS,
        )
    except OSError as e:
        logger.warning("Could not start %s: %s", args[0], e)
        return False
    return True


class ToolProbe:
    """Caches ``shutil.which`` lookups for a short time.

    Tools may be installed or removed while the app runs, so results expire
    after ``ttl`` seconds.
    """

    def __init__(self, ttl: float = 30.0, clock=time.monotonic, which=None):
        self.ttl = ttl
        self._clock = clock
        self._which = which or shutil.which
        self._cache: dict[str, tuple[float, str | None]] = {}

    def path(self, tool: str) -> str | None:
        now = self._clock()
        cached = self._cache.get(tool)
        if cached is not None and now - cached[0] < self.ttl:
            return cached[1]
        found = self._which(tool)
        self._cache[tool] = (now, found)
        return found

    def available(self, *tools: str) -> bool:
        return all(self.path(t) is not None for t in tools)

    def invalidate(self) -> None:
        self._cache.clear()
