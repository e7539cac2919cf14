"""Windows backend: PowerShell helpers around SendKeys and user32."""

import base64
import json
import logging

from .backend import Backend, CaptureTarget, Geometry
from .errors import CommandFailed, CopyFailed, StaleTarget, Timeout
from .escaping import powershell_literal, sendkeys
from .shell import run_command
from .strategies import InjectionStrategy, clipboard_round_trip, file_staged

logger = logging.getLogger(__name__)

_STALE_EXIT_CODE = 3

_PREAMBLE = r'''
$ErrorActionPreference = 'Stop'
Add-Type -AssemblyName System.Windows.Forms
Add-Type @"
using System;
using System.Runtime.InteropServices;
public static class S2LWin {
  [StructLayout(LayoutKind.Sequential)]
  public struct RECT { public int Left, Top, Right, Bottom; }
  [DllImport("user32.dll")] public static extern IntPtr GetForegroundWindow();
  [DllImport("user32.dll")] public static extern bool SetForegroundWindow(IntPtr hWnd);
  [DllImport("user32.dll")] public static extern bool IsWindow(IntPtr hWnd);
  [DllImport("user32.dll")] public static extern bool GetWindowRect(IntPtr hWnd, out RECT r);
  [DllImport("user32.dll")] public static extern void keybd_event(byte vk, byte scan, uint flags, UIntPtr extra);
}
"@
function Use-Target([long]$h) {
  if ($h -eq 0) { return }
  $p = [IntPtr]$h
  if (-not [S2LWin]::IsWindow($p)) {
    [Console]::Error.WriteLine("window $h no longer exists")
    exit 3
  }
  [void][S2LWin]::SetForegroundWindow($p)
}
'''

_COPY = r'''
$h = [S2LWin]::GetForegroundWindow()
[System.Windows.Forms.SendKeys]::SendWait('^c')
Write-Output $h.ToInt64()
'''

_TYPE_FILE = r'''
$t = [System.IO.File]::ReadAllText({path}, [System.Text.Encoding]::UTF8)
$t = $t -replace "`r`n", "`n" -replace "`r", "`n"
$e = [regex]::Replace($t, '[+^%~(){{}}\[\]]', '{{$0}}')
$e = $e -replace "`n", '{{ENTER}}' -replace "`t", '{{TAB}}'
[System.Windows.Forms.SendKeys]::SendWait($e)
'''

_GEOMETRY = r'''
$r = New-Object S2LWin+RECT
if (-not [S2LWin]::GetWindowRect([IntPtr]{hwnd}, [ref]$r)) { exit 3 }
@{{x=$r.Left; y=$r.Top; width=$r.Right - $r.Left; height=$r.Bottom - $r.Top}} | ConvertTo-Json -Compress
'''

# VK_SHIFT, VK_CONTROL, VK_MENU, L/R variants, left/right Windows keys
_MODIFIER_VKS = (0x10, 0x11, 0x12, 0xA0, 0xA1, 0xA2, 0xA3, 0xA4, 0xA5, 0x5B, 0x5C)
_KEYEVENTF_KEYUP = 0x0002


def encode_command(script: str) -> str:
    """Base64 UTF-16LE form expected by ``powershell -EncodedCommand``."""
    return base64.b64encode(script.encode("utf-16-le")).decode("ascii")


def parse_handle(output: str) -> str | None:
    handle = output.strip().splitlines()[-1].strip() if output.strip() else ""
    if not handle.lstrip("-").isdigit() or int(handle) == 0:
        return None
    return handle


class WindowsBackend(Backend):
    """The HWND captured at copy time is reused for every chunk and checked
    for liveness before each keystroke batch."""

    name = "windows"

    async def _powershell(self, body: str, timeout=None):
        script = _PREAMBLE + body
        try:
            return await run_command(
                [
                    "powershell", "-NoProfile", "-NonInteractive",
                    "-ExecutionPolicy", "Bypass",
                    "-EncodedCommand", encode_command(script),
                ],
                timeout=timeout or self.type_timeout,
            )
        except CommandFailed as e:
            if e.returncode == _STALE_EXIT_CODE:
                raise StaleTarget(e.stderr or "target window is gone") from e
            raise

    @staticmethod
    def _use_target(target) -> str:
        hwnd = target.window_id if target is not None and target.window_id else "0"
        return f"Use-Target {hwnd}\n"

    async def capture(self) -> CaptureTarget:
        try:
            result = await self._powershell(_COPY)
        except (CommandFailed, Timeout) as e:
            raise CopyFailed(f"Copy helper failed: {e}") from e
        handle = parse_handle(result.stdout)
        if handle is None:
            raise CopyFailed("Copy helper returned no window handle")
        logger.debug("Ctrl+C sent to hWnd %s", handle)
        return CaptureTarget(window_id=handle)

    async def send_keys(self, text, target):
        await self._powershell(
            self._use_target(target)
            + f"[System.Windows.Forms.SendKeys]::SendWait({powershell_literal(sendkeys(text))})\n"
        )

    async def send_keys_file(self, path, target):
        await self._powershell(
            self._use_target(target) + _TYPE_FILE.format(path=powershell_literal(path))
        )

    async def paste(self, target):
        await self._powershell(
            self._use_target(target) + "[System.Windows.Forms.SendKeys]::SendWait('^v')\n"
        )

    def strategies(self) -> list:
        return [
            InjectionStrategy(
                "sendkeys", self.send_keys, requires=("powershell",), bmp_only=True,
            ),
            InjectionStrategy(
                "sendkeys-file", file_staged(self.send_keys_file), requires=("powershell",),
            ),
            InjectionStrategy(
                "clipboard-paste",
                clipboard_round_trip(self.clipboard, self.paste, self.restore_delay),
                requires=("powershell",),
            ),
        ]

    async def release_modifiers(self, target):
        body = "".join(
            f"[S2LWin]::keybd_event({vk}, 0, {_KEYEVENTF_KEYUP}, [UIntPtr]::Zero)\n"
            for vk in _MODIFIER_VKS
        )
        await self._powershell(body, timeout=self.probe_timeout)

    async def geometry(self, target):
        if target is None or not target.window_id:
            return None
        try:
            result = await self._powershell(
                _GEOMETRY.format(hwnd=target.window_id), timeout=self.probe_timeout,
            )
            data = json.loads(result.stdout)
            return Geometry(data["x"], data["y"], data["width"], data["height"])
        except (CommandFailed, Timeout, ValueError, KeyError) as e:
            logger.debug("Window geometry unavailable: %s", e)
            return None

    def required_tools(self):
        return ("powershell",)
