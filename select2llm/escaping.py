"""Quoting rules for the scripting hosts used to synthesize keystrokes.

POSIX tools are always run with an argv list (no shell), so only the
embedded-language literals need escaping.
"""

import re

_SENDKEYS_SPECIAL = set("+^%~(){}[]")
_NEWLINES = re.compile(r"\r\n|\r|\n")


def applescript_string(text: str) -> str:
    """Return ``text`` as a double-quoted AppleScript string literal."""
    escaped = (
        text.replace("\\", "\\\\")
        .replace('"', '\\"')
        .replace("\t", "\\t")
    )
    escaped = _NEWLINES.sub("\\\\n", escaped)
    return f'"{escaped}"'


def sendkeys(text: str) -> str:
    """Escape ``text`` for System.Windows.Forms.SendKeys."""
    out = []
    for line_no, line in enumerate(_NEWLINES.split(text)):
        if line_no:
            out.append("{ENTER}")
        for ch in line:
            if ch in _SENDKEYS_SPECIAL:
                out.append("{" + ch + "}")
            elif ch == "\t":
                out.append("{TAB}")
            else:
                out.append(ch)
    return "".join(out)


def powershell_literal(text: str) -> str:
    """Return ``text`` as a single-quoted PowerShell string literal."""
    # PowerShell also treats typographic single quotes as delimiters.
    escaped = re.sub(r"(['‘’‚‛])", r"\1\1", text)
    return f"'{escaped}'"


def is_ascii(text: str) -> bool:
    return text.isascii()


def is_bmp(text: str) -> bool:
    """True if every character fits in a single UTF-16 code unit."""
    return all(ord(ch) <= 0xFFFF for ch in text)
