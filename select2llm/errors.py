"""Error taxonomy shared by the capture, injection and streaming layers."""


class Select2LLMError(Exception):
    """Base class for all errors raised by select2llm."""


class ConfigError(Select2LLMError):
    """Invalid configuration value."""


class PlatformUnsupported(Select2LLMError):
    """Unknown operating system or display server."""


class CopyFailed(Select2LLMError):
    """The copy keystroke could not be delivered."""


class WindowNotFound(CopyFailed):
    """No focused window could be captured as the injection target."""


class ClipboardReadFailed(Select2LLMError):
    """The clipboard could not be read (treated as "no selection")."""


class InjectionFailed(Select2LLMError):
    """A chunk of text could not be delivered to the target window."""

    def __init__(self, message: str, strategy: str | None = None, delivered: int = 0):
        super().__init__(message)
        self.strategy = strategy
        self.delivered = delivered


class PartialDelivery(InjectionFailed):
    """The first ``delivered`` characters of a chunk were typed before the
    strategy failed."""


class StaleTarget(InjectionFailed):
    """The captured window no longer exists."""


class CommandFailed(Select2LLMError):
    """An external command exited with a non-zero status."""

    def __init__(self, args, returncode: int | None = None, stderr: str = ""):
        self.cmd = list(args)
        self.returncode = returncode
        self.stderr = stderr.strip()
        detail = f": {self.stderr}" if self.stderr else ""
        super().__init__(f"{self.cmd[0]} exited with {returncode}{detail}")


class ToolMissing(CommandFailed):
    """The executable is not installed or not on PATH."""

    def __init__(self, args):
        super().__init__(args, returncode=None)
        self.args = (f"{self.cmd[0]} not found",)


class Timeout(Select2LLMError, TimeoutError):
    """An external command or request exceeded its time budget."""

    def __init__(self, what: str, seconds: float):
        super().__init__(f"{what} timed out after {seconds:g}s")
        self.seconds = seconds


class Cancelled(Select2LLMError):
    """The user cancelled the running invocation."""


class LLMError(Select2LLMError):
    """The LLM server rejected or failed a request."""


class ModelNotFound(LLMError):
    """The requested model is not installed on the server."""
