"""Configuration loading, defaults and shortcut validation."""

import copy
import logging
import os
from dataclasses import dataclass

import yaml

from .errors import ConfigError

logger = logging.getLogger(__name__)

CONFIG_DIR = os.path.join(os.path.expanduser("~"), ".select2llm")
DEFAULT_CONFIG_PATH = os.path.join(CONFIG_DIR, "config.yaml")

_DEFAULT_CONFIG = {
    "ollama": {
        "host": "http://127.0.0.1:11434",
        "model": "llama3.2:latest",
        "temperature": 0.8,
        "keep_alive": 5,
        "timeout": 30,
        "check_model": True,
    },
    "language": "en",
    "shortcuts": [],
    "cancel_hotkey": "<esc>",
    "delays": {
        "before_copy": 0.25,
        "after_copy": 0.25,
        "before_process": 0.25,
        "debounce": 0.8,
    },
    "clipboard": {
        "max_size": 1024 * 1024,
        "timeout": 5.0,
    },
    "injection": {
        "type_timeout": 6.0,
        "probe_timeout": 5.0,
        "probe_ttl": 30.0,
        "clipboard_restore_delay": 0.3,
        "order": {},
    },
    "streaming": {
        "strip_think": True,
        "hard_timeout_factor": 3.0,
        "presets": {
            "default": {"min_chunk": 12, "max_wait": 0.4},
            "code": {"min_chunk": 15, "max_wait": 0.5},
            "chat": {"min_chunk": 10, "max_wait": 0.3},
        },
        "code_keywords": ["code", "coder", "coding", "developer", "dev"],
        "chat_keywords": ["chat", "assistant", "conversation", "llama", "gemma"],
        "wayland": {
            "min_interval": 0.25,
            "max_buffer": 800,
        },
    },
    "modifiers": {
        "log_interval": 30.0,
    },
    "logging": {
        "level": "INFO",
        "file": True,
    },
}

MODIFIERS = ("ctrl", "shift", "alt")
VALID_KEYS = frozenset(
    [chr(c) for c in range(ord("a"), ord("z") + 1)]
    + [str(d) for d in range(10)]
    + [f"f{n}" for n in range(1, 13)]
)


@dataclass(frozen=True)
class ShortcutBinding:
    key: str
    prompt: str
    model: str
    temperature: float = 0.8
    overlay: bool = False
    ctrl: bool = False
    shift: bool = False
    alt: bool = False

    @property
    def label(self) -> str:
        parts = [m.capitalize() for m in MODIFIERS if getattr(self, m)]
        return "+".join(parts + [self.key.upper()])


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def load_config(path: str | None = None) -> dict:
    """Load configuration from YAML file, merged with defaults."""
    if path is None:
        path = DEFAULT_CONFIG_PATH

    config = copy.deepcopy(_DEFAULT_CONFIG)

    if os.path.exists(path):
        try:
            with open(path, "r", encoding="utf-8") as f:
                user_config = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Could not parse {path}: {e}") from e
        if not isinstance(user_config, dict):
            raise ConfigError(f"{path} must contain a mapping at the top level")
        config = _deep_merge(config, user_config)
        logger.info("Loaded configuration from %s", path)
    else:
        logger.info("No configuration at %s, using defaults", path)

    return config


def validate_shortcut(entry: dict) -> list[str]:
    """Return the problems with one shortcut entry (empty if valid)."""
    errors = []
    key = entry.get("key")
    if not key or not isinstance(key, str):
        errors.append("key is required and must be a string")
    elif key.lower() not in VALID_KEYS:
        errors.append(f'key "{key}" is not valid')

    for modifier in MODIFIERS:
        if modifier in entry and not isinstance(entry[modifier], bool):
            errors.append(f"{modifier} must be a boolean")
    if not any(entry.get(m) is True for m in MODIFIERS):
        errors.append("at least one modifier key (ctrl, shift, alt) must be enabled")

    if not entry.get("prompt") or not isinstance(entry.get("prompt"), str):
        errors.append("prompt is required and must be a string")
    if not entry.get("model") or not isinstance(entry.get("model"), str):
        errors.append("model is required and must be a string")

    temperature = entry.get("temperature")
    if (isinstance(temperature, bool) or not isinstance(temperature, (int, float))
            or not 0 <= temperature <= 2):
        errors.append("temperature must be a number between 0 and 2")
    if not isinstance(entry.get("overlay"), bool):
        errors.append("overlay must be a boolean")
    return errors


def parse_shortcuts(config: dict) -> list[ShortcutBinding]:
    """Build bindings from ``config["shortcuts"]``.

    Invalid or duplicate entries are skipped with a warning.
    """
    bindings = []
    seen = set()
    defaults = config.get("ollama", {})
    for i, entry in enumerate(config.get("shortcuts") or []):
        if not isinstance(entry, dict):
            logger.warning("Skipping shortcut #%d: not a mapping", i + 1)
            continue
        entry = {
            "model": defaults.get("model"),
            "temperature": defaults.get("temperature", 0.8),
            "overlay": False,
            **entry,
        }
        errors = validate_shortcut(entry)
        if errors:
            logger.warning("Skipping shortcut #%d: %s", i + 1, ", ".join(errors))
            continue
        binding = ShortcutBinding(
            key=entry["key"].lower(),
            prompt=entry["prompt"],
            model=entry["model"],
            temperature=float(entry["temperature"]),
            overlay=entry["overlay"],
            ctrl=entry.get("ctrl", False),
            shift=entry.get("shift", False),
            alt=entry.get("alt", False),
        )
        combo = (binding.ctrl, binding.shift, binding.alt, binding.key)
        if combo in seen:
            logger.warning("Skipping shortcut #%d: %s already exists", i + 1, binding.label)
            continue
        seen.add(combo)
        bindings.append(binding)
    return bindings


def build_prompt(prompt: str, selection: str) -> str:
    """Insert the selection at the first ``%s``, or append it after a space."""
    if "%s" in prompt:
        return prompt.replace("%s", selection, 1)
    return f"{prompt} {selection}"
