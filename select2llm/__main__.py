"""Entry point for `python -m select2llm`."""

import argparse
import asyncio
import logging
import os
import sys
from logging.handlers import RotatingFileHandler

from .config import CONFIG_DIR, load_config
from .errors import ConfigError

LOG_DIR = os.path.join(CONFIG_DIR, "logs")


def setup_logging(level: str = "INFO", to_file: bool = True) -> None:
    """Console at ``level``; DEBUG and above also go to a rotating file."""
    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(getattr(logging, level.upper(), logging.INFO))
    console.setFormatter(logging.Formatter("[%(name)s] %(message)s"))
    root.addHandler(console)

    if to_file:
        try:
            os.makedirs(LOG_DIR, exist_ok=True)
            file_handler = RotatingFileHandler(
                os.path.join(LOG_DIR, "select2llm.log"),
                maxBytes=5_000_000, backupCount=3, encoding="utf-8",
            )
        except OSError as e:
            print(f"[select2llm] Could not create log file: {e}")
        else:
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(logging.Formatter(
                "%(asctime)s %(levelname)s [%(name)s] %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            ))
            root.addHandler(file_handler)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)


def main():
    parser = argparse.ArgumentParser(
        description="Select2LLM - send the selected text to a local LLM and type the answer"
    )
    parser.add_argument(
        "-c", "--config",
        default=None,
        help="Path to config.yaml (default: ~/.select2llm/config.yaml)",
    )
    parser.add_argument(
        "--check",
        action="store_true",
        help="Print platform, tool and Ollama diagnostics, then exit",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Log debug messages to the console",
    )
    args = parser.parse_args()

    try:
        config = load_config(args.config)
    except ConfigError as e:
        print(f"[select2llm] {e}", file=sys.stderr)
        sys.exit(2)

    log_config = config.get("logging", {})
    setup_logging(
        "DEBUG" if args.verbose else log_config.get("level", "INFO"),
        to_file=log_config.get("file", True),
    )

    from .app import Select2LLMApp

    app = Select2LLMApp(config=config)

    if args.check:
        for line in asyncio.run(app.diagnose()):
            print(line)
        return

    app.run()


if __name__ == "__main__":
    main()
