"""Console output for the CLI commands (status lines, banner, masked secrets)."""

from __future__ import annotations

import os
import sys
from typing import TextIO

_RED = "0;31"
_GREEN = "0;32"
_CYAN = "0;36"
_YELLOW = "1;33"
_BOLD = "1"


def _paint(code: str, text: str, stream: TextIO) -> str:
    """Wrap *text* in an ANSI colour when *stream* is a terminal and NO_COLOR is unset."""
    if os.environ.get("NO_COLOR") or not stream.isatty():
        return text
    return f"\033[{code}m{text}\033[0m"


def _emit(code: str, tag: str, msg: str, stream: TextIO | None = None) -> None:
    stream = stream or sys.stdout
    print(f"{_paint(code, tag, stream)} {msg}", file=stream)


def info(msg: str) -> None:
    _emit(_CYAN, "[INFO]", msg)


def ok(msg: str) -> None:
    _emit(_GREEN, "[ OK ]", msg)


def warn(msg: str) -> None:
    _emit(_YELLOW, "[WARN]", msg, sys.stderr)


def fail(msg: str, code: int = 1) -> None:
    """Print *msg* to stderr and exit with *code*."""
    _emit(_RED, "[FAIL]", msg, sys.stderr)
    sys.exit(code)


def banner(title: str) -> None:
    rule = "=" * 62
    print()
    for line in (rule, f"  {title}", rule):
        print(_paint(_BOLD, line, sys.stdout))
    print()


def mask_secret(value: str) -> str:
    """Show only the first and last four characters of a secret."""
    if len(value) >= 8:
        return f"{value[:4]}...{value[-4:]}"
    return "****"
