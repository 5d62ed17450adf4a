from __future__ import annotations

import sys
from typing import Any

from termcolor import colored


def _fields(fields: dict[str, Any]) -> str:
    if not fields:
        return ""
    return " " + " ".join(f"{k}={v}" for k, v in fields.items())


def _ok(msg: str) -> str:
    return f"{colored('[+] ', 'green')}{msg}"


def _info(msg: str) -> str:
    return f"{colored('[*] ', 'yellow')}{msg}"


def _warn(msg: str) -> str:
    return f"{colored('[!] ', 'magenta')}{msg}"


def _err(msg: str) -> str:
    return f"{colored('[-] ', 'red')}{msg}"


def ok(msg: str, **fields: Any) -> None:
    print(_ok(msg + _fields(fields)), file=sys.stderr)


def info(msg: str, **fields: Any) -> None:
    print(_info(msg + _fields(fields)), file=sys.stderr)


def warn(msg: str, **fields: Any) -> None:
    print(_warn(msg + _fields(fields)), file=sys.stderr)


def err(msg: str, **fields: Any) -> None:
    print(_err(msg + _fields(fields)), file=sys.stderr)
