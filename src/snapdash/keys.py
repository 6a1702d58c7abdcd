"""Keyboard input for the dashboard.

The terminal is put in cbreak mode and stdin is watched with the event
loop's ``add_reader``, so key presses arrive on the main loop without a
separate input thread.
"""

from __future__ import annotations

import asyncio
import os
import sys
import termios
import tty

__all__ = ["KeyReader", "decode_keys"]

_ESCAPE_SEQUENCES = {
    "[A": "up",
    "[B": "down",
    "[C": "right",
    "[D": "left",
    "[H": "home",
    "[F": "end",
    "[5~": "pgup",
    "[6~": "pgdn",
    "[3~": "delete",
    "OA": "up",
    "OB": "down",
}

_CONTROL_KEYS = {
    "\r": "enter",
    "\n": "enter",
    "\t": "tab",
    "\x7f": "backspace",
    "\b": "backspace",
    "\x03": "ctrl-c",
}


def decode_keys(data: str) -> list[str]:
    """Split raw terminal input into key names.

    Printable characters are returned as themselves; control characters and
    escape sequences become names such as ``up``, ``enter`` or ``esc``.
    """
    keys: list[str] = []
    i = 0
    while i < len(data):
        char = data[i]
        if char == "\x1b":
            for sequence, name in _ESCAPE_SEQUENCES.items():
                if data.startswith(sequence, i + 1):
                    keys.append(name)
                    i += 1 + len(sequence)
                    break
            else:
                keys.append("esc")
                i += 1
            continue
        keys.append(_CONTROL_KEYS.get(char, char))
        i += 1
    return [key for key in keys if key.isprintable() or len(key) > 1]


class KeyReader:
    """Delivers decoded key presses from a terminal into an asyncio queue."""

    def __init__(self, fd: int | None = None) -> None:
        self._fd = sys.stdin.fileno() if fd is None else fd
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._saved: list[object] | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    def start(self) -> None:
        """Switch the terminal to cbreak mode and start watching for input."""
        self._saved = termios.tcgetattr(self._fd)
        tty.setcbreak(self._fd)
        self._loop = asyncio.get_running_loop()
        self._loop.add_reader(self._fd, self._on_readable)

    def stop(self) -> None:
        """Stop watching and restore the terminal settings."""
        if self._loop is not None:
            self._loop.remove_reader(self._fd)
            self._loop = None
        if self._saved is not None:
            termios.tcsetattr(self._fd, termios.TCSADRAIN, self._saved)
            self._saved = None

    def _on_readable(self) -> None:
        data = os.read(self._fd, 64)
        for key in decode_keys(data.decode("utf-8", errors="ignore")):
            self._queue.put_nowait(key)

    async def get(self, timeout: float | None = None) -> str | None:
        """Wait for the next key; None if ``timeout`` expires first."""
        try:
            return await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except TimeoutError:
            return None
