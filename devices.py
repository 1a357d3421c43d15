"""
LC-3 Console Devices
====================
Character consoles behind the memory-mapped keyboard (KBSR/KBDR) and the
GETC/OUT/PUTS/IN/PUTSP/HALT trap routines.

Every console implements the same small contract:

  save_mode() / restore_mode()   switch the host terminal to unbuffered,
                                 non-echoing input and back
  poll(timeout) -> bool          is a key waiting?  (bounded wait)
  read_char() -> int             block for one key; EOFError when input ends
  write_char(int)                emit one byte

Consoles are context managers, so the host terminal is restored on every
exit path (HALT, fault, Ctrl+C).

  ScriptedConsole   deterministic, in-memory (tests)
  TerminalConsole   POSIX tty via termios + select
  WindowsConsole    Windows console via msvcrt
"""

from __future__ import annotations
import os
import sys
import time
from collections import deque

# ---------------------------------------------------------------------------
#  Console base class
# ---------------------------------------------------------------------------

class ConsoleDevice:
    """Abstract character console."""

    name = "console"

    def save_mode(self):
        """Remember the host mode and switch to raw character I/O."""
        pass

    def restore_mode(self):
        """Put the host back the way save_mode() found it."""
        pass

    def poll(self, timeout: float = 0.0) -> bool:
        """Return True if a key can be read without blocking."""
        return False

    def read_char(self) -> int:
        """Block until one key is available and return its code."""
        raise EOFError(f"{self.name}: no input")

    def write_char(self, value: int):
        """Write one byte to the output stream."""
        pass

    def write(self, data: bytes | str):
        """Write a run of bytes through write_char()."""
        if isinstance(data, str):
            data = data.encode("ascii", errors="replace")
        for b in data:
            self.write_char(b)

    def __enter__(self):
        self.save_mode()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.restore_mode()
        return False


# ---------------------------------------------------------------------------
#  Scripted console
# ---------------------------------------------------------------------------

class ScriptedConsole(ConsoleDevice):
    """Console fed from a script of keys; output is captured."""

    name = "scripted"

    def __init__(self, keys: bytes | str = b""):
        self.rx_buffer: deque[int] = deque()   # keys waiting for the CPU
        self.tx_buffer: bytearray = bytearray()  # everything the CPU wrote
        self.mode_saved: bool = False
        self.save_count: int = 0
        self.restore_count: int = 0
        self.polls: list[float] = []
        self.inject_input(keys)

    def inject_input(self, data: bytes | str):
        """Queue keys for the CPU to read."""
        if isinstance(data, str):
            data = data.encode("ascii", errors="replace")
        for b in data:
            self.rx_buffer.append(b & 0xFF)

    @property
    def has_rx_data(self) -> bool:
        return len(self.rx_buffer) > 0

    def save_mode(self):
        self.mode_saved = True
        self.save_count += 1

    def restore_mode(self):
        self.mode_saved = False
        self.restore_count += 1

    def poll(self, timeout: float = 0.0) -> bool:
        self.polls.append(timeout)
        return self.has_rx_data

    def read_char(self) -> int:
        if not self.rx_buffer:
            raise EOFError("scripted input exhausted")
        return self.rx_buffer.popleft()

    def write_char(self, value: int):
        self.tx_buffer.append(value & 0xFF)

    @property
    def output(self) -> str:
        return self.tx_buffer.decode("ascii", errors="replace")

    def drain_output(self) -> str:
        """Return everything written so far and clear the buffer."""
        out = self.output
        self.tx_buffer.clear()
        return out


# ---------------------------------------------------------------------------
#  POSIX terminal
# ---------------------------------------------------------------------------

class TerminalConsole(ConsoleDevice):
    """Host terminal on POSIX: ICANON and ECHO off, select() for polling.

    Signals stay enabled (ISIG is left alone) so Ctrl+C still raises
    KeyboardInterrupt, and output post-processing keeps "\\n" → "\\r\\n".
    """

    name = "terminal"

    def __init__(self, in_fd: int | None = None, out_fd: int | None = None):
        self._in_fd = in_fd
        self._out_fd = out_fd
        self._old_settings = None

    # stdin/stdout are looked up on first use, not at construction
    @property
    def in_fd(self) -> int:
        return sys.stdin.fileno() if self._in_fd is None else self._in_fd

    @property
    def out_fd(self) -> int:
        return sys.stdout.fileno() if self._out_fd is None else self._out_fd

    def save_mode(self):
        import termios

        if not os.isatty(self.in_fd):
            return
        try:
            old = termios.tcgetattr(self.in_fd)
            new = termios.tcgetattr(self.in_fd)
            new[3] &= ~(termios.ICANON | termios.ECHO)   # lflags
            new[6][termios.VMIN] = 1                      # one byte per read
            new[6][termios.VTIME] = 0
            termios.tcsetattr(self.in_fd, termios.TCSANOW, new)
        except termios.error as e:
            raise OSError(f"cannot set terminal mode: {e}") from e
        self._old_settings = old

    def restore_mode(self):
        import termios

        if self._old_settings is None:
            return
        old, self._old_settings = self._old_settings, None
        try:
            termios.tcsetattr(self.in_fd, termios.TCSADRAIN, old)
        except termios.error as e:
            raise OSError(f"cannot restore terminal mode: {e}") from e

    def poll(self, timeout: float = 0.0) -> bool:
        import select

        readable, _, _ = select.select([self.in_fd], [], [], timeout)
        return bool(readable)

    def read_char(self) -> int:
        ch = os.read(self.in_fd, 1)
        if not ch:
            raise EOFError("end of input")
        return ch[0]

    def write_char(self, value: int):
        os.write(self.out_fd, bytes([value & 0xFF]))


# ---------------------------------------------------------------------------
#  Windows console
# ---------------------------------------------------------------------------

class WindowsConsole(ConsoleDevice):
    """Host console on Windows via msvcrt (already unbuffered and unechoed)."""

    name = "windows"

    # Poll granularity while waiting for kbhit()
    POLL_INTERVAL = 0.01

    def poll(self, timeout: float = 0.0) -> bool:
        import msvcrt

        deadline = time.monotonic() + timeout
        while True:
            if msvcrt.kbhit():
                return True
            if time.monotonic() >= deadline:
                return False
            time.sleep(self.POLL_INTERVAL)

    def read_char(self) -> int:
        import msvcrt

        ch = msvcrt.getwch()
        if ch == "\x03":          # Ctrl+C arrives as a key here
            raise KeyboardInterrupt
        if ch == "\x1a":          # Ctrl+Z
            raise EOFError("end of input")
        if ch == "\r":
            ch = "\n"
        return ord(ch) & 0xFF

    def write_char(self, value: int):
        sys.stdout.write(chr(value & 0xFF))
        sys.stdout.flush()


def open_host_console() -> ConsoleDevice:
    """Pick the console implementation for this platform."""
    if os.name == "nt":
        return WindowsConsole()
    return TerminalConsole()
