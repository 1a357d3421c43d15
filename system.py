"""
LC-3 System
===========
Wires together:
  - an LC-3 CPU (lc3.py) and its 64K-word address space
  - a console device (devices.py) behind the keyboard registers and traps
  - the program image loader

Image format: a flat run of big-endian 16-bit words.  Word 0 is the
origin; the remaining words are stored at consecutive addresses from the
origin, stopping one short of the top of memory.
"""

from __future__ import annotations
import struct
from typing import Optional

from lc3 import (
    LC3, AddressSpace, StartupError, PC_START, DEFAULT_POLL_TIMEOUT,
    KBSR, KBDR,
)
from devices import ConsoleDevice, ScriptedConsole

# ---------------------------------------------------------------------------
#  Image loading
# ---------------------------------------------------------------------------

def parse_image(data: bytes | bytearray) -> tuple[int, list[int]]:
    """Split a raw image into (origin, words).

    A trailing odd byte is ignored.
    """
    if len(data) < 2:
        raise StartupError(f"Image too short: {len(data)} byte(s), "
                           f"need at least an origin word")
    n = len(data) // 2
    words = list(struct.unpack(f">{n}H", bytes(data[:n * 2])))
    return words[0], words[1:]


def read_image_file(path: str) -> tuple[int, list[int]]:
    """Read and parse an image file from disk."""
    try:
        with open(path, "rb") as f:
            data = f.read()
    except OSError as e:
        raise StartupError(f"Cannot read image '{path}': "
                           f"{e.strerror or e}") from e
    return parse_image(data)


# ---------------------------------------------------------------------------
#  System
# ---------------------------------------------------------------------------

class LC3System:
    """
    Complete LC-3 machine: CPU + memory + console.

    The console defaults to a ScriptedConsole with no input, which is what
    tests and batch runs want; the CLI passes a host console instead.
    """

    def __init__(self, console: Optional[ConsoleDevice] = None,
                 poll_timeout: float = DEFAULT_POLL_TIMEOUT):
        self.console = console if console is not None else ScriptedConsole()
        self.memory = AddressSpace(self.console, poll_timeout=poll_timeout)
        self.cpu = LC3(self.memory, self.console)
        self.images: list[tuple[int, int]] = []   # (origin, word count)

    # -----------------------------------------------------------------
    #  Loading
    # -----------------------------------------------------------------

    def load_words(self, origin: int, words) -> int:
        """Store words at origin; returns how many fit."""
        count = self.memory.load(origin, words)
        self.images.append((origin, count))
        return count

    def load_image(self, data: bytes | bytearray) -> int:
        """Load a raw origin-prefixed image."""
        origin, words = parse_image(data)
        return self.load_words(origin, words)

    def load_image_file(self, path: str) -> int:
        """Load an image file from disk."""
        origin, words = read_image_file(path)
        return self.load_words(origin, words)

    # -----------------------------------------------------------------
    #  Boot / execution
    # -----------------------------------------------------------------

    def boot(self, entry: int = PC_START):
        """Reset registers and point PC at *entry*.  Memory is kept."""
        self.cpu.reset()
        self.cpu.pc = entry

    def step(self):
        self.cpu.step()

    def run(self, max_steps: Optional[int] = None) -> int:
        """Run until HALT (or max_steps).  Returns instructions executed."""
        return self.cpu.run(max_steps)

    @property
    def halted(self) -> bool:
        return self.cpu.halted

    # -----------------------------------------------------------------
    #  Convenience
    # -----------------------------------------------------------------

    def get_output(self) -> str:
        """Drain captured output (scripted console only)."""
        if isinstance(self.console, ScriptedConsole):
            return self.console.drain_output()
        return ""

    def dump_state(self) -> str:
        """CPU + keyboard register dump."""
        lines = ["=== Registers ===", self.cpu.dump_regs()]
        lines.append(f"  Executed: {self.cpu.instr_count}  "
                     f"Halted: {self.cpu.halted}")
        lines.append("=== Keyboard ===")
        lines.append(f"  KBSR = {self.memory.raw_read(KBSR):#06x}  "
                     f"KBDR = {self.memory.raw_read(KBDR):#06x}")
        if self.images:
            lines.append("=== Images ===")
        for origin, count in self.images:
            lines.append(f"  Image @ {origin:#06x}: {count} word(s)")
        return "\n".join(lines)
