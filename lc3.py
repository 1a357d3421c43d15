"""
LC-3 Emulator Core
==================
A word-step emulator for the LC-3 instructional architecture: eight 16-bit
general registers, a 64K-word address space, sixteen opcodes and a single
N/Z/P condition code.

Every instruction is decoded from the raw word in memory.  The loop mirrors
the hardware: fetch the word at PC, bump PC, switch on the top nibble.  All
offsets are relative to the already-incremented PC.

The keyboard is memory-mapped at KBSR/KBDR; character output and input for
the trap routines go through a console device (see devices.py).
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import IntEnum, IntFlag
from typing import Optional

from devices import ConsoleDevice

# ---------------------------------------------------------------------------
#  Constants
# ---------------------------------------------------------------------------

MASK16 = 0xFFFF
SIGN16 = 0x8000

MEMORY_SIZE = 1 << 16
PC_START    = 0x3000

# Memory-mapped keyboard registers
KBSR = 0xFE00   # status: bit 15 set when a key is waiting
KBDR = 0xFE02   # data: last key read

# Seconds a KBSR read may wait for a key before reporting "not ready"
DEFAULT_POLL_TIMEOUT = 0.1

NUM_REGS = 8
R_R0 = 0
R_R7 = 7


class Opcode(IntEnum):
    """Top nibble of an instruction word."""
    BR   = 0x0
    ADD  = 0x1
    LD   = 0x2
    ST   = 0x3
    JSR  = 0x4
    AND  = 0x5
    LDR  = 0x6
    STR  = 0x7
    RTI  = 0x8  # unused: no supervisor mode
    NOT  = 0x9
    LDI  = 0xA
    STI  = 0xB
    JMP  = 0xC
    RES  = 0xD  # reserved
    LEA  = 0xE
    TRAP = 0xF


class TrapVector(IntEnum):
    GETC  = 0x20  # read a key, no echo
    OUT   = 0x21  # write one character
    PUTS  = 0x22  # write a one-char-per-word string
    IN    = 0x23  # prompt, read a key, echo it
    PUTSP = 0x24  # write a two-chars-per-word string
    HALT  = 0x25


class Flag(IntFlag):
    POS = 1 << 0
    ZRO = 1 << 1
    NEG = 1 << 2


IN_PROMPT = "Enter a character: "

# ---------------------------------------------------------------------------
#  Helpers
# ---------------------------------------------------------------------------

def u16(v: int) -> int:
    """Mask to unsigned 16 bits."""
    return v & MASK16

def s16(v: int) -> int:
    """Interpret a 16-bit value as signed."""
    v = u16(v)
    return v - (1 << 16) if v >= SIGN16 else v

def sign_extend(val: int, bits: int) -> int:
    """Sign-extend a *bits*-wide value to 16 bits."""
    mask = (1 << bits) - 1
    val &= mask
    if val & (1 << (bits - 1)):
        val -= (1 << bits)
    return u16(val)

# ---------------------------------------------------------------------------
#  Errors
# ---------------------------------------------------------------------------

class LC3Error(Exception):
    """Base for emulator-generated faults."""
    pass

class StartupError(LC3Error):
    """The machine could not be prepared (bad or missing image)."""
    pass

class IllegalInstructionError(LC3Error):
    def __init__(self, address: int, instruction: int, message: str = ""):
        self.address = address
        self.instruction = instruction
        super().__init__(
            message or f"Illegal instruction {instruction:#06x} @ {address:#06x}")

class HaltError(LC3Error):
    pass

# ---------------------------------------------------------------------------
#  Decoder
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Instruction:
    """Decoded view of one instruction word.

    Field accessors do not check the opcode: each handler only reads the
    fields its format defines.
    """
    word: int
    opcode: Opcode

    @property
    def dr(self) -> int:
        """Destination (or, for stores, source) register: bits 11..9."""
        return (self.word >> 9) & 0x7

    sr = dr

    @property
    def sr1(self) -> int:
        return (self.word >> 6) & 0x7

    base_r = sr1

    @property
    def sr2(self) -> int:
        return self.word & 0x7

    @property
    def imm_mode(self) -> bool:
        return bool((self.word >> 5) & 0x1)

    @property
    def imm5(self) -> int:
        return sign_extend(self.word, 5)

    @property
    def offset6(self) -> int:
        return sign_extend(self.word, 6)

    @property
    def pc_offset9(self) -> int:
        return sign_extend(self.word, 9)

    @property
    def pc_offset11(self) -> int:
        return sign_extend(self.word, 11)

    @property
    def nzp(self) -> int:
        return (self.word >> 9) & 0x7

    @property
    def jsr_mode(self) -> bool:
        return bool((self.word >> 11) & 0x1)

    @property
    def trap_vector(self) -> int:
        return self.word & 0xFF


def decode(word: int) -> Instruction:
    """Split a 16-bit word into its opcode and operand view."""
    word = u16(word)
    return Instruction(word, Opcode(word >> 12))

# ---------------------------------------------------------------------------
#  Register file
# ---------------------------------------------------------------------------

class RegisterFile:
    """R0-R7, PC and the N/Z/P condition register."""

    def __init__(self):
        self.gpr: list[int] = [0] * NUM_REGS
        self.pc: int = PC_START
        self.cond: Flag = Flag.ZRO

    def __getitem__(self, idx: int) -> int:
        return self.gpr[idx]

    def __setitem__(self, idx: int, value: int):
        self.gpr[idx] = u16(value)

    def update_flags(self, r: int):
        """Set exactly one of N/Z/P from the sign of register *r*."""
        v = self.gpr[r]
        if v == 0:
            self.cond = Flag.ZRO
        elif v & SIGN16:
            self.cond = Flag.NEG
        else:
            self.cond = Flag.POS

    def reset(self):
        self.gpr = [0] * NUM_REGS
        self.pc = PC_START
        self.cond = Flag.ZRO

# ---------------------------------------------------------------------------
#  Address space
# ---------------------------------------------------------------------------

class AddressSpace:
    """64K words of memory with the keyboard mapped at KBSR/KBDR."""

    def __init__(self, console: Optional[ConsoleDevice] = None,
                 poll_timeout: float = DEFAULT_POLL_TIMEOUT):
        self.mem: list[int] = [0] * MEMORY_SIZE
        self.console = console
        self.poll_timeout = poll_timeout

    def read(self, addr: int) -> int:
        addr = u16(addr)
        if addr == KBSR:
            self._poll_keyboard()
        return self.mem[addr]

    def write(self, addr: int, val: int):
        self.mem[u16(addr)] = u16(val)

    def raw_read(self, addr: int) -> int:
        """Read without touching the keyboard registers."""
        return self.mem[u16(addr)]

    def _poll_keyboard(self):
        if self.console is not None and self.console.poll(self.poll_timeout):
            self.mem[KBSR] = SIGN16
            self.mem[KBDR] = u16(self.console.read_char())
        else:
            self.mem[KBSR] = 0

    def load(self, origin: int, words) -> int:
        """Copy *words* into memory starting at *origin*.

        Loading stops before the last address (0xFFFF).  Returns the
        number of words stored.
        """
        addr = u16(origin)
        count = 0
        for w in words:
            if addr == MEMORY_SIZE - 1:
                break
            self.mem[addr] = u16(w)
            addr += 1
            count += 1
        return count

    def clear(self):
        self.mem = [0] * MEMORY_SIZE

# ---------------------------------------------------------------------------
#  CPU
# ---------------------------------------------------------------------------

class LC3:
    """LC-3 execution engine: owns the register file and address space."""

    def __init__(self, memory: Optional[AddressSpace] = None,
                 console: Optional[ConsoleDevice] = None):
        if memory is None:
            memory = AddressSpace(console)
        elif console is not None and memory.console is not console:
            raise ValueError("console must be the one attached to memory")
        if memory.console is None:
            # No input, output discarded
            memory.console = ConsoleDevice()
        self.memory = memory
        self.console = memory.console
        self.regs = RegisterFile()

        # State
        self.halted: bool = False
        self.instr_count: int = 0

        self._dispatch = {
            Opcode.BR:   self._exec_br,
            Opcode.ADD:  self._exec_add,
            Opcode.LD:   self._exec_ld,
            Opcode.ST:   self._exec_st,
            Opcode.JSR:  self._exec_jsr,
            Opcode.AND:  self._exec_and,
            Opcode.LDR:  self._exec_ldr,
            Opcode.STR:  self._exec_str,
            Opcode.RTI:  self._exec_illegal,
            Opcode.NOT:  self._exec_not,
            Opcode.LDI:  self._exec_ldi,
            Opcode.STI:  self._exec_sti,
            Opcode.JMP:  self._exec_jmp,
            Opcode.RES:  self._exec_illegal,
            Opcode.LEA:  self._exec_lea,
            Opcode.TRAP: self._exec_trap,
        }
        self._traps = {
            TrapVector.GETC:  self._trap_getc,
            TrapVector.OUT:   self._trap_out,
            TrapVector.PUTS:  self._trap_puts,
            TrapVector.IN:    self._trap_in,
            TrapVector.PUTSP: self._trap_putsp,
            TrapVector.HALT:  self._trap_halt,
        }

    # -- Property shortcuts --

    @property
    def pc(self) -> int:
        return self.regs.pc

    @pc.setter
    def pc(self, value: int):
        self.regs.pc = u16(value)

    @property
    def cond(self) -> Flag:
        return self.regs.cond

    # =====================================================================
    #  STEP: fetch / decode / execute
    # =====================================================================

    def step(self):
        """Execute one instruction."""
        if self.halted:
            raise HaltError("CPU is halted")

        addr = self.pc
        instr = decode(self.memory.read(addr))
        link = self.regs[R_R7]
        self.pc = addr + 1
        try:
            self._dispatch[instr.opcode](instr)
        except BaseException:
            # Fault, EOF or interrupt: PC back on this word, R7 as it was
            self.pc = addr
            self.regs[R_R7] = link
            raise
        self.instr_count += 1

    def run(self, max_steps: Optional[int] = None) -> int:
        """Run until HALT or *max_steps*.  Returns instructions executed."""
        executed = 0
        while not self.halted:
            if max_steps is not None and executed >= max_steps:
                break
            self.step()
            executed += 1
        return executed

    # =====================================================================
    #  Opcode handlers
    # =====================================================================

    def _exec_illegal(self, instr: Instruction):
        raise IllegalInstructionError(u16(self.pc - 1), instr.word)

    def _exec_add(self, instr: Instruction):
        src2 = instr.imm5 if instr.imm_mode else self.regs[instr.sr2]
        self.regs[instr.dr] = self.regs[instr.sr1] + src2
        self.regs.update_flags(instr.dr)

    def _exec_and(self, instr: Instruction):
        src2 = instr.imm5 if instr.imm_mode else self.regs[instr.sr2]
        self.regs[instr.dr] = self.regs[instr.sr1] & src2
        self.regs.update_flags(instr.dr)

    def _exec_not(self, instr: Instruction):
        self.regs[instr.dr] = ~self.regs[instr.sr1]
        self.regs.update_flags(instr.dr)

    def _exec_br(self, instr: Instruction):
        if instr.nzp & self.regs.cond:
            self.pc = self.pc + instr.pc_offset9

    def _exec_jmp(self, instr: Instruction):
        # JMP R7 is RET
        self.pc = self.regs[instr.base_r]

    def _exec_jsr(self, instr: Instruction):
        # R7 is written first, so JSRR R7 lands on the next instruction
        self.regs[R_R7] = self.pc
        if instr.jsr_mode:
            self.pc = self.pc + instr.pc_offset11
        else:
            self.pc = self.regs[instr.base_r]

    def _exec_ld(self, instr: Instruction):
        self.regs[instr.dr] = self.memory.read(self.pc + instr.pc_offset9)
        self.regs.update_flags(instr.dr)

    def _exec_ldi(self, instr: Instruction):
        ptr = self.memory.read(self.pc + instr.pc_offset9)
        self.regs[instr.dr] = self.memory.read(ptr)
        self.regs.update_flags(instr.dr)

    def _exec_ldr(self, instr: Instruction):
        self.regs[instr.dr] = self.memory.read(
            self.regs[instr.base_r] + instr.offset6)
        self.regs.update_flags(instr.dr)

    def _exec_lea(self, instr: Instruction):
        self.regs[instr.dr] = self.pc + instr.pc_offset9
        self.regs.update_flags(instr.dr)

    def _exec_st(self, instr: Instruction):
        self.memory.write(self.pc + instr.pc_offset9, self.regs[instr.sr])

    def _exec_sti(self, instr: Instruction):
        ptr = self.memory.read(self.pc + instr.pc_offset9)
        self.memory.write(ptr, self.regs[instr.sr])

    def _exec_str(self, instr: Instruction):
        self.memory.write(self.regs[instr.base_r] + instr.offset6,
                          self.regs[instr.sr])

    def _exec_trap(self, instr: Instruction):
        routine = self._traps.get(instr.trap_vector)
        if routine is None:
            addr = u16(self.pc - 1)
            raise IllegalInstructionError(
                addr, instr.word,
                f"Unknown trap vector {instr.trap_vector:#04x} @ {addr:#06x}")
        self.regs[R_R7] = self.pc
        routine()

    # =====================================================================
    #  Trap service routines
    # =====================================================================

    def _trap_getc(self):
        self.regs[R_R0] = self.console.read_char()
        self.regs.update_flags(R_R0)

    def _trap_out(self):
        self.console.write_char(self.regs[R_R0] & 0xFF)

    def _trap_puts(self):
        addr = self.regs[R_R0]
        word = self.memory.raw_read(addr)
        while word != 0:
            self.console.write_char(word & 0xFF)
            addr = u16(addr + 1)
            word = self.memory.raw_read(addr)

    def _trap_in(self):
        self.console.write(IN_PROMPT)
        ch = self.console.read_char()
        self.console.write_char(ch)
        self.console.write_char(ord("\n"))
        self.regs[R_R0] = ch
        self.regs.update_flags(R_R0)

    def _trap_putsp(self):
        addr = self.regs[R_R0]
        word = self.memory.raw_read(addr)
        while word & 0xFF:
            self.console.write_char(word & 0xFF)
            hi = word >> 8
            if hi:
                self.console.write_char(hi)
            addr = u16(addr + 1)
            word = self.memory.raw_read(addr)

    def _trap_halt(self):
        self.console.write("HALT\n")
        self.halted = True

    # -- Reset helper --

    def reset(self):
        self.regs.reset()
        self.halted = False
        self.instr_count = 0

    # -- Debug / introspection --

    def dump_regs(self) -> str:
        lines = []
        for i in range(0, NUM_REGS, 4):
            lines.append("  " + "  ".join(
                f"R{r} = {self.regs[r]:#06x}" for r in range(i, i + 4)))
        lines.append(f"  PC = {self.pc:#06x}  COND = {self.regs.cond.name}")
        return "\n".join(lines)
