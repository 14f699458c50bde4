"""
CHIP-8 Interpreter Core
========================
A cycle-step emulator for the classic 35-opcode CHIP-8 virtual machine.

Every instruction is a big-endian 16-bit word fetched from memory at PC.
The fetch/decode/execute loop advances PC by 2 *before* dispatch, so jump
and call targets are absolute and a conditional skip is simply PC += 2.

Memory map:
  0x000 .. 0x1FF   reserved (font glyphs at 0x050)
  0x200 .. 0xFFF   program image

VF doubles as the carry / borrow / collision flag for the ALU and DRW
instructions.  The only fatal condition is a RET on an empty call stack
(and, symmetrically, a CALL past the 16-entry stack limit).
"""

from __future__ import annotations
import logging
import random
from typing import Optional

from devices import FrameBuffer, Keypad, AudioTrigger

log = logging.getLogger(__name__)

# Finer than DEBUG: one record per executed instruction.
TRACE = 5
logging.addLevelName(TRACE, "TRACE")

# ---------------------------------------------------------------------------
#  Constants
# ---------------------------------------------------------------------------

MEMORY_SIZE      = 4096
RESERVED_SIZE    = 0x200
PROGRAM_START    = 0x200
MAX_PROGRAM_SIZE = MEMORY_SIZE - RESERVED_SIZE   # 3584 bytes
FONT_BASE        = 0x050
GLYPH_SIZE       = 5
REGISTER_COUNT   = 16
STACK_DEPTH      = 16

SCREEN_WIDTH  = 64
SCREEN_HEIGHT = 32

# Standard hex font, one 4x5 glyph per digit 0-F.
FONT = bytes([
    0xF0, 0x90, 0x90, 0x90, 0xF0,  # 0
    0x20, 0x60, 0x20, 0x20, 0x70,  # 1
    0xF0, 0x10, 0xF0, 0x80, 0xF0,  # 2
    0xF0, 0x10, 0xF0, 0x10, 0xF0,  # 3
    0x90, 0x90, 0xF0, 0x10, 0x10,  # 4
    0xF0, 0x80, 0xF0, 0x10, 0xF0,  # 5
    0xF0, 0x80, 0xF0, 0x90, 0xF0,  # 6
    0xF0, 0x10, 0x20, 0x40, 0x40,  # 7
    0xF0, 0x90, 0xF0, 0x90, 0xF0,  # 8
    0xF0, 0x90, 0xF0, 0x10, 0xF0,  # 9
    0xF0, 0x90, 0xF0, 0x90, 0x90,  # A
    0xE0, 0x90, 0xE0, 0x90, 0xE0,  # B
    0xF0, 0x80, 0x80, 0x80, 0xF0,  # C
    0xE0, 0x90, 0x90, 0x90, 0xE0,  # D
    0xF0, 0x80, 0xF0, 0x80, 0xF0,  # E
    0xF0, 0x80, 0xF0, 0x80, 0x80,  # F
])

# ---------------------------------------------------------------------------
#  Helpers
# ---------------------------------------------------------------------------

def u8(v: int) -> int:
    """Mask to unsigned 8 bits."""
    return v & 0xFF

def u16(v: int) -> int:
    """Mask to unsigned 16 bits."""
    return v & 0xFFFF

# ---------------------------------------------------------------------------
#  Errors
# ---------------------------------------------------------------------------

class Chip8Error(Exception):
    """Base for interpreter-generated errors."""
    pass

class LoadError(Chip8Error):
    pass

class StackUnderflowError(Chip8Error):
    def __init__(self, pc: int):
        self.pc = pc
        super().__init__(f"RET with empty call stack @ {pc:#05x}")

class StackOverflowError(Chip8Error):
    def __init__(self, pc: int):
        self.pc = pc
        super().__init__(f"CALL exceeds stack depth {STACK_DEPTH} @ {pc:#05x}")

# ---------------------------------------------------------------------------
#  Instruction decoder
# ---------------------------------------------------------------------------

class Instruction:
    """A decoded 16-bit opcode.

    Field layout (nibbles, MSB first):

        kind x    y    n
        ---- ---- ---- ----
                  <-- nn -->
             <---- nnn ---->

    Decoding is total: every 16-bit value yields well-defined fields.
    """

    __slots__ = ("opcode",)

    def __init__(self, opcode: int):
        self.opcode = u16(opcode)

    @classmethod
    def from_bytes(cls, high: int, low: int) -> "Instruction":
        return cls((u8(high) << 8) | u8(low))

    @property
    def kind(self) -> int:
        return (self.opcode >> 12) & 0xF

    @property
    def x(self) -> int:
        return (self.opcode >> 8) & 0xF

    @property
    def y(self) -> int:
        return (self.opcode >> 4) & 0xF

    @property
    def n(self) -> int:
        return self.opcode & 0xF

    @property
    def nn(self) -> int:
        return self.opcode & 0xFF

    @property
    def nnn(self) -> int:
        return self.opcode & 0xFFF

    def decode(self) -> tuple[int, int, int, int, int, int]:
        """Return (kind, x, y, n, nn, nnn)."""
        return self.kind, self.x, self.y, self.n, self.nn, self.nnn

    def __eq__(self, other) -> bool:
        if isinstance(other, Instruction):
            return self.opcode == other.opcode
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.opcode)

    def __repr__(self) -> str:
        return (f"Instruction(opcode={self.opcode:#06x}, kind={self.kind:#x}, "
                f"x={self.x:#x}, y={self.y:#x}, n={self.n:#x}, "
                f"nn={self.nn:#04x}, nnn={self.nnn:#05x})")

# ---------------------------------------------------------------------------
#  Disassembler
# ---------------------------------------------------------------------------

ALU_NAMES = {
    0x0: "LD", 0x1: "OR", 0x2: "AND", 0x3: "XOR",
    0x4: "ADD", 0x5: "SUB", 0x6: "SHR", 0x7: "SUBN", 0xE: "SHL",
}

MISC_FORMATS = {
    0x07: "LD V{x:X}, DT",
    0x0A: "LD V{x:X}, K",
    0x15: "LD DT, V{x:X}",
    0x18: "LD ST, V{x:X}",
    0x1E: "ADD I, V{x:X}",
    0x29: "LD F, V{x:X}",
    0x33: "LD B, V{x:X}",
    0x55: "LD [I], V{x:X}",
    0x65: "LD V{x:X}, [I]",
}


def disasm_one(opcode: int) -> str:
    """Disassemble one opcode word.  Unknown patterns render as DW."""
    ins = Instruction(opcode)
    kind, x, y, n, nn, nnn = ins.decode()

    if kind == 0x0:
        if ins.opcode == 0x00E0:
            return "CLS"
        if ins.opcode == 0x00EE:
            return "RET"
        return f"SYS {nnn:#05x}"
    elif kind == 0x1:
        return f"JP {nnn:#05x}"
    elif kind == 0x2:
        return f"CALL {nnn:#05x}"
    elif kind == 0x3:
        return f"SE V{x:X}, {nn:#04x}"
    elif kind == 0x4:
        return f"SNE V{x:X}, {nn:#04x}"
    elif kind == 0x5:
        return f"SE V{x:X}, V{y:X}"
    elif kind == 0x6:
        return f"LD V{x:X}, {nn:#04x}"
    elif kind == 0x7:
        return f"ADD V{x:X}, {nn:#04x}"
    elif kind == 0x8:
        name = ALU_NAMES.get(n)
        if name in ("SHR", "SHL"):
            return f"{name} V{x:X}"
        if name is not None:
            return f"{name} V{x:X}, V{y:X}"
    elif kind == 0x9:
        return f"SNE V{x:X}, V{y:X}"
    elif kind == 0xA:
        return f"LD I, {nnn:#05x}"
    elif kind == 0xB:
        return f"JP V0, {nnn:#05x}"
    elif kind == 0xC:
        return f"RND V{x:X}, {nn:#04x}"
    elif kind == 0xD:
        return f"DRW V{x:X}, V{y:X}, {n}"
    elif kind == 0xE:
        if nn == 0x9E:
            return f"SKP V{x:X}"
        if nn == 0xA1:
            return f"SKNP V{x:X}"
    elif kind == 0xF:
        fmt = MISC_FORMATS.get(nn)
        if fmt is not None:
            return fmt.format(x=x)

    return f"DW {ins.opcode:#06x}"


def disasm_program(data: bytes | bytearray,
                   base: int = PROGRAM_START) -> list[str]:
    """Listing lines for a whole program image, two bytes per line."""
    lines = []
    for off in range(0, len(data) - 1, 2):
        opcode = (data[off] << 8) | data[off + 1]
        lines.append(f"{base + off:03x}: {opcode:04x}  {disasm_one(opcode)}")
    if len(data) % 2:
        lines.append(f"{base + len(data) - 1:03x}: {data[-1]:02x}    "
                     f"DB {data[-1]:#04x}")
    return lines


# ---------------------------------------------------------------------------
#  Interpreter
# ---------------------------------------------------------------------------

class Chip8:
    """CHIP-8 interpreter: memory, registers, timers and the owned devices."""

    def __init__(self, audio: Optional[AudioTrigger] = None,
                 rng: Optional[random.Random] = None):
        self.mem = bytearray(MEMORY_SIZE)

        # V0..VF, 8 bits each
        self.v: list[int] = [0] * REGISTER_COUNT
        self.i: int = 0
        self.pc: int = PROGRAM_START
        self.stack: list[int] = []

        self.delay_timer: int = 0
        self.sound_timer: int = 0

        # Owned devices
        self.fb = FrameBuffer(SCREEN_WIDTH, SCREEN_HEIGHT)
        self.keypad = Keypad()
        self.audio: AudioTrigger = audio if audio is not None else AudioTrigger()
        self.rng = rng if rng is not None else random.Random()

        self.cycle_count: int = 0
        self.waiting_for_key: bool = False

        self.load_font()

    # -- Loading --

    def load_font(self, font: bytes = FONT):
        """Copy the glyph table into reserved memory at FONT_BASE."""
        self.mem[FONT_BASE:FONT_BASE + len(font)] = font

    def load_program(self, data: bytes | bytearray):
        """Write a program image at PROGRAM_START.

        Raises LoadError if the image does not fit above reserved memory.
        """
        if len(data) > MAX_PROGRAM_SIZE:
            raise LoadError(
                f"program is {len(data)} bytes; at most {MAX_PROGRAM_SIZE} "
                f"bytes fit in {MEMORY_SIZE} bytes of memory")
        self.mem[PROGRAM_START:PROGRAM_START + len(data)] = data
        log.info("loaded %d bytes at %#05x", len(data), PROGRAM_START)

    def load_program_file(self, path: str):
        """Load a program image from a file."""
        with open(path, "rb") as f:
            data = f.read()
        self.load_program(data)

    # -- Memory access --

    def mem_read8(self, addr: int) -> int:
        return self.mem[addr % MEMORY_SIZE]

    def mem_write8(self, addr: int, val: int):
        self.mem[addr % MEMORY_SIZE] = u8(val)

    def mem_slice(self, addr: int, count: int) -> bytes:
        """Read *count* bytes starting at *addr*, wrapping at the top."""
        return bytes(self.mem_read8(addr + k) for k in range(count))

    # -- Stack --

    def push(self, addr: int):
        if len(self.stack) >= STACK_DEPTH:
            raise StackOverflowError(u16(self.pc - 2))
        self.stack.append(addr)

    def pop(self) -> int:
        if not self.stack:
            raise StackUnderflowError(u16(self.pc - 2))
        return self.stack.pop()

    # -- Fetch --

    def fetch(self) -> Instruction:
        """Fetch the instruction at PC and advance PC by 2."""
        ins = Instruction.from_bytes(self.mem_read8(self.pc),
                                     self.mem_read8(self.pc + 1))
        self.pc = u16(self.pc + 2)
        return ins

    # -- Device pass-throughs --

    def key_down(self, key: int):
        self.keypad.set(key, True)

    def key_up(self, key: int):
        self.keypad.set(key, False)

    def snapshot(self) -> tuple[bytes, ...]:
        return self.fb.snapshot()

    @property
    def halted(self) -> bool:
        """True once PC has run off the end of memory."""
        return self.pc >= MEMORY_SIZE

    # =====================================================================
    #  STEP: the core fetch/decode/execute cycle
    # =====================================================================

    def step(self):
        """Execute exactly one instruction."""
        ins = self.fetch()
        if log.isEnabledFor(TRACE):
            log.log(TRACE, "%03x: %04x  %-18s V=%s I=%03x", u16(self.pc - 2),
                    ins.opcode, disasm_one(ins.opcode),
                    " ".join(f"{r:02x}" for r in self.v), self.i)

        kind = ins.kind
        if   kind == 0x0: self._exec_sys(ins)
        elif kind == 0x1: self.pc = ins.nnn
        elif kind == 0x2:
            self.push(self.pc)
            self.pc = ins.nnn
        elif kind == 0x3:
            if self.v[ins.x] == ins.nn:
                self.pc = u16(self.pc + 2)
        elif kind == 0x4:
            if self.v[ins.x] != ins.nn:
                self.pc = u16(self.pc + 2)
        elif kind == 0x5:
            if self.v[ins.x] == self.v[ins.y]:
                self.pc = u16(self.pc + 2)
        elif kind == 0x6: self.v[ins.x] = ins.nn
        elif kind == 0x7: self.v[ins.x] = u8(self.v[ins.x] + ins.nn)
        elif kind == 0x8: self._exec_alu(ins)
        elif kind == 0x9:
            if self.v[ins.x] != self.v[ins.y]:
                self.pc = u16(self.pc + 2)
        elif kind == 0xA: self.i = ins.nnn
        elif kind == 0xB: self.pc = ins.nnn + self.v[0]
        elif kind == 0xC: self.v[ins.x] = self.rng.getrandbits(8) & ins.nn
        elif kind == 0xD: self._exec_draw(ins)
        elif kind == 0xE: self._exec_key(ins)
        elif kind == 0xF: self._exec_misc(ins)

        self.cycle_count += 1

    # =====================================================================
    #  Family executors
    # =====================================================================

    # -- 0x0: CLS / RET (0NNN machine calls are ignored) --
    def _exec_sys(self, ins: Instruction):
        if ins.opcode == 0x00E0:
            self.fb.clear()
        elif ins.opcode == 0x00EE:
            self.pc = self.pop()

    # -- 0x8: register-register ALU --
    # Flag-setting ops write VF first and Vx last, so 8FYn keeps the result.
    def _exec_alu(self, ins: Instruction):
        x, y, sub = ins.x, ins.y, ins.n
        a = self.v[x]
        b = self.v[y]

        if sub == 0x0:    # LD
            self.v[x] = b
        elif sub == 0x1:  # OR
            self.v[x] = a | b
        elif sub == 0x2:  # AND
            self.v[x] = a & b
        elif sub == 0x3:  # XOR
            self.v[x] = a ^ b
        elif sub == 0x4:  # ADD, VF = carry
            r = a + b
            self.v[0xF] = 1 if r > 0xFF else 0
            self.v[x] = u8(r)
        elif sub == 0x5:  # SUB, VF = NOT borrow
            self.v[0xF] = 1 if a >= b else 0
            self.v[x] = u8(a - b)
        elif sub == 0x6:  # SHR, Vy ignored
            self.v[0xF] = a & 1
            self.v[x] = a >> 1
        elif sub == 0x7:  # SUBN, VF = NOT borrow
            self.v[0xF] = 1 if b >= a else 0
            self.v[x] = u8(b - a)
        elif sub == 0xE:  # SHL, Vy ignored
            self.v[0xF] = (a >> 7) & 1
            self.v[x] = u8(a << 1)

    # -- 0xD: DRW Vx, Vy, n --
    def _exec_draw(self, ins: Instruction):
        x = self.v[ins.x] % self.fb.width
        y = self.v[ins.y] % self.fb.height
        rows = self.mem_slice(self.i, ins.n)
        collided = self.fb.draw(x, y, rows)
        self.v[0xF] = 1 if collided else 0

    # -- 0xE: SKP / SKNP --
    def _exec_key(self, ins: Instruction):
        key = self.v[ins.x]
        if ins.nn == 0x9E:
            if self.keypad.is_down(key):
                self.pc = u16(self.pc + 2)
        elif ins.nn == 0xA1:
            if not self.keypad.is_down(key):
                self.pc = u16(self.pc + 2)

    # -- 0xF: timers, index, key wait, BCD, register block --
    def _exec_misc(self, ins: Instruction):
        x, op = ins.x, ins.nn

        if op == 0x07:
            self.v[x] = self.delay_timer
        elif op == 0x0A:
            self._wait_key(x)
        elif op == 0x15:
            self.delay_timer = self.v[x]
        elif op == 0x18:
            self.sound_timer = self.v[x]
        elif op == 0x1E:
            # No VF side effect (COSMAC VIP behaviour)
            self.i = u16(self.i + self.v[x])
        elif op == 0x29:
            self.i = FONT_BASE + GLYPH_SIZE * self.v[x]
        elif op == 0x33:
            val = self.v[x]
            self.mem_write8(self.i, val // 100)
            self.mem_write8(self.i + 1, (val // 10) % 10)
            self.mem_write8(self.i + 2, val % 10)
        elif op == 0x55:
            for r in range(x + 1):
                self.mem_write8(self.i + r, self.v[r])
        elif op == 0x65:
            for r in range(x + 1):
                self.v[r] = self.mem_read8(self.i + r)

    def _wait_key(self, x: int):
        """FX0A: block by re-executing this instruction until a key is down."""
        key = self.keypad.first_down()
        if key is None:
            self.pc = u16(self.pc - 2)
            self.waiting_for_key = True
            return
        self.v[x] = key
        # The press is consumed so the next FX0A waits for a new one.
        self.keypad.set(key, False)
        self.waiting_for_key = False
        log.debug("key %X latched into V%X", key, x)

    # =====================================================================
    #  60 Hz timer tick
    # =====================================================================

    def tick_timers(self):
        """Decrement delay/sound timers; drive the audio trigger."""
        if self.delay_timer > 0:
            self.delay_timer -= 1
        if self.sound_timer > 0:
            self.audio.start()
            self.sound_timer -= 1
            if self.sound_timer == 0:
                self.audio.stop()
        else:
            # ST may have been zeroed by FX18 while the tone was playing
            self.audio.stop()

    # -- Debug / introspection --

    def dump_regs(self) -> str:
        lines = []
        for row in range(0, REGISTER_COUNT, 8):
            lines.append("  " + "  ".join(
                f"V{r:X}={self.v[r]:#04x}" for r in range(row, row + 8)))
        lines.append(f"  PC={self.pc:#05x}  I={self.i:#05x}  "
                     f"DT={self.delay_timer}  ST={self.sound_timer}")
        stack = " ".join(f"{a:#05x}" for a in self.stack) or "(empty)"
        lines.append(f"  STACK[{len(self.stack)}] = {stack}")
        return "\n".join(lines)
