"""
CHIP-8 Peripheral / Device Layer
=================================
The small stateful devices the interpreter owns:

  FrameBuffer   64x32 monochrome display with XOR sprite blitting
  Keypad        16-key hex keypad latch (keys 0x0 .. 0xF)
  KeyMap        host key name -> logical key table (exactly 16 entries)
  AudioTrigger  start/stop signals for the buzzer (no-op base)

Host layout of the default KeyMap (the usual COSMAC VIP mapping):

    1 2 3 4        1 2 3 C
    q w e r   ->   4 5 6 D
    a s d f        7 8 9 E
    z x c v        A 0 B F
"""

from __future__ import annotations
from typing import Optional

KEY_COUNT = 16


# ---------------------------------------------------------------------------
#  FrameBuffer
# ---------------------------------------------------------------------------

class FrameBuffer:
    """Monochrome bit grid addressed grid[x][y]."""

    def __init__(self, width: int = 64, height: int = 32):
        self.width = width
        self.height = height
        self.grid: list[bytearray] = []
        self.clear()

    def clear(self):
        self.grid = [bytearray(self.height) for _ in range(self.width)]

    def pixel(self, x: int, y: int) -> int:
        return self.grid[x][y]

    def draw(self, x: int, y: int, rows: bytes | bytearray) -> bool:
        """XOR-blit sprite *rows* with the top-left corner at (x, y).

        Each row byte is drawn MSB-first across 8 columns.  Pixels past the
        right or bottom edge are clipped, not wrapped.  Returns True if any
        lit pixel was turned off.
        """
        collided = False
        for dy, bits in enumerate(rows):
            py = y + dy
            if py >= self.height:
                break
            for dx in range(8):
                px = x + dx
                if px >= self.width:
                    break
                if (bits >> (7 - dx)) & 1:
                    column = self.grid[px]
                    if column[py]:
                        collided = True
                    column[py] ^= 1
        return collided

    def snapshot(self) -> tuple[bytes, ...]:
        """Read-only copy of the grid, one bytes object per column."""
        return tuple(bytes(column) for column in self.grid)

    def lit_count(self) -> int:
        return sum(sum(column) for column in self.grid)


# ---------------------------------------------------------------------------
#  Keypad
# ---------------------------------------------------------------------------

class Keypad:
    """Up/down latch for the 16 logical keys."""

    def __init__(self):
        self.keys: list[bool] = [False] * KEY_COUNT

    def set(self, key: int, down: bool):
        self.keys[key & 0xF] = bool(down)

    def is_down(self, key: int) -> bool:
        return self.keys[key & 0xF]

    def first_down(self) -> Optional[int]:
        """Lowest-numbered key currently down, or None."""
        for key, down in enumerate(self.keys):
            if down:
                return key
        return None

    def clear_all(self):
        self.keys = [False] * KEY_COUNT


# ---------------------------------------------------------------------------
#  KeyMap
# ---------------------------------------------------------------------------

class KeyMapError(ValueError):
    pass


DEFAULT_LAYOUT = {
    "x": 0x0, "1": 0x1, "2": 0x2, "3": 0x3,
    "q": 0x4, "w": 0x5, "e": 0x6, "a": 0x7,
    "s": 0x8, "d": 0x9, "z": 0xA, "c": 0xB,
    "4": 0xC, "r": 0xD, "f": 0xE, "v": 0xF,
}


class KeyMap:
    """Bijective table from host key names to logical keys 0x0-0xF."""

    def __init__(self, layout: dict[str, int]):
        if len(layout) != KEY_COUNT:
            raise KeyMapError(
                f"key layout has {len(layout)} entries, expected {KEY_COUNT}")
        if sorted(layout.values()) != list(range(KEY_COUNT)):
            raise KeyMapError(
                "key layout must map onto each of the keys 0x0-0xF exactly once")
        self.layout = dict(layout)

    @classmethod
    def default(cls) -> "KeyMap":
        return cls(DEFAULT_LAYOUT)

    @classmethod
    def from_names(cls, names: list[str]) -> "KeyMap":
        """Build from host key names listed in logical order 0x0..0xF."""
        if len(names) != KEY_COUNT:
            raise KeyMapError(
                f"expected {KEY_COUNT} key names, got {len(names)}")
        return cls({name.strip(): key for key, name in enumerate(names)})

    def lookup(self, name: str) -> Optional[int]:
        return self.layout.get(name)

    def __len__(self) -> int:
        return len(self.layout)


# ---------------------------------------------------------------------------
#  AudioTrigger
# ---------------------------------------------------------------------------

class AudioTrigger:
    """Buzzer control.  The base class is silent; override for real audio."""

    def start(self):
        """Called on each timer tick while the sound timer is running."""
        pass

    def stop(self):
        """Called on each timer tick that ends with the sound timer at zero."""
        pass
