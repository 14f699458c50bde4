"""
CHIP-8 Display, Input and Audio Adapters
=========================================
Thin host-side adapters for the Scheduler:

  PygameDisplay    scaled pygame window; translates host key events into
                   logical keypad events through a KeyMap
  PygameAudio      square-wave buzzer on pygame.mixer
  HeadlessDisplay  no window; records framebuffer snapshots (tests, CI)

A renderer exposes:
    present(snapshot)     paint one framebuffer snapshot (grid[x][y])
    poll_input()          -> list of (logical_key, down) since last call
    quit_requested        True once the user closed the window

pygame and numpy are imported lazily so the core and the headless path
work without them.

Usage (programmatic):
    from display import PygameDisplay
    disp = PygameDisplay(scale=10)
    disp.start()          # opens the window, must run on the main thread
    ...
    disp.stop()
"""

from __future__ import annotations

from collections import deque
from typing import Optional

from devices import KeyMap, AudioTrigger

DEFAULT_SCALE = 10

FG_COLOR = (255, 255, 255)
BG_COLOR = (0, 0, 0)


# ── Pygame window ─────────────────────────────────────────────────────


class DisplayUnavailable(RuntimeError):
    pass


class PygameDisplay:
    """pygame window for the 64x32 framebuffer plus keyboard input."""

    def __init__(self, keymap: Optional[KeyMap] = None,
                 scale: int = DEFAULT_SCALE, title: str = "CHIP-8",
                 width: int = 64, height: int = 32):
        self.keymap = keymap if keymap is not None else KeyMap.default()
        self.scale = max(1, scale)
        self.title = title
        self.width = width
        self.height = height
        self.quit_requested = False
        self.frames = 0
        self.skipped = 0      # presents identical to the last painted frame
        self._screen = None
        self._surface = None
        self._last: Optional[tuple[bytes, ...]] = None

    # -- public API -------------------------------------------------------

    def start(self):
        """Open the window."""
        import pygame

        try:
            pygame.display.init()
            self._screen = pygame.display.set_mode(
                (self.width * self.scale, self.height * self.scale),
                pygame.RESIZABLE)
        except pygame.error as e:
            raise DisplayUnavailable(f"cannot open window: {e}") from e
        pygame.display.set_caption(self.title)
        self._surface = pygame.Surface((self.width, self.height))
        self._last = None
        self._screen.fill(BG_COLOR)
        pygame.display.flip()

    def stop(self):
        import pygame

        if self._screen is not None:
            pygame.display.quit()
            self._screen = None

    @property
    def running(self) -> bool:
        return self._screen is not None

    def poll_input(self) -> list[tuple[int, bool]]:
        """Pump pygame events; return mapped (key, down) pairs."""
        import pygame

        events: list[tuple[int, bool]] = []
        for event in pygame.event.get():
            if event.type == pygame.QUIT:
                self.quit_requested = True
            elif event.type in (pygame.KEYDOWN, pygame.KEYUP):
                if event.key == pygame.K_ESCAPE:
                    self.quit_requested = True
                    continue
                key = self.keymap.lookup(pygame.key.name(event.key))
                if key is not None:
                    events.append((key, event.type == pygame.KEYDOWN))
        return events

    def present(self, snapshot: tuple[bytes, ...]):
        """Scale and paint a framebuffer snapshot.

        A snapshot equal to the last one painted is not repainted.
        """
        import pygame
        import numpy as np

        if self._screen is None:
            return
        if snapshot == self._last:
            self.skipped += 1
            return
        self._last = snapshot
        frame = (np.frombuffer(b"".join(snapshot), dtype=np.uint8)
                 .reshape(len(snapshot), -1).astype(bool))  # (w, h)
        rgb = np.where(frame[..., None],
                       np.array(FG_COLOR, dtype=np.uint8),
                       np.array(BG_COLOR, dtype=np.uint8))
        pygame.surfarray.blit_array(self._surface, rgb)
        pygame.transform.scale(self._surface, self._screen.get_size(),
                               self._screen)
        pygame.display.flip()
        self.frames += 1


# ── Audio ─────────────────────────────────────────────────────────────


class AudioUnavailable(RuntimeError):
    pass


class PygameAudio(AudioTrigger):
    """Looping square-wave tone, started and stopped by the sound timer."""

    def __init__(self, frequency: int = 441, volume: float = 0.1,
                 sample_rate: int = 44_100):
        self.frequency = frequency
        self.volume = volume
        self.sample_rate = sample_rate
        self.playing = False
        self._sound = None

    def open(self):
        """Initialise the mixer and build the tone buffer."""
        import pygame
        import numpy as np

        try:
            pygame.mixer.init(frequency=self.sample_rate, size=-16, channels=1)
        except pygame.error as e:
            raise AudioUnavailable(f"cannot open audio device: {e}") from e

        rate, _size, channels = pygame.mixer.get_init()
        period = max(2, rate // self.frequency)
        amp = int(32767 * self.volume)
        # 20 whole periods so the loop point is seamless
        t = np.arange(period * 20)
        wave = np.where((t % period) < period // 2, amp, -amp).astype(np.int16)
        if channels > 1:
            wave = np.repeat(wave[:, None], channels, axis=1)
        self._sound = pygame.sndarray.make_sound(wave)

    def close(self):
        import pygame

        self.stop()
        if self._sound is not None:
            self._sound = None
            pygame.mixer.quit()

    def start(self):
        if self._sound is not None and not self.playing:
            self._sound.play(loops=-1)
            self.playing = True

    def stop(self):
        if self._sound is not None and self.playing:
            self._sound.stop()
        self.playing = False


# ── Headless ──────────────────────────────────────────────────────────


class HeadlessDisplay:
    """No-op display for tests and --headless; records framebuffer snapshots."""

    def __init__(self, max_snapshots: Optional[int] = 120):
        self.snapshots: deque[tuple[bytes, ...]] = deque(maxlen=max_snapshots)
        self.frames = 0
        self.quit_requested = False
        self._events: deque[tuple[int, bool]] = deque()

    def start(self):
        pass

    def stop(self):
        pass

    def press(self, key: int):
        self._events.append((key, True))

    def release(self, key: int):
        self._events.append((key, False))

    def poll_input(self) -> list[tuple[int, bool]]:
        events = list(self._events)
        self._events.clear()
        return events

    def present(self, snapshot: tuple[bytes, ...]):
        self.snapshots.append(snapshot)
        self.frames += 1

    @property
    def last(self) -> Optional[tuple[bytes, ...]]:
        return self.snapshots[-1] if self.snapshots else None

    @property
    def running(self) -> bool:
        return False


def render_text(snapshot: tuple[bytes, ...], on: str = "#",
                off: str = ".") -> str:
    """Render a grid[x][y] snapshot as rows of text."""
    if not snapshot:
        return ""
    height = len(snapshot[0])
    return "\n".join(
        "".join(on if column[y] else off for column in snapshot)
        for y in range(height))
