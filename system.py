"""
CHIP-8 System Emulator
=======================
Wires together:
  - the Chip8 interpreter (chip8.py) with its framebuffer and keypad
  - a renderer / input adapter (display.py) and an audio trigger
  - the Scheduler that paces CPU cycles against the 60 Hz timer

Scheduling model: two tick-source threads, one per rate, each sleep to
their next deadline and post a timestamped Tick onto a shared queue.  A
single consumer loop (the thread calling Scheduler.run) pulls ticks in
arrival order and services each one to completion.  Only the consumer
touches interpreter state.  Ticks are never dropped or merged: a slow
consumer just leaves notifications queued.

    cycle tick (500 Hz):  drain host key events -> keypad, then one step()
    timer tick  (60 Hz):  tick_timers(), then present the framebuffer
"""

from __future__ import annotations
import logging
import queue
import threading
import time
from collections import deque
from typing import NamedTuple, Optional

from chip8 import Chip8, Chip8Error

log = logging.getLogger(__name__)

CYCLE_HZ = 500
TIMER_HZ = 60

TICK_CYCLE = "cycle"
TICK_TIMER = "timer"

# Reasons Scheduler.run() returns
STOP_QUIT   = "quit"     # renderer closed or stop() called
STOP_HALTED = "halted"   # PC ran off the end of memory
STOP_FAULT  = "fault"    # fatal Chip8Error, see Scheduler.fault
STOP_LIMIT  = "limit"    # max_cycles reached

# How long the consumer blocks on an empty queue before re-checking
# its stop conditions.
POLL_TIMEOUT = 0.05


class Tick(NamedTuple):
    kind: str
    when: float   # time.monotonic() at the moment the source fired


# ---------------------------------------------------------------------------
#  Scheduler
# ---------------------------------------------------------------------------

class Scheduler:
    """Fixed-rate driver for one Chip8 instance."""

    def __init__(self, machine: Chip8, renderer=None,
                 cycle_hz: int = CYCLE_HZ, timer_hz: int = TIMER_HZ):
        if cycle_hz <= 0 or timer_hz <= 0:
            raise ValueError("tick rates must be positive")
        self.machine = machine
        self.renderer = renderer
        self.cycle_hz = cycle_hz
        self.timer_hz = timer_hz

        self.ticks: queue.Queue[Tick] = queue.Queue()
        self._input: deque[tuple[int, bool]] = deque()
        self._threads: list[threading.Thread] = []
        self._stop_event = threading.Event()

        self.cycles: int = 0
        self.timer_ticks: int = 0
        self.fault: Optional[Chip8Error] = None
        self.stop_reason: Optional[str] = None

    # -- host input -------------------------------------------------------

    def post_key(self, key: int, down: bool):
        """Queue a logical key event.  Safe to call from any thread."""
        self._input.append((key & 0xF, bool(down)))

    def _drain_input(self):
        if self.renderer is not None:
            for key, down in self.renderer.poll_input():
                self.post_key(key, down)
        keypad = self.machine.keypad
        while self._input:
            key, down = self._input.popleft()
            keypad.set(key, down)

    # -- tick handling ----------------------------------------------------

    def handle(self, tick: Tick):
        """Service exactly one tick.  Chip8Error propagates to the caller."""
        if tick.kind == TICK_CYCLE:
            self._drain_input()
            self.machine.step()
            self.cycles += 1
        elif tick.kind == TICK_TIMER:
            self.machine.tick_timers()
            self.timer_ticks += 1
            if self.renderer is not None:
                self.renderer.present(self.machine.snapshot())
        else:
            raise ValueError(f"unknown tick kind {tick.kind!r}")

    # -- tick sources -----------------------------------------------------

    def _tick_source(self, kind: str, hz: int):
        period = 1.0 / hz
        deadline = time.monotonic() + period
        while not self._stop_event.wait(max(0.0, deadline - time.monotonic())):
            self.ticks.put(Tick(kind, time.monotonic()))
            deadline += period

    def start(self):
        """Start both tick-source threads.

        The stop flag is left alone, so a stop() issued before the run
        makes the sources exit at once.
        """
        if self.running:
            raise RuntimeError("tick sources already running")
        self._threads = []
        self.ticks = queue.Queue()
        for kind, hz in ((TICK_TIMER, self.timer_hz),
                         (TICK_CYCLE, self.cycle_hz)):
            t = threading.Thread(target=self._tick_source, args=(kind, hz),
                                 daemon=True, name=f"chip8-{kind}")
            t.start()
            self._threads.append(t)

    def stop(self):
        """Signal the tick sources to exit.  Safe to call from any thread.

        Called before run(), it makes that run return STOP_QUIT without
        executing anything.
        """
        self._stop_event.set()
        for t in self._threads:
            t.join(timeout=1.0)
        self._threads = []

    @property
    def running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    # -- consumer loop ----------------------------------------------------

    def _stop_condition(self, max_cycles: Optional[int]) -> Optional[str]:
        if self._stop_event.is_set():
            return STOP_QUIT
        if self.renderer is not None and self.renderer.quit_requested:
            return STOP_QUIT
        if self.machine.halted:
            return STOP_HALTED
        if max_cycles is not None and self.cycles >= max_cycles:
            return STOP_LIMIT
        return None

    def run(self, max_cycles: Optional[int] = None) -> str:
        """Consume ticks until quit, halt, fault or *max_cycles* cycles.

        Returns one of the STOP_* reasons.  On STOP_FAULT the exception is
        kept in self.fault.
        """
        self.fault = None
        self.start()
        log.info("scheduler started: %d Hz cycles, %d Hz timers",
                 self.cycle_hz, self.timer_hz)
        reason = None
        try:
            while reason is None:
                reason = self._stop_condition(max_cycles)
                if reason is not None:
                    break
                try:
                    tick = self.ticks.get(timeout=POLL_TIMEOUT)
                except queue.Empty:
                    continue
                try:
                    self.handle(tick)
                except Chip8Error as e:
                    self.fault = e
                    reason = STOP_FAULT
                    log.error("fatal: %s", e)
        finally:
            self.stop()
            self._stop_event.clear()
        self.stop_reason = reason
        log.info("scheduler stopped (%s) after %d cycles, %d timer ticks, "
                 "%d ticks still queued", reason, self.cycles,
                 self.timer_ticks, self.ticks.qsize())
        return reason


# ---------------------------------------------------------------------------
#  System
# ---------------------------------------------------------------------------

class Chip8System:
    """A complete machine: interpreter + renderer + audio + scheduler."""

    def __init__(self, renderer=None, audio=None,
                 cycle_hz: int = CYCLE_HZ, timer_hz: int = TIMER_HZ,
                 rng=None):
        self.cpu = Chip8(audio=audio, rng=rng)
        self.renderer = renderer
        self.scheduler = Scheduler(self.cpu, renderer,
                                   cycle_hz=cycle_hz, timer_hz=timer_hz)

    def load_binary(self, data: bytes | bytearray):
        self.cpu.load_program(data)

    def load_file(self, path: str):
        self.cpu.load_program_file(path)

    def post_key(self, key: int, down: bool):
        self.scheduler.post_key(key, down)

    def run(self, max_cycles: Optional[int] = None) -> str:
        return self.scheduler.run(max_cycles=max_cycles)

    def stop(self):
        self.scheduler.stop()

    @property
    def fault(self) -> Optional[Chip8Error]:
        return self.scheduler.fault

    def dump_state(self) -> str:
        """Register, stack, timer and scheduler state dump."""
        lines = ["=== Registers ==="]
        lines.append(self.cpu.dump_regs())
        lines.append(f"  Cycles: {self.cpu.cycle_count}  "
                     f"Waiting for key: {self.cpu.waiting_for_key}")
        lines.append("")
        lines.append("=== Scheduler ===")
        lines.append(f"  cycle ticks={self.scheduler.cycles} "
                     f"timer ticks={self.scheduler.timer_ticks} "
                     f"queued={self.scheduler.ticks.qsize()} "
                     f"stop={self.scheduler.stop_reason or 'N/A'}")
        down = [f"{k:X}" for k in range(16) if self.cpu.keypad.is_down(k)]
        lines.append(f"  keys down: {' '.join(down) or 'none'}")
        return "\n".join(lines)
