#!/usr/bin/env python3
"""
CHIP-8 Command-Line Interface
==============================
Load a program image and run it in a pygame window (or headless).

Provides:
  - Program loading at 0x200
  - Windowed or headless execution at 500 Hz cycles / 60 Hz timers
  - Disassembly listing of a program image (chip8.disasm_program)

Usage:
  python cli.py ROM [--scale N] [--headless] [--max-cycles N] [--mute]
                    [--cycle-hz HZ] [--timer-hz HZ] [--keys LAYOUT]
                    [--disasm] [-v]
"""

from __future__ import annotations
import argparse
import logging
import sys

from chip8 import LoadError, PROGRAM_START, TRACE, disasm_program
from devices import KeyMap, KeyMapError
from display import (DEFAULT_SCALE, HeadlessDisplay, PygameDisplay, PygameAudio,
                     AudioUnavailable, DisplayUnavailable, render_text)
from system import Chip8System, CYCLE_HZ, TIMER_HZ, STOP_FAULT

# ---------------------------------------------------------------------------
#  CLI
# ---------------------------------------------------------------------------

def _log_level(verbosity: int) -> int:
    if verbosity >= 2:
        return TRACE
    if verbosity == 1:
        return logging.INFO
    return logging.WARNING


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chip8",
        description="CHIP-8 interpreter",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Run a program in a window
    python cli.py roms/IBM_Logo.ch8

    # Run 2000 cycles without a window and print the final screen
    python cli.py roms/IBM_Logo.ch8 --headless --max-cycles 2000

    # Print a disassembly listing
    python cli.py roms/IBM_Logo.ch8 --disasm

Keys:
    1 2 3 4 / q w e r / a s d f / z x c v   ->  CHIP-8 keypad
    Esc or closing the window quits.
        """
    )
    parser.add_argument("rom", help="Path to the program image to load")
    parser.add_argument("--scale", type=int, default=DEFAULT_SCALE,
                        help=f"Window scale factor (default: {DEFAULT_SCALE})")
    parser.add_argument("--headless", action="store_true",
                        help="Run without a window; print the final screen")
    parser.add_argument("--max-cycles", type=int, default=None, metavar="N",
                        help="Stop after N CPU cycles")
    parser.add_argument("--cycle-hz", type=int, default=CYCLE_HZ,
                        metavar="HZ",
                        help=f"CPU cycle rate (default: {CYCLE_HZ})")
    parser.add_argument("--timer-hz", type=int, default=TIMER_HZ,
                        metavar="HZ",
                        help=f"Timer / refresh rate (default: {TIMER_HZ})")
    parser.add_argument("--mute", action="store_true",
                        help="Disable the buzzer")
    parser.add_argument("--keys", type=str, default=None, metavar="LAYOUT",
                        help="16 comma-separated host key names for keys "
                             "0-F (default: x,1,2,3,q,w,e,a,s,d,z,c,4,r,f,v)")
    parser.add_argument("--disasm", action="store_true",
                        help="Print a disassembly listing and exit")
    parser.add_argument("-v", "--verbose", action="count", default=0,
                        help="-v for info logging, -vv for a per-cycle trace")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.cycle_hz <= 0 or args.timer_hz <= 0:
        parser.error("--cycle-hz and --timer-hz must be positive")

    logging.basicConfig(
        level=_log_level(args.verbose),
        format="%(asctime)s %(levelname)-5s %(name)s: %(message)s")

    try:
        keymap = (KeyMap.from_names(args.keys.split(","))
                  if args.keys else KeyMap.default())
    except KeyMapError as e:
        print(f"Error: --keys: {e}", file=sys.stderr)
        return 1

    try:
        with open(args.rom, "rb") as f:
            data = f.read()
    except OSError as e:
        print(f"Error: cannot read program '{args.rom}': {e}", file=sys.stderr)
        return 1

    # ---- Disassemble-only mode ----------------------------------------
    if args.disasm:
        for line in disasm_program(data):
            print(line)
        return 0

    if args.headless:
        display = HeadlessDisplay()
    else:
        display = PygameDisplay(keymap=keymap, scale=args.scale)

    sys_emu = Chip8System(renderer=display,
                          cycle_hz=args.cycle_hz, timer_hz=args.timer_hz)
    try:
        sys_emu.load_binary(data)
    except LoadError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    print(f"Loaded {len(data)} bytes from '{args.rom}' at {PROGRAM_START:#x}")

    try:
        display.start()
    except ImportError as e:
        print(f"[display] pygame not available: {e}", file=sys.stderr)
        print("[display] Install with: pip install pygame", file=sys.stderr)
        return 1
    except DisplayUnavailable as e:
        print(f"[display] {e}", file=sys.stderr)
        return 1
    if not args.headless:
        print(f"[display] window opened (scale={args.scale}x)")

    # Audio
    audio = None
    if not (args.mute or args.headless):
        audio = PygameAudio()
        try:
            audio.open()
        except AudioUnavailable as e:
            print(f"[audio] {e}; continuing without sound", file=sys.stderr)
            audio = None
        else:
            sys_emu.cpu.audio = audio

    reason = None
    try:
        reason = sys_emu.run(max_cycles=args.max_cycles)
    except KeyboardInterrupt:
        print("\nInterrupted.")
    finally:
        sys_emu.stop()
        display.stop()
        if audio is not None:
            audio.close()

    if args.headless and display.last is not None:
        print(render_text(display.last))

    if reason == STOP_FAULT:
        print(f"Fatal: {sys_emu.fault}", file=sys.stderr)
        print(sys_emu.dump_state(), file=sys.stderr)
        return 2
    return 0


if __name__ == "__main__":
    sys.exit(main())
