#!/usr/bin/env python3
"""
LC-3 Virtual Machine
====================
Command-line front end: load one program image, wire the host terminal to
the keyboard registers and trap routines, and run until HALT.

Usage:
  python cli.py IMAGE [--poll-timeout SECONDS] [--display] [--scale N]

Exit status:
  0    program executed HALT
  1    image missing, unreadable or too short (nothing was executed)
  2    illegal instruction or unknown trap vector
  3    console input ended while the program was waiting for a key
  4    console could not be configured, read or written
  130  interrupted (Ctrl+C / SIGTERM)

The terminal is restored on every one of these paths.
"""

from __future__ import annotations
import argparse
import signal
import sys
from typing import Optional

from lc3 import IllegalInstructionError, StartupError, DEFAULT_POLL_TIMEOUT
from devices import ConsoleDevice, open_host_console
from system import LC3System, read_image_file

EXIT_OK           = 0
EXIT_STARTUP      = 1
EXIT_ILLEGAL      = 2
EXIT_INPUT_CLOSED = 3
EXIT_CONSOLE      = 4
EXIT_INTERRUPT    = 130


# ---------------------------------------------------------------------------
#  Console mode
# ---------------------------------------------------------------------------

def _raise_interrupt(signum, frame):
    raise KeyboardInterrupt


def run_console(sys_emu: LC3System) -> int:
    """Run the machine with its console in raw mode.

    The console is switched back on every exit path.  Returns the process
    exit status.
    """
    try:
        with sys_emu.console:
            sys_emu.run()
    except IllegalInstructionError as e:
        print(f"\nERROR: {e}", file=sys.stderr)
        print(sys_emu.cpu.dump_regs(), file=sys.stderr)
        return EXIT_ILLEGAL
    except EOFError:
        print("\nERROR: console input closed", file=sys.stderr)
        return EXIT_INPUT_CLOSED
    except OSError as e:
        print(f"\nERROR: console: {e}", file=sys.stderr)
        return EXIT_CONSOLE
    except KeyboardInterrupt:
        print(file=sys.stderr)   # clean newline
        return EXIT_INTERRUPT
    return EXIT_OK


def _open_console(args) -> ConsoleDevice:
    if args.display:
        try:
            import pygame  # noqa: F401
        except ImportError as e:
            print(f"[display] pygame not available: {e}", file=sys.stderr)
            print("[display] Install with: pip install pygame",
                  file=sys.stderr)
        else:
            from display import WindowConsole
            return WindowConsole(scale=args.scale)
    return open_host_console()


# ---------------------------------------------------------------------------
#  Main
# ---------------------------------------------------------------------------

def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="LC-3 Virtual Machine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="Examples:\n"
               "  python cli.py 2048.obj\n"
               "  python cli.py rogue.obj --poll-timeout 0.5\n"
               "  python cli.py hello.obj --display --scale 2\n"
    )
    parser.add_argument("image",
                        help="Program image: big-endian words, origin first")
    parser.add_argument("--poll-timeout", type=float,
                        default=DEFAULT_POLL_TIMEOUT, metavar="SECONDS",
                        help="How long a KBSR read waits for a key "
                             f"(default: {DEFAULT_POLL_TIMEOUT})")
    parser.add_argument("--display", action="store_true",
                        help="Open a pygame window as the console")
    parser.add_argument("--scale", type=int, default=1, metavar="N",
                        help="Font scale factor for --display (default: 1)")
    args = parser.parse_args(argv)

    # ---- Load the image before touching the terminal -------------------
    try:
        origin, words = read_image_file(args.image)
    except StartupError as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return EXIT_STARTUP

    sys_emu = LC3System(_open_console(args), poll_timeout=args.poll_timeout)
    sys_emu.load_words(origin, words)
    sys_emu.boot()

    old_term = signal.signal(signal.SIGTERM, _raise_interrupt)
    try:
        return run_console(sys_emu)
    finally:
        signal.signal(signal.SIGTERM, old_term)


if __name__ == "__main__":
    sys.exit(main())
