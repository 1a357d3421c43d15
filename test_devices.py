"""
Console device tests: scripted console, POSIX terminal (via a
pseudo-terminal), the window console's key queue, and the character
screen it draws.

The window tests never open a window; they drive the queue and the
character grid directly.
"""
import os
import unittest
from unittest import mock

import pytest

from devices import (
    ConsoleDevice, ScriptedConsole, TerminalConsole, WindowsConsole,
    open_host_console,
)
from display import TextScreen, WindowConsole
from system import LC3System
from test_system import ECHO_UNTIL_Q, HELLO, make_image


# ---------------------------------------------------------------------------
#  Base contract
# ---------------------------------------------------------------------------

class TestConsoleDevice(unittest.TestCase):

    def test_defaults(self):
        con = ConsoleDevice()
        self.assertFalse(con.poll(0.0))
        with self.assertRaises(EOFError):
            con.read_char()

    def test_context_manager_returns_self(self):
        con = ScriptedConsole()
        with con as entered:
            self.assertIs(entered, con)


# ---------------------------------------------------------------------------
#  Scripted console
# ---------------------------------------------------------------------------

class TestScriptedConsole(unittest.TestCase):

    def test_keys_in_order(self):
        con = ScriptedConsole(b"ab")
        self.assertTrue(con.poll())
        self.assertEqual(con.read_char(), ord("a"))
        self.assertEqual(con.read_char(), ord("b"))
        self.assertFalse(con.poll())

    def test_exhausted_input_raises_eof(self):
        con = ScriptedConsole()
        with self.assertRaises(EOFError):
            con.read_char()

    def test_inject_str(self):
        con = ScriptedConsole()
        con.inject_input("hi")
        self.assertTrue(con.has_rx_data)
        self.assertEqual(list(con.rx_buffer), [ord("h"), ord("i")])

    def test_polls_recorded(self):
        con = ScriptedConsole()
        con.poll(0.1)
        con.poll(0.0)
        self.assertEqual(con.polls, [0.1, 0.0])

    def test_output_capture(self):
        con = ScriptedConsole()
        con.write_char(0x141)       # only the low byte
        con.write("BC")
        con.write(b"\n")
        self.assertEqual(con.output, "ABC\n")
        self.assertEqual(con.drain_output(), "ABC\n")
        self.assertEqual(con.output, "")

    def test_mode_restored_on_exception(self):
        con = ScriptedConsole()
        with self.assertRaises(RuntimeError):
            with con:
                self.assertTrue(con.mode_saved)
                raise RuntimeError("boom")
        self.assertFalse(con.mode_saved)
        self.assertEqual((con.save_count, con.restore_count), (1, 1))


# ---------------------------------------------------------------------------
#  POSIX terminal
# ---------------------------------------------------------------------------

@pytest.mark.tty
class TestTerminalConsole(unittest.TestCase):

    def setUp(self):
        import termios
        self.termios = termios
        self.master, self.slave = os.openpty()
        self.con = TerminalConsole(in_fd=self.slave, out_fd=self.slave)

    def tearDown(self):
        os.close(self.master)
        os.close(self.slave)

    def _lflags(self):
        return self.termios.tcgetattr(self.slave)[3]

    def test_raw_mode_and_restore(self):
        raw_bits = self.termios.ICANON | self.termios.ECHO
        self.assertEqual(self._lflags() & raw_bits, raw_bits)
        before = self.termios.tcgetattr(self.slave)
        with self.con:
            self.assertEqual(self._lflags() & raw_bits, 0)
            # Signals stay enabled
            self.assertTrue(self._lflags() & self.termios.ISIG)
        self.assertEqual(self.termios.tcgetattr(self.slave), before)

    def test_restore_without_save_is_noop(self):
        before = self.termios.tcgetattr(self.slave)
        self.con.restore_mode()
        self.assertEqual(self.termios.tcgetattr(self.slave), before)

    def test_key_without_enter(self):
        with self.con:
            self.assertFalse(self.con.poll(0.0))
            os.write(self.master, b"q")
            self.assertTrue(self.con.poll(1.0))
            self.assertEqual(self.con.read_char(), ord("q"))

    def test_write_char(self):
        self.con.write_char(ord("Z"))
        self.assertEqual(os.read(self.master, 16), b"Z")

    def test_mode_change_refused(self):
        refuse = self.termios.error(25, "Inappropriate ioctl for device")
        with mock.patch.object(self.termios, "tcsetattr", side_effect=refuse):
            with self.assertRaises(OSError) as ctx:
                self.con.save_mode()
        self.assertIn("cannot set terminal mode", str(ctx.exception))
        self.assertIsNone(self.con._old_settings)

    def test_restored_after_exception(self):
        before = self.termios.tcgetattr(self.slave)
        with self.assertRaises(KeyboardInterrupt):
            with self.con:
                raise KeyboardInterrupt
        self.assertEqual(self.termios.tcgetattr(self.slave), before)


@pytest.mark.tty
class TestTerminalConsolePipe(unittest.TestCase):
    """stdin redirected from a pipe: no mode change, EOF is reported."""

    def setUp(self):
        self.rd, self.wr = os.pipe()
        self.con = TerminalConsole(in_fd=self.rd, out_fd=self.wr)

    def tearDown(self):
        os.close(self.rd)
        if self.wr is not None:
            os.close(self.wr)

    def test_save_mode_is_noop(self):
        with self.con:
            self.assertIsNone(self.con._old_settings)

    def test_reads_then_eof(self):
        os.write(self.wr, b"x")
        os.close(self.wr)
        self.wr = None
        self.assertTrue(self.con.poll(1.0))
        self.assertEqual(self.con.read_char(), ord("x"))
        # A closed pipe is readable and returns no data
        self.assertTrue(self.con.poll(1.0))
        with self.assertRaises(EOFError):
            self.con.read_char()


class TestHostConsole(unittest.TestCase):

    @unittest.skipIf(os.name == "nt", "POSIX only")
    def test_posix_picks_terminal(self):
        self.assertIsInstance(open_host_console(), TerminalConsole)

    @unittest.skipUnless(os.name == "nt", "Windows only")
    def test_windows_picks_msvcrt(self):
        self.assertIsInstance(open_host_console(), WindowsConsole)


# ---------------------------------------------------------------------------
#  Character screen
# ---------------------------------------------------------------------------

class TestTextScreen(unittest.TestCase):

    def test_text_and_newlines(self):
        screen = TextScreen()
        screen.feed(b"Hi\r\nthere")
        self.assertEqual(screen.line(0), "Hi")
        self.assertEqual(screen.line(1), "there")
        self.assertEqual((screen.row, screen.col), (1, 5))

    def test_lf_returns_carriage(self):
        screen = TextScreen()
        screen.feed(b"abc\ndef")
        self.assertEqual(screen.line(1), "def")

    def test_single_byte(self):
        screen = TextScreen()
        screen.feed(0x41)
        self.assertEqual(screen.line(0), "A")

    def test_backspace_and_delete(self):
        screen = TextScreen()
        screen.feed(b"abc\x08\x7f")
        self.assertEqual(screen.line(0), "a")
        self.assertEqual(screen.col, 1)

    def test_backspace_at_left_margin(self):
        screen = TextScreen()
        screen.feed(b"\x08x")
        self.assertEqual(screen.line(0), "x")

    def test_tab(self):
        screen = TextScreen()
        screen.feed(b"ab\tx")
        self.assertEqual(screen.char_at(8, 0), "x")

    def test_wrap_and_scroll(self):
        screen = TextScreen(cols=4, rows=2)
        screen.feed(b"abcdefgh")
        self.assertEqual(screen.line(0), "efgh")
        self.assertEqual(screen.line(1), "")
        self.assertEqual((screen.row, screen.col), (1, 0))

    def test_scroll_on_newline(self):
        screen = TextScreen(cols=10, rows=3)
        screen.feed(b"1\n2\n3\n4")
        self.assertEqual([screen.line(y) for y in range(3)], ["2", "3", "4"])

    def test_cursor_position(self):
        screen = TextScreen()
        screen.feed(b"\x1b[3;5HX")
        self.assertEqual(screen.char_at(4, 2), "X")

    def test_cursor_home_and_clamp(self):
        screen = TextScreen(cols=10, rows=5)
        screen.feed(b"\x1b[99;99H")
        self.assertEqual((screen.row, screen.col), (4, 9))
        screen.feed(b"\x1b[H")
        self.assertEqual((screen.row, screen.col), (0, 0))

    def test_cursor_moves(self):
        screen = TextScreen()
        screen.feed(b"\x1b[5;5H\x1b[2A\x1b[3D*")
        self.assertEqual(screen.char_at(1, 2), "*")
        screen.feed(b"\x1b[B\x1b[10C")
        self.assertEqual((screen.row, screen.col), (3, 12))

    def test_clear_screen(self):
        screen = TextScreen()
        screen.feed(b"junk\nmore\x1b[2J")
        self.assertEqual(screen.line(0), "")
        self.assertEqual(screen.line(1), "")

    def test_erase_below(self):
        screen = TextScreen()
        screen.feed(b"abc\ndef\nghi\x1b[2;2H\x1b[J")
        self.assertEqual([screen.line(y) for y in range(3)], ["abc", "d", ""])

    def test_erase_to_end_of_line(self):
        screen = TextScreen()
        screen.feed(b"abcdef\x1b[1;3H\x1b[K")
        self.assertEqual(screen.line(0), "ab")

    def test_erase_to_start_of_line(self):
        screen = TextScreen()
        screen.feed(b"abcdef\x1b[1;3H\x1b[1K")
        self.assertEqual(screen.line(0), "   def")

    def test_unknown_sequences_dropped(self):
        screen = TextScreen()
        screen.feed(b"\x1b[?25lok\x1b7!")
        self.assertEqual(screen.line(0), "ok!")

    def test_high_bytes_ignored(self):
        screen = TextScreen()
        screen.feed(b"a\xffb")
        self.assertEqual(screen.line(0), "ab")


# ---------------------------------------------------------------------------
#  Window console (no window)
# ---------------------------------------------------------------------------

class TestWindowConsole(unittest.TestCase):

    def test_key_queue(self):
        con = WindowConsole()
        self.assertFalse(con.poll(0.0))
        con.inject_input(b"ok")
        self.assertTrue(con.poll(0.0))
        self.assertEqual(con.read_char(), ord("o"))
        self.assertEqual(con.read_char(), ord("k"))

    def test_close_ends_input(self):
        con = WindowConsole()
        con.inject_input(b"z")
        con._close()
        # Pending keys are still delivered
        self.assertEqual(con.read_char(), ord("z"))
        self.assertTrue(con.poll(0.0))
        with self.assertRaises(EOFError):
            con.read_char()

    def test_output_goes_to_screen(self):
        con = WindowConsole()
        con.write("READY\n")
        con.write_char(0x13E)
        self.assertEqual(con.screen.line(0), "READY")
        self.assertEqual(con.screen.line(1), ">")

    def test_not_open_until_saved(self):
        con = WindowConsole(scale=0)
        self.assertFalse(con.is_open)
        self.assertEqual(con.scale, 1)
        con.restore_mode()   # nothing to stop

    def test_drives_a_program(self):
        con = WindowConsole()
        con.inject_input(b"okq")
        sys_emu = LC3System(con)
        sys_emu.load_image(make_image(0x3000, ECHO_UNTIL_Q))
        sys_emu.boot()
        sys_emu.run()
        self.assertEqual(con.screen.line(0), "okqHALT")

    def test_program_output(self):
        con = WindowConsole()
        sys_emu = LC3System(con)
        sys_emu.load_image(make_image(0x3000, HELLO))
        sys_emu.boot()
        sys_emu.run()
        self.assertEqual(con.screen.line(0), "Hello, World!")
        self.assertEqual(con.screen.line(1), "HALT")
        self.assertEqual(sys_emu.get_output(), "")


if __name__ == "__main__":
    unittest.main()
