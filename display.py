"""
LC-3 Window Console
===================
A pygame window in place of the host terminal.  Whatever the program
writes is laid out on a character-cell screen; keys typed into the window
are queued for GETC/IN and the KBSR poll.

The window lives on its own thread.  The CPU keeps the caller's thread and
only touches the key queue (under a condition variable) and the screen
(under a lock).

    from display import WindowConsole
    with WindowConsole(scale=2) as console:
        sys_emu = LC3System(console)
        ...

or from the command line:  lc3 program.obj --display
"""

from __future__ import annotations

import sys
import threading
from collections import deque

from devices import ConsoleDevice

SCREEN_COLS = 80
SCREEN_ROWS = 24
FONT_POINTS = 16
FRAME_RATE = 30
BLINK_MS = 500

INK = (200, 200, 200)
PAPER = (16, 16, 16)

ESC = 0x1B
PRINTABLE = range(0x20, 0x7F)


# ---------------------------------------------------------------------------
#  Character screen
# ---------------------------------------------------------------------------

class TextScreen:
    """Character-cell screen fed with the program's output bytes.

    Controls understood: CR, LF (which also returns the carriage), TAB,
    BS/DEL, and the CSI sequences for absolute placement (H, f), relative
    moves (A-D) and erasing (J, K).  Anything else after an ESC is dropped.
    """

    def __init__(self, cols: int = SCREEN_COLS, rows: int = SCREEN_ROWS):
        self.cols = cols
        self.rows = rows
        self.cells = [bytearray(b" " * cols) for _ in range(rows)]
        self.row = 0
        self.col = 0
        self._seq: bytearray | None = None    # escape sequence in progress
        self._mutex = threading.Lock()
        self._csi = {
            ord("H"): self._goto,
            ord("f"): self._goto,
            ord("A"): lambda p: self._move(-(p[0] or 1), 0),
            ord("B"): lambda p: self._move(p[0] or 1, 0),
            ord("C"): lambda p: self._move(0, p[0] or 1),
            ord("D"): lambda p: self._move(0, -(p[0] or 1)),
            ord("J"): self._erase_display,
            ord("K"): self._erase_line,
        }

    def feed(self, data: bytes | int):
        """Lay out one byte or a run of bytes."""
        if isinstance(data, int):
            data = (data,)
        with self._mutex:
            for b in data:
                if self._seq is None:
                    self._put(b)
                else:
                    self._collect(b)

    def line(self, row: int) -> str:
        with self._mutex:
            return self.cells[row].decode("ascii").rstrip()

    def char_at(self, col: int, row: int) -> str:
        return chr(self.cells[row][col])

    # -- output ------------------------------------------------------------

    def _put(self, b: int):
        if b == ESC:
            self._seq = bytearray()
        elif b == 0x0A:
            self.col = 0
            self._next_row()
        elif b == 0x0D:
            self.col = 0
        elif b == 0x09:
            self.col = min(self.col - self.col % 8 + 8, self.cols - 1)
        elif b in (0x08, 0x7F):
            if self.col:
                self.col -= 1
                self.cells[self.row][self.col] = 0x20
        elif b in PRINTABLE:
            self.cells[self.row][self.col] = b
            self.col += 1
            if self.col == self.cols:
                self.col = 0
                self._next_row()

    def _next_row(self):
        if self.row < self.rows - 1:
            self.row += 1
        else:
            del self.cells[0]
            self.cells.append(bytearray(b" " * self.cols))

    # -- escape sequences --------------------------------------------------

    def _collect(self, b: int):
        seq = self._seq
        if not seq:
            # Only CSI (ESC [) is understood
            if b == ord("["):
                seq.append(b)
            else:
                self._seq = None
        elif 0x40 <= b <= 0x7E:
            self._seq = None
            handler = self._csi.get(b)
            if handler is not None:
                handler(self._params(seq[1:]))
        else:
            seq.append(b)

    @staticmethod
    def _params(raw: bytes) -> list[int]:
        """Numeric CSI parameters; 0 stands for "omitted"."""
        fields = raw.decode("ascii", "replace").lstrip("?").split(";")
        return [int(f) if f.isdigit() else 0 for f in fields]

    def _goto(self, p: list[int]):
        row = p[0] or 1
        col = (p[1] if len(p) > 1 else 0) or 1
        self.row = min(row, self.rows) - 1
        self.col = min(col, self.cols) - 1

    def _move(self, drow: int, dcol: int):
        self.row = max(0, min(self.row + drow, self.rows - 1))
        self.col = max(0, min(self.col + dcol, self.cols - 1))

    def _blank(self, row: int, start: int, stop: int):
        self.cells[row][start:stop] = b" " * (stop - start)

    def _erase_display(self, p: list[int]):
        if p[0] == 2:
            for r in range(self.rows):
                self._blank(r, 0, self.cols)
        elif p[0] == 1:
            for r in range(self.row):
                self._blank(r, 0, self.cols)
            self._blank(self.row, 0, self.col + 1)
        else:
            self._blank(self.row, self.col, self.cols)
            for r in range(self.row + 1, self.rows):
                self._blank(r, 0, self.cols)

    def _erase_line(self, p: list[int]):
        if p[0] == 2:
            self._blank(self.row, 0, self.cols)
        elif p[0] == 1:
            self._blank(self.row, 0, self.col + 1)
        else:
            self._blank(self.row, self.col, self.cols)

    # -- drawing -----------------------------------------------------------

    def draw(self, surface, font, cell_w: int, cell_h: int,
             cursor: bool = True):
        """Paint the screen onto a pygame surface."""
        with self._mutex:
            surface.fill(PAPER)
            for y, cells in enumerate(self.cells):
                text = cells.decode("ascii").rstrip()
                if text:
                    surface.blit(font.render(text, True, INK), (0, y * cell_h))
            if cursor:
                surface.fill(INK, (self.col * cell_w,
                                   (self.row + 1) * cell_h - 2, cell_w, 2))


# ---------------------------------------------------------------------------
#  Window console
# ---------------------------------------------------------------------------

class WindowConsole(ConsoleDevice):
    """Console device backed by a pygame window.

    save_mode() opens the window and restore_mode() closes it.  Once the
    user closes the window, keys already queued are still delivered and
    every read after that raises EOFError.
    """

    name = "window"

    def __init__(self, scale: int = 1, title: str = "LC-3"):
        self.scale = max(1, scale)
        self.title = title
        self.screen = TextScreen()

        self._keys: deque[int] = deque()
        self._keys_cv = threading.Condition()
        self._closed = False

        self._ui: threading.Thread | None = None
        self._quit = threading.Event()
        self._ready = threading.Event()

    def save_mode(self):
        """Open the window on its own thread; returns once it is up."""
        self._quit.clear()
        self._ready.clear()
        self._ui = threading.Thread(target=self._ui_loop, name="lc3-window",
                                    daemon=True)
        self._ui.start()
        self._ready.wait(5.0)

    def restore_mode(self):
        """Close the window and wait for its thread."""
        self._quit.set()
        ui, self._ui = self._ui, None
        if ui is not None:
            ui.join(3.0)

    @property
    def is_open(self) -> bool:
        return self._ui is not None and self._ui.is_alive()

    # -- keyboard ----------------------------------------------------------

    def poll(self, timeout: float = 0.0) -> bool:
        # A closed window reports "ready" so the next read sees EOF
        with self._keys_cv:
            self._keys_cv.wait_for(lambda: self._keys or self._closed,
                                   timeout)
            return bool(self._keys) or self._closed

    def read_char(self) -> int:
        with self._keys_cv:
            self._keys_cv.wait_for(lambda: self._keys or self._closed)
            if not self._keys:
                raise EOFError("window closed")
            return self._keys.popleft()

    def inject_input(self, data: bytes):
        """Queue keys as if typed into the window."""
        with self._keys_cv:
            self._keys.extend(data)
            self._keys_cv.notify_all()

    def _close(self):
        with self._keys_cv:
            self._closed = True
            self._keys_cv.notify_all()

    # -- screen ------------------------------------------------------------

    def write_char(self, value: int):
        self.screen.feed(value & 0xFF)

    # -- window thread -----------------------------------------------------

    def _key_down(self, event):
        ch = event.unicode
        if ch == "\r":
            ch = "\n"
        if ch and ord(ch) < 0x80:
            self.inject_input(ch.encode("ascii"))

    def _ui_loop(self):
        import pygame

        pygame.init()
        try:
            pygame.display.set_caption(self.title)
            font = pygame.font.SysFont("monospace", FONT_POINTS * self.scale)
            cell_w, cell_h = font.size("M")
            window = pygame.display.set_mode(
                (self.screen.cols * cell_w, self.screen.rows * cell_h))
            ticker = pygame.time.Clock()
            self._ready.set()

            while not self._quit.is_set():
                for event in pygame.event.get():
                    if event.type == pygame.QUIT:
                        self._close()
                        return
                    if event.type == pygame.KEYDOWN:
                        self._key_down(event)
                blink_on = (pygame.time.get_ticks() // BLINK_MS) % 2 == 0
                self.screen.draw(window, font, cell_w, cell_h, cursor=blink_on)
                pygame.display.flip()
                ticker.tick(FRAME_RATE)
        except pygame.error as e:
            print(f"[display] {e}", file=sys.stderr)
            self._close()
        finally:
            self._ready.set()
            pygame.quit()
