#!/usr/bin/env python3
import argparse
import curses
import logging
import os
import sys
import time
from typing import Optional

logging.getLogger("meshtastic").setLevel(logging.WARNING)
logging.getLogger("pubsub").setLevel(logging.WARNING)

from meshcom import __version__
from meshcom.channels import DEFAULT_CAPACITY, Channel
from meshcom.radio import RadioWorker
from meshcom.session import Focus, Key, KeyPress, Session
from meshcom.transport import SerialTransport, SimulatedTransport

logger = logging.getLogger("meshcom")

SIM_DEVICE = "sim"
TICK_SECONDS = 0.25

PAIR_FOCUS = 3
PAIR_CONTACT = 4


# ---------- Helpers ----------

def safe_text(s: str) -> str:
    """Remove NULL and non-printable chars so curses won't explode."""
    if not s:
        return ""
    return "".join(ch for ch in s if ch == "\t" or ord(ch) >= 32)


def key_from_curses(ch) -> Optional[KeyPress]:
    """Map a get_wch() result to a session key, or None for keys without effect."""
    if isinstance(ch, str):
        if ch == "\t":
            return KeyPress(Key.TAB)
        if ch == "\x1b":
            return KeyPress(Key.ESC)
        if ch in ("\n", "\r"):
            return KeyPress(Key.ENTER)
        if ch in ("\x7f", "\b"):
            return KeyPress(Key.BACKSPACE)
        if ch.isprintable():
            return KeyPress.of(ch)
        return None
    if ch == curses.KEY_BTAB:
        return KeyPress(Key.BACKTAB)
    if ch == curses.KEY_ENTER:
        return KeyPress(Key.ENTER)
    if ch == curses.KEY_BACKSPACE:
        return KeyPress(Key.BACKSPACE)
    if ch == curses.KEY_UP:
        return KeyPress(Key.UP)
    if ch == curses.KEY_DOWN:
        return KeyPress(Key.DOWN)
    if ch == curses.KEY_LEFT:
        return KeyPress(Key.LEFT)
    if ch == curses.KEY_RIGHT:
        return KeyPress(Key.RIGHT)
    return None


def setup_logging(level: str, path: Optional[str] = None):
    # the terminal belongs to curses, so everything goes to a file
    if path is None:
        path = f"{int(time.time())}_app.log"
    logging.basicConfig(
        filename=path,
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ---------- App ----------

class MeshComApp:
    def __init__(self, session: Session):
        self.session = session

    # ---------- Drawing helpers ----------

    def _panel(self, stdscr, y: int, x: int, h: int, w: int, title: str, focus: Focus):
        win = stdscr.derwin(h, w, y, x)
        focused = self.session.focus == focus
        if focused and curses.has_colors():
            win.attron(curses.color_pair(PAIR_FOCUS))
        win.box()
        if focused and curses.has_colors():
            win.attroff(curses.color_pair(PAIR_FOCUS))
        win.addnstr(0, 2, f" {title} ", max(0, w - 4), curses.A_BOLD)
        return win

    def _draw_title(self, stdscr, y: int, x: int, w: int):
        me = self.session.self_peer
        if me is not None:
            who = f"connected as {me.display_name}"
        elif self.session.self_id is not None:
            who = f"connected as !{self.session.self_id:08x}"
        else:
            who = "waiting for radio"
        text = f"MESHCOM {__version__}  ({who})"
        stdscr.addnstr(y, x, safe_text(text).center(w - 1), w - 1, curses.A_BOLD)

    def _draw_search(self, stdscr, y: int, x: int, h: int, w: int):
        win = self._panel(stdscr, y, x, h, w, "SEARCH", Focus.SEARCH)
        win.addnstr(1, 1, safe_text(self.session.search), w - 2)

    def _draw_nodes(self, stdscr, y: int, x: int, h: int, w: int):
        win = self._panel(stdscr, y, x, h, w, "NODE LIST", Focus.NODE_LIST)
        rows = h - 2
        peers = self.session.visible_peers()
        selected = self.session.selected_index
        if not peers:
            win.addnstr(1, 1, "(no nodes yet)", w - 2)
            return

        offset = 0
        if selected is not None and selected >= rows:
            offset = selected - rows + 1

        for i, peer in enumerate(peers[offset:offset + rows]):
            idx = offset + i
            attrs = curses.A_NORMAL
            if idx == selected:
                attrs |= curses.A_REVERSE
            if peer.node_num == self.session.current_contact and curses.has_colors():
                attrs |= curses.color_pair(PAIR_CONTACT) | curses.A_BOLD
            marker = "> " if idx == selected else "  "
            me = " *" if peer.node_num == self.session.self_id else ""
            line = f"{marker}{safe_text(peer.display_name)}{me}"
            win.addnstr(1 + i, 1, line.ljust(w - 2), w - 2, attrs)

    def _draw_input(self, stdscr, y: int, x: int, h: int, w: int):
        win = self._panel(stdscr, y, x, h, w, "INPUT", Focus.INPUT)
        width = w - 2
        text = safe_text(self.session.input)
        # show the tail when the text outgrows the box
        lines = [text[i:i + width] for i in range(0, len(text), width)] or [""]
        lines = lines[-(h - 2):]
        for i, line in enumerate(lines):
            win.addnstr(1 + i, 1, line, width)
        return win, len(lines), 1 + len(lines[-1])

    def _draw_conversation(self, stdscr, y: int, x: int, h: int, w: int):
        contact = self.session.contact
        if contact is not None:
            title = f"CONNECTED: {contact.display_name}"
        elif self.session.current_contact is not None:
            title = f"CONNECTED: !{self.session.current_contact:08x}"
        else:
            title = "NO NODE CONNECTED"
        win = self._panel(stdscr, y, x, h, w, safe_text(title), Focus.CONVERSATION)

        rows = h - 2
        width = w - 2
        msgs = self.session.conversation
        if not msgs:
            if contact is not None:
                win.addnstr(1, 1, "(no messages yet)", width)
            return

        # clamp here: the session only bounds the offset at zero
        start = min(self.session.scroll_offset, max(0, len(msgs) - rows))
        for i, msg in enumerate(msgs[start:start + rows]):
            t_str = time.strftime("%H:%M:%S", time.localtime(msg.timestamp))
            dir_str = "→" if msg.direction == "OUT" else "←"
            text = safe_text(msg.text)[self.session.h_scroll:]
            line = f"{t_str} {dir_str} {text}"
            attrs = curses.A_BOLD if msg.direction == "IN" else curses.A_NORMAL
            win.addnstr(1 + i, 1, line, width, attrs)
        if len(msgs) > rows:
            win.addnstr(0, w - 3, "#", 1)
            win.addnstr(h - 1, w - 3, "#", 1)

    def draw(self, stdscr):
        h, w = stdscr.getmaxyx()
        body = h - 1
        left_w = max(20, w * 30 // 100)
        right_w = w - left_w
        search_h = 3
        input_h = max(3, body // 10)

        self._draw_search(stdscr, 0, 0, search_h, left_w)
        self._draw_nodes(stdscr, search_h, 0, body - search_h, left_w)
        self._draw_title(stdscr, 0, left_w, right_w)
        input_win, cy, cx = self._draw_input(stdscr, 1, left_w, input_h, right_w)
        self._draw_conversation(stdscr, 1 + input_h, left_w, body - 1 - input_h, right_w)

        footer = "[Tab/S-Tab] focus  [Esc] release  [j/k] move  [h/l] pan  [Enter] select/send  [q] quit"
        stdscr.addnstr(h - 1, 0, footer.ljust(w - 1), w - 1, curses.A_REVERSE)

        if self.session.focus == Focus.INPUT:
            try:
                curses.curs_set(1)
            except curses.error:
                pass
            input_win.move(cy, min(cx, right_w - 2))
        else:
            try:
                curses.curs_set(0)
            except curses.error:
                pass

    # ---------- curses main loop ----------

    def read_key(self, stdscr) -> Optional[KeyPress]:
        try:
            ch = stdscr.get_wch()
        except curses.error:
            return None
        return key_from_curses(ch)

    def run_curses(self, stdscr):
        stdscr.keypad(True)
        stdscr.timeout(int(TICK_SECONDS * 1000))

        if curses.has_colors():
            curses.start_color()
            curses.use_default_colors()
            try:
                curses.init_pair(PAIR_FOCUS, curses.COLOR_YELLOW, -1)
                curses.init_pair(PAIR_CONTACT, curses.COLOR_CYAN, -1)
            except curses.error:
                pass

        while self.session.running:
            stdscr.erase()
            h, w = stdscr.getmaxyx()

            if h < 10 or w < 60:
                msg = "meshcom: enlarge terminal (>=60x10). Esc then q to quit."
                maxw = max(1, w - 1)
                stdscr.addnstr(0, 0, msg[:maxw].ljust(maxw), maxw)
            else:
                self.draw(stdscr)
            stdscr.refresh()

            self.session.update()
            if self.session.link_lost:
                break

            key = self.read_key(stdscr)
            if key is not None:
                self.session.handle_key(key)


# ---------- Entry ----------

def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Meshtastic direct-message terminal client")
    parser.add_argument("device", help=f"serial device path (e.g. /dev/ttyUSB0) or '{SIM_DEVICE}' for a simulated radio")
    parser.add_argument("--channel", type=int, default=0, help="channel index for outgoing messages (default: 0)")
    parser.add_argument("--log-level", default=os.environ.get("MESHCOM_LOG", "INFO"),
                        help="log level (default: $MESHCOM_LOG or INFO)")
    parser.add_argument("--log-file", default=None, help="log file (default: <epoch>_app.log)")
    args = parser.parse_args(argv)

    setup_logging(args.log_level, args.log_file)
    logger.info("meshcom %s starting on %s (channel %d)", __version__, args.device, args.channel)

    if args.device == SIM_DEVICE:
        transport = SimulatedTransport()
    else:
        transport = SerialTransport(args.device)

    mesh_events: Channel = Channel(DEFAULT_CAPACITY, name="mesh-events")
    ui_events: Channel = Channel(DEFAULT_CAPACITY, name="ui-events")
    worker = RadioWorker(transport, ui_events, mesh_events)
    session = Session(mesh_events, ui_events, channel_index=args.channel)

    # short ESC delay so releasing focus feels immediate
    os.environ.setdefault("ESCDELAY", "25")

    worker.start()
    app = MeshComApp(session)
    try:
        curses.wrapper(app.run_curses)
    finally:
        worker.stop()

    if worker.error is not None:
        logger.error("Session ended by radio error: %s", worker.error)
        print(f"meshcom: radio error: {worker.error}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
