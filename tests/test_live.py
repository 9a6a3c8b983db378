import curses
import unittest
from unittest import mock

from meshcom.channels import Channel
from meshcom.session import Focus, Key, KeyPress, Session
from meshcom_live import MeshComApp, key_from_curses


class ScriptDone(Exception):
    pass


class TinyScreen:
    """Stands in for a too-small curses window and replays scripted keys."""

    def __init__(self, keys, size=(5, 30)):
        self.keys = list(keys)
        self.size = size
        self.text = []

    def getmaxyx(self):
        return self.size

    def addnstr(self, y, x, s, n, *attrs):
        self.text.append(s[:n])

    def get_wch(self):
        if not self.keys:
            raise ScriptDone()
        return self.keys.pop(0)

    def erase(self):
        pass

    def refresh(self):
        pass

    def keypad(self, flag):
        pass

    def timeout(self, ms):
        pass


class KeyMappingTests(unittest.TestCase):
    def test_table(self) -> None:
        cases = [
            ("\t", KeyPress(Key.TAB)),
            (curses.KEY_BTAB, KeyPress(Key.BACKTAB)),
            ("\x1b", KeyPress(Key.ESC)),
            ("\n", KeyPress(Key.ENTER)),
            ("\r", KeyPress(Key.ENTER)),
            (curses.KEY_ENTER, KeyPress(Key.ENTER)),
            ("\x7f", KeyPress(Key.BACKSPACE)),
            ("\b", KeyPress(Key.BACKSPACE)),
            (curses.KEY_BACKSPACE, KeyPress(Key.BACKSPACE)),
            (curses.KEY_UP, KeyPress(Key.UP)),
            (curses.KEY_DOWN, KeyPress(Key.DOWN)),
            (curses.KEY_LEFT, KeyPress(Key.LEFT)),
            (curses.KEY_RIGHT, KeyPress(Key.RIGHT)),
            ("q", KeyPress.of("q")),
            ("é", KeyPress.of("é")),
            ("\x01", None),
            (curses.KEY_F1, None),
        ]
        for ch, expected in cases:
            with self.subTest(ch=ch):
                self.assertEqual(key_from_curses(ch), expected)


class SmallTerminalTests(unittest.TestCase):
    def setUp(self) -> None:
        self.mesh = Channel(16, name="mesh-events")
        self.ui = Channel(16, name="ui-events")
        self.session = Session(self.mesh, self.ui)
        self.app = MeshComApp(self.session)
        patcher = mock.patch("curses.has_colors", return_value=False)
        patcher.start()
        self.addCleanup(patcher.stop)

    def test_q_while_typing_is_text(self) -> None:
        self.session.focus = Focus.INPUT
        screen = TinyScreen(["q"])
        with self.assertRaises(ScriptDone):
            self.app.run_curses(screen)
        self.assertTrue(self.session.running)
        self.assertEqual(self.session.input, "q")
        self.assertIn("enlarge terminal", screen.text[0])

    def test_release_then_q_quits(self) -> None:
        self.session.focus = Focus.INPUT
        screen = TinyScreen(["\x1b", "q"])
        self.app.run_curses(screen)
        self.assertFalse(self.session.running)
        self.assertEqual(self.session.input, "")

    def test_closed_event_channel_ends_the_loop(self) -> None:
        self.mesh.close()
        with self.assertLogs("meshcom.session", level="WARNING"):
            self.app.run_curses(TinyScreen([]))
        self.assertTrue(self.session.link_lost)


if __name__ == "__main__":
    unittest.main()
