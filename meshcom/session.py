import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from meshcom.channels import Channel
from meshcom.events import (
    MessageReceived,
    PeerAvailable,
    PeerRecord,
    SelfAssigned,
    SendMessage,
)

logger = logging.getLogger(__name__)

# One mesh frame carries at most this many payload bytes.
MAX_MESSAGE_BYTES = 237


# ---------- Focus ----------

class Focus(Enum):
    NODE_LIST = "NODE LIST"
    CONVERSATION = "CONVERSATION"
    INPUT = "INPUT"
    SEARCH = "SEARCH"


FOCUS_RING = (Focus.NODE_LIST, Focus.CONVERSATION, Focus.INPUT, Focus.SEARCH)


def _ring_index(focus: Optional[Focus]) -> int:
    # no focus sits where SEARCH does: one step before NODE_LIST
    if focus is None:
        return len(FOCUS_RING) - 1
    return FOCUS_RING.index(focus)


def advance_focus(focus: Optional[Focus]) -> Focus:
    return FOCUS_RING[(_ring_index(focus) + 1) % len(FOCUS_RING)]


def retreat_focus(focus: Optional[Focus]) -> Focus:
    return FOCUS_RING[(_ring_index(focus) - 1) % len(FOCUS_RING)]


# ---------- Keys ----------

class Key(Enum):
    TAB = "tab"
    BACKTAB = "backtab"
    ESC = "esc"
    ENTER = "enter"
    BACKSPACE = "backspace"
    UP = "up"
    DOWN = "down"
    LEFT = "left"
    RIGHT = "right"
    CHAR = "char"


@dataclass(frozen=True)
class KeyPress:
    key: Key
    char: str = ""

    @classmethod
    def of(cls, ch: str) -> "KeyPress":
        return cls(Key.CHAR, ch)


# ---------- Directory ----------

def matches_search(peer: PeerRecord, query: str) -> bool:
    """Whether `peer` belongs in the node list for the given search text.

    Every peer matches for now.
    """
    return True


class PeerDirectory:
    """Known peers keyed by node number, listed in ascending node order."""

    def __init__(self):
        self._peers: Dict[int, PeerRecord] = {}

    def __len__(self) -> int:
        return len(self._peers)

    def get(self, node_num: int) -> Optional[PeerRecord]:
        return self._peers.get(node_num)

    def upsert(self, peer: PeerRecord):
        self._peers[peer.node_num] = peer

    def sorted(self, query: str = "") -> List[PeerRecord]:
        return [self._peers[num] for num in sorted(self._peers)
                if matches_search(self._peers[num], query)]


# ---------- Conversation ----------

@dataclass
class ChatLine:
    direction: str  # "IN" or "OUT"
    peer: int
    text: str
    timestamp: float = field(default_factory=time.time)


# ---------- Session ----------

class Session:
    """
    Session state and the only code that changes it.

    update() is called once per UI tick to drain MeshEvents; handle_key()
    once per captured key. The presentation only reads attributes.
    """

    def __init__(self, mesh_events: Channel, ui_events: Channel, channel_index: int = 0):
        self.mesh_events = mesh_events
        self.ui_events = ui_events
        self.channel_index = channel_index

        self.directory = PeerDirectory()
        self.self_id: Optional[int] = None
        self.current_contact: Optional[int] = None
        self.focus: Optional[Focus] = None
        self.input = ""
        self.search = ""
        self.scroll_offset = 0
        self.h_scroll = 0
        self.conversations: Dict[int, List[ChatLine]] = {}

        self.running = True
        self.link_lost = False
        self._cursor: Optional[int] = None  # node number under the list cursor

    # ---------- read side ----------

    def visible_peers(self) -> List[PeerRecord]:
        return self.directory.sorted(self.search)

    @property
    def selected_index(self) -> Optional[int]:
        peers = self.visible_peers()
        if not peers:
            return None
        for i, peer in enumerate(peers):
            if peer.node_num == self._cursor:
                return i
        # cursor peer filtered out: the top row stands in until the next re-anchor
        return 0

    @property
    def contact(self) -> Optional[PeerRecord]:
        if self.current_contact is None:
            return None
        return self.directory.get(self.current_contact)

    @property
    def self_peer(self) -> Optional[PeerRecord]:
        if self.self_id is None:
            return None
        return self.directory.get(self.self_id)

    @property
    def conversation(self) -> List[ChatLine]:
        if self.current_contact is None:
            return []
        return self.conversations.get(self.current_contact, [])

    # ---------- inbound events ----------

    def _log_line(self, direction: str, peer: int, text: str):
        self.conversations.setdefault(peer, []).append(ChatLine(direction, peer, text))

    def apply(self, event):
        if isinstance(event, PeerAvailable):
            was_empty = len(self.directory) == 0
            self.directory.upsert(event.peer)
            if was_empty:
                self._cursor = event.peer.node_num
            logger.debug("Node %d (%s) available", event.peer.node_num, event.peer.display_name)
        elif isinstance(event, MessageReceived):
            self._log_line("IN", event.sender, event.text)
        elif isinstance(event, SelfAssigned):
            if self.self_id is None:
                self.self_id = event.node_num
            elif self.self_id != event.node_num:
                logger.warning("Ignoring second self identity %d (have %d)",
                               event.node_num, self.self_id)
        else:
            logger.warning("Unknown mesh event %r, ignored", event)

    def update(self):
        for event in self.mesh_events.drain():
            self.apply(event)
        if not self.link_lost and self.mesh_events.exhausted():
            logger.warning("Radio worker closed its event channel")
            self.link_lost = True
        self._reanchor()

    # ---------- operator input ----------

    def handle_key(self, press: KeyPress):
        if press.key == Key.ESC:
            self.focus = None
        elif press.key == Key.TAB:
            self.focus = advance_focus(self.focus)
        elif press.key == Key.BACKTAB:
            self.focus = retreat_focus(self.focus)
        elif self.focus == Focus.NODE_LIST:
            self._node_list_key(press)
        elif self.focus == Focus.CONVERSATION:
            self._conversation_key(press)
        elif self.focus == Focus.INPUT:
            self.input = self._edit(self.input, press)
            if press.key == Key.ENTER:
                self.commit_input()
        elif self.focus == Focus.SEARCH:
            self.search = self._edit(self.search, press)
            if press.key == Key.ENTER:
                self.search = self.search.strip()
            self._reanchor()
        elif press == KeyPress.of("q"):
            self.running = False

    def _node_list_key(self, press: KeyPress):
        if press.key == Key.DOWN or press == KeyPress.of("j"):
            self.move_cursor(1)
        elif press.key == Key.UP or press == KeyPress.of("k"):
            self.move_cursor(-1)
        elif press.key == Key.ENTER:
            self.select_contact()

    def _conversation_key(self, press: KeyPress):
        if press.key == Key.DOWN or press == KeyPress.of("j"):
            self.scroll_offset += 1
        elif press.key == Key.UP or press == KeyPress.of("k"):
            self.scroll_offset = max(0, self.scroll_offset - 1)
        elif press.key == Key.RIGHT or press == KeyPress.of("l"):
            self.h_scroll += 1
        elif press.key == Key.LEFT or press == KeyPress.of("h"):
            self.h_scroll = max(0, self.h_scroll - 1)

    @staticmethod
    def _edit(buf: str, press: KeyPress) -> str:
        if press.key == Key.BACKSPACE:
            return buf[:-1]
        if press.key == Key.CHAR and press.char:
            grown = buf + press.char
            if len(grown.encode("utf-8")) <= MAX_MESSAGE_BYTES:
                return grown
        return buf

    def _reanchor(self):
        # keep the cursor on a visible peer once the list is filtered or grows
        peers = self.visible_peers()
        if peers and all(p.node_num != self._cursor for p in peers):
            self._cursor = peers[0].node_num

    def move_cursor(self, step: int):
        peers = self.visible_peers()
        idx = self.selected_index
        if idx is None:
            return
        idx = min(max(idx + step, 0), len(peers) - 1)
        self._cursor = peers[idx].node_num

    def select_contact(self):
        idx = self.selected_index
        if idx is None:
            return
        peer = self.visible_peers()[idx]
        if peer.node_num != self.current_contact:
            self.scroll_offset = 0
            self.h_scroll = 0
        self.current_contact = peer.node_num
        logger.info("Talking to %d (%s)", peer.node_num, peer.display_name)

    def commit_input(self):
        text = self.input.strip()
        self.input = ""
        if not text or self.current_contact is None:
            return
        msg = SendMessage(to=self.current_contact, text=text, channel=self.channel_index)
        if not self.ui_events.try_send(msg):
            logger.error("Outbound message to %d dropped", self.current_contact)
        self._log_line("OUT", self.current_contact, text)
