import logging
from typing import Optional

from meshcom.channels import Channel
from meshcom.events import MeshEvent, MessageReceived, PeerAvailable, SelfAssigned
from meshcom.frames import Frame, MyInfo, NodeInfo, TextMessage

logger = logging.getLogger(__name__)


class Router:
    """
    Turns decoded frames into MeshEvents for the session.

    Runs on the radio worker thread and never blocks it: events go out with
    try_send, so a stalled UI only costs dropped events.
    """

    def __init__(self, ui_channel: Channel):
        self.ui_channel = ui_channel
        self.node_num: Optional[int] = None
        self.self_name: Optional[str] = None

    @property
    def source_node_id(self) -> int:
        return self.node_num if self.node_num is not None else 0

    def _emit(self, event: MeshEvent):
        if not self.ui_channel.try_send(event):
            logger.error("Failed to deliver %s to the UI", type(event).__name__)

    def _assign_self(self, node_num: int) -> bool:
        if self.node_num is not None:
            if node_num != self.node_num:
                logger.warning("Node number already set to %d, ignoring reassignment to %d",
                               self.node_num, node_num)
            else:
                logger.warning("Node number %d announced twice", node_num)
            return False
        logger.info("Setting current node num to %d", node_num)
        self.node_num = node_num
        return True

    def handle_frame(self, frame: Frame):
        payload = frame.payload
        if payload is None:
            logger.warning("Frame from radio without a payload variant, discarded")
            return

        if isinstance(payload, MyInfo):
            if self._assign_self(payload.node_num):
                self._emit(SelfAssigned(payload.node_num))
        elif isinstance(payload, NodeInfo):
            peer = payload.peer
            if self.node_num is not None and peer.node_num == self.node_num:
                logger.info("Receiving current node user information (%s)", peer.display_name)
                self.self_name = peer.long_name or peer.short_name
            self._emit(PeerAvailable(peer))
        elif isinstance(payload, TextMessage):
            self._emit(MessageReceived(sender=payload.sender, text=payload.text))
        else:
            logger.debug("Ignoring %r", payload)
