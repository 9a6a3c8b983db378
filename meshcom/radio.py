import logging
import threading
from typing import Optional

from meshcom.channels import Channel, Selector
from meshcom.events import SendMessage
from meshcom.router import Router
from meshcom.transport import Transport, TransportError

logger = logging.getLogger(__name__)

FRAME_CAPACITY = 256
# longest a link failure can go unnoticed while both sources are idle
WAKE_SECONDS = 0.5


class RadioWorker:
    """
    Owns the transport for one connection attempt.

    Waits on decoded frames and on UiEvents from the session at the same
    time and services whichever is ready. Returns when both sources are
    closed and drained; raises TransportError when the link fails.
    """

    def __init__(self, transport: Transport, ui_events: Channel, mesh_events: Channel):
        self.transport = transport
        self.ui_events = ui_events
        self.mesh_events = mesh_events
        self.router = Router(mesh_events)
        self.frames: Channel = Channel(FRAME_CAPACITY, name="frames", waker=ui_events.waker)
        self.error: Optional[BaseException] = None
        self._thread: Optional[threading.Thread] = None

    def _execute(self, event):
        if isinstance(event, SendMessage):
            logger.info("Sending %d bytes to %d from %d",
                        len(event.text.encode("utf-8")), event.to, self.router.source_node_id)
            self.transport.send_text(event.text, event.to, channel_index=event.channel, want_ack=False)
        else:
            logger.warning("Unknown UI event %r, ignored", event)

    def run(self):
        try:
            self.transport.open(self.frames)
            selector = Selector([self.frames, self.ui_events])
            while True:
                if self.frames.exhausted():
                    if self.transport.failure is not None:
                        raise self.transport.failure
                    if self.ui_events.exhausted():
                        break
                got = selector.next(timeout=WAKE_SECONDS)
                if got is None:
                    continue
                source, item = got
                if source is self.frames:
                    self.router.handle_frame(item)
                else:
                    self._execute(item)
            logger.info("Radio worker finished")
        finally:
            self.transport.close()
            self.mesh_events.close()

    # ---------- thread helpers ----------

    def _run_guarded(self):
        try:
            self.run()
        except TransportError as e:
            logger.error("Radio link failed: %s", e)
            self.error = e
        except Exception as e:
            logger.exception("Radio worker crashed")
            self.error = e

    def start(self) -> threading.Thread:
        self._thread = threading.Thread(target=self._run_guarded, name="radio", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, timeout: Optional[float] = 2.0):
        self.ui_events.close()
        self.transport.close()
        if self._thread is not None:
            self._thread.join(timeout)
