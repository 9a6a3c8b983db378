import logging
import threading
from typing import Dict, List, Optional, Tuple

from meshtastic.protobuf import mesh_pb2, portnums_pb2
from meshtastic.serial_interface import SerialInterface
from pubsub import pub

from meshcom import frames
from meshcom.channels import Channel
from meshcom.frames import Frame

logger = logging.getLogger(__name__)


class TransportError(Exception):
    """The radio link is unusable for this connection attempt."""


class Transport:
    """
    Radio link seen by the worker: frames are pushed into the sink given to
    open() (never blocking), outbound text goes through send_text().
    The sink is closed when the frame stream ends; if it ended because the
    link failed, `failure` holds the reason.
    """

    failure: Optional[TransportError] = None

    def open(self, sink: Channel):
        raise NotImplementedError

    def send_text(self, text: str, destination: int, channel_index: int = 0, want_ack: bool = False):
        raise NotImplementedError

    def close(self):
        raise NotImplementedError


# ---------- Meshtastic over serial ----------

class SerialTransport(Transport):
    def __init__(self, dev_path: str):
        self.dev_path = dev_path
        self.iface: Optional[SerialInterface] = None
        self.failure = None
        self._sink: Optional[Channel] = None
        self._subscribed = False

    def _push(self, frame: Frame):
        if self._sink is not None:
            self._sink.try_send(frame)

    def open(self, sink: Channel):
        self._sink = sink
        try:
            self.iface = SerialInterface(devPath=self.dev_path)
        except Exception as e:
            sink.close()
            raise TransportError(f"cannot open {self.dev_path}: {e}") from e

        # Replay what the handshake already loaded so names show up at once.
        info = self.iface.myInfo
        num = getattr(info, "my_node_num", None) if info is not None else None
        if num is not None:
            self._push(Frame(frames.MyInfo(num)))
        for n in list((self.iface.nodesByNum or {}).values()):
            if isinstance(n, dict):
                self._push(frames.from_node_dict(n))

        pub.subscribe(self.on_node_updated, "meshtastic.node.updated")
        pub.subscribe(self.on_receive, "meshtastic.receive")
        pub.subscribe(self.on_connection_lost, "meshtastic.connection.lost")
        self._subscribed = True
        logger.info("Opened %s", self.dev_path)

    # ---------- meshtastic callbacks ----------

    def _ours(self, interface) -> bool:
        return interface is None or interface is self.iface

    def on_node_updated(self, node, interface=None):
        if self._ours(interface) and isinstance(node, dict):
            self._push(frames.from_node_dict(node))

    def on_receive(self, packet, interface=None):
        if self._ours(interface) and isinstance(packet, dict):
            self._push(frames.from_packet_dict(packet))

    def on_connection_lost(self, interface=None):
        if not self._ours(interface):
            return
        logger.error("Connection to %s lost", self.dev_path)
        self.failure = TransportError(f"connection to {self.dev_path} lost")
        if self._sink is not None:
            self._sink.close()

    # ---------- outbound ----------

    def send_text(self, text: str, destination: int, channel_index: int = 0, want_ack: bool = False):
        if self.iface is None:
            raise TransportError("serial interface is not open")
        try:
            self.iface.sendText(text, destinationId=destination, wantAck=want_ack,
                                channelIndex=channel_index)
        except Exception as e:
            raise TransportError(f"send to {destination} failed: {e}") from e

    def close(self):
        if self._subscribed:
            pub.unsubscribe(self.on_node_updated, "meshtastic.node.updated")
            pub.unsubscribe(self.on_receive, "meshtastic.receive")
            pub.unsubscribe(self.on_connection_lost, "meshtastic.connection.lost")
            self._subscribed = False
        if self.iface is not None:
            try:
                self.iface.close()
            except OSError as e:
                logger.warning("Closing %s: %s", self.dev_path, e)
            self.iface = None
        if self._sink is not None:
            self._sink.close()


# ---------- Synthetic radio ----------

SIM_SELF = (0x0A1B2C3D, "meshcom sim", "SIM")
SIM_PEERS: List[Tuple[int, str, str]] = [
    (0x2F00BEEF, "Ridge Relay", "RDG"),
    (0x05C0FFEE, "Base Camp", "BASE"),
    (0x1337D00D, "Trail Walker", "TRL"),
    (0x00000042, "", "42"),
]


def _sim_my_info(num: int) -> bytes:
    msg = mesh_pb2.FromRadio()
    msg.my_info.my_node_num = num
    return msg.SerializeToString()


def _sim_node_info(num: int, long_name: str, short_name: str) -> bytes:
    msg = mesh_pb2.FromRadio()
    msg.node_info.num = num
    msg.node_info.user.id = f"!{num:08x}"
    if long_name:
        msg.node_info.user.long_name = long_name
    msg.node_info.user.short_name = short_name
    return msg.SerializeToString()


def _sim_text(sender: int, to: int, text: str, channel: int = 0) -> bytes:
    msg = mesh_pb2.FromRadio()
    setattr(msg.packet, "from", sender)
    msg.packet.to = to
    msg.packet.channel = channel
    msg.packet.decoded.portnum = portnums_pb2.PortNum.TEXT_MESSAGE_APP
    msg.packet.decoded.payload = text.encode("utf-8")
    return msg.SerializeToString()


class SimulatedTransport(Transport):
    """
    Stand-in radio for trying the client without hardware. Announces itself
    and a few peers, then answers every text with an echo from the
    destination. Frames go through the same protobuf decoding as a device.
    """

    def __init__(self, announce_interval: float = 0.5, reply_delay: float = 1.0,
                 peers: Optional[List[Tuple[int, str, str]]] = None):
        self.announce_interval = announce_interval
        self.reply_delay = reply_delay
        self.peers = list(SIM_PEERS if peers is None else peers)
        self.failure = None
        self._sink: Optional[Channel] = None
        self._stop = threading.Event()
        self._timers: Dict[int, threading.Timer] = {}
        self._timer_seq = 0
        self._lock = threading.Lock()
        self._thread: Optional[threading.Thread] = None

    def _push_raw(self, raw: bytes):
        if self._sink is not None:
            self._sink.try_send(frames.parse_from_radio(raw))

    def _announce(self):
        num, long_name, short_name = SIM_SELF
        self._push_raw(_sim_my_info(num))
        self._push_raw(_sim_node_info(num, long_name, short_name))
        for peer in self.peers:
            if self._stop.wait(self.announce_interval):
                return
            self._push_raw(_sim_node_info(*peer))

    def open(self, sink: Channel):
        self._sink = sink
        self._thread = threading.Thread(target=self._announce, name="sim-radio", daemon=True)
        self._thread.start()
        logger.info("Simulated radio up with %d peers", len(self.peers))

    def _reply(self, seq: int, destination: int, text: str):
        with self._lock:
            self._timers.pop(seq, None)
        if not self._stop.is_set():
            self._push_raw(_sim_text(destination, SIM_SELF[0], f"echo: {text}"))

    def send_text(self, text: str, destination: int, channel_index: int = 0, want_ack: bool = False):
        if self._stop.is_set():
            raise TransportError("simulated radio is closed")
        logger.info("SIM send to %08x on channel %d: %r", destination, channel_index, text)
        with self._lock:
            self._timer_seq += 1
            seq = self._timer_seq
            timer = threading.Timer(self.reply_delay, self._reply, args=(seq, destination, text))
            timer.daemon = True
            self._timers[seq] = timer
        timer.start()

    def close(self):
        self._stop.set()
        with self._lock:
            timers = list(self._timers.values())
            self._timers.clear()
        for t in timers:
            t.cancel()
        if self._sink is not None:
            self._sink.close()
