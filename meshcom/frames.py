"""
Decoded radio frames.

A Frame carries at most one payload variant out of a closed set. Variants
the client does not care about collapse into OtherPayload so the router
can drop them without knowing every administrative message the firmware
may add later.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from google.protobuf.json_format import MessageToDict
from meshtastic.protobuf import mesh_pb2, portnums_pb2

from meshcom.events import PeerRecord

TEXT_PORT = "TEXT_MESSAGE_APP"


@dataclass(frozen=True)
class MyInfo:
    node_num: int


@dataclass(frozen=True)
class NodeInfo:
    peer: PeerRecord


@dataclass(frozen=True)
class TextMessage:
    sender: int
    text: str
    to: Optional[int] = None
    channel: int = 0


@dataclass(frozen=True)
class OtherPayload:
    kind: str


Payload = Union[MyInfo, NodeInfo, TextMessage, OtherPayload]


@dataclass(frozen=True)
class Frame:
    payload: Optional[Payload] = None


# ---------- protobuf decoding ----------

def _portnum_name(pn) -> str:
    if isinstance(pn, int):
        try:
            return portnums_pb2.PortNum.Name(pn)
        except ValueError:
            return str(pn)
    return pn if isinstance(pn, str) else ""


def from_radio(msg: mesh_pb2.FromRadio) -> Frame:
    """Map one FromRadio protobuf to a Frame."""
    variant = msg.WhichOneof("payload_variant")
    if variant is None:
        return Frame()
    if variant == "my_info":
        return Frame(MyInfo(node_num=msg.my_info.my_node_num))
    if variant == "node_info":
        node = MessageToDict(msg.node_info)
        # MessageToDict leaves out zero-valued fields
        node["num"] = msg.node_info.num
        return Frame(NodeInfo(PeerRecord.from_node_dict(node)))
    if variant == "packet":
        pkt = msg.packet
        if pkt.HasField("decoded") and pkt.decoded.portnum == portnums_pb2.PortNum.TEXT_MESSAGE_APP:
            return Frame(TextMessage(
                sender=getattr(pkt, "from"),
                text=pkt.decoded.payload.decode("utf-8", errors="replace"),
                to=pkt.to,
                channel=pkt.channel,
            ))
        return Frame(OtherPayload("packet"))
    return Frame(OtherPayload(variant))


def parse_from_radio(raw: bytes) -> Frame:
    msg = mesh_pb2.FromRadio()
    msg.ParseFromString(raw)
    return from_radio(msg)


# ---------- meshtastic pubsub dicts ----------

def from_node_dict(node: Dict[str, Any]) -> Frame:
    if node.get("num") is None:
        return Frame()
    return Frame(NodeInfo(PeerRecord.from_node_dict(node)))


def from_packet_dict(packet: Dict[str, Any]) -> Frame:
    """Map a packet dict published on meshtastic.receive to a Frame."""
    d = packet.get("decoded")
    if not d:
        return Frame(OtherPayload("encrypted"))

    pn_name = _portnum_name(d.get("portnum", ""))
    if pn_name != TEXT_PORT:
        return Frame(OtherPayload(pn_name or "packet"))

    sender = packet.get("from")
    if sender is None:
        return Frame()

    text = d.get("text")
    if text is None:
        payload = d.get("payload")
        if isinstance(payload, (bytes, bytearray)):
            text = payload.decode("utf-8", errors="replace")
    if text is None:
        return Frame()

    return Frame(TextMessage(
        sender=int(sender),
        text=text,
        to=packet.get("to"),
        channel=packet.get("channel", 0) or 0,
    ))
