from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

UNKNOWN_NAME = "UNK"


# ---------- Peers ----------

@dataclass
class PeerRecord:
    node_num: int
    long_name: Optional[str] = None
    short_name: Optional[str] = None
    user_id: Optional[str] = None  # "!abcd1234"
    hw_model: Optional[str] = None
    telemetry: Dict[str, Any] = field(default_factory=dict)

    @property
    def display_name(self) -> str:
        return self.long_name or self.short_name or UNKNOWN_NAME

    @classmethod
    def from_node_dict(cls, node: Dict[str, Any]) -> "PeerRecord":
        """
        Build a record from a meshtastic node dict (the camelCase shape
        MessageToDict produces and meshtastic publishes on node.updated).
        """
        user = node.get("user") or {}
        peer = cls(
            node_num=int(node["num"]),
            long_name=user.get("longName") or None,
            short_name=user.get("shortName") or None,
            user_id=user.get("id") or None,
            hw_model=user.get("hwModel") or None,
        )

        dev = node.get("deviceMetrics") or {}
        for src, dst in (("batteryLevel", "battery"),
                         ("voltage", "voltage"),
                         ("channelUtilization", "channel_util"),
                         ("airUtilTx", "air_util")):
            if dev.get(src) is not None:
                peer.telemetry[dst] = dev[src]

        pos = node.get("position") or {}
        lat = pos.get("latitude")
        lon = pos.get("longitude")
        if lat is None and pos.get("latitudeI") is not None:
            lat = pos["latitudeI"] * 1e-7
        if lon is None and pos.get("longitudeI") is not None:
            lon = pos["longitudeI"] * 1e-7
        if lat is not None and lon is not None:
            peer.telemetry["lat"] = lat
            peer.telemetry["lon"] = lon

        for src, dst in (("snr", "snr"), ("lastHeard", "last_heard"), ("hopsAway", "hops_away")):
            if node.get(src) is not None:
                peer.telemetry[dst] = node[src]
        return peer


# ---------- Radio worker -> session ----------

@dataclass(frozen=True)
class PeerAvailable:
    peer: PeerRecord


@dataclass(frozen=True)
class MessageReceived:
    sender: int
    text: str


@dataclass(frozen=True)
class SelfAssigned:
    node_num: int


MeshEvent = Union[PeerAvailable, MessageReceived, SelfAssigned]


# ---------- Session -> radio worker ----------

@dataclass(frozen=True)
class SendMessage:
    to: int
    text: str
    channel: int = 0


UiEvent = SendMessage
