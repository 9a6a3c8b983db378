import threading
import time
import unittest

from meshcom.channels import Channel
from meshcom.events import MessageReceived, PeerAvailable, PeerRecord, SelfAssigned, SendMessage
from meshcom.frames import Frame, MyInfo, NodeInfo, OtherPayload, TextMessage
from meshcom.radio import RadioWorker
from meshcom.transport import SimulatedTransport, Transport, TransportError


class FakeTransport(Transport):
    def __init__(self, frames=(), end_stream=True, fail_send=False, lose_link=False):
        self.preload = list(frames)
        self.end_stream = end_stream
        self.fail_send = fail_send
        self.lose_link = lose_link
        self.failure = None
        self.sent = []
        self.opened = False
        self.closed = False
        self.sink = None

    def open(self, sink):
        self.opened = True
        self.sink = sink
        for f in self.preload:
            sink.try_send(f)
        if self.lose_link:
            self.failure = TransportError("connection lost")
            sink.close()
        elif self.end_stream:
            sink.close()

    def send_text(self, text, destination, channel_index=0, want_ack=False):
        if self.fail_send:
            raise TransportError("radio said no")
        self.sent.append((text, destination, channel_index, want_ack))

    def close(self):
        self.closed = True
        if self.sink is not None:
            self.sink.close()


def node(num: int) -> Frame:
    return Frame(NodeInfo(PeerRecord(node_num=num)))


class RadioWorkerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.ui = Channel(16, name="ui-events")
        self.mesh = Channel(16, name="mesh-events")

    def run_worker(self, transport) -> RadioWorker:
        worker = RadioWorker(transport, self.ui, self.mesh)
        worker.run()
        return worker

    def test_frames_are_routed_and_shutdown_is_clean(self) -> None:
        self.ui.close()
        transport = FakeTransport([
            Frame(MyInfo(1)),
            node(1),
            Frame(OtherPayload("config")),
            Frame(TextMessage(sender=2, text="yo")),
        ])
        self.run_worker(transport)
        self.assertEqual(
            self.mesh.drain(),
            [SelfAssigned(1), PeerAvailable(PeerRecord(node_num=1)), MessageReceived(2, "yo")],
        )
        self.assertTrue(transport.closed)
        self.assertTrue(self.mesh.closed)

    def test_send_message_goes_out_without_ack(self) -> None:
        self.ui.try_send(SendMessage(to=42, text="hello", channel=1))
        self.ui.close()
        transport = FakeTransport()
        self.run_worker(transport)
        self.assertEqual(transport.sent, [("hello", 42, 1, False)])

    def test_send_failure_ends_the_run(self) -> None:
        self.ui.try_send(SendMessage(to=42, text="hello"))
        transport = FakeTransport(end_stream=False, fail_send=True)
        with self.assertRaises(TransportError):
            self.run_worker(transport)
        self.assertTrue(transport.closed)
        self.assertTrue(self.mesh.closed)

    def test_lost_link_raises_after_delivering_queued_frames(self) -> None:
        transport = FakeTransport([node(5)], lose_link=True)
        with self.assertRaises(TransportError):
            self.run_worker(transport)
        self.assertEqual([e.peer.node_num for e in self.mesh.drain()], [5])

    def test_open_failure_propagates(self) -> None:
        class Broken(FakeTransport):
            def open(self, sink):
                raise TransportError("no such device")

        with self.assertRaises(TransportError):
            self.run_worker(Broken())
        self.assertTrue(self.mesh.closed)

    def test_flooded_ui_channel_never_blocks_the_worker(self) -> None:
        self.ui.close()
        transport = FakeTransport([node(n) for n in range(200)])
        worker = RadioWorker(transport, self.ui, self.mesh)
        thread = threading.Thread(target=worker.run, daemon=True)
        with self.assertLogs("meshcom.channels", level="WARNING"):
            thread.start()
            thread.join(5)
        self.assertFalse(thread.is_alive())
        self.assertEqual(len(self.mesh), self.mesh.capacity)

    def test_start_and_stop(self) -> None:
        transport = FakeTransport([node(3)], end_stream=False)
        worker = RadioWorker(transport, self.ui, self.mesh)
        worker.start()
        deadline = time.monotonic() + 5
        while len(self.mesh) == 0 and time.monotonic() < deadline:
            time.sleep(0.01)
        worker.stop()
        self.assertIsNone(worker.error)
        self.assertTrue(self.mesh.closed)
        self.assertEqual([e.peer.node_num for e in self.mesh.drain()], [3])

    def test_guarded_run_keeps_the_error(self) -> None:
        self.ui.try_send(SendMessage(to=1, text="x"))
        worker = RadioWorker(FakeTransport(end_stream=False, fail_send=True), self.ui, self.mesh)
        worker.start()
        worker.stop()
        self.assertIsInstance(worker.error, TransportError)


class SimulatedRadioTests(unittest.TestCase):
    def wait_for(self, mesh: Channel, seen: list, predicate, timeout: float = 5.0) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            seen.extend(mesh.drain())
            if predicate(seen):
                return True
            time.sleep(0.01)
        return False

    def test_announces_and_echoes(self) -> None:
        ui = Channel(16, name="ui-events")
        mesh = Channel(64, name="mesh-events")
        transport = SimulatedTransport(announce_interval=0.0, reply_delay=0.01)
        worker = RadioWorker(transport, ui, mesh)
        worker.start()
        seen = []
        try:
            self.assertTrue(self.wait_for(
                mesh, seen,
                lambda evs: len([e for e in evs if isinstance(e, PeerAvailable)]) == len(transport.peers) + 1,
            ))
            self.assertIsInstance(seen[0], SelfAssigned)
            self.assertEqual(worker.router.self_name, "meshcom sim")

            target = transport.peers[0][0]
            ui.try_send(SendMessage(to=target, text="ping"))
            self.assertTrue(self.wait_for(
                mesh, seen, lambda evs: MessageReceived(target, "echo: ping") in evs
            ))
        finally:
            worker.stop()
        self.assertIsNone(worker.error)


if __name__ == "__main__":
    unittest.main()
