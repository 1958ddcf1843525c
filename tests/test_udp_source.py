import socket
import struct

import pytest

from streamviewer.media import udp
from streamviewer.media.exceptions import InvalidStreamUrlError
from streamviewer.media.udp import (
    END_OF_INPUT,
    LENGTH_UNSET,
    TS_PACKET_SIZE,
    TS_SYNC_BYTE,
    UdpDataSource,
    find_sync_offset,
    realign,
)


def _ts_packets(count: int) -> bytes:
    packet = bytes([TS_SYNC_BYTE]) + bytes(range(1, TS_PACKET_SIZE))
    return packet * count


def test_realign_drops_leading_junk():
    payload = _ts_packets(2)
    buf = bytearray(b"\x00\x11\x22" + payload)

    valid, offset = realign(buf, len(buf))

    assert offset == 3
    assert valid == len(payload)
    assert bytes(buf[:valid]) == payload


def test_realign_passes_through_aligned_data():
    payload = _ts_packets(1)
    buf = bytearray(payload)

    assert realign(buf, len(buf)) == (len(payload), 0)
    assert bytes(buf) == payload


def test_realign_passes_through_when_no_sync_in_window():
    data = bytes(TS_PACKET_SIZE) + bytes([TS_SYNC_BYTE]) + bytes(10)
    buf = bytearray(data)

    assert find_sync_offset(buf, len(buf)) is None
    assert realign(buf, len(buf)) == (len(data), None)
    assert bytes(buf) == data


def test_sync_search_is_limited_to_valid_bytes():
    buf = bytearray(b"\x00\x00\x47")
    assert find_sync_offset(buf, 2) is None
    assert find_sync_offset(buf, 3) == 2


def test_zero_length_read_returns_zero():
    source = UdpDataSource()
    assert source.read(bytearray(16), 0, 0) == 0


def test_read_before_open_is_end_of_input():
    source = UdpDataSource()
    assert source.read(bytearray(16)) == END_OF_INPUT


def test_open_rejects_url_without_host():
    source = UdpDataSource()
    with pytest.raises(InvalidStreamUrlError):
        source.open("udp://:1234")
    assert not source.is_open


def test_loopback_unicast_receive(free_udp_port):
    payload = _ts_packets(3)
    with UdpDataSource(timeout_s=2.0) as source:
        assert source.open(f"udp://@127.0.0.1:{free_udp_port}") == LENGTH_UNSET
        assert source.is_open
        assert not source.joined_group

        with socket.socket(socket.AF_INET, socket.SOCK_DGRAM) as sender:
            sender.sendto(b"\xff\xff" + payload, ("127.0.0.1", free_udp_port))

        first = bytearray(100)
        assert source.read(first, 0, 100) == 100
        rest = bytearray(len(payload))
        count = source.read(rest, 0, len(rest))

    assert count == len(payload) - 100
    assert bytes(first) + bytes(rest[:count]) == payload
    assert not source.is_open


def test_read_times_out_as_end_of_input(free_udp_port):
    source = UdpDataSource(timeout_s=0.1)
    source.open(f"udp://127.0.0.1:{free_udp_port}")
    try:
        assert source.read(bytearray(188)) == END_OF_INPUT
        assert source.tracker.get_metrics_and_reset()["timeouts"] == 1
    finally:
        source.close()


def test_read_after_close_is_end_of_input(free_udp_port):
    source = UdpDataSource(timeout_s=0.1)
    source.open(f"udp://127.0.0.1:{free_udp_port}")
    source.close()
    assert source.read(bytearray(188)) == END_OF_INPUT


class RecordingSocket:
    """Stands in for socket.socket and records what the source does with it."""

    instances: list["RecordingSocket"] = []

    def __init__(self, family=socket.AF_INET, type=socket.SOCK_DGRAM, proto=0):
        self.family = family
        self.calls = []
        RecordingSocket.instances.append(self)

    def setsockopt(self, level, option, value):
        self.calls.append(("setsockopt", level, option, value))

    def bind(self, address):
        self.calls.append(("bind", address))

    def settimeout(self, timeout):
        self.calls.append(("settimeout", timeout))

    def recv_into(self, buffer):
        raise TimeoutError

    def shutdown(self, how):
        self.calls.append(("shutdown", how))

    def close(self):
        self.calls.append(("close",))


@pytest.fixture
def recording_socket(monkeypatch):
    RecordingSocket.instances = []
    monkeypatch.setattr(udp.socket, "socket", RecordingSocket)
    return RecordingSocket


def test_multicast_open_joins_and_close_leaves(recording_socket):
    source = UdpDataSource(timeout_s=5.0)
    source.open("udp://@239.1.2.3:5000")
    sock = recording_socket.instances[0]
    mreq = struct.pack("4s4s", socket.inet_aton("239.1.2.3"), socket.inet_aton("0.0.0.0"))

    assert ("bind", ("", 5000)) in sock.calls
    assert ("setsockopt", socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, mreq) in sock.calls
    assert ("setsockopt", socket.SOL_SOCKET, socket.SO_RCVBUF, 1 << 20) in sock.calls
    assert ("settimeout", 5.0) in sock.calls
    assert source.joined_group

    source.close()
    leave = ("setsockopt", socket.IPPROTO_IP, socket.IP_DROP_MEMBERSHIP, mreq)
    assert leave in sock.calls
    assert sock.calls.index(leave) < sock.calls.index(("close",))
    assert not source.joined_group

    calls_after_close = list(sock.calls)
    source.close()
    assert sock.calls == calls_after_close


def test_multicast_join_uses_configured_interface(recording_socket, monkeypatch):
    monkeypatch.setattr(udp, "IP_MREQN_SUPPORTED", True)
    monkeypatch.setattr(udp.socket, "if_nametoindex", lambda name: {"eth1": 3}[name])
    source = UdpDataSource(interface="eth1")
    source.open("udp://@239.1.2.3:5000")
    sock = recording_socket.instances[0]
    mreqn = struct.pack("4s4si", socket.inet_aton("239.1.2.3"), socket.inet_aton("0.0.0.0"), 3)

    assert ("setsockopt", socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, mreqn) in sock.calls
    source.close()
    assert ("setsockopt", socket.IPPROTO_IP, socket.IP_DROP_MEMBERSHIP, mreqn) in sock.calls


def test_multicast_join_with_unknown_interface_uses_default(recording_socket, monkeypatch):
    def missing(name):
        raise OSError("no such device")

    monkeypatch.setattr(udp.socket, "if_nametoindex", missing)
    source = UdpDataSource(interface="nope0")
    source.open("udp://@239.1.2.3:5000")
    sock = recording_socket.instances[0]
    mreq = struct.pack("4s4s", socket.inet_aton("239.1.2.3"), socket.inet_aton("0.0.0.0"))

    assert ("setsockopt", socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, mreq) in sock.calls
    source.close()


def test_unicast_open_does_not_join(recording_socket):
    source = UdpDataSource()
    source.open("udp://192.168.1.10:1234")
    sock = recording_socket.instances[0]

    assert not any(c[0] == "setsockopt" and c[2] == socket.IP_ADD_MEMBERSHIP for c in sock.calls)
    source.close()
    assert not any(c[0] == "setsockopt" and c[2] == socket.IP_DROP_MEMBERSHIP for c in sock.calls)
    assert sock.calls[-1] == ("close",)


def test_reopen_closes_previous_socket(recording_socket):
    source = UdpDataSource()
    source.open("udp://@239.1.2.3:5000")
    source.open("udp://@239.1.2.4:5000")

    first, second = recording_socket.instances
    assert first.calls[-1] == ("close",)
    assert ("close",) not in second.calls
    source.close()


def test_repeated_cycles_release_every_socket_and_group(recording_socket):
    source = UdpDataSource()
    for _ in range(3):
        source.open("udp://@239.1.2.3:5000")
        assert source.read(bytearray(188)) == END_OF_INPUT  # fake socket always times out
        source.close()

    assert len(recording_socket.instances) == 3
    for sock in recording_socket.instances:
        joins = [c for c in sock.calls if c[0] == "setsockopt" and c[2] == socket.IP_ADD_MEMBERSHIP]
        drops = [c for c in sock.calls if c[0] == "setsockopt" and c[2] == socket.IP_DROP_MEMBERSHIP]
        assert len(joins) == len(drops) == 1
        assert sock.calls[-1] == ("close",)
    assert not source.is_open
    assert not source.joined_group
