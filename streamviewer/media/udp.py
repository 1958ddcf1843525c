# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""Pull-based UDP/multicast reader producing an MPEG-TS aligned byte stream.

One datagram is received at a time into a single reusable buffer. Each new
datagram is realigned to the first TS sync byte found within the first
packet-length window, then handed out to callers in whatever chunk sizes
they ask for. Receive timeouts and socket errors turn into END_OF_INPUT for
that read only, so a demuxer reading from this source decides for itself
whether a gap is fatal.
"""

import contextlib
import ipaddress
import logging
import socket
import struct
import sys
import threading

from ..config import Config
from ..utils.helpers import StreamEndpoint, parse_endpoint
from ..utils.metrics import ReceiveTracker
from .exceptions import InvalidStreamUrlError, StreamOpenError


TS_PACKET_SIZE = 188
TS_SYNC_BYTE = 0x47

# Mirrors the read contract of stream demuxers: -1 is "no data for this call"
END_OF_INPUT = -1
# A live feed has no known length
LENGTH_UNSET = -1

# ip_mreqn (group, address, ifindex) is accepted for IP_ADD_MEMBERSHIP on Linux only
IP_MREQN_SUPPORTED = sys.platform.startswith("linux")


def find_sync_offset(buffer: bytearray, valid: int, window: int = TS_PACKET_SIZE) -> int | None:
    """Return the offset of the first sync byte within the first window bytes, or None."""
    offset = buffer.find(TS_SYNC_BYTE, 0, min(window, valid))
    return offset if offset >= 0 else None


def realign(buffer: bytearray, valid: int, window: int = TS_PACKET_SIZE) -> tuple[int, int | None]:
    """Shift a received frame left so it starts on a TS sync byte.

    Returns (new_valid, offset). offset is None when no sync byte was found,
    in which case the frame is left untouched.
    """
    offset = find_sync_offset(buffer, valid, window)
    if offset:
        buffer[0 : valid - offset] = buffer[offset:valid]
        valid -= offset
    return valid, offset


class UdpDataSource:
    """UDP/multicast data source with a read(buffer, offset, length) contract.

    The source exclusively owns its socket and receive buffer between open()
    and close(). Instances may be reopened after close().
    """

    def __init__(
        self,
        *,
        packet_buffer_size: int | None = None,
        receive_buffer_size: int | None = None,
        timeout_s: float | None = None,
        interface: str | None = None,
        default_port: int | None = None,
        logger: logging.Logger | None = None,
    ):
        config = Config()
        self.packet_buffer_size = packet_buffer_size or int(config.get("udp.packet_buffer_size"))
        self.receive_buffer_size = receive_buffer_size or int(config.get("udp.receive_buffer_size"))
        self.timeout_s = timeout_s if timeout_s is not None else float(config.get("udp.timeout_s"))
        self.interface = interface if interface is not None else config.get("udp.interface")
        self.default_port = default_port or int(config.get("udp.default_port"))
        self.logger = logger or logging.getLogger("udp")
        self.tracker = ReceiveTracker(log_interval_s=float(config.get("udp.stats_interval_s")))

        self.uri: str | None = None
        self.endpoint: StreamEndpoint | None = None

        self._lock = threading.Lock()
        self._sock: socket.socket | None = None
        self._membership: tuple[int, int, bytes] | None = None  # (level, drop_opt, mreq)
        self._opened = False
        self._buffer: bytearray | None = None
        self._read_offset = 0
        self._valid_bytes = 0
        self._warned_unsynced = False

    @property
    def is_open(self) -> bool:
        return self._opened

    @property
    def joined_group(self) -> bool:
        return self._membership is not None

    def __enter__(self) -> "UdpDataSource":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def open(self, url: str) -> int:
        """Bind a socket for url and return the stream length (always LENGTH_UNSET).

        Raises:
            InvalidStreamUrlError: the URL has no usable host/port
            StreamOpenError: address resolution, bind or group join failed
        """
        if self._opened:
            self.logger.warning(f"open({url}) while already open on {self.uri}, closing first")
            self.close()

        try:
            endpoint = parse_endpoint(url, self.default_port)
        except ValueError as e:
            raise InvalidStreamUrlError(f"Invalid UDP URL {url!r}: {e}", url) from e

        try:
            infos = socket.getaddrinfo(endpoint.host, endpoint.port, type=socket.SOCK_DGRAM)
        except socket.gaierror as e:
            self.logger.error(f"cannot resolve {endpoint.host}: {e}")
            raise StreamOpenError(f"Cannot resolve host {endpoint.host}: {e}", url, e.errno) from e

        family, _, _, _, sockaddr = infos[0]
        address = ipaddress.ip_address(sockaddr[0].split("%", 1)[0])
        is_multicast = address.is_multicast

        self.logger.info(f"opening socket for {endpoint.host}:{endpoint.port} (multicast: {is_multicast})")

        sock = socket.socket(family, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            if is_multicast and hasattr(socket, "SO_REUSEPORT"):
                with contextlib.suppress(OSError):
                    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEPORT, 1)

            sock.bind(("::" if family == socket.AF_INET6 else "", endpoint.port))
            self._bind_to_interface(sock)

            if is_multicast:
                self.logger.info(f"joining multicast group {address}")
                self._membership = self._join_group(sock, family, address)

            try:
                sock.setsockopt(socket.SOL_SOCKET, socket.SO_RCVBUF, self.receive_buffer_size)
            except OSError as e:
                self.logger.debug(f"SO_RCVBUF={self.receive_buffer_size} failed: {e} (continuing with default)")
            sock.settimeout(self.timeout_s)

        except OSError as e:
            self.logger.error(f"failed to open socket for {endpoint.host}:{endpoint.port}: {e}")
            self._membership = None
            sock.close()
            raise StreamOpenError(f"Failed to open UDP socket: {e}", url, e.errno) from e

        with self._lock:
            self._sock = sock
            self._buffer = bytearray(self.packet_buffer_size)
            self._read_offset = 0
            self._valid_bytes = 0
            self._warned_unsynced = False
            self._opened = True
            self.uri = url
            self.endpoint = endpoint

        self.logger.info("socket opened successfully")
        return LENGTH_UNSET

    def _bind_to_interface(self, sock: socket.socket) -> None:
        """Pin the socket to the configured interface when the platform allows it."""
        if not self.interface:
            return
        if not hasattr(socket, "SO_BINDTODEVICE"):
            self.logger.debug("SO_BINDTODEVICE not available on this platform")
            return
        try:
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_BINDTODEVICE, self.interface.encode())
        except OSError as e:
            # Usually needs CAP_NET_RAW; receiving on all interfaces still works
            self.logger.warning(f"could not bind to interface {self.interface}: {e}")

    def _join_group(self, sock: socket.socket, family: int, group) -> tuple[int, int, bytes]:
        ifindex = self._interface_index()
        if family == socket.AF_INET6:
            mreq = struct.pack("16sI", group.packed, ifindex)
            sock.setsockopt(socket.IPPROTO_IPV6, socket.IPV6_JOIN_GROUP, mreq)
            return (socket.IPPROTO_IPV6, socket.IPV6_LEAVE_GROUP, mreq)

        any_addr = socket.inet_aton("0.0.0.0")
        if ifindex and IP_MREQN_SUPPORTED:
            mreq = struct.pack("4s4si", group.packed, any_addr, ifindex)
        else:
            mreq = struct.pack("4s4s", group.packed, any_addr)
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, mreq)
        return (socket.IPPROTO_IP, socket.IP_DROP_MEMBERSHIP, mreq)

    def _interface_index(self) -> int:
        """Index of the configured interface, or 0 to let the kernel pick."""
        if not self.interface:
            return 0
        try:
            return socket.if_nametoindex(self.interface)
        except OSError as e:
            self.logger.warning(f"unknown interface {self.interface}, joining on the default route: {e}")
            return 0

    def read(self, buffer: bytearray | memoryview, offset: int = 0, length: int | None = None) -> int:
        """Copy up to length bytes into buffer[offset:].

        Returns the number of bytes copied, or END_OF_INPUT when the source is
        closed or no datagram arrived within the receive timeout.
        """
        if length is None:
            length = len(buffer) - offset
        if length == 0:
            return 0
        if not self._opened:
            return END_OF_INPUT

        if self._read_offset >= self._valid_bytes and not self._receive():
            return END_OF_INPUT

        with self._lock:
            if self._buffer is None:
                return END_OF_INPUT
            count = min(length, self._valid_bytes - self._read_offset)
            if count <= 0:
                return END_OF_INPUT
            start = self._read_offset
            memoryview(buffer)[offset : offset + count] = memoryview(self._buffer)[start : start + count]
            self._read_offset += count
        return count

    def _receive(self) -> bool:
        """Block for one datagram. Returns False when nothing usable arrived."""
        sock = self._sock
        buf = self._buffer
        if sock is None or buf is None:
            return False

        try:
            received = sock.recv_into(buf)
        except TimeoutError:
            self.tracker.record_timeout()
            self.logger.debug(f"socket timeout - no data received in {self.timeout_s}s")
            return False
        except OSError as e:
            if self._opened:
                self.logger.error(f"socket error during receive: {e}")
            return False

        with self._lock:
            if self._sock is not sock:
                return False  # closed while we were blocked
            if received <= 0:
                return False

            self.tracker.record_datagram(received)
            if self.logger.isEnabledFor(logging.DEBUG):
                first = buf[: min(16, received)].hex(" ")
                self.logger.debug(f"received {received} bytes, first 16: {first}")

            valid, sync_offset = realign(buf, received)
            if sync_offset is None:
                self.tracker.record_unsynced()
                if not self._warned_unsynced:
                    self.logger.warning("no MPEG-TS sync byte (0x47) found in datagram, passing through")
                    self._warned_unsynced = True
            elif sync_offset > 0:
                self.tracker.record_realign()
                self.logger.debug(f"MPEG-TS sync byte found at offset {sync_offset}, realigned")

            self._read_offset = 0
            self._valid_bytes = valid

        if self.tracker.should_log():
            self.logger.info(f"{self.endpoint} {self.tracker.format(self.tracker.get_metrics_and_reset())}")
        return True

    def close(self) -> None:
        """Leave any multicast group, close the socket and drop buffered data. Idempotent."""
        with self._lock:
            sock, self._sock = self._sock, None
            membership, self._membership = self._membership, None
            was_open = self._opened
            self._opened = False
            self._buffer = None
            self._read_offset = 0
            self._valid_bytes = 0
            uri, self.uri = self.uri, None
            self.endpoint = None

        if sock is None:
            return

        try:
            if membership is not None:
                level, opt, mreq = membership
                try:
                    sock.setsockopt(level, opt, mreq)
                    self.logger.info("left multicast group")
                except OSError as e:
                    self.logger.warning(f"leaving multicast group failed: {e}")
            # Wakes a reader blocked in recv_into on Linux
            with contextlib.suppress(OSError):
                sock.shutdown(socket.SHUT_RDWR)
        finally:
            sock.close()
            if was_open:
                self.logger.info(f"socket closed for {uri}")
