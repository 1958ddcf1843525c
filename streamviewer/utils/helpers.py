# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import ipaddress
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional
from urllib.parse import parse_qsl, urlsplit


UDP_SCHEME = "udp://"
# ffmpeg's udp protocol reads "udp://@group:port" as "listen on group:port"
UDP_MARKER = "@"


@dataclass(frozen=True)
class StreamEndpoint:
    """A parsed udp:// input endpoint."""

    scheme: str
    host: str
    port: int
    query: Dict[str, str] = field(default_factory=dict)
    local_host: Optional[str] = None  # "udp://local@dest:port" form

    @property
    def ttl(self) -> Optional[int]:
        value = self.query.get("ttl")
        return int(value) if value and value.isdigit() else None

    @property
    def is_multicast(self) -> bool:
        return is_multicast_host(self.host)

    def __str__(self) -> str:
        host = f"[{self.host}]" if ":" in self.host else self.host
        return f"{self.scheme}://{host}:{self.port}"


def is_udp_url(url: str) -> bool:
    """Check if a URL uses the udp:// scheme."""
    return url.strip().lower().startswith(UDP_SCHEME)


def strip_udp_marker(url: str) -> str:
    """Remove the leading '@' after the scheme so the URL is a standard URI.

    Used for the direct (non-transcoding) path. URLs without the marker and
    non-UDP URLs are returned trimmed but otherwise unchanged.
    """
    result = url.strip()
    if result.lower().startswith(UDP_SCHEME + UDP_MARKER):
        result = UDP_SCHEME + result[len(UDP_SCHEME) + len(UDP_MARKER):]
    return result


def ensure_udp_marker(url: str) -> str:
    """Ensure a udp:// URL carries the '@' listen marker ffmpeg expects.

    Idempotent: a URL that already has an '@' in its authority is left alone.
    """
    result = url.strip()
    if not result.lower().startswith(UDP_SCHEME):
        return result
    rest = result[len(UDP_SCHEME):]
    authority = rest.split("/", 1)[0].split("?", 1)[0]
    if UDP_MARKER in authority:
        return result
    return UDP_SCHEME + UDP_MARKER + rest


def parse_endpoint(url: str, default_port: int) -> StreamEndpoint:
    """Parse a udp:// URL into a StreamEndpoint.

    Raises:
        ValueError: if the URL has no host or an invalid port
    """
    parts = urlsplit(strip_udp_marker(url))
    scheme = (parts.scheme or "").lower()
    if scheme != "udp":
        raise ValueError(f"Unsupported scheme: {parts.scheme or '(none)'}")

    host = parts.hostname
    if not host:
        raise ValueError("UDP URL must include host")

    port = parts.port  # raises ValueError for out-of-range ports
    if port is None:
        port = default_port

    query = dict(parse_qsl(parts.query, keep_blank_values=True))
    return StreamEndpoint(scheme=scheme, host=host, port=port, query=query, local_host=parts.username)


def is_multicast_host(host: str) -> bool:
    """Check if a literal host address is multicast (hostnames are not resolved)."""
    try:
        return ipaddress.ip_address(host).is_multicast
    except ValueError:
        return False


def host_in_ranges(host: str, ranges: Iterable[str]) -> bool:
    """Check if a literal host address falls inside any of the given CIDR ranges."""
    try:
        addr = ipaddress.ip_address(host)
    except ValueError:
        return False
    for cidr in ranges:
        try:
            if addr in ipaddress.ip_network(cidr, strict=False):
                return True
        except ValueError:
            continue
    return False

