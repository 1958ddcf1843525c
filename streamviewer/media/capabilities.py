# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

"""Decoder capability queries and the proactive force-transcode decision.

Multicast feeds in the well-known high-bitrate range are usually OBS output
at full HD and high profile. On hosts without a strong hardware decoder those
streams play badly or not at all through the direct path, so transcoding is
forced before the user's own toggle is consulted. Any failure to query the
decoders counts as "no strong support".
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

import av
from av.codec import Codec

from ..config import Config
from ..utils.hardware import pick_hw_backend
from ..utils.helpers import host_in_ranges, is_udp_url, parse_endpoint


# Decoder name suffixes of hardware-backed libavcodec wrappers
HW_DECODER_SUFFIXES = (
    "_cuvid", "_qsv", "_v4l2m2m", "_mediacodec", "_rkmpp", "_mmal", "_amf", "_nvdec", "_videotoolbox",
)


@dataclass(frozen=True)
class DecoderInfo:
    name: str
    media_type: str
    long_name: str = ""
    hardware: bool = False


@dataclass
class CodecCapabilities:
    """What the host can do for one video codec."""

    codec: str
    decoders: list[DecoderInfo] = field(default_factory=list)
    hw_backends: set[str] = field(default_factory=set)
    max_size: tuple[int, int] | None = None  # None: decoder imposes no practical limit

    @property
    def has_decoder(self) -> bool:
        return bool(self.decoders)

    @property
    def has_strong_hardware(self) -> bool:
        return any(d.hardware for d in self.decoders) or bool(self.hw_backends)

    def supports_resolution(self, width: int, height: int) -> bool:
        if not self.has_decoder:
            return False
        if self.max_size is None:
            return True
        return self.max_size[0] >= width and self.max_size[1] >= height


class CapabilityOracle(ABC):
    """Read-only view of the host's decoders."""

    @abstractmethod
    def list_decoders(self) -> list[DecoderInfo]:
        """Enumerate decoder-capable codecs."""

    @abstractmethod
    def query(self, codec: str) -> CodecCapabilities:
        """Report decoders and hardware support for codec."""


class PyAvCapabilityOracle(CapabilityOracle):
    """Capability oracle backed by libavcodec's registry (via PyAV) and ffmpeg -hwaccels.

    hw_prefer follows the hw.prefer setting: "auto" counts the best backend
    for this platform, a backend name counts only that backend, "none"
    ignores hardware acceleration.
    """

    def __init__(self, max_size: tuple[int, int] | None = None, hw_prefer: str = "auto"):
        self.max_size = max_size
        self.hw_prefer = hw_prefer

    def list_decoders(self) -> list[DecoderInfo]:
        decoders = []
        for name in sorted(av.codecs_available):
            try:
                codec = Codec(name, "r")
            except ValueError:
                continue  # encoder-only
            decoders.append(
                DecoderInfo(
                    name=codec.name,
                    media_type=codec.type or "",
                    long_name=codec.long_name or "",
                    hardware=codec.name.endswith(HW_DECODER_SUFFIXES),
                )
            )
        return decoders

    def query(self, codec: str) -> CodecCapabilities:
        prefix = codec.lower()
        decoders = [
            d for d in self.list_decoders()
            if d.media_type == "video" and (d.name == prefix or d.name.startswith(prefix + "_"))
        ]
        backend = pick_hw_backend(self.hw_prefer)
        return CodecCapabilities(
            codec=codec,
            decoders=decoders,
            hw_backends={backend} if backend else set(),
            max_size=self.max_size,
        )


def log_decoder_inventory(oracle: CapabilityOracle, logger: logging.Logger | None = None) -> None:
    """Log the host's video/audio decoders. Never raises."""
    logger = logger or logging.getLogger("oracle")
    try:
        decoders = oracle.list_decoders()
    except Exception as e:
        logger.error(f"failed to check codec capabilities: {e!r}")
        return

    video = [d for d in decoders if d.media_type == "video"]
    audio = [d for d in decoders if d.media_type == "audio"]
    logger.debug("video decoders: " + ", ".join(d.name for d in video))
    logger.debug("audio decoders: " + ", ".join(d.name for d in audio))

    has_mpeg_video = any(d.name.startswith(("mpeg1video", "mpeg2video")) for d in video)
    has_mp2 = any(d.name.startswith("mp2") for d in audio)
    logger.info(
        f"decoders: video={len(video)} audio={len(audio)} "
        f"mpeg1/2 video={has_mpeg_video} mp2 audio={has_mp2}"
    )


class TranscodePolicy:
    """Decides, per play request, whether transcoding must be forced."""

    def __init__(
        self,
        oracle: CapabilityOracle | None = None,
        logger: logging.Logger | None = None,
        *,
        cache: bool | None = None,
    ):
        config = Config()
        max_size = config.get("oracle.max_decode_size")
        self.oracle = oracle or PyAvCapabilityOracle(
            tuple(max_size) if max_size else None, hw_prefer=config.get("hw.prefer")
        )
        self.logger = logger or logging.getLogger("oracle")
        self.ranges: list[str] = list(config.get("oracle.force_ranges"))
        self.codec: str = config.get("oracle.codec")
        self.hd_size = (int(config.get("oracle.hd_width")), int(config.get("oracle.hd_height")))
        self.cache = bool(config.get("oracle.cache")) if cache is None else cache
        self._cached: CodecCapabilities | None = None

    def is_candidate(self, url: str) -> bool:
        """UDP stream whose host is in one of the high-bitrate multicast ranges."""
        if not is_udp_url(url):
            return False
        try:
            endpoint = parse_endpoint(url, default_port=0)
        except ValueError:
            return False
        return host_in_ranges(endpoint.host, self.ranges)

    def _capabilities(self) -> CodecCapabilities:
        if self.cache and self._cached is not None:
            return self._cached
        caps = self.oracle.query(self.codec)
        if self.cache:
            self._cached = caps
        return caps

    def should_force_transcode(self, url: str) -> bool:
        if not self.is_candidate(url):
            return False

        self.logger.info("detected high-bitrate multicast UDP stream - checking if transcoding is needed")
        try:
            caps = self._capabilities()
        except Exception as e:
            self.logger.error(f"failed to analyze codec capabilities: {e!r} - forcing transcoding")
            return True

        high_res = caps.supports_resolution(*self.hd_size)
        strong_hw = caps.has_strong_hardware
        self.logger.info(
            f"codec analysis for {self.codec}: decoders={[d.name for d in caps.decoders]} "
            f"hw_backends={sorted(caps.hw_backends)} high_res={high_res} strong_hw={strong_hw}"
        )

        if not (high_res and strong_hw):
            self.logger.warning("device may have limited decoder capabilities - forcing transcoding")
            return True
        return False
