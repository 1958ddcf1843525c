import logging

import pytest

from streamviewer.config import Config
from streamviewer.media.capabilities import (
    CapabilityOracle,
    CodecCapabilities,
    DecoderInfo,
    TranscodePolicy,
    log_decoder_inventory,
)


SOFTWARE_H264 = DecoderInfo("h264", "video", "H.264 / AVC", hardware=False)
HARDWARE_H264 = DecoderInfo("h264_cuvid", "video", "Nvidia CUVID H264 decoder", hardware=True)
MP2 = DecoderInfo("mp2", "audio", "MP2 (MPEG audio layer 2)")


class FakeOracle(CapabilityOracle):
    def __init__(self, decoders=(), hw_backends=(), max_size=None, error=None):
        self.decoders = list(decoders)
        self.hw_backends = set(hw_backends)
        self.max_size = max_size
        self.error = error
        self.queries = 0

    def list_decoders(self):
        if self.error:
            raise self.error
        return self.decoders

    def query(self, codec):
        self.queries += 1
        if self.error:
            raise self.error
        return CodecCapabilities(
            codec=codec,
            decoders=[d for d in self.decoders if d.media_type == "video"],
            hw_backends=self.hw_backends,
            max_size=self.max_size,
        )


@pytest.mark.parametrize(
    "url, candidate",
    [
        ("udp://@239.0.0.1:1234", True),
        ("udp://239.255.10.1:5000", True),
        ("udp://@238.0.0.1:1234", False),
        ("udp://192.168.1.20:1234", False),
        ("http://239.0.0.1/live.ts", False),
        ("udp://@:1234", False),
    ],
)
def test_candidate_range(url, candidate):
    assert TranscodePolicy(FakeOracle()).is_candidate(url) is candidate


def test_non_candidate_never_queries():
    oracle = FakeOracle(error=RuntimeError("should not be called"))
    policy = TranscodePolicy(oracle)
    assert not policy.should_force_transcode("udp://@192.168.1.20:1234")
    assert oracle.queries == 0


def test_forces_without_hardware_decoder():
    policy = TranscodePolicy(FakeOracle([SOFTWARE_H264]))
    assert policy.should_force_transcode("udp://@239.0.0.1:1234")


def test_does_not_force_with_strong_hardware():
    policy = TranscodePolicy(FakeOracle([SOFTWARE_H264, HARDWARE_H264]))
    assert not policy.should_force_transcode("udp://@239.0.0.1:1234")


def test_hardware_backend_counts_as_strong():
    policy = TranscodePolicy(FakeOracle([SOFTWARE_H264], hw_backends={"vaapi"}))
    assert not policy.should_force_transcode("udp://@239.0.0.1:1234")


def test_forces_when_resolution_not_supported():
    policy = TranscodePolicy(FakeOracle([HARDWARE_H264], max_size=(1280, 720)))
    assert policy.should_force_transcode("udp://@239.0.0.1:1234")


def test_forces_without_any_decoder():
    policy = TranscodePolicy(FakeOracle([], hw_backends={"cuda"}))
    assert policy.should_force_transcode("udp://@239.0.0.1:1234")


def test_query_failure_forces_transcoding():
    policy = TranscodePolicy(FakeOracle(error=RuntimeError("codec list unavailable")))
    assert policy.should_force_transcode("udp://@239.0.0.1:1234")


def test_evaluates_per_attempt_unless_cached():
    oracle = FakeOracle([HARDWARE_H264])
    policy = TranscodePolicy(oracle)
    policy.should_force_transcode("udp://@239.0.0.1:1234")
    policy.should_force_transcode("udp://@239.0.0.1:1234")
    assert oracle.queries == 2

    cached_oracle = FakeOracle([HARDWARE_H264])
    cached = TranscodePolicy(cached_oracle, cache=True)
    cached.should_force_transcode("udp://@239.0.0.1:1234")
    cached.should_force_transcode("udp://@239.0.0.1:1234")
    assert cached_oracle.queries == 1


def test_ranges_come_from_config():
    Config().set("oracle.force_ranges", ["232.0.0.0/8"])
    policy = TranscodePolicy(FakeOracle([SOFTWARE_H264]))
    assert policy.should_force_transcode("udp://@232.1.1.1:1234")
    assert not policy.should_force_transcode("udp://@239.1.1.1:1234")


def test_decoder_inventory_logging(caplog):
    with caplog.at_level(logging.INFO, logger="oracle"):
        log_decoder_inventory(FakeOracle([SOFTWARE_H264, MP2]))
    assert "video=1 audio=1" in caplog.text
    assert "mp2 audio=True" in caplog.text


def test_decoder_inventory_logging_never_raises(caplog):
    with caplog.at_level(logging.ERROR, logger="oracle"):
        log_decoder_inventory(FakeOracle(error=RuntimeError("no registry")))
    assert "failed to check codec capabilities" in caplog.text


def test_codec_capabilities_resolution():
    caps = CodecCapabilities("h264", [SOFTWARE_H264], max_size=(1920, 1080))
    assert caps.supports_resolution(1920, 1080)
    assert not caps.supports_resolution(3840, 2160)
    assert not CodecCapabilities("h264").supports_resolution(640, 480)


def test_pyav_oracle_lists_software_h264(monkeypatch):
    from streamviewer.media import capabilities

    monkeypatch.setattr(capabilities, "pick_hw_backend", lambda prefer: None)
    caps = capabilities.PyAvCapabilityOracle().query("h264")

    assert any(d.name == "h264" and not d.hardware for d in caps.decoders)
    assert caps.hw_backends == set()
