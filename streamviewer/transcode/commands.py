# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

from dataclasses import dataclass, field
from pathlib import Path

from ..config import Config


SEGMENT_PATTERN = "segment_%05d.ts"


@dataclass
class FallbackEncoding:
    """Constrained, broadly decodable H.264/AAC encode settings."""

    max_width: int = 1280
    max_height: int = 720
    fps: int = 30
    keyframe_interval_s: int = 1
    profile: str = "baseline"
    level: str = "3.1"
    preset: str = "ultrafast"
    audio_codec: str = "aac"
    audio_bitrate: str = "128k"
    audio_rate: int = 44100

    @property
    def gop(self) -> int:
        return max(1, int(self.fps * self.keyframe_interval_s))


@dataclass
class TranscodeSettings:
    """Settings shared by the remux and re-encode attempts."""

    output_dir: Path
    playlist_name: str = "stream.m3u8"
    segment_time: int = 2
    list_size: int = 6
    input_timeout_us: int = 10_000_000
    primary_audio_codec: str = "aac"
    fallback: FallbackEncoding = field(default_factory=FallbackEncoding)

    def __post_init__(self):
        self.output_dir = Path(self.output_dir)

    @property
    def playlist_path(self) -> Path:
        return self.output_dir / self.playlist_name

    @classmethod
    def from_config(cls) -> "TranscodeSettings":
        config = Config()
        return cls(
            output_dir=Path(config.get("transcode.output_dir")),
            playlist_name=config.get("transcode.playlist_name"),
            segment_time=int(config.get("transcode.segment_time")),
            list_size=int(config.get("transcode.list_size")),
            input_timeout_us=int(config.get("transcode.input_timeout_us")),
            primary_audio_codec=config.get("transcode.primary_audio_codec"),
            fallback=FallbackEncoding(**config.get("transcode.fallback")),
        )


def _input_args(input_url: str, settings: TranscodeSettings) -> list[str]:
    return [
        "-hide_banner",
        "-nostdin",
        "-nostats",
        "-fflags", "nobuffer",
        "-flags", "low_delay",
        "-timeout", str(settings.input_timeout_us),  # dead source must not hang the process
        "-i", input_url,
    ]


def _hls_output_args(settings: TranscodeSettings) -> list[str]:
    return [
        "-avoid_negative_ts", "make_zero",
        "-f", "hls",
        "-hls_time", str(settings.segment_time),
        "-hls_list_size", str(settings.list_size),
        "-hls_flags", "delete_segments+append_list",
        "-hls_start_number_source", "generic",
        "-hls_segment_filename", str(settings.output_dir / SEGMENT_PATTERN),
        "-y", str(settings.playlist_path),
    ]


def build_primary_command(ffmpeg: str, input_url: str, settings: TranscodeSettings) -> list[str]:
    """Remux to HLS without touching the video samples.

    The bitstream filters insert access unit delimiters and repeat SPS/PPS on
    keyframes so every segment can be decoded on its own.
    """
    return [
        ffmpeg,
        *_input_args(input_url, settings),
        "-map", "0:v:0?",
        "-map", "0:a:0?",
        "-c:v", "copy",
        "-bsf:v", "h264_metadata=aud=insert,dump_extra=freq=keyframe",
        "-c:a", settings.primary_audio_codec,
        *_hls_output_args(settings),
    ]


def build_fallback_command(ffmpeg: str, input_url: str, settings: TranscodeSettings) -> list[str]:
    """Re-encode to a constrained baseline H.264 + AAC ladder rung."""
    enc = settings.fallback
    # Ceiling, not a fixed size; aspect ratio is kept and dimensions stay even
    scale = (
        f"scale='min({enc.max_width},iw)':'min({enc.max_height},ih)'"
        ":force_original_aspect_ratio=decrease:force_divisible_by=2"
    )
    x264_params = "scenecut=0:ref=1:bframes=0:aud=1:repeat-headers=1:force-cfr=1"
    return [
        ffmpeg,
        *_input_args(input_url, settings),
        "-map", "0:v:0?",
        "-map", "0:a:0?",
        "-vf", scale,
        "-pix_fmt", "yuv420p",
        "-r", str(enc.fps),
        "-c:v", "libx264",
        "-preset", enc.preset,
        "-tune", "zerolatency",
        "-profile:v", enc.profile,
        "-level:v", enc.level,
        "-g", str(enc.gop),
        "-keyint_min", str(enc.gop),
        "-sc_threshold", "0",
        "-bf", "0",
        "-x264-params", x264_params,
        "-c:a", enc.audio_codec,
        "-b:a", enc.audio_bitrate,
        "-ar", str(enc.audio_rate),
        *_hls_output_args(settings),
    ]
