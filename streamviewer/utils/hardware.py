# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import logging
import platform
import shutil
import subprocess
from typing import Optional

# Cache for hardware acceleration detection
_hw_backend_cache: Optional[set[str]] = None


def get_ffmpeg_exe_path() -> Optional[str]:
    """Find FFmpeg executable path."""
    exe = shutil.which("ffmpeg")
    if exe:
        return exe
    try:
        import imageio_ffmpeg  # type: ignore[import]  # imageio-ffmpeg has no type stubs
        return imageio_ffmpeg.get_ffmpeg_exe()
    except (ImportError, RuntimeError):
        return None


def probe_hw_backends() -> set[str]:
    """Return the hardware acceleration methods the local ffmpeg build reports."""
    exe = get_ffmpeg_exe_path()
    if not exe:
        return set()

    try:
        out = subprocess.check_output(
            [exe, "-hide_banner", "-hwaccels"], text=True, stderr=subprocess.STDOUT, timeout=10
        )
    except (OSError, subprocess.SubprocessError) as e:
        logging.getLogger("hardware").debug(f"ffmpeg -hwaccels failed: {e}")
        return set()

    # First line is the "Hardware acceleration methods:" banner
    return {
        line.strip().lower()
        for line in out.splitlines()
        if line.strip() and not line.strip().endswith(":")
    }


def available_hw_backends(refresh: bool = False) -> set[str]:
    """Cached view of probe_hw_backends()."""
    global _hw_backend_cache
    if _hw_backend_cache is None or refresh:
        _hw_backend_cache = probe_hw_backends()
    return _hw_backend_cache


def pick_hw_backend(prefer: Optional[str] = None) -> Optional[str]:
    """Pick the best hardware acceleration backend for this system."""
    backends = available_hw_backends()

    system = platform.system().lower()
    prefer = (prefer or "auto").lower()
    aliases = {"d3d11": "d3d11va"}

    if prefer == "none":
        return None

    if prefer not in ("", "auto"):
        pn = aliases.get(prefer, prefer)
        return pn if pn in backends else None

    candidates: tuple[str, ...]
    if system == "windows":
        candidates = ("cuda", "d3d11va", "qsv")
    elif system == "darwin":
        candidates = ("videotoolbox",)
    else:
        candidates = ("vaapi", "qsv", "cuda", "drm")

    for cand in candidates:
        if cand in backends:
            return cand

    return None
