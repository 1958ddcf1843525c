# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

from dataclasses import dataclass
from typing import Any, Dict
import logging

from ..utils.helpers import is_udp_url


TRUE_STRINGS = ("1", "true", "yes", "on")


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in TRUE_STRINGS
    return bool(value)


@dataclass
class PlayOptions:
    """Strongly typed options for one play request."""

    url: str
    force_transcode: bool = False

    @property
    def is_udp(self) -> bool:
        return is_udp_url(self.url)

    @classmethod
    def from_control_params(cls, params: Dict[str, Any]) -> 'PlayOptions':
        """Create PlayOptions from API/CLI parameters.

        Raises:
            ValueError: if url is missing or empty
        """
        url = str(params.get("url") or "").strip()
        if not url:
            raise ValueError("url is required")
        return cls(url=url, force_transcode=_as_bool(params.get("force_transcode", False)))

    def get_applied_params(self) -> Dict[str, Any]:
        return {"url": self.url, "force_transcode": self.force_transcode}

    def log_info(self, session_info: str) -> None:
        logging.getLogger('streaming').info(
            f"play {session_info} url={self.url} force_transcode={self.force_transcode}"
        )
