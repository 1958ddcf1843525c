# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import logging
import os
from typing import Optional

from aiohttp import web

from ..streaming.core import PlaybackOrchestrator
from .playback import (
    HLS_PREFIX,
    LIVE_STREAM_PATH,
    ORCHESTRATOR_KEY,
    handle_live_stream_request,
    handle_play_request,
    handle_playback_error_request,
    handle_status_request,
    handle_stop_request,
)


async def health_check_handler(request):
    """Simple health check endpoint."""
    return web.json_response({"status": "ok", "service": "streamviewer"})


async def _stop_playback(app: web.Application) -> None:
    await app[ORCHESTRATOR_KEY].stop()


async def create_app(orchestrator: Optional[PlaybackOrchestrator] = None):
    """Create and configure the HTTP control and handoff application."""
    app = web.Application()
    orchestrator = orchestrator or PlaybackOrchestrator()
    app[ORCHESTRATOR_KEY] = orchestrator

    # Control API
    app.router.add_post('/api/play', handle_play_request)
    app.router.add_post('/api/stop', handle_stop_request)
    app.router.add_get('/api/status', handle_status_request)
    app.router.add_post('/api/playback/error', handle_playback_error_request)
    app.router.add_get('/api/system/health', health_check_handler)

    # Player handoff: live MPEG-TS relay and transcoded HLS output
    app.router.add_get(LIVE_STREAM_PATH, handle_live_stream_request)
    hls_dir = orchestrator.supervisor.settings.output_dir
    os.makedirs(hls_dir, exist_ok=True)
    app.router.add_static(HLS_PREFIX, hls_dir, show_index=False)

    app.on_cleanup.append(_stop_playback)
    return app


async def start_server(host: str = "0.0.0.0", port: int = 8790, orchestrator: Optional[PlaybackOrchestrator] = None):
    """Start the HTTP server."""
    app = await create_app(orchestrator)

    runner = web.AppRunner(app)
    await runner.setup()

    site = web.TCPSite(runner, host, port)
    await site.start()

    logging.getLogger('server').info(
        f"Server on http://{host}:{port}/ (control: /api/, live: {LIVE_STREAM_PATH}, hls: {HLS_PREFIX}/)"
    )

    return runner, app[ORCHESTRATOR_KEY]
