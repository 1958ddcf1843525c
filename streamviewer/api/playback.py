# © Copyright 2025 Stuart Parmenter
# SPDX-License-Identifier: MIT

import asyncio
import logging

from aiohttp import web

from ..media.exceptions import InvalidStreamUrlError, StreamOpenError, StreamSourceError
from ..media.udp import END_OF_INPUT
from ..streaming.core import PlaybackHandoff, PlaybackOrchestrator, failure_hint, playback_error_hint
from ..streaming.options import PlayOptions


ORCHESTRATOR_KEY = web.AppKey("orchestrator", PlaybackOrchestrator)

LIVE_STREAM_PATH = "/stream/live.ts"
HLS_PREFIX = "/hls"


def player_url(request: web.Request, handoff: PlaybackHandoff) -> str:
    """HTTP URL an external player can open for handoff."""
    base = f"{request.scheme}://{request.host}"
    if handoff.transcoding and handoff.artifact is not None:
        return f"{base}{HLS_PREFIX}/{handoff.artifact.path.name}"
    if handoff.options.is_udp:
        return f"{base}{LIVE_STREAM_PATH}"
    return handoff.uri


async def handle_play_request(request: web.Request) -> web.Response:
    """Handle POST /api/play {url, force_transcode}."""
    orchestrator = request.app[ORCHESTRATOR_KEY]
    options = None
    try:
        data = await request.json()
        options = PlayOptions.from_control_params(data)
        handoff = await orchestrator.play(options)
    except InvalidStreamUrlError as e:
        return web.json_response({"error": str(e), "hint": failure_hint(e, False)}, status=400)
    except StreamSourceError as e:
        transcoding = bool(options and options.force_transcode)
        return web.json_response(
            {"error": str(e), "hint": failure_hint(e, transcoding), "retryable": e.retryable},
            status=502,
        )
    except ValueError as e:
        return web.json_response({"error": f"Invalid parameter: {e}"}, status=400)
    except Exception as e:
        logging.getLogger('server').error(f"Error processing play request: {e}", exc_info=True)
        return web.json_response({"error": f"Playback failed: {e}"}, status=500)

    return web.json_response({**handoff.to_dict(), "player_url": player_url(request, handoff)})


async def handle_stop_request(request: web.Request) -> web.Response:
    """Handle POST /api/stop."""
    await request.app[ORCHESTRATOR_KEY].stop()
    return web.json_response({"status": "stopped"})


async def handle_status_request(request: web.Request) -> web.Response:
    """Handle GET /api/status."""
    return web.json_response(request.app[ORCHESTRATOR_KEY].status())


async def handle_playback_error_request(request: web.Request) -> web.Response:
    """Handle POST /api/playback/error {code, message} reported by the player."""
    orchestrator = request.app[ORCHESTRATOR_KEY]
    try:
        data = await request.json()
    except ValueError as e:
        return web.json_response({"error": f"Invalid parameter: {e}"}, status=400)

    code = data.get("code")
    message = str(data.get("message") or "")
    transcoding = orchestrator.current is not None and orchestrator.current.transcoding
    logging.getLogger('server').error(f"player error code={code}: {message}")
    hint = playback_error_hint(code, message, transcoding)
    orchestrator.last_error = hint
    return web.json_response({"message": hint, "transcoding": transcoding})


async def handle_live_stream_request(request: web.Request) -> web.StreamResponse:
    """Handle GET /stream/live.ts: relay the current direct UDP stream as an HTTP body.

    Each request owns its own data source; the body ends at end-of-input.
    """
    orchestrator = request.app[ORCHESTRATOR_KEY]
    logger = logging.getLogger('server')
    loop = asyncio.get_running_loop()

    try:
        source = await loop.run_in_executor(None, orchestrator.open_direct_source)
    except InvalidStreamUrlError as e:
        return web.json_response({"error": str(e)}, status=400)
    except StreamOpenError as e:
        return web.json_response({"error": str(e), "hint": failure_hint(e, False)}, status=404)

    response = web.StreamResponse(headers={"Content-Type": "video/mp2t", "Cache-Control": "no-cache"})
    chunk = bytearray(source.packet_buffer_size)
    total = 0
    try:
        await response.prepare(request)
        while True:
            count = await loop.run_in_executor(None, source.read, chunk, 0, len(chunk))
            if count == END_OF_INPUT:
                break
            await response.write(bytes(chunk[:count]))
            total += count
    except (ConnectionResetError, asyncio.CancelledError):
        logger.info(f"{request.remote} disconnected from live stream")
        raise
    finally:
        orchestrator.release_direct_source(source)
        logger.info(f"live stream to {request.remote} ended after {total} bytes")

    await response.write_eof()
    return response
