"""
Realtime Blueprint — Server-Sent Events stream.

  GET /api/v1/events/stream   (text/event-stream)

Browsers' EventSource cannot send headers, so the token may also be given
as ``?access_token=``. Each connection subscribes a Viewer snapshot of the
caller to the in-process event bus; role or department changes apply on
reconnect. A comment line is sent every HEARTBEAT_SECONDS to keep proxies
from closing idle connections.
"""

import json
import logging

from flask import Blueprint, Response, current_app, stream_with_context

from auditpack.auth import current_auth
from auditpack.services.realtime import Viewer, event_bus

logger = logging.getLogger(__name__)

events_bp = Blueprint("events_bp", __name__, url_prefix="/api/v1/events")

HEARTBEAT_SECONDS = 15


def format_sse(event_type: str, data: dict) -> str:
    return f"event: {event_type}\ndata: {json.dumps(data, default=str)}\n\n"


@events_bp.route("/stream", methods=["GET"])
def stream():
    viewer = Viewer.from_profile(current_auth().profile)
    sub = event_bus.subscribe(viewer)
    heartbeat = current_app.config.get("EVENT_HEARTBEAT_SECONDS", HEARTBEAT_SECONDS)
    logger.info("Event stream opened", extra={"profile_id": viewer.id})

    def generate():
        yield format_sse("ready", {"profile_id": viewer.id})
        while True:
            event = sub.get(timeout=heartbeat)
            if event is None:
                yield ": heartbeat\n\n"
                continue
            yield format_sse(event.type, event.data)

    response = Response(stream_with_context(generate()), mimetype="text/event-stream")
    response.headers["Cache-Control"] = "no-cache"
    response.headers["X-Accel-Buffering"] = "no"

    @response.call_on_close
    def _close():
        event_bus.unsubscribe(sub)
        logger.info("Event stream closed", extra={"profile_id": viewer.id})

    return response
