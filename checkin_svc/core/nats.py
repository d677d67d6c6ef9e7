from __future__ import annotations
import json
import logging
from typing import Sequence
from nats.aio.client import Client as NATS
from .config import get_settings

logger = logging.getLogger(__name__)

_nats = NATS()

async def nats_connect():
    if not _nats.is_connected:
        servers: Sequence[str] = [u.strip() for u in get_settings().nats_urls.split(",") if u.strip()]
        await _nats.connect(servers=servers, allow_reconnect=False, connect_timeout=2)

async def nats_close():
    try:
        if _nats.is_connected:
            await _nats.drain()
    except Exception as exc:
        logger.warning("nats drain failed: %s", exc)

async def publish_attendance(subject: str, evt: dict) -> bool:
    """
    evt = {
      "event_id": str,
      "user_id": str,
      "attendance_id": str,
      "at": iso8601,
      "idempotency_key": "event_id:user_id:attendance_id",
      ...
    }
    Best effort: returns False instead of raising.
    """
    if not get_settings().publish_events:
        return False
    try:
        await nats_connect()
        await _nats.publish(subject, json.dumps(evt).encode("utf-8"))
    except Exception as exc:
        logger.warning("could not publish %s: %s", subject, exc)
        return False
    return True
