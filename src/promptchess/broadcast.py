"""
Broadcast collaborator: fire-and-forget match updates for live observers.

Publishing is best-effort. Callers treat a failed publish as a log line, never as a match failure.
"""
from __future__ import annotations

import logging
import queue
import threading
from typing import Dict, List

log = logging.getLogger("broadcast")

MATCH_UPDATED = "match_updated"
ERROR = "error"
ERROR_NOTICE = "Match encountered an error"


def match_updated_payload(match, latest_move=None) -> dict:
    return {
        "type": MATCH_UPDATED,
        "match": match.to_dict(),
        "latest_move": latest_move.to_dict() if latest_move is not None else None,
    }


def error_payload(match) -> dict:
    # internal exception detail stays in the stored match, not on the live channel
    snapshot = match.to_dict()
    snapshot["error_message"] = ERROR_NOTICE
    return {"type": ERROR, "match": snapshot, "message": ERROR_NOTICE}


class Broadcaster:
    def publish(self, match_id: str, payload: dict) -> None:
        raise NotImplementedError


class LoggingBroadcaster(Broadcaster):
    def publish(self, match_id: str, payload: dict) -> None:
        move = payload.get("latest_move") or {}
        log.info("match=%s type=%s ply=%s move=%s", match_id, payload.get("type"),
                 move.get("move_number"), move.get("move_notation"))


class QueueBroadcaster(Broadcaster):
    """Fan-out to per-subscriber queues keyed by match id."""

    def __init__(self, maxsize: int = 1000):
        self.maxsize = maxsize
        self._lock = threading.Lock()
        self._subscribers: Dict[str, List[queue.Queue]] = {}

    def subscribe(self, match_id: str) -> queue.Queue:
        q: queue.Queue = queue.Queue(maxsize=self.maxsize)
        with self._lock:
            self._subscribers.setdefault(match_id, []).append(q)
        return q

    def unsubscribe(self, match_id: str, q: queue.Queue) -> None:
        with self._lock:
            subs = self._subscribers.get(match_id, [])
            if q in subs:
                subs.remove(q)
            if not subs:
                self._subscribers.pop(match_id, None)

    def publish(self, match_id: str, payload: dict) -> None:
        with self._lock:
            subs = list(self._subscribers.get(match_id, []))
        for q in subs:
            try:
                q.put_nowait(payload)
            except queue.Full:
                log.warning("Dropping update for slow subscriber on match %s", match_id)
