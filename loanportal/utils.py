from __future__ import annotations

from functools import wraps
from typing import Any, Callable, Dict, List

from .changes import discard_changes, flush_changes
from .db import SessionLocal

Handler = Callable[..., Any]
EventHandler = Callable[[Any, dict], None]  # (db, payload) -> None
MqttHandler = Callable[[Any, dict], None]  # (db, payload) -> None

EVENT_REGISTRY: Dict[str, List[EventHandler]] = {}
MQTT_REGISTRY: Dict[str, MqttHandler] = {}


def with_db(fn: Handler) -> Handler:
    """Open/close a DB session automatically. Good for MQTT handlers and background tasks."""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        with SessionLocal() as db:
            return fn(db, *args, **kwargs)
    return wrapper


def atomic(fn: Handler) -> Handler:
    """Run a use case as one transaction: commit on success, roll back everything on any failure."""
    @wraps(fn)
    def wrapper(db, *args, **kwargs):
        try:
            result = fn(db, *args, **kwargs)
            db.commit()
        except Exception:
            db.rollback()
            discard_changes(db)
            raise
        flush_changes(db)
        return result
    return wrapper


def on_event(name: str) -> Callable[[EventHandler], EventHandler]:
    """Subscribe a handler to a domain event (e.g. identity.created)."""
    def deco(fn: EventHandler) -> EventHandler:
        EVENT_REGISTRY.setdefault(name, []).append(fn)
        return fn
    return deco


def dispatch_event(db, name: str, payload: dict) -> None:
    """Run every handler for the event inside the caller's transaction. Failures propagate."""
    for handler in EVENT_REGISTRY.get(name, []):
        handler(db, payload)


def mqtt_topic(topic: str) -> Callable[[MqttHandler], MqttHandler]:
    """Register a function as the handler for an MQTT topic."""
    def deco(fn: MqttHandler) -> MqttHandler:
        MQTT_REGISTRY[topic] = fn
        return fn
    return deco


def dispatch_mqtt(db, topic: str, payload: dict) -> bool:
    handler = MQTT_REGISTRY.get(topic)
    if not handler:
        return False
    handler(db, payload)
    return True
