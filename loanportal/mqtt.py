from __future__ import annotations

import json
import logging
import time
from typing import Callable, Optional

import paho.mqtt.client as mqtt

from . import config, policy
from .changes import ANY_TABLE, ChangeFeed
from .usecases import ledger
from .utils import with_db, mqtt_topic, dispatch_mqtt

logger = logging.getLogger(__name__)

PREFIX = config.MQTT_TOPIC_PREFIX
EVT_TOPIC = PREFIX + "/evt/{table}"
CMD_OVERDUE_SWEEP = f"{PREFIX}/cmd/overdue_sweep"

SUB_TOPICS = [
    CMD_OVERDUE_SWEEP,
]


class MqttBus:
    """Forwards committed changes to ``<prefix>/evt/<table>`` and serves ``<prefix>/cmd/*`` topics."""

    def __init__(self, enabled: Optional[bool] = None) -> None:
        self.enabled = config.MQTT_ENABLED if enabled is None else enabled
        self.connected = False
        self._unsubscribe: Optional[Callable[[], None]] = None
        self._client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._client.on_message = self._on_message

    def _on_connect(self, client, userdata, flags, reason_code, properties=None):
        if reason_code == 0:
            self.connected = True
            logger.info("[MQTT] connected to %s:%s", config.MQTT_HOST, config.MQTT_PORT)
            for t in SUB_TOPICS:
                client.subscribe(t, qos=1)
        else:
            logger.warning("[MQTT] connect failed rc=%s", reason_code)

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None):
        self.connected = False
        logger.info("[MQTT] disconnected rc=%s", reason_code)

    def _on_message(self, client, userdata, msg):
        raw = msg.payload.decode("utf-8", errors="replace")
        try:
            payload = json.loads(raw) if raw.strip() else {}
        except ValueError:
            payload = {"raw": raw}
        if not isinstance(payload, dict):
            payload = {"value": payload}

        try:
            _handle_mqtt_message(msg.topic, payload)
        except Exception:
            # paho swallows callback errors silently; make them visible
            logger.exception("[MQTT] handler failed for %s", msg.topic)

    def start(self) -> bool:
        if not self.enabled:
            logger.info("[MQTT] disabled")
            return False
        for i in range(config.MQTT_CONNECT_RETRIES):
            try:
                self._client.connect(config.MQTT_HOST, config.MQTT_PORT)
                self._client.loop_start()
                logger.info("[MQTT] loop started")
                return True
            except OSError as e:
                logger.warning("[MQTT] retry %d: %s", i + 1, e)
                time.sleep(2)
        logger.error("[MQTT] failed to start")
        return False

    def stop(self) -> None:
        if self._unsubscribe:
            self._unsubscribe()
            self._unsubscribe = None
        if not self.enabled:
            return
        self._client.loop_stop()
        self._client.disconnect()
        self.connected = False

    def publish(self, topic: str, payload: dict, qos: int = 1) -> bool:
        if not self.enabled or not self.connected:
            return False
        self._client.publish(topic, json.dumps(payload, default=str), qos=qos)
        return True

    def forward_change(self, change: dict) -> None:
        self.publish(EVT_TOPIC.format(table=change["table"]), change)

    def attach(self, feed: ChangeFeed) -> None:
        """Forward every change published on the feed."""
        if self._unsubscribe is None:
            self._unsubscribe = feed.subscribe(ANY_TABLE, self.forward_change)


@with_db
def _handle_mqtt_message(db, topic: str, payload: dict) -> bool:
    handled = dispatch_mqtt(db, topic, payload)
    if not handled:
        logger.debug("[MQTT] no handler for %s", topic)
    return handled


# ---------- Topic handlers ----------

@mqtt_topic(CMD_OVERDUE_SWEEP)
def handle_cmd_overdue_sweep(db, payload: dict):
    # a named actor is only credited when it may run the sweep through the API too
    performed_by = payload.get("performed_by")
    if performed_by and not policy.caller_for(db, performed_by).is_staff:
        logger.warning("[MQTT] overdue sweep actor %s is not staff, ignoring", performed_by)
        performed_by = None

    result = ledger.sweep_overdue(db, performed_by=performed_by)
    logger.info("[MQTT] overdue sweep via command: %s", result)
