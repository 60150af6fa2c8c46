from __future__ import annotations

import os

# ---------- ENV / CONFIG ----------
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./data/loanportal.db")

MQTT_ENABLED = os.getenv("MQTT_ENABLED", "1") == "1"
MQTT_HOST = os.getenv("MQTT_HOST", "mqtt")
MQTT_PORT = int(os.getenv("MQTT_PORT", "1883"))
MQTT_TOPIC_PREFIX = os.getenv("MQTT_TOPIC_PREFIX", "loanportal")
MQTT_CONNECT_RETRIES = int(os.getenv("MQTT_CONNECT_RETRIES", "10"))

# 0 disables the background sweeper
OVERDUE_SWEEP_SECONDS = float(os.getenv("OVERDUE_SWEEP_SECONDS", "300"))

SESSION_TTL_HOURS = int(os.getenv("SESSION_TTL_HOURS", "12"))
# bcrypt cost factor; tests lower it
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

RECENT_ACTIVITY_MAX = int(os.getenv("RECENT_ACTIVITY_MAX", "200"))
