"""Foreground activation signal over MQTT.

Background execution units publish a request to bring the primary UI to the
front after they have queued their output. The interactive session subscribes to
the same topic and drains the pending-output queue when the request arrives.
Publishing is best-effort: failures are logged and never raised.
"""

from __future__ import annotations

import json
import logging
import ssl
import threading
from collections.abc import Callable
from typing import Protocol

import paho.mqtt.client as mqtt

from sanna.datetime_utils import now_ms

from .config import MqttConfig


class ForegroundActivator(Protocol):
    async def bring_to_foreground(self, reason: str) -> None: ...


class NullForegroundActivator:
    """Used when no UI transport is configured."""

    def __init__(self, logger: logging.Logger | None = None) -> None:
        self._logger = logger or logging.getLogger(__name__)

    async def bring_to_foreground(self, reason: str) -> None:
        self._logger.debug("[foreground] No transport configured; skipping activation (%s)", reason)


class MqttForegroundSignal:
    def __init__(self, config: MqttConfig, logger: logging.Logger | None = None) -> None:
        self.config = config
        self._logger = logger or logging.getLogger(__name__)
        self._client: mqtt.Client | None = None
        self._lock = threading.Lock()

    @property
    def topic(self) -> str:
        return f"{self.config.topic_base}/ui/foreground"

    def connect(self) -> None:
        if not self.config.host:
            self._logger.debug("[mqtt] MQTT host not configured; foreground signal disabled")
            return
        with self._lock:
            if self._client is not None:
                return
            client = mqtt.Client(
                callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
                client_id=f"sanna-{self.config.topic_base.replace('/', '-')}-{now_ms()}",
                clean_session=True,
            )
            if self.config.username:
                client.username_pw_set(self.config.username, self.config.password or "")
            if self.config.tls_enabled:
                tls_kwargs: dict[str, object] = {"tls_version": ssl.PROTOCOL_TLS_CLIENT}
                if self.config.ca_cert:
                    tls_kwargs["ca_certs"] = self.config.ca_cert
                if self.config.cert:
                    tls_kwargs["certfile"] = self.config.cert
                if self.config.key:
                    tls_kwargs["keyfile"] = self.config.key
                client.tls_set(**tls_kwargs)
            try:
                client.connect(self.config.host, self.config.port, keepalive=30)
            except Exception as exc:
                self._logger.warning("[mqtt] Failed to connect to MQTT: %s", exc)
                return
            client.loop_start()
            self._client = client

    def disconnect(self) -> None:
        with self._lock:
            client = self._client
            self._client = None
        if client:
            client.loop_stop()
            client.disconnect()

    def is_connected(self) -> bool:
        client = self._client
        try:
            return bool(client and client.is_connected())
        except Exception:
            return False

    async def bring_to_foreground(self, reason: str) -> None:
        self.connect()
        client = self._client
        if not client:
            self._logger.debug("[foreground] MQTT unavailable; activation skipped (%s)", reason)
            return
        payload = json.dumps({"reason": reason, "timestamp": now_ms()})
        try:
            client.publish(self.topic, payload=payload, qos=1, retain=False)
        except Exception as exc:
            self._logger.warning("[foreground] Failed to publish activation: %s", exc)
            return
        self._logger.info("[foreground] Requested foreground (%s)", reason)

    def on_foreground(self, callback: Callable[[str], None]) -> None:
        """Invoke ``callback(reason)`` whenever an activation request arrives."""
        client = self._client
        if not client:
            raise RuntimeError("MQTT client is not connected")

        def _callback(_client, _userdata, message):  # type: ignore[no-untyped-def]
            try:
                payload = json.loads(message.payload.decode("utf-8", errors="ignore") or "{}")
                reason = str(payload.get("reason") or "") if isinstance(payload, dict) else ""
                callback(reason)
            except Exception as exc:
                self._logger.error("[mqtt] Foreground callback failed: %s", exc, exc_info=True)

        result, _mid = client.subscribe(self.topic, qos=1)
        if result != mqtt.MQTT_ERR_SUCCESS:
            self._logger.warning("[mqtt] Failed to subscribe to topic: %s (rc=%s)", self.topic, result)
        client.message_callback_add(self.topic, _callback)
