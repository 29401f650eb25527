"""MQTT subscription feeding alarm messages to the pipeline."""

from __future__ import annotations

import logging
import ssl
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from functools import lru_cache
from threading import Lock
from typing import Any, Callable, Dict, Optional

import paho.mqtt.client as mqtt

from services.alarm_service import build_default_service
from services.errors import AlarmPipelineError
from settings import get_settings

logger = logging.getLogger(__name__)

MessageHandler = Callable[[str, str], Any]


@dataclass(frozen=True)
class MqttConfig:
    host: str = "localhost"
    port: int = 1883
    topic: str = "topic/+/alarm"
    username: Optional[str] = None
    password: Optional[str] = None
    use_tls: bool = False
    tls_insecure: bool = False
    client_id_prefix: str = "mab-alarm-monitor"
    keepalive: int = 60
    reconnect_delay: int = 5
    qos: int = 1


def _build_paho_client(client_id: str) -> mqtt.Client:
    return mqtt.Client(
        callback_api_version=mqtt.CallbackAPIVersion.VERSION2,
        client_id=client_id,
        protocol=mqtt.MQTTv311,
        clean_session=True,
    )


class AlarmTopicListener:
    """Process-wide broker connection with an explicit lifecycle.

    ``ensure_connected`` creates the client on first use and is safe to call
    repeatedly; paho reconnects on its own after a drop. Each message is handed
    to a worker thread so the network loop never waits on the pipeline.
    """

    def __init__(
        self,
        config: MqttConfig,
        handler: MessageHandler,
        workers: int = 4,
        client_factory: Callable[[str], Any] = _build_paho_client,
    ) -> None:
        self.config = config
        self.handler = handler
        self.executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="alarm")
        self._client_factory = client_factory
        self._client: Any = None
        self._connected = False
        self._lock = Lock()

    @property
    def is_connected(self) -> bool:
        return self._connected

    def ensure_connected(self) -> bool:
        with self._lock:
            if self._client is None:
                self._client = self._create_client()
                logger.info("Connecting to MQTT broker %s:%d", self.config.host, self.config.port)
                try:
                    self._client.connect_async(
                        self.config.host, self.config.port, keepalive=self.config.keepalive
                    )
                except (OSError, ValueError) as exc:
                    logger.error("Initial MQTT connect failed: %s", exc)
                self._client.loop_start()
            elif not self._connected:
                logger.warning("MQTT connection lost, waiting for reconnect")
        return self._connected

    def health(self) -> Dict[str, Any]:
        return {
            "status": "running" if self._client is not None else "stopped",
            "connected": self._connected,
            "subscribed": self.config.topic,
        }

    def stop(self) -> None:
        with self._lock:
            client, self._client = self._client, None
        if client is not None:
            client.loop_stop()
            client.disconnect()
        self._connected = False
        self.executor.shutdown(wait=False, cancel_futures=True)

    def _create_client(self) -> Any:
        client_id = f"{self.config.client_id_prefix}-{int(time.time() * 1000)}"
        client = self._client_factory(client_id)
        if self.config.username:
            client.username_pw_set(self.config.username, self.config.password)
        if self.config.use_tls:
            if self.config.tls_insecure:
                client.tls_set(cert_reqs=ssl.CERT_NONE)
                client.tls_insecure_set(True)
            else:
                client.tls_set()
        client.reconnect_delay_set(
            min_delay=self.config.reconnect_delay, max_delay=self.config.reconnect_delay
        )
        client.on_connect = self._on_connect
        client.on_disconnect = self._on_disconnect
        client.on_message = self._on_message
        return client

    def _on_connect(self, client, userdata, flags, reason_code, properties=None) -> None:
        if reason_code.is_failure:
            self._connected = False
            logger.error("MQTT connection refused: %s", reason_code)
            return
        self._connected = True
        client.subscribe(self.config.topic, qos=self.config.qos)
        logger.info("MQTT connected, subscribed", extra={"topic": self.config.topic})

    def _on_disconnect(self, client, userdata, flags, reason_code, properties=None) -> None:
        self._connected = False
        logger.warning("MQTT connection closed: %s", reason_code)

    def _on_message(self, client, userdata, message) -> None:
        payload = message.payload.decode("utf-8", errors="replace")
        self.executor.submit(self._handle, message.topic, payload)

    def _handle(self, topic: str, payload: str) -> None:
        try:
            self.handler(topic, payload)
        except AlarmPipelineError:
            # Logged and counted by the service; the message is dropped.
            return
        except Exception:  # noqa: BLE001 - one bad message must not stop the listener
            logger.exception("Unexpected error handling alarm message", extra={"topic": topic})


@lru_cache
def build_default_listener() -> AlarmTopicListener:
    settings = get_settings()
    config = MqttConfig(
        host=settings.mqtt_host,
        port=settings.mqtt_port,
        topic=settings.mqtt_alarm_topic,
        username=settings.mqtt_username,
        password=settings.mqtt_password,
        use_tls=settings.mqtt_use_tls,
        tls_insecure=settings.mqtt_tls_insecure,
        client_id_prefix=settings.mqtt_client_id_prefix,
        keepalive=settings.mqtt_keepalive,
        reconnect_delay=settings.mqtt_reconnect_delay,
    )
    service = build_default_service()
    return AlarmTopicListener(
        config=config, handler=service.handle_message, workers=settings.alarm_workers
    )
