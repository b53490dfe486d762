"""MQTT transport for the diffuser.

Owns the paho client and the subscription list. Inbound messages are
handed to the manager (which queues them onto its own loop); outbound
messages are drained from a queue.Queue by a publisher thread, one at a
time, with a short pause between publishes so the firmware keeps up.
"""

import logging
import queue
import threading
import time
from typing import Callable, Optional

import paho.mqtt.client as mqtt

from codec import Msg, Topics, first_n
from config import MqttConfig

logger = logging.getLogger(__name__)


class MqttAgent:
    """Connects to the broker, subscribes, and pumps messages both ways."""

    KEEPALIVE = 61              # Seconds
    PUBLISH_TIMEOUT = 10.0      # Seconds to wait for a publish to leave
    PUBLISH_PAUSE = 0.5         # Firmware drops commands sent back-to-back
    RECONNECT_MIN_DELAY = 15
    RECONNECT_MAX_DELAY = 5 * 60

    def __init__(self, config: MqttConfig, topics: Topics,
                 outbound: queue.Queue, on_message: Callable[[Msg], None]):
        self.config = config
        self.topics = topics
        self.outbound = outbound
        self._on_inbound = on_message
        self.connected = threading.Event()
        self._stop = threading.Event()
        self._publisher: Optional[threading.Thread] = None

        self._client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2,
                                   client_id=config.client_id)
        if config.user:
            self._client.username_pw_set(config.user, config.password or None)
        self._client.reconnect_delay_set(self.RECONNECT_MIN_DELAY, self.RECONNECT_MAX_DELAY)
        self._client.on_connect = self._on_connect
        self._client.on_disconnect = self._on_disconnect
        self._client.on_message = self._on_message

    def start(self) -> None:
        host, port = self.config.broker_host, self.config.broker_port
        logger.info("Connecting to mqtt %s:%d as %s", host, port, self.config.client_id)
        # connect_async + loop_start: paho keeps retrying if the broker is down
        self._client.connect_async(host, port, keepalive=self.KEEPALIVE)
        self._client.loop_start()

        self._stop.clear()
        self._publisher = threading.Thread(
            target=self._publish_worker, daemon=True, name="mqtt-publisher")
        self._publisher.start()

    def stop(self) -> None:
        self._stop.set()
        if self._publisher:
            self._publisher.join(timeout=2.0)
            self._publisher = None
        self._client.disconnect()
        self._client.loop_stop()

    # ---- paho callbacks (network thread) ----

    def _on_connect(self, client, userdata, flags, reason_code, properties):
        if reason_code.is_failure:
            logger.warning("mqtt connect refused: %s", reason_code)
            return
        logger.info("mqtt connected to %s", self.config.broker_url)
        for topic in self.topics.subscriptions():
            client.subscribe(topic, qos=0)
            logger.debug("subscribed to %s", topic)
        self.connected.set()

    def _on_disconnect(self, client, userdata, flags, reason_code, properties):
        self.connected.clear()
        logger.warning("mqtt lost connection: %s", reason_code)

    def _on_message(self, client, userdata, message):
        msg = Msg(message.topic, message.payload.decode("utf-8", errors="replace"))
        logger.debug("received %s %r...", msg.topic, first_n(msg.payload, 10))
        self._on_inbound(msg)

    # ---- Publisher ----

    def _publish_worker(self) -> None:
        while not self._stop.is_set():
            try:
                msg = self.outbound.get(timeout=0.5)
            except queue.Empty:
                continue
            self.publish(msg)

    def publish(self, msg: Msg) -> bool:
        """Publish once (QoS 0) and wait for it to leave. No retries."""
        try:
            info = self._client.publish(msg.topic, msg.payload, qos=0, retain=False)
            info.wait_for_publish(timeout=self.PUBLISH_TIMEOUT)
        except (RuntimeError, ValueError) as e:
            # paho raises RuntimeError from wait_for_publish while disconnected
            logger.error("timed out sending %s %r: %s", msg.topic, msg.payload, e)
            return False
        if not info.is_published():
            logger.error("timed out sending %s %r", msg.topic, msg.payload)
            return False
        logger.debug("sent %s %r", msg.topic, msg.payload)
        time.sleep(self.PUBLISH_PAUSE)
        return True
