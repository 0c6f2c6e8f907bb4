import json
import logging
from typing import Any, Dict

import paho.mqtt.client as mqtt

logger = logging.getLogger("mqtt_sink")


class MQTTEventSink:
    """
    Mirrors broadcast events to an MQTT broker.
    Topic Format: <topic_prefix>/<event>, JSON payload.
    """
    def __init__(self, broker: str, port: int, topic_prefix: str):
        self.broker = broker
        self.port = port
        self.topic_prefix = topic_prefix.rstrip("/")
        self.client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2)
        self.connected = False

    def connect(self):
        try:
            logger.info(f"Connecting to MQTT Broker {self.broker}:{self.port}...")
            self.client.connect(self.broker, self.port, 60)
            self.client.loop_start()
            self.connected = True
            logger.info("MQTT Connected")
        except Exception as e:
            logger.error(f"MQTT Connection Failed: {e}")

    def disconnect(self):
        if self.connected:
            self.client.loop_stop()
            self.client.disconnect()
            self.connected = False

    def topic_for(self, event: str) -> str:
        return f"{self.topic_prefix}/{event}"

    def __call__(self, event: str, payload: Dict[str, Any]) -> None:
        if not self.connected:
            return
        try:
            self.client.publish(self.topic_for(event), json.dumps(payload, default=str), qos=0, retain=False)
        except Exception as e:
            logger.error(f"MQTT Publish Failed: {e}")
