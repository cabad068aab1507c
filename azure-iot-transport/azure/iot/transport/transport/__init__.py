"""Azure IoT Transport Adapters

This package provides the HTTPS, MQTT and AMQP transports a connection is established over.

INTERNAL USAGE ONLY
"""

from .abstract_transport import AbstractTransport
from .http_transport import HTTPTransport
from .mqtt_transport import MQTTTransport

# AMQPTransport requires the "amqp" extra and is imported from .amqp_transport directly

__all__ = ["AbstractTransport", "HTTPTransport", "MQTTTransport"]
