""" Azure IoT Transport Library

This library provides the connection, retry and delivery core used by Azure IoT clients to
communicate with IoTHub over MQTT, HTTPS and AMQP.
"""

from .device_client import DeviceClient  # noqa: F401
from .config import ClientConfig  # noqa: F401
from .connection import ConnectionStateMachine, ConnectionState  # noqa: F401
from .correlation import CorrelationRegistry  # noqa: F401
from .delivery import DeliveryTracker  # noqa: F401
from .retry_policy import RetryPolicy, RetryDecision, ErrorKind  # noqa: F401
from .events import ClientEvent  # noqa: F401
from .exceptions import (  # noqa: F401
    ClientError,
    ConfigurationError,
    DuplicateCorrelationIdError,
    OperationTimeout,
    OperationCancelled,
    TransportError,
    ConnectionFailedError,
    ConnectionDroppedError,
    NoConnectionError,
    ServiceError,
    UnauthorizedError,
)
from .models import (  # noqa: F401
    OutboundMessage,
    MessageKind,
    DeliveryState,
    InboundNotification,
    NotificationKind,
    ProxyOptions,
)
from . import models  # noqa: F401

# FileUploadNotificationReceiver requires the "amqp" extra and is imported from
# azure.iot.transport.file_upload_notification_receiver directly
