"""Azure IoT Transport Models

This package provides the data types exchanged between callers and the transport core.
"""

from .message import OutboundMessage, MessageKind, DeliveryState  # noqa: F401
from .notification import InboundNotification, NotificationKind  # noqa: F401
from .proxy_options import ProxyOptions  # noqa: F401
