# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------
"""This module defines constants for use across the azure-iot-transport package
"""

VERSION = "1.0.0b1"
USER_AGENT = "azure-iot-transport-py"
IOTHUB_API_VERSION = "2020-09-30"

# Ports
MQTT_PORT = 8883
WEBSOCKETS_PORT = 443

# Keep alive is the maximum period in seconds between communications with the broker
DEFAULT_KEEPALIVE = 60
# Hub's load balancer drops idle connections after 29 minutes
MAX_KEEP_ALIVE_SECS = 1740

# Delivery and correlation timing (seconds)
DEFAULT_ACK_TIMEOUT = 60
DEFAULT_OPERATION_TIMEOUT = 240
DEFAULT_RECEIVE_POLL_INTERVAL = 1
# IoT Hub asks HTTPS devices to poll for cloud to device messages at most every 25 minutes
DEFAULT_HTTP_POLL_INTERVAL = 1500
DEFAULT_SWEEP_INTERVAL = 0.05
DEFAULT_NOTIFICATION_RECEIVE_TIMEOUT = 60

# Retry policy defaults (seconds)
DEFAULT_RETRY_BASE_INTERVAL = 1
DEFAULT_RETRY_MAX_INTERVAL = 60
DEFAULT_RETRY_MAX_DURATION = 240
DEFAULT_RETRY_JITTER = 0.2

# Synchronous convenience wrappers block for at most this many seconds by default
DEFAULT_SYNC_TIMEOUT = 300

# SAS tokens generated from a shared access key live for one hour
DEFAULT_SASTOKEN_TTL = 3600

TELEMETRY_MESSAGE_SIZE_LIMIT = 262144

# Seconds to wait for the service to accept a connection
DEFAULT_CONNECT_TIMEOUT = 30
# Seconds before an HTTPS request is abandoned
HTTP_TIMEOUT = 10
