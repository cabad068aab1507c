# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------
"""Define the exceptions shared across the azure-iot-transport package"""


class ClientError(Exception):
    """Base class for all errors raised by this package"""

    pass


class ConfigurationError(ClientError):
    """Credentials or arguments are missing or malformed. Never retried."""

    pass


class DuplicateCorrelationIdError(ClientError):
    """A correlation id is already pending"""

    pass


class OperationTimeout(ClientError):
    """A local deadline was exceeded before the operation completed"""

    pass


class OperationCancelled(ClientError):
    """The operation was cancelled by the caller or by shutdown"""

    pass


# Transport Exceptions
class TransportError(ClientError):
    """Failure in the transport while connecting, sending or receiving"""

    pass


class ConnectionFailedError(TransportError):
    """
    Connection failed to be established
    """

    pass


class ConnectionDroppedError(TransportError):
    """
    Previously established connection was dropped
    """

    pass


class NoConnectionError(TransportError):
    """
    There is no connection on which to perform the operation
    """

    pass


class ProtocolClientError(TransportError):
    """
    Error returned from protocol client library
    """

    pass


class ProtocolProxyError(TransportError):
    """
    All proxy-related errors.
    """

    pass


class TlsExchangeAuthError(TransportError):
    """
    Error returned when transport layer exchanges
    result in a SSLCertVerification error.
    """

    pass


# Service Exceptions
class ServiceError(ClientError):
    """A failure reported by the remote service

    :ivar int status_code: The status code reported by the service (if any)
    :ivar str reason: The reason reported by the service (if any)
    :ivar float retry_after: Seconds the service asked the client to wait before retrying
    """

    def __init__(self, message=None, status_code=None, reason=None, retry_after=None):
        super().__init__(message if message is not None else reason)
        self.status_code = status_code
        self.reason = reason
        self.retry_after = retry_after


class ArgumentError(ServiceError):
    """
    Service returned 400
    """

    pass


class UnauthorizedError(ServiceError):
    """
    Service returned 401, or authorization was otherwise rejected
    """

    pass


class ForbiddenError(ServiceError):
    """
    Service returned 403
    """

    pass


class NotFoundError(ServiceError):
    """
    Service returned 404
    """

    pass


class DeviceTimeoutError(ServiceError):
    """
    Service returned 408
    """

    pass


class PreconditionFailedError(ServiceError):
    """
    Service returned 412
    """

    pass


class MessageTooLargeError(ServiceError):
    """
    Service returned 413
    """

    pass


class ThrottlingError(ServiceError):
    """
    Service returned 429
    """

    pass


class InternalServerError(ServiceError):
    """
    Service returned 500
    """

    pass


class BadDeviceResponseError(ServiceError):
    """
    Service returned 502
    """

    pass


class ServiceUnavailableError(ServiceError):
    """
    Service returned 503
    """

    pass


class GatewayTimeoutError(ServiceError):
    """
    Service returned 504
    """

    pass
