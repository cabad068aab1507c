# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------
"""Translation of service status codes into ServiceError subclasses"""

from .. import exceptions

_status_code_to_error = {
    400: exceptions.ArgumentError,
    401: exceptions.UnauthorizedError,
    403: exceptions.ForbiddenError,
    404: exceptions.NotFoundError,
    408: exceptions.DeviceTimeoutError,
    412: exceptions.PreconditionFailedError,
    413: exceptions.MessageTooLargeError,
    429: exceptions.ThrottlingError,
    500: exceptions.InternalServerError,
    502: exceptions.BadDeviceResponseError,
    503: exceptions.ServiceUnavailableError,
    504: exceptions.GatewayTimeoutError,
}


def translate_error(sc, reason, retry_after=None):
    """
    Return the ServiceError describing a failed status code.

    Status codes without a specific error class become a plain ServiceError.

    :param int sc: The status code reported by the service
    :param str reason: The reason reported by the service
    :param retry_after: Value of a Retry-After header, in seconds (optional)
    """
    message = "Error: {}".format(reason)
    error_cls = _status_code_to_error.get(sc, exceptions.ServiceError)
    return error_cls(
        message, status_code=sc, reason=reason, retry_after=_parse_retry_after(retry_after)
    )


def _parse_retry_after(value):
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        # HTTP-date values are not honored
        return None
