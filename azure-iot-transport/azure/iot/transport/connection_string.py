# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------
"""This module contains tools for working with Connection Strings"""

from collections.abc import Mapping

__all__ = ["ConnectionString"]

HOST_NAME = "HostName"
SHARED_ACCESS_KEY_NAME = "SharedAccessKeyName"
SHARED_ACCESS_KEY = "SharedAccessKey"
SHARED_ACCESS_SIGNATURE = "SharedAccessSignature"
DEVICE_ID = "DeviceId"
MODULE_ID = "ModuleId"
GATEWAY_HOST_NAME = "GatewayHostName"

_valid_keys = frozenset(
    [
        HOST_NAME,
        SHARED_ACCESS_KEY_NAME,
        SHARED_ACCESS_KEY,
        SHARED_ACCESS_SIGNATURE,
        DEVICE_ID,
        MODULE_ID,
        GATEWAY_HOST_NAME,
    ]
)


class ConnectionString(Mapping):
    """Read-only mapping of the ``Key=Value`` pairs of a semicolon separated connection string

    A connection string identifies either a device (or module), with a ``DeviceId``, or a shared
    access policy, with a ``SharedAccessKeyName``.  Either way it carries a ``HostName`` and
    exactly one of ``SharedAccessKey`` or ``SharedAccessSignature``.
    """

    def __init__(self, connection_string):
        """
        :param str connection_string: Connection string copied from the Azure portal or CLI
        :raises: TypeError if connection_string is not a str
        :raises: ValueError if connection_string cannot be parsed or is missing details
        """
        self._values = _parse(connection_string)
        self._text = connection_string

    def __getitem__(self, key):
        return self._values[key]

    def __iter__(self):
        return iter(self._values)

    def __len__(self):
        return len(self._values)

    def __repr__(self):
        return self._text

    @property
    def is_service_connection_string(self):
        """True if this string identifies a shared access policy rather than a device"""
        return SHARED_ACCESS_KEY_NAME in self._values


def _parse(connection_string):
    if not isinstance(connection_string, str):
        raise TypeError("Connection String must be of type str")
    values = {}
    for pair in connection_string.split(";"):
        key, sep, value = pair.partition("=")
        if not sep:
            raise ValueError("Invalid Connection String - Unable to parse")
        if key in values:
            raise ValueError("Invalid Connection String - Duplicate key {}".format(key))
        if key not in _valid_keys:
            raise ValueError("Invalid Connection String - Invalid Key")
        values[key] = value
    _validate(values)
    return values


def _validate(values):
    credentials = [k for k in (SHARED_ACCESS_KEY, SHARED_ACCESS_SIGNATURE) if values.get(k)]
    if len(credentials) > 1:
        raise ValueError("Invalid Connection String - Mixed authentication scheme")
    if not credentials:
        raise ValueError("Invalid Connection String - No authentication scheme")
    if not values.get(HOST_NAME):
        raise ValueError("Invalid Connection String - Missing connection details")
    if values.get(SHARED_ACCESS_KEY_NAME):
        if values.get(DEVICE_ID):
            raise ValueError("Invalid Connection String - Policy strings cannot name a device")
    elif not values.get(DEVICE_ID):
        raise ValueError("Invalid Connection String - Missing connection details")
