# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------
"""Mechanisms which produce the signature embedded in a SAS token"""

import abc
import base64
import binascii
import hashlib
import hmac


def _to_bytes(value):
    return value.encode("utf-8") if isinstance(value, str) else value


class SigningMechanism(abc.ABC):
    @abc.abstractmethod
    def sign(self, data_str):
        """Return the base64 signature of data_str"""


class SymmetricKeySigningMechanism(SigningMechanism):
    """Signs with HMAC-SHA256 keyed by a device or shared access policy key"""

    def __init__(self, key):
        """
        :param key: The base64 encoded key
        :type key: str or bytes

        :raises: ValueError if the key is not valid base64
        """
        try:
            self._signing_key = base64.b64decode(_to_bytes(key), validate=True)
        except (binascii.Error, TypeError) as e:
            raise ValueError("Invalid Symmetric Key") from e

    def sign(self, data_str):
        """
        :param data_str: The string to sign, usually ``{quoted resource uri}\\n{expiry}``
        :type data_str: str or bytes

        :returns: The base64 encoded HMAC-SHA256 digest
        :rtype: str
        """
        try:
            digest = hmac.new(self._signing_key, _to_bytes(data_str), hashlib.sha256).digest()
        except TypeError as e:
            raise ValueError("Unable to sign string using the provided symmetric key") from e
        return base64.b64encode(digest).decode("utf-8")
