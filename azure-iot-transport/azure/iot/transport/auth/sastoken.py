# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------
"""This module contains tools for working with Shared Access Signature (SAS) Tokens

A SAS token has the form::

    SharedAccessSignature sr={resource}&sig={signature}&se={expiry}[&skn={key name}]

where the resource and signature are url-encoded, and the expiry is in seconds since the epoch.
"""

import time
import urllib.parse

_PREFIX = "SharedAccessSignature "
_REQUIRED_FIELDS = ("sr", "sig", "se")
_OPTIONAL_FIELDS = ("skn",)


class SasTokenError(Exception):
    """Error in SasToken"""

    pass


class RenewableSasToken(object):
    """SAS token signed locally, which can be re-signed with a new expiry by ``refresh()``

    :ivar int ttl: Seconds each signature is valid for
    """

    def __init__(self, uri, signing_mechanism, key_name=None, ttl=3600):
        """
        :param str uri: URI of the resource to be accessed
        :param signing_mechanism: Produces the signature
        :type signing_mechanism: :class:`azure.iot.transport.auth.signing_mechanism.SigningMechanism`
        :param str key_name: Shared access policy name, for policy tokens only
        :param int ttl: Seconds each signature is valid for

        :raises: SasTokenError if the signing mechanism fails
        """
        self._uri = uri
        self._signing_mechanism = signing_mechanism
        self._key_name = key_name
        self.ttl = ttl
        self._expiry_time = None
        self._token = None
        self.refresh()

    def __str__(self):
        return self._token

    @property
    def expiry_time(self):
        """Seconds since the epoch at which the token expires"""
        return self._expiry_time

    def is_expired(self):
        return time.time() >= self._expiry_time

    def refresh(self):
        """Sign the token again, expiring ttl seconds from now"""
        expiry = int(time.time() + self.ttl)
        resource = urllib.parse.quote(self._uri, safe="")
        try:
            signature = self._signing_mechanism.sign("{}\n{}".format(resource, expiry))
        except Exception as e:
            raise SasTokenError("Unable to build SasToken from given values") from e
        fields = [("sr", resource), ("sig", urllib.parse.quote(signature, safe="")), ("se", expiry)]
        if self._key_name:
            fields.append(("skn", self._key_name))
        self._expiry_time = expiry
        self._token = _PREFIX + "&".join("{}={}".format(k, v) for k, v in fields)


class NonRenewableSasToken(object):
    """SAS token supplied ready-made.  Once expired it must be replaced.

    :raises: SasTokenError if the string is not a valid SAS token
    """

    def __init__(self, sastoken_string):
        self._token = sastoken_string
        self._fields = _parse(sastoken_string)

    def __str__(self):
        return self._token

    @property
    def expiry_time(self):
        """Seconds since the epoch at which the token expires"""
        return int(self._fields["se"])

    @property
    def resource_uri(self):
        """The decoded URI the token grants access to"""
        return urllib.parse.unquote(self._fields["sr"])

    def is_expired(self):
        return time.time() >= self.expiry_time


def _parse(sastoken_string):
    if not isinstance(sastoken_string, str):
        raise SasTokenError("Invalid SasToken string: Not a string")
    if not sastoken_string.startswith(_PREFIX):
        raise SasTokenError("Invalid SasToken string: Not a SasToken")
    fields = {}
    for pair in sastoken_string[len(_PREFIX) :].split("&"):
        key, sep, value = pair.partition("=")
        if not sep:
            raise SasTokenError("Invalid SasToken string: Incorrectly formatted")
        fields[key.strip()] = value.strip()
    if any(key not in fields for key in _REQUIRED_FIELDS):
        raise SasTokenError("Invalid SasToken string: Not all required fields present")
    if any(key not in _REQUIRED_FIELDS + _OPTIONAL_FIELDS for key in fields):
        raise SasTokenError("Invalid SasToken string: Unexpected fields present")
    if not fields["se"].isdigit():
        raise SasTokenError("Invalid SasToken string: Expiry is not a number")
    return fields
