# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License.txt in the project root for
# license information.
# --------------------------------------------------------------------------
"""This module provides authentication providers, which turn the single credential a caller
supplies into the authorization value presented to the service by each transport.
"""

import abc
import logging
import threading
import time
from .sastoken import RenewableSasToken, NonRenewableSasToken, SasTokenError
from .signing_mechanism import SymmetricKeySigningMechanism
from .. import constant

logger = logging.getLogger(__name__)

# Length of time, in seconds, before a token expires that we want to begin renewing it.
DEFAULT_TOKEN_RENEWAL_MARGIN = 120

IOTHUB_TOKEN_SCOPE = "https://iothubs.azure.net/.default"


class AuthenticationProvider(abc.ABC):
    """Super class for all providers of authorization values"""

    def __init__(self, hostname, device_id=None, module_id=None):
        self.hostname = hostname
        self.device_id = device_id
        self.module_id = module_id

    @property
    def resource_uri(self):
        """The URI of the resource an authorization value grants access to"""
        resource_uri = self.hostname
        if self.device_id:
            resource_uri += "/devices/" + self.device_id
            if self.module_id:
                resource_uri += "/modules/" + self.module_id
        return resource_uri

    @abc.abstractmethod
    def get_authorization(self):
        """Return the value to present in an Authorization header or as an MQTT password.

        :raises: :class:`SasTokenError` if the authorization value cannot be produced
        """
        pass

    @abc.abstractmethod
    def is_expired(self):
        """Return True if the credential can no longer produce a valid authorization value"""
        pass


class SasTokenAuthenticationProvider(AuthenticationProvider):
    """Provider that signs its own renewable SAS tokens with a shared access key"""

    def __init__(
        self,
        hostname,
        shared_access_key,
        device_id=None,
        module_id=None,
        shared_access_key_name=None,
        ttl=constant.DEFAULT_SASTOKEN_TTL,
    ):
        super().__init__(hostname=hostname, device_id=device_id, module_id=module_id)
        self.token_renewal_margin = DEFAULT_TOKEN_RENEWAL_MARGIN
        self._lock = threading.Lock()
        signing_mechanism = SymmetricKeySigningMechanism(shared_access_key)
        self._sastoken = RenewableSasToken(
            uri=self.resource_uri,
            signing_mechanism=signing_mechanism,
            key_name=shared_access_key_name,
            ttl=ttl,
        )

    def get_authorization(self):
        with self._lock:
            if time.time() >= self._sastoken.expiry_time - self.token_renewal_margin:
                logger.info(
                    "Renewing SAS token for (%s,%s) that expires %d seconds in the future",
                    self.device_id,
                    self.module_id,
                    self._sastoken.ttl,
                )
                self._sastoken.refresh()
            return str(self._sastoken)

    def is_expired(self):
        # Renewable tokens are refreshed on demand
        return False


class SasCredentialAuthenticationProvider(AuthenticationProvider):
    """Provider that presents a SAS token owned and renewed by the caller.

    The credential object must expose a ``signature`` attribute holding the current SAS token
    string, like ``azure.core.credentials.AzureSasCredential``. The signature is read on every
    call so that updates made by the caller are picked up on the next connect.
    """

    def __init__(self, hostname, sas_credential, device_id=None, module_id=None):
        super().__init__(hostname=hostname, device_id=device_id, module_id=module_id)
        self._sas_credential = sas_credential

    def _current_token(self):
        return NonRenewableSasToken(self._sas_credential.signature)

    def get_authorization(self):
        sastoken = self._current_token()
        if sastoken.is_expired():
            raise SasTokenError("SAS token supplied by the credential has expired")
        return str(sastoken)

    def is_expired(self):
        try:
            return self._current_token().is_expired()
        except SasTokenError:
            logger.debug("Unable to parse SAS token supplied by the credential", exc_info=True)
            return True


class TokenCredentialAuthenticationProvider(AuthenticationProvider):
    """Provider that presents bearer tokens acquired from a token credential.

    The credential object must expose ``get_token(*scopes)`` returning an object with
    ``token`` and ``expires_on`` attributes, like ``azure.core.credentials.TokenCredential``.
    Tokens are cached until they come within the renewal margin of expiry.
    """

    def __init__(self, hostname, token_credential, device_id=None, module_id=None):
        super().__init__(hostname=hostname, device_id=device_id, module_id=module_id)
        self.token_renewal_margin = DEFAULT_TOKEN_RENEWAL_MARGIN
        self._token_credential = token_credential
        self._access_token = None
        self._lock = threading.Lock()

    def get_authorization(self):
        with self._lock:
            if (
                self._access_token is None
                or time.time() >= self._access_token.expires_on - self.token_renewal_margin
            ):
                logger.debug("Acquiring new bearer token for %s", self.hostname)
                try:
                    self._access_token = self._token_credential.get_token(IOTHUB_TOKEN_SCOPE)
                except Exception as e:
                    raise SasTokenError("Unable to acquire token from credential") from e
            return "Bearer " + self._access_token.token

    def is_expired(self):
        # The credential issues new tokens on demand
        return False


class SasTokenCredential(object):
    """Holds a SAS token string on behalf of a caller that renews tokens itself.

    Mirrors the shape of ``azure.core.credentials.AzureSasCredential`` so either may be used.
    """

    def __init__(self, signature):
        self.signature = signature

    def update(self, signature):
        """Replace the held SAS token string. Takes effect on the next connect."""
        self.signature = signature
