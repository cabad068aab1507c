"""Azure IoT Transport Authentication

This package provides signing mechanisms, SAS tokens and the authentication providers that
turn a caller-supplied credential into an authorization value for a transport.
"""

from .signing_mechanism import SymmetricKeySigningMechanism  # noqa: F401
from .sastoken import (  # noqa: F401
    RenewableSasToken,
    NonRenewableSasToken,
    SasTokenError,
)
from .authentication_provider import (  # noqa: F401
    AuthenticationProvider,
    SasTokenAuthenticationProvider,
    SasCredentialAuthenticationProvider,
    TokenCredentialAuthenticationProvider,
    SasTokenCredential,
)
