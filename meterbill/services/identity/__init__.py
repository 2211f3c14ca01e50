"""Identity provider package."""

from meterbill.services.identity.interface import IdentityProviderInterface
from meterbill.services.identity.google_oauth import GoogleIdentityProvider

__all__ = [
    "GoogleIdentityProvider",
    "IdentityProviderInterface",
]
