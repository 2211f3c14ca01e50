"""
Abstract Identity Provider Interface

The session manager only needs three things from an identity provider:
a token, the identity behind it, and a way to revoke it. Keeping it behind
an interface lets tests drive the session lifecycle without Google.
"""

from abc import ABC, abstractmethod

from meterbill.models.session import AccessToken, Identity


class IdentityProviderInterface(ABC):
    """Source of access tokens and identities."""

    @abstractmethod
    async def exchange_token(self, scopes: list[str]) -> AccessToken:
        """
        Obtain a fresh access token for the given scopes.

        Raises:
            Any provider error; the caller classifies it.
        """
        pass

    @abstractmethod
    async def fetch_identity(self, access_token: str) -> Identity:
        """Look up the account the token belongs to."""
        pass

    @abstractmethod
    async def revoke(self, access_token: str) -> None:
        """Revoke the token so it can no longer be used."""
        pass
