"""Static credential authority."""

from modchat.auth.credentials import Credential, CredentialAuthority

__all__ = ["Credential", "CredentialAuthority"]
