"""
Static credential table shared by the login endpoint and the socket handshake.

The table is read once from the ``credentials`` section of the app config:

    credentials:
      alice:
        role: regular
        password_sha256: "<hex digest>"

Secrets are stored as SHA-256 digests and compared in constant time. The
socket ``auth`` event carries no secret; it only re-verifies that the handle
exists and takes the role from this table.
"""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from modchat.datatypes.chat_datatypes import Role
from modchat.errors import CredentialConfigurationError
from modchat.util.logger import get_logger

logger = get_logger("credentials")


def hash_secret(secret: str) -> str:
    """Return the hex SHA-256 digest used in the credential table."""
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()


@dataclass(frozen=True, slots=True)
class Credential:
    """One entry of the credential table."""

    handle: str
    role: Role
    secret_digest: str


class CredentialAuthority:
    """Single authority answering "does this handle exist and with which role"."""

    def __init__(self, credentials: Mapping[str, Credential]) -> None:
        if not credentials:
            raise CredentialConfigurationError("Credential table is empty")
        self._credentials: Dict[str, Credential] = dict(credentials)

    @classmethod
    def from_config(cls, section: Optional[Mapping[str, Any]]) -> "CredentialAuthority":
        """Build the authority from the ``credentials`` config mapping.

        Raises:
            CredentialConfigurationError: the section is empty or an entry is malformed.
        """
        if not isinstance(section, Mapping) or not section:
            raise CredentialConfigurationError("No credentials configured")

        credentials: Dict[str, Credential] = {}
        for handle, entry in section.items():
            if not isinstance(entry, Mapping):
                raise CredentialConfigurationError(f"Credential entry for '{handle}' must be a mapping")
            role = Role.parse(entry.get("role"))
            if role is None:
                raise CredentialConfigurationError(f"Credential entry for '{handle}' has an unknown role")
            digest = str(entry.get("password_sha256") or "").strip().lower()
            if not digest:
                raise CredentialConfigurationError(f"Credential entry for '{handle}' has no password_sha256")
            credentials[str(handle)] = Credential(handle=str(handle), role=role, secret_digest=digest)

        logger.info("[CREDENTIALS] Loaded %d credential entries", len(credentials))
        return cls(credentials)

    def verify(self, handle: str) -> Optional[Role]:
        """Return the role registered for ``handle`` or None when unknown."""
        credential = self._credentials.get(handle)
        return credential.role if credential else None

    def check_secret(self, handle: str, secret: str) -> bool:
        """Return True when ``secret`` matches the stored digest for ``handle``."""
        credential = self._credentials.get(handle)
        if credential is None:
            return False
        return hmac.compare_digest(hash_secret(secret), credential.secret_digest)

    def handles(self) -> list[str]:
        return list(self._credentials)
