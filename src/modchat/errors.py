"""Exception hierarchy shared across Modchat."""

from __future__ import annotations


class ModchatError(Exception):
    """Base class for every error raised by Modchat itself."""


class PersistenceError(ModchatError):
    """A persistence backend failed to load or save the state document."""


class PersistenceConfigurationError(PersistenceError):
    """A persistence backend cannot be built from the current configuration.

    Raised at boot time only, for example when a remote backend is selected
    but its access credential is missing.
    """


class CredentialConfigurationError(ModchatError):
    """The credential table is missing or malformed."""


class ProtocolError(ModchatError):
    """An inbound client event failed validation.

    ``str(exc)`` is safe to send back to the client in an ``error`` event.
    """
