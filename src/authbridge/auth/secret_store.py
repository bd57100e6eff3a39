"""OS secret store access through :mod:`keyring`.

:class:`SecretStore` is a thin key-value facade over the platform keychain
(macOS Keychain, Windows Credential Locker, freedesktop Secret Service).
Every entry is namespaced under a fixed service name so unrelated
applications cannot collide.  Backend failures are translated into
:class:`~authbridge.exceptions.StorageError`; callers must not assume a
write or delete succeeded unless it returned normally.

Values written here are never logged.
"""

from __future__ import annotations

import logging
from typing import Optional

import keyring
from keyring.backend import KeyringBackend
from keyring.errors import KeyringError

from authbridge.exceptions import StorageError

logger = logging.getLogger(__name__)


class SecretStore:
    """Key-value access to the OS keychain under one service namespace.

    Args:
        service_name: Keychain service identifier, e.g.
            ``"com.authbridge.desktop"``.
        backend: Explicit keyring backend.  Defaults to the backend
            :mod:`keyring` selects for the current platform.

    Example::

        store = SecretStore("com.authbridge.desktop")
        store.set("session_token", token)
        assert store.get("session_token") == token
        store.delete("session_token")
    """

    def __init__(self, service_name: str, backend: Optional[KeyringBackend] = None) -> None:
        self._service_name = service_name
        self._backend = backend

    @property
    def service_name(self) -> str:
        return self._service_name

    @property
    def backend(self) -> KeyringBackend:
        if self._backend is None:
            self._backend = keyring.get_keyring()
        return self._backend

    def set(self, key: str, value: str) -> None:
        """Store *value* under *key*.

        Raises:
            StorageError: If the keychain is locked, unavailable, or refuses
                the write.
        """
        try:
            self.backend.set_password(self._service_name, key, value)
        except KeyringError as exc:
            raise StorageError(f"Could not write '{key}' to the secret store: {exc}") from exc
        logger.debug("Stored secret '%s' in service '%s'", key, self._service_name)

    def get(self, key: str) -> Optional[str]:
        """Return the value stored under *key*, or ``None`` if absent.

        Raises:
            StorageError: If the keychain cannot be read.
        """
        try:
            return self.backend.get_password(self._service_name, key)
        except KeyringError as exc:
            raise StorageError(f"Could not read '{key}' from the secret store: {exc}") from exc

    def delete(self, key: str) -> None:
        """Remove *key*.  Deleting an absent key is a no-op.

        Raises:
            StorageError: If the keychain refuses the delete.
        """
        try:
            if self.backend.get_password(self._service_name, key) is None:
                return
            self.backend.delete_password(self._service_name, key)
        except KeyringError as exc:
            raise StorageError(f"Could not delete '{key}' from the secret store: {exc}") from exc
        logger.debug("Deleted secret '%s' from service '%s'", key, self._service_name)
