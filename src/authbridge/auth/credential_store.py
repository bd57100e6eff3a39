"""Persistent credential layout in the OS secret store.

A :class:`~authbridge.models.StoredCredential` is kept as three entries
under the bridge's keychain service namespace:

- ``session_token`` -- the raw bearer token
- ``user_id`` -- the token subject
- ``session_id`` -- the identity provider session id

There is no other on-disk representation of credentials.  A credential is
only considered present when all three entries are.

See Also:
    :class:`~authbridge.auth.secret_store.SecretStore` -- the keychain facade.
    :class:`~authbridge.auth.session.SessionManager` -- the only writer.
"""

from __future__ import annotations

import logging
from typing import Optional

from authbridge.auth.secret_store import SecretStore
from authbridge.exceptions import StorageError
from authbridge.models import StoredCredential

logger = logging.getLogger(__name__)

TOKEN_KEY = "session_token"
USER_ID_KEY = "user_id"
SESSION_ID_KEY = "session_id"

CREDENTIAL_KEYS = (TOKEN_KEY, USER_ID_KEY, SESSION_ID_KEY)


class CredentialStore:
    """Read/write the bridge's stored credential.

    Args:
        secrets: The keychain facade to persist through.

    Example::

        store = CredentialStore(SecretStore("com.authbridge.desktop"))
        store.save(StoredCredential(token="eyJ...", user_id="user_1", session_id="sess_1"))
        entry = store.load()
        assert entry.user_id == "user_1"
    """

    def __init__(self, secrets: SecretStore) -> None:
        self._secrets = secrets

    def save(self, credential: StoredCredential) -> None:
        """Write all three entries.

        A failure part-way leaves some entries written; callers purge with
        :meth:`clear`.

        Raises:
            StorageError: If any entry cannot be written.
        """
        self._secrets.set(TOKEN_KEY, credential.token)
        self._secrets.set(USER_ID_KEY, credential.user_id)
        self._secrets.set(SESSION_ID_KEY, credential.session_id)
        logger.info("Credentials stored in the system keychain")

    def load(self) -> Optional[StoredCredential]:
        """Load the stored credential.

        Returns:
            The credential, or ``None`` if any of the three entries is absent.

        Raises:
            StorageError: If the keychain cannot be read.
        """
        token = self._secrets.get(TOKEN_KEY)
        user_id = self._secrets.get(USER_ID_KEY)
        session_id = self._secrets.get(SESSION_ID_KEY)
        if not token or not user_id or not session_id:
            return None
        return StoredCredential(token=token, user_id=user_id, session_id=session_id)

    def clear(self) -> None:
        """Delete every entry, attempting all of them even if some fail.

        Raises:
            StorageError: After all deletes were attempted, if any failed.
        """
        failed: list[str] = []
        for key in CREDENTIAL_KEYS:
            try:
                self._secrets.delete(key)
            except StorageError as exc:
                logger.warning("Could not delete '%s' from the keychain: %s", key, exc)
                failed.append(key)
        if failed:
            raise StorageError(f"Could not delete stored credentials: {', '.join(failed)}")
        logger.info("Credentials cleared from the system keychain")
