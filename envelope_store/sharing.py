"""
Granting and revoking read access to a record type.

Sharing redistributes the owner's existing access key to the reader and
writes an ALLOW policy; stored ciphertext is never touched. Revoking writes a
DENY policy and, when asked to, deletes the reader's wrapped key as well.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from .access_keys import AccessKeyResolver
from .config import Config
from .errors import ServiceError, TransportError, translate_service_error
from .storage import StorageService
from .types import Policy

logger = logging.getLogger(__name__)

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


def is_email(value: str) -> bool:
    """True if ``value`` looks like an email address rather than a client ID."""
    return bool(_EMAIL_RE.match(value))


class SharingController:
    """Share and revoke the configured client's own record types."""

    def __init__(
        self, config: Config, service: StorageService, resolver: AccessKeyResolver
    ) -> None:
        self._config = config
        self._service = service
        self._resolver = resolver

    async def share(self, type: str, reader: str) -> None:
        """
        Grant ``reader`` read access to records of ``type``.

        Args:
            type: Record type to share
            reader: Client ID or email address of the reader
        """
        reader_id = await self._reader_id(reader)
        if reader_id is None:
            return

        me = self._config.client_id
        ak = await self._resolver.resolve(me, me, me, type)
        await self._resolver.publish(me, me, reader_id, type, ak)
        await self._put_policy(reader_id, type, Policy.ALLOW)
        logger.info("Shared type %s with %s", type, reader_id)

    async def revoke(self, type: str, reader: str, delete_key: bool = False) -> None:
        """
        Revoke ``reader``'s read access to records of ``type``.

        By default only a DENY policy is written; the reader's wrapped copy
        of the access key stays with the service. With ``delete_key`` the
        copy is deleted too.
        """
        reader_id = await self._reader_id(reader)
        if reader_id is None:
            return

        me = self._config.client_id
        await self._put_policy(reader_id, type, Policy.DENY)
        if delete_key:
            await self._resolver.remove(me, me, reader_id, type)
        logger.info(
            "Revoked type %s from %s%s", type, reader_id, " (key deleted)" if delete_key else ""
        )

    async def _reader_id(self, reader: str) -> Optional[str]:
        """Canonical reader ID, or None when the reader is the caller."""
        if reader in (self._config.client_id, self._config.client_email):
            return None
        if not is_email(reader):
            return reader

        try:
            info = await self._service.get_client_info(reader)
        except ServiceError as e:
            raise translate_service_error(
                e, "client", "Could not retrieve info from the server."
            )
        if info.client_id == self._config.client_id:
            return None
        return info.client_id

    async def _put_policy(self, reader_id: str, type: str, policy: Policy) -> None:
        me = self._config.client_id
        try:
            await self._service.put_policy(me, me, reader_id, type, policy)
        except ServiceError as e:
            raise TransportError(f"Error while writing {policy} policy: {e}")
