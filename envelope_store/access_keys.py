"""
Access-key resolution.

An access key is a 32-byte AES key scoped to (writer_id, user_id, type). The
service holds one copy per reader, sealed with ``box_seal`` from the
authorizer's private key to the reader's public key. Readers unwrap their copy
with their own private key; every copy wraps the same key, so granting a new
reader never requires re-encrypting records.
"""

from __future__ import annotations

import logging

from .config import Config
from .crypto import base64url_decode, base64url_encode, box_open, box_seal, random_key, random_nonce
from .errors import ConflictError, FormatError, NotFoundError, ServiceError, TransportError
from .storage import StorageService
from .types import EncryptedAccessKey

logger = logging.getLogger(__name__)


class AccessKeyResolver:
    """
    Fetch-or-create of access keys for the configured client.

    Args:
        config: Client configuration (identity and private key)
        service: Storage Service acting as that client
    """

    def __init__(self, config: Config, service: StorageService) -> None:
        self._config = config
        self._service = service

    async def fetch(
        self, writer_id: str, user_id: str, requester_id: str, type: str
    ) -> bytes:
        """
        Fetch and unwrap an existing access key.

        Raises:
            NotFoundError: If no key was ever published for the requester
            TransportError: On any other service failure
            DecryptionError: If the wrapped key does not open
        """
        self._check_requester(requester_id)
        try:
            eak = await self._service.get_access_key(writer_id, user_id, requester_id, type)
        except ServiceError as e:
            if e.status == 404:
                raise NotFoundError(
                    f"No access key for ({writer_id}, {user_id}, {type})", "access_key"
                )
            raise TransportError(f"Error while retrieving access keys: {e}")

        return self._unwrap(eak)

    async def resolve(
        self, writer_id: str, user_id: str, requester_id: str, type: str
    ) -> bytes:
        """
        Fetch an access key, creating and publishing one if none exists yet.

        Any retrieval failure other than "not found" is propagated. When a
        concurrent caller publishes first, its key wins and is returned.
        """
        try:
            return await self.fetch(writer_id, user_id, requester_id, type)
        except NotFoundError:
            pass

        ak = random_key()
        try:
            await self.publish(writer_id, user_id, requester_id, type, ak, overwrite=False)
        except ConflictError:
            logger.debug("Lost access key race for (%s, %s, %s)", writer_id, user_id, type)
            return await self.fetch(writer_id, user_id, requester_id, type)
        logger.info("Created access key for (%s, %s, %s)", writer_id, user_id, type)
        return ak

    async def publish(
        self,
        writer_id: str,
        user_id: str,
        reader_id: str,
        type: str,
        access_key: bytes,
        overwrite: bool = True,
    ) -> None:
        """
        Wrap ``access_key`` for ``reader_id`` and store it with the service.

        Raises:
            ConflictError: If ``overwrite`` is False and a key already exists
            TransportError: On any other service failure
        """
        reader_public_key = await self._public_key(reader_id)

        nonce = random_nonce()
        sealed = box_seal(access_key, nonce, reader_public_key, self._config.private_key)
        eak = EncryptedAccessKey(
            eak=f"{base64url_encode(sealed)}.{base64url_encode(nonce)}",
            authorizer_id=self._config.client_id,
            authorizer_public_key=self._config.public_key,
        )

        try:
            await self._service.put_access_key(
                writer_id, user_id, reader_id, type, eak, overwrite=overwrite
            )
        except ServiceError as e:
            if e.status == 409:
                raise ConflictError(
                    f"Access key for ({writer_id}, {user_id}, {type}) already exists",
                    "access_key",
                )
            raise TransportError(f"Error while storing access key: {e}")

    async def remove(self, writer_id: str, user_id: str, reader_id: str, type: str) -> None:
        """Delete the copy of an access key published for ``reader_id``."""
        try:
            await self._service.delete_access_key(writer_id, user_id, reader_id, type)
        except ServiceError as e:
            if e.status in (404, 410):
                return
            raise TransportError(f"Error while deleting access key: {e}")

    async def _public_key(self, client_id: str) -> str:
        if client_id == self._config.client_id:
            return self._config.public_key
        try:
            info = await self._service.get_client_info(client_id)
        except ServiceError as e:
            if e.status == 404:
                raise NotFoundError(f"Client {client_id} not found", "client")
            raise TransportError(f"Error while retrieving client info: {e}")
        return info.public_key

    def _unwrap(self, eak: EncryptedAccessKey) -> bytes:
        parts = eak.eak.split(".")
        if len(parts) != 2:
            raise FormatError("Invalid encrypted access key")
        sealed, nonce = (base64url_decode(p) for p in parts)
        return box_open(sealed, nonce, eak.authorizer_public_key, self._config.private_key)

    def _check_requester(self, requester_id: str) -> None:
        if requester_id != self._config.client_id:
            raise ValueError(
                f"Access keys can only be unwrapped by their reader "
                f"({requester_id} != {self._config.client_id})"
            )
