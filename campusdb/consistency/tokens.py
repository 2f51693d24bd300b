"""
Concurrency token manager (optimistic concurrency control).

Every versioned document carries an opaque token in "concurrencyToken".
A write that supplies a token only succeeds when it still equals the
stored token, and every successful write stores a fresh one.

States per record:
    Unversioned -> Versioned (token assigned on first write)
    Versioned -> Versioned (token rotated on every successful write)

Invariants:
    - A rejected write performs zero mutation
    - No supplied token means "force write": validation is skipped
    - The check and the write are one store.update_one call, so no other
      writer can slip in between them

How to change safely:
    - Keep the expected token inside the update filter; checking first
      and writing second reintroduces the lost-update race
"""

from __future__ import annotations

import hmac
import logging
import secrets
from enum import Enum
from typing import Any

from ..errors import ConflictError, NotFoundError
from ..models import TOKEN_KEY, decode_token, encode_token
from ..store.base import Document, DocumentStore

logger = logging.getLogger(__name__)

__all__ = [
    "ConcurrencyTokenManager",
    "TokenCheck",
    "decode_token",
    "encode_token",
]


class TokenCheck(Enum):
    """Outcome of comparing a supplied token with the stored one."""

    OK = "ok"
    SKIPPED = "skipped"
    CONFLICT = "conflict"


class ConcurrencyTokenManager:
    """Issues, validates, and applies concurrency tokens.

    Example:
        >>> tokens = ConcurrencyTokenManager(store)
        >>> doc = await tokens.versioned_update(
        ...     "departments", "Department", "departmentId", 1,
        ...     supplied=old_token, changes={"name": "Physics"},
        ... )
    """

    def __init__(self, store: DocumentStore, token_bytes: int = 8) -> None:
        self.store = store
        self.token_bytes = token_bytes

    def issue_token(self) -> bytes:
        """Produce a fresh random token."""
        return secrets.token_bytes(self.token_bytes)

    def validate(self, stored: bytes | None, supplied: bytes | None) -> TokenCheck:
        """Compare a caller-supplied token with the stored token."""
        if supplied is None:
            return TokenCheck.SKIPPED
        if stored is not None and hmac.compare_digest(stored, supplied):
            return TokenCheck.OK
        return TokenCheck.CONFLICT

    def ensure_valid(
        self,
        stored: bytes | None,
        supplied: bytes | None,
        entity: str,
        entity_id: int,
    ) -> TokenCheck:
        """Like validate(), but raise on conflict.

        Raises:
            ConflictError: If the supplied token does not match
        """
        result = self.validate(stored, supplied)
        if result is TokenCheck.CONFLICT:
            raise ConflictError(entity, entity_id)
        return result

    def stamp(self, document: Document) -> Document:
        """Return a copy of document carrying a newly issued token."""
        return {**document, TOKEN_KEY: encode_token(self.issue_token())}

    async def versioned_update(
        self,
        collection: str,
        entity: str,
        id_field: str,
        entity_id: int,
        supplied: bytes | None,
        changes: dict[str, Any],
    ) -> Document:
        """Apply changes with a compare-and-swap on the stored token.

        Args:
            collection: Collection holding the entity
            entity: Entity name for error messages
            id_field: Business id field name
            entity_id: Business id
            supplied: Token the caller last saw, or None to force the write
            changes: Fields to set

        Returns:
            The updated document, carrying a new token

        Raises:
            NotFoundError: If the entity does not exist
            ConflictError: If the supplied token is stale
        """
        filter: dict[str, Any] = {id_field: entity_id}
        if supplied is not None:
            filter[TOKEN_KEY] = encode_token(supplied)

        updated = await self.store.update_one(
            collection,
            filter,
            {**changes, TOKEN_KEY: encode_token(self.issue_token())},
        )
        if updated is not None:
            return updated

        current = await self.store.find_one(collection, {id_field: entity_id})
        if current is None:
            raise NotFoundError(entity, entity_id)

        logger.info(
            "Concurrency token mismatch",
            extra={"collection": collection, "id": entity_id},
        )
        raise ConflictError(entity, entity_id)

    def stored_token(self, document: Document) -> bytes | None:
        """Read the token from a stored document."""
        return decode_token(document.get(TOKEN_KEY))
