from __future__ import annotations

import uuid
from datetime import datetime
from typing import Protocol

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.models.common import as_utc
from app.models.token_code import TokenCode
from app.services.token_codes import RequestOrigin, TokenCodeRepresentation, TokenCodeType


class TokenCodeStore(Protocol):
    def insert(self, token: TokenCodeRepresentation, origin: RequestOrigin | None = None) -> None:
        ...

    def find_ongoing(
        self, phone_number: str, code_type: TokenCodeType, now: datetime
    ) -> TokenCodeRepresentation | None:
        ...

    def count_since(self, phone_number: str, code_type: TokenCodeType, since: datetime) -> int:
        ...

    def update(self, token: TokenCodeRepresentation) -> None:
        ...

    def confirm(self, token_id: uuid.UUID, by_whom: str) -> bool:
        ...

    def find_by_id(self, token_id: uuid.UUID) -> TokenCodeRepresentation | None:
        ...


def _to_representation(row: TokenCode) -> TokenCodeRepresentation:
    return TokenCodeRepresentation(
        id=row.id,
        phone_number=row.phone_number,
        code=row.code,
        type=TokenCodeType(row.type),
        created_at=as_utc(row.created_at),
        expires_at=as_utc(row.expires_at),
        confirmed=bool(row.confirmed),
        by_whom=row.by_whom,
    )


class SqlTokenCodeStore:
    """Realm-scoped token storage over a SQLAlchemy session. Never commits."""

    def __init__(self, db: Session, realm_id: str):
        if not realm_id:
            raise ValueError("The token store needs a realm")
        self.db = db
        self.realm_id = realm_id

    def _scoped(self, phone_number: str, code_type: TokenCodeType):
        return self.db.query(TokenCode).filter(
            TokenCode.realm_id == self.realm_id,
            TokenCode.phone_number == phone_number,
            TokenCode.type == TokenCodeType(code_type).value,
        )

    def insert(self, token: TokenCodeRepresentation, origin: RequestOrigin | None = None) -> None:
        if token.type is None or token.created_at is None or token.expires_at is None:
            raise ValueError("Token must carry type, created_at and expires_at before it is stored")
        row = TokenCode(
            id=token.id,
            realm_id=self.realm_id,
            phone_number=token.phone_number,
            code=token.code,
            type=TokenCodeType(token.type).value,
            created_at=token.created_at,
            expires_at=token.expires_at,
            confirmed=bool(token.confirmed),
        )
        if origin is not None:
            row.ip = origin.ip
            row.port = origin.port
            row.host = origin.host
        self.db.add(row)
        self.db.flush()

    def find_ongoing(
        self, phone_number: str, code_type: TokenCodeType, now: datetime
    ) -> TokenCodeRepresentation | None:
        row = (
            self._scoped(phone_number, code_type)
            .filter(TokenCode.confirmed.is_(False), TokenCode.expires_at > now)
            .order_by(TokenCode.created_at.desc())
            .first()
        )
        return _to_representation(row) if row is not None else None

    def count_since(self, phone_number: str, code_type: TokenCodeType, since: datetime) -> int:
        query = self._scoped(phone_number, code_type).filter(TokenCode.created_at >= since)
        return int(query.with_entities(func.count(TokenCode.id)).scalar() or 0)

    def update(self, token: TokenCodeRepresentation) -> None:
        row = self.db.get(TokenCode, token.id)
        if row is None or row.realm_id != self.realm_id:
            raise LookupError(f"Token code {token.id} not found")
        if row.confirmed:
            raise ValueError(f"Token code {token.id} is already confirmed")
        row.confirmed = bool(token.confirmed)
        row.by_whom = token.by_whom
        self.db.add(row)
        self.db.flush()

    def confirm(self, token_id: uuid.UUID, by_whom: str) -> bool:
        """Flip confirmed false->true. Returns False when the row was already confirmed."""
        updated = (
            self.db.query(TokenCode)
            .filter(
                TokenCode.id == token_id,
                TokenCode.realm_id == self.realm_id,
                TokenCode.confirmed.is_(False),
            )
            .update({TokenCode.confirmed: True, TokenCode.by_whom: by_whom}, synchronize_session="fetch")
        )
        return updated == 1

    def find_by_id(self, token_id: uuid.UUID) -> TokenCodeRepresentation | None:
        row = self.db.get(TokenCode, token_id)
        if row is None or row.realm_id != self.realm_id:
            return None
        return _to_representation(row)
