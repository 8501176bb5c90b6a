from __future__ import annotations

import uuid
from typing import Protocol

from sqlalchemy.orm import Session

from app.models.user import PHONE_NUMBER_ATTRIBUTE, User, UserAttribute, UserCredential, UserRequiredAction

PHONE_OTP_CREDENTIAL_TYPE = "phone-otp"
UPDATE_PHONE_NUMBER_ACTION = "UPDATE_PHONE_NUMBER"
CONFIGURE_SMS_OTP_ACTION = "CONFIGURE_SMS_OTP"


class AccountStore(Protocol):
    def find_by_phone_attribute(self, realm_id: str, phone_number: str) -> list[User]:
        ...

    def get_attribute(self, account: User, name: str) -> str | None:
        ...

    def set_attribute(self, account: User, name: str, value: str) -> None:
        ...

    def list_credentials_by_type(self, account: User, credential_type: str) -> list[UserCredential]:
        ...

    def remove_credential(self, account: User, credential_id: uuid.UUID) -> None:
        ...

    def update_credential(self, account: User, credential: UserCredential) -> None:
        ...

    def add_required_action(self, account: User, action: str) -> None:
        ...

    def remove_required_action(self, account: User, action: str) -> None:
        ...


class SqlAccountStore:
    """Account operations used by phone verification. Changes are flushed, never committed."""

    def __init__(self, db: Session):
        self.db = db

    def get_account(self, realm_id: str, account_id: uuid.UUID | str) -> User | None:
        try:
            key = account_id if isinstance(account_id, uuid.UUID) else uuid.UUID(str(account_id))
        except (TypeError, ValueError):
            return None
        account = self.db.get(User, key)
        if account is None or account.realm_id != realm_id:
            return None
        return account

    def find_by_phone_attribute(self, realm_id: str, phone_number: str) -> list[User]:
        return (
            self.db.query(User)
            .join(UserAttribute, UserAttribute.user_id == User.id)
            .filter(
                User.realm_id == realm_id,
                UserAttribute.name == PHONE_NUMBER_ATTRIBUTE,
                UserAttribute.value == phone_number,
            )
            .distinct()
            .order_by(User.created_at.asc(), User.username.asc())
            .all()
        )

    def get_attribute(self, account: User, name: str) -> str | None:
        for attribute in account.attributes:
            if attribute.name == name:
                return attribute.value
        return None

    def set_attribute(self, account: User, name: str, value: str) -> None:
        # Single-valued: drop every previous value of the attribute
        account.attributes = [a for a in account.attributes if a.name != name]
        account.attributes.append(UserAttribute(name=name, value=value))
        self.db.add(account)
        self.db.flush()

    def list_credentials_by_type(self, account: User, credential_type: str) -> list[UserCredential]:
        return (
            self.db.query(UserCredential)
            .filter(UserCredential.user_id == account.id, UserCredential.type == credential_type)
            .order_by(UserCredential.created_at.asc())
            .all()
        )

    def remove_credential(self, account: User, credential_id: uuid.UUID) -> None:
        credential = self.db.get(UserCredential, credential_id)
        if credential is None or credential.user_id != account.id:
            return
        if credential in account.credentials:
            account.credentials.remove(credential)
        self.db.delete(credential)
        self.db.flush()

    def update_credential(self, account: User, credential: UserCredential) -> None:
        if credential.user_id != account.id:
            raise ValueError("Credential belongs to another account")
        self.db.add(credential)
        self.db.flush()

    def add_required_action(self, account: User, action: str) -> None:
        if any(item.action == action for item in account.required_actions):
            return
        account.required_actions.append(UserRequiredAction(action=action))
        self.db.add(account)
        self.db.flush()

    def remove_required_action(self, account: User, action: str) -> None:
        account.required_actions = [item for item in account.required_actions if item.action != action]
        self.db.add(account)
        self.db.flush()
