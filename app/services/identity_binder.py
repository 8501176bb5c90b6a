from __future__ import annotations

import json
import logging
import uuid

from app.models.user import PHONE_NUMBER_ATTRIBUTE, PHONE_NUMBER_VERIFIED_ATTRIBUTE, User, UserCredential
from app.services.account_store import (
    CONFIGURE_SMS_OTP_ACTION,
    PHONE_OTP_CREDENTIAL_TYPE,
    UPDATE_PHONE_NUMBER_ACTION,
    AccountStore,
)
from app.services.token_code_store import TokenCodeStore
from app.services.token_codes import BindingReport, TokenAlreadyConfirmed, UnitOfWork

logger = logging.getLogger(__name__)


def _credential_phone_number(credential: UserCredential) -> tuple[bool, str | None]:
    """Return (readable, phone) for a phone OTP credential payload."""
    try:
        data = json.loads(credential.credential_data or "{}")
    except ValueError:
        return False, None
    if not isinstance(data, dict):
        return False, None
    phone = data.get("phoneNumber")
    return True, str(phone).strip() if phone is not None else None


def phone_otp_credential_data(phone_number: str | None) -> str:
    return json.dumps({"phoneNumber": phone_number})


class IdentityBinder:
    """Applies a successful phone verification to the accounts of a realm.

    Binding the number and confirming the token are committed together.
    Evicting the number from other accounts and the follow-up cleanup are
    best-effort: failures are logged, rolled back and reported, never raised.
    """

    def __init__(
        self,
        store: TokenCodeStore,
        accounts: AccountStore,
        uow: UnitOfWork,
        *,
        realm_id: str,
        duplicate_phone_allowed: bool = False,
    ):
        self.store = store
        self.accounts = accounts
        self.uow = uow
        self.realm_id = realm_id
        self.duplicate_phone_allowed = duplicate_phone_allowed

    def token_validated(self, account: User, phone_number: str, token_id: uuid.UUID) -> BindingReport:
        """Raises TokenAlreadyConfirmed when another request consumed ``token_id`` first."""
        token = self.store.find_by_id(token_id)
        if token is None:
            raise LookupError(f"Token code {token_id} not found")
        if token.confirmed:
            raise TokenAlreadyConfirmed(token_id)

        report = BindingReport()
        if not self.duplicate_phone_allowed:
            self._evict_conflicting_accounts(account, phone_number, report)

        try:
            self.accounts.set_attribute(account, PHONE_NUMBER_VERIFIED_ATTRIBUTE, "true")
            self.accounts.set_attribute(account, PHONE_NUMBER_ATTRIBUTE, phone_number)
            self._confirm(token_id, account)
            self.uow.commit()
        except TokenAlreadyConfirmed:
            self.uow.rollback()
            logger.warning("Token %s was confirmed by another request, not binding account %s", token_id, account.id)
            raise
        except Exception:
            self.uow.rollback()
            raise

        try:
            self.clean_up_action(account)
        except Exception as exc:
            self.uow.rollback()
            logger.exception("Cleaning up phone actions of account %s failed", account.id)
            report.cleanup_errors.append(str(exc) or exc.__class__.__name__)
        return report

    def _evict_conflicting_accounts(self, account: User, phone_number: str, report: BindingReport) -> None:
        others = [
            other
            for other in self.accounts.find_by_phone_attribute(self.realm_id, phone_number)
            if other.id != account.id
        ]
        for other in others:
            other_id = str(other.id)
            try:
                logger.info("Account %s also has phone number %s. Un-verifying.", other_id, phone_number)
                self.accounts.set_attribute(other, PHONE_NUMBER_VERIFIED_ATTRIBUTE, "false")
                self.accounts.add_required_action(other, UPDATE_PHONE_NUMBER_ACTION)
                removed = self._remove_stale_otp_credentials(other)
                self.uow.commit()
            except Exception:
                self.uow.rollback()
                logger.exception("Un-verifying phone number %s on account %s failed", phone_number, other_id)
                report.failed_account_ids.append(other_id)
                continue
            report.evicted_account_ids.append(other_id)
            report.removed_credential_ids.extend(removed)

    def _remove_stale_otp_credentials(self, other: User) -> list[str]:
        # Only credentials still pointing at this account's own number (or at nothing)
        own_phone = self.accounts.get_attribute(other, PHONE_NUMBER_ATTRIBUTE)
        stale: list[uuid.UUID] = []
        for credential in self.accounts.list_credentials_by_type(other, PHONE_OTP_CREDENTIAL_TYPE):
            readable, credential_phone = _credential_phone_number(credential)
            if not readable:
                logger.warning("Unknown format of phone OTP credential %s", credential.id)
                stale.append(credential.id)
            elif not credential_phone or credential_phone == own_phone:
                stale.append(credential.id)
        for credential_id in stale:
            self.accounts.remove_credential(other, credential_id)
        return [str(credential_id) for credential_id in stale]

    def _confirm(self, token_id: uuid.UUID, account: User) -> None:
        if not self.store.confirm(token_id, str(account.id)):
            raise TokenAlreadyConfirmed(token_id)

    def validate_process(self, token_id: uuid.UUID, account: User) -> None:
        """Mark the token as consumed by ``account`` without touching the account."""
        try:
            self._confirm(token_id, account)
            self.uow.commit()
        except Exception:
            self.uow.rollback()
            raise

    def clean_up_action(self, account: User) -> None:
        self.accounts.remove_required_action(account, UPDATE_PHONE_NUMBER_ACTION)
        self.accounts.remove_required_action(account, CONFIGURE_SMS_OTP_ACTION)
        credentials = self.accounts.list_credentials_by_type(account, PHONE_OTP_CREDENTIAL_TYPE)
        if credentials:
            credential = credentials[0]
            credential.credential_data = phone_otp_credential_data(
                self.accounts.get_attribute(account, PHONE_NUMBER_ATTRIBUTE)
            )
            self.accounts.update_credential(account, credential)
        self.uow.commit()
