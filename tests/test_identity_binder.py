import json
from unittest.mock import patch

from tests.base import PHONE, REALM, FakeClock, PhoneDbTestCase, RecordingSender

from app.services.account_store import SqlAccountStore
from app.services.identity_binder import IdentityBinder, phone_otp_credential_data
from app.services.phone_verification import SqlUnitOfWork, build_phone_verification
from app.services.token_code_store import SqlTokenCodeStore
from app.services.token_codes import TokenAlreadyConfirmed, TokenCodeType

OLD_PHONE = "+15557770000"


class IdentityBinderTests(PhoneDbTestCase):
    def setUp(self):
        super().setUp()
        self.clock = FakeClock()
        self.sender = RecordingSender()
        self.verification = build_phone_verification(self.db, REALM, sender=self.sender, clock=self.clock)

    def _issue(self, phone: str = PHONE) -> str:
        self.assertTrue(self.verification.issuer.send_code(phone, TokenCodeType.VERIFY).ok)
        return self.sender.last_code

    def _binder(self, accounts=None, *, duplicate_phone_allowed=False) -> IdentityBinder:
        return IdentityBinder(
            SqlTokenCodeStore(self.db, REALM),
            accounts or SqlAccountStore(self.db),
            SqlUnitOfWork(self.db),
            realm_id=REALM,
            duplicate_phone_allowed=duplicate_phone_allowed,
        )

    def _ongoing_token_id(self, phone: str = PHONE):
        token = SqlTokenCodeStore(self.db, REALM).find_ongoing(phone, TokenCodeType.VERIFY, self.clock())
        self.assertIsNotNone(token)
        return token.id

    def test_conflicting_account_is_unverified(self):
        bob = self.create_account("bob", phone=PHONE, verified=True)
        alice = self.create_account("alice")
        code = self._issue()

        outcome = self.verification.validator.validate_code(alice, PHONE, code)

        self.assertTrue(outcome.ok)
        self.assertEqual(outcome.binding.evicted_account_ids, [str(bob.id)])
        self.assertEqual(self.attribute(bob, "phoneNumberVerified"), "false")
        self.assertEqual(self.attribute(bob, "phoneNumber"), PHONE)
        self.assertIn("UPDATE_PHONE_NUMBER", self.required_actions(bob))
        self.assertEqual(self.attribute(alice, "phoneNumberVerified"), "true")
        self.assertEqual(self.attribute(alice, "phoneNumber"), PHONE)

    def test_accounts_of_other_realms_are_untouched(self):
        carol = self.create_account("carol", realm="other", phone=PHONE, verified=True)
        alice = self.create_account("alice")
        code = self._issue()

        outcome = self.verification.validator.validate_code(alice, PHONE, code)

        self.assertEqual(outcome.binding.evicted_account_ids, [])
        self.assertEqual(self.attribute(carol, "phoneNumberVerified"), "true")

    def test_duplicate_phone_allowed_skips_conflict_resolution(self):
        bob = self.create_account("bob", phone=PHONE, verified=True)
        alice = self.create_account("alice")
        self._issue()

        report = self._binder(duplicate_phone_allowed=True).token_validated(alice, PHONE, self._ongoing_token_id())

        self.assertEqual(report.evicted_account_ids, [])
        self.assertEqual(self.attribute(bob, "phoneNumberVerified"), "true")
        self.assertNotIn("UPDATE_PHONE_NUMBER", self.required_actions(bob))
        self.assertEqual(self.attribute(alice, "phoneNumberVerified"), "true")

    def test_conflicting_otp_credentials_are_filtered(self):
        bob = self.create_account(
            "bob",
            phone=PHONE,
            verified=True,
            otp_data=(
                phone_otp_credential_data(PHONE),
                phone_otp_credential_data(None),
                "not json",
                phone_otp_credential_data(OLD_PHONE),
            ),
        )
        alice = self.create_account("alice")
        code = self._issue()

        outcome = self.verification.validator.validate_code(alice, PHONE, code)

        remaining = self.otp_credentials(bob)
        self.assertEqual(len(remaining), 1)
        self.assertEqual(json.loads(remaining[0].credential_data), {"phoneNumber": OLD_PHONE})
        self.assertEqual(len(outcome.binding.removed_credential_ids), 3)

    def test_pending_actions_are_cleared(self):
        alice = self.create_account("alice", actions=("UPDATE_PHONE_NUMBER", "CONFIGURE_SMS_OTP", "VERIFY_EMAIL"))
        code = self._issue()

        self.assertTrue(self.verification.validator.validate_code(alice, PHONE, code).ok)

        self.assertEqual(self.required_actions(alice), {"VERIFY_EMAIL"})

    def test_otp_credential_follows_new_number(self):
        alice = self.create_account(
            "alice",
            phone=OLD_PHONE,
            verified=True,
            otp_data=(phone_otp_credential_data(OLD_PHONE),),
        )
        code = self._issue()

        self.assertTrue(self.verification.validator.validate_code(alice, PHONE, code).ok)

        credentials = self.otp_credentials(alice)
        self.assertEqual(len(credentials), 1)
        self.assertEqual(json.loads(credentials[0].credential_data), {"phoneNumber": PHONE})

    def test_verification_order_between_accounts(self):
        alice = self.create_account("alice")
        bob = self.create_account("bob")

        code = self._issue()
        self.assertTrue(self.verification.validator.validate_code(bob, PHONE, code).ok)
        self.clock.advance(minutes=2)
        code = self._issue()
        self.assertTrue(self.verification.validator.validate_code(alice, PHONE, code).ok)

        self.assertEqual(self.attribute(alice, "phoneNumberVerified"), "true")
        self.assertEqual(self.attribute(bob, "phoneNumberVerified"), "false")
        self.assertIn("UPDATE_PHONE_NUMBER", self.required_actions(bob))
        verified = [
            account
            for account in SqlAccountStore(self.db).find_by_phone_attribute(REALM, PHONE)
            if self.attribute(account, "phoneNumberVerified") == "true"
        ]
        self.assertEqual([account.id for account in verified], [alice.id])

    def test_failing_conflict_does_not_block_binding(self):
        bob = self.create_account("bob", phone=PHONE, verified=True)
        dave = self.create_account("dave", phone=PHONE, verified=True)
        alice = self.create_account("alice")
        self._issue()
        accounts = SqlAccountStore(self.db)
        original = accounts.add_required_action

        def flaky_add_required_action(account, action):
            if account.id == bob.id:
                raise RuntimeError("account store unavailable")
            return original(account, action)

        with patch.object(accounts, "add_required_action", side_effect=flaky_add_required_action):
            report = self._binder(accounts).token_validated(alice, PHONE, self._ongoing_token_id())

        self.assertEqual(report.failed_account_ids, [str(bob.id)])
        self.assertEqual(report.evicted_account_ids, [str(dave.id)])
        self.assertFalse(report.complete)
        self.assertEqual(self.attribute(bob, "phoneNumberVerified"), "true")
        self.assertEqual(self.attribute(dave, "phoneNumberVerified"), "false")
        self.assertEqual(self.attribute(alice, "phoneNumberVerified"), "true")

    def test_cleanup_failure_keeps_binding(self):
        alice = self.create_account("alice", actions=("UPDATE_PHONE_NUMBER",))
        self._issue()
        token_id = self._ongoing_token_id()
        binder = self._binder()

        with patch.object(binder, "clean_up_action", side_effect=RuntimeError("boom")):
            report = binder.token_validated(alice, PHONE, token_id)

        self.assertEqual(report.cleanup_errors, ["boom"])
        self.assertEqual(self.attribute(alice, "phoneNumberVerified"), "true")
        token = SqlTokenCodeStore(self.db, REALM).find_by_id(token_id)
        self.assertTrue(token.confirmed)
        self.assertEqual(token.by_whom, str(alice.id))

    def test_validate_process_only_confirms_token(self):
        alice = self.create_account("alice")
        self._issue()
        token_id = self._ongoing_token_id()

        self._binder().validate_process(token_id, alice)

        token = SqlTokenCodeStore(self.db, REALM).find_by_id(token_id)
        self.assertTrue(token.confirmed)
        self.assertIsNone(self.attribute(alice, "phoneNumberVerified"))

    def test_confirmed_token_cannot_be_consumed_again(self):
        alice = self.create_account("alice")
        bob = self.create_account("bob")
        code = self._issue()
        token_id = self._ongoing_token_id()
        self.assertTrue(self.verification.validator.validate_code(alice, PHONE, code).ok)

        binder = self._binder()
        with self.assertRaises(TokenAlreadyConfirmed):
            binder.token_validated(bob, PHONE, token_id)
        with self.assertRaises(TokenAlreadyConfirmed):
            binder.validate_process(token_id, bob)

        token = SqlTokenCodeStore(self.db, REALM).find_by_id(token_id)
        self.assertEqual(token.by_whom, str(alice.id))
        self.assertEqual(self.attribute(alice, "phoneNumberVerified"), "true")
        self.assertIsNone(self.attribute(bob, "phoneNumberVerified"))
        self.assertIsNone(self.attribute(bob, "phoneNumber"))

    def test_token_confirmed_while_binding_rolls_back_the_bind(self):
        alice = self.create_account("alice")
        self._issue()
        token_id = self._ongoing_token_id()
        binder = self._binder()

        def confirmed_by_other_request(*args):
            self.assertTrue(SqlTokenCodeStore(self.db, REALM).confirm(token_id, "other-request"))
            self.db.commit()

        with patch.object(binder, "_evict_conflicting_accounts", side_effect=confirmed_by_other_request):
            with self.assertRaises(TokenAlreadyConfirmed):
                binder.token_validated(alice, PHONE, token_id)

        self.assertIsNone(self.attribute(alice, "phoneNumberVerified"))
        self.assertIsNone(self.attribute(alice, "phoneNumber"))
        token = SqlTokenCodeStore(self.db, REALM).find_by_id(token_id)
        self.assertEqual(token.by_whom, "other-request")
