import base64
import unittest
from datetime import datetime
from decimal import Decimal

from creatorpay.core.crypto import (
    aes_decrypt_passphrase,
    aes_encrypt_passphrase,
    evp_bytes_to_key,
    hmac_sha256_hex,
    verify_hmac_sha256,
)
from creatorpay.core.cursor import decode_cursor, encode_cursor
from creatorpay.core.errors import ValidationError
from creatorpay.core.normalize import money_str, to_money
from creatorpay.core.time import add_months


class TestWebhookSignature(unittest.TestCase):
    body = b'{"orderId":"tip_abc","status":"completed"}'

    def test_valid_signature_accepted(self):
        sig = hmac_sha256_hex("secret", self.body)
        self.assertTrue(verify_hmac_sha256("secret", self.body, sig))

    def test_uppercase_hex_accepted(self):
        sig = hmac_sha256_hex("secret", self.body).upper()
        self.assertTrue(verify_hmac_sha256("secret", self.body, sig))

    def test_single_byte_change_in_body_rejected(self):
        sig = hmac_sha256_hex("secret", self.body)
        self.assertFalse(verify_hmac_sha256("secret", self.body.replace(b"completed", b"completes"), sig))

    def test_wrong_secret_rejected(self):
        sig = hmac_sha256_hex("other", self.body)
        self.assertFalse(verify_hmac_sha256("secret", self.body, sig))

    def test_reserialized_body_rejected(self):
        sig = hmac_sha256_hex("secret", self.body)
        reserialized = b'{"orderId": "tip_abc", "status": "completed"}'
        self.assertFalse(verify_hmac_sha256("secret", reserialized, sig))

    def test_missing_or_malformed_signature_rejected(self):
        self.assertFalse(verify_hmac_sha256("secret", self.body, ""))
        self.assertFalse(verify_hmac_sha256("secret", self.body, "not-hex"))
        self.assertFalse(verify_hmac_sha256("secret", self.body, "é" * 64))
        self.assertFalse(verify_hmac_sha256("", self.body, hmac_sha256_hex("", self.body)))


class TestPayloadEncryption(unittest.TestCase):
    def test_envelope_is_salted_openssl_format(self):
        raw = base64.b64decode(aes_encrypt_passphrase('{"orderID":"x"}', "pass"))
        self.assertEqual(raw[:8], b"Salted__")
        self.assertEqual((len(raw) - 16) % 16, 0)

    def test_decrypts_with_same_passphrase(self):
        ct = aes_encrypt_passphrase('{"amount":"9.99"}', "pass")
        self.assertEqual(aes_decrypt_passphrase(ct, "pass"), '{"amount":"9.99"}')

    def test_fresh_salt_per_call(self):
        self.assertNotEqual(aes_encrypt_passphrase("same", "pass"), aes_encrypt_passphrase("same", "pass"))

    def test_missing_passphrase_raises(self):
        with self.assertRaises(RuntimeError):
            aes_encrypt_passphrase("x", "")

    def test_key_derivation_lengths(self):
        key, iv = evp_bytes_to_key(b"pass", b"12345678")
        self.assertEqual(len(key), 32)
        self.assertEqual(len(iv), 16)


class TestMoney(unittest.TestCase):
    def test_rounds_half_up(self):
        self.assertEqual(to_money("2.005"), Decimal("2.01"))
        self.assertEqual(to_money(10), Decimal("10.00"))

    def test_money_str_has_two_places(self):
        self.assertEqual(money_str(Decimal("9.9")), "9.90")

    def test_rejects_garbage(self):
        with self.assertRaises(ValidationError):
            to_money("ten dollars")
        with self.assertRaises(ValidationError):
            to_money(float("nan"))


class TestAddMonths(unittest.TestCase):
    def test_clamps_to_month_end(self):
        self.assertEqual(add_months(datetime(2025, 1, 31, 12, 0)), datetime(2025, 2, 28, 12, 0))

    def test_rolls_year(self):
        self.assertEqual(add_months(datetime(2025, 12, 15)), datetime(2026, 1, 15))


class TestCursor(unittest.TestCase):
    def test_cursor_round_trip(self):
        position = (datetime(2025, 1, 1, 8, 30, 0, 125000), "t1")
        self.assertEqual(decode_cursor(encode_cursor(position)), position)

    def test_empty_cursor(self):
        self.assertIsNone(encode_cursor(None))
        self.assertIsNone(decode_cursor(""))

    def test_tampered_cursor_rejected(self):
        with self.assertRaises(ValidationError):
            decode_cursor("%%%")
        with self.assertRaises(ValidationError):
            decode_cursor("eyJmb28iOjF9")  # {"foo":1}
