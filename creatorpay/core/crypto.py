from __future__ import annotations

import base64
import hashlib
import hmac
import os
from typing import Tuple

from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

# OpenSSL "enc" envelope, the format CryptoJS.AES produces for passphrase keys.
_SALTED_MAGIC = b"Salted__"
_KEY_LEN = 32
_IV_LEN = 16


def sha256_str(s: str) -> str:
    return hashlib.sha256(s.encode("utf-8")).hexdigest()


def evp_bytes_to_key(passphrase: bytes, salt: bytes, key_len: int = _KEY_LEN, iv_len: int = _IV_LEN) -> Tuple[bytes, bytes]:
    derived = b""
    block = b""
    while len(derived) < key_len + iv_len:
        block = hashlib.md5(block + passphrase + salt).digest()
        derived += block
    return derived[:key_len], derived[key_len:key_len + iv_len]


def aes_encrypt_passphrase(plaintext: str, passphrase: str) -> str:
    if not passphrase:
        raise RuntimeError("GATEWAY_API_SECRET not set")
    salt = os.urandom(8)
    key, iv = evp_bytes_to_key(passphrase.encode("utf-8"), salt)
    padder = padding.PKCS7(algorithms.AES.block_size).padder()
    padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()
    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    ct = encryptor.update(padded) + encryptor.finalize()
    return base64.b64encode(_SALTED_MAGIC + salt + ct).decode("ascii")


def aes_decrypt_passphrase(ct_b64: str, passphrase: str) -> str:
    raw = base64.b64decode(ct_b64)
    if not raw.startswith(_SALTED_MAGIC):
        raise ValueError("Ciphertext is not in salted OpenSSL format")
    salt, ct = raw[8:16], raw[16:]
    key, iv = evp_bytes_to_key(passphrase.encode("utf-8"), salt)
    decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
    padded = decryptor.update(ct) + decryptor.finalize()
    unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
    return (unpadder.update(padded) + unpadder.finalize()).decode("utf-8")


def hmac_sha256_hex(secret: str, data: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), data, hashlib.sha256).hexdigest()


def verify_hmac_sha256(secret: str, data: bytes, signature: str) -> bool:
    if not secret or not signature:
        return False
    try:
        provided = signature.strip().lower().encode("ascii")
    except (AttributeError, UnicodeEncodeError):
        return False
    expected = hmac_sha256_hex(secret, data).encode("ascii")
    return hmac.compare_digest(expected, provided)
