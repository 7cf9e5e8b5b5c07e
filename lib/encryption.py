"""Per-user encryption for journal content.

Values are stored as ``ENC:`` + base64(salt || nonce || ciphertext). The key is
derived from the user id and the salt with PBKDF2-SHA256, so every value
carries what is needed to decrypt it. Rows written before encryption was
introduced have no prefix and are returned unchanged.
"""

import base64
import binascii
import logging
import os
from dataclasses import dataclass
from typing import Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from lib.error_handler import CryptoError

logger = logging.getLogger(__name__)

PREFIX = 'ENC:'
SALT_LENGTH = 16
NONCE_LENGTH = 12
KEY_LENGTH = 32
ITERATIONS = 100_000

@dataclass(frozen=True)
class Plaintext:
    text: str

@dataclass(frozen=True)
class Encrypted:
    salt: bytes
    nonce: bytes
    ciphertext: bytes

StoredValue = Union[Plaintext, Encrypted]

def derive_key(user_id: str, salt: bytes) -> bytes:
    kdf = PBKDF2HMAC(
        algorithm=hashes.SHA256(),
        length=KEY_LENGTH,
        salt=salt,
        iterations=ITERATIONS,
    )
    return kdf.derive(user_id.encode('utf-8'))

def decode(value: str) -> StoredValue:
    """Classify a stored value as legacy plaintext or an encrypted envelope"""
    if not value.startswith(PREFIX):
        return Plaintext(value)
    try:
        raw = base64.b64decode(value[len(PREFIX):], validate=True)
    except (binascii.Error, ValueError) as e:
        raise CryptoError(f"Malformed encrypted value: {str(e)}")
    # AES-GCM appends a 16 byte tag, so anything shorter cannot be valid
    if len(raw) < SALT_LENGTH + NONCE_LENGTH + 16:
        raise CryptoError("Encrypted value is truncated")
    return Encrypted(
        salt=raw[:SALT_LENGTH],
        nonce=raw[SALT_LENGTH:SALT_LENGTH + NONCE_LENGTH],
        ciphertext=raw[SALT_LENGTH + NONCE_LENGTH:],
    )

def encode(value: Encrypted) -> str:
    raw = value.salt + value.nonce + value.ciphertext
    return PREFIX + base64.b64encode(raw).decode('ascii')

def is_encrypted(value: str) -> bool:
    return value.startswith(PREFIX)

def encrypt(plaintext: str, user_id: str) -> str:
    if plaintext is None or not user_id:
        raise CryptoError("Text and user id are required for encryption")

    salt = os.urandom(SALT_LENGTH)
    nonce = os.urandom(NONCE_LENGTH)
    key = derive_key(user_id, salt)
    ciphertext = AESGCM(key).encrypt(nonce, plaintext.encode('utf-8'), None)
    return encode(Encrypted(salt=salt, nonce=nonce, ciphertext=ciphertext))

def decrypt(value: str, user_id: str) -> str:
    if value is None or not user_id:
        raise CryptoError("Value and user id are required for decryption")

    stored = decode(value)
    if isinstance(stored, Plaintext):
        return stored.text

    key = derive_key(user_id, stored.salt)
    try:
        data = AESGCM(key).decrypt(stored.nonce, stored.ciphertext, None)
    except InvalidTag:
        raise CryptoError("Decryption failed: authentication tag mismatch")
    try:
        return data.decode('utf-8')
    except UnicodeDecodeError as e:
        raise CryptoError(f"Decrypted content is not valid UTF-8: {str(e)}")

def decrypt_or_passthrough(value: str, user_id: str) -> str:
    """Decrypt for read paths; on failure keep the stored value rather than lose it"""
    try:
        return decrypt(value, user_id)
    except CryptoError as e:
        logger.error(f"Failed to decrypt content for user {user_id}, using stored value: {e.message}")
        return value
