"""
Password-protected storage of a wallet seed on disk
"""

import base64
import json
import os
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from errors.exceptions import KeystoreError
from log_utils import get_logger

logger = get_logger(__name__)

KEYSTORE_FILENAME = "wallet.json"
KEYSTORE_VERSION = 1
_PBKDF2_ROUNDS = 100_000
_AES_KEYLEN = 32
_SALT_LEN = 16
_IV_LEN = 12


def _pbkdf2_key(password: str, salt: bytes) -> bytes:
    return PBKDF2HMAC(
        algorithm=hashes.SHA256(), length=_AES_KEYLEN,
        salt=salt, iterations=_PBKDF2_ROUNDS
    ).derive(password.encode())


def encrypt_seed(seed: bytes, password: str) -> dict:
    if not seed:
        raise KeystoreError("Refusing to store an empty seed")
    salt, iv = os.urandom(_SALT_LEN), os.urandom(_IV_LEN)
    ct_tag = AESGCM(_pbkdf2_key(password, salt)).encrypt(iv, bytes(seed), None)
    return {
        "version": KEYSTORE_VERSION,
        "encryptedSeed": base64.b64encode(ct_tag).decode(),
        "seedSalt": base64.b64encode(salt).decode(),
        "seedIV": base64.b64encode(iv).decode(),
    }


def decrypt_seed(keystore: dict, password: str) -> bytes:
    try:
        ct_tag, salt, iv = map(
            base64.b64decode,
            (keystore["encryptedSeed"], keystore["seedSalt"], keystore["seedIV"]),
        )
    except (KeyError, TypeError, ValueError) as e:
        raise KeystoreError(f"Malformed keystore: {e}") from e

    try:
        return AESGCM(_pbkdf2_key(password, salt)).decrypt(iv, ct_tag, None)
    except InvalidTag as e:
        logger.warning("Keystore unlock failed")
        raise KeystoreError("Wrong password or corrupted keystore") from e


def load_keystore(fname: str = KEYSTORE_FILENAME) -> Optional[dict]:
    if not os.path.exists(fname):
        return None
    try:
        with open(fname) as f:
            keystore = json.load(f)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise KeystoreError(f"Malformed keystore file {fname}: {e}") from e
    if not isinstance(keystore, dict):
        raise KeystoreError(f"Malformed keystore file {fname}: expected a JSON object")
    return keystore


def save_keystore(keystore: dict, fname: str = KEYSTORE_FILENAME):
    with open(fname, "w") as f:
        json.dump(keystore, f, indent=2)


def load_or_create_seed(password: str, fname: str = KEYSTORE_FILENAME,
                        seed: Optional[bytes] = None) -> bytes:
    """Unlock the seed in ``fname``, or store ``seed`` (a fresh one if omitted) there"""
    keystore = load_keystore(fname)
    if keystore is not None:
        return decrypt_seed(keystore, password)

    seed = seed or os.urandom(64)
    save_keystore(encrypt_seed(seed, password), fname)
    logger.info(f"New keystore written to {fname}")
    return seed
