"""
Digest and authenticated-encryption primitives.

- SHA3-256 for every digest in the system (Merkle leaves, nodes, transcripts)
- scrypt for password-based key derivation (memory-hard)
- AES-256-GCM for sealing exported key material

The scrypt work factors are part of the export format: changing them
makes previously exported blobs unreadable, so they are fixed here.
"""

import hashlib
import re
import secrets
from typing import Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from ..errors import DecryptionError, InvalidFormatError

DIGEST_SIZE = 32
DIGEST_HEX_LENGTH = DIGEST_SIZE * 2

# Export blob layout: salt || nonce || ciphertext || tag
SALT_SIZE = 16
NONCE_SIZE = 12
TAG_SIZE = 16
KEY_SIZE = 32

# Fixed KDF parameters (format version 1)
SCRYPT_N = 2 ** 15
SCRYPT_R = 8
SCRYPT_P = 1

_HEX_RE = re.compile(r"^[0-9a-f]*$")


def sha3_256(data: bytes) -> bytes:
    """SHA3-256 digest of data."""
    return hashlib.sha3_256(data).digest()


def hash_pair(left: bytes, right: bytes) -> bytes:
    """Digest of two child digests, left then right."""
    return hashlib.sha3_256(left + right).digest()


def digest_to_hex(digest: bytes) -> str:
    """Canonical lowercase hex of a digest."""
    if len(digest) != DIGEST_SIZE:
        raise InvalidFormatError(f"digest must be {DIGEST_SIZE} bytes, got {len(digest)}")
    return digest.hex()


def hex_to_digest(value: Union[str, bytes]) -> bytes:
    """
    Parse a digest given as lowercase hex (or pass raw digest bytes through).

    Raises InvalidFormatError on wrong length or non-hex characters.
    """
    if isinstance(value, (bytes, bytearray)):
        if len(value) != DIGEST_SIZE:
            raise InvalidFormatError(f"digest must be {DIGEST_SIZE} bytes, got {len(value)}")
        return bytes(value)
    if not isinstance(value, str):
        raise InvalidFormatError(f"digest must be hex string, got {type(value).__name__}")
    if len(value) != DIGEST_HEX_LENGTH:
        raise InvalidFormatError(
            f"digest hex must be {DIGEST_HEX_LENGTH} characters, got {len(value)}"
        )
    if not _HEX_RE.match(value):
        raise InvalidFormatError("digest hex must contain only lowercase hex digits")
    return bytes.fromhex(value)


def hex_to_bytes(value: str) -> bytes:
    """Parse arbitrary-length lowercase hex (signatures, public keys)."""
    if not isinstance(value, str):
        raise InvalidFormatError(f"expected hex string, got {type(value).__name__}")
    value = value.lower()
    if len(value) % 2 or not _HEX_RE.match(value):
        raise InvalidFormatError("malformed hex string")
    return bytes.fromhex(value)


def random_bytes(length: int) -> bytes:
    return secrets.token_bytes(length)


def wipe(buffer: bytearray) -> None:
    """Overwrite a mutable buffer in place. Best effort under a GC."""
    for i in range(len(buffer)):
        buffer[i] = 0


def derive_key(password: str, salt: bytes) -> bytes:
    """Derive a 256-bit key from a password with scrypt."""
    kdf = Scrypt(
        salt=salt,
        length=KEY_SIZE,
        n=SCRYPT_N,
        r=SCRYPT_R,
        p=SCRYPT_P,
    )
    return kdf.derive(password.encode("utf-8"))


def encrypt_with_password(plaintext: bytes, password: str, associated_data: bytes = b"") -> bytes:
    """
    Seal plaintext under a password.

    Returns salt (16) || nonce (12) || ciphertext || tag (16). Salt and
    nonce are fresh per call, so equal inputs give different blobs.
    """
    if not password:
        raise ValueError("password must not be empty")

    salt = random_bytes(SALT_SIZE)
    nonce = random_bytes(NONCE_SIZE)
    key = derive_key(password, salt)

    # AESGCM appends the 16-byte tag to the ciphertext
    sealed = AESGCM(key).encrypt(nonce, plaintext, associated_data or None)
    return salt + nonce + sealed


def decrypt_with_password(blob: bytes, password: str, associated_data: bytes = b"") -> bytes:
    """
    Open a blob produced by encrypt_with_password.

    Any failure (short blob, wrong password, modified bytes) raises the
    same DecryptionError.
    """
    if not password or len(blob) < SALT_SIZE + NONCE_SIZE + TAG_SIZE:
        raise DecryptionError()

    salt = blob[:SALT_SIZE]
    nonce = blob[SALT_SIZE:SALT_SIZE + NONCE_SIZE]
    sealed = blob[SALT_SIZE + NONCE_SIZE:]

    key = derive_key(password, salt)
    try:
        return AESGCM(key).decrypt(nonce, sealed, associated_data or None)
    except InvalidTag:
        raise DecryptionError() from None
