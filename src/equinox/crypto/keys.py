"""
Quantum-Resistant Key Management

Owns the lifecycle of post-quantum signing keys: generation, rotation,
expiry tracking and password-encrypted export/import.

State model:
- Every key record is ACTIVE or ARCHIVED inside one ordered collection
- At most one record is ACTIVE; it is the current signing key
- Rotation archives the current key (public half retained for
  verification, secret half wiped) and installs a fresh one
- ARCHIVED keys never become ACTIVE again

All mutations of the collection happen under one lock and are single
swaps of fully built state, so readers never observe a half-rotated store.
"""

import asyncio
import base64
import json
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

import structlog

from ..config import KeyStoreConfig
from ..errors import InvalidFormatError, NoCurrentKeyError, UnsupportedAlgorithmError
from .primitives import decrypt_with_password, encrypt_with_password, wipe
from .signer import (
    ALGORITHM_SET_VERSION,
    ALGORITHM_SPECS,
    SignatureAlgorithm,
    SignatureResult,
    algorithm_for_public_key,
    compute_key_id,
    ml_dsa_keygen,
    ml_dsa_sign,
    ml_dsa_verify,
    parse_algorithm,
)

logger = structlog.get_logger()

EXPORT_FORMAT_VERSION = 1
EXPORT_ASSOCIATED_DATA = b"equinox-keystore-v1"


class KeyUsage(Enum):
    """Intended use of a key pair."""
    SIGNING = "signing"
    ENCRYPTION = "encryption"
    BOTH = "both"


class KeyStatus(Enum):
    """Lifecycle status of a key record."""
    ACTIVE = "ACTIVE"
    ARCHIVED = "ARCHIVED"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_usage(value: Union[str, KeyUsage]) -> KeyUsage:
    if isinstance(value, KeyUsage):
        return value
    try:
        return KeyUsage(str(value).lower())
    except ValueError:
        raise InvalidFormatError(f"Unknown key usage: {value}") from None


@dataclass
class KeyPair:
    """A post-quantum key pair with lifecycle metadata."""
    key_id: str
    algorithm: SignatureAlgorithm
    usage: KeyUsage
    public_key: bytes
    secret_key: Optional[bytearray] = field(repr=False)
    created_at: datetime
    expires_at: Optional[datetime] = None  # None = never expires
    status: KeyStatus = KeyStatus.ACTIVE
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def security_level(self) -> int:
        return ALGORITHM_SPECS[self.algorithm].security_level

    @property
    def has_secret(self) -> bool:
        return self.secret_key is not None

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires_at is None:
            return False
        return (now or utcnow()) >= self.expires_at

    def destroy_secret(self) -> None:
        """Overwrite and drop the secret half."""
        if self.secret_key is not None:
            wipe(self.secret_key)
            self.secret_key = None

    def to_dict(self, include_secret: bool = False) -> Dict[str, Any]:
        result = {
            "key_id": self.key_id,
            "algorithm": self.algorithm.value,
            "usage": self.usage.value,
            "public_key": base64.b64encode(self.public_key).decode('utf-8'),
            "created_at": self.created_at.isoformat(),
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "status": self.status.value,
            "metadata": self.metadata,
        }
        if include_secret:
            result["secret_key"] = (
                base64.b64encode(bytes(self.secret_key)).decode('utf-8')
                if self.secret_key is not None else None
            )
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "KeyPair":
        try:
            algorithm = parse_algorithm(data["algorithm"])
            spec = ALGORITHM_SPECS[algorithm]
            public_key = base64.b64decode(data["public_key"], validate=True)
            secret_b64 = data.get("secret_key")
            secret_key = (
                bytearray(base64.b64decode(secret_b64, validate=True))
                if secret_b64 else None
            )
            expires_at = data.get("expires_at")
            keypair = cls(
                key_id=data["key_id"],
                algorithm=algorithm,
                usage=_parse_usage(data["usage"]),
                public_key=public_key,
                secret_key=secret_key,
                created_at=datetime.fromisoformat(data["created_at"]),
                expires_at=datetime.fromisoformat(expires_at) if expires_at else None,
                status=KeyStatus(data.get("status", "ACTIVE")),
                metadata=dict(data.get("metadata") or {}),
            )
        except UnsupportedAlgorithmError:
            raise
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidFormatError(f"Malformed key record: {e}") from None

        if len(public_key) != spec.public_key_size:
            raise InvalidFormatError(f"Public key length mismatch for {keypair.key_id}")
        if secret_key is not None and len(secret_key) != spec.secret_key_size:
            raise InvalidFormatError(f"Secret key length mismatch for {keypair.key_id}")
        return keypair


@dataclass
class KeyStoreStats:
    """Aggregate view over the key collection."""
    total_keys: int
    active_keys: int  # not expired
    expired_keys: int
    next_rotation: Optional[datetime]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_keys": self.total_keys,
            "active_keys": self.active_keys,
            "expired_keys": self.expired_keys,
            "next_rotation": self.next_rotation.isoformat() if self.next_rotation else None,
        }


class QuantumKeyStore:
    """
    In-memory post-quantum key store.

    Features:
    - ML-DSA key generation with configurable expiry
    - Rotation with archived keys retained for verification
    - Password-encrypted export/import (scrypt + AES-256-GCM)
    - Stats for dashboards and rotation policy
    """

    def __init__(
        self,
        config: Optional[KeyStoreConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.config = config or KeyStoreConfig()
        self._clock = clock
        self._lock = threading.RLock()
        self._keys: List[KeyPair] = []

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    @property
    def rotation_interval(self) -> Optional[timedelta]:
        days = self.config.rotation_interval_days
        return timedelta(days=days) if days is not None else None

    def _current(self) -> Optional[KeyPair]:
        for keypair in self._keys:
            if keypair.status == KeyStatus.ACTIVE:
                return keypair
        return None

    def _require_current(self) -> KeyPair:
        current = self._current()
        if current is None:
            raise NoCurrentKeyError("No current key; generate a key pair first")
        return current

    def build_key_pair(
        self,
        algorithm: Union[str, SignatureAlgorithm, None] = None,
        usage: Union[str, KeyUsage] = KeyUsage.SIGNING,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> KeyPair:
        """
        Create a key pair without touching the store.

        Pure with respect to store state; used by generate/rotate and by
        the async wrapper so an abandoned generation commits nothing.
        """
        algorithm = parse_algorithm(algorithm or self.config.default_algorithm)
        usage = _parse_usage(usage)
        spec = ALGORITHM_SPECS[algorithm]
        if spec.security_level < self.config.min_security_bits:
            raise UnsupportedAlgorithmError(
                f"{algorithm.value} provides {spec.security_level}-bit security, "
                f"below the configured minimum of {self.config.min_security_bits}"
            )

        public_key, secret_key = ml_dsa_keygen(algorithm)
        now = self._clock()
        interval = self.rotation_interval

        return KeyPair(
            key_id=compute_key_id(public_key),
            algorithm=algorithm,
            usage=usage,
            public_key=public_key,
            secret_key=bytearray(secret_key),
            created_at=now,
            expires_at=now + interval if interval is not None else None,
            status=KeyStatus.ACTIVE,
            metadata={
                "security_level": spec.security_level,
                "nist_level": spec.nist_level,
                **(metadata or {}),
            },
        )

    def install_key_pair(self, keypair: KeyPair, expected_current: Optional[str] = None) -> KeyPair:
        """
        Commit a built key pair as the current key.

        If expected_current is given, the swap only happens when that key
        is still current (guards rotations racing each other).
        """
        with self._lock:
            previous = self._current()
            if expected_current is not None:
                if previous is None or previous.key_id != expected_current:
                    raise NoCurrentKeyError(
                        f"Current key changed during rotation (expected {expected_current})"
                    )
            if previous is not None:
                previous.status = KeyStatus.ARCHIVED
                previous.metadata["superseded_by"] = keypair.key_id
                previous.destroy_secret()
            self._keys.append(keypair)
        return keypair

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def generate_key_pair(
        self,
        algorithm: Union[str, SignatureAlgorithm, None] = None,
        usage: Union[str, KeyUsage] = KeyUsage.SIGNING,
    ) -> KeyPair:
        """Generate a new key pair and make it current."""
        keypair = self.install_key_pair(self.build_key_pair(algorithm, usage))

        logger.info("key_generated",
                    key_id=keypair.key_id,
                    algorithm=keypair.algorithm.value,
                    usage=keypair.usage.value,
                    expires_at=keypair.expires_at.isoformat() if keypair.expires_at else None)

        return keypair

    def rotate_key(self) -> KeyPair:
        """
        Rotate the current key - archive it, generate a replacement.

        The replacement uses the same algorithm and usage.
        """
        with self._lock:
            old = self._require_current()
            new = self.build_key_pair(
                old.algorithm,
                old.usage,
                metadata={"rotated_from": old.key_id},
            )
            self.install_key_pair(new, expected_current=old.key_id)

        logger.info("key_rotated",
                    old_key_id=old.key_id,
                    new_key_id=new.key_id)

        return new

    def needs_rotation(self) -> bool:
        """True when there is no current key or it has expired."""
        with self._lock:
            current = self._current()
            if current is None:
                return True
            return current.is_expired(self._clock())

    def reset(self) -> None:
        """Destroy every key, wiping secret material."""
        with self._lock:
            count = len(self._keys)
            for keypair in self._keys:
                keypair.destroy_secret()
            self._keys = []

        logger.warning("key_store_reset", destroyed=count)

    # ------------------------------------------------------------------
    # Signing
    # ------------------------------------------------------------------

    def sign_detached(self, data: bytes) -> SignatureResult:
        """
        Sign with the current key.

        Returns the signature together with the key id and public key
        read under the same lock, so a concurrent rotation cannot split them.
        """
        with self._lock:
            current = self._require_current()
            signature = ml_dsa_sign(current.algorithm, current.secret_key, data)
            return SignatureResult(
                signature=signature,
                signature_b64=base64.b64encode(signature).decode('utf-8'),
                algorithm=current.algorithm,
                key_id=current.key_id,
                public_key=current.public_key,
                is_pqc=True,
            )

    def sign_data(self, data: bytes) -> bytes:
        """Sign data with the current key's secret key."""
        return self.sign_detached(data).signature

    @staticmethod
    def verify_signature(data: bytes, signature: bytes, public_key: bytes) -> bool:
        """
        Verify a signature against a public key.

        Independent of store state; never raises.
        """
        try:
            algorithm = algorithm_for_public_key(public_key)
            if algorithm is None:
                return False
            return ml_dsa_verify(algorithm, public_key, data, signature)
        except Exception as e:
            logger.debug("verify_signature_error", error=str(e))
            return False

    def verify_with_any_key(
        self,
        data: bytes,
        signature: bytes,
    ) -> Tuple[bool, Optional[str]]:
        """
        Verify a signature against every known key, archived included.

        Useful for signatures issued before a rotation.

        Returns (is_valid, key_id_that_verified)
        """
        with self._lock:
            candidates = [(kp.key_id, kp.public_key) for kp in reversed(self._keys)]

        for key_id, public_key in candidates:
            if self.verify_signature(data, signature, public_key):
                return (True, key_id)
        return (False, None)

    # ------------------------------------------------------------------
    # Export / import
    # ------------------------------------------------------------------

    def _snapshot(self) -> bytearray:
        """Serialized collection, secrets included, in a wipeable buffer."""
        with self._lock:
            payload = {
                "version": EXPORT_FORMAT_VERSION,
                "algorithm_set_version": ALGORITHM_SET_VERSION,
                "exported_at": self._clock().isoformat(),
                "keys": [kp.to_dict(include_secret=True) for kp in self._keys],
            }
        return bytearray(json.dumps(payload, sort_keys=True, separators=(',', ':')), 'utf-8')

    def export_keys(self, password: str) -> bytes:
        """
        Export the full key collection encrypted under a password.

        Layout: salt (16) || nonce (12) || ciphertext || tag (16).
        """
        plaintext = self._snapshot()
        try:
            blob = encrypt_with_password(plaintext, password, EXPORT_ASSOCIATED_DATA)
        finally:
            wipe(plaintext)

        logger.info("keys_exported", size=len(blob))
        return blob

    def import_keys(self, encrypted_blob: bytes, password: str) -> None:
        """
        Replace the key collection with the contents of an export.

        Raises DecryptionError if the blob does not authenticate. Nothing
        changes unless the whole blob decrypts and parses.
        """
        plaintext = decrypt_with_password(bytes(encrypted_blob), password, EXPORT_ASSOCIATED_DATA)
        keys = self._parse_export(plaintext)

        with self._lock:
            previous = self._keys
            self._keys = keys
            for keypair in previous:
                keypair.destroy_secret()

        logger.info("keys_imported", count=len(keys))

    @staticmethod
    def _parse_export(plaintext: bytes) -> List[KeyPair]:
        try:
            payload = json.loads(plaintext.decode('utf-8'))
        except (UnicodeDecodeError, ValueError):
            raise InvalidFormatError("Export payload is not valid JSON") from None

        if not isinstance(payload, dict) or payload.get("version") != EXPORT_FORMAT_VERSION:
            raise InvalidFormatError("Unsupported export format version")

        keys = [KeyPair.from_dict(item) for item in payload.get("keys", [])]
        active = [kp for kp in keys if kp.status == KeyStatus.ACTIVE]
        if len(active) > 1:
            raise InvalidFormatError("Export contains more than one current key")
        if active and not active[0].has_secret:
            raise InvalidFormatError("Current key in export has no secret key")
        return keys

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_current_key(self) -> Optional[KeyPair]:
        with self._lock:
            return self._current()

    def get_key(self, key_id: str) -> Optional[KeyPair]:
        with self._lock:
            for keypair in self._keys:
                if keypair.key_id == key_id:
                    return keypair
        return None

    def list_keys(self, status: Optional[KeyStatus] = None) -> List[KeyPair]:
        """List all keys, newest first, optionally filtered by status."""
        with self._lock:
            keys = list(self._keys)
        if status:
            keys = [k for k in keys if k.status == status]
        return sorted(keys, key=lambda k: k.created_at, reverse=True)

    def get_key_stats(self) -> KeyStoreStats:
        with self._lock:
            now = self._clock()
            expired = sum(1 for kp in self._keys if kp.is_expired(now))
            current = self._current()
            interval = self.rotation_interval
            next_rotation = None
            if current is not None and interval is not None:
                next_rotation = current.created_at + interval
            return KeyStoreStats(
                total_keys=len(self._keys),
                active_keys=len(self._keys) - expired,
                expired_keys=expired,
                next_rotation=next_rotation,
            )

    def export_public_keys(self) -> Dict[str, Dict[str, Any]]:
        """Public half of every key, for distribution to verifiers."""
        with self._lock:
            return {kp.key_id: kp.to_dict() for kp in self._keys}


class AsyncQuantumKeyStore:
    """
    Async-aware wrapper for event-loop callers.

    Expensive operations run in worker threads. Key material is built off
    the loop and committed only after the await returns, so cancelling a
    generation leaves the store untouched.
    """

    def __init__(self, store: Optional[QuantumKeyStore] = None):
        self.store = store or QuantumKeyStore()
        self._async_lock = asyncio.Lock()

    async def generate_key_pair(
        self,
        algorithm: Union[str, SignatureAlgorithm, None] = None,
        usage: Union[str, KeyUsage] = KeyUsage.SIGNING,
    ) -> KeyPair:
        async with self._async_lock:
            keypair = await asyncio.to_thread(self.store.build_key_pair, algorithm, usage)
            self.store.install_key_pair(keypair)

        logger.info("key_generated", key_id=keypair.key_id, algorithm=keypair.algorithm.value)
        return keypair

    async def rotate_key(self) -> KeyPair:
        async with self._async_lock:
            old = self.store.get_current_key()
            if old is None:
                raise NoCurrentKeyError("No current key; generate a key pair first")
            new = await asyncio.to_thread(
                self.store.build_key_pair,
                old.algorithm,
                old.usage,
                {"rotated_from": old.key_id},
            )
            self.store.install_key_pair(new, expected_current=old.key_id)

        logger.info("key_rotated", old_key_id=old.key_id, new_key_id=new.key_id)
        return new

    async def sign_data(self, data: bytes) -> bytes:
        return await asyncio.to_thread(self.store.sign_data, data)

    async def export_keys(self, password: str) -> bytes:
        snapshot = self.store._snapshot()
        try:
            blob = await asyncio.to_thread(
                encrypt_with_password, snapshot, password, EXPORT_ASSOCIATED_DATA
            )
        finally:
            wipe(snapshot)
        logger.info("keys_exported", size=len(blob))
        return blob

    async def import_keys(self, encrypted_blob: bytes, password: str) -> None:
        async with self._async_lock:
            await asyncio.to_thread(self.store.import_keys, encrypted_blob, password)

    def needs_rotation(self) -> bool:
        return self.store.needs_rotation()

    def get_current_key(self) -> Optional[KeyPair]:
        return self.store.get_current_key()

    def get_key_stats(self) -> KeyStoreStats:
        return self.store.get_key_stats()
