"""
Signature Algorithms

Supports:
- ML-DSA-44 / ML-DSA-65 / ML-DSA-87 (FIPS 204) via dilithium-py - Post-quantum
- Ed25519 via cryptography - Classical leg of hybrid signatures

The post-quantum parameter sets form a closed, versioned enumeration.
Each entry fixes key and signature lengths and a declared security level.
"""

import base64
import hashlib
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple, Union

import structlog
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519
from dilithium_py.ml_dsa import ML_DSA_44, ML_DSA_65, ML_DSA_87

from ..errors import UnsupportedAlgorithmError

logger = structlog.get_logger()

# Bump when the post-quantum parameter set changes
ALGORITHM_SET_VERSION = 1


class SignatureAlgorithm(Enum):
    """Supported signature algorithms."""
    ED25519 = "Ed25519"
    ML_DSA_44 = "ML-DSA-44"
    ML_DSA_65 = "ML-DSA-65"
    ML_DSA_87 = "ML-DSA-87"


@dataclass(frozen=True)
class AlgorithmSpec:
    """Fixed sizes and security level of one parameter set."""
    algorithm: SignatureAlgorithm
    public_key_size: int
    secret_key_size: int
    signature_size: int
    security_level: int  # bits
    nist_level: int
    is_pqc: bool


ALGORITHM_SPECS: Dict[SignatureAlgorithm, AlgorithmSpec] = {
    SignatureAlgorithm.ED25519: AlgorithmSpec(
        SignatureAlgorithm.ED25519, 32, 32, 64, 128, 1, False,
    ),
    SignatureAlgorithm.ML_DSA_44: AlgorithmSpec(
        SignatureAlgorithm.ML_DSA_44, 1312, 2560, 2420, 128, 2, True,
    ),
    SignatureAlgorithm.ML_DSA_65: AlgorithmSpec(
        SignatureAlgorithm.ML_DSA_65, 1952, 4032, 3309, 192, 3, True,
    ),
    SignatureAlgorithm.ML_DSA_87: AlgorithmSpec(
        SignatureAlgorithm.ML_DSA_87, 2592, 4896, 4627, 256, 5, True,
    ),
}

POST_QUANTUM_ALGORITHMS = tuple(
    alg for alg, spec in ALGORITHM_SPECS.items() if spec.is_pqc
)

_ML_DSA = {
    SignatureAlgorithm.ML_DSA_44: ML_DSA_44,
    SignatureAlgorithm.ML_DSA_65: ML_DSA_65,
    SignatureAlgorithm.ML_DSA_87: ML_DSA_87,
}


def parse_algorithm(value: Union[str, SignatureAlgorithm]) -> SignatureAlgorithm:
    """
    Resolve a post-quantum algorithm name.

    Raises UnsupportedAlgorithmError for names outside the closed set,
    including the classical Ed25519.
    """
    if isinstance(value, SignatureAlgorithm):
        algorithm = value
    else:
        try:
            algorithm = SignatureAlgorithm(str(value).upper().replace("_", "-"))
        except ValueError:
            raise UnsupportedAlgorithmError(f"Unsupported algorithm: {value}") from None
    if algorithm not in POST_QUANTUM_ALGORITHMS:
        raise UnsupportedAlgorithmError(
            f"{algorithm.value} is not a post-quantum signature algorithm"
        )
    return algorithm


def algorithm_for_public_key(public_key: bytes) -> Optional[SignatureAlgorithm]:
    """Identify the ML-DSA parameter set from its public-key length."""
    for algorithm in POST_QUANTUM_ALGORITHMS:
        if len(public_key) == ALGORITHM_SPECS[algorithm].public_key_size:
            return algorithm
    return None


def compute_key_id(public_key: bytes, prefix: str = "pqc") -> str:
    """Stable identifier derived from the public key."""
    return f"{prefix}-{hashlib.sha3_256(public_key).hexdigest()[:16]}"


def ml_dsa_keygen(algorithm: SignatureAlgorithm) -> Tuple[bytes, bytes]:
    """Generate an ML-DSA key pair. Returns (public_key, secret_key)."""
    return _ML_DSA[parse_algorithm(algorithm)].keygen()


def ml_dsa_sign(algorithm: SignatureAlgorithm, secret_key: bytes, data: bytes) -> bytes:
    """Sign data with an ML-DSA secret key (hedged randomized signing)."""
    return _ML_DSA[algorithm].sign(bytes(secret_key), data)


def ml_dsa_verify(
    algorithm: SignatureAlgorithm,
    public_key: bytes,
    data: bytes,
    signature: bytes,
) -> bool:
    """Verify an ML-DSA signature. Malformed input yields False."""
    spec = ALGORITHM_SPECS[algorithm]
    if len(public_key) != spec.public_key_size or len(signature) != spec.signature_size:
        return False
    try:
        return bool(_ML_DSA[algorithm].verify(bytes(public_key), data, bytes(signature)))
    except Exception as e:
        logger.debug("ml_dsa_verify_error", algorithm=algorithm.value, error=str(e))
        return False


@dataclass
class SignatureResult:
    """Result of a signing operation."""
    signature: bytes
    signature_b64: str
    algorithm: SignatureAlgorithm
    key_id: str
    public_key: bytes
    is_pqc: bool


@dataclass
class VerificationResult:
    """Result of a verification operation."""
    valid: bool
    algorithm: SignatureAlgorithm
    key_id: str
    error: Optional[str] = None


class CryptoSigner(ABC):
    """Abstract base class for cryptographic signers."""

    @property
    @abstractmethod
    def algorithm(self) -> SignatureAlgorithm:
        """Get the signature algorithm."""
        pass

    @property
    @abstractmethod
    def key_id(self) -> str:
        """Get the key ID (hash of public key)."""
        pass

    @property
    def is_pqc(self) -> bool:
        return ALGORITHM_SPECS[self.algorithm].is_pqc

    @abstractmethod
    def sign(self, data: bytes) -> SignatureResult:
        """Sign data and return the signature."""
        pass

    @abstractmethod
    def verify(self, data: bytes, signature: bytes) -> VerificationResult:
        """Verify a signature."""
        pass

    @abstractmethod
    def get_public_key(self) -> bytes:
        """Get the public key bytes."""
        pass


class Ed25519Signer(CryptoSigner):
    """Ed25519 signature implementation using cryptography library."""

    def __init__(self, private_key_bytes: Optional[bytes] = None):
        if private_key_bytes:
            self._private_key = ed25519.Ed25519PrivateKey.from_private_bytes(private_key_bytes)
        else:
            self._private_key = ed25519.Ed25519PrivateKey.generate()

        self._public_key = self._private_key.public_key()
        self._key_id = compute_key_id(self.get_public_key(), prefix="ed25519")

    @property
    def algorithm(self) -> SignatureAlgorithm:
        return SignatureAlgorithm.ED25519

    @property
    def key_id(self) -> str:
        return self._key_id

    def sign(self, data: bytes) -> SignatureResult:
        signature = self._private_key.sign(data)
        return SignatureResult(
            signature=signature,
            signature_b64=base64.b64encode(signature).decode('utf-8'),
            algorithm=self.algorithm,
            key_id=self._key_id,
            public_key=self.get_public_key(),
            is_pqc=False,
        )

    def verify(self, data: bytes, signature: bytes) -> VerificationResult:
        valid = verify_ed25519(self.get_public_key(), data, signature)
        return VerificationResult(
            valid=valid,
            algorithm=self.algorithm,
            key_id=self._key_id,
            error=None if valid else "invalid signature",
        )

    def get_public_key(self) -> bytes:
        return self._public_key.public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )

    def get_private_key(self) -> bytes:
        return self._private_key.private_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PrivateFormat.Raw,
            encryption_algorithm=serialization.NoEncryption(),
        )


def verify_ed25519(public_key: bytes, data: bytes, signature: bytes) -> bool:
    """Stateless Ed25519 verification. Malformed input yields False."""
    try:
        key = ed25519.Ed25519PublicKey.from_public_bytes(bytes(public_key))
        key.verify(bytes(signature), data)
        return True
    except Exception:
        return False
