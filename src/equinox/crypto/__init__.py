"""
Cryptographic Primitives for Equinox

Supports:
- ML-DSA-44/65/87 (Dilithium) - Post-quantum signatures (NIST FIPS 204)
- Ed25519 - Classical leg of hybrid signatures
- Hybrid mode - Both signatures over one payload and nonce
"""

from .signer import (
    SignatureAlgorithm,
    CryptoSigner,
    Ed25519Signer,
)
from .keys import AsyncQuantumKeyStore, KeyPair, KeyStatus, KeyUsage, QuantumKeyStore
from .hybrid import HybridSignature, HybridSigner, HybridVerificationResult, SignerData

__all__ = [
    "SignatureAlgorithm",
    "CryptoSigner",
    "Ed25519Signer",
    "AsyncQuantumKeyStore",
    "KeyPair",
    "KeyStatus",
    "KeyUsage",
    "QuantumKeyStore",
    "HybridSignature",
    "HybridSigner",
    "HybridVerificationResult",
    "SignerData",
]
