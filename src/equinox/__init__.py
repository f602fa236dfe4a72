"""
EQUINOX - Quantum-Resistant Data Attestation Core

- Post-quantum key lifecycle (ML-DSA, FIPS 204)
- Hybrid Ed25519 + ML-DSA signatures
- SHA3-256 Merkle commitments over file bytes
- FRI-based succinct proofs bound to a commitment
"""

__version__ = "1.0.0"

from .errors import (
    DecryptionError,
    EquinoxError,
    InvalidFormatError,
    KeysNotInitializedError,
    NoCurrentKeyError,
    ProofGenerationError,
    UnsupportedAlgorithmError,
)
from .config import EquinoxConfig, KeyStoreConfig, MerkleConfig, ProofConfig
# crypto first: the hybrid signer pulls in commitment and proofs
from .crypto import (
    AsyncQuantumKeyStore,
    HybridSignature,
    HybridSigner,
    KeyPair,
    QuantumKeyStore,
    SignatureAlgorithm,
)
from .commitment import MerkleCommitter, MerkleTree, InclusionProof
from .proofs import ProofArtifact, ProofGenerator, ProofStatement

__all__ = [
    "__version__",
    "EquinoxError",
    "UnsupportedAlgorithmError",
    "NoCurrentKeyError",
    "KeysNotInitializedError",
    "DecryptionError",
    "InvalidFormatError",
    "ProofGenerationError",
    "EquinoxConfig",
    "KeyStoreConfig",
    "MerkleConfig",
    "ProofConfig",
    "MerkleCommitter",
    "MerkleTree",
    "InclusionProof",
    "ProofArtifact",
    "ProofGenerator",
    "ProofStatement",
    "AsyncQuantumKeyStore",
    "HybridSignature",
    "HybridSigner",
    "KeyPair",
    "QuantumKeyStore",
    "SignatureAlgorithm",
]
