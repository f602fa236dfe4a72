"""
Configuration for the Equinox core.

Every tunable is a dataclass field with a sensible default; `from_env`
overlays EQUINOX_* environment variables the same way the key manager
reads its storage settings.
"""

import os
from dataclasses import dataclass, field
from typing import Optional

DEFAULT_ROTATION_DAYS = 90
DEFAULT_ALGORITHM = "ML-DSA-65"
DEFAULT_CHUNK_SIZE = 1024
DEFAULT_MAX_PROOF_BYTES = 1024 * 1024


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.environ.get(name)
    if raw is None or raw == "":
        return default
    if raw.lower() in ("none", "never"):
        return None
    return int(raw)


@dataclass
class KeyStoreConfig:
    """Key lifecycle policy."""
    rotation_interval_days: Optional[int] = DEFAULT_ROTATION_DAYS  # None = non-expiring keys
    default_algorithm: str = DEFAULT_ALGORITHM
    min_security_bits: int = 128

    def __post_init__(self):
        if self.rotation_interval_days is not None and self.rotation_interval_days <= 0:
            raise ValueError("rotation_interval_days must be positive, or None for non-expiring keys")

    @classmethod
    def from_env(cls) -> "KeyStoreConfig":
        return cls(
            rotation_interval_days=_env_int("EQUINOX_ROTATION_DAYS", DEFAULT_ROTATION_DAYS),
            default_algorithm=os.environ.get("EQUINOX_DEFAULT_ALGORITHM", DEFAULT_ALGORITHM),
            min_security_bits=int(os.environ.get("EQUINOX_MIN_SECURITY_BITS", 128)),
        )


@dataclass
class MerkleConfig:
    """Chunking of file bytes into Merkle leaves."""
    chunk_size: int = DEFAULT_CHUNK_SIZE

    def __post_init__(self):
        if self.chunk_size <= 0:
            raise ValueError("chunk_size must be positive")

    @classmethod
    def from_env(cls) -> "MerkleConfig":
        return cls(chunk_size=int(os.environ.get("EQUINOX_CHUNK_SIZE", DEFAULT_CHUNK_SIZE)))


@dataclass
class ProofConfig:
    """
    Proof system parameters.

    blowup and num_queries set the conjectured soundness
    (roughly num_queries * log2(blowup) bits).
    """
    max_file_size: int = DEFAULT_MAX_PROOF_BYTES
    blowup: int = 8
    num_queries: int = 24
    blinding_rows: int = 8

    def __post_init__(self):
        if self.blowup < 2 or self.blowup & (self.blowup - 1):
            raise ValueError("blowup must be a power of two >= 2")
        if self.num_queries < 1:
            raise ValueError("num_queries must be positive")
        if self.blinding_rows < 1:
            raise ValueError("blinding_rows must be positive")

    @classmethod
    def from_env(cls) -> "ProofConfig":
        return cls(
            max_file_size=int(os.environ.get("EQUINOX_PROOF_MAX_BYTES", DEFAULT_MAX_PROOF_BYTES)),
            blowup=int(os.environ.get("EQUINOX_PROOF_BLOWUP", 8)),
            num_queries=int(os.environ.get("EQUINOX_PROOF_QUERIES", 24)),
            blinding_rows=int(os.environ.get("EQUINOX_PROOF_BLINDING_ROWS", 8)),
        )


@dataclass
class EquinoxConfig:
    """Top-level configuration bundle."""
    keys: KeyStoreConfig = field(default_factory=KeyStoreConfig)
    merkle: MerkleConfig = field(default_factory=MerkleConfig)
    proofs: ProofConfig = field(default_factory=ProofConfig)
    api_key: str = "dev-key-change-in-production"

    @classmethod
    def from_env(cls) -> "EquinoxConfig":
        return cls(
            keys=KeyStoreConfig.from_env(),
            merkle=MerkleConfig.from_env(),
            proofs=ProofConfig.from_env(),
            api_key=os.environ.get("API_KEY", "dev-key-change-in-production"),
        )
