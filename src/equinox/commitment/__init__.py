"""SHA3-256 Merkle commitments over file bytes."""

from .merkle import (
    InclusionProof,
    MerkleCommitter,
    MerkleTree,
    build_tree_from_leaves,
    verify_inclusion,
)

__all__ = [
    "InclusionProof",
    "MerkleCommitter",
    "MerkleTree",
    "build_tree_from_leaves",
    "verify_inclusion",
]
