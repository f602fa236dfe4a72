"""
SHA3-256 Merkle commitments over file bytes.

Tree shape:
- File bytes are split into fixed-size chunks; the last chunk is
  zero-padded to the chunk size and the true length is kept on the tree
- Leaf digest = SHA3-256(padded chunk)
- Node digest = SHA3-256(left || right)
- A level with an odd number of nodes duplicates its last node

The same bytes always give the same root: there is no randomness,
ordering freedom or platform-dependent encoding anywhere in the fold.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Union

import structlog

from ..config import DEFAULT_CHUNK_SIZE
from ..crypto.primitives import (
    DIGEST_SIZE,
    digest_to_hex,
    hash_pair,
    hex_to_digest,
    sha3_256,
)
from ..errors import InvalidFormatError

logger = structlog.get_logger()


def chunk_count(file_length: int, chunk_size: int) -> int:
    """Number of leaves for a file: ceil(length / chunk_size), at least one."""
    if file_length <= 0:
        return 1
    return (file_length + chunk_size - 1) // chunk_size


def tree_depth(leaf_count: int) -> int:
    """Number of sibling digests on every inclusion path."""
    depth = 0
    width = leaf_count
    while width > 1:
        width = (width + 1) // 2
        depth += 1
    return depth


@dataclass
class MerkleTree:
    """A built tree. levels[0] are the leaves, levels[-1] == [root]."""
    levels: List[List[bytes]]
    file_length: Optional[int] = None
    chunk_size: Optional[int] = None

    @property
    def leaves(self) -> List[bytes]:
        return self.levels[0]

    @property
    def leaf_count(self) -> int:
        return len(self.levels[0])

    @property
    def root(self) -> bytes:
        return self.levels[-1][0]

    @property
    def root_hex(self) -> str:
        return digest_to_hex(self.root)

    @property
    def depth(self) -> int:
        return len(self.levels) - 1


@dataclass
class InclusionProof:
    """Sibling digests from a leaf up to the root."""
    leaf_index: int
    leaf_count: int
    siblings: List[bytes] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "leaf_index": self.leaf_index,
            "leaf_count": self.leaf_count,
            "siblings": [s.hex() for s in self.siblings],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InclusionProof":
        try:
            return cls(
                leaf_index=int(data["leaf_index"]),
                leaf_count=int(data["leaf_count"]),
                siblings=[hex_to_digest(s) for s in data["siblings"]],
            )
        except (KeyError, TypeError) as e:
            raise InvalidFormatError(f"Malformed inclusion proof: {e}") from None


def build_tree_from_leaves(leaf_digests: Sequence[bytes]) -> MerkleTree:
    """Fold a non-empty list of leaf digests into a tree."""
    if not leaf_digests:
        raise ValueError("a Merkle tree needs at least one leaf")

    level = [bytes(d) for d in leaf_digests]
    levels = [level]
    while len(level) > 1:
        if len(level) % 2 == 1:
            level = level + [level[-1]]  # Duplicate last if odd
        level = [hash_pair(level[i], level[i + 1]) for i in range(0, len(level), 2)]
        levels.append(level)

    return MerkleTree(levels=levels)


def prove_inclusion(tree: MerkleTree, leaf_index: int) -> InclusionProof:
    """Collect the sibling path for one leaf."""
    if not 0 <= leaf_index < tree.leaf_count:
        raise IndexError(f"leaf index {leaf_index} out of range for {tree.leaf_count} leaves")

    siblings = []
    index = leaf_index
    for level in tree.levels[:-1]:
        sibling = index ^ 1
        siblings.append(level[sibling] if sibling < len(level) else level[index])
        index //= 2

    return InclusionProof(leaf_index=leaf_index, leaf_count=tree.leaf_count, siblings=siblings)


def compute_root(leaf_index: int, leaf_digest: bytes, siblings: Sequence[bytes]) -> bytes:
    """Recompute a root from a leaf and its path."""
    node = leaf_digest
    index = leaf_index
    for sibling in siblings:
        if index % 2 == 0:
            node = hash_pair(node, sibling)
        else:
            node = hash_pair(sibling, node)
        index //= 2
    return node


def verify_inclusion(
    root: Union[str, bytes],
    leaf_index: int,
    leaf_digest: Union[str, bytes],
    proof: InclusionProof,
) -> bool:
    """
    Check that leaf_digest sits at leaf_index under root.

    Malformed hex raises InvalidFormatError; a well-formed but wrong
    path returns False.
    """
    root_bytes = hex_to_digest(root)
    leaf_bytes = hex_to_digest(leaf_digest)

    if leaf_index != proof.leaf_index or not 0 <= leaf_index < proof.leaf_count:
        return False
    if len(proof.siblings) != tree_depth(proof.leaf_count):
        return False
    if any(len(s) != DIGEST_SIZE for s in proof.siblings):
        return False

    return compute_root(leaf_index, leaf_bytes, proof.siblings) == root_bytes


class MerkleCommitter:
    """Builds deterministic SHA3-256 Merkle trees over file bytes."""

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self.chunk_size = chunk_size

    def chunk(self, file_bytes: bytes) -> List[bytes]:
        """Split into zero-padded chunks (one all-zero chunk for empty input)."""
        count = chunk_count(len(file_bytes), self.chunk_size)
        chunks = []
        for i in range(count):
            piece = file_bytes[i * self.chunk_size:(i + 1) * self.chunk_size]
            chunks.append(piece.ljust(self.chunk_size, b"\x00"))
        return chunks

    def leaf_digests(self, file_bytes: bytes) -> List[bytes]:
        return [sha3_256(chunk) for chunk in self.chunk(file_bytes)]

    def build_tree(self, file_bytes: bytes) -> MerkleTree:
        """Build the commitment tree for file bytes."""
        tree = build_tree_from_leaves(self.leaf_digests(bytes(file_bytes)))
        tree.file_length = len(file_bytes)
        tree.chunk_size = self.chunk_size

        logger.debug("merkle_tree_built",
                     file_length=tree.file_length,
                     leaf_count=tree.leaf_count,
                     root=tree.root_hex)
        return tree

    @staticmethod
    def root_hex(tree: MerkleTree) -> str:
        """Canonical lowercase hex of the root (64 characters)."""
        return tree.root_hex

    @staticmethod
    def prove_inclusion(tree: MerkleTree, leaf_index: int) -> InclusionProof:
        return prove_inclusion(tree, leaf_index)

    @staticmethod
    def verify_inclusion(
        root: Union[str, bytes],
        leaf_index: int,
        leaf_digest: Union[str, bytes],
        proof: InclusionProof,
    ) -> bool:
        return verify_inclusion(root, leaf_index, leaf_digest, proof)
