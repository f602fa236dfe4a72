"""
FRI low-degree test and the Fiat-Shamir transcript it runs over.

Each FRI layer is committed with a SHA3 Merkle tree over its field
evaluations. Folding uses the even/odd split

    f(x) = f_e(x^2) + x * f_o(x^2)
    f'(x^2) = f_e(x^2) + gamma * f_o(x^2)

which halves both the domain and the degree bound. After log2(bound)
folds the polynomial is a constant, sent in the clear.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence

from ..commitment.merkle import (
    MerkleTree,
    build_tree_from_leaves,
    compute_root,
    prove_inclusion,
    tree_depth,
)
from ..crypto.primitives import DIGEST_SIZE, hex_to_digest, sha3_256
from .field import MODULUS, element_to_bytes, inv, root_of_unity

TWO_INV = inv(2)


class Transcript:
    """
    SHA3-256 Fiat-Shamir transcript.

    Every absorbed message is length-prefixed and chained into the state;
    challenges are squeezed by hashing the state with a counter.
    """

    def __init__(self, label: bytes):
        self._state = sha3_256(b"equinox-transcript" + label)
        self._counter = 0

    def absorb(self, data: bytes) -> None:
        self._state = sha3_256(self._state + len(data).to_bytes(8, "big") + data)
        self._counter = 0

    def absorb_element(self, value: int) -> None:
        self.absorb(element_to_bytes(value))

    def _squeeze(self) -> bytes:
        out = sha3_256(self._state + b"challenge" + self._counter.to_bytes(8, "big"))
        self._counter += 1
        return out

    def challenge_element(self) -> int:
        return int.from_bytes(self._squeeze(), "big") % MODULUS

    def challenge_index(self, bound: int) -> int:
        return int.from_bytes(self._squeeze(), "big") % bound


def commit_evaluations(values: Sequence[int]) -> MerkleTree:
    """Merkle commitment over field elements."""
    return build_tree_from_leaves([sha3_256(element_to_bytes(v)) for v in values])


@dataclass
class Opening:
    """One committed value with its authentication path."""
    index: int
    value: int
    path: List[bytes] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"index": self.index, "value": self.value, "path": [p.hex() for p in self.path]}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Opening":
        return cls(
            index=int(data["index"]),
            value=int(data["value"]),
            path=[hex_to_digest(p) for p in data["path"]],
        )


def open_at(tree: MerkleTree, values: Sequence[int], index: int) -> Opening:
    return Opening(index=index, value=values[index], path=prove_inclusion(tree, index).siblings)


def check_opening(root: bytes, size: int, opening: Opening, index: int) -> bool:
    """Authenticate an opening of a committed vector of the given size."""
    if opening.index != index or not 0 <= index < size:
        return False
    if not 0 <= opening.value < MODULUS:
        return False
    if len(opening.path) != tree_depth(size) or any(len(p) != DIGEST_SIZE for p in opening.path):
        return False
    leaf = sha3_256(element_to_bytes(opening.value))
    return compute_root(index, leaf, opening.path) == root


def fold_value(f_x: int, f_neg_x: int, x: int, gamma: int) -> int:
    """Evaluate the folded polynomial at x^2 from f(x) and f(-x)."""
    even = (f_x + f_neg_x) * TWO_INV % MODULUS
    odd = (f_x - f_neg_x) * TWO_INV % MODULUS * inv(x) % MODULUS
    return (even + gamma * odd) % MODULUS


def fold_layer(values: Sequence[int], domain_size: int, gamma: int) -> List[int]:
    half = domain_size // 2
    omega = root_of_unity(domain_size)
    folded = []
    x = 1
    for i in range(half):
        folded.append(fold_value(values[i], values[i + half], x, gamma))
        x = x * omega % MODULUS
    return folded


@dataclass
class FriCommitment:
    """Prover-side FRI state: every layer, its tree and the final constant."""
    layers: List[List[int]]
    trees: List[MerkleTree]
    final_value: int

    @property
    def roots(self) -> List[bytes]:
        return [t.root for t in self.trees]


def fri_commit(
    evaluations: Sequence[int],
    degree_bound: int,
    transcript: Transcript,
) -> FriCommitment:
    """
    Commit to evaluations of a polynomial of degree < degree_bound.

    The domain is the subgroup of size len(evaluations). Raises ValueError
    if the final layer is not constant (degree bound violated).
    """
    values = list(evaluations)
    domain_size = len(values)
    layers, trees = [], []

    rounds = degree_bound.bit_length() - 1
    for _ in range(rounds):
        tree = commit_evaluations(values)
        layers.append(values)
        trees.append(tree)
        transcript.absorb(tree.root)
        gamma = transcript.challenge_element()
        values = fold_layer(values, domain_size, gamma)
        domain_size //= 2

    if any(v != values[0] for v in values):
        raise ValueError("FRI final layer is not constant; degree bound exceeded")

    final_value = values[0]
    transcript.absorb_element(final_value)
    return FriCommitment(layers=layers, trees=trees, final_value=final_value)


def fri_open(commitment: FriCommitment, index: int) -> List[Dict[str, Any]]:
    """Openings of every layer at index and its negation."""
    rounds = []
    position = index
    for values, tree in zip(commitment.layers, commitment.trees):
        size = len(values)
        position %= size
        sibling = (position + size // 2) % size
        rounds.append({
            "value": open_at(tree, values, position).to_dict(),
            "sibling": open_at(tree, values, sibling).to_dict(),
        })
    return rounds


def fri_verify_query(
    roots: Sequence[bytes],
    gammas: Sequence[int],
    final_value: int,
    domain_size: int,
    index: int,
    rounds: Sequence[Dict[str, Any]],
) -> int:
    """
    Check one FRI query chain.

    Returns the layer-0 value at index so the caller can tie it to the
    composition polynomial; raises ValueError on any inconsistency.
    """
    if len(rounds) != len(roots):
        raise ValueError("FRI round count mismatch")

    size = domain_size
    position = index % size
    expected = None
    first_value = None

    for layer, (root, gamma, round_data) in enumerate(zip(roots, gammas, rounds)):
        opening = Opening.from_dict(round_data["value"])
        sibling = Opening.from_dict(round_data["sibling"])
        sibling_position = (position + size // 2) % size

        if not check_opening(root, size, opening, position):
            raise ValueError(f"FRI layer {layer} opening failed")
        if not check_opening(root, size, sibling, sibling_position):
            raise ValueError(f"FRI layer {layer} sibling opening failed")
        if expected is not None and opening.value != expected:
            raise ValueError(f"FRI layer {layer} inconsistent with previous fold")
        if first_value is None:
            first_value = opening.value

        x = pow(root_of_unity(size), position, MODULUS)
        expected = fold_value(opening.value, sibling.value, x, gamma)

        size //= 2
        position %= size

    if expected != final_value:
        raise ValueError("FRI final value mismatch")
    return first_value
