"""
Succinct proofs bound to a file's Merkle commitment.

The prover shows knowledge of the leaf digests under a committed SHA3
Merkle root without sending the file. Protocol (non-interactive via a
SHA3 Fiat-Shamir transcript seeded with the commitment and statement):

1. Trace column A holds one field element per leaf digest, followed by
   random blinding rows. A is low-degree extended over a domain `blowup`
   times larger and committed with a Merkle tree.
2. Challenge beta. Column C accumulates C[0] = 0, C[i+1] = beta*C[i] + A[i];
   its last row is the public output. C is extended and committed.
3. Challenges alpha_0..alpha_4 combine the transition quotient, both
   boundary quotients and the two trace columns into one composition
   polynomial of degree < trace length, whose low degree is shown with FRI.
4. Query positions are squeezed from the transcript. Constraint queries
   open A, C and C(w*x) off the trace domain and check the composition
   against FRI layer 0. Leaf queries open A on trace rows next to a
   Merkle inclusion path of the leaf digest under the committed root.

Only leaf digests at queried rows are revealed, never chunk bytes.
"""

import asyncio
import base64
import json
import secrets
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union

import structlog

from ..commitment.merkle import (
    InclusionProof,
    MerkleCommitter,
    MerkleTree,
    chunk_count,
    prove_inclusion,
    verify_inclusion,
)
from ..config import ProofConfig
from ..crypto.primitives import digest_to_hex, hex_to_digest
from ..errors import InvalidFormatError, ProofGenerationError
from .field import (
    MODULUS,
    bytes_to_element,
    evaluate_on_domain,
    interpolate,
    inv,
    next_power_of_two,
    poly_add,
    poly_compose_scalar,
    poly_div_linear,
    poly_div_vanishing,
    poly_mul_linear,
    poly_scale,
    root_of_unity,
)
from .fri import (
    Opening,
    Transcript,
    check_opening,
    commit_evaluations,
    fri_commit,
    fri_open,
    fri_verify_query,
    open_at,
)

logger = structlog.get_logger()

PROOF_SYSTEM = "equinox-fri-v1"
HASH_ALGORITHM = "sha3-256"
PROOF_VERSION = 1
MIN_TRACE_LENGTH = 8
NUM_COMPOSITION_TERMS = 5


@dataclass
class ProofStatement:
    """Public parameters a proof is bound to."""
    file_length: int
    chunk_size: int
    blowup: int
    num_queries: int
    blinding_rows: int
    hash_algorithm: str = HASH_ALGORITHM
    proof_system: str = PROOF_SYSTEM
    field_modulus: int = MODULUS
    metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def leaf_count(self) -> int:
        return chunk_count(self.file_length, self.chunk_size)

    @property
    def trace_length(self) -> int:
        return next_power_of_two(max(self.leaf_count + self.blinding_rows + 1, MIN_TRACE_LENGTH))

    @property
    def domain_size(self) -> int:
        return self.trace_length * self.blowup

    def to_dict(self) -> Dict[str, Any]:
        return {
            "file_length": self.file_length,
            "chunk_size": self.chunk_size,
            "blowup": self.blowup,
            "num_queries": self.num_queries,
            "blinding_rows": self.blinding_rows,
            "hash_algorithm": self.hash_algorithm,
            "proof_system": self.proof_system,
            "field_modulus": self.field_modulus,
            "metadata": dict(self.metadata),
        }

    def canonical(self) -> bytes:
        return json.dumps(self.to_dict(), sort_keys=True, separators=(',', ':')).encode('utf-8')

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProofStatement":
        try:
            metadata = data.get("metadata") or {}
            return cls(
                file_length=int(data["file_length"]),
                chunk_size=int(data["chunk_size"]),
                blowup=int(data["blowup"]),
                num_queries=int(data["num_queries"]),
                blinding_rows=int(data["blinding_rows"]),
                hash_algorithm=str(data.get("hash_algorithm", HASH_ALGORITHM)),
                proof_system=str(data.get("proof_system", PROOF_SYSTEM)),
                field_modulus=int(data.get("field_modulus", MODULUS)),
                metadata={str(k): str(v) for k, v in metadata.items()},
            )
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise InvalidFormatError(f"Malformed proof statement: {e}") from None

    def validate(self) -> None:
        """Reject statements this verifier cannot check."""
        if self.hash_algorithm != HASH_ALGORITHM or self.proof_system != PROOF_SYSTEM:
            raise InvalidFormatError("Unsupported proof system or hash algorithm")
        if self.field_modulus != MODULUS:
            raise InvalidFormatError("Unsupported field modulus")
        if self.file_length < 0 or self.chunk_size <= 0:
            raise InvalidFormatError("Invalid file length or chunk size")
        if self.blowup < 2 or self.blowup & (self.blowup - 1):
            raise InvalidFormatError("blowup must be a power of two >= 2")
        if self.num_queries < 1 or self.blinding_rows < 1:
            raise InvalidFormatError("num_queries and blinding_rows must be positive")


@dataclass
class ProofArtifact:
    """A proof with the commitment and statement it was generated under."""
    proof: bytes
    commitment: str  # Merkle root hex
    statement: ProofStatement

    def to_dict(self) -> Dict[str, Any]:
        return {
            "proof": base64.b64encode(self.proof).decode('utf-8'),
            "commitment": self.commitment,
            "statement": self.statement.to_dict(),
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProofArtifact":
        try:
            proof = base64.b64decode(data["proof"], validate=True)
            commitment = data["commitment"]
            statement = data["statement"]
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidFormatError(f"Malformed proof artifact: {e}") from None
        return cls(
            proof=proof,
            commitment=digest_to_hex(hex_to_digest(commitment)),
            statement=ProofStatement.from_dict(statement),
        )


class _QueryPlan:
    """Query positions derived from the transcript after all commitments."""

    def __init__(self, transcript: Transcript, statement: ProofStatement):
        domain = statement.domain_size
        blowup = statement.blowup
        self.constraint_indices = []
        for _ in range(statement.num_queries):
            index = transcript.challenge_index(domain)
            if index % blowup == 0:
                index = (index + 1) % domain  # stay off the trace domain
            self.constraint_indices.append(index)

        leaf_count = statement.leaf_count
        self.leaf_rows = [
            transcript.challenge_index(leaf_count)
            for _ in range(min(statement.num_queries, leaf_count))
        ]


def _start_transcript(commitment: bytes, statement: ProofStatement) -> Transcript:
    transcript = Transcript(PROOF_SYSTEM.encode('utf-8'))
    transcript.absorb(commitment)
    transcript.absorb(statement.canonical())
    return transcript


def _composition_at(
    x: int,
    a_x: int,
    c_x: int,
    c_next: int,
    beta: int,
    output: int,
    alphas: List[int],
    trace_length: int,
) -> int:
    """Composition polynomial value at a point off the trace domain."""
    last_row = pow(root_of_unity(trace_length), trace_length - 1, MODULUS)
    vanishing = (pow(x, trace_length, MODULUS) - 1) % MODULUS

    transition = (c_next - beta * c_x - a_x) % MODULUS
    transition = transition * (x - last_row) % MODULUS * inv(vanishing) % MODULUS
    first_boundary = c_x * inv((x - 1) % MODULUS) % MODULUS
    last_boundary = (c_x - output) % MODULUS * inv((x - last_row) % MODULUS) % MODULUS

    terms = [transition, first_boundary, last_boundary, a_x, c_x]
    return sum(alpha * term for alpha, term in zip(alphas, terms)) % MODULUS


class ProofGenerator:
    """
    Generates and verifies FRI-based proofs over file commitments.

    Proof generation is an optional hardening layer: callers should treat
    ProofGenerationError as recoverable and continue without a proof.
    """

    def __init__(
        self,
        config: Optional[ProofConfig] = None,
        committer: Optional[MerkleCommitter] = None,
    ):
        self.config = config or ProofConfig()
        self.committer = committer or MerkleCommitter()

    def statement_for(
        self,
        file_bytes: bytes,
        metadata: Optional[Dict[str, str]] = None,
    ) -> ProofStatement:
        """Default statement for file bytes under this generator's config."""
        return ProofStatement(
            file_length=len(file_bytes),
            chunk_size=self.committer.chunk_size,
            blowup=self.config.blowup,
            num_queries=self.config.num_queries,
            blinding_rows=self.config.blinding_rows,
            metadata=dict(metadata or {}),
        )

    # ------------------------------------------------------------------
    # Proving
    # ------------------------------------------------------------------

    def generate_proof(
        self,
        file_bytes: bytes,
        statement: Optional[ProofStatement] = None,
    ) -> ProofArtifact:
        """
        Prove knowledge of the leaves under the file's Merkle root.

        Raises ProofGenerationError for inputs above max_file_size or when
        the statement does not describe the input.
        """
        file_bytes = bytes(file_bytes)
        if len(file_bytes) > self.config.max_file_size:
            raise ProofGenerationError(
                f"Input of {len(file_bytes)} bytes exceeds proof limit "
                f"of {self.config.max_file_size} bytes"
            )

        statement = statement or self.statement_for(file_bytes)
        try:
            statement.validate()
        except InvalidFormatError as e:
            raise ProofGenerationError(str(e)) from e
        if statement.file_length != len(file_bytes):
            raise ProofGenerationError("Statement file_length does not match input")

        committer = self.committer
        if statement.chunk_size != committer.chunk_size:
            committer = MerkleCommitter(statement.chunk_size)
        tree = committer.build_tree(file_bytes)

        try:
            proof = self._prove(tree, statement)
        except (ValueError, ZeroDivisionError) as e:
            raise ProofGenerationError(f"Proving failed: {e}") from e

        blob = json.dumps(proof, sort_keys=True, separators=(',', ':')).encode('utf-8')

        logger.info("proof_generated",
                    commitment=tree.root_hex,
                    file_length=statement.file_length,
                    trace_length=statement.trace_length,
                    proof_size=len(blob))

        return ProofArtifact(proof=blob, commitment=tree.root_hex, statement=statement)

    async def generate_proof_async(
        self,
        file_bytes: bytes,
        statement: Optional[ProofStatement] = None,
    ) -> ProofArtifact:
        """Run generate_proof in a worker thread."""
        return await asyncio.to_thread(self.generate_proof, file_bytes, statement)

    def _prove(self, tree: MerkleTree, statement: ProofStatement) -> Dict[str, Any]:
        root = tree.root
        leaves = tree.leaves
        n = statement.trace_length
        blowup = statement.blowup
        domain = statement.domain_size
        leaf_count = len(leaves)
        omega = root_of_unity(n)
        last_row = pow(omega, n - 1, MODULUS)

        transcript = _start_transcript(root, statement)

        # Column A: leaf elements, then blinding rows
        column_a = [bytes_to_element(leaf) for leaf in leaves]
        column_a += [secrets.randbelow(MODULUS) for _ in range(n - leaf_count)]
        a_coeffs = interpolate(column_a)
        a_evals = evaluate_on_domain(a_coeffs, domain)
        a_tree = commit_evaluations(a_evals)
        transcript.absorb(a_tree.root)
        beta = transcript.challenge_element()

        # Column C: running accumulator
        column_c = [0] * n
        for i in range(n - 1):
            column_c[i + 1] = (beta * column_c[i] + column_a[i]) % MODULUS
        output = column_c[-1]
        c_coeffs = interpolate(column_c)
        c_evals = evaluate_on_domain(c_coeffs, domain)
        c_tree = commit_evaluations(c_evals)
        transcript.absorb(c_tree.root)
        transcript.absorb_element(output)
        alphas = [transcript.challenge_element() for _ in range(NUM_COMPOSITION_TERMS)]

        # Transition: (C(wx) - beta*C(x) - A(x)) * (x - w^(n-1)) / (x^n - 1)
        numerator = poly_add(
            poly_compose_scalar(c_coeffs, omega),
            poly_add(poly_scale(c_coeffs, MODULUS - beta), poly_scale(a_coeffs, MODULUS - 1)),
        )
        transition, remainder = poly_div_vanishing(poly_mul_linear(numerator, last_row), n)
        if any(remainder):
            raise ValueError("transition constraint not satisfied")

        first_boundary, rem_first = poly_div_linear(c_coeffs, 1)
        last_boundary, rem_last = poly_div_linear(
            poly_add(c_coeffs, [MODULUS - output]), last_row
        )
        if rem_first or rem_last:
            raise ValueError("boundary constraint not satisfied")

        composition: List[int] = []
        for alpha, term in zip(alphas, [transition, first_boundary, last_boundary, a_coeffs, c_coeffs]):
            composition = poly_add(composition, poly_scale(term, alpha))
        composition_evals = evaluate_on_domain(composition, domain)

        fri = fri_commit(composition_evals, n, transcript)
        plan = _QueryPlan(transcript, statement)

        queries = []
        for index in plan.constraint_indices:
            queries.append({
                "a": open_at(a_tree, a_evals, index).to_dict(),
                "c": open_at(c_tree, c_evals, index).to_dict(),
                "c_next": open_at(c_tree, c_evals, (index + blowup) % domain).to_dict(),
                "fri": fri_open(fri, index),
            })

        leaf_queries = []
        for row in plan.leaf_rows:
            leaf_queries.append({
                "row": row,
                "leaf": leaves[row].hex(),
                "inclusion": prove_inclusion(tree, row).to_dict(),
                "a": open_at(a_tree, a_evals, row * blowup).to_dict(),
            })

        return {
            "version": PROOF_VERSION,
            "commitment": root.hex(),
            "statement": statement.to_dict(),
            "trace_roots": {"a": a_tree.root.hex(), "c": c_tree.root.hex()},
            "output": output,
            "fri_roots": [r.hex() for r in fri.roots],
            "fri_final": fri.final_value,
            "queries": queries,
            "leaf_queries": leaf_queries,
        }

    # ------------------------------------------------------------------
    # Verification
    # ------------------------------------------------------------------

    def verify_proof(
        self,
        proof: Union[bytes, ProofArtifact],
        commitment: Union[str, bytes],
        statement: ProofStatement,
    ) -> bool:
        """
        Verify a proof against a commitment and statement.

        Deterministic. A malformed commitment raises InvalidFormatError;
        every problem with the proof itself yields False.
        """
        commitment_bytes = hex_to_digest(commitment)
        if isinstance(proof, ProofArtifact):
            proof = proof.proof

        try:
            statement.validate()
            data = json.loads(bytes(proof).decode('utf-8'))
            self._verify(data, commitment_bytes, statement)
        except (InvalidFormatError, ValueError, KeyError, TypeError,
                IndexError, AttributeError, ZeroDivisionError) as e:
            logger.info("proof_rejected", commitment=commitment_bytes.hex(), reason=str(e))
            return False

        logger.debug("proof_verified", commitment=commitment_bytes.hex())
        return True

    def _verify(self, data: Dict[str, Any], root: bytes, statement: ProofStatement) -> None:
        if data["version"] != PROOF_VERSION:
            raise ValueError("unsupported proof version")
        if hex_to_digest(data["commitment"]) != root:
            raise ValueError("proof is bound to a different commitment")
        if ProofStatement.from_dict(data["statement"]).canonical() != statement.canonical():
            raise ValueError("proof is bound to a different statement")

        n = statement.trace_length
        blowup = statement.blowup
        domain = statement.domain_size
        omega_domain = root_of_unity(domain)

        transcript = _start_transcript(root, statement)
        a_root = hex_to_digest(data["trace_roots"]["a"])
        transcript.absorb(a_root)
        beta = transcript.challenge_element()

        c_root = hex_to_digest(data["trace_roots"]["c"])
        output = int(data["output"])
        if not 0 <= output < MODULUS:
            raise ValueError("output out of field range")
        transcript.absorb(c_root)
        transcript.absorb_element(output)
        alphas = [transcript.challenge_element() for _ in range(NUM_COMPOSITION_TERMS)]

        fri_roots = [hex_to_digest(r) for r in data["fri_roots"]]
        if len(fri_roots) != n.bit_length() - 1:
            raise ValueError("wrong number of FRI layers")
        gammas = []
        for fri_root in fri_roots:
            transcript.absorb(fri_root)
            gammas.append(transcript.challenge_element())
        fri_final = int(data["fri_final"])
        if not 0 <= fri_final < MODULUS:
            raise ValueError("FRI final value out of field range")
        transcript.absorb_element(fri_final)

        plan = _QueryPlan(transcript, statement)
        queries = data["queries"]
        if len(queries) != len(plan.constraint_indices):
            raise ValueError("wrong number of constraint queries")

        for index, query in zip(plan.constraint_indices, queries):
            a_open = Opening.from_dict(query["a"])
            c_open = Opening.from_dict(query["c"])
            c_next = Opening.from_dict(query["c_next"])
            if not check_opening(a_root, domain, a_open, index):
                raise ValueError("trace column A opening failed")
            if not check_opening(c_root, domain, c_open, index):
                raise ValueError("trace column C opening failed")
            if not check_opening(c_root, domain, c_next, (index + blowup) % domain):
                raise ValueError("trace column C next-row opening failed")

            x = pow(omega_domain, index, MODULUS)
            expected = _composition_at(
                x, a_open.value, c_open.value, c_next.value,
                beta, output, alphas, n,
            )
            layer0 = fri_verify_query(fri_roots, gammas, fri_final, domain, index, query["fri"])
            if layer0 != expected:
                raise ValueError("composition does not match FRI layer 0")

        leaf_queries = data["leaf_queries"]
        if len(leaf_queries) != len(plan.leaf_rows):
            raise ValueError("wrong number of leaf queries")

        for row, query in zip(plan.leaf_rows, leaf_queries):
            if int(query["row"]) != row:
                raise ValueError("leaf query row mismatch")
            leaf = hex_to_digest(query["leaf"])
            inclusion = InclusionProof.from_dict(query["inclusion"])
            if inclusion.leaf_count != statement.leaf_count:
                raise ValueError("inclusion proof leaf count mismatch")
            if not verify_inclusion(root, row, leaf, inclusion):
                raise ValueError("leaf not included under commitment")
            a_open = Opening.from_dict(query["a"])
            if not check_opening(a_root, domain, a_open, row * blowup):
                raise ValueError("trace row opening failed")
            if a_open.value != bytes_to_element(leaf):
                raise ValueError("trace row does not match leaf digest")
