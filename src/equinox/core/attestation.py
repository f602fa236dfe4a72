"""
File Attestations

An attestation binds three things to one Merkle root:
- a canonical manifest describing the file (root, length, chunking, name)
- a hybrid Ed25519 + ML-DSA signature over the canonical manifest
- optionally, a succinct proof generated under the same root

Verification recomputes the root from the file bytes, so an attestation
never vouches for bytes it was not produced over.
"""

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog

from ..commitment.merkle import MerkleCommitter
from ..crypto.hybrid import (
    HybridSignature,
    HybridVerificationResult,
    signer_address,
    verify_hybrid_signature,
)
from ..errors import InvalidFormatError
from ..proofs.stark import HASH_ALGORITHM, ProofArtifact, ProofGenerator

logger = structlog.get_logger()


@dataclass
class FileManifest:
    """What is being attested. Signed in canonical form."""
    root: str
    file_length: int
    chunk_size: int
    signer: str
    name: Optional[str] = None
    content_type: Optional[str] = None
    batch_index: Optional[int] = None
    hash_algorithm: str = HASH_ALGORITHM
    signed_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def __post_init__(self):
        if self.file_length < 0:
            raise InvalidFormatError("file_length must not be negative")
        if self.chunk_size <= 0:
            raise InvalidFormatError("chunk_size must be positive")
        if self.batch_index is not None and self.batch_index < 0:
            raise InvalidFormatError("batch_index must not be negative")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "root": self.root,
            "file_length": self.file_length,
            "chunk_size": self.chunk_size,
            "signer": self.signer,
            "name": self.name,
            "content_type": self.content_type,
            "batch_index": self.batch_index,
            "hash_algorithm": self.hash_algorithm,
            "signed_at": self.signed_at,
        }

    def canonicalize(self) -> str:
        """Sorted keys, no whitespace; absent optional fields are dropped."""
        canonical_dict = {k: v for k, v in self.to_dict().items() if v is not None}
        return json.dumps(canonical_dict, sort_keys=True, separators=(',', ':'))

    def proof_metadata(self) -> Dict[str, str]:
        """Descriptive fields committed into a proof statement."""
        metadata = {}
        if self.name is not None:
            metadata["name"] = self.name
        if self.content_type is not None:
            metadata["content_type"] = self.content_type
        return metadata

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FileManifest":
        try:
            batch_index = data.get("batch_index")
            return cls(
                root=str(data["root"]),
                file_length=int(data["file_length"]),
                chunk_size=int(data["chunk_size"]),
                signer=str(data["signer"]),
                name=data.get("name"),
                content_type=data.get("content_type"),
                batch_index=int(batch_index) if batch_index is not None else None,
                hash_algorithm=str(data.get("hash_algorithm", HASH_ALGORITHM)),
                signed_at=str(data["signed_at"]),
            )
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise InvalidFormatError(f"Malformed file manifest: {e}") from None


@dataclass
class FileAttestation:
    """Manifest, hybrid signature and optional proof."""
    manifest: FileManifest
    signature: HybridSignature
    proof: Optional[ProofArtifact] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "manifest": self.manifest.to_dict(),
            "signature": self.signature.to_dict(),
            "proof": self.proof.to_dict() if self.proof else None,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), sort_keys=True)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FileAttestation":
        try:
            manifest = data["manifest"]
            signature = data["signature"]
        except (KeyError, TypeError) as e:
            raise InvalidFormatError(f"Malformed attestation: {e}") from None
        proof = data.get("proof")
        return cls(
            manifest=FileManifest.from_dict(manifest),
            signature=HybridSignature.from_dict(signature),
            proof=ProofArtifact.from_dict(proof) if proof else None,
        )

    @classmethod
    def from_json(cls, text: str) -> "FileAttestation":
        try:
            data = json.loads(text)
        except ValueError:
            raise InvalidFormatError("Attestation is not valid JSON") from None
        return cls.from_dict(data)


@dataclass
class AttestationVerification:
    """Result of checking an attestation against file bytes."""
    valid: bool
    root_matches: bool
    signer_matches: bool
    signature: HybridVerificationResult
    proof_valid: Optional[bool] = None  # None when no proof was attached
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "root_matches": self.root_matches,
            "signer_matches": self.signer_matches,
            "signature": self.signature.to_dict(),
            "proof_valid": self.proof_valid,
            "error": self.error,
        }


def verify_attestation(
    file_bytes: bytes,
    attestation: FileAttestation,
    proof_generator: Optional[ProofGenerator] = None,
) -> AttestationVerification:
    """
    Check an attestation against file bytes.

    Valid only if the recomputed root matches the manifest, the manifest
    names the address of the classical key that signed it, the hybrid
    signature verifies over the canonical manifest, and any attached proof
    verifies under the same root and file length.
    """
    manifest = attestation.manifest
    errors = []

    committer = MerkleCommitter(manifest.chunk_size)
    root = committer.build_tree(bytes(file_bytes)).root_hex
    root_matches = root == manifest.root and len(file_bytes) == manifest.file_length
    if not root_matches:
        errors.append("Merkle root mismatch")

    signer_matches = manifest.signer == signer_address(attestation.signature.classical_public_key)
    if not signer_matches:
        errors.append("Signer mismatch")

    signature = verify_hybrid_signature(manifest.canonicalize(), attestation.signature)
    if not signature.valid:
        errors.append(f"Signature: {signature.error}")

    proof_valid = None
    proof = attestation.proof
    if proof is not None:
        generator = proof_generator or ProofGenerator(committer=committer)
        try:
            proof_valid = (
                proof.commitment == manifest.root
                and proof.statement.file_length == manifest.file_length
                and generator.verify_proof(proof.proof, manifest.root, proof.statement)
            )
        except InvalidFormatError:
            proof_valid = False
        if not proof_valid:
            errors.append("Proof invalid")

    valid = root_matches and signer_matches and signature.valid and proof_valid is not False

    logger.info("attestation_verified",
                root=manifest.root,
                valid=valid,
                root_matches=root_matches,
                signer_matches=signer_matches,
                signature_valid=signature.valid,
                proof_valid=proof_valid)

    return AttestationVerification(
        valid=valid,
        root_matches=root_matches,
        signer_matches=signer_matches,
        signature=signature,
        proof_valid=proof_valid,
        error="; ".join(errors) if errors else None,
    )
