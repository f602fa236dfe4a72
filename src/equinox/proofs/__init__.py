"""FRI-based succinct proofs bound to a Merkle commitment."""

from .stark import ProofArtifact, ProofGenerator, ProofStatement

__all__ = ["ProofArtifact", "ProofGenerator", "ProofStatement"]
