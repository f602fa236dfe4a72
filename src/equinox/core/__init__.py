"""
EQUINOX - Core Module

File attestations: manifest, hybrid signature and optional proof
bound to one Merkle root.
"""

from .attestation import AttestationVerification, FileAttestation, FileManifest, verify_attestation

__all__ = [
    "AttestationVerification",
    "FileAttestation",
    "FileManifest",
    "verify_attestation",
]
