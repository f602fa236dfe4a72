"""
Hybrid Signatures: Ed25519 + ML-DSA

Both legs sign the identical byte string

    b"equinox-hybrid-v1" || len(nonce):4 || nonce || message

so a signature is bound to its nonce and the message bytes are encoded
exactly once. A hybrid signature is valid only when both legs verify.
"""

import base64
import itertools
import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Union

import structlog

from ..commitment.merkle import MerkleCommitter
from ..errors import (
    InvalidFormatError,
    KeysNotInitializedError,
    NoCurrentKeyError,
    ProofGenerationError,
)
from ..proofs.stark import ProofGenerator
from .keys import KeyUsage, QuantumKeyStore
from .primitives import hex_to_bytes, random_bytes, sha3_256
from .signer import (
    Ed25519Signer,
    SignatureAlgorithm,
    algorithm_for_public_key,
    ml_dsa_verify,
    parse_algorithm,
    verify_ed25519,
)

logger = structlog.get_logger()

HYBRID_DOMAIN = b"equinox-hybrid-v1"
NONCE_RANDOM_BYTES = 16

Message = Union[str, bytes]


def encode_message(message: Message) -> bytes:
    """Encode a message once; str is UTF-8."""
    if isinstance(message, str):
        return message.encode('utf-8')
    return bytes(message)


def signing_payload(message: bytes, nonce: bytes) -> bytes:
    """The exact bytes both signature legs cover."""
    return HYBRID_DOMAIN + len(nonce).to_bytes(4, 'big') + nonce + message


def signer_address(classical_public_key: bytes) -> str:
    """Account-style identifier: last 20 bytes of SHA3(classical public key)."""
    return "0x" + sha3_256(bytes(classical_public_key))[-20:].hex()


def _pack(fields: List[bytes]) -> bytes:
    return b"".join(len(f).to_bytes(4, 'big') + f for f in fields)


def _unpack(data: bytes, count: int) -> List[bytes]:
    fields = []
    offset = 0
    for _ in range(count):
        if offset + 4 > len(data):
            raise InvalidFormatError("Truncated hybrid signature")
        length = int.from_bytes(data[offset:offset + 4], 'big')
        offset += 4
        if offset + length > len(data):
            raise InvalidFormatError("Truncated hybrid signature")
        fields.append(data[offset:offset + length])
        offset += length
    if offset != len(data):
        raise InvalidFormatError("Trailing bytes after hybrid signature")
    return fields


@dataclass
class HybridSignature:
    """A classical and a post-quantum signature over one payload and nonce."""
    classical_signature: bytes
    post_quantum_signature: bytes
    public_key: bytes  # ML-DSA public key
    classical_public_key: bytes
    algorithm: SignatureAlgorithm
    key_id: str
    nonce: bytes

    def to_dict(self) -> Dict[str, Any]:
        return {
            "classical_signature": self.classical_signature.hex(),
            "post_quantum_signature": self.post_quantum_signature.hex(),
            "public_key": self.public_key.hex(),
            "classical_public_key": self.classical_public_key.hex(),
            "algorithm": self.algorithm.value,
            "key_id": self.key_id,
            "nonce": self.nonce.hex(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HybridSignature":
        try:
            return cls(
                classical_signature=hex_to_bytes(data["classical_signature"]),
                post_quantum_signature=hex_to_bytes(data["post_quantum_signature"]),
                public_key=hex_to_bytes(data["public_key"]),
                classical_public_key=hex_to_bytes(data["classical_public_key"]),
                algorithm=parse_algorithm(data["algorithm"]),
                key_id=str(data["key_id"]),
                nonce=hex_to_bytes(data["nonce"]),
            )
        except (KeyError, TypeError) as e:
            raise InvalidFormatError(f"Malformed hybrid signature: {e}") from None

    def to_bytes(self) -> bytes:
        """Binary wire form: every field 4-byte big-endian length-prefixed."""
        return _pack([
            self.algorithm.value.encode('utf-8'),
            self.key_id.encode('utf-8'),
            self.nonce,
            self.classical_public_key,
            self.classical_signature,
            self.public_key,
            self.post_quantum_signature,
        ])

    @classmethod
    def from_bytes(cls, data: bytes) -> "HybridSignature":
        algorithm, key_id, nonce, classical_pk, classical_sig, pq_pk, pq_sig = _unpack(bytes(data), 7)
        try:
            algorithm_name = algorithm.decode('utf-8')
            key_id_str = key_id.decode('utf-8')
        except UnicodeDecodeError:
            raise InvalidFormatError("Hybrid signature text field is not UTF-8") from None
        return cls(
            classical_signature=classical_sig,
            post_quantum_signature=pq_sig,
            public_key=pq_pk,
            classical_public_key=classical_pk,
            algorithm=parse_algorithm(algorithm_name),
            key_id=key_id_str,
            nonce=nonce,
        )

    def to_b64(self) -> str:
        return base64.b64encode(self.to_bytes()).decode('utf-8')


@dataclass
class HybridVerificationResult:
    """Overall verdict plus the state of each leg."""
    valid: bool
    classical_valid: bool
    post_quantum_valid: bool
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "valid": self.valid,
            "classical_valid": self.classical_valid,
            "post_quantum_valid": self.post_quantum_valid,
            "error": self.error,
        }


@dataclass
class SignerData:
    """Read-only identity and status snapshot of a hybrid signer."""
    address: str
    has_pq_keys: bool
    post_quantum_public_key: Optional[bytes]
    key_id: Optional[str] = None
    algorithm: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "has_pq_keys": self.has_pq_keys,
            "post_quantum_public_key": (
                self.post_quantum_public_key.hex() if self.post_quantum_public_key else None
            ),
            "key_id": self.key_id,
            "algorithm": self.algorithm,
        }


def verify_hybrid_signature(message: Message, signature: HybridSignature) -> HybridVerificationResult:
    """
    Verify both legs against the keys carried in the signature.

    Never raises; the error names the failed component(s).
    """
    payload = signing_payload(encode_message(message), bytes(signature.nonce))

    classical_valid = verify_ed25519(signature.classical_public_key, payload, signature.classical_signature)

    post_quantum_valid = False
    if algorithm_for_public_key(signature.public_key) == signature.algorithm:
        post_quantum_valid = ml_dsa_verify(
            signature.algorithm, signature.public_key, payload, signature.post_quantum_signature
        )

    errors = []
    if not classical_valid:
        errors.append("Ed25519: invalid")
    if not post_quantum_valid:
        errors.append(f"{signature.algorithm.value}: invalid")

    return HybridVerificationResult(
        valid=classical_valid and post_quantum_valid,
        classical_valid=classical_valid,
        post_quantum_valid=post_quantum_valid,
        error="; ".join(errors) if errors else None,
    )


class HybridSigner:
    """
    Hybrid signer: a classical Ed25519 identity plus post-quantum keys
    borrowed from a QuantumKeyStore for the duration of each signing call.

    Secret ML-DSA material is never cached here.
    """

    def __init__(
        self,
        key_store: Optional[QuantumKeyStore] = None,
        classical_private_key: Optional[bytes] = None,
        default_algorithm: Union[str, SignatureAlgorithm, None] = None,
        committer: Optional[MerkleCommitter] = None,
        proof_generator: Optional[ProofGenerator] = None,
    ):
        self.key_store = key_store or QuantumKeyStore()
        self.default_algorithm = parse_algorithm(
            default_algorithm or self.key_store.config.default_algorithm
        )
        self.committer = committer or MerkleCommitter()
        self.proof_generator = proof_generator or ProofGenerator(committer=self.committer)

        self._classical = Ed25519Signer(classical_private_key)
        self._setup_lock = threading.Lock()
        self._nonce_counter = itertools.count()

    @property
    def classical_public_key(self) -> bytes:
        return self._classical.get_public_key()

    @property
    def address(self) -> str:
        return signer_address(self.classical_public_key)

    # ------------------------------------------------------------------
    # Key lifecycle
    # ------------------------------------------------------------------

    def has_quantum_keys(self) -> bool:
        return self.key_store.get_current_key() is not None

    def setup_quantum_keys(self) -> None:
        """Generate post-quantum keys unless they already exist."""
        with self._setup_lock:
            if self.has_quantum_keys():
                return
            keypair = self.key_store.generate_key_pair(self.default_algorithm, KeyUsage.SIGNING)

        logger.info("quantum_keys_setup", address=self.address, key_id=keypair.key_id)

    def reset_quantum_keys(self) -> None:
        """Destroy the post-quantum keys. Signing fails until setup runs again."""
        with self._setup_lock:
            self.key_store.reset()

        logger.warning("quantum_keys_reset", address=self.address)

    def get_nonce(self) -> bytes:
        """
        Fresh 32-byte nonce.

        Format: counter (8) || time_ns (8) || random (16)
        """
        counter = next(self._nonce_counter)
        return (
            counter.to_bytes(8, 'big')
            + time.time_ns().to_bytes(8, 'big')
            + random_bytes(NONCE_RANDOM_BYTES)
        )

    def get_signer_data(self) -> SignerData:
        current = self.key_store.get_current_key()
        return SignerData(
            address=self.address,
            has_pq_keys=current is not None,
            post_quantum_public_key=current.public_key if current else None,
            key_id=current.key_id if current else None,
            algorithm=current.algorithm.value if current else None,
        )

    # ------------------------------------------------------------------
    # Signing
    # ------------------------------------------------------------------

    def sign_data(self, message: Message, nonce: Union[str, bytes]) -> HybridSignature:
        """
        Sign message under nonce with both legs.

        Raises KeysNotInitializedError when no post-quantum key exists and
        InvalidFormatError for an empty nonce.
        """
        nonce_bytes = encode_message(nonce)
        if not nonce_bytes:
            raise InvalidFormatError("nonce must not be empty")
        payload = signing_payload(encode_message(message), nonce_bytes)

        try:
            pq_result = self.key_store.sign_detached(payload)
        except NoCurrentKeyError:
            raise KeysNotInitializedError(
                "Quantum keys not initialized; call setup_quantum_keys() first"
            ) from None

        classical_result = self._classical.sign(payload)

        logger.debug("hybrid_signed",
                     address=self.address,
                     key_id=pq_result.key_id,
                     algorithm=pq_result.algorithm.value)

        return HybridSignature(
            classical_signature=classical_result.signature,
            post_quantum_signature=pq_result.signature,
            public_key=pq_result.public_key,
            classical_public_key=classical_result.public_key,
            algorithm=pq_result.algorithm,
            key_id=pq_result.key_id,
            nonce=nonce_bytes,
        )

    def verify_signature(self, message: Message, signature: HybridSignature) -> HybridVerificationResult:
        return verify_hybrid_signature(message, signature)

    def is_own_signature(self, signature: HybridSignature) -> bool:
        """True if both public keys belong to this signer (archived keys included)."""
        if signature.classical_public_key != self.classical_public_key:
            return False
        keypair = self.key_store.get_key(signature.key_id)
        return keypair is not None and keypair.public_key == signature.public_key

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def sign_file(
        self,
        file_bytes: bytes,
        nonce: Optional[bytes] = None,
        name: Optional[str] = None,
        content_type: Optional[str] = None,
        with_proof: bool = True,
        batch_index: Optional[int] = None,
    ):
        """
        Attest to file bytes: Merkle root, hybrid signature over the
        manifest and, when possible, a proof bound to the same root.

        Proof failures are logged and the attestation carries no proof.
        """
        from ..core.attestation import FileAttestation, FileManifest

        file_bytes = bytes(file_bytes)
        tree = self.committer.build_tree(file_bytes)
        manifest = FileManifest(
            root=tree.root_hex,
            file_length=len(file_bytes),
            chunk_size=self.committer.chunk_size,
            name=name,
            content_type=content_type,
            signer=self.address,
            batch_index=batch_index,
        )

        signature = self.sign_data(manifest.canonicalize(), nonce or self.get_nonce())

        proof = None
        if with_proof:
            statement = self.proof_generator.statement_for(file_bytes, manifest.proof_metadata())
            try:
                proof = self.proof_generator.generate_proof(file_bytes, statement)
            except ProofGenerationError as e:
                logger.warning("proof_skipped", root=tree.root_hex, reason=str(e))

        logger.info("file_signed",
                    root=tree.root_hex,
                    file_length=len(file_bytes),
                    key_id=signature.key_id,
                    batch_index=batch_index,
                    has_proof=proof is not None)

        return FileAttestation(manifest=manifest, signature=signature, proof=proof)

    def sign_batch(
        self,
        files: Sequence[bytes],
        names: Optional[Sequence[Optional[str]]] = None,
        content_type: Optional[str] = None,
        with_proof: bool = True,
    ):
        """
        Attest to several files under one signer and key.

        Each manifest carries its position in the batch, so an attestation
        cannot be passed off as another slot of the same batch. Every file
        gets its own nonce.
        """
        if names is not None and len(names) != len(files):
            raise InvalidFormatError(
                f"Got {len(names)} names for {len(files)} files"
            )
        if files and not self.has_quantum_keys():
            raise KeysNotInitializedError(
                "Quantum keys not initialized; call setup_quantum_keys() first"
            )

        attestations = [
            self.sign_file(
                file_bytes,
                name=names[index] if names is not None else None,
                content_type=content_type,
                with_proof=with_proof,
                batch_index=index,
            )
            for index, file_bytes in enumerate(files)
        ]

        logger.info("batch_signed",
                    address=self.address,
                    count=len(attestations),
                    roots=[a.manifest.root for a in attestations])

        return attestations

    def verify_file_attestation(self, file_bytes: bytes, attestation):
        from ..core.attestation import verify_attestation

        return verify_attestation(file_bytes, attestation, self.proof_generator)
