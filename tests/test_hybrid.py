"""
Tests for Hybrid Signatures

Ed25519 + ML-DSA over one payload and nonce.
"""

import hashlib

import pytest

from equinox.crypto.hybrid import (
    HybridSignature,
    HybridSigner,
    signer_address,
    signing_payload,
    verify_hybrid_signature,
)
from equinox.crypto.signer import Ed25519Signer, SignatureAlgorithm, verify_ed25519
from equinox.errors import InvalidFormatError, KeysNotInitializedError


@pytest.fixture
def signer(key_store, committer, proof_generator):
    return HybridSigner(
        key_store=key_store,
        default_algorithm="ML-DSA-44",
        committer=committer,
        proof_generator=proof_generator,
    )


@pytest.fixture
def ready_signer(signer):
    signer.setup_quantum_keys()
    return signer


class TestKeySetup:
    """Test post-quantum key provisioning."""

    def test_sign_requires_keys(self, signer):
        assert signer.has_quantum_keys() is False

        with pytest.raises(KeysNotInitializedError):
            signer.sign_data("hello", signer.get_nonce())

    def test_setup_is_idempotent(self, signer, key_store):
        signer.setup_quantum_keys()
        key_id = key_store.get_current_key().key_id

        signer.setup_quantum_keys()

        assert key_store.get_current_key().key_id == key_id
        assert key_store.get_key_stats().total_keys == 1
        assert key_store.get_current_key().algorithm == SignatureAlgorithm.ML_DSA_44

    def test_reset_returns_to_uninitialized(self, ready_signer):
        ready_signer.reset_quantum_keys()

        assert ready_signer.has_quantum_keys() is False
        with pytest.raises(KeysNotInitializedError):
            ready_signer.sign_data("hello", b"nonce")

    def test_signer_data(self, signer, key_store):
        before = signer.get_signer_data()
        assert before.has_pq_keys is False
        assert before.post_quantum_public_key is None

        signer.setup_quantum_keys()
        after = signer.get_signer_data()

        assert after.has_pq_keys is True
        assert after.post_quantum_public_key == key_store.get_current_key().public_key
        assert after.address.startswith("0x")
        assert len(after.address) == 42
        assert after.address == before.address

    def test_address_follows_classical_identity(self, key_store):
        identity = Ed25519Signer()
        first = HybridSigner(key_store, identity.get_private_key())
        second = HybridSigner(key_store, identity.get_private_key())

        assert first.address == second.address
        assert HybridSigner(key_store).address != first.address

    def test_address_derivation_is_shared(self, signer):
        assert signer.address == signer_address(signer.classical_public_key)
        assert signer_address(signer.classical_public_key) == (
            "0x" + hashlib.sha3_256(signer.classical_public_key).digest()[-20:].hex()
        )


class TestNonces:
    """Test nonce generation."""

    def test_nonces_are_unique(self, signer):
        nonces = {signer.get_nonce() for _ in range(1000)}

        assert len(nonces) == 1000

    def test_nonce_layout(self, signer):
        first = signer.get_nonce()
        second = signer.get_nonce()

        assert len(first) == 32
        assert int.from_bytes(second[:8], 'big') == int.from_bytes(first[:8], 'big') + 1


class TestSignVerify:
    """Test hybrid signing and verification."""

    def test_sign_and_verify(self, ready_signer):
        nonce = ready_signer.get_nonce()
        signature = ready_signer.sign_data("equinox quantum test message", nonce)

        result = ready_signer.verify_signature("equinox quantum test message", signature)

        assert result.valid is True
        assert result.classical_valid and result.post_quantum_valid
        assert result.error is None
        assert signature.nonce == nonce

    def test_both_legs_cover_identical_bytes(self, ready_signer):
        nonce = b"fixed-nonce"
        signature = ready_signer.sign_data("message", nonce)
        payload = signing_payload(b"message", nonce)

        assert verify_ed25519(signature.classical_public_key, payload, signature.classical_signature)
        assert ready_signer.key_store.verify_signature(
            payload, signature.post_quantum_signature, signature.public_key
        )

    def test_str_and_bytes_messages_agree(self, ready_signer):
        signature = ready_signer.sign_data("héllo", b"n")

        assert verify_hybrid_signature("héllo".encode('utf-8'), signature).valid is True

    def test_wrong_message_fails(self, ready_signer):
        signature = ready_signer.sign_data("original", b"n")
        result = ready_signer.verify_signature("different", signature)

        assert result.valid is False
        assert result.classical_valid is False
        assert result.post_quantum_valid is False

    def test_nonce_is_bound(self, ready_signer):
        signature = ready_signer.sign_data("message", b"nonce-1")
        signature.nonce = b"nonce-2"

        assert ready_signer.verify_signature("message", signature).valid is False

    def test_mutated_classical_leg_reported(self, ready_signer):
        signature = ready_signer.sign_data("message", b"n")
        tampered = bytearray(signature.classical_signature)
        tampered[0] ^= 0x01
        signature.classical_signature = bytes(tampered)

        result = ready_signer.verify_signature("message", signature)

        assert result.valid is False
        assert result.classical_valid is False
        assert result.post_quantum_valid is True
        assert "Ed25519" in result.error

    def test_mutated_post_quantum_leg_reported(self, ready_signer):
        signature = ready_signer.sign_data("message", b"n")
        tampered = bytearray(signature.post_quantum_signature)
        tampered[-1] ^= 0x01
        signature.post_quantum_signature = bytes(tampered)

        result = ready_signer.verify_signature("message", signature)

        assert result.valid is False
        assert result.classical_valid is True
        assert result.post_quantum_valid is False
        assert "ML-DSA-44" in result.error

    @pytest.mark.parametrize("nonce", [b"", ""])
    def test_empty_nonce_rejected(self, ready_signer, nonce):
        with pytest.raises(InvalidFormatError):
            ready_signer.sign_data("message", nonce)

    def test_signature_survives_rotation(self, ready_signer, key_store):
        signature = ready_signer.sign_data("before", b"n")
        key_store.rotate_key()

        assert ready_signer.verify_signature("before", signature).valid is True
        assert ready_signer.is_own_signature(signature) is True
        assert ready_signer.sign_data("after", b"n").key_id != signature.key_id


class TestWireForms:
    """Test dict and binary encodings."""

    def test_dict_round_trip(self, ready_signer):
        signature = ready_signer.sign_data("message", b"n")
        restored = HybridSignature.from_dict(signature.to_dict())

        assert restored == signature
        assert verify_hybrid_signature("message", restored).valid is True

    def test_binary_round_trip(self, ready_signer):
        signature = ready_signer.sign_data("message", ready_signer.get_nonce())

        assert HybridSignature.from_bytes(signature.to_bytes()) == signature

    def test_binary_rejects_truncation_and_trailing_bytes(self, ready_signer):
        encoded = ready_signer.sign_data("message", b"n").to_bytes()

        with pytest.raises(InvalidFormatError):
            HybridSignature.from_bytes(encoded[:-1])
        with pytest.raises(InvalidFormatError):
            HybridSignature.from_bytes(encoded + b"\x00")

    def test_dict_rejects_bad_hex(self, ready_signer):
        data = ready_signer.sign_data("message", b"n").to_dict()
        data["public_key"] = "zz"

        with pytest.raises(InvalidFormatError):
            HybridSignature.from_dict(data)
