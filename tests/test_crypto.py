"""
Tests for Cryptographic Primitives

Tests Ed25519, ML-DSA, the algorithm table and the digest/AEAD helpers.
"""

import pytest

from equinox.crypto.primitives import (
    decrypt_with_password,
    encrypt_with_password,
    hex_to_bytes,
    hex_to_digest,
    sha3_256,
    wipe,
)
from equinox.crypto.signer import (
    ALGORITHM_SPECS,
    POST_QUANTUM_ALGORITHMS,
    Ed25519Signer,
    SignatureAlgorithm,
    algorithm_for_public_key,
    compute_key_id,
    ml_dsa_keygen,
    ml_dsa_sign,
    ml_dsa_verify,
    parse_algorithm,
)
from equinox.errors import DecryptionError, InvalidFormatError, UnsupportedAlgorithmError


class TestEd25519Signer:
    """Test Ed25519 signature implementation."""

    def test_generate_key_pair(self):
        """Should generate a valid key pair."""
        signer = Ed25519Signer()

        assert signer.key_id.startswith("ed25519-")
        assert len(signer.get_public_key()) == 32
        assert signer.algorithm == SignatureAlgorithm.ED25519
        assert signer.is_pqc is False

    def test_sign_and_verify(self):
        """Signature should verify correctly."""
        signer = Ed25519Signer()
        data = b"test message to sign"

        result = signer.sign(data)

        assert len(result.signature) == 64
        assert result.algorithm == SignatureAlgorithm.ED25519
        assert signer.verify(data, result.signature).valid is True

    def test_wrong_data_fails_verification(self):
        """Wrong data should fail verification."""
        signer = Ed25519Signer()
        result = signer.sign(b"original message")

        verify_result = signer.verify(b"different message", result.signature)

        assert verify_result.valid is False
        assert verify_result.error == "invalid signature"

    def test_restore_from_private_key(self):
        """Should restore signer from private key bytes."""
        original = Ed25519Signer()
        restored = Ed25519Signer(original.get_private_key())

        assert restored.key_id == original.key_id
        assert restored.get_public_key() == original.get_public_key()



class TestMLDSA:
    """Test ML-DSA (FIPS 204) keygen, sign and verify."""

    @pytest.mark.parametrize("algorithm", POST_QUANTUM_ALGORITHMS)
    def test_key_and_signature_sizes(self, algorithm):
        """Every parameter set should produce the sizes in its table entry."""
        public_key, secret_key = ml_dsa_keygen(algorithm)
        spec = ALGORITHM_SPECS[algorithm]

        signature = ml_dsa_sign(algorithm, secret_key, b"size check")

        assert len(public_key) == spec.public_key_size
        assert len(secret_key) == spec.secret_key_size
        assert len(signature) == spec.signature_size

    def test_sign_verify(self):
        algorithm = SignatureAlgorithm.ML_DSA_44
        public_key, secret_key = ml_dsa_keygen(algorithm)
        signature = ml_dsa_sign(algorithm, secret_key, b"post-quantum message")

        assert ml_dsa_verify(algorithm, public_key, b"post-quantum message", signature) is True
        assert ml_dsa_verify(algorithm, public_key, b"other message", signature) is False

    def test_sign_accepts_bytearray_secret(self):
        algorithm = SignatureAlgorithm.ML_DSA_44
        public_key, secret_key = ml_dsa_keygen(algorithm)

        signature = ml_dsa_sign(algorithm, bytearray(secret_key), b"wipeable")

        assert ml_dsa_verify(algorithm, public_key, b"wipeable", signature) is True

    def test_mutated_signature_fails(self):
        algorithm = SignatureAlgorithm.ML_DSA_44
        public_key, secret_key = ml_dsa_keygen(algorithm)
        signature = bytearray(ml_dsa_sign(algorithm, secret_key, b"mutate me"))
        signature[10] ^= 0x01

        assert ml_dsa_verify(algorithm, public_key, b"mutate me", bytes(signature)) is False

    def test_truncated_signature_fails_without_raising(self):
        algorithm = SignatureAlgorithm.ML_DSA_44
        public_key, secret_key = ml_dsa_keygen(algorithm)
        signature = ml_dsa_sign(algorithm, secret_key, b"short")

        assert ml_dsa_verify(algorithm, public_key, b"short", signature[:-1]) is False

    def test_keygen_rejects_classical(self):
        with pytest.raises(UnsupportedAlgorithmError):
            ml_dsa_keygen(SignatureAlgorithm.ED25519)


class TestAlgorithms:
    """Test the closed algorithm enumeration."""

    def test_security_levels(self):
        assert ALGORITHM_SPECS[SignatureAlgorithm.ML_DSA_44].security_level == 128
        assert ALGORITHM_SPECS[SignatureAlgorithm.ML_DSA_65].security_level == 192
        assert ALGORITHM_SPECS[SignatureAlgorithm.ML_DSA_87].security_level == 256

    def test_parse_accepts_aliases(self):
        assert parse_algorithm("ml-dsa-65") == SignatureAlgorithm.ML_DSA_65
        assert parse_algorithm("ML_DSA_87") == SignatureAlgorithm.ML_DSA_87

    def test_parse_rejects_classical_and_unknown(self):
        with pytest.raises(UnsupportedAlgorithmError):
            parse_algorithm("Ed25519")
        with pytest.raises(UnsupportedAlgorithmError):
            parse_algorithm("RSA-2048")

    def test_algorithm_from_public_key_length(self):
        assert algorithm_for_public_key(b"\x00" * 1952) == SignatureAlgorithm.ML_DSA_65
        assert algorithm_for_public_key(b"\x00" * 100) is None

    def test_key_id_is_stable(self):
        assert compute_key_id(b"abc") == compute_key_id(b"abc")
        assert compute_key_id(b"abc") != compute_key_id(b"abd")
        assert compute_key_id(b"abc").startswith("pqc-")


class TestPrimitives:
    """Test digests, hex codecs and password sealing."""

    def test_sha3_known_answer(self):
        assert sha3_256(b"").hex() == (
            "a7ffc6f8bf1ed76651c14756a061d662f580ff4de43b49fa82d80a4b80f8434a"
        )

    def test_hex_to_digest_rejects_bad_input(self):
        with pytest.raises(InvalidFormatError):
            hex_to_digest("ab" * 31)
        with pytest.raises(InvalidFormatError):
            hex_to_digest("AB" * 32)
        with pytest.raises(InvalidFormatError):
            hex_to_digest("zz" * 32)
        with pytest.raises(InvalidFormatError):
            hex_to_digest(b"\x00" * 31)

    def test_hex_to_bytes(self):
        assert hex_to_bytes("00ff") == b"\x00\xff"
        with pytest.raises(InvalidFormatError):
            hex_to_bytes("abc")

    def test_encrypt_decrypt(self):
        blob = encrypt_with_password(b"secret payload", "pw", b"aad")

        assert decrypt_with_password(blob, "pw", b"aad") == b"secret payload"

    def test_encryption_is_randomized(self):
        first = encrypt_with_password(b"same", "pw")
        second = encrypt_with_password(b"same", "pw")

        assert first != second
        assert first[:16] != second[:16]  # fresh salt

    def test_wrong_password_and_tamper_look_the_same(self):
        blob = encrypt_with_password(b"secret payload", "right")
        tampered = bytearray(blob)
        tampered[-1] ^= 0x01

        with pytest.raises(DecryptionError) as wrong_pw:
            decrypt_with_password(blob, "wrong")
        with pytest.raises(DecryptionError) as bad_blob:
            decrypt_with_password(bytes(tampered), "right")

        assert str(wrong_pw.value) == str(bad_blob.value) == "decryption failed"

    def test_short_blob_fails(self):
        with pytest.raises(DecryptionError):
            decrypt_with_password(b"\x00" * 10, "pw")

    def test_wipe(self):
        buffer = bytearray(b"\x01\x02\x03")
        wipe(buffer)
        assert buffer == bytearray(3)
