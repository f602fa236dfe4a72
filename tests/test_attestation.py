"""
Tests for File Attestations

Manifest canonicalization, sign_file and verification against file bytes.
"""

import json

import pytest

from equinox.config import ProofConfig
from equinox.core.attestation import FileAttestation, FileManifest, verify_attestation
from equinox.crypto.hybrid import HybridSigner, signer_address
from equinox.crypto.keys import QuantumKeyStore
from equinox.errors import InvalidFormatError, KeysNotInitializedError
from equinox.proofs.stark import ProofGenerator


@pytest.fixture
def signer(key_store, committer, proof_generator):
    signer = HybridSigner(
        key_store=key_store,
        default_algorithm="ML-DSA-44",
        committer=committer,
        proof_generator=proof_generator,
    )
    signer.setup_quantum_keys()
    return signer


class TestFileManifest:
    """Test manifest canonicalization."""

    def test_canonicalization_is_deterministic(self):
        manifest = FileManifest(
            root="ab" * 32,
            file_length=10,
            chunk_size=64,
            signer="0x" + "00" * 20,
            name="a.txt",
            signed_at="2025-01-01T00:00:00+00:00",
        )
        copy = FileManifest.from_dict(json.loads(manifest.canonicalize()))

        assert manifest.canonicalize() == copy.canonicalize()
        assert " " not in manifest.canonicalize()

    def test_absent_fields_dropped(self):
        manifest = FileManifest(root="ab" * 32, file_length=1, chunk_size=64, signer="0x")

        canonical = json.loads(manifest.canonicalize())

        assert "name" not in canonical
        assert "content_type" not in canonical
        assert manifest.proof_metadata() == {}

    def test_from_dict_rejects_missing_fields(self):
        with pytest.raises(InvalidFormatError):
            FileManifest.from_dict({"root": "ab" * 32})

    @pytest.mark.parametrize("field_name, value", [
        ("chunk_size", 0),
        ("chunk_size", -64),
        ("file_length", -1),
        ("batch_index", -1),
    ])
    def test_from_dict_rejects_out_of_range_numbers(self, field_name, value):
        data = FileManifest(root="ab" * 32, file_length=10, chunk_size=64, signer="0x").to_dict()
        data[field_name] = value

        with pytest.raises(InvalidFormatError):
            FileManifest.from_dict(data)

    def test_batch_index_is_canonical_when_present(self):
        manifest = FileManifest(root="ab" * 32, file_length=1, chunk_size=64, signer="0x", batch_index=0)

        assert json.loads(manifest.canonicalize())["batch_index"] == 0
        assert FileManifest.from_dict(manifest.to_dict()) == manifest


class TestSignFile:
    """Test end-to-end file attestation."""

    def test_sign_and_verify(self, signer, sample_file):
        attestation = signer.sign_file(sample_file, name="data.bin", content_type="application/octet-stream")

        result = signer.verify_file_attestation(sample_file, attestation)

        assert result.valid is True
        assert result.root_matches is True
        assert result.signature.valid is True
        assert result.proof_valid is True
        assert attestation.proof.statement.metadata == {
            "name": "data.bin",
            "content_type": "application/octet-stream",
        }

    def test_root_matches_commitment(self, signer, committer, sample_file):
        attestation = signer.sign_file(sample_file)

        assert attestation.manifest.root == committer.build_tree(sample_file).root_hex
        assert attestation.proof.commitment == attestation.manifest.root
        assert attestation.manifest.signer == signer.address

    def test_modified_file_fails(self, signer, sample_file):
        attestation = signer.sign_file(sample_file)
        modified = bytearray(sample_file)
        modified[100] ^= 0x01

        result = signer.verify_file_attestation(bytes(modified), attestation)

        assert result.valid is False
        assert result.root_matches is False
        assert result.signature.valid is True

    def test_modified_manifest_fails_signature(self, signer, sample_file):
        attestation = signer.sign_file(sample_file, name="original.bin")
        attestation.manifest.name = "renamed.bin"

        result = verify_attestation(sample_file, attestation)

        assert result.valid is False
        assert result.root_matches is True
        assert result.signature.valid is False

    def test_without_proof(self, signer, sample_file):
        attestation = signer.sign_file(sample_file, with_proof=False)

        result = signer.verify_file_attestation(sample_file, attestation)

        assert attestation.proof is None
        assert result.valid is True
        assert result.proof_valid is None

    def test_proof_failure_does_not_block_signing(self, key_store, committer, sample_file):
        tiny = ProofGenerator(ProofConfig(max_file_size=10), committer)
        signer = HybridSigner(key_store, default_algorithm="ML-DSA-44", committer=committer, proof_generator=tiny)
        signer.setup_quantum_keys()

        attestation = signer.sign_file(sample_file)

        assert attestation.proof is None
        assert signer.verify_file_attestation(sample_file, attestation).valid is True

    def test_swapped_proof_fails(self, signer, sample_file):
        attestation = signer.sign_file(sample_file)
        other = signer.sign_file(sample_file + b"extra")
        attestation.proof = other.proof

        result = signer.verify_file_attestation(sample_file, attestation)

        assert result.valid is False
        assert result.proof_valid is False

    def test_json_round_trip(self, signer, sample_file):
        attestation = signer.sign_file(sample_file, name="data.bin")
        restored = FileAttestation.from_json(attestation.to_json())

        result = verify_attestation(sample_file, restored)

        assert result.valid is True
        assert restored.manifest == attestation.manifest

    def test_from_json_rejects_garbage(self):
        with pytest.raises(InvalidFormatError):
            FileAttestation.from_json("not json")

    def test_zero_chunk_size_rejected_on_load(self, signer, sample_file):
        data = signer.sign_file(sample_file, with_proof=False).to_dict()
        data["manifest"]["chunk_size"] = 0

        with pytest.raises(InvalidFormatError):
            FileAttestation.from_dict(data)

    def test_manifest_naming_another_signer_fails(self, signer, committer, sample_file):
        impostor = HybridSigner(QuantumKeyStore(), default_algorithm="ML-DSA-44", committer=committer)
        impostor.setup_quantum_keys()
        manifest = FileManifest(
            root=committer.build_tree(sample_file).root_hex,
            file_length=len(sample_file),
            chunk_size=committer.chunk_size,
            signer=signer.address,
        )
        forged = FileAttestation(
            manifest=manifest,
            signature=impostor.sign_data(manifest.canonicalize(), impostor.get_nonce()),
        )

        result = verify_attestation(sample_file, forged)

        assert result.root_matches is True
        assert result.signature.valid is True
        assert result.signer_matches is False
        assert result.valid is False
        assert "Signer mismatch" in result.error

    def test_signer_matches_classical_key(self, signer, sample_file):
        attestation = signer.sign_file(sample_file, with_proof=False)

        result = verify_attestation(sample_file, attestation)

        assert result.signer_matches is True
        assert attestation.manifest.signer == signer_address(attestation.signature.classical_public_key)


class TestSignBatch:
    """Test attesting several files under one signer."""

    def test_each_file_attested_with_its_index(self, signer, sample_file):
        files = [b"alpha" * 10, b"beta" * 20, sample_file]

        attestations = signer.sign_batch(files, names=["a.txt", "b.txt", "c.bin"])

        assert [a.manifest.batch_index for a in attestations] == [0, 1, 2]
        assert [a.manifest.name for a in attestations] == ["a.txt", "b.txt", "c.bin"]
        assert len({a.signature.nonce for a in attestations}) == 3
        assert len({a.signature.key_id for a in attestations}) == 1
        for file_bytes, attestation in zip(files, attestations):
            result = signer.verify_file_attestation(file_bytes, attestation)
            assert result.valid is True
            assert result.proof_valid is True

    def test_attestation_does_not_fit_other_file(self, signer):
        files = [b"first file", b"second file"]
        attestations = signer.sign_batch(files, with_proof=False)

        assert signer.verify_file_attestation(files[1], attestations[0]).valid is False

    def test_batch_index_is_signed(self, signer):
        attestations = signer.sign_batch([b"one", b"two"], with_proof=False)
        attestations[1].manifest.batch_index = 0

        result = signer.verify_file_attestation(b"two", attestations[1])

        assert result.valid is False
        assert result.signature.valid is False

    def test_batch_survives_json(self, signer):
        attestation = signer.sign_batch([b"payload"], with_proof=False)[0]
        restored = FileAttestation.from_json(attestation.to_json())

        assert restored.manifest.batch_index == 0
        assert verify_attestation(b"payload", restored).valid is True

    def test_names_must_match_files(self, signer):
        with pytest.raises(InvalidFormatError):
            signer.sign_batch([b"one", b"two"], names=["only-one"])

    def test_batch_requires_keys(self, key_store, committer):
        unready = HybridSigner(key_store, default_algorithm="ML-DSA-44", committer=committer)

        with pytest.raises(KeysNotInitializedError):
            unready.sign_batch([b"one"])
        assert unready.sign_batch([]) == []
