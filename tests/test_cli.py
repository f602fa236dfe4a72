"""
Tests for the CLI
"""

import hashlib

import pytest

from equinox.cli import main


class TestRootCommand:

    def test_prints_root(self, tmp_path, capsys):
        path = tmp_path / "five.bin"
        path.write_bytes(bytes([1, 2, 3, 4, 5]))

        main(["root", str(path)])

        expected = hashlib.sha3_256(bytes([1, 2, 3, 4, 5]).ljust(1024, b"\x00")).hexdigest()
        assert capsys.readouterr().out.strip() == expected

    def test_missing_file_exits(self, tmp_path):
        with pytest.raises(SystemExit) as exc:
            main(["root", str(tmp_path / "missing.bin")])

        assert exc.value.code == 1


class TestProveVerify:

    def test_round_trip(self, tmp_path, capsys):
        data_path = tmp_path / "data.bin"
        data_path.write_bytes(bytes(range(200)))
        proof_path = tmp_path / "proof.json"

        main(["prove", str(data_path), "--out", str(proof_path), "--chunk-size", "64", "--name", "data.bin"])
        main(["verify", str(proof_path), "--file", str(data_path)])

        assert "Proof Valid" in capsys.readouterr().out

    def test_verify_against_other_file(self, tmp_path, capsys):
        data_path = tmp_path / "data.bin"
        data_path.write_bytes(b"original contents")
        other_path = tmp_path / "other.bin"
        other_path.write_bytes(b"different contents")
        proof_path = tmp_path / "proof.json"

        main(["prove", str(data_path), "--out", str(proof_path)])

        with pytest.raises(SystemExit) as exc:
            main(["verify", str(proof_path), "--file", str(other_path)])

        assert exc.value.code == 1
        assert "does not match" in capsys.readouterr().out


class TestKeygen:

    def test_keygen_with_export(self, tmp_path, capsys):
        out = tmp_path / "keys.bin"

        main(["keygen", "--algorithm", "ML-DSA-44", "--out", str(out), "--password", "pw"])

        output = capsys.readouterr().out
        assert "ML-DSA-44" in output
        assert out.stat().st_size > 16 + 12 + 16

    def test_keygen_rejects_classical(self):
        with pytest.raises(SystemExit) as exc:
            main(["keygen", "--algorithm", "Ed25519"])

        assert exc.value.code == 1
