"""
Equinox CLI

Commands:
  serve   - Run the API server
  root    - Print the Merkle root of a file
  prove   - Generate a proof bound to a file's Merkle root
  verify  - Verify a proof artifact
  keygen  - Generate a post-quantum key and write an encrypted export
"""

import argparse
import json
import os
import sys

from .commitment.merkle import MerkleCommitter
from .config import DEFAULT_CHUNK_SIZE, KeyStoreConfig, ProofConfig
from .crypto.keys import QuantumKeyStore
from .errors import EquinoxError
from .proofs.stark import ProofArtifact, ProofGenerator


def _read_file(path: str) -> bytes:
    with open(path, "rb") as f:
        return f.read()


def cmd_serve(args):
    """Run the API server."""
    from .api.server import run

    port = args.port or int(os.environ.get("PORT", 8000))
    print(f"Starting Equinox on {args.host}:{port}")
    run(host=args.host, port=port, reload=args.reload, workers=args.workers)


def cmd_root(args):
    """Print the Merkle root of a file."""
    committer = MerkleCommitter(args.chunk_size)
    tree = committer.build_tree(_read_file(args.file))

    print(tree.root_hex)
    if args.verbose:
        print(f"  File length: {tree.file_length}")
        print(f"  Chunk size: {tree.chunk_size}")
        print(f"  Leaves: {tree.leaf_count}")
        print(f"  Depth: {tree.depth}")


def cmd_prove(args):
    """Generate a proof artifact for a file."""
    data = _read_file(args.file)
    config = ProofConfig.from_env()
    generator = ProofGenerator(config, MerkleCommitter(args.chunk_size))

    metadata = {}
    if args.name:
        metadata["name"] = args.name
    if args.content_type:
        metadata["content_type"] = args.content_type

    artifact = generator.generate_proof(data, generator.statement_for(data, metadata))
    output = artifact.to_json()

    if args.out:
        with open(args.out, "w") as f:
            f.write(output)
        print(f"Proof written to {args.out}")
        print(f"  Commitment: {artifact.commitment}")
        print(f"  Proof size: {len(artifact.proof)} bytes")
    else:
        print(output)


def cmd_verify(args):
    """Verify a proof artifact, optionally against the file it claims."""
    with open(args.proof) as f:
        artifact = ProofArtifact.from_dict(json.load(f))

    if args.file:
        committer = MerkleCommitter(artifact.statement.chunk_size)
        root = committer.build_tree(_read_file(args.file)).root_hex
        if root != artifact.commitment:
            print("Proof Invalid: file does not match commitment")
            sys.exit(1)

    generator = ProofGenerator(ProofConfig.from_env())
    if generator.verify_proof(artifact.proof, artifact.commitment, artifact.statement):
        print("Proof Valid")
        print(f"  Commitment: {artifact.commitment}")
        print(f"  File length: {artifact.statement.file_length}")
    else:
        print("Proof Invalid")
        sys.exit(1)


def cmd_keygen(args):
    """Generate a key pair and optionally write an encrypted export."""
    config = KeyStoreConfig.from_env()
    store = QuantumKeyStore(config)
    keypair = store.generate_key_pair(args.algorithm, args.usage)

    print(f"Key ID: {keypair.key_id}")
    print(f"  Algorithm: {keypair.algorithm.value}")
    print(f"  Security level: {keypair.security_level} bits")
    print(f"  Expires: {keypair.expires_at.isoformat() if keypair.expires_at else 'never'}")

    if args.out:
        password = args.password or os.environ.get("EQUINOX_EXPORT_PASSWORD")
        if not password:
            print("Error: --password or EQUINOX_EXPORT_PASSWORD required with --out")
            sys.exit(1)
        with open(args.out, "wb") as f:
            f.write(store.export_keys(password))
        print(f"  Export written to {args.out}")

    store.reset()


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Equinox - Quantum-Resistant Data Attestation",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Run the server")
    serve_parser.add_argument("--host", default="0.0.0.0")
    serve_parser.add_argument("--port", type=int, default=None)
    serve_parser.add_argument("--reload", action="store_true")
    serve_parser.add_argument("--workers", type=int, default=1)

    # root
    root_parser = subparsers.add_parser("root", help="Print a file's Merkle root")
    root_parser.add_argument("file")
    root_parser.add_argument("--chunk-size", type=int, default=DEFAULT_CHUNK_SIZE)
    root_parser.add_argument("-v", "--verbose", action="store_true")

    # prove
    prove_parser = subparsers.add_parser("prove", help="Generate a proof for a file")
    prove_parser.add_argument("file")
    prove_parser.add_argument("--out", help="Write the artifact JSON here")
    prove_parser.add_argument("--chunk-size", type=int, default=DEFAULT_CHUNK_SIZE)
    prove_parser.add_argument("--name", help="File name committed into the statement")
    prove_parser.add_argument("--content-type", help="Content type committed into the statement")

    # verify
    verify_parser = subparsers.add_parser("verify", help="Verify a proof artifact")
    verify_parser.add_argument("proof", help="Proof artifact JSON")
    verify_parser.add_argument("--file", help="Also check the file matches the commitment")

    # keygen
    keygen_parser = subparsers.add_parser("keygen", help="Generate a post-quantum key")
    keygen_parser.add_argument("--algorithm", default=None, help="ML-DSA-44, ML-DSA-65 or ML-DSA-87")
    keygen_parser.add_argument("--usage", default="signing")
    keygen_parser.add_argument("--out", help="Write an encrypted export here")
    keygen_parser.add_argument("--password", help="Export password")

    args = parser.parse_args(argv)

    commands = {
        "serve": cmd_serve,
        "root": cmd_root,
        "prove": cmd_prove,
        "verify": cmd_verify,
        "keygen": cmd_keygen,
    }

    command = commands.get(args.command)
    if command is None:
        parser.print_help()
        return

    try:
        command(args)
    except (EquinoxError, OSError, ValueError) as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
