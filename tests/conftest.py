"""
Pytest Configuration and Fixtures
"""

import os
import sys
from datetime import datetime, timedelta, timezone

import pytest

# Add src to path
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(__file__)), 'src'))

# Set test environment
os.environ["API_KEY"] = "test-key-12345"
os.environ["EQUINOX_PROOF_QUERIES"] = "8"
os.environ["EQUINOX_PROOF_BLINDING_ROWS"] = "4"
os.environ["EQUINOX_PROOF_MAX_BYTES"] = "65536"

from equinox.commitment.merkle import MerkleCommitter  # noqa: E402
from equinox.config import KeyStoreConfig, ProofConfig  # noqa: E402
from equinox.crypto.keys import QuantumKeyStore  # noqa: E402
from equinox.proofs.stark import ProofGenerator  # noqa: E402


class FakeClock:
    """Controllable clock for expiry and rotation tests."""

    def __init__(self, start=None):
        self.now = start or datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def key_store(clock):
    """Empty key store on a fake clock, 90-day rotation."""
    return QuantumKeyStore(KeyStoreConfig(rotation_interval_days=90), clock=clock)


@pytest.fixture
def committer():
    return MerkleCommitter(chunk_size=64)


@pytest.fixture
def proof_generator(committer):
    """Small, fast proof parameters."""
    config = ProofConfig(max_file_size=64 * 1024, blowup=4, num_queries=8, blinding_rows=4)
    return ProofGenerator(config, committer)


@pytest.fixture
def sample_file():
    """A few chunks of non-repeating bytes."""
    return bytes((i * 37 + 11) % 256 for i in range(300))
