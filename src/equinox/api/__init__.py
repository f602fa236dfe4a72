"""
EQUINOX - API Module

FastAPI server exposing key management, hybrid signing,
Merkle commitments and proofs.
"""

from .server import app, create_app

__all__ = ["app", "create_app"]
