"""
EQUINOX - FastAPI Server

Endpoints:
- GET  /health           - Liveness and key status
- POST /keys/generate    - Generate a post-quantum key pair
- POST /keys/rotate      - Rotate the current key
- GET  /keys/current     - Current key (public half)
- GET  /keys/stats       - Key store statistics
- GET  /keys             - List keys
- POST /keys/export      - Password-encrypted export
- POST /keys/import      - Import an export
- POST /sign             - Hybrid Ed25519 + ML-DSA signature
- POST /verify           - Verify a hybrid signature
- POST /merkle/root      - Merkle root of file bytes
- POST /proofs/generate  - Proof bound to a file's Merkle root
- POST /proofs/verify    - Verify a proof
"""

import asyncio
import base64
import binascii
import os
import secrets
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import structlog
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .. import __version__
from ..commitment.merkle import MerkleCommitter
from ..config import EquinoxConfig
from ..crypto.hybrid import HybridSignature, HybridSigner
from ..crypto.keys import AsyncQuantumKeyStore, KeyStatus, QuantumKeyStore
from ..errors import (
    DecryptionError,
    EquinoxError,
    InvalidFormatError,
    KeysNotInitializedError,
    NoCurrentKeyError,
    ProofGenerationError,
    UnsupportedAlgorithmError,
)
from ..proofs.stark import ProofGenerator, ProofStatement

logger = structlog.get_logger()


# ============================================================================
# Pydantic Models
# ============================================================================

class GenerateKeyRequest(BaseModel):
    """Request to generate a key pair."""
    algorithm: Optional[str] = Field(None, description="ML-DSA-44, ML-DSA-65 or ML-DSA-87")
    usage: str = Field(default="signing", description="signing, encryption or both")


class ExportRequest(BaseModel):
    password: str = Field(..., min_length=1)


class ImportRequest(BaseModel):
    blob: str = Field(..., description="Base64 export blob")
    password: str = Field(..., min_length=1)


class SignRequest(BaseModel):
    """Request to sign a message with both legs."""
    message: str
    nonce: Optional[str] = Field(None, description="Hex nonce; generated when omitted")


class VerifyRequest(BaseModel):
    message: str
    signature: Dict[str, Any] = Field(..., description="Hybrid signature as returned by /sign")


class FileRequest(BaseModel):
    """File bytes, base64-encoded."""
    data: str
    chunk_size: Optional[int] = Field(None, gt=0)


class ProofRequest(BaseModel):
    data: str = Field(..., description="Base64 file bytes")
    metadata: Dict[str, str] = Field(default_factory=dict)


class ProofVerifyRequest(BaseModel):
    proof: str = Field(..., description="Base64 proof bytes")
    commitment: str = Field(..., description="Merkle root hex")
    statement: Dict[str, Any]


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    has_current_key: bool
    uptime_seconds: float


# ============================================================================
# Application State
# ============================================================================

class AppState:
    """Application state container."""

    def __init__(self, config: Optional[EquinoxConfig] = None):
        self.config = config or EquinoxConfig.from_env()
        self.key_store = QuantumKeyStore(self.config.keys)
        self.async_keys = AsyncQuantumKeyStore(self.key_store)
        self.committer = MerkleCommitter(self.config.merkle.chunk_size)
        self.proof_generator = ProofGenerator(self.config.proofs, self.committer)
        self.signer = HybridSigner(
            key_store=self.key_store,
            committer=self.committer,
            proof_generator=self.proof_generator,
        )
        self.start_time = datetime.now(timezone.utc)


app_state: Optional[AppState] = None


# ============================================================================
# Application Factory
# ============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    global app_state
    logger.info("equinox_starting", version=__version__)
    app_state = AppState()
    yield
    app_state.key_store.reset()
    logger.info("equinox_stopping")


# Status codes for core errors
_ERROR_STATUS = (
    (DecryptionError, 400),
    (InvalidFormatError, 400),
    (UnsupportedAlgorithmError, 400),
    (NoCurrentKeyError, 409),
    (KeysNotInitializedError, 409),
    (ProofGenerationError, 413),
)


async def equinox_error_handler(request: Request, exc: EquinoxError) -> JSONResponse:
    status_code = 500
    for error_type, code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            status_code = code
            break

    # Never say why decryption failed
    detail = "decryption failed" if isinstance(exc, DecryptionError) else str(exc)

    logger.info("request_failed",
                path=request.url.path,
                error=type(exc).__name__,
                status_code=status_code)
    return JSONResponse(status_code=status_code, content={"detail": detail})


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    application = FastAPI(
        title="Equinox",
        description="""
# Quantum-Resistant Data Attestation

- **Post-quantum keys**: ML-DSA (FIPS 204) generation, rotation, encrypted export
- **Hybrid signatures**: Ed25519 + ML-DSA over one payload and nonce
- **Merkle commitments**: deterministic SHA3-256 roots over file bytes
- **Succinct proofs**: FRI-based proofs bound to a commitment
        """,
        version=__version__,
        lifespan=lifespan,
    )

    # CORS middleware
    application.add_middleware(
        CORSMiddleware,
        allow_origins=os.environ.get("CORS_ORIGINS", "*").split(","),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    application.add_exception_handler(EquinoxError, equinox_error_handler)

    return application


app = create_app()


# ============================================================================
# Dependencies
# ============================================================================

def get_state() -> AppState:
    """Get application state."""
    if app_state is None:
        raise HTTPException(status_code=503, detail="Application not initialized")
    return app_state


def verify_api_key(
    x_api_key: str = Header(..., alias="X-API-Key"),
    state: AppState = Depends(get_state),
) -> str:
    """Verify API key."""
    if not secrets.compare_digest(x_api_key, state.config.api_key):
        raise HTTPException(status_code=401, detail="Invalid API key")
    return x_api_key


def _b64decode(value: str, field_name: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError):
        raise HTTPException(status_code=400, detail=f"{field_name} is not valid base64")


# ============================================================================
# Endpoints
# ============================================================================

@app.get("/health", response_model=HealthResponse, tags=["System"])
async def health_check(state: AppState = Depends(get_state)):
    """Health check endpoint."""
    uptime = (datetime.now(timezone.utc) - state.start_time).total_seconds()
    return HealthResponse(
        status="healthy",
        version=__version__,
        has_current_key=state.key_store.get_current_key() is not None,
        uptime_seconds=uptime,
    )


@app.post("/keys/generate", tags=["Keys"])
async def generate_key(
    request: GenerateKeyRequest,
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    """Generate a key pair; it becomes current and any previous key is archived."""
    keypair = await state.async_keys.generate_key_pair(request.algorithm, request.usage)
    return keypair.to_dict()


@app.post("/keys/rotate", tags=["Keys"])
async def rotate_key(
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    """Rotate the current key. 409 when there is none."""
    keypair = await state.async_keys.rotate_key()
    return keypair.to_dict()


@app.get("/keys/current", tags=["Keys"])
async def get_current_key(
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    current = state.key_store.get_current_key()
    if current is None:
        raise HTTPException(status_code=404, detail="No current key")
    return {
        **current.to_dict(),
        "needs_rotation": state.key_store.needs_rotation(),
    }


@app.get("/keys/stats", tags=["Keys"])
async def get_key_stats(
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    return state.key_store.get_key_stats().to_dict()


@app.get("/keys", tags=["Keys"])
async def list_keys(
    status: Optional[str] = None,
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    """List keys (public halves only), newest first."""
    status_filter = None
    if status:
        try:
            status_filter = KeyStatus(status.upper())
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid status: {status}")

    keys = state.key_store.list_keys(status_filter)
    return {
        "total": len(keys),
        "keys": [k.to_dict() for k in keys],
    }


@app.post("/keys/export", tags=["Keys"])
async def export_keys(
    request: ExportRequest,
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    blob = await state.async_keys.export_keys(request.password)
    return {"blob": base64.b64encode(blob).decode('utf-8')}


@app.post("/keys/import", tags=["Keys"])
async def import_keys(
    request: ImportRequest,
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    """Replace the key collection with an export. Atomic."""
    blob = _b64decode(request.blob, "blob")
    await state.async_keys.import_keys(blob, request.password)
    return {
        "imported": len(state.key_store.list_keys()),
        "stats": state.key_store.get_key_stats().to_dict(),
    }


@app.post("/sign", tags=["Signatures"])
async def sign_message(
    request: SignRequest,
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    """
    Hybrid-sign a message.

    Both legs cover the same bytes; the nonce is returned with the signature.
    """
    if request.nonce is not None:
        try:
            nonce = bytes.fromhex(request.nonce)
        except ValueError:
            raise HTTPException(status_code=400, detail="nonce is not valid hex")
    else:
        nonce = state.signer.get_nonce()

    signature = await asyncio.to_thread(state.signer.sign_data, request.message, nonce)
    return {
        "signature": signature.to_dict(),
        "signer": state.signer.get_signer_data().to_dict(),
    }


@app.post("/verify", tags=["Signatures"])
async def verify_message(
    request: VerifyRequest,
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    """Verify both legs of a hybrid signature."""
    signature = HybridSignature.from_dict(request.signature)
    result = await asyncio.to_thread(state.signer.verify_signature, request.message, signature)
    return result.to_dict()


@app.post("/merkle/root", tags=["Commitments"])
async def merkle_root(
    request: FileRequest,
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    data = _b64decode(request.data, "data")
    committer = MerkleCommitter(request.chunk_size) if request.chunk_size else state.committer
    tree = await asyncio.to_thread(committer.build_tree, data)
    return {
        "root": tree.root_hex,
        "leaf_count": tree.leaf_count,
        "file_length": tree.file_length,
        "chunk_size": tree.chunk_size,
    }


@app.post("/proofs/generate", tags=["Proofs"])
async def generate_proof(
    request: ProofRequest,
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    """Generate a proof bound to the Merkle root of the data. 413 above the size limit."""
    data = _b64decode(request.data, "data")
    statement = state.proof_generator.statement_for(data, request.metadata)
    artifact = await state.proof_generator.generate_proof_async(data, statement)
    return artifact.to_dict()


@app.post("/proofs/verify", tags=["Proofs"])
async def verify_proof(
    request: ProofVerifyRequest,
    state: AppState = Depends(get_state),
    api_key: str = Depends(verify_api_key),
):
    proof = _b64decode(request.proof, "proof")
    statement = ProofStatement.from_dict(request.statement)
    valid = await asyncio.to_thread(
        state.proof_generator.verify_proof, proof, request.commitment, statement
    )
    return {"valid": valid, "commitment": request.commitment}


# ============================================================================
# Run
# ============================================================================

def run(host: str = "0.0.0.0", port: Optional[int] = None, reload: bool = False, workers: int = 1):
    """Run the server."""
    import uvicorn
    uvicorn.run(
        "equinox.api.server:app",
        host=host,
        port=port or int(os.environ.get("PORT", 8000)),
        reload=reload or os.environ.get("DEBUG", "false").lower() == "true",
        workers=workers,
    )
