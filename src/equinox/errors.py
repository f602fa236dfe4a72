"""
Error kinds raised by the Equinox core.

Verification failures are never raised: signature and proof checks
return booleans or result objects. Only conditions the caller must act on
(missing keys, bad input, failed decryption) are exceptions.
"""


class EquinoxError(Exception):
    """Base class for all Equinox errors."""


class UnsupportedAlgorithmError(EquinoxError):
    """Algorithm is outside the closed post-quantum parameter set."""


class NoCurrentKeyError(EquinoxError):
    """The key store has no current key."""


class KeysNotInitializedError(EquinoxError):
    """The hybrid signer has no post-quantum keys yet."""


class DecryptionError(EquinoxError):
    """
    An encrypted key export could not be opened.

    Deliberately carries no detail: a wrong password and a tampered blob
    are indistinguishable.
    """

    def __init__(self, message: str = "decryption failed"):
        super().__init__(message)


class InvalidFormatError(EquinoxError, ValueError):
    """Malformed hex, byte lengths or serialized structure."""


class ProofGenerationError(EquinoxError):
    """Proof could not be produced (input too large or internal failure)."""
