"""
Errors raised while building and checking signed TAP ops.

Everything derives from TapSignError so callers can catch the whole family.
"""


class TapSignError(Exception):
    pass


class InvalidKeyEncoding(TapSignError):
    """Key input is not valid hex, has the wrong length, or the pair does not match."""


class InvalidPrivateKey(TapSignError):
    """Private scalar is zero or not below the secp256k1 group order."""


class KeyGenerationFailed(TapSignError):
    """The randomness source kept producing invalid scalars."""


class SequenceOutOfRange(TapSignError):
    """Verification sequence is negative or above 2**53 - 1."""


class RecoveryFailed(TapSignError):
    """No public key can be recovered from the signature and digest."""


class EncodingPrecondition(TapSignError):
    """A field cannot be placed in the canonical message."""


class SelfVerificationFailed(TapSignError):
    """The assembled op did not verify against the signer's public key."""

    def __init__(self, message, report=None):
        super().__init__(message)
        self.report = report
