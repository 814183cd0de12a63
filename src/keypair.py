# ============================================================================
# MODULE: keypair.py
# PURPOSE: secp256k1 key pairs for a TAP privilege authority.
#          Custody of the private key is the caller's business; this module
#          only generates or parses a pair.
# ============================================================================

import logging
import secrets
from dataclasses import dataclass

from coincurve import PrivateKey, PublicKey
from eth_utils import decode_hex, is_hex, remove_0x_prefix

from sign_core import scalar_in_range
from tap_errors import InvalidKeyEncoding, InvalidPrivateKey, KeyGenerationFailed

log = logging.getLogger(__name__)

# An OS CSPRNG hands out an invalid scalar with probability ~2**-128 per draw.
MAX_GENERATE_ATTEMPTS = 64


@dataclass(frozen=True)
class KeyPair:
    private_key: bytes  # 32-byte scalar
    public_key: bytes   # 33-byte compressed point

    @property
    def private_hex(self) -> str:
        return self.private_key.hex()

    @property
    def public_hex(self) -> str:
        return self.public_key.hex()

    def __repr__(self):
        # keep the scalar out of tracebacks and log lines
        return f"KeyPair(public_key={self.public_hex})"


def _public_point(private_key: bytes) -> bytes:
    return PrivateKey(private_key).public_key.format(compressed=True)


def generate() -> KeyPair:
    """
    Draw a fresh key pair from the OS randomness source.

    Candidates are redrawn until one is a valid scalar in [1, n-1].
    """
    for _ in range(MAX_GENERATE_ATTEMPTS):
        candidate = secrets.token_bytes(32)
        if scalar_in_range(int.from_bytes(candidate, "big")):
            return KeyPair(private_key=candidate, public_key=_public_point(candidate))
        log.warning("discarding out-of-range secp256k1 scalar candidate")
    raise KeyGenerationFailed(
        f"no valid secp256k1 scalar after {MAX_GENERATE_ATTEMPTS} draws; randomness source is broken"
    )


def _decode(value, expected_len: int, what: str) -> bytes:
    if not isinstance(value, str) or not is_hex(value):
        raise InvalidKeyEncoding(f"{what} is not a hex string")
    digits = remove_0x_prefix(value)
    if len(digits) != expected_len * 2:
        raise InvalidKeyEncoding(
            f"{what} must be {expected_len * 2} hex characters, got {len(digits)}"
        )
    return decode_hex(digits)


def from_hex(private_hex: str, public_hex: str) -> KeyPair:
    """
    Build a KeyPair from caller-supplied hex (an optional 0x prefix is accepted).

    Raises:
        InvalidKeyEncoding: malformed hex, wrong length, an unparseable public
            point, or a public point that does not belong to the scalar.
        InvalidPrivateKey: scalar is zero or not below the curve order.
    """
    private_key = _decode(private_hex, 32, "private key")
    public_key = _decode(public_hex, 33, "public key")

    if not scalar_in_range(int.from_bytes(private_key, "big")):
        raise InvalidPrivateKey("private scalar must be in [1, n-1]")

    try:
        PublicKey(public_key)
    except ValueError as e:
        raise InvalidKeyEncoding(f"public key is not a point on secp256k1: {e}") from e

    if _public_point(private_key) != public_key:
        raise InvalidKeyEncoding("public key does not correspond to the private key")

    return KeyPair(private_key=private_key, public_key=public_key)
