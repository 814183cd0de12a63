import hashlib
from dataclasses import dataclass

from coincurve import PrivateKey, PublicKey
from coincurve.ecdsa import cdata_to_der, deserialize_recoverable, recoverable_convert

from tap_errors import InvalidPrivateKey, RecoveryFailed

# secp256k1 group order
CURVE_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

# ---------- fixed-width helpers ----------

def u256(x: int) -> bytes:
    return x.to_bytes(32, "big")

def b32(x: bytes) -> bytes:
    if len(x) != 32:
        raise ValueError(f"expected 32 bytes, got {len(x)}")
    return x

def scalar_in_range(x: int) -> bool:
    return 0 < x < CURVE_ORDER

# ---------- hasher ----------

def digest(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()

# ---------- signature value ----------

@dataclass(frozen=True)
class RecoverableSignature:
    r: int
    s: int
    recovery_id: int

    def to_bytes(self) -> bytes:
        # 65-byte compact recoverable form (r||s||v) as libsecp256k1 expects it
        return u256(self.r) + u256(self.s) + bytes([self.recovery_id])

    @classmethod
    def from_bytes(cls, sig65: bytes) -> "RecoverableSignature":
        if len(sig65) != 65:
            raise ValueError(f"recoverable signature must be 65 bytes, got {len(sig65)}")
        return cls(
            r=int.from_bytes(sig65[:32], "big"),
            s=int.from_bytes(sig65[32:64], "big"),
            recovery_id=sig65[64],
        )

    def to_record(self) -> dict:
        # TAP carries every component as a decimal string
        return {"v": str(self.recovery_id), "r": str(self.r), "s": str(self.s)}

    @classmethod
    def from_record(cls, record) -> "RecoverableSignature":
        """
        Parse the {"v", "r", "s"} object embedded in an op.

        Raises ValueError if a component is missing or not a decimal integer.
        """
        if not isinstance(record, dict):
            raise ValueError("signature must be an object")
        try:
            return cls(r=int(record["r"]), s=int(record["s"]), recovery_id=int(record["v"]))
        except (KeyError, TypeError) as e:
            raise ValueError(f"malformed signature object: {e}") from e

    def is_well_formed(self) -> bool:
        return (
            scalar_in_range(self.r)
            and scalar_in_range(self.s)
            and self.recovery_id in (0, 1, 2, 3)
        )

# ---------- deterministic secp256k1 ----------

def sign_digest(digest_32: bytes, privkey_32: bytes) -> RecoverableSignature:
    b32(digest_32)

    if len(privkey_32) != 32 or not scalar_in_range(int.from_bytes(privkey_32, "big")):
        raise InvalidPrivateKey("private scalar must be 32 bytes in [1, n-1]")

    pk = PrivateKey(privkey_32)

    # coincurve uses libsecp256k1 RFC6979 deterministic nonce generation,
    # so the nonce is derived only from (digest, private scalar)
    sig65 = pk.sign_recoverable(digest_32, hasher=None)

    return RecoverableSignature.from_bytes(sig65)

def verify_digest(digest_32: bytes, signature: RecoverableSignature, pubkey_bytes: bytes) -> bool:
    if len(digest_32) != 32 or not signature.is_well_formed():
        return False
    try:
        pub = PublicKey(pubkey_bytes)
        der = cdata_to_der(recoverable_convert(deserialize_recoverable(signature.to_bytes())))
        return pub.verify(der, digest_32, hasher=None)
    except (ValueError, TypeError):
        # off-curve point or a signature libsecp256k1 refuses to parse
        return False

def recover_public_key(digest_32: bytes, signature: RecoverableSignature) -> bytes:
    """Recover the compressed public point from (digest, r, s, recovery id)."""
    if len(digest_32) != 32:
        raise RecoveryFailed(f"digest must be 32 bytes, got {len(digest_32)}")
    if not signature.is_well_formed():
        raise RecoveryFailed("r and s must be in [1, n-1] and the recovery id in 0..3")
    try:
        recovered = PublicKey.from_signature_and_message(signature.to_bytes(), digest_32, hasher=None)
    except ValueError as e:
        raise RecoveryFailed(str(e)) from e
    return recovered.format(compressed=True)
