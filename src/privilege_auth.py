# ============================================================================
# MODULE: privilege_auth.py
# PURPOSE: Build signed TAP privilege-auth, token-mint, dmt-mint and
#          verification ops, ready for inscription.
#
# Every builder runs the same pipeline:
#   validate -> canonical bytes -> sha256 -> recoverable sign -> assemble
#   -> render JSON -> re-parse -> re-derive hash -> verify + recover
# The op is only returned when the re-parsed text verifies against the
# signer's public key.
# ============================================================================

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional, Tuple, Union

import op_struct
from keypair import KeyPair
from op_struct import (
    KIND_AUTH,
    KIND_DMT_MINT,
    KIND_TOKEN_MINT,
    KIND_VERIFICATION,
    OP_DMT_MINT,
    OP_PRIVILEGE_AUTH,
    OP_TOKEN_MINT,
    PROTOCOL,
)
from sign_core import RecoverableSignature, digest, recover_public_key, sign_digest, verify_digest
from tap_errors import EncodingPrecondition, RecoveryFailed, SelfVerificationFailed, SequenceOutOfRange

log = logging.getLogger(__name__)


@dataclass(frozen=True)
class VerificationReport:
    valid: bool
    signer_public_key: bytes
    recovered_public_key: Optional[bytes]

    def to_dict(self) -> dict:
        return {
            "valid": self.valid,
            "pub": self.signer_public_key.hex(),
            "pubRecovered": self.recovered_public_key.hex() if self.recovered_public_key else None,
        }


# ---------- op records ----------

@dataclass(frozen=True)
class AuthorityDeclaration:
    message: Any
    salt: str
    sig: RecoverableSignature
    hash: bytes

    def to_record(self) -> dict:
        return {
            "p": PROTOCOL,
            "op": OP_PRIVILEGE_AUTH,
            "sig": self.sig.to_record(),
            "hash": self.hash.hex(),
            "salt": self.salt,
            "auth": self.message,
        }

    def to_json(self) -> str:
        return _render(self.to_record())


@dataclass(frozen=True)
class TokenMint:
    ticker: str
    amount: Union[int, float, str]
    address: str
    salt: str
    sig: RecoverableSignature
    hash: bytes

    def to_record(self) -> dict:
        return {
            "p": PROTOCOL,
            "op": OP_TOKEN_MINT,
            "tick": self.ticker,
            "amt": self.amount,
            "prv": _private_block(self.sig, self.hash, self.address, self.salt),
        }

    def to_json(self) -> str:
        return _render(self.to_record())


@dataclass(frozen=True)
class DmtMint:
    ticker: str
    block: Union[int, str]
    dependency: str
    address: str
    salt: str
    sig: RecoverableSignature
    hash: bytes

    def to_record(self) -> dict:
        return {
            "p": PROTOCOL,
            "op": OP_DMT_MINT,
            "tick": self.ticker,
            "blk": self.block,
            "dep": self.dependency,
            "prv": _private_block(self.sig, self.hash, self.address, self.salt),
        }

    def to_json(self) -> str:
        return _render(self.to_record())


@dataclass(frozen=True)
class ProvenanceVerification:
    authority_id: str
    content_hash: str
    collection: str
    sequence: int
    address: str
    salt: str
    sig: RecoverableSignature
    hash: bytes

    def to_record(self) -> dict:
        return {
            "p": PROTOCOL,
            "op": OP_PRIVILEGE_AUTH,
            "sig": self.sig.to_record(),
            "hash": self.hash.hex(),
            "address": self.address,
            "salt": self.salt,
            "prv": self.authority_id,
            "verify": self.content_hash,
            "col": self.collection,
            "seq": self.sequence,
        }

    def to_json(self) -> str:
        return _render(self.to_record())


Op = Union[AuthorityDeclaration, TokenMint, DmtMint, ProvenanceVerification]


def _private_block(sig: RecoverableSignature, hash_: bytes, address: str, salt: str) -> dict:
    return {"sig": sig.to_record(), "hash": hash_.hex(), "address": address, "salt": salt}


def _render(record: dict) -> str:
    return json.dumps(record, separators=(",", ":"), ensure_ascii=False)


# ---------- re-derivation from a published record ----------

def _signed_part(record: dict) -> Tuple[dict, bytes]:
    """
    Split a parsed op into (object holding sig/hash, canonical bytes).

    Raises ValueError, KeyError or a TapSignError when the record is not a
    well-formed TAP op.
    """
    if record.get("p") != PROTOCOL:
        raise ValueError("not a tap op")
    op = record.get("op")
    if op == OP_TOKEN_MINT:
        prv = record["prv"]
        message = op_struct.token_mint_message(record["tick"], record["amt"], prv["address"], prv["salt"])
        return prv, message
    if op == OP_DMT_MINT:
        prv = record["prv"]
        message = op_struct.dmt_mint_message(
            record["tick"], record["blk"], record["dep"], prv["address"], prv["salt"]
        )
        return prv, message
    if op == OP_PRIVILEGE_AUTH and "verify" in record:
        message = op_struct.verification_message(
            record["prv"], record["col"], record["verify"], record["seq"], record["address"], record["salt"]
        )
        return record, message
    if op == OP_PRIVILEGE_AUTH and "auth" in record:
        return record, op_struct.auth_message(record["auth"], record["salt"])
    raise ValueError(f"unsupported op {op!r}")


def verify_op(op: Union[Op, dict, str], public_key: bytes) -> VerificationReport:
    """
    Re-derive the hash of an op from its own fields and check its signature.

    Accepts an Op, a parsed record or the JSON text. The report is valid when
    the embedded hash matches the re-derived one, the signature verifies
    against `public_key`, and recovery yields `public_key`. Malformed input
    gives an invalid report instead of an exception.
    """
    try:
        if isinstance(op, str):
            record = json.loads(op)
        elif isinstance(op, dict):
            record = op
        else:
            record = op.to_record()
        holder, message = _signed_part(record)
        signature = RecoverableSignature.from_record(holder["sig"])
        embedded_hash = holder["hash"]
    except (
        ValueError, KeyError, TypeError, AttributeError, RecursionError, EncodingPrecondition, SequenceOutOfRange
    ) as e:
        log.debug("cannot re-derive op hash: %s", e)
        return VerificationReport(valid=False, signer_public_key=public_key, recovered_public_key=None)

    rederived = digest(message)
    valid = verify_digest(rederived, signature, public_key) and embedded_hash == rederived.hex()

    try:
        recovered = recover_public_key(rederived, signature)
    except RecoveryFailed as e:
        log.debug("public key recovery failed: %s", e)
        recovered = None

    return VerificationReport(
        valid=valid and recovered == public_key,
        signer_public_key=public_key,
        recovered_public_key=recovered,
    )


def _self_verify(op: Op, key_pair: KeyPair) -> VerificationReport:
    # work on the rendered text, not the in-memory digest
    report = verify_op(json.loads(op.to_json()), key_pair.public_key)
    if not report.valid:
        log.error("self-verification failed for %s op hash=%s", type(op).__name__, op.hash.hex())
        raise SelfVerificationFailed("signed op does not verify against the signer's public key", report)
    return report


def _sign(kind: str, fields: dict, key_pair: KeyPair) -> Tuple[RecoverableSignature, bytes]:
    msg_hash = digest(op_struct.encode(kind, fields))
    return sign_digest(msg_hash, key_pair.private_key), msg_hash


# ---------- builders ----------

def sign_auth(key_pair: KeyPair, message, salt) -> Tuple[AuthorityDeclaration, VerificationReport]:
    """
    Declare a privilege authority.

    `message` is a freeform JSON value published under "auth" (for example
    {"name": "..."}). The salt must make the (message, salt) pair unique for
    this authority; a repeated hash is ignored by indexers as already
    processed. An inscription id the declaration refers to is a good salt.
    """
    try:
        message = op_struct.normalize_json(message)
    except RecursionError:
        raise EncodingPrecondition("declaration payload is nested too deeply") from None
    salt = op_struct.stringify(salt)

    sig, msg_hash = _sign(KIND_AUTH, {"message": message, "salt": salt}, key_pair)
    op = AuthorityDeclaration(message=message, salt=salt, sig=sig, hash=msg_hash)

    report = _self_verify(op, key_pair)
    log.debug("built privilege-auth op hash=%s", msg_hash.hex())
    return op, report


def sign_mint(key_pair: KeyPair, ticker: str, amount, address: str, salt) -> Tuple[TokenMint, VerificationReport]:
    """
    Sign a token-mint for `address`.

    Prefer an incrementing nonce over a random salt if the authority wants to
    re-index its own mints; indexers accept each hash only once.
    """
    op_struct.require_text("ticker", ticker)
    amount = op_struct.require_number("amount", amount)
    op_struct.require_text("address", address)
    salt = op_struct.stringify(salt)

    fields = {"ticker": ticker, "amount": amount, "address": address, "salt": salt}
    sig, msg_hash = _sign(KIND_TOKEN_MINT, fields, key_pair)
    op = TokenMint(ticker=ticker, amount=amount, address=address, salt=salt, sig=sig, hash=msg_hash)

    report = _self_verify(op, key_pair)
    log.debug("built token-mint op tick=%s hash=%s", ticker, msg_hash.hex())
    return op, report


def sign_dmt_mint(
    key_pair: KeyPair, ticker: str, block, dependency: str, address: str, salt
) -> Tuple[DmtMint, VerificationReport]:
    """
    Sign a DMT mint of `block` for `address`.

    The ticker is lower-cased both in the signed message and in the op.
    `dependency` is the inscription id the mint depends on and is mandatory.
    """
    op_struct.require_text("ticker", ticker)
    block = op_struct.require_number("block", block)
    op_struct.require_text("dependency", dependency)
    op_struct.require_text("address", address)
    ticker = ticker.lower()
    salt = op_struct.stringify(salt)

    fields = {"ticker": ticker, "block": block, "dependency": dependency, "address": address, "salt": salt}
    sig, msg_hash = _sign(KIND_DMT_MINT, fields, key_pair)
    op = DmtMint(
        ticker=ticker, block=block, dependency=dependency, address=address, salt=salt, sig=sig, hash=msg_hash
    )

    report = _self_verify(op, key_pair)
    log.debug("built dmt-mint op tick=%s blk=%s hash=%s", ticker, block, msg_hash.hex())
    return op, report


def sign_verification(
    key_pair: KeyPair,
    authority_id: str,
    content_hash: str,
    collection: str,
    sequence: int,
    address: str,
    salt,
) -> Tuple[ProvenanceVerification, VerificationReport]:
    """
    Attest the sha256 `content_hash` of a file as part of `collection`.

    Args:
        key_pair: the authority's keys
        authority_id: inscription id of the authority's privilege-auth op
        content_hash: sha256 of the content, 64 hex characters
        collection: collection name, at most 512 characters
        sequence: unsigned integer up to 2**53 - 1, e.g. the collectible id.
            Use distinct sequences when the same hash is attested twice;
            otherwise 0 is fine.
        address: address that receives the provenance
        salt: uniqueness value, e.g. the ordinal's inscription id

    Raises:
        SequenceOutOfRange: sequence is negative or above 2**53 - 1
        EncodingPrecondition: any other field is malformed
    """
    op_struct.require_text("authority id", authority_id)
    op_struct.require_content_hash(content_hash)
    op_struct.require_collection(collection)
    op_struct.require_sequence(sequence)
    op_struct.require_text("address", address)
    salt = op_struct.stringify(salt)

    fields = {
        "authority_id": authority_id,
        "collection": collection,
        "content_hash": content_hash,
        "sequence": sequence,
        "address": address,
        "salt": salt,
    }
    sig, msg_hash = _sign(KIND_VERIFICATION, fields, key_pair)
    op = ProvenanceVerification(
        authority_id=authority_id,
        content_hash=content_hash,
        collection=collection,
        sequence=sequence,
        address=address,
        salt=salt,
        sig=sig,
        hash=msg_hash,
    )

    report = _self_verify(op, key_pair)
    log.debug("built verification op col=%s seq=%d hash=%s", collection, sequence, msg_hash.hex())
    return op, report
