import json
import math
import re
from collections.abc import Mapping
from decimal import Decimal

from tap_errors import EncodingPrecondition, SequenceOutOfRange

# TAP protocol markers
PROTOCOL = "tap"
OP_PRIVILEGE_AUTH = "privilege-auth"
OP_TOKEN_MINT = "token-mint"
OP_DMT_MINT = "dmt-mint"

# Op kinds understood by encode(); verification ops share the privilege-auth tag
KIND_AUTH = "auth"
KIND_TOKEN_MINT = OP_TOKEN_MINT
KIND_DMT_MINT = OP_DMT_MINT
KIND_VERIFICATION = "verification"

SEPARATOR = "-"

# Largest integer a JSON number keeps exactly in every consumer
MAX_SEQUENCE = 2 ** 53 - 1
MAX_COLLECTION_LENGTH = 512

_SHA256_HEX = re.compile(r"[0-9a-fA-F]{64}")
_DECIMAL = re.compile(r"[0-9]+(\.[0-9]+)?")

# Number.prototype.toString switches to exponent form outside [1e-6, 1e21)
_JS_EXPONENT_ABOVE = 1e21


def _js_float(value: float) -> str:
    """Format a finite float as ECMAScript Number::toString does."""
    if value == 0:
        return "0"
    # repr is the shortest round-trip form, the same digits JS picks
    sign, digit_tuple, exp = Decimal(repr(value)).as_tuple()
    digits = "".join(map(str, digit_tuple))
    stripped = digits.rstrip("0")
    exp += len(digits) - len(stripped)
    digits = stripped
    k = len(digits)
    n = exp + k
    if k <= n <= 21:
        text = digits + "0" * (n - k)
    elif 0 < n <= 21:
        text = digits[:n] + "." + digits[n:]
    elif -6 < n <= 0:
        text = "0." + "0" * -n + digits
    else:
        e = n - 1
        mantissa = digits if k == 1 else digits[0] + "." + digits[1:]
        text = f"{mantissa}e{'+' if e >= 0 else '-'}{abs(e)}"
    return "-" + text if sign else text


def stringify(value) -> str:
    """
    Render a scalar the way TAP tooling does with `'' + value`.

    Booleans become true/false and floats follow JavaScript number
    formatting, so 1000.0 and 1000 both contribute "1000" to the canonical
    message while 1e21 contributes "1e+21".
    """
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int):
        return str(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            raise EncodingPrecondition(f"non-finite number {value!r} has no canonical form")
        return _js_float(value)
    raise EncodingPrecondition(f"cannot stringify {type(value).__name__} value")


def normalize_json(value):
    """
    Check a freeform payload is plain JSON and return it in the shape
    JSON.stringify would print: integral floats below 1e21 become ints.

    Floats Python would print with a negative exponent (1e-07 where
    JavaScript prints 1e-7 or 0.00001) are rejected.
    """
    if value is None or isinstance(value, (str, bool, int)):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise EncodingPrecondition(f"non-finite number {value!r} is not JSON")
        if value.is_integer() and abs(value) < _JS_EXPONENT_ABOVE:
            return int(value)
        if repr(value) != _js_float(value):
            raise EncodingPrecondition(f"{value!r} renders differently in JSON.stringify; pass it as a string")
        return value
    if isinstance(value, Mapping):
        out = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise EncodingPrecondition(f"JSON object keys must be strings, got {type(key).__name__}")
            out[key] = normalize_json(item)
        return out
    if isinstance(value, (list, tuple)):
        return [normalize_json(item) for item in value]
    raise EncodingPrecondition(f"{type(value).__name__} is not a JSON value")


def to_json(value) -> str:
    # compact, insertion-ordered, non-ASCII left as is
    return json.dumps(normalize_json(value), separators=(",", ":"), ensure_ascii=False, allow_nan=False)


def _join(*parts) -> bytes:
    return SEPARATOR.join(stringify(p) for p in parts).encode("utf-8")


# ---------- preconditions ----------

def require_text(name: str, value) -> str:
    if not isinstance(value, str) or not value:
        raise EncodingPrecondition(f"{name} must be a non-empty string")
    return value


def require_number(name: str, value):
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise EncodingPrecondition(f"{name} must be a non-negative number or a decimal string")
    if isinstance(value, str) and not _DECIMAL.fullmatch(value):
        raise EncodingPrecondition(f"{name} must be a decimal number, got {value!r}")
    if not isinstance(value, str) and value < 0:
        raise EncodingPrecondition(f"{name} must not be negative, got {value!r}")
    stringify(value)
    return normalize_json(value)


def require_sequence(value) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise EncodingPrecondition("sequence must be an unsigned integer")
    if value < 0 or value > MAX_SEQUENCE:
        raise SequenceOutOfRange(f"sequence {value} is outside [0, {MAX_SEQUENCE}]")
    return value


def require_collection(value) -> str:
    require_text("collection", value)
    if len(value) > MAX_COLLECTION_LENGTH:
        raise EncodingPrecondition(
            f"collection may hold at most {MAX_COLLECTION_LENGTH} characters, got {len(value)}"
        )
    return value


def require_content_hash(value) -> str:
    if not isinstance(value, str) or not _SHA256_HEX.fullmatch(value):
        raise EncodingPrecondition("content hash must be 64 hex characters (sha256)")
    return value


# ---------- canonical messages ----------
#
# Field values are joined with a bare hyphen and never escaped. Callers must
# keep the separator out of ticker, address, collection and dependency when
# that would make two different ops encode to the same message.

def auth_message(message, salt) -> bytes:
    """
    Canonical bytes of a privilege-auth declaration: JSON(message) + salt.
    """
    return (to_json(message) + stringify(salt)).encode("utf-8")


def token_mint_message(ticker: str, amount, address: str, salt) -> bytes:
    """
    tap-token-mint-{ticker}-{amount}-{address}-{salt}
    The ticker is signed exactly as given.
    """
    return _join(PROTOCOL, OP_TOKEN_MINT, ticker, amount, address, salt)


def dmt_mint_message(ticker: str, block, dependency: str, address: str, salt) -> bytes:
    """
    tap-dmt-mint-{ticker}-{block}-{dependency}-{address}-{salt}
    The ticker is lower-cased before it is signed.
    """
    return _join(PROTOCOL, OP_DMT_MINT, ticker.lower(), block, dependency, address, salt)


def verification_message(authority_id: str, collection: str, content_hash: str, sequence: int, address: str, salt) -> bytes:
    """
    {authority_id}-{collection}-{content_hash}-{sequence}-{address}-{salt}
    No protocol prefix; the authority's inscription id leads.
    """
    return _join(authority_id, collection, content_hash, sequence, address, salt)


_ENCODERS = {
    KIND_AUTH: auth_message,
    KIND_TOKEN_MINT: token_mint_message,
    KIND_DMT_MINT: dmt_mint_message,
    KIND_VERIFICATION: verification_message,
}


def encode(kind: str, fields: Mapping) -> bytes:
    """
    Canonical bytes for an op kind from its named fields.

    `fields` holds the keyword arguments of the matching *_message function,
    salt included.
    """
    try:
        encoder = _ENCODERS[kind]
    except KeyError:
        raise EncodingPrecondition(f"unknown op kind {kind!r}") from None
    try:
        return encoder(**fields)
    except TypeError as e:
        raise EncodingPrecondition(f"bad fields for {kind}: {e}") from e
