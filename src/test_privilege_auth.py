import copy
import json

import pytest

import keypair
from privilege_auth import (
    AuthorityDeclaration,
    DmtMint,
    ProvenanceVerification,
    TokenMint,
    sign_auth,
    sign_dmt_mint,
    sign_mint,
    sign_verification,
    verify_op,
)
from sign_core import digest
from tap_errors import EncodingPrecondition, SelfVerificationFailed, SequenceOutOfRange

ADDRESS = "tb1pf9jluy2g797290uq5nutqm2yuynds6uf868ytc37nht53c5j8w3s7nfta7"
DEP = "825e287bb7dd163ed633110e31bc6abb6c80815ca68b7dd3cc71d729ecaaa3dci0"
AUTHORITY = "e349a9126a9476eb534457a7e78c748aeca67ec4d53fa9f0772408fb7233a9fei0"
CONTENT = "cea505f61f375ea2d8ea56f593e6b436f963753616c2095e755cb5ca4a6df85c"


@pytest.fixture
def pair():
    # fixed private key (DO NOT USE IN PRODUCTION)
    return keypair.from_hex(
        "1" * 64,
        keypair._public_point(bytes.fromhex("1" * 64)).hex(),
    )


@pytest.fixture
def built(pair):
    """One op of each kind, keyed by kind."""
    return {
        "auth": sign_auth(pair, {"name": "Some privilege authority"}, 0.25),
        "mint": sign_mint(pair, "randomtoken4", 1000, ADDRESS, "0.123"),
        "dmt": sign_dmt_mint(pair, "nat", 190002, DEP, ADDRESS, 0.5),
        "verification": sign_verification(pair, AUTHORITY, CONTENT, "super collection", 111, ADDRESS, 7),
    }


class TestRoundTrip:
    @pytest.mark.parametrize("kind", ["auth", "mint", "dmt", "verification"])
    def test_report_is_valid(self, built, pair, kind):
        op, report = built[kind]
        assert report.valid
        assert report.recovered_public_key == pair.public_key
        assert report.signer_public_key == pair.public_key

    @pytest.mark.parametrize("kind", ["auth", "mint", "dmt", "verification"])
    def test_published_text_verifies(self, built, pair, kind):
        op, _ = built[kind]
        report = verify_op(op.to_json(), pair.public_key)
        assert report.valid

    @pytest.mark.parametrize("kind", ["auth", "mint", "dmt", "verification"])
    def test_other_key_does_not_verify(self, built, kind):
        op, _ = built[kind]
        report = verify_op(op, keypair.generate().public_key)
        assert not report.valid

    def test_fresh_key_pairs(self):
        pair = keypair.generate()
        _, report = sign_mint(pair, "tok", 1, ADDRESS, 1)
        assert report.valid


class TestTokenMintExample:
    def test_end_to_end(self, pair):
        op, report = sign_mint(pair, "randomtoken4", 1000, "tb1p...nfta7", "0.123")

        expected = digest(b"tap-token-mint-randomtoken4-1000-tb1p...nfta7-0.123")
        assert op.hash == expected
        assert op.hash.hex() == "c9699b4e0aedf43e2f357b6ac09007978988865acf19cefadf9bab718eba4d48"
        assert report.valid
        assert report.recovered_public_key == pair.public_key

    def test_record_layout(self, built):
        op, _ = built["mint"]
        record = json.loads(op.to_json())

        assert list(record) == ["p", "op", "tick", "amt", "prv"]
        assert list(record["prv"]) == ["sig", "hash", "address", "salt"]
        assert record["p"] == "tap"
        assert record["op"] == "token-mint"
        assert record["amt"] == 1000
        assert record["prv"]["salt"] == "0.123"
        assert set(record["prv"]["sig"]) == {"v", "r", "s"}

    def test_compact_text(self, built):
        op, _ = built["mint"]
        text = op.to_json()
        assert text.startswith('{"p":"tap","op":"token-mint","tick":"randomtoken4","amt":1000,"prv":{"sig":{')
        assert " " not in text


class TestLayouts:
    def test_auth_layout(self, built):
        op, _ = built["auth"]
        record = json.loads(op.to_json())
        assert isinstance(op, AuthorityDeclaration)
        assert list(record) == ["p", "op", "sig", "hash", "salt", "auth"]
        assert record["op"] == "privilege-auth"
        assert record["salt"] == "0.25"
        assert record["auth"] == {"name": "Some privilege authority"}
        assert op.hash == digest(b'{"name":"Some privilege authority"}0.25')

    def test_dmt_layout(self, built):
        op, _ = built["dmt"]
        record = json.loads(op.to_json())
        assert isinstance(op, DmtMint)
        assert list(record) == ["p", "op", "tick", "blk", "dep", "prv"]
        assert record["op"] == "dmt-mint"
        assert record["dep"] == DEP

    def test_verification_layout(self, built):
        op, _ = built["verification"]
        record = json.loads(op.to_json())
        assert isinstance(op, ProvenanceVerification)
        assert list(record) == ["p", "op", "sig", "hash", "address", "salt", "prv", "verify", "col", "seq"]
        assert record["op"] == "privilege-auth"
        assert record["prv"] == AUTHORITY
        assert record["seq"] == 111
        expected = f"{AUTHORITY}-super collection-{CONTENT}-111-{ADDRESS}-7".encode()
        assert op.hash == digest(expected)


class TestDmtCase:
    def test_upper_and_lower_ticker_sign_the_same_message(self, pair):
        upper, _ = sign_dmt_mint(pair, "NAT", 190002, DEP, ADDRESS, "0.5")
        lower, _ = sign_dmt_mint(pair, "nat", 190002, DEP, ADDRESS, "0.5")
        assert upper.hash == lower.hash
        assert upper.ticker == "nat"

    def test_dependency_is_mandatory(self, pair):
        with pytest.raises(EncodingPrecondition):
            sign_dmt_mint(pair, "nat", 190002, "", ADDRESS, 1)


class TestSequenceRange:
    def test_max_sequence_signs(self, pair):
        op, report = sign_verification(pair, AUTHORITY, CONTENT, "col", 9007199254740991, ADDRESS, 1)
        assert report.valid
        assert json.loads(op.to_json())["seq"] == 9007199254740991

    def test_one_above_fails(self, pair):
        with pytest.raises(SequenceOutOfRange):
            sign_verification(pair, AUTHORITY, CONTENT, "col", 9007199254740992, ADDRESS, 1)


class TestSalt:
    def test_same_inputs_same_digest(self, pair):
        a, _ = sign_mint(pair, "tok", 5, ADDRESS, 42)
        b, _ = sign_mint(pair, "tok", 5, ADDRESS, 42)
        assert a.hash == b.hash
        assert a.to_json() == b.to_json()

    def test_different_salt_different_digest(self, pair):
        a, _ = sign_mint(pair, "tok", 5, ADDRESS, 42)
        b, _ = sign_mint(pair, "tok", 5, ADDRESS, 43)
        assert a.hash != b.hash

    def test_digest_does_not_depend_on_signer(self, pair):
        a, _ = sign_mint(pair, "tok", 5, ADDRESS, 42)
        b, _ = sign_mint(keypair.generate(), "tok", 5, ADDRESS, 42)
        assert a.hash == b.hash
        assert a.sig != b.sig


def _tamper(record, path, value):
    record = copy.deepcopy(record)
    target = record
    for key in path[:-1]:
        target = target[key]
    target[path[-1]] = value
    return record


class TestTamperSensitivity:
    @pytest.mark.parametrize(
        "kind, path, value",
        [
            ("mint", ("tick",), "othertoken"),
            ("mint", ("amt",), 1001),
            ("mint", ("prv", "address"), "tb1qattacker"),
            ("mint", ("prv", "salt"), "0.124"),
            ("mint", ("prv", "hash"), "00" * 32),
            ("dmt", ("tick",), "dmt"),
            ("dmt", ("blk",), 190003),
            ("dmt", ("dep",), "ffi0"),
            ("dmt", ("prv", "address"), "tb1qattacker"),
            ("verification", ("seq",), 112),
            ("verification", ("col",), "other collection"),
            ("verification", ("verify",), "0" * 64),
            ("verification", ("prv",), "otheri0"),
            ("verification", ("address",), "tb1qattacker"),
            ("verification", ("salt",), "8"),
            ("auth", ("auth", "name"), "Someone else"),
            ("auth", ("salt",), "0.26"),
        ],
    )
    def test_single_field_change_invalidates(self, built, pair, kind, path, value):
        op, _ = built[kind]
        record = _tamper(op.to_record(), path, value)
        assert not verify_op(record, pair.public_key).valid

    def test_signature_swap_invalidates(self, built, pair):
        mint, _ = built["mint"]
        dmt, _ = built["dmt"]
        record = _tamper(mint.to_record(), ("prv", "sig"), dmt.sig.to_record())
        assert not verify_op(record, pair.public_key).valid

    @pytest.mark.parametrize(
        "record",
        [
            "not json",
            {},
            {"p": "brc-20", "op": "token-mint"},
            {"p": "tap", "op": "token-transfer"},
            {"p": "tap", "op": "token-mint", "tick": "x", "amt": 1},
            {"p": "tap", "op": "privilege-auth", "auth": {}, "salt": "1", "hash": "00", "sig": {"v": "9"}},
            pytest.param(
                '{"p":"tap","op":"privilege-auth","salt":"1","auth":' + "[" * 100000 + "]" * 100000 + "}",
                id="deeply-nested",
            ),
        ],
    )
    def test_malformed_records_are_invalid_not_errors(self, pair, record):
        report = verify_op(record, pair.public_key)
        assert not report.valid
        assert report.recovered_public_key is None


class TestPreconditions:
    def test_empty_ticker(self, pair):
        with pytest.raises(EncodingPrecondition):
            sign_mint(pair, "", 1, ADDRESS, 1)

    @pytest.mark.parametrize("amount", ["1-evil", "abc", "-5", -1])
    def test_non_decimal_amount(self, pair, amount):
        with pytest.raises(EncodingPrecondition):
            sign_mint(pair, "tok", amount, ADDRESS, 1)

    def test_non_decimal_block(self, pair):
        with pytest.raises(EncodingPrecondition):
            sign_dmt_mint(pair, "nat", "abc", DEP, ADDRESS, 1)

    def test_deeply_nested_payload(self, pair):
        payload = []
        inner = payload
        for _ in range(100000):
            inner.append([])
            inner = inner[0]
        with pytest.raises(EncodingPrecondition):
            sign_auth(pair, {"deep": payload}, 1)

    def test_bool_amount(self, pair):
        with pytest.raises(EncodingPrecondition):
            sign_mint(pair, "tok", True, ADDRESS, 1)

    def test_bad_content_hash(self, pair):
        with pytest.raises(EncodingPrecondition):
            sign_verification(pair, AUTHORITY, "abc", "col", 1, ADDRESS, 1)

    def test_non_json_payload(self, pair):
        with pytest.raises(EncodingPrecondition):
            sign_auth(pair, {"when": object()}, 1)

    def test_payload_floats_are_normalized(self, pair):
        op, report = sign_auth(pair, {"ver": 1.0}, 1)
        assert op.message == {"ver": 1}
        assert op.to_json().endswith('"auth":{"ver":1}}')
        assert report.valid


class TestSelfVerification:
    def test_mismatched_key_pair_emits_nothing(self, pair):
        wrong = keypair.KeyPair(private_key=pair.private_key, public_key=keypair.generate().public_key)

        with pytest.raises(SelfVerificationFailed) as exc:
            sign_mint(wrong, "tok", 1, ADDRESS, 1)

        assert exc.value.report is not None
        assert not exc.value.report.valid
        assert exc.value.report.recovered_public_key == pair.public_key

    def test_report_dict(self, built, pair):
        _, report = built["mint"]
        assert report.to_dict() == {
            "valid": True,
            "pub": pair.public_hex,
            "pubRecovered": pair.public_hex,
        }


class TestNumberRendering:
    def test_integral_float_amount_is_published_as_integer(self, pair):
        op, report = sign_mint(pair, "tok", 1000.0, ADDRESS, 1)
        as_int, _ = sign_mint(pair, "tok", 1000, ADDRESS, 1)

        assert '"amt":1000,' in op.to_json()
        assert op.hash == as_int.hash
        assert report.valid

    def test_integral_float_block_is_published_as_integer(self, pair):
        op, _ = sign_dmt_mint(pair, "nat", 190002.0, DEP, ADDRESS, 1)
        assert '"blk":190002,' in op.to_json()

    def test_huge_amount_uses_javascript_exponent_form(self, pair):
        op, report = sign_mint(pair, "tok", 1e21, ADDRESS, 1)

        assert op.hash == digest(f"tap-token-mint-tok-1e+21-{ADDRESS}-1".encode())
        assert '"amt":1e+21,' in op.to_json()
        assert report.valid

    def test_decimal_string_amount_is_kept(self, pair):
        op, report = sign_mint(pair, "tok", "1000.50", ADDRESS, 1)
        assert '"amt":"1000.50",' in op.to_json()
        assert op.hash == digest(f"tap-token-mint-tok-1000.50-{ADDRESS}-1".encode())
        assert report.valid
