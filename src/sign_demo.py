# ============================================================================
# MODULE: sign_demo.py
# PURPOSE: Console walk-through that signs one op of each kind.
#
# Configuration (environment):
#   TAP_PRIVATE_KEY / TAP_PUBLIC_KEY   hex key pair; generated when unset
#   TAP_AUDIT_LOG                      JSONL journal of emitted ops
#   TAP_LOG_LEVEL                      logging level name (default INFO)
#
# In production the authority keeps its private key somewhere safe and signs
# on demand. A generated pair is printed so it can be stored and reused.
# ============================================================================

import logging
import os
import random
import sys

import audit_log
import keypair
from privilege_auth import sign_auth, sign_dmt_mint, sign_mint, sign_verification
from tap_errors import TapSignError

log = logging.getLogger("sign_demo")

ADDRESS = "tb1pf9jluy2g797290uq5nutqm2yuynds6uf868ytc37nht53c5j8w3s7nfta7"


def load_key_pair() -> keypair.KeyPair:
    private_hex = os.getenv("TAP_PRIVATE_KEY")
    public_hex = os.getenv("TAP_PUBLIC_KEY")
    if private_hex and public_hex:
        return keypair.from_hex(private_hex, public_hex)
    if private_hex or public_hex:
        raise TapSignError("set both TAP_PRIVATE_KEY and TAP_PUBLIC_KEY, or neither")
    log.info("no key pair configured, generating a random one")
    return keypair.generate()


def sign_examples(pair: keypair.KeyPair) -> list:
    # random salts are fine for a demo; real authorities use unique ids or nonces
    return [
        ("CREATE PRIVILEGE AUTH RESULT", sign_auth(pair, {"name": "Some privilege authority"}, random.random())),
        ("CREATE MINT RESULT", sign_mint(pair, "randomtoken4", 1000, ADDRESS, random.random())),
        (
            "CREATE DMT MINT RESULT",
            sign_dmt_mint(
                pair,
                "nat",
                190002,
                "825e287bb7dd163ed633110e31bc6abb6c80815ca68b7dd3cc71d729ecaaa3dci0",
                ADDRESS,
                random.random(),
            ),
        ),
        (
            "CREATE VERIFICATION RESULT",
            sign_verification(
                pair,
                "e349a9126a9476eb534457a7e78c748aeca67ec4d53fa9f0772408fb7233a9fei0",
                "cea505f61f375ea2d8ea56f593e6b436f963753616c2095e755cb5ca4a6df85c",
                "super collection",
                111,
                "tb1pltn4mqlpxxswxhmkj2ejdd0z98v74nr0xxdresvwvp5cyvctm0zs3m750l",
                random.random(),
            ),
        ),
    ]


def main() -> int:
    logging.basicConfig(
        level=os.getenv("TAP_LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    journal = os.getenv("TAP_AUDIT_LOG", audit_log.LOG)

    try:
        pair = load_key_pair()
        results = sign_examples(pair)
    except TapSignError as e:
        log.error("signing failed: %s", e)
        return 1

    print("####### KEY PAIR ########")
    print({"pk": pair.private_hex, "pub": pair.public_hex})

    for title, (op, report) in results:
        text = op.to_json()
        print(f"####### {title} ########")
        print({"test": report.to_dict(), "result": text})
        audit_log.append({"event": "op_signed", "op": type(op).__name__, "hash": op.hash.hex(), "result": text}, journal)

    log.info("journaled %d ops to %s", len(results), journal)
    return 0


if __name__ == "__main__":
    sys.exit(main())
