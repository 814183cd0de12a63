import json
import os
import time

LOG = "audit.jsonl"

def append(entry: dict, path: str = None) -> dict:
    """Append one signed-op record to the local JSONL journal and return it."""
    entry = dict(entry, ts_ns=time.time_ns())
    # one op per line; the published op text is kept verbatim inside "result"
    line = json.dumps(entry, separators=(",", ":"), ensure_ascii=False)

    with open(path or LOG, "a", encoding="utf-8") as journal:
        print(line, file=journal)
        journal.flush()
        os.fsync(journal.fileno())
    return entry

def read(path: str = None) -> list:
    with open(path or LOG, encoding="utf-8") as journal:
        return [json.loads(line) for line in journal if line.strip()]
