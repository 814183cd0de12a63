import audit_log


def test_append_writes_one_line_per_entry(tmp_path):
    path = str(tmp_path / "audit.jsonl")

    first = audit_log.append({"event": "op_signed", "hash": "aa"}, path)
    audit_log.append({"event": "op_signed", "hash": "bb"}, path)

    with open(path, encoding="utf-8") as f:
        lines = f.read().splitlines()
    assert len(lines) == 2
    assert lines[0].startswith('{"event":"op_signed","hash":"aa","ts_ns":')
    assert first["ts_ns"] > 0


def test_append_does_not_mutate_caller_entry(tmp_path):
    entry = {"event": "init"}
    audit_log.append(entry, str(tmp_path / "audit.jsonl"))
    assert entry == {"event": "init"}


def test_read_back(tmp_path):
    path = str(tmp_path / "audit.jsonl")
    audit_log.append({"result": '{"p":"tap","tick":"été"}'}, path)

    entries = audit_log.read(path)
    assert entries[0]["result"] == '{"p":"tap","tick":"été"}'
