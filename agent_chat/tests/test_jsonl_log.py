import json

import pytest

from agent_chat.domain.exceptions import CorruptLogError, StoreWriteError, UnknownOperationError
from agent_chat.infrastructure.storage.base import LogRecord
from agent_chat.infrastructure.storage.jsonl_log import (
    JsonlAppender,
    MalformedLineError,
    decode_line,
    encode_record,
    replay_jsonl,
)
from agent_chat.infrastructure.storage.memory_store import DictStore


def _line(key, operation, value=None):
    return json.dumps({"key": key, "operation": operation, "value": value}) + "\n"


def _apply_ops(store):
    store.put("a", 1)
    store.put("b", {"nested": [1, 2, {"x": "y"}]})
    store.put("c", "中文")
    store.put("a", 2)
    store.delete("b")
    store.delete("missing")
    store.put("d", None)
    store.put("b", [True, False])
    store.delete("c")


def test_appender_round_trip(tmp_path):
    path = tmp_path / "history.jsonl"
    live = DictStore()
    disk = JsonlAppender(path, live)
    _apply_ops(disk)

    replayed = DictStore()
    stats = replay_jsonl(path, replayed)

    assert replayed.snapshot() == live.snapshot()
    for key in ["a", "b", "c", "d", "missing"]:
        assert replayed.get(key) == live.get(key)
    assert stats.applied == 9
    assert stats.puts == 6
    assert stats.deletes == 3


def test_replay_is_idempotent(tmp_path):
    path = tmp_path / "history.jsonl"
    _apply_ops(JsonlAppender(path, DictStore()))

    first, second = DictStore(), DictStore()
    replay_jsonl(path, first)
    replay_jsonl(path, second)
    assert first.snapshot() == second.snapshot()

    # 回放结果再次回放，状态不变
    again = DictStore()
    replay_jsonl(path, again)
    replay_jsonl(path, again)
    assert again.snapshot() == first.snapshot()


def test_replay_missing_file(tmp_path):
    path = tmp_path / "nope.jsonl"
    store = DictStore()
    stats = replay_jsonl(path, store)
    assert stats.applied == 0
    assert len(store) == 0
    assert not path.exists()


def test_appender_writes_one_line_per_mutation(tmp_path):
    path = tmp_path / "history.jsonl"
    disk = JsonlAppender(path, DictStore())
    disk.put("k", {"v": 1})
    disk.delete("k")

    lines = path.read_text(encoding="utf-8").splitlines()
    assert [json.loads(line) for line in lines] == [
        {"key": "k", "operation": "put", "value": {"v": 1}},
        {"key": "k", "operation": "delete", "value": None},
    ]
    assert path.read_text(encoding="utf-8").endswith("\n")


def test_appender_get_does_not_touch_log(tmp_path):
    path = tmp_path / "history.jsonl"
    inner = DictStore()
    inner.put("k", "v")
    disk = JsonlAppender(path, inner)
    assert disk.get("k") == "v"
    assert disk.get("other") is None
    assert not path.exists()


def test_appender_applies_to_inner_store(tmp_path):
    inner = DictStore()
    disk = JsonlAppender(tmp_path / "history.jsonl", inner)
    disk.put("k", "v")
    assert inner.get("k") == "v"
    disk.delete("k")
    assert inner.get("k") is None


def test_replay_skips_blank_lines(tmp_path):
    path = tmp_path / "history.jsonl"
    path.write_text(_line("a", "put", 1) + "\n   \n" + _line("b", "put", 2), encoding="utf-8")
    store = DictStore()
    stats = replay_jsonl(path, store)
    assert store.snapshot() == {"a": 1, "b": 2}
    assert stats.skipped_blank == 2


def test_replay_tolerates_truncated_tail(tmp_path):
    path = tmp_path / "history.jsonl"
    path.write_text(_line("a", "put", 1) + _line("b", "put", 2) + '{"key": "c", "oper', encoding="utf-8")
    store = DictStore()
    stats = replay_jsonl(path, store)
    assert store.snapshot() == {"a": 1, "b": 2}
    assert stats.truncated_tail is True
    assert stats.skipped_malformed == 0


def test_replay_truncated_tail_tolerated_in_strict_mode(tmp_path):
    path = tmp_path / "history.jsonl"
    path.write_text(_line("a", "put", 1) + '{"key": "b"', encoding="utf-8")
    store = DictStore()
    stats = replay_jsonl(path, store, strict=True)
    assert store.snapshot() == {"a": 1}
    assert stats.truncated_tail is True


def test_replay_applies_complete_unterminated_last_line(tmp_path):
    path = tmp_path / "history.jsonl"
    path.write_text(_line("a", "put", 1) + _line("b", "put", 2).rstrip("\n"), encoding="utf-8")
    store = DictStore()
    stats = replay_jsonl(path, store)
    assert store.snapshot() == {"a": 1, "b": 2}
    assert stats.truncated_tail is False


def test_replay_skips_malformed_middle_line(tmp_path, caplog):
    path = tmp_path / "history.jsonl"
    path.write_text(_line("a", "put", 1) + "not json\n" + "[1, 2]\n" + _line("b", "put", 2), encoding="utf-8")
    store = DictStore()
    with caplog.at_level("ERROR", logger="agent_chat"):
        stats = replay_jsonl(path, store)
    assert store.snapshot() == {"a": 1, "b": 2}
    assert stats.skipped_malformed == 2
    assert any(r.getMessage() == "Skipped malformed log line" for r in caplog.records)


def test_replay_strict_raises_on_malformed_middle_line(tmp_path):
    path = tmp_path / "history.jsonl"
    path.write_text(_line("a", "put", 1) + "not json\n" + _line("b", "put", 2), encoding="utf-8")
    with pytest.raises(CorruptLogError) as exc:
        replay_jsonl(path, DictStore(), strict=True)
    assert exc.value.line_no == 2
    assert exc.value.code == "CORRUPT_LOG"


def test_replay_unknown_operation_is_fatal(tmp_path):
    path = tmp_path / "history.jsonl"
    path.write_text(_line("a", "put", 1) + _line("a", "patch", 2) + _line("b", "put", 3), encoding="utf-8")
    store = DictStore()
    with pytest.raises(UnknownOperationError) as exc:
        replay_jsonl(path, store)
    assert exc.value.line_no == 2
    assert exc.value.extra["operation"] == "patch"
    assert store.get("b") is None


def test_replay_delete_ignores_value(tmp_path):
    path = tmp_path / "history.jsonl"
    path.write_text(_line("a", "put", 1) + _line("a", "delete", "ignored"), encoding="utf-8")
    store = DictStore()
    replay_jsonl(path, store)
    assert store.get("a") is None


def test_appender_terminates_incomplete_tail_before_append(tmp_path):
    path = tmp_path / "history.jsonl"
    path.write_text(_line("a", "put", 1) + '{"key": "b", "oper', encoding="utf-8")
    memory = DictStore()
    replay_jsonl(path, memory)
    disk = JsonlAppender(path, memory)
    disk.put("c", 3)
    disk.put("d", 4)

    lines = path.read_text(encoding="utf-8").splitlines()
    assert lines[1] == '{"key": "b", "oper'
    assert json.loads(lines[2])["key"] == "c"
    assert json.loads(lines[3])["key"] == "d"

    # 被截断的半行现在位于中间，默认策略下跳过并继续
    replayed = DictStore()
    stats = replay_jsonl(path, replayed)
    assert replayed.snapshot() == {"a": 1, "c": 3, "d": 4}
    assert stats.skipped_truncated == 1
    assert stats.skipped_malformed == 0
    assert stats.truncated_tail is False

    # strict 模式下封口后的半行同样不算损坏
    strict = DictStore()
    replay_jsonl(path, strict, strict=True)
    assert strict.snapshot() == {"a": 1, "c": 3, "d": 4}


def test_appender_write_failure_propagates(tmp_path):
    # 目录无法以追加模式打开
    disk = JsonlAppender(tmp_path, DictStore())
    with pytest.raises(StoreWriteError) as exc:
        disk.put("k", "v")
    assert exc.value.code == "STORE_WRITE_ERROR"


def test_appender_rejects_unserializable_value(tmp_path):
    path = tmp_path / "history.jsonl"
    inner = DictStore()
    disk = JsonlAppender(path, inner)
    with pytest.raises(StoreWriteError) as exc:
        disk.put("k", {1, 2})
    assert exc.value.code == "STORE_ENCODE_ERROR"
    assert inner.get("k") is None
    assert not path.exists()


def test_encode_and_decode_line():
    line = encode_record(LogRecord(key="k", operation="delete", value="dropped"))
    assert line.endswith("\n")
    assert json.loads(line) == {"key": "k", "operation": "delete", "value": None}
    record = decode_line(line.rstrip("\n").encode("utf-8"))
    assert record == LogRecord(key="k", operation="delete", value=None)


@pytest.mark.parametrize(
    "raw",
    [
        b"",
        b"\xff\xfe",
        b'"just a string"',
        b'{"operation": "put", "value": 1}',
        b'{"key": 1, "operation": "put"}',
        b'{"key": "k", "value": 1}',
    ],
)
def test_decode_line_rejects_wrong_shape(raw):
    with pytest.raises(MalformedLineError):
        decode_line(raw)


@pytest.mark.parametrize(
    "raw",
    [
        b'{"key": "messages/1/0", "oper',
        b'{"key": "b", "operation": "put"',
        b'{"key": "b", "operation": "put", "value": tr',
        b'{"key": "b", "operation": "put", "value": "\xe4\xb8',
        b"{",
    ],
)
def test_decode_line_marks_cut_short_lines(raw):
    with pytest.raises(MalformedLineError) as exc:
        decode_line(raw)
    assert exc.value.truncated is True


@pytest.mark.parametrize("raw", [b"garbage", b"not json", b'{"key": "b"} trailing', b"[1, 2]"])
def test_decode_line_garbage_is_not_truncated(raw):
    with pytest.raises(MalformedLineError) as exc:
        decode_line(raw)
    assert exc.value.truncated is False


def test_replay_strict_still_rejects_garbage_after_sealed_tail(tmp_path):
    path = tmp_path / "history.jsonl"
    path.write_text(_line("a", "put", 1) + '{"key": "b", "oper\n' + "garbage\n" + _line("c", "put", 3), encoding="utf-8")
    with pytest.raises(CorruptLogError) as exc:
        replay_jsonl(path, DictStore(), strict=True)
    assert exc.value.line_no == 3


def test_appender_keeps_replayable_form_in_memory(tmp_path):
    path = tmp_path / "history.jsonl"
    live = DictStore()
    disk = JsonlAppender(path, live)
    disk.put("k", {"pair": (1, 2), 7: "seven"})
    assert live.get("k") == {"pair": [1, 2], "7": "seven"}

    replayed = DictStore()
    replay_jsonl(path, replayed)
    assert replayed.snapshot() == live.snapshot()
