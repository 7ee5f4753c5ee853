"""JSONL 持久化日志：追加写组合器与启动回放。

日志格式：UTF-8 文本，每行一个 JSON 对象，以换行结尾，只追加不改写：

    {"key": "<string>", "operation": "put" | "delete", "value": <json or null>}

启动时 replay_jsonl 把日志按顺序回放进内存存储，之后由 JsonlAppender
包装该存储：每次修改先作用于内存，再追加一行日志。读操作只走内存。
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, BinaryIO, Generic, Iterator, Optional, Tuple, TypeVar

from agent_chat.domain.exceptions import CorruptLogError, StoreWriteError, UnknownOperationError
from agent_chat.infrastructure.logging.logger import logger
from agent_chat.infrastructure.storage.base import OPERATIONS, LogRecord, Store

T = TypeVar("T")


class MalformedLineError(ValueError):
    """单行日志无法解码，或结构不符合 LogRecord。

    truncated 为 True 表示该行是一条完整记录的前缀（崩溃时写了一半），
    而不是内容错误的行。
    """

    def __init__(self, message: str, truncated: bool = False):
        super().__init__(message)
        self.truncated = truncated


_LITERALS = ("true", "false", "null")


def _is_cut_short(doc: str, e: json.JSONDecodeError) -> bool:
    """判断解析失败是否只是因为文本提前结束。"""

    if e.pos >= len(doc):
        return True
    if e.msg.startswith("Unterminated string"):
        return True
    rest = doc[e.pos:]
    return e.msg == "Expecting value" and any(lit.startswith(rest) for lit in _LITERALS)


@dataclass
class ReplayStats:
    """一次回放的统计信息。"""

    applied: int = 0
    puts: int = 0
    deletes: int = 0
    skipped_blank: int = 0
    skipped_malformed: int = 0
    skipped_truncated: int = 0
    truncated_tail: bool = False


def encode_record(record: LogRecord) -> str:
    """把一条记录编码为以换行结尾的单行 JSON。"""

    try:
        line = json.dumps(record.to_dict(), ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError) as e:
        raise StoreWriteError(
            code="STORE_ENCODE_ERROR",
            message=f"value for key {record.key!r} is not JSON serializable: {e}",
            key=record.key,
        ) from e
    return line + "\n"


def decode_line(raw: bytes) -> LogRecord:
    """解码一行日志。

    结构错误抛出 MalformedLineError；结构正确但操作标签未知时，
    返回的 LogRecord.operation 原样保留，由调用方决定如何处理。
    """

    try:
        doc = raw.decode("utf-8")
    except UnicodeDecodeError as e:
        # 多字节字符被截断在行尾
        cut = e.end >= len(raw) and e.reason == "unexpected end of data"
        raise MalformedLineError(str(e), truncated=cut) from e
    try:
        data = json.loads(doc)
    except json.JSONDecodeError as e:
        raise MalformedLineError(str(e), truncated=_is_cut_short(doc, e)) from e
    if not isinstance(data, dict):
        raise MalformedLineError(f"expected a JSON object, got {type(data).__name__}")
    key = data.get("key")
    operation = data.get("operation")
    if not isinstance(key, str):
        raise MalformedLineError("missing or non-string 'key'")
    if not isinstance(operation, str):
        raise MalformedLineError("missing or non-string 'operation'")
    return LogRecord(key=key, operation=operation, value=data.get("value"))  # type: ignore[arg-type]


def _iter_lines(fh: BinaryIO) -> Iterator[Tuple[int, bytes, bool]]:
    """逐行产出 (行号, 原始内容, 是否最后一行)。"""

    prev: Optional[bytes] = None
    line_no = 0
    for raw in fh:
        if prev is not None:
            yield line_no, prev, False
        line_no += 1
        prev = raw
    if prev is not None:
        yield line_no, prev, True


def replay_jsonl(src: str | Path, dest: Store[Any], *, strict: bool = False) -> ReplayStats:
    """把 src 中的日志按文件顺序回放到 dest。

    - 文件不存在：首次运行的正常状态，直接返回。
    - 空行：跳过。
    - 最后一行损坏或不完整：视为崩溃遗留的半行写入，警告后跳过。
    - 中间的半行（崩溃后被下一次追加封口）：警告后跳过，strict 模式同样容忍。
    - 中间行损坏：记录 ERROR 并跳过；strict=True 时抛出 CorruptLogError。
    - 未知操作标签：日志格式不一致，抛出 UnknownOperationError 中止回放。
    """

    path = Path(src)
    stats = ReplayStats()
    try:
        fh = path.open("rb")
    except FileNotFoundError:
        logger.info("Replay skipped, log file not found", extra={"extra": {"path": str(path)}})
        return stats

    with fh:
        for line_no, raw, is_last in _iter_lines(fh):
            body = raw.rstrip(b"\r\n")
            if not body.strip():
                stats.skipped_blank += 1
                continue
            try:
                record = decode_line(body)
            except MalformedLineError as e:
                ctx = {"path": str(path), "line_no": line_no, "error": str(e)}
                if is_last:
                    stats.truncated_tail = True
                    logger.warning("Skipped incomplete trailing log line", extra={"extra": ctx})
                    continue
                if e.truncated:
                    # 崩溃遗留的半行已被后续追加封口，不属于损坏
                    stats.skipped_truncated += 1
                    logger.warning("Skipped sealed incomplete log line", extra={"extra": ctx})
                    continue
                if strict:
                    raise CorruptLogError(
                        code="CORRUPT_LOG",
                        message=f"{path}:{line_no}: malformed log line: {e}",
                        line_no=line_no,
                    ) from e
                stats.skipped_malformed += 1
                logger.error("Skipped malformed log line", extra={"extra": ctx})
                continue

            if record.operation not in OPERATIONS:
                logger.error(
                    "Unknown operation in replay log",
                    extra={"extra": {"path": str(path), "line_no": line_no, "operation": record.operation}},
                )
                raise UnknownOperationError(
                    code="UNKNOWN_OPERATION",
                    message=f"{path}:{line_no}: unknown operation in replay log: {record.operation!r}",
                    line_no=line_no,
                    operation=record.operation,
                )
            if record.operation == "put":
                dest.put(record.key, record.value)
                stats.puts += 1
            else:
                dest.delete(record.key)
                stats.deletes += 1
            stats.applied += 1

    logger.log(
        logging.WARNING if stats.skipped_malformed else logging.INFO,
        "Replayed log",
        extra={"extra": {"path": str(path), **stats.__dict__}},
    )
    return stats


class JsonlAppender(Generic[T]):
    """把每次修改追加写入 JSONL 日志的存储组合器。

    put/delete 先作用于内层存储，再以一次 write 追加一整行日志，
    写入完成后才返回。get 直接转发给内层存储，不读磁盘。
    """

    def __init__(self, filename: str | Path, store: Store[T], *, fsync: bool = False):
        self.filename = Path(filename)
        self._store = store
        self._fsync = fsync
        self._checked_tail = False

    @property
    def source(self) -> Store[T]:
        return self._store

    def get(self, key: str) -> Optional[T]:
        return self._store.get(key)

    def put(self, key: str, value: T) -> None:
        line = encode_record(LogRecord(key=key, operation="put", value=value))
        # 内存中保存编码后的形式，与回放结果一致（元组变列表、键变字符串）
        self._store.put(key, json.loads(line)["value"])
        self._append(key, line)

    def delete(self, key: str) -> None:
        line = encode_record(LogRecord(key=key, operation="delete"))
        self._store.delete(key)
        self._append(key, line)

    def _append(self, key: str, line: str) -> None:
        try:
            if not self._checked_tail:
                if self._needs_terminator():
                    # 上次崩溃留下的半行，先补换行再写，避免新记录粘在半行后面
                    logger.warning(
                        "Terminating incomplete trailing log line before append",
                        extra={"extra": {"path": str(self.filename)}},
                    )
                    line = "\n" + line
                self._checked_tail = True
            self.filename.parent.mkdir(parents=True, exist_ok=True)
            with self.filename.open("a", encoding="utf-8") as f:
                f.write(line)
                f.flush()
                if self._fsync:
                    os.fsync(f.fileno())
        except OSError as e:
            logger.error(
                "Failed to append log record",
                extra={"extra": {"path": str(self.filename), "key": key, "error": str(e)}},
            )
            raise StoreWriteError(code="STORE_WRITE_ERROR", message=str(e), key=key) from e

    def _needs_terminator(self) -> bool:
        try:
            with self.filename.open("rb") as f:
                f.seek(0, os.SEEK_END)
                if f.tell() == 0:
                    return False
                f.seek(-1, os.SEEK_END)
                return f.read(1) != b"\n"
        except FileNotFoundError:
            return False
