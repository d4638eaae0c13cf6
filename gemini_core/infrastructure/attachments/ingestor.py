"""附件读取与登记。

AttachmentIngestor 把文件或不可 seek 的流（stdin、管道）读入内存，
识别 MIME 类型、做 base64 编码，生成一个附件 Part 并登记到 PendingAttachments。

约束：
- 可 seek 的文件先取大小，空文件只给出警告，不登记。
- 流式来源使用 GrowableBuffer：初始容量固定，空间不足一次读取时容量翻倍，
  超过 max_capacity 拒绝扩容。
- 任何失败都不会留下半成品：缓冲区释放、文件句柄关闭、登记表不变。
"""

from __future__ import annotations

import base64
import logging
import os
import sys
from pathlib import Path
from typing import BinaryIO, Optional, Union

from gemini_core.domain.conversation import PendingAttachments
from gemini_core.domain.exceptions import LocalResourceError, ValidationError
from gemini_core.domain.models import Part
from gemini_core.infrastructure.logging.logger import log_event

from .mime import SNIFF_BYTES, classify_mime


INITIAL_CAPACITY = 32 * 1024
READ_SIZE = 1024


class GrowableBuffer:
    """容量按需翻倍的字节缓冲区。"""

    def __init__(self, initial_capacity: int = INITIAL_CAPACITY, max_capacity: int = sys.maxsize):
        if initial_capacity < 1:
            raise ValueError("initial_capacity must be positive")
        self.max_capacity = max_capacity
        self.capacity = initial_capacity
        self.size = 0
        self.grow_count = 0
        self._data = bytearray(initial_capacity)

    @property
    def free(self) -> int:
        return self.capacity - self.size

    def append(self, chunk: bytes) -> None:
        while self.free < len(chunk):
            self.grow()
        self._data[self.size:self.size + len(chunk)] = chunk
        self.size += len(chunk)

    def grow(self) -> None:
        new_capacity = self.capacity * 2
        if new_capacity <= self.capacity or new_capacity > self.max_capacity:
            raise LocalResourceError(
                code="ATTACHMENT_TOO_LARGE",
                message="Buffer capacity overflow for extremely large attachment.",
            )
        self._data.extend(bytes(new_capacity - self.capacity))
        self.capacity = new_capacity
        self.grow_count += 1

    def getvalue(self) -> bytes:
        return bytes(self._data[:self.size])

    def release(self) -> None:
        self._data = bytearray()
        self.capacity = 0
        self.size = 0


class AttachmentIngestor:
    def __init__(
        self,
        registry: PendingAttachments,
        root: Optional[Union[str, Path]] = None,
        *,
        initial_capacity: int = INITIAL_CAPACITY,
        read_size: int = READ_SIZE,
        max_capacity: int = sys.maxsize,
    ):
        self._registry = registry
        self._root = Path(root).expanduser().resolve() if root else None
        self._initial_capacity = initial_capacity
        self._read_size = read_size
        self._max_capacity = max_capacity
        self.last_grow_count = 0

    @property
    def registry(self) -> PendingAttachments:
        return self._registry

    def ingest_path(self, path: Union[str, Path], mime_type: Optional[str] = None) -> Optional[Part]:
        """读取文件并登记为附件；空文件返回 None。"""

        resolved = self.resolve_path(path)
        name = str(path)
        self._registry.ensure_capacity()
        try:
            fh = open(resolved, "rb")
        except OSError as e:
            raise LocalResourceError(
                code="ATTACHMENT_OPEN_ERROR",
                message=f"Error opening file {name}: {e.strerror or e}",
            )
        with fh:
            if not fh.seekable():
                # FIFO、命名管道等无法预先取大小，按流读取
                return self._ingest_unsized(fh, name, mime_type)
            fh.seek(0, os.SEEK_END)
            size = fh.tell()
            fh.seek(0, os.SEEK_SET)
            if size <= 0:
                log_event(logging.WARNING, f"File '{name}' is empty. Attachment skipped.", filename=name)
                return None
            data = self._read_all(fh, name)
        return self._register(data, name, mime_type)

    def ingest_stream(
        self,
        stream: BinaryIO,
        name: str = "stdin",
        mime_type: Optional[str] = None,
    ) -> Optional[Part]:
        """读取不可 seek 的流直到结束；没有读到任何数据时返回 None。"""

        self._registry.ensure_capacity()
        return self._ingest_unsized(stream, name, mime_type)

    def resolve_path(self, path: Union[str, Path]) -> Path:
        raw = Path(path).expanduser()
        if not str(path).strip() or ".." in raw.parts:
            raise ValidationError(code="UNSAFE_PATH", message=f"Unsafe file path specified: {path}")
        if self._root is None:
            return raw.resolve()
        candidate = raw.resolve() if raw.is_absolute() else (self._root / raw).resolve()
        try:
            candidate.relative_to(self._root)
        except ValueError:
            raise ValidationError(code="UNSAFE_PATH", message=f"Path outside attachment root: {path}")
        return candidate

    # ---- 辅助方法 ----

    def _ingest_unsized(self, stream: BinaryIO, name: str, mime_type: Optional[str]) -> Optional[Part]:
        data = self._read_all(stream, name)
        if not data:
            log_event(
                logging.WARNING,
                f"No data was read from the attachment source '{name}'. Skipped.",
                filename=name,
            )
            return None
        return self._register(data, name, mime_type)

    def _read_all(self, stream: BinaryIO, name: str) -> bytes:
        buf = GrowableBuffer(self._initial_capacity, self._max_capacity)
        try:
            while True:
                try:
                    chunk = stream.read(self._read_size)
                except OSError as e:
                    raise LocalResourceError(
                        code="ATTACHMENT_READ_ERROR",
                        message=f"Error reading from attachment stream {name}: {e}",
                    )
                if not chunk:
                    break
                if isinstance(chunk, str):
                    chunk = chunk.encode("utf-8")
                buf.append(chunk)
                # 保证下一次读取前至少有 read_size 的空间
                if buf.free < self._read_size:
                    buf.grow()
            return buf.getvalue()
        finally:
            self.last_grow_count = buf.grow_count
            buf.release()

    def _register(self, data: bytes, name: str, mime_type: Optional[str]) -> Part:
        mime = mime_type or classify_mime(data[:SNIFF_BYTES], name)
        try:
            encoded = base64.b64encode(data).decode("ascii")
        except MemoryError:
            raise LocalResourceError(code="ENCODE_FAILED", message="Failed to base64 encode attachment data.")
        part = Part.attachment(mime, encoded, filename=name)
        self._registry.add(part)
        log_event(
            logging.INFO,
            f"Attached {name} (MIME: {mime}, Size: {len(data)} bytes)",
            filename=name,
            mime_type=mime,
            size=len(data),
        )
        return part
