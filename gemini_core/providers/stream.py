"""SSE 流式响应解码器。

传输层按任意边界交付字节块，解码器负责：

1. 把新块追加到未消费的尾部缓冲区。
2. 逐个切出以换行结尾的完整行，剥掉 "data: " 前缀并解析 JSON。
3. 取 candidates[0].content.parts[0].text，立即交给 sink 输出并累积到完整回复中。

没有前缀的行、JSON 不合法或结构缺失的行都直接跳过，不影响后续流。
完整回复只在调用方确认传输成功后通过 take_response() 交出一次。
"""

import json
from typing import Any, Callable, List, Optional


DATA_PREFIX = b"data: "

TextSink = Callable[[str], Any]


class StreamDecoder:
    """增量解析 Gemini streamGenerateContent?alt=sse 的响应。"""

    def __init__(self, sink: Optional[TextSink] = None):
        self._sink = sink
        self._carry = bytearray()
        self._pieces: List[str] = []
        self._taken = False

    @property
    def pending_bytes(self) -> int:
        """尚未组成完整行的字节数。"""

        return len(self._carry)

    @property
    def text(self) -> str:
        return "".join(self._pieces)

    def feed(self, chunk: bytes) -> int:
        """消费一个字节块，返回本次产生的文本事件数。"""

        if self._taken:
            raise RuntimeError("response already handed off")
        self._carry += chunk
        emitted = 0
        start = 0
        while True:
            end = self._carry.find(b"\n", start)
            if end < 0:
                break
            line = bytes(self._carry[start:end])
            start = end + 1
            text = self._process_line(line)
            if text is None:
                continue
            if self._sink is not None:
                self._sink(text)
            self._pieces.append(text)
            emitted += 1
        if start:
            del self._carry[:start]
        return emitted

    def take_response(self) -> str:
        """交出累积的完整回复，只能调用一次。"""

        if self._taken:
            raise RuntimeError("response already handed off")
        self._taken = True
        response = "".join(self._pieces)
        self._pieces = []
        self._carry.clear()
        return response

    def discard(self) -> None:
        """丢弃已累积内容，可继续用于下一次传输。"""

        self._pieces = []
        self._carry.clear()
        self._taken = False

    @staticmethod
    def _process_line(line: bytes) -> Optional[str]:
        if line.endswith(b"\r"):
            line = line[:-1]
        if not line.startswith(DATA_PREFIX):
            return None
        try:
            data = json.loads(line[len(DATA_PREFIX):].decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            return None
        return extract_text(data)


def extract_text(data: Any) -> Optional[str]:
    """取第一个候选的第一个 Part 的 text 字段，结构不符时返回 None。"""

    if not isinstance(data, dict):
        return None
    candidates = data.get("candidates")
    if not isinstance(candidates, list) or not candidates:
        return None
    candidate = candidates[0]
    if not isinstance(candidate, dict):
        return None
    content = candidate.get("content")
    if not isinstance(content, dict):
        return None
    parts = content.get("parts")
    if not isinstance(parts, list) or not parts or not isinstance(parts[0], dict):
        return None
    text = parts[0].get("text")
    return text if isinstance(text, str) else None
