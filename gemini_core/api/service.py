"""对外会话服务模块。

ChatSession 是一次会话的上下文对象，持有会话历史、待发送附件、生成参数
与调用编排器，供交互式外壳（命令行循环、脚本模式等）直接调用。

一次提交的流程：
1. 把待发送附件与文本合成一条 user 消息写入会话。
2. 编码并压缩会话快照。
3. 流式调用 API，增量文本交给 sink 输出。
4. 成功则把完整回复写成 model 消息；任何失败都回滚刚写入的 user 消息。
"""

import logging
import sys
from pathlib import Path
from typing import BinaryIO, Callable, Optional, Union

from gemini_core.config.settings import settings
from gemini_core.domain.conversation import Conversation, PendingAttachments
from gemini_core.domain.exceptions import LocalResourceError, ValidationError
from gemini_core.domain.models import CallResult, GenerationParams, Part, Turn
from gemini_core.infrastructure.attachments.ingestor import AttachmentIngestor
from gemini_core.infrastructure.logging.logger import log_event
from gemini_core.infrastructure.storage.json_store import JsonHistoryStore
from gemini_core.providers.gemini_client import GeminiClient
from gemini_core.providers.payload import build_count_request, build_request, compress_payload
from gemini_core.providers.registry import Operation, clamp_thinking_budget
from gemini_core.providers.stream import StreamDecoder


def _stdout_sink(text: str) -> None:
    sys.stdout.write(text)
    sys.stdout.flush()


class ChatSession:
    """单个会话的上下文：从会话开始到结束，整个管线都通过它传递状态。"""

    def __init__(
        self,
        cfg=settings,
        client: Optional[GeminiClient] = None,
        ingestor: Optional[AttachmentIngestor] = None,
        params: Optional[GenerationParams] = None,
    ):
        self._settings = cfg
        self.conversation = Conversation()
        self.params = params or cfg.generation_params()
        self.client = client or GeminiClient(cfg)
        if ingestor is None:
            pending = PendingAttachments(getattr(cfg, "attachment_limit", None) or 1024)
            ingestor = AttachmentIngestor(pending, root=getattr(cfg, "attachment_root", None))
        self.ingestor = ingestor
        self.pending = ingestor.registry
        self.history_store = JsonHistoryStore(root=getattr(cfg, "attachment_root", None))
        self.last_response: Optional[str] = None

    # ---- 附件 ----

    def attach_file(self, path: Union[str, Path], mime_type: Optional[str] = None) -> Optional[Part]:
        return self.ingestor.ingest_path(path, mime_type)

    def attach_stream(self, stream: BinaryIO, name: str = "stdin", mime_type: Optional[str] = None) -> Optional[Part]:
        return self.ingestor.ingest_stream(stream, name, mime_type)

    # ---- 对话 ----

    def submit(self, text: str = "", sink: Optional[Callable[[str], object]] = _stdout_sink) -> CallResult:
        """提交一轮对话，返回 CallResult；成功时回复文本保存在 last_response。"""

        parts = self.pending.drain()
        if text:
            parts.append(Part.from_text(text))
        if not parts:
            raise ValidationError(code="EMPTY_PROMPT", message="Nothing to send: no text and no attachments.")
        self.conversation.append(Turn(role="user", parts=parts))

        decoder = StreamDecoder(sink)
        try:
            payload = compress_payload(build_request(self.conversation, self.params))
        except LocalResourceError as e:
            self._rollback(e.code)
            return CallResult.failure(e)

        try:
            result = self.client.execute(Operation.STREAM_GENERATE, payload, decoder.feed, model=self.params.model)
        except BaseException as e:
            # sink 抛出的异常（如 stdout 管道关闭）或 Ctrl-C 同样要回滚
            decoder.discard()
            self._rollback(type(e).__name__)
            raise
        if not result.ok:
            decoder.discard()
            self._rollback(result.error.code if result.error else None)
            return result

        response = decoder.take_response()
        self.last_response = response
        self.conversation.append(Turn(role="model", parts=[Part.from_text(response)]))
        return result

    def count_tokens(self) -> CallResult:
        """统计当前上下文（含待发送附件）的 token 数，payload 为整数。"""

        extra = Turn(role="user", parts=list(self.pending)) if len(self.pending) else None
        try:
            payload = compress_payload(build_count_request(self.conversation, self.params, extra_turn=extra))
        except LocalResourceError as e:
            return CallResult.failure(e)
        result = self.client.execute(Operation.COUNT_TOKENS, payload, model=self.params.model)
        if result.ok:
            total = (result.payload or {}).get("totalTokens")
            result.payload = total if isinstance(total, int) else None
        return result

    def list_models(self) -> CallResult:
        return self.client.execute(Operation.LIST_MODELS)

    # ---- 会话状态 ----

    def set_system_instruction(self, text: Optional[str]) -> None:
        self.conversation.system_instruction = text or None

    def set_model(self, model: str) -> None:
        self.params.model = model
        self.params.thinking_budget = self._clamp(self.params.thinking_budget)

    def set_thinking_budget(self, budget: int) -> None:
        self.params.thinking_budget = self._clamp(budget)

    def reset(self) -> None:
        """开始新会话：清空历史、系统提示词、待发送附件与上次回复。"""

        self.conversation.reset()
        self.pending.clear()
        self.last_response = None

    def save_history(self, path: Union[str, Path]) -> Path:
        return self.history_store.save(self.conversation, self.params, path)

    def load_history(self, path: Union[str, Path]) -> Conversation:
        loaded = self.history_store.load(path)
        if loaded.system_instruction is None:
            loaded.system_instruction = self.conversation.system_instruction
        self.conversation = loaded
        return loaded

    # ---- 辅助方法 ----

    def _clamp(self, budget: int) -> int:
        caps = getattr(self._settings, "thinking_budget_caps", None)
        return clamp_thinking_budget(self.params.model, budget, caps)

    def _rollback(self, code: Optional[str]) -> None:
        removed = self.conversation.remove_last()
        log_event(
            logging.INFO,
            "Rolled back pending user turn",
            code=code,
            parts=len(removed.parts) if removed else 0,
        )
