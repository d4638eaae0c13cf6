"""请求负载编码器。

本模块负责“会话快照 ⇄ Gemini 请求 JSON”的双向转换：

1. build_request: Conversation + GenerationParams -> generateContent 请求体。
2. build_count_request: 同一文档去掉 generationConfig / tools / safetySettings，
   countTokens 只需要纯内容才能得到准确计数。
3. compress_payload: 紧凑 JSON + gzip 压缩，失败时抛 LocalResourceError。
4. load_conversation: 逆向解析，用于从历史文件恢复 Turn / Part。
"""

import gzip
import json
from typing import Any, Dict, List, Optional

from gemini_core.domain.conversation import Conversation
from gemini_core.domain.exceptions import LocalResourceError
from gemini_core.domain.models import AUTO_THINKING_BUDGET, GenerationParams, Part, Turn


GZIP_LEVEL = 9

SAFETY_CATEGORIES = (
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
)


def build_request(
    conversation: Conversation,
    params: GenerationParams,
    extra_turn: Optional[Turn] = None,
) -> Dict[str, Any]:
    """将会话快照转成 generateContent 请求 JSON。

    extra_turn 会追加在历史末尾但不写回会话，用于把待发送附件计入 token 统计。
    """

    doc: Dict[str, Any] = {}
    if conversation.system_instruction:
        doc["systemInstruction"] = {"parts": [{"text": conversation.system_instruction}]}

    turns = list(conversation.turns)
    if extra_turn is not None:
        turns.append(extra_turn)
    doc["contents"] = [_turn_to_payload(t) for t in turns]

    tools = _build_tools(params)
    if tools:
        doc["tools"] = tools

    doc["generationConfig"] = _build_generation_config(params)
    if params.safety_override:
        doc["safetySettings"] = [
            {"category": category, "threshold": "BLOCK_NONE"} for category in SAFETY_CATEGORIES
        ]
    return doc


def build_count_request(
    conversation: Conversation,
    params: GenerationParams,
    extra_turn: Optional[Turn] = None,
) -> Dict[str, Any]:
    doc = build_request(conversation, params, extra_turn=extra_turn)
    for key in ("generationConfig", "tools", "safetySettings"):
        doc.pop(key, None)
    return doc


def compress_payload(doc: Dict[str, Any]) -> bytes:
    """序列化并 gzip 压缩请求文档。"""

    try:
        raw = json.dumps(doc, ensure_ascii=False, separators=(",", ":")).encode("utf-8")
        return gzip.compress(raw, compresslevel=GZIP_LEVEL)
    except (TypeError, ValueError, MemoryError, OSError) as e:
        raise LocalResourceError(code="COMPRESSION_FAILED", message=f"Failed to compress request payload: {e}")


def load_conversation(doc: Dict[str, Any]) -> Conversation:
    """从请求格式的 JSON 文档重建 Conversation。

    角色或 parts 类型不合法的消息会被跳过；无法识别的 Part 同样跳过。
    附件文件名不在线上格式中，加载后为 None。
    """

    conv = Conversation()
    contents = doc.get("contents")
    if isinstance(contents, list):
        for item in contents:
            if not isinstance(item, dict):
                continue
            role = item.get("role")
            parts_raw = item.get("parts")
            if not isinstance(role, str) or not isinstance(parts_raw, list):
                continue
            parts = [p for p in (_part_from_payload(raw) for raw in parts_raw) if p is not None]
            conv.append(Turn(role=role, parts=parts))  # type: ignore[arg-type]

    sys_instruction = doc.get("systemInstruction")
    if isinstance(sys_instruction, dict):
        sys_parts = sys_instruction.get("parts")
        if isinstance(sys_parts, list) and sys_parts and isinstance(sys_parts[0], dict):
            text = sys_parts[0].get("text")
            if isinstance(text, str):
                conv.system_instruction = text
    return conv


# ---- 辅助方法 ----


def _turn_to_payload(turn: Turn) -> Dict[str, Any]:
    return {"role": turn.role, "parts": [_part_to_payload(p) for p in turn.parts]}


def _part_to_payload(part: Part) -> Dict[str, Any]:
    if part.is_text:
        return {"text": part.text}
    if part.is_external:
        return {"fileData": {"mimeType": part.mime_type, "fileUri": part.data}}
    return {"inlineData": {"mimeType": part.mime_type, "data": part.data}}


def _part_from_payload(raw: Any) -> Optional[Part]:
    if not isinstance(raw, dict):
        return None
    text = raw.get("text")
    if isinstance(text, str):
        return Part.from_text(text)
    inline = raw.get("inlineData")
    if isinstance(inline, dict):
        mime, data = inline.get("mimeType"), inline.get("data")
        if isinstance(mime, str) and mime and isinstance(data, str):
            return Part.attachment(mime, data)
    file_data = raw.get("fileData")
    if isinstance(file_data, dict):
        mime, uri = file_data.get("mimeType"), file_data.get("fileUri")
        if isinstance(mime, str) and mime and isinstance(uri, str):
            return Part.attachment(mime, uri, is_external=True)
    return None


def _build_tools(params: GenerationParams) -> List[Dict[str, Any]]:
    # 每个工具按各自开关独立加入
    tools: List[Dict[str, Any]] = []
    if params.url_context:
        tools.append({"urlContext": {}})
    if params.google_grounding:
        tools.append({"googleSearch": {}})
    return tools


def _build_generation_config(params: GenerationParams) -> Dict[str, Any]:
    config: Dict[str, Any] = {"temperature": params.temperature, "seed": params.seed}
    if params.max_output_tokens and params.max_output_tokens > 0:
        config["maxOutputTokens"] = params.max_output_tokens
    if params.top_k is not None:
        config["topK"] = params.top_k
    if params.top_p is not None:
        config["topP"] = params.top_p
    budget = params.thinking_budget if params.thinking_budget > 0 else AUTO_THINKING_BUDGET
    config["thinkingConfig"] = {"thinkingBudget": budget}
    return config
