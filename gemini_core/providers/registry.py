"""Gemini 端点与模型策略配置。

本模块集中维护：

- 基础 URL（带密钥 / 免密钥两种变体）。
- 逻辑操作（Operation）到具体 REST 端点的映射。
- 思考预算上限策略：按模型名子串匹配的上限表，而不是写死在代码里。

上层只关心 Operation，具体路径与 HTTP 方法由这里统一拼装。"""

from dataclasses import dataclass
from enum import Enum
from typing import Mapping, Optional
from urllib.parse import urlsplit, urlunsplit


GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

# 思考预算上限：模型名包含 key 时，预算不超过 value
DEFAULT_THINKING_BUDGET_CAPS: Mapping[str, int] = {"flash": 16384}


class Operation(str, Enum):
    STREAM_GENERATE = "stream_generate"
    GENERATE = "generate"
    COUNT_TOKENS = "count_tokens"
    LIST_MODELS = "list_models"


@dataclass(frozen=True)
class EndpointSpec:
    """单个操作的 HTTP 方法与路径模板。"""

    method: str
    path: str
    streaming: bool = False


ENDPOINTS: Mapping[Operation, EndpointSpec] = {
    Operation.STREAM_GENERATE: EndpointSpec("POST", "models/{model}:streamGenerateContent?alt=sse", streaming=True),
    Operation.GENERATE: EndpointSpec("POST", "models/{model}:generateContent"),
    Operation.COUNT_TOKENS: EndpointSpec("POST", "models/{model}:countTokens"),
    Operation.LIST_MODELS: EndpointSpec("GET", "models"),
}


def build_url(base_url: str, operation: Operation, model: str, host: Optional[str] = None) -> str:
    """拼出完整请求 URL；host 非空时替换 base_url 中的主机部分。"""

    spec = ENDPOINTS[operation]
    base = base_url.rstrip("/")
    if host:
        parts = urlsplit(base)
        base = urlunsplit((parts.scheme, host, parts.path, parts.query, parts.fragment))
    model_id = model.split("/", 1)[1] if model.startswith("models/") else model
    return f"{base}/{spec.path.format(model=model_id)}"


def clamp_thinking_budget(model: str, budget: int, caps: Optional[Mapping[str, int]] = None) -> int:
    """按上限表裁剪思考预算；预算 <= 0（自动）时原样返回。"""

    if budget <= 0:
        return budget
    table = DEFAULT_THINKING_BUDGET_CAPS if caps is None else caps
    name = model.lower()
    for needle, cap in table.items():
        if needle.lower() in name and budget > cap:
            budget = cap
    return budget
