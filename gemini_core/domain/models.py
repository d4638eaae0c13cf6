"""统一的对话与结果数据模型。

本模块定义了核心管线共享的标准数据结构：

- Part: 一个内容单元，文本或附件（二选一）。
- Turn: 一条对话消息（user/model）及其有序 Part 列表。
- GenerationParams: 生成参数（模型、温度、思考预算、工具开关等）。
- CallResult: 调用编排器返回的统一结果（成功负载或分类后的失败）。

Payload 编码器负责在这些模型与 Gemini API 的 JSON 之间做转换。
"""

from dataclasses import dataclass, field
from typing import Any, List, Literal, Optional

from .exceptions import BusinessError


# 对话角色，与 Gemini contents[].role 字段对应
Role = Literal["user", "model"]

# 调用失败分类
ErrorKind = Literal["transient", "auth", "fatal_service", "transport", "local_resource"]

DEFAULT_MODEL_NAME = "gemini-2.5-pro"
AUTO_THINKING_BUDGET = -1


@dataclass(frozen=True)
class Part:
    """一个内容单元。

    - text: 文本内容；为文本 Part 时必填。
    - mime_type / data: 附件的 MIME 类型和 base64 数据（外部引用时为文件 URI）。
    - filename: 附件来源名，仅用于展示；从历史文件加载后可能为空。
    - is_external: True 时编码为 fileData 引用，否则为 inlineData。

    Part 不可变，因此 Turn 之间共享同一个 Part 实例是安全的。
    """

    text: Optional[str] = None
    mime_type: Optional[str] = None
    data: Optional[str] = None
    filename: Optional[str] = None
    is_external: bool = False

    def __post_init__(self) -> None:
        has_text = self.text is not None
        has_file = self.mime_type is not None or self.data is not None
        if has_text == has_file:
            raise ValueError("Part must be either text or attachment")
        if has_file and (not self.mime_type or self.data is None):
            raise ValueError("attachment Part requires mime_type and data")

    @classmethod
    def from_text(cls, text: str) -> "Part":
        return cls(text=text)

    @classmethod
    def attachment(
        cls,
        mime_type: str,
        data: str,
        filename: Optional[str] = None,
        is_external: bool = False,
    ) -> "Part":
        return cls(mime_type=mime_type, data=data, filename=filename, is_external=is_external)

    @property
    def is_text(self) -> bool:
        return self.text is not None

    @property
    def is_attachment(self) -> bool:
        return self.text is None

    def describe(self) -> str:
        if self.is_text:
            return self.text or ""
        name = self.filename or "Pasted/Loaded Data"
        return f"{name} (MIME: {self.mime_type})"


@dataclass
class Turn:
    """一条消息：角色 + 有序 Part 列表。"""

    role: Role
    parts: List[Part] = field(default_factory=list)

    def copy(self) -> "Turn":
        # Part 不可变，新列表即可构成独立副本
        return Turn(role=self.role, parts=list(self.parts))

    @property
    def text(self) -> str:
        return "".join(p.text or "" for p in self.parts if p.is_text)


@dataclass
class GenerationParams:
    """一次生成请求的参数。

    thinking_budget <= 0 表示由模型自动决定，编码时统一写成 -1。
    top_k / top_p 为 None 时不写入请求。
    """

    model: str = DEFAULT_MODEL_NAME
    temperature: float = 0.75
    seed: int = 42
    max_output_tokens: int = 65536
    thinking_budget: int = AUTO_THINKING_BUDGET
    top_k: Optional[int] = None
    top_p: Optional[float] = None
    google_grounding: bool = True
    url_context: bool = True
    safety_override: bool = False


@dataclass
class CallResult:
    """一次逻辑调用的最终结果。

    - ok: 是否成功。
    - payload: 非流式调用解析后的 JSON；流式调用为 None（文本由 StreamDecoder 累积）。
    - kind: 失败分类，成功时为 None。
    - error: 失败时对应的 BusinessError。
    - credential_index: auth 失败时被拒绝的凭据下标。
    - attempts: 实际发起的传输次数。
    """

    ok: bool
    payload: Any = None
    kind: Optional[ErrorKind] = None
    error: Optional[BusinessError] = None
    status_code: Optional[int] = None
    credential_index: Optional[int] = None
    attempts: int = 0

    @classmethod
    def success(cls, payload: Any = None, *, status_code: int = 200, attempts: int = 1) -> "CallResult":
        return cls(ok=True, payload=payload, status_code=status_code, attempts=attempts)

    @classmethod
    def failure(cls, error: BusinessError, *, attempts: int = 0) -> "CallResult":
        status = error.http_status if error.kind in ("auth", "fatal_service", "transient") else None
        return cls(
            ok=False,
            kind=error.kind,
            error=error,
            status_code=status,
            credential_index=error.extra.get("credential_index"),
            attempts=attempts,
        )

    @property
    def message(self) -> Optional[str]:
        return self.error.message if self.error else None

    def raise_for_error(self) -> "CallResult":
        if self.error is not None:
            raise self.error
        return self
