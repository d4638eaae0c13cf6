"""Gemini 调用编排器。

本模块负责：

1. 从 CredentialSet 轮换选出凭据；集合为空时改走免密钥端点，不发送密钥头。
2. 组装请求头（Content-Type、Content-Encoding、x-goog-api-key、Origin）以及代理/主机覆盖。
3. 通过 httpx 发起请求，把 2xx 响应的字节块交给 consumer（流式），或解析为 JSON（非流式）。
4. 按状态码分类错误并执行重试策略：
   - 503: 临时错误，立即重试，最多 max_retries 次，耗尽后升级为 fatal_service。
   - 401/403: 凭据被拒绝，记录凭据下标，不重试。
   - 其他非 2xx: fatal_service，尽量解析服务端的 error.message。
   - 拿到状态码之前的失败: transport，携带底层异常名。

所有失败最终都归一为 CallResult，由会话层决定如何回滚与提示。
"""

import json
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx

from gemini_core.config.settings import settings
from gemini_core.domain.exceptions import (
    ApiError,
    AuthError,
    BusinessError,
    NetworkError,
    TransientServiceError,
)
from gemini_core.domain.models import CallResult, DEFAULT_MODEL_NAME
from gemini_core.infrastructure.logging.logger import log_event
from gemini_core.providers.credentials import DEFAULT_ORIGIN, Credential, CredentialSet
from gemini_core.providers.registry import ENDPOINTS, GEMINI_BASE_URL, Operation, build_url


MAX_RETRIES = 3
RETRYABLE_STATUS = 503
AUTH_STATUS = (401, 403)

ByteConsumer = Callable[[bytes], Any]


class GeminiClient:
    """Gemini REST 客户端，execute() 是唯一的传输入口。"""

    name = "gemini"

    def __init__(self, cfg=settings, credentials: Optional[CredentialSet] = None):
        self._settings = cfg
        self._credentials = credentials if credentials is not None else CredentialSet.from_settings(cfg)

    @property
    def credentials(self) -> CredentialSet:
        return self._credentials

    def execute(
        self,
        operation: Operation,
        payload: Optional[bytes] = None,
        consumer: Optional[ByteConsumer] = None,
        *,
        model: Optional[str] = None,
    ) -> CallResult:
        """执行一次逻辑调用（含重试），返回统一的 CallResult。

        payload 为已压缩的请求体；consumer 非空时 2xx 响应按块交给它，
        否则整体读取并解析为 JSON 放入 CallResult.payload。
        """

        spec = ENDPOINTS[operation]
        model_name = model or getattr(self._settings, "default_model", None) or DEFAULT_MODEL_NAME
        selected = self._credentials.next()
        index: Optional[int] = None
        credential: Optional[Credential] = None
        if selected is not None:
            index, credential = selected
            base = getattr(self._settings, "gemini_base_url", None) or GEMINI_BASE_URL
        else:
            base = getattr(self._settings, "keyless_base_url", None) or GEMINI_BASE_URL
        url = build_url(base, operation, model_name, host=getattr(self._settings, "api_host", None))
        headers = self._build_headers(credential, has_body=payload is not None)
        max_retries = getattr(self._settings, "max_retries", MAX_RETRIES)

        attempts = 0
        while True:
            attempts += 1
            log_event(
                logging.DEBUG,
                "Gemini request attempt",
                operation=operation.value,
                attempt=attempts,
                credential_index=index,
                keyless=credential is None,
            )
            try:
                status, body = self._send(spec.method, url, payload, headers, consumer, index)
            except TransientServiceError as e:
                if attempts <= max_retries:
                    log_event(
                        logging.WARNING,
                        "Gemini service unavailable, retrying",
                        operation=operation.value,
                        attempt=attempts,
                        max_retries=max_retries,
                    )
                    continue
                err = ApiError(
                    code="RETRIES_EXHAUSTED",
                    message=f"Service unavailable after {attempts} attempts: {e.message}",
                    http_status=e.http_status,
                    attempts=attempts,
                )
                return self._fail(operation, err, attempts)
            except BusinessError as e:
                return self._fail(operation, e, attempts)
            return CallResult.success(body, status_code=status, attempts=attempts)

    # ---- 便捷方法：失败时直接抛出对应异常 ----

    def generate_text(self, payload: bytes, *, model: Optional[str] = None) -> str:
        result = self.execute(Operation.GENERATE, payload, model=model).raise_for_error()
        data = result.payload or {}
        candidates = data.get("candidates") or []
        if not candidates:
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "".join(p.get("text", "") for p in parts if isinstance(p, dict) and isinstance(p.get("text"), str))

    def count_tokens(self, payload: bytes, *, model: Optional[str] = None) -> int:
        result = self.execute(Operation.COUNT_TOKENS, payload, model=model).raise_for_error()
        total = (result.payload or {}).get("totalTokens")
        if not isinstance(total, int):
            raise ApiError(code="INVALID_RESPONSE", message="totalTokens missing from response", http_status=200)
        return total

    def list_models(self) -> List[str]:
        result = self.execute(Operation.LIST_MODELS).raise_for_error()
        models = (result.payload or {}).get("models") or []
        return [m["name"] for m in models if isinstance(m, dict) and isinstance(m.get("name"), str)]

    # ---- 辅助方法 ----

    def _send(
        self,
        method: str,
        url: str,
        payload: Optional[bytes],
        headers: Dict[str, str],
        consumer: Optional[ByteConsumer],
        credential_index: Optional[int],
    ) -> Tuple[int, Any]:
        proxy = getattr(self._settings, "proxy", None) or None
        try:
            with httpx.Client(timeout=self._settings.http_timeout, trust_env=False, proxy=proxy) as client:
                with client.stream(method, url, content=payload, headers=headers) as resp:
                    status = resp.status_code
                    if status < 200 or status >= 300:
                        raise self._classify(status, resp.read(), credential_index)
                    if consumer is not None:
                        for chunk in resp.iter_bytes():
                            consumer(chunk)
                        return status, None
                    raw = resp.read()
        except (httpx.HTTPError, httpx.InvalidURL, ValueError) as e:
            # 拿到状态码之前的失败，包括代理地址或主机名无效
            raise NetworkError(code=type(e).__name__, message=str(e) or type(e).__name__)
        try:
            return status, json.loads(raw)
        except ValueError:
            raise ApiError(code="INVALID_RESPONSE", message="Response is not valid JSON", http_status=status)

    def _build_headers(self, credential: Optional[Credential], has_body: bool) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if has_body:
            headers["Content-Encoding"] = "gzip"
        if credential is not None:
            headers["x-goog-api-key"] = credential.key
            if credential.origin and credential.origin != DEFAULT_ORIGIN:
                headers["Origin"] = credential.origin
        else:
            origin = getattr(self._settings, "gemini_api_key_origin", None)
            if origin and origin != DEFAULT_ORIGIN:
                headers["Origin"] = origin
        return headers

    @staticmethod
    def _classify(status: int, body: bytes, credential_index: Optional[int]) -> BusinessError:
        message = parse_error_message(body) or f"HTTP {status}"
        if status == RETRYABLE_STATUS:
            return TransientServiceError(code="SERVICE_UNAVAILABLE", message=message, http_status=status)
        if status in AUTH_STATUS:
            return AuthError(
                code="AUTH_FAILED",
                message=message,
                http_status=status,
                credential_index=credential_index,
            )
        return ApiError(code="API_ERROR", message=message, http_status=status)

    @staticmethod
    def _fail(operation: Operation, error: BusinessError, attempts: int) -> CallResult:
        log_event(
            logging.ERROR,
            "Gemini call failed",
            operation=operation.value,
            kind=error.kind,
            code=error.code,
            http_status=error.http_status if error.kind != "transport" else None,
            credential_index=error.extra.get("credential_index"),
            attempts=attempts,
        )
        return CallResult.failure(error, attempts=attempts)


def parse_error_message(body: bytes) -> str:
    """从错误响应中提取 error.message；无法解析时返回原始文本。"""

    text = (body or b"").decode("utf-8", errors="replace").strip()
    start = text.find("{")
    if start < 0:
        return text
    try:
        data = json.loads(text[start:])
    except ValueError:
        return text
    error = data.get("error") if isinstance(data, dict) else None
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return error["message"]
    return text
