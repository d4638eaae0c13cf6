"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在会话层或 UI 层做统一捕获与用户提示。

每个子类带有 kind 属性，对应 CallResult 中的失败分类：
transient / auth / fatal_service / transport / local_resource。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STORE_READ_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 credential_index、attempts 等）。
    """

    kind = "business"

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class NetworkError(BusinessError):
    """网络层错误：在拿到 HTTP 状态码之前失败（DNS、连接超时等）。"""

    kind = "transport"


class TransientServiceError(BusinessError):
    """服务端临时不可用（503），由调用编排器负责重试。"""

    kind = "transient"


class AuthError(BusinessError):
    """凭据被拒绝（401/403），extra["credential_index"] 指向出错的凭据。"""

    kind = "auth"


class ApiError(BusinessError):
    """其他非 2xx 响应，或重试耗尽后的 503。"""

    kind = "fatal_service"


class LocalResourceError(BusinessError):
    """客户端本地资源错误：读取、编码、压缩失败等，从不重试。"""

    kind = "local_resource"


class AttachmentLimitError(LocalResourceError):
    """待发送附件数量已达上限。"""


class ValidationError(BusinessError):
    """参数或配置校验失败。"""

    kind = "validation"


class InvalidIndexError(ValidationError):
    """会话或附件下标越界。"""


class StoreError(BusinessError):
    """历史记录持久化读写失败。"""

    kind = "store"
