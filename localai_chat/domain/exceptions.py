"""统一业务异常模型。

所有跨模块抛出的错误都继承自 BusinessError，便于调用方统一捕获：

- ConfigurationError: 构造阶段的必填参数缺失，同步抛出，发生在任何网络请求之前。
- TransportError 及其子类: 流式调用过程中的传输层错误，只通过 handler.on_error 交付。
- ProtocolViolation: 流已结束后又收到回调，仅记录告警并丢弃，不会向上抛出。
"""


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "NETWORK_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 base_url、model 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class ConfigurationError(BusinessError):
    """必填配置为空（如 base_url、model_name）。"""


class TransportError(BusinessError):
    """传输层错误基类：连接失败、非 2xx 响应、流数据损坏等。"""


class NetworkError(TransportError):
    """网络层错误，例如连接失败、超时等。"""


class ApiError(TransportError):
    """服务端返回非 2xx/429 错误时抛出。"""


class RateLimitError(TransportError):
    """服务端限流（HTTP 429）。本层不做重试。"""


class StreamDecodeError(TransportError):
    """SSE 数据行无法解析为 JSON。"""


class ProtocolViolation(BusinessError):
    """流已进入终止状态后仍收到片段/完成/错误回调。"""
