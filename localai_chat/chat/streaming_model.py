"""LocalAI 流式聊天模型。

把一个 LocalAI / OpenAI 兼容的 chat/completions 端点封装成流式聊天接口：

1. 用 build_chat_request 把消息、采样参数与工具约束组合成 ChatRequest。
2. 交给 StreamingClient 执行，generate 本身立即返回。
3. 每个片段进入本次调用独占的 StreamingResponseBuilder，文本增量同步回调 on_next。
4. 流结束时冻结聚合结果回调 on_complete；失败时回调 on_error，二者只触发其一。

LocalAI 文档：https://localai.io/features/text-generation/
"""

import logging
from typing import Any, Dict, Literal, Optional, Sequence
from uuid import uuid4

from localai_chat.chat.handler import StreamingResponseHandler
from localai_chat.chat.request_builder import build_chat_request
from localai_chat.chat.response_builder import StreamingResponseBuilder
from localai_chat.config.settings import settings
from localai_chat.domain.exceptions import ProtocolViolation
from localai_chat.domain.models import ChatMessage, ChatStreamChunk
from localai_chat.domain.validation import ensure_not_blank
from localai_chat.infrastructure.logging.logger import logger
from localai_chat.providers.base import StreamingClient
from localai_chat.providers.openai_client import DEFAULT_TIMEOUT, OpenAiClient
from localai_chat.tools.definitions import ToolSpecification

DEFAULT_TEMPERATURE = 0.7

SessionState = Literal["idle", "streaming", "completed", "failed"]


def _log(level: int, message: str, log_ctx: Dict[str, Any], **fields: Any) -> None:
    payload = dict(log_ctx)
    payload.update(fields)
    logger.log(level, message, extra={"extra": payload})


class _StreamingSession:
    """一次 generate 调用的状态：idle → streaming → completed | failed。

    终止状态之后的任何回调都属于协议违规，记录告警后丢弃。
    """

    def __init__(self, handler: StreamingResponseHandler, log_ctx: Dict[str, Any]):
        self._handler = handler
        self._log_ctx = log_ctx
        self._builder: Optional[StreamingResponseBuilder] = StreamingResponseBuilder()
        self.state: SessionState = "idle"

    def on_fragment(self, chunk: ChatStreamChunk) -> None:
        if self._terminated("fragment"):
            return
        self.state = "streaming"
        content = self._builder.append(chunk)
        if content is not None:
            self._handler.on_next(content)

    def on_complete(self) -> None:
        if self._terminated("complete"):
            return
        response = self._builder.build()
        self._builder = None
        self.state = "completed"
        usage = response.usage
        _log(
            logging.INFO,
            "Stream completed",
            self._log_ctx,
            finish_reason=response.finish_reason,
            total_tokens=usage.total_tokens if usage else None,
            tool_call_count=len(response.message.tool_calls or []),
        )
        self._handler.on_complete(response)

    def on_error(self, error: Exception) -> None:
        if self._terminated("error"):
            return
        self._builder = None
        self.state = "failed"
        _log(
            logging.WARNING,
            "Stream failed",
            self._log_ctx,
            error=repr(error),
            code=getattr(error, "code", None),
        )
        self._handler.on_error(error)

    def _terminated(self, event: str) -> bool:
        if self.state not in ("completed", "failed"):
            return False
        violation = ProtocolViolation(
            code="PROTOCOL_VIOLATION",
            message=f"Received {event} callback after stream {self.state}",
        )
        _log(logging.WARNING, violation.message, self._log_ctx, code=violation.code, event=event)
        return True


class LocalAiStreamingChatModel:
    """LocalAI 流式聊天模型。

    构造参数：
    - base_url / model_name: 必填，为空时抛出 ConfigurationError（不会发起任何网络请求）。
    - temperature: 默认 0.7。top_p / max_tokens 未设置时不写入请求。
    - timeout: 连接与读取超时（秒），默认 60。
    - log_requests / log_responses: 是否记录请求体与响应片段。
    - client: 可注入自定义 StreamingClient，默认使用 OpenAiClient。
    """

    name = "localai"

    def __init__(
        self,
        base_url: str,
        model_name: str,
        temperature: Optional[float] = None,
        top_p: Optional[float] = None,
        max_tokens: Optional[int] = None,
        timeout: Optional[float] = None,
        log_requests: bool = False,
        log_responses: bool = False,
        client: Optional[StreamingClient] = None,
    ):
        base_url = ensure_not_blank(base_url, "base_url")
        self._model_name = ensure_not_blank(model_name, "model_name")
        self._temperature = DEFAULT_TEMPERATURE if temperature is None else temperature
        self._top_p = top_p
        self._max_tokens = max_tokens
        self._client: StreamingClient = client or OpenAiClient(
            base_url,
            timeout=DEFAULT_TIMEOUT if timeout is None else timeout,
            log_requests=log_requests,
            log_responses=log_responses,
        )

    @classmethod
    def from_settings(cls, cfg=None, **overrides: Any) -> "LocalAiStreamingChatModel":
        """根据配置创建实例，overrides 中的非 None 值优先。"""

        cfg = cfg if cfg is not None else settings
        params: Dict[str, Any] = {
            "base_url": getattr(cfg, "localai_base_url", None),
            "model_name": getattr(cfg, "localai_model_name", None),
            "temperature": getattr(cfg, "localai_temperature", None),
            "top_p": getattr(cfg, "localai_top_p", None),
            "max_tokens": getattr(cfg, "localai_max_tokens", None),
            "timeout": getattr(cfg, "http_timeout", None),
            "log_requests": getattr(cfg, "log_requests", False),
            "log_responses": getattr(cfg, "log_responses", False),
        }
        params.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**params)

    @property
    def model_name(self) -> str:
        return self._model_name

    def generate(
        self,
        messages: Sequence[ChatMessage],
        handler: StreamingResponseHandler,
        tool_specifications: Optional[Sequence[ToolSpecification]] = None,
        tool_that_must_be_executed: Optional[ToolSpecification] = None,
    ) -> None:
        """发起一次流式生成并立即返回。

        三种调用方式：
        - generate(messages, handler)
        - generate(messages, handler, tool_specifications=[...])
        - generate(messages, handler, tool_that_must_be_executed=tool)

        所有结果（包括错误）都只通过 handler 交付，不会从这里同步抛出。
        """

        request = build_chat_request(
            messages,
            self._model_name,
            temperature=self._temperature,
            top_p=self._top_p,
            max_tokens=self._max_tokens,
            tool_specifications=tool_specifications,
            tool_that_must_be_executed=tool_that_must_be_executed,
        )
        log_ctx = {"request_id": f"r-{uuid4().hex}", "model": self._model_name}
        session = _StreamingSession(handler, log_ctx)
        _log(
            logging.INFO,
            "Calling LocalAI (stream)",
            log_ctx,
            message_count=len(request.messages),
            function_count=len(request.functions or ()),
            function_call=request.function_call,
        )
        call = (
            self._client.chat_completion(request)
            .on_partial_response(session.on_fragment)
            .on_complete(session.on_complete)
            .on_error(session.on_error)
        )
        try:
            call.execute()
        except Exception as e:
            session.on_error(e)
