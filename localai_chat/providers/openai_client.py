"""LocalAI / OpenAI 兼容接口的流式客户端。

本模块负责：

1. 接收统一的 ChatRequest，将其转换为 chat/completions 的 JSON 请求体。
2. 通过 httpx 发起流式请求并逐行解析 SSE 数据。
3. 将每个 data 行解析为统一的 ChatStreamChunk。
4. 把网络/API 异常包装为 TransportError 子类。

接口地址：{base_url}/chat/completions。本层不做鉴权和重试。
"""

import json
import logging
import threading
from typing import Any, Callable, Dict, Iterator, List, Optional

import httpx

from localai_chat.domain.exceptions import ApiError, NetworkError, RateLimitError, StreamDecodeError
from localai_chat.domain.models import (
    ChatDelta,
    ChatMessage,
    ChatRequest,
    ChatStreamChoice,
    ChatStreamChunk,
    ChatUsage,
    ToolCallDelta,
)
from localai_chat.domain.validation import ensure_not_blank
from localai_chat.infrastructure.logging.logger import logger
from localai_chat.tools.definitions import ToolSpecification

DEFAULT_TIMEOUT = 60.0

# SSE 中除 data 以外的字段，直接忽略
_SSE_FIELDS = {"event", "id", "retry"}


class OpenAiClient:
    """chat/completions 流式客户端实现。

    - chat_completion: 返回一个尚未执行的 OpenAiStreamingCall。
    - stream_chunks: 同步地逐个产出 ChatStreamChunk，供 StreamingCall 在工作线程中消费。
    """

    name = "localai"

    def __init__(
        self,
        base_url: str,
        timeout: Optional[float] = None,
        log_requests: bool = False,
        log_responses: bool = False,
    ):
        self._base_url = ensure_not_blank(base_url, "base_url").rstrip("/")
        # 同一个超时同时作用于连接与读取
        self._timeout = httpx.Timeout(timeout if timeout is not None else DEFAULT_TIMEOUT)
        self._log_requests = bool(log_requests)
        self._log_responses = bool(log_responses)

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def timeout(self) -> httpx.Timeout:
        return self._timeout

    def chat_completion(self, request: ChatRequest) -> "OpenAiStreamingCall":
        return OpenAiStreamingCall(self, request)

    def stream_chunks(self, req: ChatRequest) -> Iterator[ChatStreamChunk]:
        """执行一次流式对话调用，逐步 yield ChatStreamChunk。

        遇到 [DONE] 或连接正常关闭即结束；任何错误都以 TransportError 子类抛出。
        """

        payload = self._build_payload(req)
        url = f"{self._base_url}/chat/completions"
        if self._log_requests:
            logger.info("Request", extra={"extra": {"url": url, "body": payload}})
        try:
            with httpx.Client(timeout=self._timeout, trust_env=False) as client:
                with client.stream(
                    "POST",
                    url,
                    json=payload,
                    headers={
                        "Content-Type": "application/json",
                        "Accept": "text/event-stream",
                    },
                ) as resp:
                    if resp.status_code == 429:
                        raise RateLimitError(code="RATE_LIMIT", message="LocalAI rate limit", http_status=429)
                    if resp.status_code >= 400:
                        # 流式响应需要先读完 body 才能访问 text
                        resp.read()
                        raise ApiError(code="API_ERROR", message=resp.text, http_status=resp.status_code)
                    for line in resp.iter_lines():
                        data_str = self._sse_data(line)
                        if data_str is None:
                            continue
                        if data_str == "[DONE]":
                            return
                        try:
                            payload_chunk = json.loads(data_str)
                        except json.JSONDecodeError as e:
                            raise StreamDecodeError(
                                code="STREAM_DECODE_ERROR",
                                message=f"Malformed stream data: {data_str[:200]}",
                            ) from e
                        if self._log_responses:
                            logger.info("Response chunk", extra={"extra": {"chunk": payload_chunk}})
                        yield self._parse_stream_chunk(payload_chunk)
        except httpx.RequestError as e:
            raise NetworkError(code="NETWORK_ERROR", message=str(e), url=url) from e

    # ---- 请求序列化 ----

    def _build_payload(self, req: ChatRequest) -> Dict[str, Any]:
        """将 ChatRequest 转成 chat/completions 所需的请求 JSON。

        未设置的采样参数不写入请求体，由服务端使用自己的默认值。
        """

        payload: Dict[str, Any] = {
            "model": req.model,
            "messages": [self._message_to_payload(m) for m in req.messages],
            "stream": req.stream,
        }
        if req.temperature is not None:
            payload["temperature"] = req.temperature
        if req.top_p is not None:
            payload["top_p"] = req.top_p
        if req.max_tokens is not None:
            payload["max_tokens"] = req.max_tokens
        if req.functions:
            payload["functions"] = [self._serialize_function(tool) for tool in req.functions]
        if req.function_call:
            payload["function_call"] = {"name": req.function_call}
        return payload

    @staticmethod
    def _serialize_function(tool: ToolSpecification) -> Dict[str, Any]:
        """把 ToolSpecification 转成 functions 字段中的一项。"""

        properties: Dict[str, Any] = {}
        required: List[str] = []
        for name, param in tool.params.items():
            schema = param.schema or {"type": "string"}
            if param.description:
                schema = {**schema, "description": param.description}
            properties[name] = schema
            if param.required:
                required.append(name)
        return {
            "name": tool.name,
            "description": tool.description,
            "parameters": {
                "type": "object",
                "properties": properties,
                "required": required,
            },
        }

    @staticmethod
    def _message_to_payload(message: ChatMessage) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"role": message.role}
        # assistant 只发起工具调用时 content 允许为 null
        if message.content or not message.tool_calls:
            payload["content"] = message.content
        else:
            payload["content"] = None
        if message.name:
            payload["name"] = message.name
        if message.tool_calls:
            payload["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {
                        "name": call.name,
                        "arguments": json.dumps(call.arguments, ensure_ascii=False),
                    },
                }
                for call in message.tool_calls
            ]
        if message.tool_call_id:
            payload["tool_call_id"] = message.tool_call_id
        return payload

    # ---- 响应解析 ----

    @staticmethod
    def _sse_data(line: str) -> Optional[str]:
        """取出 SSE 行中的数据部分；空行、注释与其他字段返回 None。"""

        line = line.strip()
        if not line or line.startswith(":"):
            return None
        if line.startswith("data:"):
            return line[5:].strip() or None
        if line.split(":", 1)[0] in _SSE_FIELDS:
            return None
        return line

    def _parse_stream_chunk(self, data: Dict[str, Any]) -> ChatStreamChunk:
        """解析流式响应中的单条增量。"""

        choices: List[ChatStreamChoice] = []
        for i, ch in enumerate(data.get("choices") or []):
            choices.append(
                ChatStreamChoice(
                    index=ch.get("index", i),
                    delta=self._parse_delta(ch.get("delta") or {}),
                    finish_reason=ch.get("finish_reason"),
                )
            )
        usage_raw = data.get("usage") or {}
        usage = None
        if usage_raw:
            usage = ChatUsage(
                prompt_tokens=usage_raw.get("prompt_tokens", 0),
                completion_tokens=usage_raw.get("completion_tokens", 0),
                total_tokens=usage_raw.get("total_tokens", 0),
            )
        return ChatStreamChunk(
            id=data.get("id"),
            model=data.get("model"),
            created=data.get("created"),
            choices=choices,
            usage=usage,
            raw=data,
        )

    @staticmethod
    def _parse_delta(payload: Dict[str, Any]) -> ChatDelta:
        """解析 delta，兼容 tool_calls 与旧版 function_call。"""

        tool_calls: List[ToolCallDelta] = []
        for idx, call in enumerate(payload.get("tool_calls") or []):
            func = call.get("function") or {}
            tool_calls.append(
                ToolCallDelta(
                    index=call.get("index", idx),
                    id=call.get("id"),
                    name=func.get("name"),
                    arguments=func.get("arguments"),
                )
            )
        function_call = None
        raw_function_call = payload.get("function_call")
        if raw_function_call:
            function_call = ToolCallDelta(
                index=0,
                name=raw_function_call.get("name"),
                arguments=raw_function_call.get("arguments"),
            )
        return ChatDelta(
            role=payload.get("role"),
            content=payload.get("content"),
            tool_calls=tool_calls,
            function_call=function_call,
        )


class OpenAiStreamingCall:
    """一次流式调用：注册回调后 execute() 在后台线程中执行。

    回调都在同一个工作线程上按顺序触发；出错时调用 on_error 并不再调用 on_complete。
    """

    def __init__(self, client: OpenAiClient, request: ChatRequest):
        self._client = client
        self._request = request
        self._partial_callback: Optional[Callable[[ChatStreamChunk], None]] = None
        self._complete_callback: Optional[Callable[[], None]] = None
        self._error_callback: Optional[Callable[[Exception], None]] = None

    def on_partial_response(self, callback: Callable[[ChatStreamChunk], None]) -> "OpenAiStreamingCall":
        self._partial_callback = callback
        return self

    def on_complete(self, callback: Callable[[], None]) -> "OpenAiStreamingCall":
        self._complete_callback = callback
        return self

    def on_error(self, callback: Callable[[Exception], None]) -> "OpenAiStreamingCall":
        self._error_callback = callback
        return self

    def execute(self) -> threading.Thread:
        worker = threading.Thread(target=self._run, name="localai-stream", daemon=True)
        worker.start()
        return worker

    def _run(self) -> None:
        chunks = self._client.stream_chunks(self._request)
        try:
            for chunk in chunks:
                if self._partial_callback is not None:
                    self._partial_callback(chunk)
        except Exception as e:
            # 传输错误与片段回调中的异常都只通过 on_error 交付
            logger.log(
                logging.WARNING,
                "Streaming call failed",
                extra={"extra": {"model": self._request.model, "error": repr(e)}},
            )
            if self._error_callback is not None:
                self._error_callback(e)
            return
        finally:
            chunks.close()
        if self._complete_callback is not None:
            self._complete_callback()
