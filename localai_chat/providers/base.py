"""流式客户端抽象接口。

LocalAiStreamingChatModel 不直接依赖具体的 HTTP 实现，而是依赖此协议：

- StreamingClient: 接收 ChatRequest，返回一个尚未执行的 StreamingCall。
- StreamingCall: 注册片段/完成/错误三个回调后调用 execute() 开始执行。

实现方需要保证：同一次调用的回调严格顺序执行、互不重叠；
on_error 与 on_complete 二者最多触发其一。
"""

from typing import Any, Callable, Protocol

from localai_chat.domain.models import ChatRequest, ChatStreamChunk


class StreamingCall(Protocol):
    """一次待执行的流式调用。"""

    def on_partial_response(self, callback: Callable[[ChatStreamChunk], None]) -> "StreamingCall":
        ...

    def on_complete(self, callback: Callable[[], None]) -> "StreamingCall":
        ...

    def on_error(self, callback: Callable[[Exception], None]) -> "StreamingCall":
        ...

    def execute(self) -> Any:
        """开始执行并立即返回，回调在传输层自己的线程上触发。"""

        ...


class StreamingClient(Protocol):
    """chat/completions 流式客户端协议。"""

    def chat_completion(self, request: ChatRequest) -> StreamingCall:
        ...
