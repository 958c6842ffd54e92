"""流式结果回调接口。"""

import threading
from typing import List, Optional, Protocol

from localai_chat.domain.models import ChatResponse


class StreamingResponseHandler(Protocol):
    """调用方实现的三个回调。

    - on_next: 每个文本增量触发一次，参数是本次增量而不是累计文本。
    - on_complete: 流正常结束时触发一次，携带聚合后的 ChatResponse。
    - on_error: 流失败时代替 on_complete 触发一次。

    回调在传输层的工作线程上执行，不在调用 generate 的线程上。
    """

    def on_next(self, token: str) -> None:
        ...

    def on_complete(self, response: ChatResponse) -> None:
        ...

    def on_error(self, error: Exception) -> None:
        ...


class BlockingResponseHandler:
    """收集增量并允许调用方阻塞等待最终结果。

    用法::

        handler = BlockingResponseHandler()
        model.generate(messages, handler)
        response = handler.wait(timeout=30)
    """

    def __init__(self) -> None:
        self.tokens: List[str] = []
        self.response: Optional[ChatResponse] = None
        self.error: Optional[Exception] = None
        self._done = threading.Event()

    def on_next(self, token: str) -> None:
        self.tokens.append(token)

    def on_complete(self, response: ChatResponse) -> None:
        self.response = response
        self._done.set()

    def on_error(self, error: Exception) -> None:
        self.error = error
        self._done.set()

    @property
    def done(self) -> bool:
        return self._done.is_set()

    def wait(self, timeout: Optional[float] = None) -> ChatResponse:
        """等待流结束并返回结果；流失败时重新抛出收到的异常。"""

        if not self._done.wait(timeout):
            raise TimeoutError(f"No response within {timeout} seconds")
        if self.error is not None:
            raise self.error
        assert self.response is not None
        return self.response
