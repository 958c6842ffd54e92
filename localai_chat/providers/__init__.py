"""chat/completions 传输层。

该包下的模块负责：
- 定义流式客户端抽象接口 (base)。
- 提供 LocalAI / OpenAI 兼容接口的 httpx 实现 (openai_client)。
"""

from localai_chat.providers.base import StreamingCall, StreamingClient
from localai_chat.providers.openai_client import OpenAiClient, OpenAiStreamingCall

__all__ = ["StreamingCall", "StreamingClient", "OpenAiClient", "OpenAiStreamingCall"]
