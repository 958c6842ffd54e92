"""流式聊天模型层。"""

from localai_chat.chat.handler import BlockingResponseHandler, StreamingResponseHandler
from localai_chat.chat.request_builder import build_chat_request
from localai_chat.chat.response_builder import StreamingResponseBuilder
from localai_chat.chat.streaming_model import LocalAiStreamingChatModel

__all__ = [
    "BlockingResponseHandler",
    "StreamingResponseHandler",
    "build_chat_request",
    "StreamingResponseBuilder",
    "LocalAiStreamingChatModel",
]
