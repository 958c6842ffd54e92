"""LocalAI Chat 顶层包。

该包把 LocalAI / OpenAI 兼容的 chat/completions 端点封装为流式聊天模型，
包括配置加载、领域模型、流式传输客户端、片段聚合与回调交付等能力。
"""

from localai_chat.chat import BlockingResponseHandler, LocalAiStreamingChatModel, StreamingResponseHandler

__all__ = ["BlockingResponseHandler", "LocalAiStreamingChatModel", "StreamingResponseHandler"]
