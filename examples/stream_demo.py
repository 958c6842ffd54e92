"""Minimal demonstration of the LocalAI streaming chat model.

Reads LOCALAI_BASE_URL / LOCALAI_MODEL_NAME from the environment, .env or config.yaml.
"""

import sys

from localai_chat import BlockingResponseHandler, LocalAiStreamingChatModel
from localai_chat.domain.models import ChatMessage


class PrintingHandler(BlockingResponseHandler):
    def on_next(self, token: str) -> None:
        super().on_next(token)
        sys.stdout.write(token)
        sys.stdout.flush()


if __name__ == "__main__":
    question = " ".join(sys.argv[1:]) or "用一句话介绍一下 LocalAI"
    model = LocalAiStreamingChatModel.from_settings()
    handler = PrintingHandler()
    model.generate([ChatMessage(role="user", content=question)], handler)
    response = handler.wait(timeout=120)
    print()
    print("finish_reason:", response.finish_reason)
    if response.usage:
        print("total_tokens:", response.usage.total_tokens)
