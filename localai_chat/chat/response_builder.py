"""流式片段聚合。

StreamingResponseBuilder 按到达顺序把 ChatStreamChunk 追加到同一个聚合状态中，
最后由 build() 冻结为 ChatResponse。只看第一个 choice，多 choice 流不支持。

工具调用片段的处理方式：每个 index 对应一条记录，id/name 首次出现时写入，
arguments 片段按顺序拼接；旧版 function_call 片段拼接到单独一条记录里。
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from localai_chat.domain.exceptions import ProtocolViolation
from localai_chat.domain.models import ChatMessage, ChatResponse, ChatStreamChunk, ChatUsage, ToolCallDelta
from localai_chat.tools.definitions import ToolCall


@dataclass
class _ToolCallRecord:
    id: Optional[str] = None
    name: str = ""
    arguments: List[str] = field(default_factory=list)

    def merge(self, delta: ToolCallDelta) -> None:
        if delta.id and not self.id:
            self.id = delta.id
        if delta.name:
            self.name = delta.name
        if delta.arguments:
            self.arguments.append(delta.arguments)


class StreamingResponseBuilder:
    """一次流式调用独占的聚合器，不做加锁，调用方保证顺序追加。"""

    def __init__(self) -> None:
        self._content: List[str] = []
        self._tool_calls: Dict[int, _ToolCallRecord] = {}
        self._function_call: Optional[_ToolCallRecord] = None
        self._finish_reason: Optional[str] = None
        self._usage: Optional[ChatUsage] = None
        self._id: Optional[str] = None
        self._model: Optional[str] = None
        self._built = False

    @property
    def text(self) -> str:
        return "".join(self._content)

    def append(self, chunk: ChatStreamChunk) -> Optional[str]:
        """追加一个片段，返回其中的文本增量（没有文本时返回 None）。"""

        if self._built:
            raise ProtocolViolation(
                code="PROTOCOL_VIOLATION",
                message="Fragment received after the response was built",
            )
        if chunk.id:
            self._id = chunk.id
        if chunk.model:
            self._model = chunk.model
        if chunk.usage is not None:
            self._usage = chunk.usage
        if not chunk.choices:
            return None

        choice = chunk.choices[0]
        if choice.finish_reason:
            self._finish_reason = choice.finish_reason
        delta = choice.delta
        for call in delta.tool_calls:
            self._tool_calls.setdefault(call.index, _ToolCallRecord()).merge(call)
        if delta.function_call is not None:
            if self._function_call is None:
                self._function_call = _ToolCallRecord()
            self._function_call.merge(delta.function_call)
        if delta.content is not None:
            self._content.append(delta.content)
        return delta.content

    def build(self) -> ChatResponse:
        """冻结聚合结果。之后再 append 会抛出 ProtocolViolation。"""

        if self._built:
            raise ProtocolViolation(code="PROTOCOL_VIOLATION", message="Response already built")
        self._built = True

        tool_calls: List[ToolCall] = []
        for idx in sorted(self._tool_calls):
            record = self._tool_calls[idx]
            tool_calls.append(self._finalize(record, f"tool_call_{idx}"))
        if self._function_call is not None:
            tool_calls.append(self._finalize(self._function_call, "function_call"))

        message = ChatMessage(
            role="assistant",
            content=self.text,
            tool_calls=tool_calls or None,
        )
        return ChatResponse(
            message=message,
            usage=self._usage,
            finish_reason=self._finish_reason,
            id=self._id,
            model=self._model,
        )

    @classmethod
    def _finalize(cls, record: _ToolCallRecord, default_id: str) -> ToolCall:
        return ToolCall(
            id=record.id or default_id,
            name=record.name,
            arguments=cls._parse_arguments("".join(record.arguments)),
        )

    @staticmethod
    def _parse_arguments(raw: str) -> Dict[str, Any]:
        """解析拼接完成的 arguments。

        无法解析时保留原始字符串到 `_raw`，避免信息丢失。
        """

        if not raw:
            return {}
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            return {"_raw": raw}
        if isinstance(parsed, dict):
            return parsed
        return {"_raw": raw}
