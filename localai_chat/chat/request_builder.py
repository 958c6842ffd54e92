"""ChatRequest 构造。

纯函数：不做任何 I/O，只把消息、采样参数和工具约束组合成不可变的 ChatRequest。
"""

from typing import Optional, Sequence

from localai_chat.domain.models import ChatMessage, ChatRequest
from localai_chat.domain.validation import ensure_not_blank
from localai_chat.tools.definitions import ToolSpecification


def build_chat_request(
    messages: Sequence[ChatMessage],
    model_name: str,
    *,
    temperature: Optional[float] = 0.7,
    top_p: Optional[float] = None,
    max_tokens: Optional[int] = None,
    tool_specifications: Optional[Sequence[ToolSpecification]] = None,
    tool_that_must_be_executed: Optional[ToolSpecification] = None,
) -> ChatRequest:
    """生成一次流式请求。

    - 只给了必须执行的工具时，工具列表就是仅含该工具的单元素列表。
    - 两者都给且列表中没有同名工具时，把必须执行的工具追加到列表末尾。
    - 有必须执行的工具时，function_call 设为该工具名。
    """

    ensure_not_blank(model_name, "model_name")

    tools = list(tool_specifications or [])
    if tool_that_must_be_executed is not None:
        if not any(t.name == tool_that_must_be_executed.name for t in tools):
            tools.append(tool_that_must_be_executed)

    return ChatRequest(
        model=model_name,
        messages=tuple(messages),
        temperature=temperature,
        top_p=top_p,
        max_tokens=max_tokens,
        functions=tuple(tools) if tools else None,
        function_call=tool_that_must_be_executed.name if tool_that_must_be_executed is not None else None,
        stream=True,
    )
