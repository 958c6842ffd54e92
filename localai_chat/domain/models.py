"""统一的对话请求、流式片段与最终结果模型。

本模块定义了模型适配层与传输层之间共享的标准数据结构：

- ChatMessage: 一条对话消息（system/user/assistant/tool/function）。
- ChatRequest: 发给 chat/completions 端点的完整请求快照（不可变）。
- ChatStreamChunk: 流式响应中的一个片段，choice.delta 为本次增量。
- ChatResponse: 所有片段聚合完成后交付给调用方的最终结果。

传输层（OpenAiClient）负责在 API JSON 和这些模型之间做转换，
模型适配层（LocalAiStreamingChatModel）只依赖这些结构。
"""

from dataclasses import dataclass, field
from typing import Literal, Optional, Any, Dict, List, Tuple, TYPE_CHECKING

if TYPE_CHECKING:
    # 仅在类型检查时导入，避免运行时循环依赖
    from localai_chat.tools.definitions import ToolCall, ToolSpecification


# 消息角色（与 OpenAI 兼容接口的 role 字段对应）
Role = Literal["system", "user", "assistant", "tool", "function"]


@dataclass
class ChatMessage:
    """一条对话消息，既可用于请求，也可作为最终结果。

    - role: 消息角色，如 system/user/assistant。
    - content: 纯文本内容。
    - name: 可选的发言者名称，原样透传给服务端。
    - meta: 附加元数据，不发给服务端，仅用于日志与上层展示。
    - tool_calls: 当 role 为 "assistant" 且模型触发工具调用时，保存调用列表。
    - tool_call_id: 当 role 为 "tool" 时，用于关联某一次工具调用。
    """

    role: Role
    content: str
    name: Optional[str] = None
    meta: Dict[str, Any] = field(default_factory=dict)
    tool_calls: Optional[List["ToolCall"]] = None
    tool_call_id: Optional[str] = None


@dataclass(frozen=True)
class ChatRequest:
    """一次流式聊天请求的不可变快照。

    由 request_builder.build_chat_request 生成，传输层负责把本结构
    序列化为 chat/completions 的 JSON 请求体。
    """

    model: str
    messages: Tuple[ChatMessage, ...]
    temperature: Optional[float] = 0.7
    top_p: Optional[float] = None
    max_tokens: Optional[int] = None
    # 可供模型调用的工具（序列化为 functions 字段）
    functions: Optional[Tuple["ToolSpecification", ...]] = None
    # 强制模型调用的工具名（序列化为 function_call 字段）
    function_call: Optional[str] = None
    stream: bool = True


@dataclass
class ChatUsage:
    """服务端返回的 token 统计信息。"""

    prompt_tokens: int
    completion_tokens: int
    total_tokens: int


@dataclass
class ToolCallDelta:
    """流式片段中的部分工具调用。

    name/id 通常只出现在某个 index 的第一个片段里，
    arguments 是需要按到达顺序拼接的 JSON 字符串片段。
    """

    index: int = 0
    id: Optional[str] = None
    name: Optional[str] = None
    arguments: Optional[str] = None


@dataclass
class ChatDelta:
    """单个 choice 的增量内容。

    content 为 None 表示本片段不携带文本，和空字符串区分开。
    """

    role: Optional[str] = None
    content: Optional[str] = None
    tool_calls: List[ToolCallDelta] = field(default_factory=list)
    # 旧版 functions 接口返回的 function_call 增量
    function_call: Optional[ToolCallDelta] = None


@dataclass
class ChatStreamChoice:
    """流式返回中的单个候选增量。"""

    index: int
    delta: ChatDelta
    finish_reason: Optional[str] = None


@dataclass
class ChatStreamChunk:
    """流式对话的一个片段。

    某些片段只携带元数据（例如最后一个只含 usage 的片段），此时 choices 为空。
    """

    id: Optional[str] = None
    model: Optional[str] = None
    created: Optional[int] = None
    choices: List[ChatStreamChoice] = field(default_factory=list)
    usage: Optional[ChatUsage] = None
    raw: Optional[dict] = None


@dataclass(frozen=True)
class ChatResponse:
    """一次流式调用的最终聚合结果。

    - message: role 固定为 assistant 的完整消息（文本 + 工具调用）。
    - usage: 最后一个携带 usage 的片段中的 token 统计。
    - finish_reason: 最后一个非空的 finish_reason，如 "stop"、"function_call"。
    """

    message: ChatMessage
    usage: Optional[ChatUsage] = None
    finish_reason: Optional[str] = None
    id: Optional[str] = None
    model: Optional[str] = None
