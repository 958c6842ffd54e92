"""工具数据结构定义。

这些 dataclass 描述了“工具调用”的 schema，既用于：
- 将可用工具列表作为 functions 暴露给模型（ToolSpecification / ToolParam）。
- 保存流式响应聚合完成后模型发起的工具调用（ToolCall）。

本包只做透传，不负责执行工具。
"""

from dataclasses import dataclass, field
from typing import Dict, Any


@dataclass(frozen=True)
class ToolParam:
    """单个工具参数的定义。"""

    name: str
    description: str
    required: bool
    schema: Dict[str, Any]


@dataclass(frozen=True)
class ToolSpecification:
    """一个可供模型调用的工具定义。"""

    name: str
    description: str = ""
    params: Dict[str, ToolParam] = field(default_factory=dict)


@dataclass
class ToolCall:
    """模型发起的一次工具调用请求。"""

    id: str
    name: str
    arguments: Dict[str, Any]
