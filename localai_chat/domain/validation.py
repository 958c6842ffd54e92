"""构造参数校验。"""

from typing import Optional

from localai_chat.domain.exceptions import ConfigurationError


def ensure_not_blank(value: Optional[str], name: str) -> str:
    """value 为 None 或仅含空白时抛出 ConfigurationError，否则原样返回。"""

    if value is None or not str(value).strip():
        raise ConfigurationError(
            code="CONFIG_ERROR",
            message=f"{name} cannot be null or blank",
            field=name,
        )
    return value
