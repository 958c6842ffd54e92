"""配置管理模块。

支持从 .env、config.yaml 以及环境变量加载配置，优先级：
构造参数 > 环境变量 > .env > config.yaml。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("LOCALAI_CONFIG_FILE")
    if explicit:
        candidates.append(Path(explicit).expanduser())
    candidates.extend([
        Path.cwd() / "config.yaml",
        Path(__file__).resolve().parents[2] / "config.yaml",
    ])

    seen: set[Path] = set()
    for path in candidates:
        if not path or path in seen:
            continue
        seen.add(path)
        try:
            if path.exists():
                data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
                if isinstance(data, dict):
                    return data
                warnings.warn(f"Config file {path} is not a mapping, ignored")
        except (OSError, yaml.YAMLError) as exc:
            warnings.warn(f"Failed to read config file {path}: {exc}")
    return {}


class LocalAiSettings(BaseSettings):
    """配置设置（使用 Pydantic）。"""

    # ---- LocalAI 端点与模型 ----
    localai_base_url: Optional[str] = Field(
        default=None,
        description="LocalAI / OpenAI 兼容接口基础URL，例如 http://localhost:8080/v1",
    )
    localai_model_name: Optional[str] = Field(default=None, description="服务端模型名")

    # ---- 采样参数 ----
    localai_temperature: float = Field(default=0.7, ge=0.0, le=2.0, description="生成温度")
    localai_top_p: Optional[float] = Field(default=None, ge=0.0, le=1.0, description="top-p 采样")
    localai_max_tokens: Optional[int] = Field(default=None, ge=1, description="最大生成 token 数")

    # ---- 传输 ----
    http_timeout: float = Field(default=60.0, ge=1.0, description="连接/读取超时时间（秒）")

    # ---- 日志 ----
    log_requests: bool = Field(default=False, description="是否记录请求体")
    log_responses: bool = Field(default=False, description="是否记录流式响应片段")
    log_dir: str = Field(default="logs", description="日志目录")
    log_redact_content: bool = Field(default=False, description="是否脱敏日志内容")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @staticmethod
    def _config_source() -> Dict[str, Any]:
        return _load_config_from_yaml()

    @field_validator("localai_base_url")
    @classmethod
    def strip_trailing_slash(cls, v: Optional[str]) -> Optional[str]:
        if v:
            return v.rstrip("/")
        return v

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls,
        init_settings,
        env_settings,
        dotenv_settings,
        file_secret_settings,
    ):
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            cls._config_source,
            file_secret_settings,
        )


settings = LocalAiSettings()

# 类型别名，让外部代码可以使用 Settings 类型
Settings = LocalAiSettings
