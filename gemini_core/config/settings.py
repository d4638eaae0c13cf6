"""配置管理模块。

支持从环境变量、.env 以及 config.yaml 加载配置，优先级依次降低。
"""

import os
import warnings
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from gemini_core.domain.conversation import ATTACHMENT_LIMIT
from gemini_core.domain.models import DEFAULT_MODEL_NAME, GenerationParams
from gemini_core.providers.registry import (
    DEFAULT_THINKING_BUDGET_CAPS,
    GEMINI_BASE_URL,
    clamp_thinking_budget,
)


def _load_config_from_yaml() -> Dict[str, Any]:
    """从 config.yaml 加载配置（若存在）。"""
    candidates = []
    explicit = os.getenv("GEMINI_CONFIG_FILE")
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


class GeminiSettings(BaseSettings):
    """客户端配置（使用 Pydantic）。"""

    # ---- 凭据 ----
    gemini_api_key: Optional[str] = Field(default=None, description="单个 API 密钥")
    gemini_api_key_origin: str = Field(
        default="default",
        description="Origin 请求头；为 default 时不发送",
    )
    gemini_api_keys: List[Union[str, Dict[str, str]]] = Field(
        default_factory=list,
        description="轮换使用的密钥列表，元素为字符串或 {key, origin}",
    )

    # ---- 端点与传输 ----
    gemini_base_url: str = Field(default=GEMINI_BASE_URL, description="带密钥调用的基础URL")
    keyless_base_url: str = Field(
        default=GEMINI_BASE_URL,
        description="没有任何密钥时使用的基础URL（例如自带鉴权的代理网关）",
    )
    api_host: Optional[str] = Field(default=None, description="覆盖基础URL中的主机名")
    proxy: Optional[str] = Field(default=None, description="HTTP/HTTPS 代理地址")
    http_timeout: float = Field(default=300.0, ge=1.0, description="HTTP 超时时间（秒）")
    max_retries: int = Field(default=3, ge=0, le=10, description="503 时的最大重试次数")

    # ---- 生成参数默认值 ----
    default_model: str = Field(default=DEFAULT_MODEL_NAME, description="模型名")
    temperature: float = Field(default=0.75, ge=0.0, le=2.0)
    seed: int = Field(default=42)
    max_output_tokens: int = Field(default=65536, ge=0)
    thinking_budget: int = Field(default=-1, description="思考预算，<=0 表示自动")
    top_k: Optional[int] = Field(default=None, ge=1)
    top_p: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    google_grounding: bool = Field(default=True, description="是否启用 Google 搜索增强")
    url_context: bool = Field(default=True, description="是否启用 URL 上下文工具")
    safety_override: bool = Field(default=False, description="是否关闭安全过滤")
    thinking_budget_caps: Dict[str, int] = Field(
        default_factory=lambda: dict(DEFAULT_THINKING_BUDGET_CAPS),
        description="模型名子串 -> 思考预算上限",
    )

    # ---- 附件 ----
    attachment_limit: int = Field(default=ATTACHMENT_LIMIT, ge=1)
    attachment_root: Optional[str] = Field(
        default=None,
        description="附件与历史文件允许访问的根目录；为空时不限制",
    )

    # ---- 日志 ----
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

    @field_validator("gemini_api_key")
    @classmethod
    def validate_api_key(cls, v: Optional[str]) -> Optional[str]:
        if v is not None:
            v = v.strip() or None
        if v and len(v) < 10:
            raise ValueError("API key seems too short")
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

    def generation_params(self) -> GenerationParams:
        """根据配置构造 GenerationParams，并按上限表裁剪思考预算。"""

        return GenerationParams(
            model=self.default_model,
            temperature=self.temperature,
            seed=self.seed,
            max_output_tokens=self.max_output_tokens,
            thinking_budget=clamp_thinking_budget(
                self.default_model, self.thinking_budget, self.thinking_budget_caps
            ),
            top_k=self.top_k,
            top_p=self.top_p,
            google_grounding=self.google_grounding,
            url_context=self.url_context,
            safety_override=self.safety_override,
        )


settings = GeminiSettings()

# 类型别名，让外部代码可以使用 Settings 类型
Settings = GeminiSettings
