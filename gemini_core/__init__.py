"""Gemini Core 顶层包。

该包提供终端 Gemini 客户端的核心请求/响应管线，
包括配置加载、会话模型、请求编码、SSE 流式解码、
附件读取以及带重试与凭据轮换的调用编排。
"""

from gemini_core.api.service import ChatSession

__all__ = ["ChatSession"]
