"""Gemini API 集成层。

该包下的模块负责：
- 维护端点、操作与模型策略配置 (registry)。
- 会话快照与请求 JSON 之间的互相转换及 gzip 压缩 (payload)。
- SSE 流式响应的增量解析 (stream)。
- 凭据轮换 (credentials) 与带重试的调用编排 (gemini_client)。
"""
