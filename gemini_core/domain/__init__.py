"""领域层模型与协议。

包含：
- models: Part / Turn / GenerationParams / CallResult 数据模型。
- conversation: Conversation 会话存储与 PendingAttachments 附件登记表。
- exceptions: 业务异常类型定义（含失败分类）。
"""
