"""领域层模型与协议。

包含：
- models: 统一的 ChatMessage / ChatRequest / ChatResult 模型。
- conversation: Chat / Message 存储模型及 ConversationHistory 协议。
- exceptions: 业务异常与存储异常类型定义。
"""
