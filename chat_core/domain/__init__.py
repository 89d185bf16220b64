"""领域层模型与异常。

包含：
- models: 会话轮次、响应片段以及后端 JSON 的解析模型。
- exceptions: 业务异常类型定义。
"""
