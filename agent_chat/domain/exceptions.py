"""统一业务异常模型。

所有跨模块抛出的业务级错误都应该继承自 BusinessError，
便于在 CLI 层做统一捕获与用户提示。存储层的错误统一继承 StoreError。
"""

from typing import Optional


class BusinessError(Exception):
    """业务异常基类。

    Attributes:
        code: 机器可读错误码（如 "STORE_WRITE_ERROR"）。
        message: 用户可读错误信息。
        http_status: 映射到 HTTP 时可用的状态码，默认 400。
        extra: 其他补充字段（例如 chat_id、line_no 等）。
    """

    def __init__(self, code: str, message: str, http_status: int = 400, **extra):
        self.code = code
        self.message = message
        self.http_status = http_status
        self.extra = extra
        super().__init__(message)


class NetworkError(BusinessError):
    """网络层错误，例如连接失败、超时等。"""


class ApiError(BusinessError):
    """第三方 API 返回非 2xx/429 错误时抛出。"""


class RateLimitError(BusinessError):
    """Provider 限流错误，由上层负责重试/退避策略。"""


class ValidationError(BusinessError):
    """参数或配置校验失败。"""


class AgentLoopError(BusinessError):
    """Agent 在最大轮数内没有给出最终回答。"""


class StoreError(BusinessError):
    """存储层错误基类。"""


class StoreWriteError(StoreError):
    """追加写入持久化日志失败。内存状态已变更，但未落盘。"""


class ReplayError(StoreError):
    """回放持久化日志失败，启动必须中止。"""

    def __init__(self, code: str, message: str, line_no: Optional[int] = None, **extra):
        self.line_no = line_no
        super().__init__(code=code, message=message, line_no=line_no, **extra)


class UnknownOperationError(ReplayError):
    """日志中出现了 put/delete 之外的操作标签。"""


class CorruptLogError(ReplayError):
    """严格模式下，日志中间出现无法解析的行。"""


class DanglingPointerError(StoreError):
    """Chat 的 msgID 或 Message 的 prevID 指向了不存在的消息。"""


class ChatNotFoundError(StoreError):
    """按 id 打开的会话不存在。"""
