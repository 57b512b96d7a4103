# 配送排期引擎异常定义
# 操作层沿用 ValueError / PermissionError 的抛出习惯，子类只用于区分处理方式


class ScheduleError(Exception):
    """排期引擎异常基类"""
    retryable = False


class InvalidTransitionError(ScheduleError, ValueError):
    """当前状态不允许该操作（未发生任何修改）"""

    def __init__(self, action: str, status: str, message: str = None):
        self.action = action
        self.status = status
        super().__init__(message or f"当前状态为 {status}，无法执行 {action} 操作")


class InvalidRecurrenceError(ScheduleError, ValueError):
    """重复规则校验失败"""

    def __init__(self, errors):
        self.errors = list(errors)
        super().__init__("重复规则无效: " + "; ".join(self.errors))


class InvalidWeekdayError(ScheduleError, ValueError):
    """无法识别的星期名称"""


class RecordNotFoundError(ScheduleError, LookupError):
    """订单/订阅/套餐记录不存在"""


class OwnershipError(ScheduleError, PermissionError):
    """调用者不是记录所有者"""


class ConcurrentModificationError(ScheduleError, RuntimeError):
    """记录在读取后被其他请求修改，可重新读取后重试"""
    retryable = True

    def __init__(self, kind: str, record_id: int, expected_version: int):
        self.kind = kind
        self.record_id = record_id
        self.expected_version = expected_version
        super().__init__(f"{kind} {record_id} 已被并发修改（期望版本 {expected_version}），请重试")


class PartialCancellationError(ScheduleError, RuntimeError):
    """
    取消已持久化，但套餐订阅数扣减失败

    state 为已提交的排期状态，计数需要离线补偿，不能通过再次取消重试
    """

    def __init__(self, state: dict, cause: Exception):
        self.state = state
        self.cause = cause
        super().__init__(f"订阅已取消，但套餐订阅数更新失败: {cause}")
