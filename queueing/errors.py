"""排队业务错误类型

所有业务错误都带有稳定的 code 和可直接展示给用户的 message，
由 Web 通道统一映射为 HTTP 状态码。
"""
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError


class QueueError(Exception):
    """排队业务错误基类"""

    code = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self, *, corr_id: Optional[str] = None) -> Dict[str, Any]:
        data: Dict[str, Any] = {"type": "error", "code": self.code,
                                "message": self.message}
        if corr_id is not None:
            data["corr_id"] = corr_id
        return data


class NotFound(QueueError):
    """引用的服务/窗口/票号/用户不存在"""
    code = "not_found"


class Conflict(QueueError):
    """重复的有效票号、重复的服务名称"""
    code = "conflict"


class Forbidden(QueueError):
    """角色或归属不匹配"""
    code = "forbidden"


class InvalidState(QueueError):
    """票号不处于所需状态，或窗口与服务不匹配"""
    code = "invalid_state"


class ValidationError(QueueError):
    """输入缺失或格式错误"""
    code = "validation_error"


class InternalError(QueueError):
    """存储层故障，不自动重试"""
    code = "internal_error"


@contextmanager
def store_errors(action: str) -> Iterator[None]:
    """把存储层异常统一转换为 InternalError，业务错误原样抛出。"""
    try:
        yield
    except SQLAlchemyError as e:
        logger.error(f"{action} 失败（存储错误）: {e}")
        raise InternalError(f"Storage failure while trying to {action}") from e
