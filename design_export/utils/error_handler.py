"""错误处理工具模块.

提供统一的错误分类、对外错误消息和内部诊断信息。
"""

from __future__ import annotations

from typing import Any

from design_export.utils.constants import DIAGNOSTIC_OUTPUT_TAIL
from design_export.utils.exceptions import (
    AppException,
    ConversionError,
    CycleError,
    ExportTimeoutError,
    JobStateError,
    RenderError,
    StorageError,
)
from design_export.utils.logger import setup_logger

logger = setup_logger(__name__)

# 未知异常的错误代码
INTERNAL_ERROR_CODE = "INTERNAL_ERROR"

# 错误消息映射（对外展示，不包含子进程原始输出）
ERROR_MESSAGES = {
    ExportTimeoutError: "导出超时，请降低输出尺寸或稍后重试",
    ConversionError: "格式转换失败，请检查导出参数后重试",
    RenderError: "设计稿渲染失败，请检查图层数据",
    StorageError: "导出文件保存失败，请稍后重试",
    CycleError: "图层父子关系存在循环引用",
    JobStateError: "当前任务状态不允许该操作",
}


def get_error_code(exception: BaseException) -> str:
    """获取稳定的错误代码.

    Args:
        exception: 异常对象

    Returns:
        错误代码
    """
    if isinstance(exception, AppException):
        return exception.code
    return INTERNAL_ERROR_CODE


def get_user_friendly_message(exception: BaseException) -> str:
    """获取用户友好的错误消息.

    Args:
        exception: 异常对象

    Returns:
        用户友好的错误消息
    """
    for exc_type, message in ERROR_MESSAGES.items():
        if isinstance(exception, exc_type):
            return message

    # 其余业务异常的消息本身就是面向用户的
    if isinstance(exception, AppException):
        return exception.message

    return "导出失败，请稍后重试"


def get_error_details(exception: BaseException) -> dict[str, Any]:
    """获取错误详细信息（内部诊断用）.

    Args:
        exception: 异常对象

    Returns:
        包含错误详情的字典
    """
    details: dict[str, Any] = {
        "type": type(exception).__name__,
        "code": get_error_code(exception),
        "message": str(exception),
        "user_message": get_user_friendly_message(exception),
    }

    if isinstance(exception, ConversionError):
        details["command"] = exception.command
        details["returncode"] = exception.returncode
        details["output"] = exception.output[-DIAGNOSTIC_OUTPUT_TAIL:]

    if isinstance(exception, ExportTimeoutError):
        details["timeout"] = exception.timeout
        details["stage"] = exception.stage

    return details


def handle_exception(
    exception: Exception,
    context: str = "",
    reraise: bool = True,
    log_traceback: bool = True,
) -> None:
    """统一异常处理.

    Args:
        exception: 异常对象
        context: 上下文描述
        reraise: 是否重新抛出异常
        log_traceback: 是否记录堆栈跟踪
    """
    msg = "异常发生"
    if context:
        msg = f"{context}: {msg}"

    if log_traceback:
        logger.exception(f"{msg}: {exception}")
    else:
        logger.error(f"{msg}: {exception}")

    if reraise:
        raise exception
