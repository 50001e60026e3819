"""自定义异常类."""

from __future__ import annotations

from typing import Optional, Sequence


class AppException(Exception):
    """应用基础异常类.

    所有自定义异常都应继承此类。

    Attributes:
        message: 错误消息
        code: 错误代码（稳定的错误类别，可对外暴露）
    """

    def __init__(self, message: str, code: str = "UNKNOWN") -> None:
        """初始化异常.

        Args:
            message: 错误消息
            code: 错误代码
        """
        self.message = message
        self.code = code
        super().__init__(self.message)

    def __str__(self) -> str:
        """返回异常字符串表示."""
        return f"[{self.code}] {self.message}"


# ===================
# 输入校验相关异常（同步返回，不会创建任务）
# ===================
class ValidationError(AppException):
    """输入校验错误异常."""

    def __init__(self, message: str) -> None:
        super().__init__(message, "VALIDATION_ERROR")


class UnsupportedFormatError(ValidationError):
    """不支持的导出格式异常."""

    def __init__(self, format: str) -> None:
        self.format = format
        super().__init__(f"不支持的导出格式: {format}")


class UnknownLayerKindError(ValidationError):
    """未知图层类型异常."""

    def __init__(self, kind: str) -> None:
        self.kind = kind
        super().__init__(f"未知的图层类型: {kind}")


class DesignNotFoundError(ValidationError):
    """设计稿未找到异常."""

    def __init__(self, design_id: str) -> None:
        self.design_id = design_id
        super().__init__(f"设计稿未找到: {design_id}")


# ===================
# 图层结构相关异常
# ===================
class CycleError(AppException):
    """图层父子关系成环异常."""

    def __init__(self, layer_id: str, parent_id: str) -> None:
        self.layer_id = layer_id
        self.parent_id = parent_id
        super().__init__(
            f"无法将图层 {layer_id} 的父图层设置为 {parent_id}: 会形成循环引用",
            "CYCLE_ERROR",
        )


class LayerNotFoundError(AppException):
    """图层未找到异常."""

    def __init__(self, layer_id: str) -> None:
        self.layer_id = layer_id
        super().__init__(f"图层未找到: {layer_id}", "LAYER_NOT_FOUND")


# ===================
# 任务状态相关异常
# ===================
class JobStateError(AppException):
    """任务状态非法迁移异常."""

    def __init__(self, message: str) -> None:
        super().__init__(message, "JOB_STATE_ERROR")


class RetryLimitExceededError(JobStateError):
    """超过最大重试次数异常."""

    def __init__(self, max_retries: int) -> None:
        self.max_retries = max_retries
        super().__init__(f"已超过最大重试次数 ({max_retries})")


class JobNotFoundError(AppException):
    """任务未找到异常."""

    def __init__(self, job_id: str) -> None:
        self.job_id = job_id
        super().__init__(f"导出任务未找到: {job_id}", "JOB_NOT_FOUND")


# ===================
# 处理阶段异常（记录在任务上，任务进入 failed）
# ===================
class RenderError(AppException):
    """文档渲染错误异常."""

    def __init__(self, message: str) -> None:
        super().__init__(message, "RENDER_ERROR")


class ConversionError(AppException):
    """格式转换错误异常.

    Attributes:
        command: 执行的命令参数
        returncode: 子进程退出码
        output: 子进程捕获的输出（仅用于内部诊断）
    """

    def __init__(
        self,
        message: str,
        command: Optional[Sequence[str]] = None,
        returncode: Optional[int] = None,
        output: str = "",
    ) -> None:
        self.command = list(command) if command else []
        self.returncode = returncode
        self.output = output
        super().__init__(message, "CONVERSION_ERROR")


class ExportTimeoutError(AppException):
    """导出超时异常."""

    def __init__(self, timeout: float, stage: str = "export") -> None:
        self.timeout = timeout
        self.stage = stage
        super().__init__(f"{stage} 超时 ({timeout:g}秒)", "TIMEOUT")


class StorageError(AppException):
    """产物存储错误异常."""

    def __init__(self, message: str) -> None:
        super().__init__(message, "STORAGE_ERROR")


# ===================
# 配置相关异常
# ===================
class ConfigError(AppException):
    """配置错误异常."""

    def __init__(self, message: str) -> None:
        super().__init__(message, "CONFIG_ERROR")
