"""错误处理工具单元测试."""

from __future__ import annotations

import pytest

from design_export.utils.error_handler import (
    get_error_code,
    get_error_details,
    get_user_friendly_message,
    handle_exception,
)
from design_export.utils.exceptions import (
    AppException,
    ConversionError,
    CycleError,
    ExportTimeoutError,
    StorageError,
    ValidationError,
)


class TestExceptions:
    """测试异常层级."""

    def test_str_format(self) -> None:
        assert str(AppException("出错了", "X")) == "[X] 出错了"

    def test_codes(self) -> None:
        assert ValidationError("x").code == "VALIDATION_ERROR"
        assert CycleError("a", "b").code == "CYCLE_ERROR"
        assert ExportTimeoutError(10).code == "TIMEOUT"
        assert StorageError("x").code == "STORAGE_ERROR"


class TestErrorHandler:
    """测试错误消息与诊断信息."""

    def test_error_code(self) -> None:
        assert get_error_code(ConversionError("x")) == "CONVERSION_ERROR"
        assert get_error_code(RuntimeError("x")) == "INTERNAL_ERROR"

    def test_friendly_message_hides_output(self) -> None:
        """测试对外消息不包含子进程输出."""
        error = ConversionError("失败", command=["magick"], returncode=1, output="secret/path/stderr")
        message = get_user_friendly_message(error)
        assert message
        assert "secret" not in message

    def test_validation_message_passthrough(self) -> None:
        assert get_user_friendly_message(ValidationError("宽度无效")) == "宽度无效"

    def test_unknown_exception_message(self) -> None:
        assert get_user_friendly_message(KeyError("boom")) != ""

    def test_conversion_details(self) -> None:
        """测试诊断信息包含命令、退出码和输出尾部."""
        error = ConversionError("失败", command=["magick", "a.svg"], returncode=2, output="x" * 5000 + "tail")

        details = get_error_details(error)

        assert details["code"] == "CONVERSION_ERROR"
        assert details["command"] == ["magick", "a.svg"]
        assert details["returncode"] == 2
        assert details["output"].endswith("tail")
        assert len(details["output"]) == 4000

    def test_timeout_details(self) -> None:
        details = get_error_details(ExportTimeoutError(30, "transcode"))
        assert details["timeout"] == 30
        assert details["stage"] == "transcode"

    def test_handle_exception_reraise(self) -> None:
        with pytest.raises(StorageError):
            handle_exception(StorageError("x"), context="保存")

    def test_handle_exception_no_reraise(self) -> None:
        handle_exception(StorageError("x"), reraise=False, log_traceback=False)
