"""featureflag ライブラリの例外型定義"""

from __future__ import annotations


class FeatureFlagError(Exception):
    """featureflag ライブラリのエラー基底クラス。"""

    def __init__(
        self,
        code: str,
        message: str,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        return f"{self.code}: {super().__str__()}"


class TelemetryDeliveryError(FeatureFlagError):
    """テレメトリー送信の失敗。シンクだけが送出し、呼び出し元には伝播しない。

    retryable が False のエラーは再送しても成功しないため、リトライせずに
    バッチを破棄する。
    """

    def __init__(
        self,
        code: str,
        message: str,
        cause: Exception | None = None,
        retryable: bool = True,
    ) -> None:
        super().__init__(code, message, cause)
        self.retryable = retryable


class FeatureFlagErrorCodes:
    """エラーコード定数。"""

    FLAG_NOT_FOUND: str = "FLAG_NOT_FOUND"
    INVALID_CONFIG: str = "INVALID_CONFIG"
    INVALID_OVERRIDE: str = "INVALID_OVERRIDE"
    READ_FILE: str = "READ_FILE_ERROR"
    PARSE_YAML: str = "PARSE_YAML_ERROR"
    VALIDATION: str = "VALIDATION_ERROR"
    DELIVERY_FAILED: str = "DELIVERY_FAILED"
    HTTP_ERROR: str = "HTTP_ERROR"
