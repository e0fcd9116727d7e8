"""Exception hierarchy for the menu reader."""

from __future__ import annotations

_RETRY = "もう一度お試しください"
_CHECK_NETWORK = "ネットワーク接続を確認してください"
_OTHER_IMAGE = "別の画像を選択してください"
_CHECK_CONFIG = "APIキーの設定を確認してください"
_LATER = "しばらくしてから再度お試しください"


class MenuReaderError(Exception):
    """Base exception for the menu reader.

    Every error carries a human-readable message and a short list of
    suggested recovery actions that a front end can show as-is.
    """

    default_message = "不明なエラーが発生しました"
    suggestions: tuple[str, ...] = (_RETRY,)

    def __init__(self, message: str | None = None) -> None:
        self.user_message = message or self.default_message
        super().__init__(self.user_message)


class ConfigurationError(MenuReaderError):
    """Required configuration values are missing or invalid."""

    default_message = "設定が不完全です"
    suggestions = (_CHECK_CONFIG,)

    def __init__(
        self, message: str | None = None, missing: list[str] | None = None
    ) -> None:
        self.missing = list(missing or [])
        if message is None and self.missing:
            message = f"必要な設定がありません: {', '.join(self.missing)}"
        super().__init__(message)


# --- API errors -----------------------------------------------------------


class ApiError(MenuReaderError):
    """An external API call failed."""

    default_message = "APIリクエストに失敗しました"
    retryable = False


class TransportError(ApiError):
    """Timeout or connectivity failure below the HTTP layer."""

    default_message = "ネットワークエラーが発生しました"
    suggestions = (_CHECK_NETWORK, _RETRY)
    retryable = True

    def __init__(self, message: str | None = None, *, timeout: bool = False) -> None:
        self.timeout = timeout
        if message is None and timeout:
            message = "リクエストがタイムアウトしました"
        super().__init__(message)


class RateLimitedError(ApiError):
    default_message = "リクエストが多すぎます。しばらく待ってから再試行してください"
    suggestions = (_LATER,)
    retryable = True


class HTTPStatusError(ApiError):
    """Non-retryable HTTP status."""

    def __init__(self, status_code: int, message: str | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class UnauthorizedError(HTTPStatusError):
    default_message = "認証に失敗しました (401)"
    suggestions = (_CHECK_CONFIG,)

    def __init__(self, message: str | None = None) -> None:
        super().__init__(401, message)


class ForbiddenError(HTTPStatusError):
    default_message = "アクセスが拒否されました (403)"
    suggestions = (_CHECK_CONFIG,)

    def __init__(self, message: str | None = None) -> None:
        super().__init__(403, message)


class NotFoundError(HTTPStatusError):
    default_message = "リソースが見つかりません (404)"
    suggestions = (_CHECK_CONFIG,)

    def __init__(self, message: str | None = None) -> None:
        super().__init__(404, message)


class ServerError(HTTPStatusError):
    default_message = "サーバーエラーが発生しました"
    suggestions = (_LATER, _RETRY)


class UnknownStatusError(HTTPStatusError):
    def __init__(self, status_code: int, message: str | None = None) -> None:
        super().__init__(
            status_code, message or f"予期しないステータスコード: {status_code}"
        )


class DecodingError(ApiError):
    """The response body did not match the expected schema."""

    default_message = "応答データの解析に失敗しました"
    suggestions = (_RETRY,)


class ContentBlockedError(ApiError):
    """The model's safety filter refused the request."""

    default_message = "安全フィルタにより解析がブロックされました"
    suggestions = (_OTHER_IMAGE,)


# --- Analysis errors ------------------------------------------------------


class AnalysisError(MenuReaderError):
    default_message = "メニュー解析に失敗しました"


class AlreadyInProgressError(AnalysisError):
    default_message = "解析はすでに実行中です"
    suggestions = ("現在の解析が完了するまでお待ちください",)


class InvalidImageError(AnalysisError):
    default_message = "画像を読み込めませんでした"
    suggestions = (_OTHER_IMAGE,)


class AnalysisCancelledError(AnalysisError):
    default_message = "解析がキャンセルされました"
    suggestions = (_RETRY,)


# --- Storage errors -------------------------------------------------------


class StorageError(MenuReaderError):
    default_message = "データの保存に失敗しました"
    suggestions = (_RETRY,)


class RecordNotFoundError(StorageError):
    def __init__(self, record_id: str) -> None:
        self.record_id = record_id
        super().__init__(f"履歴が見つかりません: {record_id}")
