from typing import Optional


class AttendanceError(Exception):
    """勤怠処理の基底例外"""

    code = "ATTENDANCE_ERROR"


class CredentialsNotConfigured(AttendanceError):
    """freee Webのログイン情報が未設定"""

    code = "WEB_CREDENTIALS_NOT_CONFIGURED"


class LoginFailed(AttendanceError):
    """freee Webへのログインが拒否された（画面のURL・文言から判定）"""

    code = "WEB_LOGIN_FAILED"

    def __init__(self, message: str, debug_screenshot: Optional[str] = None):
        super().__init__(message)
        self.debug_screenshot = debug_screenshot


class AuthExpired(AttendanceError):
    """アクセストークン失効。再認可が必要でリトライしない"""

    code = "AUTH_EXPIRED"


class PermissionDenied(AttendanceError):
    code = "PERMISSION_DENIED"


class RateLimited(AttendanceError):
    code = "RATE_LIMITED"


class ApiError(AttendanceError):
    code = "API_ERROR"

    def __init__(self, status: int, message: str):
        super().__init__(f"API_ERROR_{status}: {message}")
        self.status = status
        self.detail = message


class RouteUnsupported(AttendanceError):
    """承認経路が部門・役職指定のためAPIから申請できない"""

    code = "ROUTE_UNSUPPORTED"


class FormValidationError(AttendanceError):
    code = "FORM_VALIDATION_ERROR"


class SessionBusy(AttendanceError):
    """ブラウザセッションの待ち行列が上限に達した"""

    code = "SESSION_BUSY"


class UnknownState(AttendanceError):
    code = "UNKNOWN_STATE"


class TokenError(AttendanceError):
    code = "TOKEN_ERROR"


class NoRefreshToken(TokenError):
    code = "NO_REFRESH_TOKEN"


class AppCredentialsMissing(TokenError):
    code = "APP_CREDENTIALS_MISSING"


class RefreshFailed(TokenError):
    code = "REFRESH_FAILED"

    def __init__(self, status: int, message: str):
        super().__init__(message)
        self.status = status
