"""Custom capture-flow exceptions.

OAuth 캡처 플로우의 예외 클래스 정의.
세션 결과는 항상 이 계층의 예외 하나로 종료됨.
"""


class OAuthCaptureError(Exception):
    """기본 캡처 예외.

    모든 캡처 관련 예외의 베이스 클래스.

    Attributes:
        provider: 인증 제공자 이름 (예: 'digitalocean')
    """

    def __init__(self, message: str, provider: str | None = None):
        self.provider = provider
        super().__init__(message)


class ConfigurationError(OAuthCaptureError):
    """설정 오류.

    후보 포트가 비어 있거나 같은 포트가 두 번 등록된 경우.
    """
    pass


class ListenerError(OAuthCaptureError):
    """로컬 리스너 바인드 실패.

    "address in use" 이외의 바인드 에러. 재시도하지 않음.

    Attributes:
        port: 실패한 포트 번호
    """

    def __init__(
        self,
        message: str,
        port: int | None = None,
        provider: str | None = None
    ):
        self.port = port
        super().__init__(message, provider)


class BindExhaustedError(ListenerError):
    """모든 후보 포트가 사용 중.

    Attributes:
        ports: 시도한 포트 목록
    """

    def __init__(
        self,
        message: str,
        ports: list[int] | None = None,
        provider: str | None = None
    ):
        self.ports = ports or []
        super().__init__(message, port=None, provider=provider)


class SecretMismatchError(OAuthCaptureError):
    """콜백 secret 불일치.

    오래된 탭 또는 위조 요청. 나머지 파라미터는 해석하지 않음.
    """
    pass


class ProviderError(OAuthCaptureError):
    """인증 제공자가 반환한 OAuth 에러.

    Attributes:
        error_code: OAuth 에러 코드 (예: 'access_denied')
        description: 제공자의 error_description
    """

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        description: str | None = None,
        provider: str | None = None
    ):
        self.error_code = error_code
        self.description = description
        super().__init__(message, provider)


class MissingTokenError(OAuthCaptureError):
    """콜백에 access_token도 error도 없음."""
    pass


class AuthCancelledError(OAuthCaptureError):
    """사용자 또는 호출자에 의한 취소."""
    pass


class CaptureTimeoutError(AuthCancelledError):
    """브라우저 인증 대기 시간 초과.

    Attributes:
        timeout: 대기한 시간 (초)
    """

    def __init__(
        self,
        message: str,
        timeout: float | None = None,
        provider: str | None = None
    ):
        self.timeout = timeout
        super().__init__(message, provider)


class InactiveAccountError(OAuthCaptureError):
    """토큰은 받았지만 계정이 활성 상태가 아님.

    Attributes:
        status: 계정 API가 보고한 상태 (예: 'warning', 'locked')
    """

    def __init__(
        self,
        message: str,
        status: str | None = None,
        provider: str | None = None
    ):
        self.status = status
        super().__init__(message, provider)
