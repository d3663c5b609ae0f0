"""DigitalOcean Provider

DigitalOcean implicit grant 로그인.
등록된 client_id/포트 쌍으로 캡처 세션을 실행하고, 받은 토큰의 계정 상태를 확인.
"""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

import httpx

from oauth_capture.config import CaptureConfig
from oauth_capture.exceptions import InactiveAccountError
from oauth_capture.flows.implicit_grant import (
    CaptureSession,
    open_in_browser,
    start_capture_session,
)
from oauth_capture.providers.base import AuthToken, BaseProvider

logger = logging.getLogger(__name__)


class DigitalOceanProvider(BaseProvider):
    """DigitalOcean Browser OAuth Provider.

    Implicit grant (response_type=token) 사용. 토큰 교환 단계 없음.

    Example:
        provider = DigitalOceanProvider()
        token = await provider.login()
    """

    ACCOUNT_ENDPOINT = "https://api.digitalocean.com/v2/account"
    # 비활성 계정은 여기서 결제/인증을 마쳐야 함
    CLOUD_URL = "https://cloud.digitalocean.com"
    ACTIVE_STATUS = "active"

    def __init__(
        self,
        config: CaptureConfig | None = None,
        opener: Callable[[str], Any] | None = None,
        verify_account: bool = True,
    ):
        """초기화.

        Args:
            config: 캡처 설정 (기본: DigitalOcean 등록 정보)
            opener: URL을 여는 함수 (기본: 브라우저)
            verify_account: 토큰 수신 후 계정 활성 상태 확인 여부
        """
        self.config = config or CaptureConfig(provider=self.name)
        self.opener = opener or open_in_browser
        self.verify_account = verify_account
        self.session: CaptureSession | None = None

    @property
    def name(self) -> str:
        return "digitalocean"

    @property
    def display_name(self) -> str:
        return "DigitalOcean"

    def start_session(self) -> CaptureSession:
        """캡처 세션 시작 (취소 가능한 핸들 반환)."""
        self.session = start_capture_session(self.config, self.opener)
        return self.session

    def cancel(self) -> None:
        """진행 중인 로그인 취소."""
        if self.session is not None:
            self.session.cancel()

    async def login(self, **kwargs) -> AuthToken:
        """Browser OAuth로 로그인.

        Returns:
            AuthToken: 인증 토큰

        Raises:
            OAuthCaptureError: 캡처 실패, 취소 또는 시간 초과
            InactiveAccountError: 계정이 활성 상태가 아닌 경우
        """
        session = self.start_session()
        access_token = await session.result

        token = self._build_token(access_token, session.callback_params or {})

        if self.verify_account:
            account = await self.get_account_info(token)
            status = account.get("status") if account else None
            if status != self.ACTIVE_STATUS:
                logger.warning("DigitalOcean account is not active: %s", status)
                self.opener(self.CLOUD_URL)
                raise InactiveAccountError(
                    f"DigitalOcean account is not active (status: {status})",
                    status=status,
                    provider=self.name,
                )
            token.account_info = account

        return token

    def _build_token(self, access_token: str, fields: dict[str, str]) -> AuthToken:
        expires_at = None
        expires_in = fields.get("expires_in")
        if expires_in and expires_in.isdigit():
            expires_at = datetime.now() + timedelta(seconds=int(expires_in))

        scope = fields.get("scope")
        return AuthToken(
            provider=self.name,
            access_token=access_token,
            expires_at=expires_at,
            token_type=fields.get("token_type", "Bearer"),
            scopes=scope.split() if scope else self.config.scope.split(),
        )

    async def validate(self, token: AuthToken) -> bool:
        """토큰 유효성 검증.

        Args:
            token: 검증할 토큰

        Returns:
            bool: 유효 여부
        """
        if token.is_expired():
            return False

        async with httpx.AsyncClient() as client:
            response = await client.get(
                self.ACCOUNT_ENDPOINT,
                headers={"Authorization": f"Bearer {token.access_token}"},
            )
            return response.status_code == 200

    async def get_account_info(self, token: AuthToken) -> dict | None:
        """계정 정보 조회.

        Args:
            token: 인증 토큰

        Returns:
            dict: 계정 정보 또는 None
        """
        async with httpx.AsyncClient() as client:
            response = await client.get(
                self.ACCOUNT_ENDPOINT,
                headers={"Authorization": f"Bearer {token.access_token}"},
            )
            if response.status_code != 200:
                logger.warning(
                    "Account lookup failed with status %d", response.status_code
                )
                return None
            return response.json().get("account")
