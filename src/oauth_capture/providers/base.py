"""Base Provider 추상 클래스

캡처 플로우로 로그인하는 Provider가 구현해야 하는 인터페이스 정의.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime


@dataclass
class AuthToken:
    """인증 토큰 데이터 클래스"""

    provider: str
    access_token: str
    expires_at: datetime | None = None
    token_type: str = "Bearer"
    scopes: list[str] = field(default_factory=list)
    account_info: dict | None = None

    def is_expired(self) -> bool:
        """토큰 만료 여부 확인"""
        if self.expires_at is None:
            return False
        return datetime.now() >= self.expires_at


class BaseProvider(ABC):
    """Provider 추상 베이스 클래스"""

    @property
    @abstractmethod
    def name(self) -> str:
        """Provider 이름"""
        pass

    @property
    @abstractmethod
    def display_name(self) -> str:
        """표시용 이름"""
        pass

    @abstractmethod
    async def login(self, **kwargs) -> AuthToken:
        """로그인 수행

        Returns:
            AuthToken: 인증 토큰
        """
        pass

    @abstractmethod
    async def validate(self, token: AuthToken) -> bool:
        """토큰 유효성 검증

        Args:
            token: 검증할 토큰

        Returns:
            bool: 유효 여부
        """
        pass

    async def get_account_info(self, token: AuthToken) -> dict | None:
        """계정 정보 조회 (선택적 구현)"""
        return token.account_info
