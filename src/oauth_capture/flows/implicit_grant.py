"""Implicit Grant Capture Session

브라우저 기반 OAuth 2.0 implicit grant 캡처.
등록된 (client_id, port) 중 사용 가능한 포트에 로컬 서버를 띄우고,
브라우저가 fragment로 전달한 access_token을 한 번만 받아 결과로 전달.
"""

import asyncio
import hmac
import logging
import secrets
import threading
import webbrowser
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import parse_qs, quote, urlencode

from rich.console import Console
from rich.panel import Panel

from oauth_capture.config import CaptureConfig, ClientRegistration
from oauth_capture.exceptions import (
    AuthCancelledError,
    CaptureTimeoutError,
    MissingTokenError,
    OAuthCaptureError,
    ProviderError,
    SecretMismatchError,
)
from oauth_capture.flows.callback_server import CaptureRequestHandler
from oauth_capture.flows.port_fallback import ListenerState, PortFallbackListener

logger = logging.getLogger(__name__)
console = Console()

MESSAGE_SUCCESS = "Authentication successful"
MESSAGE_FAILED = "Authentication failed"


def generate_session_secret(length: int = 32) -> str:
    """세션 secret 생성.

    Args:
        length: hex 문자 수

    Returns:
        str: 랜덤 hex 문자열
    """
    return secrets.token_hex((length + 1) // 2)[:length]


def build_callback_target(host: str, port: int, secret: str) -> str:
    """브리지 페이지가 POST할 로컬 URL (state 파라미터 값)."""
    return f"http://{host}:{port}/?secret={quote(secret, safe='')}"


def build_authorization_url(
    config: CaptureConfig,
    registration: ClientRegistration,
    port: int,
    secret: str,
) -> str:
    """인증 URL 생성.

    Args:
        config: 캡처 설정
        registration: 바인드에 성공한 등록 정보
        port: 실제로 바인드된 포트
        secret: 세션 secret

    Returns:
        str: 브라우저에서 열어야 할 인증 URL
    """
    params = {
        "client_id": registration.client_id,
        "response_type": "token",
        "scope": config.scope,
        "redirect_uri": f"http://{config.redirect_host}:{registration.port}/",
        "state": build_callback_target(config.redirect_host, port, secret),
    }
    query = urlencode(params, safe='', quote_via=quote)
    return f"{config.authorization_endpoint}?{query}"


@dataclass(frozen=True)
class CallbackOutcome:
    """콜백 검증 결과.

    Attributes:
        status: 브라우저에 돌려줄 HTTP 상태 코드
        message: 브라우저에 돌려줄 짧은 텍스트
        access_token: 성공 시 토큰
        error: 실패 시 세션 결과로 전달할 예외
        fields: fragment에서 읽은 파라미터 (첫 번째 값만)
    """

    status: int
    message: str
    access_token: str | None = None
    error: OAuthCaptureError | None = None
    fields: dict[str, str] = field(default_factory=dict)


def evaluate_callback(
    expected_secret: str,
    secret: str | None,
    params: str,
    provider: str | None = None,
) -> CallbackOutcome:
    """콜백 검증.

    secret -> provider error -> access_token 순서로 확인.
    secret이 틀리면 나머지 파라미터는 해석하지 않음.

    Args:
        expected_secret: 세션 secret
        secret: 요청 쿼리의 secret
        params: 브리지 페이지가 보낸 fragment (URL-encoded)
        provider: 예외에 붙일 provider 이름

    Returns:
        CallbackOutcome: 응답과 세션 결과
    """
    if secret is None or not hmac.compare_digest(
        secret.encode("utf-8"), expected_secret.encode("utf-8")
    ):
        return CallbackOutcome(
            status=400,
            message=MESSAGE_FAILED,
            error=SecretMismatchError(
                "OAuth callback secret does not match this session",
                provider=provider,
            ),
        )

    fields = {
        key: values[0]
        for key, values in parse_qs(params, keep_blank_values=True).items()
    }

    if fields.get("error"):
        description = fields.get("error_description")
        return CallbackOutcome(
            status=400,
            message=MESSAGE_FAILED,
            error=ProviderError(
                f"OAuth error from {provider or 'provider'}: {description}",
                error_code=fields["error"],
                description=description,
                provider=provider,
            ),
            fields=fields,
        )

    access_token = fields.get("access_token")
    if access_token:
        return CallbackOutcome(
            status=200,
            message=MESSAGE_SUCCESS,
            access_token=access_token,
            fields=fields,
        )

    return CallbackOutcome(
        status=400,
        message=MESSAGE_FAILED,
        error=MissingTokenError("No access_token on OAuth response", provider=provider),
        fields=fields,
    )


def open_in_browser(url: str) -> None:
    """기본 브라우저로 인증 URL 열기."""
    console.print()
    console.print(
        Panel.fit(
            "[bold cyan]브라우저가 자동으로 열립니다.[/bold cyan]\n\n"
            "열리지 않으면 아래 URL을 직접 열어주세요:\n"
            f"[link={url}]{url}[/link]",
            title="[AUTH] Login Required",
            border_style="cyan",
        )
    )
    console.print()
    webbrowser.open(url)


class SettlementCell:
    """한 번만 결정되는 결과 슬롯.

    먼저 settle한 쪽이 이기고 이후 시도는 무시됨.
    어느 스레드에서 호출해도 되며 결과는 이벤트 루프의 future로 전달.

    ``gated=True`` 이면 승자는 바로 정해지지만 future 전달은
    ``open_gate()`` 호출 이후로 미뤄짐 (리스너 소켓 해제 대기용).
    """

    def __init__(self, loop: asyncio.AbstractEventLoop, gated: bool = False):
        self._loop = loop
        self._lock = threading.Lock()
        self._settled = False
        self._gate_open = not gated
        self._delivered = False
        self._outcome: tuple[bool, Any] | None = None
        self.future: asyncio.Future = loop.create_future()

    @property
    def settled(self) -> bool:
        return self._settled or self.future.done()

    def set_result(self, value: Any) -> bool:
        """결과 설정. 이미 결정되었으면 False."""
        return self._settle(False, value)

    def set_exception(self, error: BaseException) -> bool:
        """예외 설정. 이미 결정되었으면 False."""
        return self._settle(True, error)

    def open_gate(self) -> None:
        """보류 중인 결과를 future로 전달하도록 허용."""
        with self._lock:
            self._gate_open = True
        self._flush()

    def _settle(self, is_error: bool, value: Any) -> bool:
        with self._lock:
            if self._settled:
                return False
            self._settled = True
            self._outcome = (is_error, value)
        self._flush()
        return True

    def _flush(self) -> None:
        with self._lock:
            if not (self._settled and self._gate_open) or self._delivered:
                return
            self._delivered = True
            is_error, value = self._outcome
        if self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self._deliver, is_error, value)

    def _deliver(self, is_error: bool, value: Any) -> None:
        # 호출자가 future를 직접 취소했을 수 있음
        if self.future.done():
            return
        if is_error:
            self.future.set_exception(value)
        else:
            self.future.set_result(value)


class CaptureSession:
    """Implicit grant 캡처 세션.

    1. 세션 secret 생성
    2. 등록된 포트 순서대로 로컬 서버 바인드
    3. 인증 URL을 브라우저로 열기
    4. 브리지 페이지 -> POST 콜백 수신
    5. 검증 후 결과 future를 한 번만 결정

    Example:
        session = start_capture_session()
        try:
            token = await session.result
        except AuthCancelledError:
            ...
    """

    def __init__(
        self,
        config: CaptureConfig | None = None,
        opener: Callable[[str], Any] | None = None,
    ):
        """초기화.

        Args:
            config: 캡처 설정 (None이면 기본값)
            opener: 인증 URL을 여는 함수 (기본: 브라우저)
        """
        self.config = config or CaptureConfig()
        self._opener = opener or open_in_browser
        self._loop = asyncio.get_running_loop()
        self._secret = generate_session_secret(self.config.secret_length)
        # 결과는 리스너 소켓이 해제된 뒤에만 호출자에게 전달
        self._cell = SettlementCell(self._loop, gated=True)
        self._cell.future.add_done_callback(self._on_result_done)
        self._cancel_lock = threading.Lock()
        self._cancelled = False
        self._task: asyncio.Task | None = None
        self._timeout_handle: asyncio.TimerHandle | None = None

        self.registration: ClientRegistration | None = None
        self.authorization_url: str | None = None
        self.callback_params: dict[str, str] | None = None
        self.listener = PortFallbackListener(
            CaptureRequestHandler,
            session=self,
            poll_interval=self.config.poll_interval,
            on_closed=self._cell.open_gate,
        )

    @property
    def result(self) -> asyncio.Future:
        """access_token 또는 예외로 결정되는 future."""
        return self._cell.future

    def is_cancelled(self) -> bool:
        return self._cancelled

    def is_terminal(self) -> bool:
        """결과가 결정되었거나 리스너가 닫혔는지 여부."""
        return self._cell.settled or self.listener.state is ListenerState.CLOSED

    def start(self) -> "CaptureSession":
        """바인드와 브라우저 열기를 백그라운드 태스크로 시작."""
        if self._task is None:
            self._task = self._loop.create_task(self._run())
        return self

    async def _run(self) -> None:
        try:
            index = self.listener.listen(self.config.candidate_ports)
        except OAuthCaptureError as e:
            if self.is_cancelled():
                return
            e.provider = e.provider or self.config.provider
            logger.error("OAuth listener failed: %s", e)
            self._fail(e)
            return

        if index is None:
            logger.debug("Listener closed before a port was bound")
            return
        if self.is_cancelled():
            self.listener.close()
            return

        self.registration = self.config.registrations[index]
        self.listener.serve_in_background()
        logger.info(
            "OAuth target listening on %s:%d (client %s...)",
            self.listener.server.server_address[0],
            self.listener.port,
            self.registration.client_id[:8],
        )

        if self.config.timeout is not None:
            self._timeout_handle = self._loop.call_later(
                self.config.timeout, self._expire
            )

        self.authorization_url = build_authorization_url(
            self.config, self.registration, self.listener.port, self._secret
        )
        try:
            self._opener(self.authorization_url)
        except Exception:
            # URL은 콘솔에도 출력되므로 세션은 계속 대기
            logger.exception("Failed to open authorization URL")

    def receive_callback(self, secret: str | None, params: str) -> CallbackOutcome:
        """콜백 검증 후 리스너 종료.

        Args:
            secret: 요청 쿼리의 secret
            params: 브리지 페이지가 보낸 fragment

        Returns:
            CallbackOutcome: 브라우저 응답과 세션 결과
        """
        outcome = evaluate_callback(
            self._secret, secret, params, provider=self.config.provider
        )
        self.listener.close()
        return outcome

    def settle(self, outcome: CallbackOutcome) -> bool:
        """콜백 결과로 세션 결정.

        취소나 시간 초과가 먼저 결정했으면 False. 핸들러는 반환값으로
        브라우저 응답을 정하므로 브라우저와 호출자가 같은 결과를 봄.
        """
        if outcome.error is not None:
            won = self._fail(outcome.error)
            if won:
                logger.warning("OAuth callback rejected: %s", outcome.error)
            return won
        if not self._cell.set_result(outcome.access_token):
            return False
        # future 전달은 소켓 해제 후 루프에서 일어나므로 호출자는 항상 이 값을 봄
        self.callback_params = outcome.fields
        logger.info("OAuth access token received")
        return True

    def cancel(self) -> None:
        """세션 취소.

        바인드 전, 브라우저 대기 중 모두 안전. 이미 결정된 세션에는 영향 없음.
        처리 중인 콜백과는 결과 슬롯을 먼저 차지한 쪽이 이김.
        """
        if not self._fail(
            AuthCancelledError("Authentication cancelled", provider=self.config.provider)
        ):
            logger.debug("Cancel ignored, session already settled")
            return
        self._mark_cancelled()
        logger.info("Session cancelled")

    async def wait_closed(self, timeout: float | None = None) -> bool:
        """리스너 소켓이 해제될 때까지 대기."""
        return await asyncio.to_thread(self.listener.wait_closed, timeout)

    def _mark_cancelled(self) -> bool:
        with self._cancel_lock:
            if self._cancelled:
                return False
            self._cancelled = True
            return True

    def _fail(self, error: OAuthCaptureError) -> bool:
        """결과 슬롯을 예외로 차지하고 리스너 종료.

        호출자에게는 소켓이 해제된 뒤에 전달됨.
        """
        won = self._cell.set_exception(error)
        self.listener.close()
        return won

    def _expire(self) -> None:
        timed_out = self._fail(
            CaptureTimeoutError(
                "인증 시간이 초과되었습니다.",
                timeout=self.config.timeout,
                provider=self.config.provider,
            )
        )
        if timed_out:
            self._mark_cancelled()
            logger.warning(
                "Timed out waiting for OAuth callback after %ss", self.config.timeout
            )

    def _on_result_done(self, future: asyncio.Future) -> None:
        if self._timeout_handle is not None:
            self._timeout_handle.cancel()
            self._timeout_handle = None
        # asyncio.wait_for 등으로 호출자가 future를 취소한 경우
        if future.cancelled() and self._mark_cancelled():
            logger.info("Session cancelled by caller")
            self._fail(
                AuthCancelledError(
                    "Authentication cancelled", provider=self.config.provider
                )
            )


def start_capture_session(
    config: CaptureConfig | None = None,
    opener: Callable[[str], Any] | None = None,
) -> CaptureSession:
    """캡처 세션 시작.

    바인드가 끝나기 전에 바로 반환됨. 결과는 ``session.result`` 로 확인.
    실행 중인 이벤트 루프 안에서 호출해야 함.
    """
    return CaptureSession(config, opener).start()


async def capture_access_token(
    config: CaptureConfig | None = None,
    opener: Callable[[str], Any] | None = None,
) -> str:
    """캡처 세션을 실행하고 access_token 반환.

    Raises:
        OAuthCaptureError: 세션이 실패로 끝난 경우
    """
    session = start_capture_session(config, opener)
    return await session.result
