"""OAuth Flows

로컬 리다이렉트 서버 기반 implicit grant 캡처 플로우.
포트 폴백 리스너 위에서 세션이 브리지 페이지와 콜백을 처리.
"""

from oauth_capture.flows.callback_server import BRIDGE_PAGE, CaptureRequestHandler
from oauth_capture.flows.implicit_grant import (
    CallbackOutcome,
    CaptureSession,
    SettlementCell,
    build_authorization_url,
    build_callback_target,
    capture_access_token,
    evaluate_callback,
    generate_session_secret,
    open_in_browser,
    start_capture_session,
)
from oauth_capture.flows.port_fallback import (
    LOOPBACK_HOST,
    ListenerState,
    LoopbackHTTPServer,
    PortFallbackListener,
    listen_on_first_port,
)

__all__ = [
    # Capture session
    "CaptureSession",
    "CallbackOutcome",
    "SettlementCell",
    "start_capture_session",
    "capture_access_token",
    "build_authorization_url",
    "build_callback_target",
    "evaluate_callback",
    "generate_session_secret",
    "open_in_browser",
    # Redirect target
    "BRIDGE_PAGE",
    "CaptureRequestHandler",
    # Listener
    "LOOPBACK_HOST",
    "ListenerState",
    "LoopbackHTTPServer",
    "PortFallbackListener",
    "listen_on_first_port",
]
