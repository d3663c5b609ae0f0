"""OAuth Redirect Target

Implicit grant은 access_token을 URL fragment(#...)로 전달하므로
브라우저가 서버로 보내지 않음. GET / 에서 브리지 페이지를 내려주고,
페이지의 스크립트가 fragment를 POST 본문으로 다시 보내도록 함.
"""

import logging
from http.server import BaseHTTPRequestHandler
from urllib.parse import parse_qs, urlparse

logger = logging.getLogger(__name__)

# state 파라미터에 담긴 로컬 URL(secret 포함)로 fragment 전체를 POST
BRIDGE_PAGE = """<html>
    <head><title>Authenticating...</title></head>
    <body>
        <form id="form" method="POST">
            <input id="params" type="hidden" name="params"></input>
        </form>
        <script>
            let params = new URLSearchParams(location.hash.substr(1));
            let form = document.getElementById("form");
            let targetUrl = params.get("state");
            form.setAttribute("action", targetUrl);
            document.getElementById("params").setAttribute("value", params);
            form.submit();
        </script>
    </body>
</html>
"""

MESSAGE_CANCELLED = "Authentication cancelled"
MESSAGE_CLOSED = "Authentication session closed"


class CaptureRequestHandler(BaseHTTPRequestHandler):
    """브리지 페이지와 콜백을 처리하는 핸들러.

    세션 상태는 ``self.server.session`` 으로 전달받음.
    모든 라우트는 처리 전에 취소/종료 여부를 먼저 확인.
    """

    server_version = "OAuthCapture/1.0"

    def log_message(self, format, *args):
        """요청 로그를 logging으로 전달 (쿼리 문자열 제외)."""
        logger.debug("%s %s", self.command, urlparse(self.path).path)

    def _send_text(self, status: int, message: str):
        body = message.encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "text/plain; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Cache-Control", "no-store")
        self.end_headers()
        self.wfile.write(body)

    def _send_empty(self, status: int):
        self.send_response(status)
        self.send_header("Content-Length", "0")
        self.end_headers()

    def _reject_if_inactive(self) -> bool:
        """취소되었거나 이미 종료된 세션이면 503 응답.

        Returns:
            bool: 요청을 거절했으면 True
        """
        session = self.server.session
        if session.is_cancelled():
            self._send_text(503, MESSAGE_CANCELLED)
            return True
        if session.is_terminal():
            self._send_text(503, MESSAGE_CLOSED)
            return True
        return False

    def do_GET(self):
        """GET 요청 처리 (provider redirect 대상)."""
        if self._reject_if_inactive():
            return

        path = urlparse(self.path).path

        # favicon.ico 및 기타 브라우저 자동 요청 무시
        if path in ["/favicon.ico", "/robots.txt"]:
            self._send_empty(204)
            return

        if path != "/":
            self._send_empty(404)
            return

        body = BRIDGE_PAGE.encode("utf-8")
        self.send_response(200)
        self.send_header("Content-Type", "text/html; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Cache-Control", "no-store")
        self.end_headers()
        self.wfile.write(body)

    def _read_body(self) -> str:
        try:
            length = int(self.headers.get("Content-Length") or 0)
        except ValueError:
            length = 0
        return self.rfile.read(length).decode("utf-8", errors="replace")

    def do_POST(self):
        """POST 요청 처리 (브리지 페이지가 보낸 fragment)."""
        # 응답 전에 본문을 비워야 연결이 reset되지 않음
        body = self._read_body()

        if self._reject_if_inactive():
            return

        parsed = urlparse(self.path)
        if parsed.path != "/":
            self._send_empty(404)
            return

        secret = parse_qs(parsed.query).get("secret", [None])[0]
        params = parse_qs(body, keep_blank_values=True).get("params", [""])[0]

        session = self.server.session
        outcome = session.receive_callback(secret, params)
        # 결정에 성공한 결과만 브라우저에 알림
        if session.settle(outcome):
            self._send_text(outcome.status, outcome.message)
        elif session.is_cancelled():
            self._send_text(503, MESSAGE_CANCELLED)
        else:
            self._send_text(503, MESSAGE_CLOSED)
