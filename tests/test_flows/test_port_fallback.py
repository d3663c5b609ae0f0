"""Port-fallback listener 테스트.

실제 loopback 소켓으로 포트 선택 순서와 해제를 검증.
"""

import errno
import socket
from unittest.mock import MagicMock, patch

import pytest

from oauth_capture.exceptions import (
    BindExhaustedError,
    ConfigurationError,
    ListenerError,
)
from oauth_capture.flows.callback_server import CaptureRequestHandler
from oauth_capture.flows.port_fallback import (
    LOOPBACK_HOST,
    ListenerState,
    LoopbackHTTPServer,
    PortFallbackListener,
    ipv6_loopback_in_use,
    listen_on_first_port,
)


def _port_is_free(port: int) -> bool:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        try:
            s.bind(("127.0.0.1", port))
        except OSError:
            return False
    return True


class TestListenOnFirstPort:
    """listen_on_first_port 함수 테스트."""

    def test_binds_first_candidate_when_free(self, free_ports):
        """첫 번째 후보가 비어 있으면 인덱스 0."""
        ports = free_ports(2)
        server = LoopbackHTTPServer(CaptureRequestHandler)
        try:
            index = listen_on_first_port(server, ports)

            assert index == 0
            assert server.server_address == (LOOPBACK_HOST, ports[0])
        finally:
            server.server_close()

    def test_skips_port_in_use(self, free_ports, occupy_port):
        """사용 중인 포트는 건너뛰고 다음 후보 사용."""
        busy = occupy_port()
        free = free_ports(1)[0]
        server = LoopbackHTTPServer(CaptureRequestHandler)
        try:
            index = listen_on_first_port(server, [busy, free])

            assert index == 1
            assert server.server_address[1] == free
        finally:
            server.server_close()

    def test_never_skips_free_earlier_candidate(self, free_ports, occupy_port):
        """앞선 후보가 비어 있으면 뒤 후보를 쓰지 않음."""
        busy = occupy_port()
        first_free, second_free = free_ports(2)
        server = LoopbackHTTPServer(CaptureRequestHandler)
        try:
            index = listen_on_first_port(server, [busy, first_free, second_free])

            assert index == 1
            assert server.server_address[1] == first_free
        finally:
            server.server_close()

    def test_all_ports_busy(self, occupy_port):
        """모든 후보가 사용 중이면 BindExhaustedError, 소켓 해제."""
        ports = [occupy_port(), occupy_port()]
        server = LoopbackHTTPServer(CaptureRequestHandler)

        with pytest.raises(BindExhaustedError) as exc_info:
            listen_on_first_port(server, ports)

        assert exc_info.value.ports == ports
        assert server.socket.fileno() == -1

    def test_empty_candidates_is_configuration_error(self):
        """빈 후보 목록은 BindExhausted가 아닌 설정 오류."""
        server = LoopbackHTTPServer(CaptureRequestHandler)

        with pytest.raises(ConfigurationError) as exc_info:
            listen_on_first_port(server, [])

        assert not isinstance(exc_info.value, BindExhaustedError)
        assert server.socket.fileno() == -1

    def test_other_bind_error_is_not_retried(self):
        """address-in-use 이외의 에러는 재시도 없이 실패."""
        server = MagicMock()
        server.server_address = (LOOPBACK_HOST, 0)
        server.server_bind.side_effect = OSError(errno.EACCES, "Permission denied")

        with patch(
            "oauth_capture.flows.port_fallback.ipv6_loopback_in_use", return_value=False
        ), pytest.raises(ListenerError) as exc_info:
            listen_on_first_port(server, [1023, 55189])

        assert not isinstance(exc_info.value, BindExhaustedError)
        assert exc_info.value.port == 1023
        assert server.server_bind.call_count == 1
        server.server_close.assert_called_once()

    def test_stop_requested_returns_none(self, free_ports):
        """중단 요청 시 에러 없이 None."""
        server = LoopbackHTTPServer(CaptureRequestHandler)
        try:
            assert listen_on_first_port(server, free_ports(1), should_stop=lambda: True) is None
        finally:
            server.server_close()

    def test_server_is_exclusive_and_loopback(self):
        """SO_REUSEADDR 비활성 + loopback 전용."""
        server = LoopbackHTTPServer(CaptureRequestHandler)
        try:
            assert server.allow_reuse_address is False
            assert server.server_address[0] == "127.0.0.1"
        finally:
            server.server_close()


class TestPortFallbackListener:
    """PortFallbackListener 생명주기 테스트."""

    def test_listen_transitions_to_bound(self, free_ports):
        ports = free_ports(1)
        listener = PortFallbackListener(CaptureRequestHandler)
        try:
            assert listener.state is ListenerState.UNBOUND
            assert listener.listen(ports) == 0
            assert listener.state is ListenerState.BOUND
            assert listener.port == ports[0]
        finally:
            listener.close()

    def test_close_before_listen(self, free_ports):
        """바인드 전에 닫으면 listen은 None, 에러 없음."""
        listener = PortFallbackListener(CaptureRequestHandler)
        listener.close()

        assert listener.listen(free_ports(1)) is None
        assert listener.state is ListenerState.CLOSED

    def test_close_releases_port(self, free_ports):
        """서빙 중 close 후 포트가 해제됨."""
        ports = free_ports(1)
        listener = PortFallbackListener(CaptureRequestHandler, poll_interval=0.05)
        listener.listen(ports)
        listener.serve_in_background()
        assert not _port_is_free(ports[0])

        listener.close()

        assert listener.wait_closed(timeout=2)
        assert listener.state is ListenerState.CLOSED
        assert _port_is_free(ports[0])

    def test_close_is_idempotent(self, free_ports):
        listener = PortFallbackListener(CaptureRequestHandler)
        listener.listen(free_ports(1))

        listener.close()
        listener.close()

        assert listener.state is ListenerState.CLOSED

    def test_failed_listen_closes(self, occupy_port):
        """바인드 실패 시 CLOSED 상태."""
        listener = PortFallbackListener(CaptureRequestHandler)

        with pytest.raises(BindExhaustedError):
            listener.listen([occupy_port()])

        assert listener.state is ListenerState.CLOSED

    def test_wait_closed_before_close(self, free_ports):
        listener = PortFallbackListener(CaptureRequestHandler)
        listener.listen(free_ports(1))
        try:
            assert listener.wait_closed(timeout=0) is False
        finally:
            listener.close()

    def test_serve_after_close_does_nothing(self, free_ports):
        listener = PortFallbackListener(CaptureRequestHandler)
        listener.listen(free_ports(1))
        listener.close()

        listener.serve_in_background()

        assert listener.wait_closed(timeout=1)

    def test_on_closed_runs_after_release(self, free_ports):
        """on_closed는 소켓이 해제된 뒤 한 번만 호출."""
        ports = free_ports(1)
        released = []
        listener = PortFallbackListener(
            CaptureRequestHandler,
            poll_interval=0.05,
            on_closed=lambda: released.append(_port_is_free(ports[0])),
        )
        listener.listen(ports)
        listener.serve_in_background()

        listener.close()
        listener.close()

        assert listener.wait_closed(timeout=2)
        assert released == [True]

    def test_on_closed_when_closed_before_listen(self, free_ports):
        on_closed = MagicMock()
        listener = PortFallbackListener(CaptureRequestHandler, on_closed=on_closed)

        listener.close()
        listener.listen(free_ports(1))

        on_closed.assert_called_once_with()
        assert listener.wait_closed(timeout=0)

    def test_on_closed_when_listen_fails(self, occupy_port):
        on_closed = MagicMock()
        listener = PortFallbackListener(CaptureRequestHandler, on_closed=on_closed)

        with pytest.raises(BindExhaustedError):
            listener.listen([occupy_port()])

        on_closed.assert_called_once_with()


class TestIPv6Loopback:
    """localhost가 ::1로 해석될 때의 포트 선택 테스트."""

    @pytest.fixture
    def ipv6_owner(self):
        """다른 프로세스처럼 [::1]:port 를 점유."""
        if not socket.has_ipv6:
            pytest.skip("IPv6 not supported")
        try:
            s = socket.socket(socket.AF_INET6, socket.SOCK_STREAM)
        except OSError:
            pytest.skip("IPv6 not supported")
        try:
            s.bind(("::1", 0))
        except OSError:
            s.close()
            pytest.skip("no IPv6 loopback")
        s.listen(1)
        yield s.getsockname()[1]
        s.close()

    def test_port_owned_on_ipv6_loopback_is_skipped(self, ipv6_owner, free_ports):
        """[::1]:port 가 점유되어 있으면 IPv4가 비어 있어도 다음 후보."""
        free = free_ports(1)[0]
        server = LoopbackHTTPServer(CaptureRequestHandler)
        try:
            if not _port_is_free(ipv6_owner):
                pytest.skip("IPv4 side of the port is taken too")

            assert ipv6_loopback_in_use(ipv6_owner)
            assert listen_on_first_port(server, [ipv6_owner, free]) == 1
            assert server.server_address[1] == free
        finally:
            server.server_close()

    def test_free_port_is_not_reported(self, free_ports):
        assert not ipv6_loopback_in_use(free_ports(1)[0])
