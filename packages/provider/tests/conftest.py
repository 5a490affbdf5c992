"""Provider 包测试 fixtures"""

from collections.abc import Callable

import httpx
import pytest

Handler = Callable[[httpx.Request], httpx.Response]


@pytest.fixture
def recorded_requests() -> list[httpx.Request]:
    """MockTransport 收到的请求（按顺序）"""
    return []


@pytest.fixture
def mock_transport(recorded_requests):
    """构造记录请求的 httpx.MockTransport"""

    def _make(handler: Handler) -> httpx.MockTransport:
        def _record(request: httpx.Request) -> httpx.Response:
            recorded_requests.append(request)
            return handler(request)

        return httpx.MockTransport(_record)

    return _make
