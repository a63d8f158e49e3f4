"""Tests for sect_chronicle.llm — CompletionGateway retry and rotation."""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest

from sect_chronicle.credentials import CredentialPool
from sect_chronicle.llm import AllAttemptsFailed, CompletionGateway, NoCredentialAvailable
from sect_chronicle.models import CompletionRequest, Credential

OK_BODY = {"choices": [{"message": {"content": "山门在望。"}}]}


def _mock_response(body: dict | None, status: int = 200) -> MagicMock:
    resp = MagicMock()
    resp.status_code = status
    if body is None:
        resp.json.side_effect = ValueError("not json")
    else:
        resp.json.return_value = body
    return resp


def _pool(n: int = 3) -> CredentialPool:
    return CredentialPool([
        Credential(id=f"k{i}", provider_id="openai", secret=f"sk-{i}") for i in range(1, n + 1)
    ])


def _request() -> CompletionRequest:
    return CompletionRequest(system_prompt="sys", user_turn="进山")


def _sent_keys(mock_post: AsyncMock) -> list[str]:
    return [c.kwargs["headers"]["Authorization"] for c in mock_post.call_args_list]


@pytest.fixture
def sleep() -> AsyncMock:
    return AsyncMock()


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------

class TestComplete:
    async def test_happy_path(self, sleep) -> None:
        gateway = CompletionGateway(_pool(), {"provider": "openai"}, sleep=sleep)
        mock_post = AsyncMock(return_value=_mock_response(OK_BODY))
        with patch("httpx.AsyncClient.post", mock_post):
            result = await gateway.complete(_request())
        assert result == "山门在望。"
        assert mock_post.call_args[0][0] == "https://api.openai.com/v1/chat/completions"
        sleep.assert_not_awaited()

    async def test_no_credential(self, sleep) -> None:
        gateway = CompletionGateway(CredentialPool(), {"provider": "openai"}, sleep=sleep)
        with pytest.raises(NoCredentialAvailable):
            await gateway.complete(_request())

    async def test_uses_configured_model(self, sleep) -> None:
        config = {"provider": "openai", "models": {"openai": "gpt-4o"}}
        gateway = CompletionGateway(_pool(), config, sleep=sleep)
        mock_post = AsyncMock(return_value=_mock_response(OK_BODY))
        with patch("httpx.AsyncClient.post", mock_post):
            await gateway.complete(_request())
        assert mock_post.call_args.kwargs["json"]["model"] == "gpt-4o"


# ---------------------------------------------------------------------------
# Credential rotation
# ---------------------------------------------------------------------------

class TestRotation:
    async def test_rejected_key_rotates_to_next(self, sleep) -> None:
        pool = _pool()
        gateway = CompletionGateway(pool, {"provider": "openai"}, sleep=sleep)
        mock_post = AsyncMock(side_effect=[_mock_response({}, 401), _mock_response(OK_BODY)])
        with patch("httpx.AsyncClient.post", mock_post):
            assert await gateway.complete(_request()) == "山门在望。"
        assert _sent_keys(mock_post) == ["Bearer sk-1", "Bearer sk-2"]
        assert pool.liveness("k1") == "failed"
        assert pool.liveness("k2") == "active"
        sleep.assert_not_awaited()

    async def test_three_rejections_give_up(self, sleep) -> None:
        pool = _pool(5)
        gateway = CompletionGateway(pool, {"provider": "openai"}, sleep=sleep)
        mock_post = AsyncMock(side_effect=[
            _mock_response({}, 401), _mock_response({}, 429), _mock_response({}, 403),
        ])
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(AllAttemptsFailed):
                await gateway.complete(_request())
        assert mock_post.await_count == 3
        assert [pool.liveness(f"k{i}") for i in range(1, 6)] == [
            "failed", "failed", "failed", "active", "active",
        ]

    async def test_exhausted_pool_resets_on_next_turn(self, sleep) -> None:
        pool = _pool(3)
        gateway = CompletionGateway(pool, {"provider": "openai"}, sleep=sleep)
        rejected = AsyncMock(return_value=_mock_response({}, 401))
        with patch("httpx.AsyncClient.post", rejected):
            with pytest.raises(AllAttemptsFailed):
                await gateway.complete(_request())

        ok = AsyncMock(return_value=_mock_response(OK_BODY))
        with patch("httpx.AsyncClient.post", ok):
            assert await gateway.complete(_request()) == "山门在望。"
        assert _sent_keys(ok) == ["Bearer sk-1"]


# ---------------------------------------------------------------------------
# Transient backoff
# ---------------------------------------------------------------------------

class TestTransient:
    async def test_server_error_then_success(self, sleep) -> None:
        gateway = CompletionGateway(_pool(), {"provider": "openai"}, sleep=sleep)
        mock_post = AsyncMock(side_effect=[_mock_response({}, 503), _mock_response(OK_BODY)])
        with patch("httpx.AsyncClient.post", mock_post):
            assert await gateway.complete(_request()) == "山门在望。"
        sleep.assert_awaited_once_with(2.0)

    async def test_gives_up_after_three_retries(self, sleep) -> None:
        pool = _pool()
        gateway = CompletionGateway(pool, {"provider": "openai"}, sleep=sleep)
        mock_post = AsyncMock(return_value=_mock_response({}, 500))
        with patch("httpx.AsyncClient.post", mock_post):
            with pytest.raises(AllAttemptsFailed):
                await gateway.complete(_request())
        assert mock_post.await_count == 4
        assert sleep.await_count == 3
        # transient failures never touch liveness
        assert {pool.liveness(f"k{i}") for i in range(1, 4)} == {"active"}

    async def test_network_error_is_transient(self, sleep) -> None:
        gateway = CompletionGateway(_pool(), {"provider": "openai"}, sleep=sleep)
        mock_post = AsyncMock(side_effect=[
            httpx.ConnectError("connection refused"), _mock_response(OK_BODY),
        ])
        with patch("httpx.AsyncClient.post", mock_post):
            assert await gateway.complete(_request()) == "山门在望。"
        assert sleep.await_count == 1

    async def test_unreadable_body_is_transient(self, sleep) -> None:
        gateway = CompletionGateway(_pool(), {"provider": "openai"}, sleep=sleep)
        mock_post = AsyncMock(side_effect=[_mock_response(None), _mock_response(OK_BODY)])
        with patch("httpx.AsyncClient.post", mock_post):
            assert await gateway.complete(_request()) == "山门在望。"

    async def test_attempt_deadline(self, sleep) -> None:
        gateway = CompletionGateway(
            _pool(), {"provider": "openai"}, attempt_timeout=0.01, sleep=sleep,
        )

        async def hang(*args, **kwargs):
            await asyncio.sleep(10)

        with patch("httpx.AsyncClient.post", side_effect=hang):
            with pytest.raises(AllAttemptsFailed):
                await gateway.complete(_request())
        assert sleep.await_count == 3

    async def test_custom_backoff(self, sleep) -> None:
        gateway = CompletionGateway(_pool(), {"provider": "openai"}, backoff=0.5, sleep=sleep)
        mock_post = AsyncMock(side_effect=[_mock_response({}, 502), _mock_response(OK_BODY)])
        with patch("httpx.AsyncClient.post", mock_post):
            await gateway.complete(_request())
        sleep.assert_awaited_once_with(0.5)


# ---------------------------------------------------------------------------
# Cancellation
# ---------------------------------------------------------------------------

async def test_cancellation_propagates_and_keeps_liveness() -> None:
    pool = _pool()
    gateway = CompletionGateway(pool, {"provider": "openai"})
    started = asyncio.Event()

    async def hang(*args, **kwargs):
        started.set()
        await asyncio.sleep(10)

    with patch("httpx.AsyncClient.post", side_effect=hang):
        task = asyncio.create_task(gateway.complete(_request()))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
    assert {pool.liveness(f"k{i}") for i in range(1, 4)} == {"active"}


# ---------------------------------------------------------------------------
# Connection check
# ---------------------------------------------------------------------------

class TestCheckConnection:
    async def test_ok(self) -> None:
        gateway = CompletionGateway(_pool(), {"provider": "openai"})
        with patch("httpx.AsyncClient.post", AsyncMock(return_value=_mock_response(OK_BODY))):
            assert await gateway.check_connection() is True

    async def test_rejected_key_leaves_liveness(self) -> None:
        pool = _pool(1)
        gateway = CompletionGateway(pool, {"provider": "openai"})
        with patch("httpx.AsyncClient.post", AsyncMock(return_value=_mock_response({}, 401))):
            assert await gateway.check_connection() is False
        assert pool.liveness("k1") == "active"

    async def test_no_credentials(self) -> None:
        gateway = CompletionGateway(CredentialPool(), {"provider": "openai"})
        assert await gateway.check_connection("anthropic") is False

    async def test_leaves_rotation_cursor_alone(self) -> None:
        pool = _pool(3)
        gateway = CompletionGateway(pool, {"provider": "openai"})
        mock_post = AsyncMock(return_value=_mock_response(OK_BODY))
        with patch("httpx.AsyncClient.post", mock_post):
            assert await gateway.check_connection() is True
            assert await gateway.check_connection() is True
        assert _sent_keys(mock_post) == ["Bearer sk-1", "Bearer sk-1"]
        assert pool.select("openai").id == "k1"

    async def test_exhausted_pool_stays_failed(self) -> None:
        pool = _pool(2)
        pool.mark_failed("k1")
        pool.mark_failed("k2")
        gateway = CompletionGateway(pool, {"provider": "openai"})
        with patch("httpx.AsyncClient.post", AsyncMock(return_value=_mock_response(OK_BODY))):
            assert await gateway.check_connection() is True
        assert [pool.liveness("k1"), pool.liveness("k2")] == ["failed", "failed"]
