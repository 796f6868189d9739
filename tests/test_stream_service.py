import json
from unittest.mock import AsyncMock

import pytest
from websockets.exceptions import InvalidURI

from supportbot.services.stream_service import StreamClient, StreamExhaustedError


class FakeConnection:
    def __init__(self, frames):
        self.frames = list(frames)

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    def __aiter__(self):
        return self

    async def __anext__(self):
        if not self.frames:
            raise StopAsyncIteration
        return self.frames.pop(0)


class FakeConnector:
    """Each call yields the next scripted connection, or raises the scripted error."""

    def __init__(self, script):
        self.script = list(script)
        self.calls = []

    def __call__(self, url, additional_headers=None):
        self.calls.append((url, additional_headers))
        outcome = self.script.pop(0) if self.script else ConnectionRefusedError("down")
        if isinstance(outcome, Exception):
            raise outcome
        return FakeConnection(outcome)


def make_client(connector, handler=None, sleep=None, **kwargs) -> StreamClient:
    options = {"base_delay_ms": 1000, "max_delay_ms": 4000, "max_attempts": 3}
    options.update(kwargs)
    return StreamClient(
        "wss://stream.test/ws",
        "platform-key",
        handler or AsyncMock(),
        bot_user_id="bot_user",
        connect_factory=connector,
        sleep_func=sleep or AsyncMock(),
        **options,
    )


class TestStreamClient:
    @pytest.mark.asyncio
    async def test_dispatches_json_frames_and_skips_garbage(self):
        handler = AsyncMock()
        frames = [json.dumps({"experience": {"id": "exp_1", "bot": {"id": "biz_1"}}}), "not json"]
        client = make_client(FakeConnector([frames]), handler=handler, max_attempts=0)

        with pytest.raises(StreamExhaustedError):
            await client.run()

        handler.assert_awaited_once_with({"experience": {"id": "exp_1", "bot": {"id": "biz_1"}}})
        assert client.frames_received == 2

    @pytest.mark.asyncio
    async def test_sends_auth_headers(self):
        connector = FakeConnector([[]])
        with pytest.raises(StreamExhaustedError):
            await make_client(connector, max_attempts=0).run()

        url, headers = connector.calls[0]
        assert url == "wss://stream.test/ws"
        assert headers == {"Authorization": "Bearer platform-key", "x-on-behalf-of": "bot_user"}

    @pytest.mark.asyncio
    async def test_backoff_is_capped_and_bounded(self):
        sleep = AsyncMock()
        connector = FakeConnector([ConnectionRefusedError("down")] * 4)

        with pytest.raises(StreamExhaustedError):
            await make_client(connector, sleep=sleep).run()

        assert [call.args[0] for call in sleep.await_args_list] == [1.0, 2.0, 4.0]
        assert len(connector.calls) == 4

    @pytest.mark.asyncio
    async def test_successful_connection_resets_attempts(self):
        sleep = AsyncMock()
        connector = FakeConnector([InvalidURI("wss://x", "bad"), [], ConnectionRefusedError("down")])

        with pytest.raises(StreamExhaustedError):
            await make_client(connector, sleep=sleep, max_attempts=2).run()

        assert [call.args[0] for call in sleep.await_args_list] == [1.0, 1.0, 2.0]

    @pytest.mark.asyncio
    async def test_handler_errors_do_not_break_stream(self):
        handler = AsyncMock(side_effect=[RuntimeError("bad frame"), None])
        frames = [json.dumps({"a": 1}), json.dumps({"b": 2})]
        client = make_client(FakeConnector([frames]), handler=handler, max_attempts=0)

        with pytest.raises(StreamExhaustedError):
            await client.run()

        assert handler.await_count == 2
