#!/usr/bin/env python3
"""
Tests for the chat streaming controller.

The backend is replaced with httpx.MockTransport handlers whose bodies are
async byte iterators, so chunk boundaries are exactly what each test yields.
"""

import asyncio
import json

import httpx
import pytest

from vertex_chat import (
    ChatStreamController,
    Conversation,
    SessionStatus,
    StaticCredentialStore,
    StreamUpdate,
)
from vertex_chat.config import Configuration

CHAT_URL = "http://testserver/ai-chat/message"
GENERIC_ERROR = "Sorry, I encountered an error. Please check your connection and try again."


def sse_response(*chunks: bytes, status_code: int = 200) -> httpx.Response:
    async def body():
        for chunk in chunks:
            yield chunk

    return httpx.Response(
        status_code,
        headers={"content-type": "text/event-stream"},
        content=body(),
    )


def make_controller(handler, *, token=None, welcome=True):
    updates: list[StreamUpdate] = []
    settings = ChatStreamController.ControllerConfig(chat_url=CHAT_URL)
    conversation = Conversation.with_welcome("Hello! How can I help?") if welcome else Conversation()
    controller = ChatStreamController(
        settings,
        conversation=conversation,
        credentials=StaticCredentialStore(token),
        observer=updates.append,
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    return controller, updates


class TestStreamingReply:
    """Deltas are applied in order and the sentinel completes the session."""

    @pytest.mark.asyncio
    async def test_deltas_applied_in_order(self):
        """Test that two deltas and [DONE] produce 'Hello'."""
        controller, updates = make_controller(
            lambda request: sse_response(
                b'data: {"chunk":"Hel"}\n\n',
                b'data: {"chunk":"lo"}\n\n',
                b"data: [DONE]\n\n",
            )
        )

        session = await controller.send("hi")

        assert session.status is SessionStatus.COMPLETED
        assert session.content == "Hello"
        assert controller.conversation.turns[-1].content == "Hello"

        deltas = [u for u in updates if u.kind == "delta"]
        assert [u.delta for u in deltas] == ["Hel", "lo"]
        assert [u.content for u in deltas] == ["Hel", "Hello"]
        assert updates[-1] == StreamUpdate(
            kind="status", status=SessionStatus.COMPLETED, content="Hello"
        )
        assert controller.state is SessionStatus.IDLE

    @pytest.mark.asyncio
    async def test_frames_split_across_chunks(self):
        """Test a reply whose frames straddle read boundaries."""
        body = 'data: {"chunk":"Bonjour "}\n\ndata: {"chunk":"à tous"}\n\ndata: [DONE]\n'.encode()
        controller, _ = make_controller(
            lambda request: sse_response(*(body[i:i + 3] for i in range(0, len(body), 3)))
        )

        session = await controller.send("hi")

        assert session.content == "Bonjour à tous"
        assert session.delta_count == 2

    @pytest.mark.asyncio
    async def test_malformed_frame_is_skipped(self):
        """Test that a malformed frame does not end the session."""
        controller, updates = make_controller(
            lambda request: sse_response(
                b'data: {"chunk":"a"}\n',
                b"data: {oops\n",
                b'data: {"chunk":"b"}\n',
                b"data: [DONE]\n",
            )
        )

        session = await controller.send("hi")

        assert session.status is SessionStatus.COMPLETED
        assert session.content == "ab"
        assert session.stats["malformed"] == 1

    @pytest.mark.asyncio
    async def test_body_drained_without_sentinel(self):
        """Test that a body ending without [DONE] still completes."""
        controller, _ = make_controller(
            lambda request: sse_response(b'data: {"chunk":"partial"}\n', b'data: {"chunk":"lost"}')
        )

        session = await controller.send("hi")

        assert session.status is SessionStatus.COMPLETED
        assert session.content == "partial"

    @pytest.mark.asyncio
    async def test_bytes_after_sentinel_not_applied(self):
        """Test that frames following [DONE] never reach the turn."""
        controller, updates = make_controller(
            lambda request: sse_response(
                b'data: {"chunk":"done"}\ndata: [DONE]\ndata: {"chunk":"extra"}\n',
                b'data: {"chunk":"more"}\n',
            )
        )

        session = await controller.send("hi")

        assert session.content == "done"
        assert len([u for u in updates if u.kind == "delta"]) == 1


class TestFailures:
    """Every failure resolves into a FAILED session with a visible message."""

    @pytest.mark.asyncio
    async def test_error_frame_short_circuits(self):
        """Test that an error frame replaces content and stops the stream."""
        controller, updates = make_controller(
            lambda request: sse_response(
                b'data: {"chunk":"Hel"}\n\n',
                b'data: {"error":"boom"}\n\n',
                b'data: {"chunk":"lo"}\n\n',
            )
        )

        session = await controller.send("hi")

        assert session.status is SessionStatus.FAILED
        assert session.content == "Error: boom"
        assert session.error_detail == "boom"
        assert [u.delta for u in updates if u.kind == "delta"] == ["Hel"]
        assert updates[-1].status is SessionStatus.FAILED

    @pytest.mark.asyncio
    async def test_non_success_status(self):
        """Test that a 500 fails the session with zero frames processed."""
        calls = []

        def handler(request):
            calls.append(request)
            return httpx.Response(500, text='data: {"chunk":"never"}\n')

        controller, updates = make_controller(handler)

        session = await controller.send("hi")

        assert session.status is SessionStatus.FAILED
        assert session.content == GENERIC_ERROR
        assert session.stats["frames"] == 0
        assert [u for u in updates if u.kind == "delta"] == []
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_no_content_is_fatal(self):
        """Test that a 204 reply without a body fails the session."""
        controller, _ = make_controller(lambda request: httpx.Response(204))

        session = await controller.send("hi")

        assert session.status is SessionStatus.FAILED
        assert session.content == GENERIC_ERROR

    @pytest.mark.asyncio
    async def test_empty_success_body_completes(self):
        """Test that a 200 with Content-Length: 0 completes with no text."""
        controller, updates = make_controller(
            lambda request: httpx.Response(
                200, headers={"content-length": "0"}, content=b""
            )
        )

        session = await controller.send("hi")

        assert session.status is SessionStatus.COMPLETED
        assert session.content == ""
        assert updates[-1].status is SessionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_read_failure_mid_stream(self):
        """Test that a dropped connection fails without raising."""
        async def body():
            yield b'data: {"chunk":"Hel"}\n'
            raise httpx.ReadError("connection reset by peer")

        controller, _ = make_controller(
            lambda request: httpx.Response(200, content=body())
        )

        session = await controller.send("hi")

        assert session.status is SessionStatus.FAILED
        assert session.content == GENERIC_ERROR
        assert "connection reset" not in session.content
        assert session.error_detail == "connection reset by peer"

    @pytest.mark.asyncio
    async def test_connect_failure(self):
        """Test that a failure before headers arrive is reported."""
        def handler(request):
            raise httpx.ConnectError("connection refused")

        controller, _ = make_controller(handler)

        session = await controller.send("hi")

        assert session.status is SessionStatus.FAILED
        assert session.content == GENERIC_ERROR
        assert controller.state is SessionStatus.IDLE

    @pytest.mark.asyncio
    async def test_send_allowed_after_failure(self):
        """Test that the surface returns to idle after a failure."""
        responses = iter([
            httpx.Response(503),
            sse_response(b'data: {"chunk":"ok"}\n', b"data: [DONE]\n"),
        ])
        controller, _ = make_controller(lambda request: next(responses))

        first = await controller.send("hi")
        second = await controller.send("again")

        assert first.status is SessionStatus.FAILED
        assert second.status is SessionStatus.COMPLETED
        assert second.content == "ok"

    @pytest.mark.asyncio
    async def test_observer_error_propagates(self):
        """Test that a broken render sink does not leave the session active."""
        settings = ChatStreamController.ControllerConfig(chat_url=CHAT_URL)

        def observer(update):
            raise RuntimeError("render failed")

        controller = ChatStreamController(
            settings,
            observer=observer,
            http_client=httpx.AsyncClient(
                transport=httpx.MockTransport(
                    lambda request: sse_response(b'data: {"chunk":"a"}\n')
                )
            ),
        )

        with pytest.raises(RuntimeError, match="render failed"):
            await controller.send("hi")

        assert not controller.is_streaming
        assert controller.state is SessionStatus.IDLE


class BlockingBody:
    """Body that yields one delta and then waits until released."""

    def __init__(self):
        self.release = asyncio.Event()

    async def __call__(self):
        yield b'data: {"chunk":"Hel"}\n\n'
        await self.release.wait()
        yield b'data: {"chunk":"lo"}\n\n'
        yield b"data: [DONE]\n\n"


class TestCancellation:
    """Cancelling keeps partial content and appends nothing."""

    @pytest.mark.asyncio
    async def test_cancel_preserves_partial_content(self):
        """Test cancelling after the first delta."""
        body = BlockingBody()
        first_delta = asyncio.Event()
        controller, updates = make_controller(
            lambda request: httpx.Response(200, content=body())
        )
        controller.observer = lambda update: (updates.append(update), first_delta.set())

        task = asyncio.create_task(controller.send("hi"))
        await asyncio.wait_for(first_delta.wait(), timeout=2)

        assert controller.cancel() is True
        session = await asyncio.wait_for(task, timeout=2)

        assert session.status is SessionStatus.CANCELLED
        assert session.content == "Hel"
        assert controller.conversation.turns[-1].content == "Hel"
        assert updates[-1] == StreamUpdate(
            kind="status", status=SessionStatus.CANCELLED, content="Hel"
        )
        assert controller.state is SessionStatus.IDLE

    @pytest.mark.asyncio
    async def test_cancel_from_observer_stops_same_chunk(self):
        """Test that frames already buffered are not applied after cancel."""
        controller, updates = make_controller(
            lambda request: sse_response(
                b'data: {"chunk":"Hel"}\ndata: {"chunk":"lo"}\ndata: [DONE]\n'
            )
        )

        def observer(update):
            updates.append(update)
            if update.kind == "delta":
                controller.cancel()

        controller.observer = observer

        session = await controller.send("hi")

        assert session.status is SessionStatus.CANCELLED
        assert session.content == "Hel"
        assert [u.delta for u in updates if u.kind == "delta"] == ["Hel"]

    @pytest.mark.asyncio
    async def test_cancel_stops_task_when_observer_raises(self):
        """Test that a render sink failing on the cancelled status still stops the read."""
        body = BlockingBody()
        first_delta = asyncio.Event()
        controller, _ = make_controller(
            lambda request: httpx.Response(200, content=body())
        )

        def observer(update):
            if update.kind == "delta":
                first_delta.set()
            elif update.status is SessionStatus.CANCELLED:
                raise RuntimeError("render failed")

        controller.observer = observer

        task = asyncio.create_task(controller.send("hi"))
        await asyncio.wait_for(first_delta.wait(), timeout=2)

        with pytest.raises(RuntimeError, match="render failed"):
            controller.cancel()
        session = await asyncio.wait_for(task, timeout=2)

        assert session.status is SessionStatus.CANCELLED
        assert session.content == "Hel"
        assert controller.state is SessionStatus.IDLE

    @pytest.mark.asyncio
    async def test_cancel_when_idle_is_noop(self):
        """Test cancelling with nothing in flight."""
        controller, updates = make_controller(lambda request: httpx.Response(500))

        assert controller.cancel() is False
        assert updates == []

    @pytest.mark.asyncio
    async def test_cancel_after_completion_is_noop(self):
        """Test that a terminal session cannot be cancelled."""
        controller, _ = make_controller(
            lambda request: sse_response(b'data: {"chunk":"x"}\n', b"data: [DONE]\n")
        )

        session = await controller.send("hi")

        assert controller.cancel() is False
        assert session.status is SessionStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_external_task_cancellation(self):
        """Test cancelling the task awaiting send."""
        body = BlockingBody()
        first_delta = asyncio.Event()
        controller, _ = make_controller(
            lambda request: httpx.Response(200, content=body())
        )
        controller.observer = lambda update: first_delta.set()

        task = asyncio.create_task(controller.send("hi"))
        await asyncio.wait_for(first_delta.wait(), timeout=2)
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task

        assert controller.conversation.turns[-1].content == "Hel"
        assert not controller.is_streaming


class TestConcurrencyGuard:
    """Only one reply streams at a time."""

    @pytest.mark.asyncio
    async def test_second_send_ignored_while_active(self):
        """Test that a concurrent send changes nothing."""
        body = BlockingBody()
        first_delta = asyncio.Event()
        requests = []

        def handler(request):
            requests.append(request)
            return httpx.Response(200, content=body())

        controller, _ = make_controller(handler)
        controller.observer = lambda update: first_delta.set()

        task = asyncio.create_task(controller.send("first"))
        await asyncio.wait_for(first_delta.wait(), timeout=2)
        active = controller.session
        turns_before = controller.conversation.turns

        assert await controller.send("second") is None
        assert controller.session is active
        assert active.status is SessionStatus.ACTIVE
        assert active.content == "Hel"
        assert len(controller.conversation) == len(turns_before)

        body.release.set()
        session = await asyncio.wait_for(task, timeout=2)

        assert session is active
        assert session.content == "Hello"
        assert len(requests) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("text", ["", "   ", "\n\t"])
    async def test_blank_message_ignored(self, text):
        """Test that blank input is a silent no-op."""
        calls = []
        controller, _ = make_controller(lambda request: calls.append(request))

        assert await controller.send(text) is None
        assert len(controller.conversation) == 1
        assert calls == []


class TestRequest:
    """Outbound request shape."""

    @pytest.mark.asyncio
    async def test_payload_and_headers_with_token(self):
        """Test the body, content type and bearer header."""
        captured = []

        def handler(request):
            captured.append(request)
            return sse_response(b'data: {"chunk":"Sure."}\n', b"data: [DONE]\n")

        controller, _ = make_controller(handler, token="secret-token")

        await controller.send("  What is my P&L?  ")
        await controller.send("Thanks")

        first, second = captured
        assert first.method == "POST"
        assert str(first.url) == CHAT_URL
        assert first.headers["content-type"] == "application/json"
        assert first.headers["authorization"] == "Bearer secret-token"
        assert json.loads(first.content) == {
            "messages": [{"role": "user", "parts": [{"text": "What is my P&L?"}]}]
        }
        assert json.loads(second.content)["messages"] == [
            {"role": "user", "parts": [{"text": "What is my P&L?"}]},
            {"role": "model", "parts": [{"text": "Sure."}]},
            {"role": "user", "parts": [{"text": "Thanks"}]},
        ]

    @pytest.mark.asyncio
    async def test_no_authorization_without_token(self):
        """Test that the bearer header is omitted without a credential."""
        captured = []

        def handler(request):
            captured.append(request)
            return sse_response(b"data: [DONE]\n")

        controller, _ = make_controller(handler)

        await controller.send("hi")

        assert "authorization" not in captured[0].headers

    @pytest.mark.asyncio
    async def test_turns_appended_before_reply(self):
        """Test that user and assistant turns are visible immediately."""
        seen = []
        controller = None

        def handler(request):
            seen.extend((t.role, t.content) for t in controller.conversation.turns)
            return sse_response(b"data: [DONE]\n")

        controller, _ = make_controller(handler)

        await controller.send("hi")

        assert seen == [
            ("assistant", "Hello! How can I help?"),
            ("user", "hi"),
            ("assistant", ""),
        ]


def configuration(**chat_overrides) -> Configuration:
    chat = {
        "include_welcome": True,
        "welcome_message": "Welcome to Vertex.",
        "error_prefix": "Error: ",
        "connection_error_message": "Check your connection.",
        **chat_overrides,
    }
    return Configuration.from_dict({
        "api": {"base_url": "http://testserver", "chat_path": "/ai-chat/message"},
        "http_client": {
            "connect_timeout": 3,
            "read_timeout": 45,
            "write_timeout": 4,
            "pool_timeout": 2,
        },
        "chat": chat,
        "credentials": {"source": "env", "env_var": "TEST_VERTEX_CHAT_TOKEN"},
        "logging": {"level": "INFO"},
    })


class TestFromConfiguration:
    """Controllers built from configuration honour every chat setting."""

    @pytest.fixture(autouse=True)
    def clean_env(self, monkeypatch):
        monkeypatch.delenv("VERTEX_CHAT_BASE_URL", raising=False)
        monkeypatch.delenv("TEST_VERTEX_CHAT_TOKEN", raising=False)

    @pytest.mark.asyncio
    async def test_welcome_turn_and_env_token(self, monkeypatch):
        """Test the welcome turn, chat URL and bearer token from the environment."""
        monkeypatch.setenv("TEST_VERTEX_CHAT_TOKEN", "env-token")
        captured = []

        def handler(request):
            captured.append(request)
            return sse_response(b'data: {"chunk":"ok"}\n', b"data: [DONE]\n")

        controller = ChatStreamController.from_configuration(
            configuration(),
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )

        first = controller.conversation.turns[0]
        assert first.is_welcome
        assert first.content == "Welcome to Vertex."

        session = await controller.send("hi")

        assert session.content == "ok"
        assert str(captured[0].url) == CHAT_URL
        assert captured[0].headers["authorization"] == "Bearer env-token"
        assert json.loads(captured[0].content)["messages"] == [
            {"role": "user", "parts": [{"text": "hi"}]}
        ]

    def test_welcome_turn_disabled(self):
        """Test that include_welcome: false starts an empty conversation."""
        controller = ChatStreamController.from_configuration(
            configuration(include_welcome=False),
            http_client=httpx.AsyncClient(
                transport=httpx.MockTransport(lambda request: httpx.Response(500))
            ),
        )

        assert len(controller.conversation) == 0

    @pytest.mark.asyncio
    async def test_configured_error_messages(self):
        """Test that the configured error prefix and generic message are used."""
        responses = iter([
            sse_response(b'data: {"error":"quota exceeded"}\n'),
            httpx.Response(502),
        ])
        controller = ChatStreamController.from_configuration(
            configuration(error_prefix="Fehler: "),
            http_client=httpx.AsyncClient(
                transport=httpx.MockTransport(lambda request: next(responses))
            ),
        )

        reported = await controller.send("hi")
        transport = await controller.send("again")

        assert reported.content == "Fehler: quota exceeded"
        assert transport.content == "Check your connection."

    @pytest.mark.asyncio
    async def test_owned_client_uses_configured_timeout(self):
        """Test that the client the controller creates carries the configured timeouts."""
        async with ChatStreamController.from_configuration(configuration()) as controller:
            timeout = controller.http_client.timeout

            assert controller.settings.timeout.read == 45.0
            assert timeout.connect == 3.0
            assert timeout.read == 45.0
            assert timeout.write == 4.0
            assert timeout.pool == 2.0


@pytest.mark.asyncio
async def test_context_manager_closes_owned_client():
    """Test that aclose closes a client the controller created."""
    settings = ChatStreamController.ControllerConfig(chat_url=CHAT_URL)
    async with ChatStreamController(settings) as controller:
        client = controller.http_client
    assert client.is_closed


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
