"""
Chat streaming controller.

This module owns one chat surface's streaming exchanges:
- Appending the user turn and the in-progress assistant turn
- Posting the history to the chat endpoint
- Driving the frame decoder over the response body
- Applying deltas in receipt order and notifying the render sink
- Resolving every failure into a terminal session state

Only one session is active at a time. A send issued while a reply is still
streaming, or with blank text, is ignored rather than queued.
"""

from __future__ import annotations

import asyncio
from contextlib import aclosing
from typing import Any

import httpx
from pydantic import BaseModel, ConfigDict

from .config import Configuration
from .conversation import Conversation, Turn, build_request_payload
from .credentials import CredentialStore, StaticCredentialStore, create_credential_store
from .exceptions import (
    ChatStreamError,
    MissingBodyError,
    ResponseStatusError,
    ServerReportedError,
)
from .logging_utils import (
    ContextualLogger,
    StreamErrorHandler,
    log_operation,
    operation_context,
)
from .streaming.decoder import FrameDecoder, aiter_frames
from .streaming.models import (
    FrameKind,
    SessionStatus,
    StreamObserver,
    StreamSession,
    StreamUpdate,
)

HTTP_NO_CONTENT = 204
MAX_ERROR_DETAIL = 500
DEFAULT_TIMEOUT = 30.0
DEFAULT_CONNECTION_ERROR = (
    "Sorry, I encountered an error. Please check your connection and try again."
)


class ChatStreamController:
    """
    Streams assistant replies into a conversation.

    1. Takes the user's message
    2. Sends the visible history to the backend
    3. Appends reply fragments to the assistant turn as they arrive
    4. Reports completion, failure or cancellation through session state
    """

    class ControllerConfig(BaseModel):
        model_config = ConfigDict(arbitrary_types_allowed=True)

        chat_url: str
        error_prefix: str = "Error: "
        connection_error_message: str = DEFAULT_CONNECTION_ERROR
        timeout: httpx.Timeout = httpx.Timeout(DEFAULT_TIMEOUT)

    def __init__(
        self,
        settings: ChatStreamController.ControllerConfig,
        *,
        conversation: Conversation | None = None,
        credentials: CredentialStore | None = None,
        observer: StreamObserver | None = None,
        http_client: httpx.AsyncClient | None = None,
    ):
        self.settings = settings
        self.conversation = conversation if conversation is not None else Conversation()
        self.credentials = credentials or StaticCredentialStore()
        self.observer = observer

        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(timeout=settings.timeout)

        self._session: StreamSession | None = None
        self._task: asyncio.Task[None] | None = None
        self._log = ContextualLogger({"component": "chat_stream"})

    @classmethod
    def from_configuration(
        cls,
        configuration: Configuration,
        *,
        conversation: Conversation | None = None,
        credentials: CredentialStore | None = None,
        observer: StreamObserver | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> ChatStreamController:
        """Create a controller from validated configuration."""
        chat_config = configuration.get_chat_config()
        settings = cls.ControllerConfig(
            chat_url=configuration.chat_url,
            error_prefix=chat_config["error_prefix"],
            connection_error_message=chat_config["connection_error_message"],
            timeout=configuration.build_timeout(),
        )

        if conversation is None:
            if chat_config["include_welcome"]:
                conversation = Conversation.with_welcome(chat_config["welcome_message"])
            else:
                conversation = Conversation()

        return cls(
            settings,
            conversation=conversation,
            credentials=credentials or create_credential_store(configuration),
            observer=observer,
            http_client=http_client,
        )

    # ------------------------------------------------------------------ #
    # State                                                              #
    # ------------------------------------------------------------------ #

    @property
    def session(self) -> StreamSession | None:
        """The session currently being driven, if any."""
        return self._session

    @property
    def state(self) -> SessionStatus:
        if self._session is None:
            return SessionStatus.IDLE
        return self._session.status

    @property
    def is_streaming(self) -> bool:
        return self._session is not None and self._session.is_active

    # ------------------------------------------------------------------ #
    # Operations                                                         #
    # ------------------------------------------------------------------ #

    @log_operation("chat.send")
    async def send(self, text: str) -> StreamSession | None:
        """
        Send a user message and stream the assistant reply.

        Returns the finished session, or None when the call was ignored
        (blank text or a reply already streaming). Transport and server
        failures are reported through the session status, never raised.
        """
        user_text = text.strip()
        if not user_text:
            self._log.debug("Ignoring empty message")
            return None
        if self.is_streaming:
            self._log.debug(
                "Ignoring send while a reply is streaming",
                session_id=self._session.id if self._session else None,
            )
            return None

        self.conversation.append(Turn(role="user", content=user_text))
        payload = build_request_payload(self.conversation.turns)
        assistant_turn = self.conversation.append(Turn(role="assistant"))

        session = StreamSession(turn=assistant_turn)
        session.activate()
        self._session = session
        self._task = asyncio.create_task(self._run_session(session, payload))

        try:
            await self._task
        except asyncio.CancelledError:
            current = asyncio.current_task()
            if current is not None and current.cancelling():
                raise
            # cancelled through cancel(); the session already holds the outcome
        finally:
            if self._session is session:
                self._session = None
                self._task = None

        return session

    def cancel(self) -> bool:
        """
        Abort the active reply, keeping whatever text already arrived.

        Returns False when there is nothing to cancel.
        """
        session = self._session
        if session is None or not session.is_active:
            return False

        session.token.cancel()
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._cancel_session(session)
        return True

    async def aclose(self) -> None:
        """Cancel any active reply and close the HTTP client if owned."""
        self.cancel()
        if self._owns_client:
            await self.http_client.aclose()

    async def __aenter__(self) -> ChatStreamController:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.aclose()

    # ------------------------------------------------------------------ #
    # Streaming                                                          #
    # ------------------------------------------------------------------ #

    async def _run_session(
        self, session: StreamSession, payload: dict[str, Any]
    ) -> None:
        log = self._log.bind(session_id=session.id, turn_id=session.turn.id)
        log_context = {"session_id": session.id}
        decoder = FrameDecoder()

        try:
            async with operation_context("chat.stream", context=log_context):
                await self._stream_reply(session, payload, decoder)

        except ServerReportedError as e:
            StreamErrorHandler.log_failure(e, "chat.stream", log_context)
            self._finish(session, SessionStatus.FAILED, f"{self.settings.error_prefix}{e}")

        except (httpx.HTTPError, OSError, ChatStreamError) as e:
            StreamErrorHandler.log_failure(e, "chat.stream", log_context)
            if session.is_active:
                session.error_detail = str(e)
            self._finish(
                session, SessionStatus.FAILED, self.settings.connection_error_message
            )

        except asyncio.CancelledError:
            self._cancel_session(session)
            raise

        except Exception as e:
            # Raised by the observer; the session must not stay active.
            StreamErrorHandler.log_failure(e, "chat.stream", log_context)
            if session.finish(SessionStatus.FAILED, self.settings.connection_error_message):
                session.error_detail = str(e)
            raise

        finally:
            session.stats = decoder.get_stats()
            log.info(
                "Stream session ended",
                status=session.status.value,
                applied_deltas=session.delta_count,
                duration_ms=round(session.duration * 1000, 2),
                **session.stats,
            )

    async def _stream_reply(
        self,
        session: StreamSession,
        payload: dict[str, Any],
        decoder: FrameDecoder,
    ) -> None:
        async with self.http_client.stream(
            "POST",
            self.settings.chat_url,
            json=payload,
            headers=self._build_headers(),
        ) as response:
            await self._check_response(response)

            async with aclosing(aiter_frames(response.aiter_bytes(), decoder)) as frames:
                async for frame in frames:
                    if session.token.cancelled:
                        break
                    if frame.kind is FrameKind.DELTA:
                        self._apply_delta(session, frame.text)
                    elif frame.kind is FrameKind.ERROR:
                        session.error_detail = frame.text
                        raise ServerReportedError(frame.text)
                    elif frame.kind is FrameKind.DONE:
                        break

        self._finish(session, SessionStatus.COMPLETED)

    def _build_headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        token = self.credentials.get_token()
        if token:
            headers["Authorization"] = f"Bearer {token}"
        return headers

    async def _check_response(self, response: httpx.Response) -> None:
        """Fail fast on responses that cannot carry an event stream."""
        if not response.is_success:
            body = await response.aread()
            detail = body.decode("utf-8", errors="replace")[:MAX_ERROR_DETAIL]
            raise ResponseStatusError(response.status_code, detail=detail or None)

        if response.status_code == HTTP_NO_CONTENT:
            raise MissingBodyError(response.status_code)

        content_type = response.headers.get("content-type", "")
        if content_type and "event-stream" not in content_type:
            self._log.warning(
                "Unexpected content type for chat stream", content_type=content_type
            )

    # ------------------------------------------------------------------ #
    # Session transitions                                                #
    # ------------------------------------------------------------------ #

    def _apply_delta(self, session: StreamSession, text: str) -> None:
        session.apply_delta(text)
        self._notify(
            StreamUpdate(
                kind="delta",
                status=session.status,
                content=session.content,
                delta=text,
            )
        )

    def _finish(
        self,
        session: StreamSession,
        status: SessionStatus,
        content: str | None = None,
    ) -> None:
        if session.finish(status, content):
            self._notify_status(session)

    def _cancel_session(self, session: StreamSession) -> None:
        session.token.cancel()
        if session.finish(SessionStatus.CANCELLED):
            self._log.info(
                "Stream session cancelled",
                session_id=session.id,
                partial_length=len(session.content),
            )
            self._notify_status(session)

    def _notify_status(self, session: StreamSession) -> None:
        self._notify(
            StreamUpdate(kind="status", status=session.status, content=session.content)
        )

    def _notify(self, update: StreamUpdate) -> None:
        if self.observer is not None:
            self.observer(update)
