"""
Per-speaker audio subscriptions on top of py-cord's voice receive.

py-cord decodes incoming Opus on its own thread and hands every 20ms PCM
frame to a Sink. The sink here forwards each frame onto the event loop,
where a VoiceReceiver turns the mixed stream of (user, frame) pairs into
speaking-start notifications and per-speaker async byte streams that end
after a stretch of silence.
"""

import asyncio
import logging
from collections.abc import Callable
from datetime import datetime

import discord

from chronicle.constants import RecorderConstants
from chronicle.utils import utc_now

logger = logging.getLogger(__name__)

SpeakingListener = Callable[[int], None]

# -------------------------------------------------------------- #
# Speaker Subscription
# -------------------------------------------------------------- #


class SpeakerSubscription:
    """
    Async iterator over one speaker's PCM frames; ends after trailing silence.

    `first_frame_at` is the wall-clock arrival of the burst's first frame,
    which may predate the subscription itself.
    """

    def __init__(
        self,
        user_id: int,
        loop: asyncio.AbstractEventLoop,
        silence_duration_ms: int = RecorderConstants.SILENCE_DURATION_MS,
    ):
        self.user_id = user_id
        self._loop = loop
        self.first_frame_at: datetime | None = None
        self._silence_seconds = silence_duration_ms / 1000
        self._queue: asyncio.Queue[bytes | None] = asyncio.Queue()
        self._silence_timer: asyncio.TimerHandle | None = None
        self._ended = False
        self._end_callbacks: list[Callable[["SpeakerSubscription"], None]] = []
        self._arm_silence_timer()

    @property
    def ended(self) -> bool:
        return self._ended

    def add_end_callback(self, callback: Callable[["SpeakerSubscription"], None]) -> None:
        self._end_callbacks.append(callback)

    def push(self, data: bytes) -> None:
        """Queue a frame and restart the silence countdown. Must run on the loop."""
        if self._ended:
            return
        if self.first_frame_at is None:
            self.first_frame_at = utc_now()
        self._queue.put_nowait(data)
        self._arm_silence_timer()

    def end(self) -> None:
        """End the stream; frames already queued are still delivered."""
        if self._ended:
            return
        self._ended = True
        if self._silence_timer is not None:
            self._silence_timer.cancel()
            self._silence_timer = None
        self._queue.put_nowait(None)

        for callback in self._end_callbacks:
            callback(self)

    def _arm_silence_timer(self) -> None:
        if self._silence_timer is not None:
            self._silence_timer.cancel()
        self._silence_timer = self._loop.call_later(self._silence_seconds, self.end)

    def __aiter__(self) -> "SpeakerSubscription":
        return self

    async def __anext__(self) -> bytes:
        chunk = await self._queue.get()
        if chunk is None:
            raise StopAsyncIteration
        return chunk


# -------------------------------------------------------------- #
# Voice Receiver
# -------------------------------------------------------------- #


class VoiceReceiver:
    """Demultiplexes a session's incoming frames by speaker."""

    def __init__(
        self,
        loop: asyncio.AbstractEventLoop,
        silence_duration_ms: int = RecorderConstants.SILENCE_DURATION_MS,
        max_pending_frames: int = RecorderConstants.MAX_PENDING_FRAMES,
    ):
        self._loop = loop
        self.silence_duration_ms = silence_duration_ms
        self.max_pending_frames = max_pending_frames
        self._subscriptions: dict[int, SpeakerSubscription] = {}
        self._pending: dict[int, list[bytes]] = {}
        self._pending_since: dict[int, datetime] = {}
        self._speaking_listeners: list[SpeakingListener] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def on_speaking_start(self, listener: SpeakingListener) -> None:
        """Register a callback run (on the loop) when a speaker starts a burst."""
        self._speaking_listeners.append(listener)

    def feed(self, user_id: int | None, data: bytes) -> None:
        """Route one decoded frame. Must run on the loop."""
        if self._closed or user_id is None:
            return

        subscription = self._subscriptions.get(user_id)
        if subscription is not None and not subscription.ended:
            subscription.push(data)
            return

        pending = self._pending.get(user_id)
        if pending is None:
            # py-cord prepends the whole inter-burst gap as silence; a new burst
            # starts at its own first frame
            if len(data) > RecorderConstants.FRAME_BYTES:
                data = data[-RecorderConstants.FRAME_BYTES :]
            self._pending[user_id] = [data]
            self._pending_since[user_id] = utc_now()
            for listener in self._speaking_listeners:
                listener(user_id)
            return

        if len(pending) < self.max_pending_frames:
            pending.append(data)

    def subscribe(self, user_id: int) -> SpeakerSubscription:
        """
        Open a stream for a speaker, seeded with any frames held since the burst began.

        Returns:
            A live subscription, or an already ended one if the receiver is closed
        """
        subscription = SpeakerSubscription(user_id, self._loop, self.silence_duration_ms)
        if self._closed:
            subscription.end()
            return subscription

        subscription.first_frame_at = self._pending_since.pop(user_id, None)
        for chunk in self._pending.pop(user_id, []):
            subscription.push(chunk)

        subscription.add_end_callback(self._on_subscription_end)
        self._subscriptions[user_id] = subscription
        return subscription

    def has_pending(self, user_id: int) -> bool:
        """Check if frames are held for a speaker with no live subscription."""
        return user_id in self._pending

    def release(self, user_id: int) -> None:
        """Drop frames held for a speaker nobody is going to subscribe to."""
        self._pending.pop(user_id, None)
        self._pending_since.pop(user_id, None)

    def close(self) -> None:
        """End every subscription and discard pending audio."""
        if self._closed:
            return
        self._closed = True
        self._pending.clear()
        self._pending_since.clear()
        for subscription in list(self._subscriptions.values()):
            subscription.end()
        self._subscriptions.clear()

    def _on_subscription_end(self, subscription: SpeakerSubscription) -> None:
        if self._subscriptions.get(subscription.user_id) is subscription:
            del self._subscriptions[subscription.user_id]


# -------------------------------------------------------------- #
# py-cord Sink
# -------------------------------------------------------------- #


class SessionAudioSink(discord.sinks.Sink):
    """Hands decoded frames from py-cord's decoder thread to a VoiceReceiver."""

    def __init__(self, receiver: VoiceReceiver, loop: asyncio.AbstractEventLoop):
        super().__init__()
        self.receiver = receiver
        self.loop = loop

    def write(self, data, user):
        # runs on the decoder thread
        if self.loop.is_closed():
            return
        try:
            self.loop.call_soon_threadsafe(self.receiver.feed, user, bytes(data))
        except RuntimeError:
            logger.debug("Dropped a voice frame after the event loop stopped")

    def cleanup(self):
        self.finished = True
        if not self.loop.is_closed():
            self.loop.call_soon_threadsafe(self.receiver.close)
