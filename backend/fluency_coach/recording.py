"""Pairs a microphone capture with its transcription channel under one lifecycle."""

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

from .audio import AudioFrame, MicrophoneCapture
from .errors import PermissionDeniedError, TransportError
from .settings import Settings
from .transcription import GeminiLiveHandle, TranscriptionChannel

logger = logging.getLogger(__name__)

MicrophoneFactory = Callable[[Callable[[AudioFrame], None]], MicrophoneCapture]
CaptureFactory = Callable[[Callable[[str], None], Callable[[str], None]], "CaptureResource"]


class CaptureResource:
	"""
	One microphone plus one live transcription session.

	``acquire()`` opens the channel, then the microphone; if the microphone is
	refused the channel is closed again before the error propagates. Frames
	from the audio thread are queued and sent in capture order by a single
	sender task. ``release()`` frees the device at once, drains the queue for
	at most ``flush_seconds`` and then closes the channel. Both are safe to
	call more than once.
	"""

	def __init__(
		self,
		channel: TranscriptionChannel,
		microphone_factory: MicrophoneFactory,
		flush_seconds: float = 0.5,
	) -> None:
		self.channel = channel
		self.microphone = microphone_factory(self._enqueue_threadsafe)
		self._flush_seconds = flush_seconds
		self._queue: asyncio.Queue[Optional[AudioFrame]] = asyncio.Queue()
		self._loop: Optional[asyncio.AbstractEventLoop] = None
		self._sender: Optional[asyncio.Task] = None
		self._acquired = False
		self._released = False
		self.frames_sent = 0

	@property
	def is_active(self) -> bool:
		return self._acquired and not self._released

	def _enqueue_threadsafe(self, frame: AudioFrame) -> None:
		loop = self._loop
		if loop is None or loop.is_closed() or self._released:
			return
		loop.call_soon_threadsafe(self._queue.put_nowait, frame)

	async def acquire(self) -> None:
		if self._acquired or self._released:
			return
		self._loop = asyncio.get_running_loop()
		await self.channel.open()
		self._sender = asyncio.create_task(self._send_loop())
		try:
			self.microphone.start()
		except PermissionDeniedError:
			await self.release()
			raise
		self._acquired = True

	async def _send_loop(self) -> None:
		while True:
			frame = await self._queue.get()
			if frame is None:
				return
			try:
				await self.channel.send(frame)
			except TransportError:
				# the channel has already reported the failure
				return
			self.frames_sent += 1

	async def release(self) -> None:
		if self._released:
			return
		self._released = True
		self.microphone.stop()
		sender, self._sender = self._sender, None
		if sender is not None:
			# queued behind frames the audio thread already scheduled
			asyncio.get_running_loop().call_soon(self._queue.put_nowait, None)
			try:
				await asyncio.wait_for(sender, timeout=self._flush_seconds)
			except asyncio.TimeoutError:
				logger.warning("Dropped %d unsent audio frames after %.2fs flush", self._queue.qsize(), self._flush_seconds)
		await self.channel.close()
		logger.info("Capture released after %d frames", self.frames_sent)


def live_capture_factory(config: Settings) -> CaptureFactory:
	"""Build capture resources wired to the host microphone and Gemini Live."""

	def factory(on_update: Callable[[str], None], on_failure: Callable[[str], None]) -> CaptureResource:
		channel = TranscriptionChannel(
			connector=lambda: GeminiLiveHandle.connect(config),
			on_update=on_update,
			on_failure=on_failure,
		)
		return CaptureResource(
			channel,
			lambda on_frame: MicrophoneCapture(
				on_frame,
				sample_rate=config.audio_sample_rate,
				frame_size=config.audio_frame_size,
				device_name=config.audio_device,
			),
			flush_seconds=config.capture_flush_seconds,
		)

	return factory
