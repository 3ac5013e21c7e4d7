"""
Realtime Transcription Channel

Keeps one live Gemini session open over a websocket, streams PCM frames into
it and accumulates the input transcription the service sends back. Text
arrives in small pieces for the current turn; a ``turnComplete`` signal
commits that turn to the finalized transcript.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Protocol

import websockets

from .audio import AudioFrame
from .errors import TransportError
from .settings import Settings

logger = logging.getLogger(__name__)


@dataclass
class TranscriptionState:
	is_active: bool = False
	committed: str = ""
	pending: str = ""

	@property
	def text(self) -> str:
		return self.committed + self.pending

	def append_partial(self, text: str) -> None:
		self.pending += text

	def commit_turn(self) -> None:
		self.committed += self.pending + " "
		self.pending = ""

	def clear(self) -> None:
		self.committed = ""
		self.pending = ""


class LiveSessionHandle(Protocol):  # Operations the channel needs from a live transport
	async def send_frame(self, frame: AudioFrame) -> None: ...

	def messages(self) -> AsyncIterator[Dict[str, Any]]: ...

	async def close(self) -> None: ...


class GeminiLiveHandle:
	"""Gemini Live ``BidiGenerateContent`` session carried over ``websockets``."""

	def __init__(self, ws: Any) -> None:
		self._ws = ws

	@classmethod
	async def connect(cls, config: Settings) -> "GeminiLiveHandle":
		if not config.gemini_api_key:
			raise TransportError("GEMINI_API_KEY is not configured")
		url = f"{config.gemini_live_url}?key={config.gemini_api_key}"
		ws = await websockets.connect(url, max_size=2**22)
		handle = cls(ws)
		try:
			await handle._setup(config.gemini_live_model)
		except Exception:
			await ws.close()
			raise
		return handle

	async def _setup(self, model: str) -> None:
		setup = {
			"setup": {
				"model": f"models/{model}",
				"generationConfig": {"responseModalities": ["AUDIO"]},
				"inputAudioTranscription": {},
			}
		}
		await self._ws.send(json.dumps(setup))
		reply = _decode(await self._ws.recv())
		if "setupComplete" not in reply:
			raise TransportError(f"Unexpected live setup reply: {str(reply)[:200]}")

	async def send_frame(self, frame: AudioFrame) -> None:
		message = {"realtimeInput": {"audio": {"data": frame.data, "mimeType": frame.mime_type}}}
		await self._ws.send(json.dumps(message))

	async def messages(self) -> AsyncIterator[Dict[str, Any]]:
		async for raw in self._ws:
			yield _decode(raw)

	async def close(self) -> None:
		await self._ws.close()


def _decode(raw: Any) -> Dict[str, Any]:
	if isinstance(raw, (bytes, bytearray)):
		raw = raw.decode("utf-8")
	data = json.loads(raw)
	return data if isinstance(data, dict) else {}


Connector = Callable[[], Awaitable[LiveSessionHandle]]


class TranscriptionChannel:
	"""Accumulates a live transcript and reports every change through ``on_update``.

	``on_failure`` fires at most once, when the transport errors, closes on its
	own or rejects a frame. It never fires for a close requested via ``close()``.
	"""

	def __init__(
		self,
		connector: Connector,
		on_update: Callable[[str], None],
		on_failure: Callable[[str], None],
	) -> None:
		self.state = TranscriptionState()
		self._connector = connector
		self._on_update = on_update
		self._on_failure = on_failure
		self._handle: Optional[LiveSessionHandle] = None
		self._receiver: Optional[asyncio.Task] = None
		self._closing = False
		self._failed = False

	async def open(self) -> None:
		self.state.clear()
		try:
			self._handle = await self._connector()
		except Exception as e:
			logger.warning("Could not open transcription session: %s", e)
			raise TransportError(f"Could not open transcription session: {e}") from e
		self.state.is_active = True
		self._receiver = asyncio.create_task(self._receive_loop())
		logger.info("Transcription session opened")

	async def send(self, frame: AudioFrame) -> None:
		if self._handle is None or self._closing or self._failed:
			raise TransportError("Transcription session is not open")
		try:
			await self._handle.send_frame(frame)
		except Exception as e:
			self._fail(f"Failed to send audio data: {e}")
			raise TransportError(str(e)) from e

	def handle_message(self, message: Dict[str, Any]) -> None:
		content = message.get("serverContent") or {}
		changed = False
		text = (content.get("inputTranscription") or {}).get("text")
		if text:
			self.state.append_partial(text)
			changed = True
		if content.get("turnComplete"):
			self.state.commit_turn()
			changed = True
		if changed:
			self._on_update(self.state.text)

	async def _receive_loop(self) -> None:
		assert self._handle is not None
		try:
			async for message in self._handle.messages():
				self.handle_message(message)
		except asyncio.CancelledError:
			raise
		except Exception as e:
			self._fail(f"Transcription session error: {e}")
			return
		self._fail("Transcription session closed unexpectedly")

	def _fail(self, reason: str) -> None:
		if self._closing or self._failed:
			return
		self._failed = True
		self.state.is_active = False
		logger.warning(reason)
		self._on_failure(reason)

	async def close(self) -> None:
		if self._closing:
			return
		self._closing = True
		self.state.is_active = False
		receiver, self._receiver = self._receiver, None
		if receiver is not None and receiver is not asyncio.current_task():
			receiver.cancel()
			try:
				await receiver
			except asyncio.CancelledError:
				pass
		handle, self._handle = self._handle, None
		if handle is not None:
			try:
				await handle.close()
			except Exception as e:
				logger.warning("Error while closing transcription session: %s", e)
		logger.info("Transcription session closed")
