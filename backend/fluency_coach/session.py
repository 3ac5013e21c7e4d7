"""
Coaching Session State Machine
==============================

Orchestrates one practice session: question generation, answering (typed or
live-transcribed), scoring, narrated feedback and the final report.

Phases:
	idle -> questions_loading -> presenting -> awaiting_answer -> evaluating
	-> showing_feedback -> (presenting for the next question | report_generating
	-> completed)

``error`` is reachable from every request-issuing transition and is only left
through ``reset()``. One action runs at a time: while an action awaits the
collaborator the session is busy and further actions raise
``SessionBusyError``. Actions called in the wrong phase raise
``InvalidTransitionError``.

Optional capabilities are flags on the session rather than separate flows:
illustrations (an image per question) and live transcription (microphone ->
Gemini Live -> answer buffer).
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from enum import Enum
from typing import AsyncIterator, List, Optional, Set

from pydantic import BaseModel

from .audio import AudioPlayer
from .coaching_service import CoachingService, feedback_narration
from .errors import (
	CoachServiceError,
	GenerationError,
	ImageGenerationError,
	InputValidationError,
	InvalidTransitionError,
	PermissionDeniedError,
	SessionBusyError,
	SynthesisError,
	TransportError,
)
from .models import Feedback, FinalReport, HistoryEntry, Question
from .recording import CaptureFactory, CaptureResource

logger = logging.getLogger(__name__)


class Phase(str, Enum):
	IDLE = "idle"
	QUESTIONS_LOADING = "questions_loading"
	PRESENTING = "presenting"
	AWAITING_ANSWER = "awaiting_answer"
	EVALUATING = "evaluating"
	SHOWING_FEEDBACK = "showing_feedback"
	REPORT_GENERATING = "report_generating"
	COMPLETED = "completed"
	ERROR = "error"


class SessionView(BaseModel):
	"""Read-only snapshot of a session returned to clients."""
	session_id: str
	phase: Phase
	busy: bool
	context: str
	questions: List[Question]
	current_index: int
	current_question: Optional[Question] = None
	current_answer: str
	current_image: Optional[str] = None
	feedback: Optional[Feedback] = None
	history: List[HistoryEntry]
	report: Optional[FinalReport] = None
	error: Optional[str] = None
	is_recording: bool
	recording_error: Optional[str] = None
	is_playing: bool
	has_narration: bool
	illustrations_enabled: bool
	live_transcription_enabled: bool


class CoachingSession:
	def __init__(
		self,
		service: CoachingService,
		*,
		player: Optional[AudioPlayer] = None,
		capture_factory: Optional[CaptureFactory] = None,
		illustrations_enabled: bool = True,
		live_transcription_enabled: bool = True,
		session_id: Optional[str] = None,
	) -> None:
		self.session_id: str = session_id or uuid.uuid4().hex
		self.illustrations_enabled = illustrations_enabled
		self.live_transcription_enabled = live_transcription_enabled and capture_factory is not None
		self._service = service
		self._player = player
		self._capture_factory = capture_factory
		self._capture: Optional[CaptureResource] = None
		self._busy = False
		self._teardowns: Set[asyncio.Task] = set()
		self.last_activity = datetime.now(timezone.utc)
		self._clear()

	def _clear(self) -> None:
		self.phase = Phase.IDLE
		self.context = ""
		self.questions: List[Question] = []
		self.current_index = 0
		self.current_answer = ""
		self.feedback: Optional[Feedback] = None
		self.history: List[HistoryEntry] = []
		self.report: Optional[FinalReport] = None
		self.error: Optional[str] = None
		self.current_image: Optional[str] = None
		self.recording_error: Optional[str] = None
		self.narration: Optional[bytes] = None

	# ------------------------------------------------------------------
	# State helpers
	# ------------------------------------------------------------------

	@property
	def busy(self) -> bool:
		return self._busy

	@property
	def is_recording(self) -> bool:
		return self._capture is not None

	@property
	def current_question(self) -> Optional[Question]:
		if not self.questions:
			return None
		return self.questions[self.current_index]

	def touch(self) -> None:
		self.last_activity = datetime.now(timezone.utc)

	def _transition(self, phase: Phase) -> None:
		logger.info("session %s: %s -> %s", self.session_id, self.phase.value, phase.value)
		self.phase = phase

	def _fail(self, err: Exception) -> None:
		self.error = str(err) or "An unknown error occurred."
		logger.warning("session %s failed in %s: %s", self.session_id, self.phase.value, self.error)
		self._transition(Phase.ERROR)

	@asynccontextmanager
	async def _action(self, *allowed: Phase) -> AsyncIterator[None]:
		if self._busy:
			raise SessionBusyError("Another request for this session is still in progress")
		if allowed and self.phase not in allowed:
			raise InvalidTransitionError(f"Action not available while session is {self.phase.value}")
		self._busy = True
		self.touch()
		try:
			yield
		finally:
			self._busy = False
			self.touch()

	# ------------------------------------------------------------------
	# User actions
	# ------------------------------------------------------------------

	async def start_session(self, context: str) -> None:
		async with self._action(Phase.IDLE):
			context = (context or "").strip()
			if not context:
				self.error = "Please enter a context to practice."
				raise InputValidationError(self.error)
			self.context = context
			self.error = None
			self._transition(Phase.QUESTIONS_LOADING)
			try:
				questions = await self._service.generate_questions(context)
				if not questions:
					raise GenerationError("No questions were generated for this context.")
			except CoachServiceError as e:
				self._fail(e)
				return
			self.questions = list(questions)
			self.current_index = 0
			try:
				await self._present_current()
			except CoachServiceError as e:
				self._fail(e)

	async def submit_answer(self, text: Optional[str] = None) -> None:
		async with self._action(Phase.AWAITING_ANSWER):
			if not (self.current_answer if text is None else text).strip():
				return
			if self._capture is not None:
				# Late transcript pieces land in the buffer during release
				await self._release_capture()
			answer = (self.current_answer if text is None else text).strip()
			self.current_answer = answer
			question = self.questions[self.current_index]
			self.error = None
			self._transition(Phase.EVALUATING)
			try:
				feedback = await self._service.evaluate_answer(question.question, answer, self.context)
			except CoachServiceError as e:
				self._fail(e)
				return
			self.feedback = feedback
			self.history.append(
				HistoryEntry(question=question, answer=answer, feedback=feedback, image_url=self.current_image)
			)
			self._transition(Phase.SHOWING_FEEDBACK)
			try:
				await self._narrate(feedback_narration(feedback))
			except SynthesisError as e:
				self._fail(e)

	async def advance(self) -> None:
		async with self._action(Phase.SHOWING_FEEDBACK):
			self.feedback = None
			if self.current_index < len(self.questions) - 1:
				self.current_index += 1
				self.current_answer = ""
				self.current_image = None
				self.narration = None
				try:
					await self._present_current()
				except CoachServiceError as e:
					self._fail(e)
				return
			self._transition(Phase.REPORT_GENERATING)
			try:
				report = await self._service.generate_final_report(self.context, list(self.history))
			except CoachServiceError as e:
				self._fail(e)
				return
			self.report = report
			self._transition(Phase.COMPLETED)

	async def reset(self) -> None:
		async with self._action():
			await self._release_capture()
			self._clear()
			logger.info("session %s reset", self.session_id)

	def set_answer(self, text: str) -> None:
		if self._busy:
			raise SessionBusyError("Another request for this session is still in progress")
		if self.phase != Phase.AWAITING_ANSWER:
			raise InvalidTransitionError(f"Action not available while session is {self.phase.value}")
		if self._capture is not None:
			raise InvalidTransitionError("Stop recording before editing the answer")
		self.current_answer = text or ""
		self.touch()

	async def start_recording(self) -> None:
		async with self._action(Phase.AWAITING_ANSWER):
			if not self.live_transcription_enabled or self._capture_factory is None:
				raise InvalidTransitionError("Live transcription is disabled")
			if self._capture is not None:
				return
			self.current_answer = ""
			self.recording_error = None
			capture = self._capture_factory(self._on_transcript, self._on_transport_failure)
			self._capture = capture
			try:
				await capture.acquire()
			except (PermissionDeniedError, TransportError) as e:
				self._capture = None
				self.recording_error = str(e)
				raise

	async def stop_recording(self) -> None:
		if self._capture is None:
			return
		async with self._action():
			await self._release_capture()

	# ------------------------------------------------------------------
	# Internals
	# ------------------------------------------------------------------

	async def _present_current(self) -> None:
		self._transition(Phase.PRESENTING)
		question = self.questions[self.current_index]
		if self.illustrations_enabled and question.image_prompt:
			self.current_image = await self._illustrate(question.image_prompt)
		await self._narrate(question.question)
		self._transition(Phase.AWAITING_ANSWER)

	async def _illustrate(self, prompt: str) -> Optional[str]:
		try:
			return await self._service.generate_image(prompt)
		except ImageGenerationError as e:
			logger.warning("session %s: illustration unavailable: %s", self.session_id, e)
			return None

	async def _narrate(self, text: str) -> None:
		# SynthesisError propagates to the caller; speaker errors stay inside the player
		self.narration = None
		audio = await self._service.synthesize_speech(text)
		self.narration = audio
		if self._player is not None:
			await self._player.play(audio)

	def _on_transcript(self, text: str) -> None:
		if self.phase == Phase.AWAITING_ANSWER:
			self.current_answer = text

	def _on_transport_failure(self, reason: str) -> None:
		self.recording_error = reason
		capture, self._capture = self._capture, None
		if capture is None:
			return
		task = asyncio.get_running_loop().create_task(capture.release())
		self._teardowns.add(task)
		task.add_done_callback(self._teardowns.discard)

	async def _release_capture(self) -> None:
		capture, self._capture = self._capture, None
		if capture is not None:
			await capture.release()

	def view(self) -> SessionView:
		return SessionView(
			session_id=self.session_id,
			phase=self.phase,
			busy=self._busy,
			context=self.context,
			questions=self.questions,
			current_index=self.current_index,
			current_question=self.current_question,
			current_answer=self.current_answer,
			current_image=self.current_image,
			feedback=self.feedback,
			history=self.history,
			report=self.report,
			error=self.error,
			is_recording=self.is_recording,
			recording_error=self.recording_error,
			is_playing=bool(self._player and self._player.is_playing),
			has_narration=self.narration is not None,
			illustrations_enabled=self.illustrations_enabled,
			live_transcription_enabled=self.live_transcription_enabled,
		)
