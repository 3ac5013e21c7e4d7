"""
Coaching Session Router
=======================

HTTP surface of the fluency coach. Each endpoint maps one user action onto
the ``CoachingSession`` state machine and returns the resulting
``SessionView`` so the browser can render the current phase.

Sessions live in memory only and are discarded on reset/delete or after the
idle timeout enforced by ``fluency_coach.cleanup``.

API Endpoints:
- POST   /session                        Create an idle session
- GET    /session/{id}                   Current view
- POST   /session/{id}/start             Choose a context and fetch questions
- PUT    /session/{id}/answer            Type into the answer buffer
- POST   /session/{id}/submit            Submit the answer for scoring
- POST   /session/{id}/next              Next question or final report
- POST   /session/{id}/reset             Back to idle
- POST   /session/{id}/recording/start   Start live transcription
- POST   /session/{id}/recording/stop    Stop live transcription
- GET    /session/{id}/narration         Last narration as WAV
- DELETE /session/{id}                   Reset and discard
"""

from __future__ import annotations

import logging
from typing import Callable, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException, Response
from pydantic import BaseModel, Field

from ..audio import AudioPlayer, pcm16_to_wav
from ..coaching_service import CoachingService
from ..errors import (
	ConfigurationError,
	InputValidationError,
	InvalidTransitionError,
	PermissionDeniedError,
	SessionBusyError,
	TransportError,
)
from ..gemini_client import GeminiClient
from ..recording import live_capture_factory
from ..session import CoachingSession, SessionView
from ..settings import settings

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/session", tags=["session"])

# In-memory session registry; nothing is persisted
_sessions: Dict[str, CoachingSession] = {}
_service: Optional[CoachingService] = None


# ============================================================================
# REQUEST MODELS
# ============================================================================

class StartRequest(BaseModel):
	context: str = Field(default="", description='Practice scenario, e.g. "job interview"')


class AnswerRequest(BaseModel):
	text: str = ""


class SubmitRequest(BaseModel):
	# Omit to submit whatever is in the answer buffer (typed or transcribed)
	text: Optional[str] = None


# ============================================================================
# DEPENDENCIES
# ============================================================================

def get_service() -> CoachingService:
	global _service
	if _service is None:
		try:
			_service = CoachingService(GeminiClient(settings), settings)
		except ConfigurationError as e:
			raise HTTPException(status_code=503, detail=str(e))
	return _service


SessionBuilder = Callable[[], CoachingSession]


def get_session_builder(service: CoachingService = Depends(get_service)) -> SessionBuilder:
	def build() -> CoachingSession:
		return CoachingSession(
			service,
			player=AudioPlayer(sample_rate=settings.tts_sample_rate, enabled=settings.narration_enabled),
			capture_factory=live_capture_factory(settings) if settings.live_transcription_enabled else None,
			illustrations_enabled=settings.illustrations_enabled,
			live_transcription_enabled=settings.live_transcription_enabled,
		)

	return build


def get_sessions() -> Dict[str, CoachingSession]:
	return _sessions


def _get_session(session_id: str) -> CoachingSession:
	state = _sessions.get(session_id)
	if not state:
		raise HTTPException(status_code=404, detail="Session not found or expired")
	return state


def _conflict(err: Exception) -> HTTPException:
	return HTTPException(status_code=409, detail=str(err))


async def close_service() -> None:
	global _service
	if _service is not None:
		await _service.aclose()
		_service = None


# ============================================================================
# API ENDPOINTS
# ============================================================================

@router.post("", response_model=SessionView, status_code=201)
async def create_session(build: SessionBuilder = Depends(get_session_builder)):
	state = build()
	_sessions[state.session_id] = state
	logger.info("session %s created", state.session_id)
	return state.view()


@router.get("/{session_id}", response_model=SessionView)
async def get_session(session_id: str):
	return _get_session(session_id).view()


@router.post("/{session_id}/start", response_model=SessionView)
async def start(session_id: str, req: StartRequest):
	"""Start the session for a context.

	Collaborator failures do not raise here: the session moves to the
	``error`` phase and the view carries the message.
	"""
	state = _get_session(session_id)
	try:
		await state.start_session(req.context)
	except InputValidationError as e:
		raise HTTPException(status_code=400, detail=str(e))
	except (InvalidTransitionError, SessionBusyError) as e:
		raise _conflict(e)
	return state.view()


@router.put("/{session_id}/answer", response_model=SessionView)
async def set_answer(session_id: str, req: AnswerRequest):
	state = _get_session(session_id)
	try:
		state.set_answer(req.text)
	except (InvalidTransitionError, SessionBusyError) as e:
		raise _conflict(e)
	return state.view()


@router.post("/{session_id}/submit", response_model=SessionView)
async def submit(session_id: str, req: SubmitRequest):
	state = _get_session(session_id)
	try:
		await state.submit_answer(req.text)
	except (InvalidTransitionError, SessionBusyError) as e:
		raise _conflict(e)
	return state.view()


@router.post("/{session_id}/next", response_model=SessionView)
async def next_question(session_id: str):
	state = _get_session(session_id)
	try:
		await state.advance()
	except (InvalidTransitionError, SessionBusyError) as e:
		raise _conflict(e)
	return state.view()


@router.post("/{session_id}/reset", response_model=SessionView)
async def reset(session_id: str):
	state = _get_session(session_id)
	try:
		await state.reset()
	except SessionBusyError as e:
		raise _conflict(e)
	return state.view()


@router.post("/{session_id}/recording/start", response_model=SessionView)
async def start_recording(session_id: str):
	state = _get_session(session_id)
	try:
		await state.start_recording()
	except PermissionDeniedError as e:
		raise HTTPException(status_code=403, detail=str(e))
	except TransportError as e:
		raise HTTPException(status_code=502, detail=str(e))
	except (InvalidTransitionError, SessionBusyError) as e:
		raise _conflict(e)
	return state.view()


@router.post("/{session_id}/recording/stop", response_model=SessionView)
async def stop_recording(session_id: str):
	state = _get_session(session_id)
	try:
		await state.stop_recording()
	except SessionBusyError as e:
		raise _conflict(e)
	return state.view()


@router.get("/{session_id}/narration")
async def narration(session_id: str):
	state = _get_session(session_id)
	if not state.narration:
		raise HTTPException(status_code=404, detail="No narration available")
	return Response(content=pcm16_to_wav(state.narration, settings.tts_sample_rate), media_type="audio/wav")


@router.delete("/{session_id}", status_code=204)
async def delete_session(session_id: str):
	state = _get_session(session_id)
	try:
		await state.reset()
	except SessionBusyError as e:
		raise _conflict(e)
	_sessions.pop(session_id, None)
	return Response(status_code=204)
