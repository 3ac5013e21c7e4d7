import asyncio

import pytest

from fluency_coach.audio import AudioPlayer
from fluency_coach.errors import (
	InputValidationError,
	InvalidTransitionError,
	PermissionDeniedError,
	SessionBusyError,
)
from fluency_coach.session import CoachingSession, Phase

from fakes import NARRATION, FakeCaptureFactory, FakeService, make_questions


def _session(service, **kwargs):
	kwargs.setdefault("illustrations_enabled", False)
	return CoachingSession(service, **kwargs)


def test_empty_context_stays_idle_without_requests(fake_service):
	async def scenario():
		session = _session(fake_service)
		with pytest.raises(InputValidationError):
			await session.start_session("   ")
		return session

	session = asyncio.run(scenario())
	assert session.phase == Phase.IDLE
	assert session.error
	assert fake_service.calls == []
	assert not session.busy


def test_full_session_reaches_completed(fake_service, questions):
	async def scenario():
		session = _session(fake_service)
		await session.start_session("job interview")
		assert session.phase == Phase.AWAITING_ANSWER
		for index, answer in enumerate(["I am a developer", "I led a team", "I want to grow"]):
			assert 0 <= session.current_index < len(session.questions)
			assert len(session.history) == index
			asked = session.questions[session.current_index]
			await session.submit_answer(answer)
			assert session.phase == Phase.SHOWING_FEEDBACK
			assert len(session.history) == index + 1
			assert session.history[-1].question == asked
			assert session.history[-1].answer == answer
			await session.advance()
		return session

	session = asyncio.run(scenario())
	assert session.phase == Phase.COMPLETED
	assert session.report is not None
	assert session.report.next_recommended_context == "salary negotiation"
	assert [entry.feedback.fluency_band for entry in session.history] == [5.0, 6.5, 8.0]
	assert fake_service.report_history == session.history
	assert len(fake_service.report_history) == 3
	evaluations = fake_service.called("evaluate_answer")
	assert evaluations[0] == ("evaluate_answer", questions[0].question, "I am a developer", "job interview")


def test_advance_on_last_question_generates_report():
	service = FakeService(questions=make_questions(1), scores=[7.0])

	async def scenario():
		session = _session(service)
		await session.start_session("restaurant")
		await session.submit_answer("A table for two, please")
		service.phase_probe = lambda: session.phase
		await session.advance()
		return session

	session = asyncio.run(scenario())
	assert service.probed_phases == [Phase.REPORT_GENERATING]
	assert session.phase == Phase.COMPLETED
	assert session.current_index == 0


def test_zero_questions_moves_to_error():
	service = FakeService(questions=[])

	async def scenario():
		session = _session(service)
		await session.start_session("immigration interview")
		return session

	session = asyncio.run(scenario())
	assert session.phase == Phase.ERROR
	assert session.error == "No questions were generated for this context."
	assert service.called("synthesize_speech") == []


def test_question_request_failure_moves_to_error():
	service = FakeService(questions=make_questions(2), fail={"generate_questions"})

	async def scenario():
		session = _session(service)
		await session.start_session("job interview")
		return session

	session = asyncio.run(scenario())
	assert session.phase == Phase.ERROR
	assert "boom" in session.error


def test_evaluation_failure_keeps_history_unchanged(questions):
	service = FakeService(questions=questions, fail={"evaluate_answer"})

	async def scenario():
		session = _session(service)
		await session.start_session("job interview")
		await session.submit_answer("My answer")
		return session

	session = asyncio.run(scenario())
	assert session.history == []
	assert session.feedback is None
	assert session.phase == Phase.ERROR
	assert session.error


def test_report_failure_moves_to_error():
	service = FakeService(questions=make_questions(1), fail={"generate_final_report"})

	async def scenario():
		session = _session(service)
		await session.start_session("job interview")
		await session.submit_answer("My answer")
		await session.advance()
		return session

	session = asyncio.run(scenario())
	assert session.phase == Phase.ERROR
	assert session.report is None
	assert len(session.history) == 1


def test_blank_answer_is_a_no_op(fake_service):
	async def scenario():
		session = _session(fake_service)
		await session.start_session("job interview")
		await session.submit_answer("  \n ")
		return session

	session = asyncio.run(scenario())
	assert session.phase == Phase.AWAITING_ANSWER
	assert fake_service.called("evaluate_answer") == []


def test_typed_answer_buffer_is_submitted(fake_service):
	async def scenario():
		session = _session(fake_service)
		await session.start_session("job interview")
		session.set_answer("Typed answer")
		await session.submit_answer()
		return session

	session = asyncio.run(scenario())
	assert session.history[0].answer == "Typed answer"


def test_duplicate_submit_is_rejected_while_in_flight(fake_service):
	async def scenario():
		session = _session(fake_service)
		await session.start_session("job interview")
		fake_service.evaluation_gate = asyncio.Event()
		first = asyncio.create_task(session.submit_answer("First click"))
		await asyncio.sleep(0)
		assert session.busy
		with pytest.raises(SessionBusyError):
			await session.submit_answer("Second click")
		fake_service.evaluation_gate.set()
		await first
		return session

	session = asyncio.run(scenario())
	assert len(session.history) == 1
	assert len(fake_service.called("evaluate_answer")) == 1


def test_actions_outside_their_phase_are_rejected(fake_service):
	async def scenario():
		session = _session(fake_service)
		with pytest.raises(InvalidTransitionError):
			await session.advance()
		with pytest.raises(InvalidTransitionError):
			await session.submit_answer("hello")
		await session.start_session("job interview")
		with pytest.raises(InvalidTransitionError):
			await session.start_session("another context")

	asyncio.run(scenario())


def test_advance_clears_answer_and_feedback(fake_service):
	async def scenario():
		session = _session(fake_service)
		await session.start_session("job interview")
		await session.submit_answer("first")
		assert session.feedback is not None
		await session.advance()
		return session

	session = asyncio.run(scenario())
	assert session.phase == Phase.AWAITING_ANSWER
	assert session.current_index == 1
	assert session.current_answer == ""
	assert session.feedback is None


def test_narration_plays_question_and_feedback(fake_service, questions):
	played = []
	player = AudioPlayer(play_fn=lambda samples, rate: played.append((len(samples), rate)))

	async def scenario():
		session = _session(fake_service, player=player)
		await session.start_session("job interview")
		await session.submit_answer("My answer")
		return session

	session = asyncio.run(scenario())
	spoken = [c[1] for c in fake_service.called("synthesize_speech")]
	assert spoken[0] == questions[0].question
	assert spoken[1].startswith("Here is your feedback. Your estimated IELTS fluency band is 5.0.")
	assert played == [(len(NARRATION) // 2, 24000)] * 2
	assert session.narration == NARRATION


def test_question_narration_failure_moves_to_error():
	service = FakeService(questions=make_questions(2), fail={"synthesize_speech"})

	async def scenario():
		session = _session(service)
		await session.start_session("job interview")
		return session

	session = asyncio.run(scenario())
	assert session.phase == Phase.ERROR
	assert session.error == "No audio was generated."
	assert session.narration is None


def test_feedback_narration_failure_keeps_scored_answer():
	service = FakeService(questions=make_questions(2))

	async def scenario():
		session = _session(service)
		await session.start_session("job interview")
		service.fail.add("synthesize_speech")
		await session.submit_answer("My answer")
		return session

	session = asyncio.run(scenario())
	assert session.phase == Phase.ERROR
	assert session.error == "No audio was generated."
	assert len(session.history) == 1
	assert session.history[0].answer == "My answer"


def test_narration_failure_on_next_question_moves_to_error():
	service = FakeService(questions=make_questions(2))

	async def scenario():
		session = _session(service)
		await session.start_session("job interview")
		await session.submit_answer("My answer")
		service.fail.add("synthesize_speech")
		await session.advance()
		return session

	session = asyncio.run(scenario())
	assert session.phase == Phase.ERROR
	assert session.current_index == 1
	assert len(session.history) == 1


def test_illustrations_attach_to_history():
	service = FakeService(questions=make_questions(2))

	async def scenario():
		session = _session(service, illustrations_enabled=True)
		await session.start_session("job interview")
		assert session.current_image.startswith("data:image/png;base64,")
		await session.submit_answer("My answer")
		return session

	session = asyncio.run(scenario())
	assert session.history[0].image_url == "data:image/png;base64,iVBORw0KGgo="
	assert service.called("generate_image") == [("generate_image", "office scene 1")]


def test_image_failure_is_a_missing_illustration():
	service = FakeService(questions=make_questions(2), fail={"generate_image"})

	async def scenario():
		session = _session(service, illustrations_enabled=True)
		await session.start_session("job interview")
		return session

	session = asyncio.run(scenario())
	assert session.phase == Phase.AWAITING_ANSWER
	assert session.current_image is None
	assert session.error is None


def test_live_transcript_fills_answer_buffer(fake_service):
	factory = FakeCaptureFactory()

	async def scenario():
		session = _session(fake_service, capture_factory=factory)
		await session.start_session("job interview")
		session.set_answer("stale typed text")
		await session.start_recording()
		assert session.is_recording
		assert session.current_answer == ""
		factory.last.on_update("Hello wor")
		assert session.current_answer == "Hello wor"
		factory.last.on_update("Hello world ")
		with pytest.raises(InvalidTransitionError):
			session.set_answer("typing while recording")
		await session.submit_answer()
		return session

	session = asyncio.run(scenario())
	assert factory.last.released
	assert not session.is_recording
	assert session.history[0].answer == "Hello world"


def test_start_recording_twice_keeps_one_capture(fake_service):
	factory = FakeCaptureFactory()

	async def scenario():
		session = _session(fake_service, capture_factory=factory)
		await session.start_session("job interview")
		await session.start_recording()
		await session.start_recording()
		await session.stop_recording()
		await session.stop_recording()
		return session

	session = asyncio.run(scenario())
	assert len(factory.created) == 1
	assert factory.last.released
	assert not session.is_recording


def test_stop_recording_when_inactive_is_a_no_op(fake_service):
	async def scenario():
		session = _session(fake_service, capture_factory=FakeCaptureFactory())
		await session.stop_recording()
		return session

	session = asyncio.run(scenario())
	assert session.phase == Phase.IDLE


def test_permission_denied_leaves_phase_untouched(fake_service):
	factory = FakeCaptureFactory(error=PermissionDeniedError("Microphone access denied"))

	async def scenario():
		session = _session(fake_service, capture_factory=factory)
		await session.start_session("job interview")
		with pytest.raises(PermissionDeniedError):
			await session.start_recording()
		return session

	session = asyncio.run(scenario())
	assert session.phase == Phase.AWAITING_ANSWER
	assert not session.is_recording
	assert session.recording_error == "Microphone access denied"


def test_transport_failure_tears_down_capture_and_keeps_text(fake_service):
	factory = FakeCaptureFactory()

	async def scenario():
		session = _session(fake_service, capture_factory=factory)
		await session.start_session("job interview")
		await session.start_recording()
		factory.last.on_update("Hello ")
		factory.last.on_failure("Transcription session closed unexpectedly")
		await asyncio.sleep(0)
		return session

	session = asyncio.run(scenario())
	assert factory.last.released
	assert not session.is_recording
	assert session.phase == Phase.AWAITING_ANSWER
	assert session.current_answer == "Hello "
	assert session.recording_error == "Transcription session closed unexpectedly"


def test_recording_disabled_without_capture_factory(fake_service):
	async def scenario():
		session = _session(fake_service)
		await session.start_session("job interview")
		with pytest.raises(InvalidTransitionError):
			await session.start_recording()

	asyncio.run(scenario())


def test_reset_clears_session_and_releases_capture(fake_service):
	factory = FakeCaptureFactory()

	async def scenario():
		session = _session(fake_service, capture_factory=factory)
		await session.start_session("job interview")
		await session.start_recording()
		await session.reset()
		return session

	session = asyncio.run(scenario())
	assert factory.last.released
	assert session.phase == Phase.IDLE
	assert session.questions == []
	assert session.history == []
	assert session.context == ""
	assert session.error is None


def test_reset_leaves_error_phase():
	service = FakeService(questions=[])

	async def scenario():
		session = _session(service)
		await session.start_session("job interview")
		assert session.phase == Phase.ERROR
		await session.reset()
		service.questions = make_questions(1)
		await session.start_session("job interview")
		return session

	session = asyncio.run(scenario())
	assert session.phase == Phase.AWAITING_ANSWER


def test_view_reflects_session_state(fake_service):
	async def scenario():
		session = _session(fake_service)
		await session.start_session("job interview")
		return session.view()

	view = asyncio.run(scenario())
	assert view.phase == Phase.AWAITING_ANSWER
	assert view.current_question.question.startswith("Question 1")
	assert view.has_narration
	assert not view.busy
	assert not view.live_transcription_enabled


def test_blank_submit_keeps_recording_running(fake_service):
	factory = FakeCaptureFactory()

	async def scenario():
		session = _session(fake_service, capture_factory=factory)
		await session.start_session("job interview")
		await session.start_recording()
		await session.submit_answer()
		await session.submit_answer("   ")
		return session

	session = asyncio.run(scenario())
	assert session.is_recording
	assert not factory.last.released
	assert session.phase == Phase.AWAITING_ANSWER
	assert fake_service.called("evaluate_answer") == []


def test_recording_rejected_when_live_transcription_disabled(fake_service):
	factory = FakeCaptureFactory()

	async def scenario():
		session = _session(fake_service, capture_factory=factory, live_transcription_enabled=False)
		await session.start_session("job interview")
		with pytest.raises(InvalidTransitionError):
			await session.start_recording()
		return session

	session = asyncio.run(scenario())
	assert factory.created == []
	assert not session.is_recording
