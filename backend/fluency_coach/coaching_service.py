"""
Coaching Service
================

Thin request/response layer over Gemini for the fluency coach. Each operation
builds a prompt plus a JSON response schema, calls the model and validates the
result into the immutable models in ``fluency_coach.models``.

Operations:
- generate_questions: progressive situational questions for a context
- evaluate_answer: IELTS-style fluency band, tip and native-like rewrite
- generate_final_report: strengths, improvement areas, expressions, next context
- synthesize_speech: 24 kHz 16-bit PCM narration for a line of text
- generate_image: illustrative picture for a question, as a data URI

Every failure is raised as the matching ``CoachServiceError`` subclass so the
session can turn it into a single readable message.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import re
from typing import Any, Dict, List, Sequence

from pydantic import ValidationError

from .errors import (
	CoachServiceError,
	EvaluationError,
	GenerationError,
	ImageGenerationError,
	ReportError,
	SynthesisError,
)
from .gemini_client import GeminiClient
from .models import Feedback, FinalReport, HistoryEntry, Question
from .settings import Settings

logger = logging.getLogger(__name__)

SYSTEM_INSTRUCTION = """You are a world-class, strict but fair English language examiner, specializing in fluency for proficiency tests like IELTS.
Your goal is to help the user achieve confidence and fluency in specific, real-world contexts.
Your persona is encouraging, professional, and highly focused on practical, actionable feedback.
You will evaluate answers based on official proficiency standards for fluency, coherence, lexical resource (vocabulary), and grammatical range and accuracy."""

IMAGE_STYLE_SUFFIX = (
	"Photorealistic style. Ensure any text in the image has very high contrast against its background, "
	"like dark text on a light background. Avoid white text on light colors."
)


# ============================================================================
# RESPONSE SCHEMAS
# ============================================================================

QUESTIONS_SCHEMA: Dict[str, Any] = {
	"type": "ARRAY",
	"items": {
		"type": "OBJECT",
		"properties": {
			"question": {"type": "STRING"},
			"imagePrompt": {"type": "STRING"},
			"vocabulary": {
				"type": "ARRAY",
				"items": {
					"type": "OBJECT",
					"properties": {
						"word": {"type": "STRING"},
						"level": {"type": "STRING"},
						"definition": {"type": "STRING"},
					},
					"required": ["word", "level", "definition"],
				},
			},
		},
		"required": ["question", "imagePrompt", "vocabulary"],
	},
}

FEEDBACK_SCHEMA: Dict[str, Any] = {
	"type": "OBJECT",
	"properties": {
		"fluencyBand": {"type": "NUMBER", "description": "An IELTS-like fluency band score from 1.0 to 9.0."},
		"improvementTip": {"type": "STRING", "description": "A brief, actionable tip for sounding more natural."},
		"nativeLikeExample": {"type": "STRING", "description": "The user's answer rewritten to sound like a native speaker."},
	},
	"required": ["fluencyBand", "improvementTip", "nativeLikeExample"],
}

REPORT_SCHEMA: Dict[str, Any] = {
	"type": "OBJECT",
	"properties": {
		"topStrengths": {"type": "ARRAY", "items": {"type": "STRING"}},
		"improvementAreas": {"type": "ARRAY", "items": {"type": "STRING"}},
		"expressionsToReview": {"type": "ARRAY", "items": {"type": "STRING"}},
		"nextRecommendedContext": {"type": "STRING"},
	},
	"required": ["topStrengths", "improvementAreas", "expressionsToReview", "nextRecommendedContext"],
}


# ============================================================================
# UTILITY FUNCTIONS
# ============================================================================

def _extract_json_block(text: str) -> Any:
	"""Extract a JSON value from LLM response text.

	Structured-output responses are usually clean JSON, but models sometimes
	wrap them in markdown fences or prose. Parse the whole text first, then
	fall back to the first array or object found in it.

	Raises:
		ValueError: If no valid JSON can be extracted from the text
	"""
	try:
		return json.loads(text)
	except Exception:
		pass
	for pattern in (r"\[[\s\S]*\]", r"\{[\s\S]*\}"):
		match = re.search(pattern, text)
		if match:
			try:
				return json.loads(match.group(0))
			except Exception:
				continue
	raise ValueError("Failed to parse JSON from Gemini output")


def _build_questions_prompt(context: str, count: int) -> str:
	return f"""
Generate {count} progressive, situational questions for a user practicing English in the context of "{context}".
The questions should start at a B1 level and move towards a C1/C2 level. They must be practical and realistic.
For each question, also provide:
1. A simple, descriptive prompt (max 10 words) for an AI image generator to create a relevant, photorealistic scene.
2. A list of 3-5 key vocabulary words from the question, with their CEFR level (A1-C2) and a simple definition.
""".strip()


def _build_evaluation_prompt(question: str, answer: str, context: str) -> str:
	return f"""
As a strict IELTS examiner, evaluate the user's answer based on the question.
Practice context: "{context}"
Question: "{question}"
User's Answer: "{answer}"
Provide feedback on fluency, coherence, vocabulary, and grammar. The band score must be a number between 1.0 and 9.0.
The improvement tip must be concise and actionable.
The native-like example must be a natural-sounding alternative.
""".strip()


def _build_report_prompt(context: str, history: Sequence[HistoryEntry]) -> str:
	rundown = "\n\n".join(
		f"Q: {entry.question.question}\nA: {entry.answer}\nFluency Band: {entry.feedback.fluency_band}"
		for entry in history
	)
	return f"""
Based on the following session history in the context of "{context}", generate a final personalized report.
{rundown}
The report should include top strengths, areas for improvement, 3-5 key expressions to review, and a logical next recommended context for practice.
""".strip()


def _inline_data(parts: List[Dict[str, Any]]) -> str | None:
	for part in parts:
		# REST responses use camelCase, some proxies echo snake_case
		blob = part.get("inlineData") or part.get("inline_data")
		if blob and blob.get("data"):
			return blob["data"]
	return None


def feedback_narration(feedback: Feedback) -> str:
	"""Spoken summary read out after an answer is scored."""
	return (
		f"Here is your feedback. Your estimated IELTS fluency band is {feedback.fluency_band:.1f}. "
		f"{feedback.improvement_tip}. A native-like version would be: {feedback.native_like_example}"
	)


# ============================================================================
# SERVICE
# ============================================================================

class CoachingService:
	"""Stateless Gemini-backed collaborator used by the coaching session."""

	def __init__(self, client: GeminiClient, config: Settings) -> None:
		self._client = client
		self._config = config

	async def generate_questions(self, context: str) -> List[Question]:
		prompt = _build_questions_prompt(context, self._config.question_count)
		try:
			raw = await self._client.generate(
				prompt,
				model=self._config.gemini_model,
				system_instruction=SYSTEM_INSTRUCTION,
				response_schema=QUESTIONS_SCHEMA,
			)
			data = _extract_json_block(raw.strip())
			if not isinstance(data, list):
				raise ValueError("expected a JSON array of questions")
			questions = [Question.model_validate(item) for item in data]
		except (CoachServiceError, ValueError, ValidationError) as e:
			raise GenerationError(f"Could not generate questions: {e}") from e
		if not questions:
			raise GenerationError("No questions were generated for this context.")
		logger.info("Generated %d questions for context %r", len(questions), context)
		return questions

	async def evaluate_answer(self, question: str, answer: str, context: str) -> Feedback:
		prompt = _build_evaluation_prompt(question, answer, context)
		try:
			raw = await self._client.generate(
				prompt,
				model=self._config.gemini_model_eval,
				system_instruction=SYSTEM_INSTRUCTION,
				response_schema=FEEDBACK_SCHEMA,
			)
			return Feedback.model_validate(_extract_json_block(raw.strip()))
		except (CoachServiceError, ValueError, ValidationError) as e:
			raise EvaluationError(f"Could not evaluate your answer: {e}") from e

	async def generate_final_report(self, context: str, history: Sequence[HistoryEntry]) -> FinalReport:
		prompt = _build_report_prompt(context, history)
		try:
			raw = await self._client.generate(
				prompt,
				model=self._config.gemini_model_eval,
				system_instruction=SYSTEM_INSTRUCTION,
				response_schema=REPORT_SCHEMA,
			)
			return FinalReport.model_validate(_extract_json_block(raw.strip()))
		except (CoachServiceError, ValueError, ValidationError) as e:
			raise ReportError(f"Could not generate the final report: {e}") from e

	async def synthesize_speech(self, text: str) -> bytes:
		generation_config = {
			"responseModalities": ["AUDIO"],
			"speechConfig": {
				"voiceConfig": {"prebuiltVoiceConfig": {"voiceName": self._config.gemini_tts_voice}},
			},
		}
		try:
			parts = await self._client.generate_parts(
				[{"text": text}],
				model=self._config.gemini_model_tts,
				generation_config=generation_config,
			)
		except CoachServiceError as e:
			raise SynthesisError(f"Speech synthesis failed: {e}") from e
		data = _inline_data(parts)
		if not data:
			raise SynthesisError("No audio was generated.")
		try:
			return base64.b64decode(data)
		except (binascii.Error, ValueError) as e:
			raise SynthesisError("Gemini returned undecodable audio") from e

	async def generate_image(self, prompt: str) -> str:
		try:
			parts = await self._client.generate_parts(
				[{"text": f"{prompt}. {IMAGE_STYLE_SUFFIX}"}],
				model=self._config.gemini_model_image,
				generation_config={"responseModalities": ["IMAGE"]},
			)
		except CoachServiceError as e:
			raise ImageGenerationError(f"Image generation failed: {e}") from e
		data = _inline_data(parts)
		if not data:
			raise ImageGenerationError("No image was generated.")
		return f"data:image/png;base64,{data}"

	async def aclose(self) -> None:
		await self._client.aclose()
