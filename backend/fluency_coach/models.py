from __future__ import annotations
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class _Frozen(BaseModel):
	# Gemini answers in camelCase; accept both spellings and keep instances immutable
	model_config = ConfigDict(frozen=True, populate_by_name=True)


class VocabularyItem(_Frozen):
	word: str
	level: str  # CEFR A1–C2
	definition: str


class Question(_Frozen):
	question: str = Field(min_length=1)
	image_prompt: str = Field(default="", validation_alias="imagePrompt")
	vocabulary: List[VocabularyItem] = Field(default_factory=list)


class Feedback(_Frozen):
	fluency_band: float = Field(ge=1.0, le=9.0, validation_alias="fluencyBand")
	improvement_tip: str = Field(validation_alias="improvementTip")
	native_like_example: str = Field(validation_alias="nativeLikeExample")


class HistoryEntry(_Frozen):
	question: Question
	answer: str
	feedback: Feedback
	image_url: Optional[str] = None


class FinalReport(_Frozen):
	top_strengths: List[str] = Field(validation_alias="topStrengths")
	improvement_areas: List[str] = Field(validation_alias="improvementAreas")
	expressions_to_review: List[str] = Field(validation_alias="expressionsToReview")
	next_recommended_context: str = Field(validation_alias="nextRecommendedContext")
