from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
	gemini_api_key: str | None = Field(default=None, validation_alias="GEMINI_API_KEY")
	# Provider can be "vertex" (Vertex AI Express) or "ai_studio" (Generative Language API)
	gemini_provider: str = Field(default="ai_studio", validation_alias="GEMINI_PROVIDER")
	# Question generation model
	gemini_model: str = Field(default="gemini-2.5-flash", validation_alias="GEMINI_MODEL")
	# Scoring and final report model
	gemini_model_eval: str = Field(default="gemini-2.5-pro", validation_alias="GEMINI_MODEL_EVAL")
	gemini_model_image: str = Field(default="gemini-2.5-flash-image", validation_alias="GEMINI_MODEL_IMAGE")
	gemini_model_tts: str = Field(default="gemini-2.5-flash-preview-tts", validation_alias="GEMINI_MODEL_TTS")
	gemini_tts_voice: str = Field(default="Kore", validation_alias="GEMINI_TTS_VOICE")
	# Vertex configuration
	vertex_region: str = Field(default="us-central1", validation_alias="GEMINI_VERTEX_REGION")
	vertex_project: str | None = Field(default=None, validation_alias="GEMINI_VERTEX_PROJECT")
	gemini_timeout_seconds: float = Field(default=60.0, validation_alias="GEMINI_TIMEOUT_SECONDS")

	# Live transcription (Gemini Live API over websockets)
	gemini_live_model: str = Field(default="gemini-2.5-flash-native-audio-preview-09-2025", validation_alias="GEMINI_LIVE_MODEL")
	gemini_live_url: str = Field(
		default="wss://generativelanguage.googleapis.com/ws/google.ai.generativelanguage.v1beta.GenerativeService.BidiGenerateContent",
		validation_alias="GEMINI_LIVE_URL",
	)

	# Session behaviour
	question_count: int = Field(default=10, ge=1, le=20, validation_alias="QUESTION_COUNT")
	illustrations_enabled: bool = Field(default=True, validation_alias="ILLUSTRATIONS_ENABLED")
	live_transcription_enabled: bool = Field(default=True, validation_alias="LIVE_TRANSCRIPTION_ENABLED")
	# Play narration on the host speaker; the WAV endpoint works either way
	narration_enabled: bool = Field(default=True, validation_alias="NARRATION_ENABLED")

	# Audio
	audio_device: str | None = Field(default=None, validation_alias="AUDIO_DEVICE")
	audio_sample_rate: int = Field(default=16000, validation_alias="AUDIO_SAMPLE_RATE")
	audio_frame_size: int = Field(default=4096, validation_alias="AUDIO_FRAME_SIZE")
	tts_sample_rate: int = Field(default=24000, validation_alias="TTS_SAMPLE_RATE")
	# Upper bound on draining queued frames before the live socket is closed
	capture_flush_seconds: float = Field(default=0.5, validation_alias="CAPTURE_FLUSH_SECONDS")

	# Abandoned in-memory sessions are purged after this many idle minutes
	session_idle_minutes: int = Field(default=60, validation_alias="SESSION_IDLE_MINUTES")

	log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

	# pydantic-settings v2 style config
	model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()
