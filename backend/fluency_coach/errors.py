"""Error taxonomy shared by the coaching service, capture layer and session."""


class CoachError(Exception):
	"""Base class for every error raised by the coach."""


class ConfigurationError(CoachError):
	"""Required configuration (such as the Gemini API key) is missing."""


class InputValidationError(CoachError):
	"""User input was empty or otherwise unusable; no request is made."""


class CoachServiceError(CoachError):
	"""A call to the generative service failed or returned an unusable payload."""


class GenerationError(CoachServiceError):
	pass


class EvaluationError(CoachServiceError):
	pass


class ReportError(CoachServiceError):
	pass


class SynthesisError(CoachServiceError):
	pass


class ImageGenerationError(CoachServiceError):
	pass


class PermissionDeniedError(CoachError):
	"""Microphone access was refused or no input device is available."""


class TransportError(CoachError):
	"""The live transcription channel failed to open, errored or closed."""


class InvalidTransitionError(CoachError):
	"""The requested action is not valid in the session's current phase."""


class SessionBusyError(CoachError):
	"""Another action for this session is still in flight."""
