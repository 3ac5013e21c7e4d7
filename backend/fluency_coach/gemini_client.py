from __future__ import annotations
import httpx
import logging
from typing import Any, Dict, List, Optional
from .errors import CoachServiceError, ConfigurationError
from .settings import Settings

logger = logging.getLogger(__name__)


class GeminiClient:
	def __init__(
		self,
		config: Settings,
		*,
		model: Optional[str] = None,
		http_client: Optional[httpx.AsyncClient] = None,
	) -> None:
		if not config.gemini_api_key:
			raise ConfigurationError("GEMINI_API_KEY is not configured")
		self.api_key = config.gemini_api_key
		self.model = model or config.gemini_model
		self.provider = config.gemini_provider
		self._region = config.vertex_region
		self._project = config.vertex_project or "placeholder-project"
		# Vertex takes the key as a header, AI Studio as a query parameter
		self._auth_in_query = self.provider != "vertex"
		self._client = http_client or httpx.AsyncClient(timeout=config.gemini_timeout_seconds)

	def url_for(self, model: str) -> str:
		if self.provider == "vertex":
			region = self._region
			return (
				f"https://{region}-aiplatform.googleapis.com/v1/projects/{self._project}/locations/{region}/publishers/google/models/{model}:generateContent"
			)
		return f"https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"

	async def generate(
		self,
		prompt: str,
		*,
		model: Optional[str] = None,
		system_instruction: Optional[str] = None,
		response_schema: Optional[Dict[str, Any]] = None,
	) -> str:
		payload: Dict[str, Any] = {"contents": [{"parts": [{"text": prompt}]}]}
		if system_instruction:
			payload["systemInstruction"] = {"parts": [{"text": system_instruction}]}
		if response_schema is not None:
			payload["generationConfig"] = {
				"responseMimeType": "application/json",
				"responseSchema": response_schema,
			}
		parts = await self._post_payload(model or self.model, payload)
		for part in parts:
			text = part.get("text")
			if isinstance(text, str):
				return text
		raise CoachServiceError("Gemini response contained no text")

	async def generate_parts(
		self,
		parts: List[Dict[str, Any]],
		*,
		model: Optional[str] = None,
		generation_config: Optional[Dict[str, Any]] = None,
	) -> List[Dict[str, Any]]:
		payload: Dict[str, Any] = {"contents": [{"role": "user", "parts": parts}]}
		if generation_config:
			payload["generationConfig"] = generation_config
		return await self._post_payload(model or self.model, payload)

	async def _post_payload(self, model: str, payload: Dict[str, Any]) -> List[Dict[str, Any]]:
		params: Dict[str, Any] = {}
		headers: Dict[str, str] = {}
		if self._auth_in_query:
			params["key"] = self.api_key
		else:
			headers["x-goog-api-key"] = self.api_key
		try:
			r = await self._client.post(self.url_for(model), params=params, headers=headers, json=payload)
			r.raise_for_status()
		except httpx.HTTPStatusError as http_err:
			logger.warning("Gemini %s returned HTTP %s", model, http_err.response.status_code)
			raise CoachServiceError(f"Gemini request failed with HTTP {http_err.response.status_code}") from http_err
		except httpx.RequestError as net_err:
			logger.warning("Gemini %s unreachable: %s", model, net_err)
			raise CoachServiceError(f"Could not reach Gemini: {net_err}") from net_err
		try:
			data = r.json()
			return data["candidates"][0]["content"]["parts"]
		except Exception as err:
			raise CoachServiceError(f"Unexpected Gemini response: {r.text[:200]}") from err

	async def aclose(self) -> None:
		await self._client.aclose()
