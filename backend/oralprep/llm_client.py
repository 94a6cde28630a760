from __future__ import annotations

import asyncio
from typing import Any, Dict, List, Optional

import httpx

from .errors import ProviderError, TransientProviderError
from .retry import with_retries
from .settings import Settings

_TRANSIENT_STATUS = {408, 409, 425, 429, 500, 502, 503, 504}


class ReasoningClient:
	"""Chat-completions client for the scoring/feedback reasoning provider."""

	def __init__(self, settings: Settings, *, client: Optional[httpx.AsyncClient] = None) -> None:
		settings.require("openai_api_key")
		self.api_key = settings.openai_api_key
		self.base_url = settings.openai_base_url.rstrip("/")
		self.model = settings.scoring_model
		self.feedback_model = settings.feedback_model or settings.scoring_model
		self.temperature = settings.scoring_temperature
		self.max_retries = settings.provider_max_retries
		self.backoff_seconds = settings.provider_retry_backoff_seconds
		self.timeout_seconds = settings.provider_timeout_seconds
		self._owns_client = client is None
		self._client = client or httpx.AsyncClient(timeout=settings.provider_timeout_seconds)

	async def complete(self, system: str, prompt: str, *, model: Optional[str] = None) -> str:
		"""Return the raw text of the model reply; JSON output is requested but not parsed here."""
		messages: List[Dict[str, str]] = [
			{"role": "system", "content": system},
			{"role": "user", "content": prompt},
		]
		payload: Dict[str, Any] = {
			"model": model or self.model,
			"messages": messages,
			"temperature": self.temperature,
			"response_format": {"type": "json_object"},
		}
		return await with_retries(
			lambda: self._post_once(payload),
			attempts=self.max_retries,
			backoff_seconds=self.backoff_seconds,
			label=f"reasoning call ({payload['model']})",
		)

	async def _post_once(self, payload: Dict[str, Any]) -> str:
		try:
			return await asyncio.wait_for(self._post(payload), timeout=self.timeout_seconds)
		except asyncio.TimeoutError as exc:
			raise TransientProviderError(f"timed out after {self.timeout_seconds}s") from exc

	async def _post(self, payload: Dict[str, Any]) -> str:
		headers = {
			"Authorization": f"Bearer {self.api_key}",
			"Content-Type": "application/json",
		}
		try:
			r = await self._client.post(f"{self.base_url}/chat/completions", headers=headers, json=payload)
		except httpx.RequestError as net_err:
			raise TransientProviderError(f"network error: {net_err}") from net_err
		if r.status_code in _TRANSIENT_STATUS:
			raise TransientProviderError(f"HTTP {r.status_code}")
		if r.status_code >= 400:
			raise ProviderError(f"HTTP {r.status_code}: {r.text[:300]}")
		try:
			data = r.json()
			return data["choices"][0]["message"]["content"]
		except Exception as exc:
			raise ProviderError(f"Unexpected reasoning provider response: {r.text[:300]}") from exc

	async def aclose(self) -> None:
		if self._owns_client:
			await self._client.aclose()
