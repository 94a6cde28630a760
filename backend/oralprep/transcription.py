"""
Transcription
=============

Turns recorded answers into text plus optional pronunciation metrics.

Two providers are supported, selected by ``TRANSCRIPTION_PROVIDER``:

- ``azure``: Azure Speech short-audio REST API with pronunciation assessment
  (accuracy, fluency, prosody and per-word error types).
- ``google``: Google Cloud Speech-to-Text; word confidence is used as a proxy
  for per-word pronunciation accuracy.

``Transcriber.transcribe`` never raises for provider trouble: failures come
back as a ``TranscriptionResult`` whose text is a sentinel, so one bad
recording turns into a zero-scored question instead of a failed session.
"""

from __future__ import annotations

import asyncio
import base64
import json
import logging
from typing import Any, Dict, List, Optional, Protocol

import httpx
from google.api_core.exceptions import GoogleAPIError, RetryError, ServiceUnavailable, TooManyRequests
from google.cloud import speech_v1p1beta1 as speech

from .errors import ConfigurationError, ProviderError, TransientProviderError
from .retry import with_retries
from .schemas import (
	FAILED_TRANSCRIPT,
	NO_SPEECH_TRANSCRIPT,
	LongPause,
	PronunciationMetrics,
	TranscriptionResult,
	WordAssessment,
)
from .settings import Settings

logger = logging.getLogger(__name__)

# Words scoring below this accuracy are reported as problematic
PROBLEMATIC_ACCURACY = 60
# Azure reports offsets and durations in 100ns ticks
_TICKS_PER_SECOND = 10_000_000


class SpeechProvider(Protocol):
	async def recognize(self, audio: bytes) -> TranscriptionResult:
		...


# ============================================================================
# PRONUNCIATION HELPERS
# ============================================================================

def detect_long_pauses(words: List[WordAssessment], threshold_seconds: float) -> List[LongPause]:
	"""Gaps between the end of one word and the start of the next that reach the threshold."""
	pauses: List[LongPause] = []
	for prev, curr in zip(words, words[1:]):
		if prev.offset_seconds is None or prev.duration_seconds is None or curr.offset_seconds is None:
			continue
		gap = curr.offset_seconds - (prev.offset_seconds + prev.duration_seconds)
		if gap >= threshold_seconds:
			pauses.append(LongPause(after_word=prev.word, before_word=curr.word, duration_seconds=round(gap, 1)))
	return pauses


def build_metrics(
	words: List[WordAssessment],
	threshold_seconds: float,
	*,
	accuracy: Optional[float] = None,
	fluency: Optional[float] = None,
	prosody: Optional[float] = None,
	pronunciation: Optional[float] = None,
) -> PronunciationMetrics:
	problematic = [w for w in words if w.error_type != "None" or w.accuracy_score < PROBLEMATIC_ACCURACY]
	pauses = detect_long_pauses(words, threshold_seconds)

	def _round(value: Optional[float]) -> Optional[int]:
		return int(round(value)) if value is not None else None

	return PronunciationMetrics(
		accuracy_score=_round(accuracy),
		fluency_score=_round(fluency),
		prosody_score=_round(prosody),
		pronunciation_score=_round(pronunciation),
		total_words=len(words),
		error_count=len(problematic),
		words=words,
		problematic_words=problematic,
		long_pauses=pauses,
		long_pause_count=len(pauses),
		total_long_pause_time=round(sum(p.duration_seconds for p in pauses), 1),
	)


# ============================================================================
# AZURE SPEECH (REST)
# ============================================================================

class AzureSpeechProvider:
	def __init__(self, settings: Settings, *, client: Optional[httpx.AsyncClient] = None) -> None:
		settings.require("azure_speech_key")
		self.api_key = settings.azure_speech_key
		self.language = settings.speech_language
		self.threshold = settings.pause_threshold_seconds
		self.endpoint = (
			f"https://{settings.azure_speech_region}.stt.speech.microsoft.com"
			"/speech/recognition/conversation/cognitiveservices/v1"
		)
		assessment = {
			"ReferenceText": "",
			"GradingSystem": "HundredMark",
			"Granularity": "Phoneme",
			"EnableMiscue": False,
			"EnableProsodyAssessment": True,
		}
		self._assessment_header = base64.b64encode(json.dumps(assessment).encode("utf-8")).decode("ascii")
		self._owns_client = client is None
		self._client = client or httpx.AsyncClient(timeout=settings.provider_timeout_seconds)

	async def recognize(self, audio: bytes) -> TranscriptionResult:
		headers = {
			"Ocp-Apim-Subscription-Key": self.api_key or "",
			"Content-Type": "audio/wav",
			"Pronunciation-Assessment": self._assessment_header,
		}
		params = {"language": self.language, "format": "detailed"}
		try:
			r = await self._client.post(self.endpoint, params=params, headers=headers, content=audio)
		except httpx.RequestError as net_err:
			raise TransientProviderError(f"network error: {net_err}") from net_err
		if r.status_code == 429 or r.status_code >= 500:
			raise TransientProviderError(f"Azure Speech HTTP {r.status_code}")
		if r.status_code >= 400:
			raise ProviderError(f"Azure Speech HTTP {r.status_code}: {r.text[:300]}")
		try:
			data = r.json()
		except ValueError as exc:
			raise ProviderError("Azure Speech returned non-JSON body") from exc
		return self.parse_response(data)

	def parse_response(self, data: Dict[str, Any]) -> TranscriptionResult:
		n_best = (data.get("NBest") or [None])[0]
		if not n_best:
			return TranscriptionResult(text=NO_SPEECH_TRANSCRIPT, no_speech=True)
		text = (n_best.get("Display") or n_best.get("Lexical") or "").strip()
		if not text:
			return TranscriptionResult(text=NO_SPEECH_TRANSCRIPT, no_speech=True)

		words: List[WordAssessment] = []
		for word in n_best.get("Words") or []:
			assessment = word.get("PronunciationAssessment") or {}
			offset = word.get("Offset")
			duration = word.get("Duration")
			words.append(
				WordAssessment(
					word=word.get("Word", ""),
					accuracy_score=assessment.get("AccuracyScore") or 0,
					error_type=assessment.get("ErrorType") or "None",
					offset_seconds=offset / _TICKS_PER_SECOND if offset is not None else None,
					duration_seconds=duration / _TICKS_PER_SECOND if duration is not None else None,
				)
			)
		pa = n_best.get("PronunciationAssessment") or {}
		metrics = build_metrics(
			words,
			self.threshold,
			accuracy=pa.get("AccuracyScore") or 0,
			fluency=pa.get("FluencyScore") or 0,
			prosody=pa.get("ProsodyScore") or 0,
			pronunciation=pa.get("PronScore") or 0,
		)
		return TranscriptionResult(text=text, confidence=n_best.get("Confidence"), pronunciation=metrics)

	async def aclose(self) -> None:
		if self._owns_client:
			await self._client.aclose()


# ============================================================================
# GOOGLE CLOUD SPEECH
# ============================================================================

class GoogleSpeechProvider:
	def __init__(self, settings: Settings, *, client: Any = None) -> None:
		settings.require("google_project")
		self.language = settings.speech_language
		self.threshold = settings.pause_threshold_seconds
		try:
			self._client = client or speech.SpeechClient()
		except Exception as e:
			raise ConfigurationError(f"Google Speech client unavailable: {e}") from e

	async def recognize(self, audio: bytes) -> TranscriptionResult:
		config = speech.RecognitionConfig(
			language_code=self.language,
			enable_automatic_punctuation=True,
			enable_word_time_offsets=True,
			enable_word_confidence=True,
			use_enhanced=True,
		)
		try:
			response = await asyncio.to_thread(
				self._client.recognize,
				config=config,
				audio=speech.RecognitionAudio(content=audio),
			)
		except (ServiceUnavailable, TooManyRequests, RetryError) as e:
			raise TransientProviderError(f"Google Speech unavailable: {e}") from e
		except GoogleAPIError as e:
			raise ProviderError(f"Google Speech API error: {e}") from e
		return self.parse_response(response)

	def parse_response(self, response: Any) -> TranscriptionResult:
		texts: List[str] = []
		confidences: List[float] = []
		words: List[WordAssessment] = []
		for result in response.results:
			if not result.alternatives:
				continue
			alternative = result.alternatives[0]
			if alternative.transcript.strip():
				texts.append(alternative.transcript.strip())
				confidences.append(alternative.confidence)
			for info in alternative.words:
				start = info.start_time.total_seconds()
				end = info.end_time.total_seconds()
				words.append(
					WordAssessment(
						word=info.word,
						accuracy_score=round(info.confidence * 100, 1),
						offset_seconds=start,
						duration_seconds=max(0.0, end - start),
					)
				)
		if not texts:
			return TranscriptionResult(text=NO_SPEECH_TRANSCRIPT, no_speech=True)
		accuracy = sum(w.accuracy_score for w in words) / len(words) if words else None
		metrics = build_metrics(words, self.threshold, accuracy=accuracy)
		return TranscriptionResult(
			text=" ".join(texts),
			confidence=sum(confidences) / len(confidences),
			pronunciation=metrics,
		)

	async def aclose(self) -> None:
		return None


# ============================================================================
# TRANSCRIBER
# ============================================================================

class Transcriber:
	def __init__(
		self,
		provider: SpeechProvider,
		*,
		timeout_seconds: float = 60.0,
		max_retries: int = 2,
		backoff_seconds: float = 1.0,
	) -> None:
		self.provider = provider
		self.timeout_seconds = timeout_seconds
		self.max_retries = max_retries
		self.backoff_seconds = backoff_seconds

	async def _recognize_once(self, audio: bytes) -> TranscriptionResult:
		try:
			return await asyncio.wait_for(self.provider.recognize(audio), timeout=self.timeout_seconds)
		except asyncio.TimeoutError as exc:
			raise TransientProviderError(f"timed out after {self.timeout_seconds}s") from exc

	async def transcribe(self, audio: bytes) -> TranscriptionResult:
		if not audio:
			return TranscriptionResult(text=FAILED_TRANSCRIPT, failed=True, error="empty audio")
		try:
			return await with_retries(
				lambda: self._recognize_once(audio),
				attempts=self.max_retries,
				backoff_seconds=self.backoff_seconds,
				label="transcription",
			)
		except ProviderError as exc:
			logger.warning("transcription failed: %s", exc)
			return TranscriptionResult(text=FAILED_TRANSCRIPT, failed=True, error=str(exc))

	async def aclose(self) -> None:
		close = getattr(self.provider, "aclose", None)
		if close is not None:
			await close()


def build_transcriber(settings: Settings) -> Transcriber:
	provider_name = (settings.transcription_provider or "").lower()
	if provider_name == "azure":
		provider: SpeechProvider = AzureSpeechProvider(settings)
	elif provider_name == "google":
		provider = GoogleSpeechProvider(settings)
	else:
		raise ConfigurationError(f"unknown TRANSCRIPTION_PROVIDER {settings.transcription_provider!r}")
	return Transcriber(
		provider,
		timeout_seconds=settings.provider_timeout_seconds,
		max_retries=settings.provider_max_retries,
		backoff_seconds=settings.provider_retry_backoff_seconds,
	)
