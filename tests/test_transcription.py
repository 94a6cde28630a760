import asyncio
from datetime import timedelta
from types import SimpleNamespace

import httpx
import pytest

from oralprep.errors import ConfigurationError, ProviderError, TransientProviderError
from oralprep.schemas import FAILED_TRANSCRIPT, NO_SPEECH_TRANSCRIPT, TranscriptionResult, WordAssessment
from oralprep.settings import Settings
from oralprep.transcription import (
	AzureSpeechProvider,
	GoogleSpeechProvider,
	Transcriber,
	build_transcriber,
	detect_long_pauses,
)

from conftest import FakeSpeech

TICKS = 10_000_000


def _azure_word(word, offset_s, duration_s, accuracy, error_type="None"):
	return {
		"Word": word,
		"Offset": int(offset_s * TICKS),
		"Duration": int(duration_s * TICKS),
		"PronunciationAssessment": {"AccuracyScore": accuracy, "ErrorType": error_type},
	}


AZURE_RESPONSE = {
	"RecognitionStatus": "Success",
	"NBest": [
		{
			"Confidence": 0.93,
			"Lexical": "i like cats because",
			"Display": "I like cats. Because",
			"PronunciationAssessment": {"AccuracyScore": 88.4, "FluencyScore": 76, "ProsodyScore": 70.2, "PronScore": 79.6},
			"Words": [
				_azure_word("i", 0.1, 0.2, 95),
				_azure_word("like", 0.4, 0.3, 90),
				_azure_word("cats", 0.8, 0.4, 45),
				_azure_word("because", 4.0, 0.5, 70, "Mispronunciation"),
			],
		}
	],
}


def _word(word, offset, duration):
	return WordAssessment(word=word, accuracy_score=90, offset_seconds=offset, duration_seconds=duration)


class TestPauseDetection:
	def test_gap_at_threshold_counts(self):
		words = [_word("well", 0.5, 0.5), _word("maybe", 3.5, 0.4), _word("yes", 4.3, 0.3)]
		pauses = detect_long_pauses(words, 2.5)
		assert len(pauses) == 1
		assert pauses[0].after_word == "well"
		assert pauses[0].before_word == "maybe"
		assert pauses[0].duration_seconds == 2.5

	def test_short_gaps_are_ignored(self):
		words = [_word("well", 0.0, 0.5), _word("maybe", 2.9, 0.4)]
		assert detect_long_pauses(words, 2.5) == []

	def test_words_without_timing_are_skipped(self):
		words = [WordAssessment(word="hmm"), _word("maybe", 10.0, 0.4)]
		assert detect_long_pauses(words, 2.5) == []


class TestAzureSpeechProvider:
	def test_requires_key(self):
		with pytest.raises(ConfigurationError) as info:
			AzureSpeechProvider(Settings(_env_file=None, AZURE_SPEECH_KEY=""))
		assert "AZURE_SPEECH_KEY" in str(info.value)

	def test_parse_detailed_response(self, settings):
		result = AzureSpeechProvider(settings, client=httpx.AsyncClient()).parse_response(AZURE_RESPONSE)

		assert result.usable
		assert result.text == "I like cats. Because"
		assert result.confidence == 0.93
		metrics = result.pronunciation
		assert metrics.accuracy_score == 88
		assert metrics.fluency_score == 76
		assert metrics.prosody_score == 70
		assert metrics.pronunciation_score == 80
		assert metrics.total_words == 4
		assert [w.word for w in metrics.problematic_words] == ["cats", "because"]
		assert metrics.error_count == 2
		assert metrics.long_pause_count == 1
		assert metrics.long_pauses[0].duration_seconds == 2.8
		assert metrics.long_pauses[0].after_word == "cats"

	@pytest.mark.parametrize(
		"data",
		[{"RecognitionStatus": "NoMatch"}, {"NBest": []}, {"NBest": [{"Display": "  ", "Lexical": ""}]}],
	)
	def test_no_speech(self, settings, data):
		result = AzureSpeechProvider(settings, client=httpx.AsyncClient()).parse_response(data)
		assert result.text == NO_SPEECH_TRANSCRIPT
		assert result.no_speech
		assert not result.usable

	def test_transient_errors_are_retried(self, settings):
		requests = []

		def handler(request: httpx.Request) -> httpx.Response:
			requests.append(request)
			if len(requests) == 1:
				return httpx.Response(503, text="busy")
			return httpx.Response(200, json=AZURE_RESPONSE)

		async def go():
			async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
				transcriber = Transcriber(AzureSpeechProvider(settings, client=client), max_retries=2, backoff_seconds=0)
				return await transcriber.transcribe(b"RIFF....")

		result = asyncio.run(go())
		assert result.text == "I like cats. Because"
		assert len(requests) == 2
		assert requests[0].url.params["format"] == "detailed"
		assert requests[0].url.params["language"] == "en-US"
		assert requests[0].headers["Ocp-Apim-Subscription-Key"] == "speech-key"
		assert "Pronunciation-Assessment" in requests[0].headers

	def test_client_error_becomes_failure_sentinel(self, settings):
		calls = []

		def handler(request):
			calls.append(request)
			return httpx.Response(401, text="bad key")

		async def go():
			async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
				transcriber = Transcriber(AzureSpeechProvider(settings, client=client), max_retries=2, backoff_seconds=0)
				return await transcriber.transcribe(b"RIFF....")

		result = asyncio.run(go())
		assert result.failed
		assert result.text == FAILED_TRANSCRIPT
		assert len(calls) == 1


class TestGoogleSpeechProvider:
	def _settings(self):
		return Settings(_env_file=None, GOOGLE_CLOUD_PROJECT="demo-project")

	def test_requires_project(self):
		with pytest.raises(ConfigurationError):
			GoogleSpeechProvider(Settings(_env_file=None, GOOGLE_CLOUD_PROJECT=""), client=object())

	def test_parse_response(self):
		def word(text, confidence, start, end):
			return SimpleNamespace(
				word=text,
				confidence=confidence,
				start_time=timedelta(seconds=start),
				end_time=timedelta(seconds=end),
			)

		response = SimpleNamespace(
			results=[
				SimpleNamespace(
					alternatives=[
						SimpleNamespace(
							transcript="hello there",
							confidence=0.8,
							words=[word("hello", 0.95, 0.1, 0.5), word("there", 0.4, 3.5, 3.9)],
						)
					]
				),
				SimpleNamespace(alternatives=[]),
			]
		)
		result = GoogleSpeechProvider(self._settings(), client=object()).parse_response(response)

		assert result.text == "hello there"
		assert result.confidence == 0.8
		assert [w.word for w in result.pronunciation.problematic_words] == ["there"]
		assert result.pronunciation.long_pause_count == 1
		assert result.pronunciation.accuracy_score == 68

	def test_empty_results_mean_no_speech(self):
		result = GoogleSpeechProvider(self._settings(), client=object()).parse_response(SimpleNamespace(results=[]))
		assert result.no_speech
		assert result.text == NO_SPEECH_TRANSCRIPT


class TestTranscriber:
	def test_empty_audio_fails_without_calling_provider(self):
		speech = FakeSpeech()
		result = asyncio.run(Transcriber(speech).transcribe(b""))
		assert result.failed
		assert result.text == FAILED_TRANSCRIPT
		assert speech.calls == []

	def test_hard_provider_error_is_not_retried(self):
		speech = FakeSpeech({b"a": ProviderError("HTTP 400")})
		result = asyncio.run(Transcriber(speech, max_retries=3, backoff_seconds=0).transcribe(b"a"))
		assert result.failed
		assert "HTTP 400" in result.error
		assert len(speech.calls) == 1

	def test_transient_errors_give_up_after_retries(self):
		speech = FakeSpeech({b"a": TransientProviderError("HTTP 429")})
		result = asyncio.run(Transcriber(speech, max_retries=2, backoff_seconds=0).transcribe(b"a"))
		assert result.failed
		assert len(speech.calls) == 3

	def test_timeout_is_retried(self):
		class SlowThenFast:
			def __init__(self):
				self.calls = 0

			async def recognize(self, audio):
				self.calls += 1
				if self.calls == 1:
					await asyncio.sleep(1)
				return TranscriptionResult(text="finally")

		provider = SlowThenFast()
		result = asyncio.run(Transcriber(provider, timeout_seconds=0.05, max_retries=1, backoff_seconds=0).transcribe(b"a"))
		assert result.text == "finally"
		assert provider.calls == 2


class TestBuildTranscriber:
	def test_unknown_provider(self):
		with pytest.raises(ConfigurationError):
			build_transcriber(Settings(_env_file=None, TRANSCRIPTION_PROVIDER="whisper"))

	def test_azure_provider(self, settings):
		transcriber = build_transcriber(settings)
		assert isinstance(transcriber.provider, AzureSpeechProvider)
		assert transcriber.max_retries == settings.provider_max_retries
		asyncio.run(transcriber.aclose())
