from __future__ import annotations

import json
from typing import Dict, List, Optional, Set, Union

import pytest

from oralprep import models  # noqa: F401  registers the ORM tables
from oralprep.db import Base, create_db_engine, create_session_factory
from oralprep.errors import ProviderError, StorageError
from oralprep.orchestrator import SubmissionOrchestrator
from oralprep.repository import PracticeRepository
from oralprep.schemas import (
	Criterion,
	PracticeSubmission,
	PronunciationMetrics,
	QuestionSubmission,
	SessionType,
	TranscriptionResult,
)
from oralprep.scorer import RUBRICS, SCORING_SYSTEM, CriterionScorer
from oralprep.settings import Settings
from oralprep.storage import RecordingStore, recording_key
from oralprep.transcription import Transcriber

DEFAULT_SCORES: Dict[Criterion, int] = {
	Criterion.TOPIC_DEVELOPMENT: 80,
	Criterion.VOCABULARY: 70,
	Criterion.GRAMMAR: 60,
	Criterion.FLUENCY: 90,
}


class FakeStore(RecordingStore):
	def __init__(self, fail_for: Optional[Set[str]] = None) -> None:
		self.objects: Dict[str, bytes] = {}
		self.fail_for = fail_for or set()

	async def put(self, owner_id, session_id, question_id, data):
		if question_id in self.fail_for:
			raise StorageError(f"bucket unavailable for {question_id}")
		key = recording_key(owner_id, session_id, question_id)
		self.objects[key] = data
		return key

	async def get(self, handle):
		return f"https://recordings.test/{handle}?signature=abc"

	async def delete(self, handle):
		self.objects.pop(handle, None)

	async def delete_prefix(self, prefix):
		keys = [k for k in self.objects if k.startswith(prefix)]
		for key in keys:
			del self.objects[key]
		return len(keys)


class FakeSpeech:
	"""Speech provider scripted by audio payload."""

	def __init__(self, script: Optional[Dict[bytes, Union[TranscriptionResult, Exception]]] = None) -> None:
		self.script = script or {}
		self.calls: List[bytes] = []
		self.closed = False

	async def recognize(self, audio: bytes) -> TranscriptionResult:
		self.calls.append(audio)
		outcome = self.script.get(audio)
		if isinstance(outcome, Exception):
			raise outcome
		if outcome is not None:
			return outcome
		return TranscriptionResult(
			text=f"My answer is {audio.decode()} because I practise every day",
			confidence=0.9,
			pronunciation=PronunciationMetrics(accuracy_score=85, fluency_score=80, prosody_score=75, total_words=9),
		)

	async def aclose(self) -> None:
		self.closed = True


class FakeReasoning:
	"""Reasoning provider that answers scoring and feedback prompts with canned JSON."""

	def __init__(
		self,
		scores: Optional[Dict[Criterion, int]] = None,
		fail_scoring: Optional[Set[Criterion]] = None,
		fail_feedback: bool = False,
	) -> None:
		self.scores = dict(scores or DEFAULT_SCORES)
		self.fail_scoring = fail_scoring or set()
		self.fail_feedback = fail_feedback
		self.calls: List[Dict[str, str]] = []

	@staticmethod
	def criterion_of(prompt: str) -> Criterion:
		for criterion, rubric in RUBRICS.items():
			if rubric in prompt:
				return criterion
		raise AssertionError("prompt carries no rubric")

	async def complete(self, system, prompt, *, model=None):
		criterion = self.criterion_of(prompt)
		kind = "score" if system == SCORING_SYSTEM else "feedback"
		self.calls.append({"kind": kind, "criterion": criterion.value, "prompt": prompt})
		if kind == "score":
			if criterion in self.fail_scoring:
				raise ProviderError("HTTP 400: bad request")
			score = self.scores[criterion]
			return json.dumps({"score": score, "range": f"{score - 10}-{score + 10}", "justification": "ok"})
		if self.fail_feedback:
			raise ProviderError("HTTP 400: bad request")
		return "```json\n" + json.dumps({
			"feedback": f"Good {criterion.value}.",
			"strengths": [f"strong {criterion.value}", "clear voice"],
			"improvements": [f"work on {criterion.value}"],
		}) + "\n```"


def make_submission(
	session_type: SessionType = SessionType.MODULE_A,
	audios: Optional[List[Optional[bytes]]] = None,
	owner_id: str = "student-1",
) -> PracticeSubmission:
	audios = audios if audios is not None else [b"q1", b"q2", b"q3"]
	return PracticeSubmission(
		owner_id=owner_id,
		type=session_type,
		questions=[
			QuestionSubmission(
				question_id=f"q{index + 1}",
				question_text=f"Question number {index + 1}?",
				duration_seconds=45,
				video_transcript="The video talks about recycling." if session_type != SessionType.MODULE_A else None,
				audio=audio,
			)
			for index, audio in enumerate(audios)
		],
	)


@pytest.fixture
def settings() -> Settings:
	return Settings(
		_env_file=None,
		DATABASE_URL="sqlite://",
		OPENAI_API_KEY="test-key",
		AZURE_SPEECH_KEY="speech-key",
		RECORDINGS_BUCKET="recordings",
		PROVIDER_RETRY_BACKOFF_SECONDS=0,
	)


@pytest.fixture
def repository(settings) -> PracticeRepository:
	engine = create_db_engine(settings)
	Base.metadata.create_all(bind=engine)
	return PracticeRepository(create_session_factory(engine))


@pytest.fixture
def store() -> FakeStore:
	return FakeStore()


@pytest.fixture
def speech() -> FakeSpeech:
	return FakeSpeech()


@pytest.fixture
def reasoning() -> FakeReasoning:
	return FakeReasoning()


@pytest.fixture
def orchestrator(repository, store, speech, reasoning) -> SubmissionOrchestrator:
	return SubmissionOrchestrator(
		repository,
		store,
		Transcriber(speech, timeout_seconds=5, max_retries=1, backoff_seconds=0),
		CriterionScorer(reasoning),
		upload_concurrency=2,
		transcription_concurrency=1,
		scoring_concurrency=2,
		storage_timeout_seconds=5,
		retry_backoff_seconds=0,
	)
