"""
Submission orchestrator
=======================

Drives one submitted practice session through

    created -> uploading -> transcribing -> scoring -> aggregating -> completed | failed

Failures local to one question (upload, transcription, scoring) turn that
question into an ``Unscored`` result worth zero and the session carries on.
Anything else (the session row cannot be written, a bug) fails the session
with the partial per-question results left in place.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Set, TypeVar

from .aggregation import aggregate_question, aggregate_session
from .cleanup import erase_owner_data
from .errors import ProviderError, SessionNotFound, StorageError
from .repository import PracticeRepository
from .schemas import (
	CriterionResult,
	ModuleType,
	PracticeSubmission,
	ProcessingStage,
	QuestionOutcome,
	QuestionResult,
	QuestionStage,
	QuestionSubmission,
	Scored,
	SessionStatusView,
	TranscriptionResult,
	Unscored,
	UnscoredReason,
)
from .scorer import CriterionScorer
from .storage import RecordingStore, check_owner_id
from .transcription import Transcriber
from .weights import applicable_criteria, resolve_module

logger = logging.getLogger(__name__)

T = TypeVar("T")


class _Question:
	"""In-flight state of one question while its session is processed."""

	def __init__(self, submission: QuestionSubmission, module: ModuleType, order_index: int) -> None:
		self.submission = submission
		self.module = module
		self.order_index = order_index
		self.handle: Optional[str] = None
		self.transcription: Optional[TranscriptionResult] = None
		self.result: Optional[QuestionResult] = None

	@property
	def question_id(self) -> str:
		return self.submission.question_id

	def outcome(self) -> QuestionOutcome:
		result = self.result or Unscored(reason=UnscoredReason.TRANSCRIPTION_FAILED)
		return QuestionOutcome(
			question_id=self.question_id,
			module=self.module,
			order_index=self.order_index,
			result=result,
		)


class SubmissionOrchestrator:
	def __init__(
		self,
		repository: PracticeRepository,
		store: RecordingStore,
		transcriber: Transcriber,
		scorer: CriterionScorer,
		*,
		upload_concurrency: int = 4,
		transcription_concurrency: int = 1,
		scoring_concurrency: int = 2,
		storage_timeout_seconds: float = 60.0,
		upload_retries: int = 2,
		retry_backoff_seconds: float = 1.0,
	) -> None:
		self.repository = repository
		self.store = store
		self.transcriber = transcriber
		self.scorer = scorer
		self.upload_concurrency = max(1, upload_concurrency)
		self.transcription_concurrency = max(1, transcription_concurrency)
		self.scoring_concurrency = max(1, scoring_concurrency)
		self.storage_timeout_seconds = storage_timeout_seconds
		self.upload_retries = max(0, upload_retries)
		self.retry_backoff_seconds = retry_backoff_seconds
		self._tasks: Set[asyncio.Task] = set()

	# ------------------------------------------------------------------
	# Public API
	# ------------------------------------------------------------------

	async def submit(self, submission: PracticeSubmission) -> str:
		"""Persist the session and start processing it in the background.

		Raises ValueError for an invalid submission and PipelineError if the
		session row cannot be created; nothing is persisted in either case.
		"""
		_validate(submission)
		session_id = await self._db(self.repository.create_practice, submission)
		logger.info(
			"practice %s submitted by %s (%s, %d questions)",
			session_id, submission.owner_id, submission.type.value, len(submission.questions),
		)
		task = asyncio.create_task(self.process(session_id, submission), name=f"practice-{session_id}")
		self._tasks.add(task)
		task.add_done_callback(self._tasks.discard)
		return session_id

	def get_status(self, session_id: str) -> SessionStatusView:
		return self.repository.get_status(session_id)

	async def recording_url(self, session_id: str, question_id: str) -> Optional[str]:
		question = self.repository.get_question(session_id, question_id)
		if question is None:
			raise SessionNotFound(f"{session_id}/{question_id}")
		if not question.recording_ref:
			return None
		return await self.store.get(question.recording_ref)

	async def erase_owner(self, owner_id: str) -> Dict[str, int]:
		return await erase_owner_data(self.repository, self.store, owner_id)

	async def wait_idle(self) -> None:
		"""Wait for every in-flight session to reach a terminal state."""
		while self._tasks:
			await asyncio.gather(*list(self._tasks), return_exceptions=True)

	# ------------------------------------------------------------------
	# Pipeline
	# ------------------------------------------------------------------

	async def _db(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
		"""Run a repository call on a worker thread.

		A cancelled caller still waits for the call it started to finish.
		"""
		call = asyncio.ensure_future(asyncio.to_thread(fn, *args, **kwargs))
		try:
			return await asyncio.shield(call)
		except asyncio.CancelledError:
			await asyncio.wait({call})
			raise

	async def process(self, session_id: str, submission: PracticeSubmission) -> None:
		try:
			await self._run(session_id, submission)
		except Exception as exc:
			logger.exception("practice %s failed", session_id)
			await self._fail(session_id, exc)

	async def _fail(self, session_id: str, exc: BaseException) -> None:
		try:
			await self._db(
				self.repository.set_stage, session_id, ProcessingStage.FAILED, error=f"{type(exc).__name__}: {exc}"
			)
		except Exception:
			logger.exception("could not mark practice %s as failed", session_id)

	async def _run(self, session_id: str, submission: PracticeSubmission) -> None:
		questions = [
			_Question(q, resolve_module(submission.type, index, q.module), index)
			for index, q in enumerate(submission.questions)
		]

		await self._db(self.repository.set_stage, session_id, ProcessingStage.UPLOADING)
		await self._bounded(
			[self._upload(session_id, submission.owner_id, q) for q in questions],
			self.upload_concurrency,
		)

		await self._db(self.repository.set_stage, session_id, ProcessingStage.TRANSCRIBING)
		await self._bounded(
			[self._transcribe(session_id, q) for q in questions if q.handle is not None],
			self.transcription_concurrency,
		)

		await self._db(self.repository.set_stage, session_id, ProcessingStage.SCORING)
		await self._bounded(
			[
				self._score(session_id, q, q.transcription)
				for q in questions
				if q.result is None and q.transcription is not None
			],
			self.scoring_concurrency,
		)

		await self._db(self.repository.set_stage, session_id, ProcessingStage.AGGREGATING)
		totals = aggregate_session([q.outcome() for q in questions], submission.type)
		await self._db(self.repository.save_totals, session_id, totals)
		await self._db(self.repository.set_stage, session_id, ProcessingStage.COMPLETED)
		unscored = sum(1 for q in questions if not isinstance(q.result, Scored))
		logger.info("practice %s completed: total=%d, unscored questions=%d", session_id, totals.total, unscored)

	@staticmethod
	async def _bounded(coros: List, limit: int) -> None:
		"""Run ``coros`` with at most ``limit`` in flight.

		The first error cancels the others and is re-raised only once every
		one of them has stopped, so nothing writes to a session after it failed.
		"""
		semaphore = asyncio.Semaphore(limit)

		async def _guarded(coro):
			async with semaphore:
				await coro

		tasks = [asyncio.ensure_future(_guarded(c)) for c in coros]
		if not tasks:
			return
		try:
			await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
		finally:
			for task in tasks:
				task.cancel()
			await asyncio.gather(*tasks, return_exceptions=True)
			# coroutines cancelled before they started
			for coro in coros:
				coro.close()
		for task in tasks:
			if not task.cancelled() and task.exception() is not None:
				raise task.exception()

	async def _unscored(self, session_id: str, question: _Question, reason: UnscoredReason, **fields) -> None:
		question.result = Unscored(reason=reason)
		await self._db(self.repository.mark_unscored, session_id, question.question_id, reason, **fields)

	async def _upload(self, session_id: str, owner_id: str, question: _Question) -> None:
		audio = question.submission.audio
		if not audio:
			await self._unscored(session_id, question, UnscoredReason.NO_RECORDING)
			return
		handle = None
		for attempt in range(self.upload_retries + 1):
			try:
				handle = await asyncio.wait_for(
					self.store.put(owner_id, session_id, question.question_id, audio),
					timeout=self.storage_timeout_seconds,
				)
				break
			except (StorageError, asyncio.TimeoutError) as exc:
				logger.warning(
					"upload of %s/%s failed (attempt %d/%d): %s",
					session_id, question.question_id, attempt + 1, self.upload_retries + 1, exc,
				)
				if attempt < self.upload_retries:
					await asyncio.sleep(self.retry_backoff_seconds * (attempt + 1))
		if handle is None:
			await self._unscored(session_id, question, UnscoredReason.UPLOAD_FAILED)
			return
		question.handle = handle
		await self._db(
			self.repository.update_question,
			session_id,
			question.question_id,
			QuestionStage.UPLOADED,
			recording_ref=handle,
			transcript=None,
			total_score=0,
		)

	async def _transcribe(self, session_id: str, question: _Question) -> None:
		result = await self.transcriber.transcribe(question.submission.audio or b"")
		pronunciation = result.pronunciation.model_dump() if result.pronunciation else None
		if not result.usable:
			reason = UnscoredReason.NO_SPEECH if result.no_speech else UnscoredReason.TRANSCRIPTION_FAILED
			await self._unscored(session_id, question, reason, transcript=result.text, pronunciation=pronunciation)
			return
		question.transcription = result
		await self._db(
			self.repository.update_question,
			session_id,
			question.question_id,
			QuestionStage.TRANSCRIBED,
			transcript=result.text,
			pronunciation=pronunciation,
		)

	async def _score(self, session_id: str, question: _Question, transcription: TranscriptionResult) -> None:
		criteria = [criterion for criterion, _ in applicable_criteria(question.module)]
		outcomes = await asyncio.gather(
			*(
				self.scorer.score(
					criterion,
					question.module,
					question.submission.question_text,
					transcription.text,
					pronunciation=transcription.pronunciation,
					video_transcript=question.submission.video_transcript,
				)
				for criterion in criteria
			),
			return_exceptions=True,
		)
		results: List[CriterionResult] = []
		for criterion, outcome in zip(criteria, outcomes):
			if isinstance(outcome, ProviderError):
				logger.warning("scoring %s of %s/%s failed: %s", criterion.value, session_id, question.question_id, outcome)
				await self._unscored(session_id, question, UnscoredReason.SCORING_FAILED)
				return
			if isinstance(outcome, BaseException):
				raise outcome
			results.append(outcome)

		scored = aggregate_question(question.module, transcription.text, results)
		question.result = scored
		if not isinstance(scored, Scored):
			await self._db(self.repository.mark_unscored, session_id, question.question_id, scored.reason)
			return
		await self._db(
			self.repository.update_question,
			session_id,
			question.question_id,
			QuestionStage.SCORED,
			scores={r.criterion.value: r.score for r in scored.criteria},
			feedback={r.criterion.value: r.model_dump(exclude={"criterion"}) for r in scored.criteria},
			total_score=scored.total,
		)


def _validate(submission: PracticeSubmission) -> None:
	check_owner_id(submission.owner_id)
	seen: Dict[str, int] = {}
	for index, question in enumerate(submission.questions):
		if question.question_id in seen:
			raise ValueError(f"duplicate question_id {question.question_id!r}")
		seen[question.question_id] = index
		# resolve_module rejects modules that contradict the session type
		resolve_module(submission.type, index, question.module)
