from __future__ import annotations

import functools
import logging
import threading
from datetime import datetime
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from .errors import PipelineError, SessionNotFound
from .models import Practice, PracticeQuestion
from .schemas import (
	ModuleType,
	PracticeSubmission,
	ProcessingStage,
	QuestionStage,
	QuestionStatusView,
	SessionStatusView,
	SessionTotals,
	SessionType,
	SessionStatus,
	UnscoredReason,
)
from .state_machine import InvalidTransition, ProcessingStateMachine, can_question_transition, status_for
from .weights import resolve_module

logger = logging.getLogger(__name__)


def _serialized(method):
	@functools.wraps(method)
	def wrapper(self, *args, **kwargs):
		with self._lock:
			return method(self, *args, **kwargs)

	return wrapper


class PracticeRepository:
	"""Session/question persistence with field-level patches.

	Every write is its own short transaction so that a polling client sees
	per-question progress as soon as it happens.

	Calls are serialized so the repository can be shared by worker threads, even
	over a single in-memory SQLite connection.
	"""

	def __init__(self, session_factory: sessionmaker) -> None:
		self._session_factory = session_factory
		self._lock = threading.RLock()

	def _db(self) -> Session:
		return self._session_factory()

	# ------------------------------------------------------------------
	# Creation
	# ------------------------------------------------------------------

	@_serialized
	def create_practice(self, submission: PracticeSubmission) -> str:
		"""Persist the session row and one pending row per question in one transaction."""
		db = self._db()
		try:
			practice = Practice(
				owner_id=submission.owner_id,
				type=submission.type.value,
				status=SessionStatus.PENDING.value,
				processing_stage=ProcessingStage.CREATED.value,
				context=submission.context,
				started_at=submission.started_at or datetime.utcnow(),
			)
			db.add(practice)
			db.flush()
			for index, question in enumerate(submission.questions):
				module = resolve_module(submission.type, index, question.module)
				db.add(
					PracticeQuestion(
						practice_id=practice.id,
						question_id=question.question_id,
						question_text=question.question_text,
						order_index=index,
						module=module.value,
						duration_seconds=question.duration_seconds,
						video_transcript=question.video_transcript,
						stage=QuestionStage.PENDING.value,
					)
				)
			db.commit()
			return practice.id
		except SQLAlchemyError as e:
			db.rollback()
			raise PipelineError(f"could not create practice session: {e}") from e
		finally:
			db.close()

	# ------------------------------------------------------------------
	# Updates
	# ------------------------------------------------------------------

	@_serialized
	def set_stage(self, practice_id: str, stage: ProcessingStage, *, error: Optional[str] = None) -> None:
		db = self._db()
		try:
			practice = db.get(Practice, practice_id)
			if practice is None:
				raise SessionNotFound(practice_id)
			machine = ProcessingStateMachine(ProcessingStage(practice.processing_stage))
			machine.transition(stage)
			practice.processing_stage = stage.value
			practice.status = status_for(stage).value
			if stage == ProcessingStage.FAILED:
				practice.processing_error = (error or "unknown error")[:2000]
			if stage in (ProcessingStage.COMPLETED, ProcessingStage.FAILED):
				practice.completed_at = datetime.utcnow()
			db.commit()
		except InvalidTransition:
			db.rollback()
			raise
		finally:
			db.close()

	@_serialized
	def update_question(self, practice_id: str, question_id: str, stage: QuestionStage, **fields: Any) -> bool:
		"""Patch a question row and move it to ``stage``.

		Returns False (and writes nothing) if the row is already at or past
		that stage, so a late write can never overwrite newer results.
		"""
		db = self._db()
		try:
			row = (
				db.query(PracticeQuestion)
				.filter(PracticeQuestion.practice_id == practice_id, PracticeQuestion.question_id == question_id)
				.first()
			)
			if row is None:
				raise SessionNotFound(practice_id)
			current = QuestionStage(row.stage)
			if not can_question_transition(current, stage):
				logger.warning(
					"ignoring %s update for question %s of %s (already %s)",
					stage.value, question_id, practice_id, current.value,
				)
				return False
			for name, value in fields.items():
				if not hasattr(PracticeQuestion, name):
					raise AttributeError(f"PracticeQuestion has no column {name}")
				setattr(row, name, value)
			row.stage = stage.value
			db.commit()
			return True
		finally:
			db.close()

	@_serialized
	def mark_unscored(self, practice_id: str, question_id: str, reason: UnscoredReason, **fields: Any) -> bool:
		return self.update_question(
			practice_id,
			question_id,
			QuestionStage.UNSCORED,
			unscored_reason=reason.value,
			scores=None,
			feedback=None,
			total_score=0,
			**fields,
		)

	@_serialized
	def save_totals(self, practice_id: str, totals: SessionTotals) -> None:
		db = self._db()
		try:
			practice = db.get(Practice, practice_id)
			if practice is None:
				raise SessionNotFound(practice_id)
			practice.total_score = totals.total
			practice.scores = totals.criterion_averages
			practice.module_scores = totals.module_breakdown
			practice.strengths = totals.strengths
			practice.improvements = totals.improvements
			db.commit()
		finally:
			db.close()

	# ------------------------------------------------------------------
	# Reads
	# ------------------------------------------------------------------

	@_serialized
	def get_status(self, practice_id: str) -> SessionStatusView:
		db = self._db()
		try:
			practice = db.get(Practice, practice_id)
			if practice is None:
				raise SessionNotFound(practice_id)
			return _to_view(practice)
		finally:
			db.close()

	@_serialized
	def get_question(self, practice_id: str, question_id: str) -> Optional[QuestionStatusView]:
		view = self.get_status(practice_id)
		for question in view.questions:
			if question.question_id == question_id:
				return question
		return None

	@_serialized
	def delete_owner(self, owner_id: str) -> int:
		db = self._db()
		try:
			practices = db.query(Practice).filter(Practice.owner_id == owner_id).all()
			for practice in practices:
				db.delete(practice)
			db.commit()
			return len(practices)
		finally:
			db.close()


def _to_view(practice: Practice) -> SessionStatusView:
	questions = []
	for row in sorted(practice.questions, key=lambda q: q.order_index):
		questions.append(
			QuestionStatusView(
				question_id=row.question_id,
				question_text=row.question_text,
				order_index=row.order_index,
				module=ModuleType(row.module),
				stage=QuestionStage(row.stage),
				scored=row.stage == QuestionStage.SCORED.value,
				unscored_reason=UnscoredReason(row.unscored_reason) if row.unscored_reason else None,
				recording_ref=row.recording_ref,
				transcript=row.transcript,
				duration_seconds=row.duration_seconds,
				scores=dict(row.scores or {}),
				feedback=dict(row.feedback or {}),
				total_score=row.total_score,
				pronunciation=row.pronunciation,
			)
		)
	return SessionStatusView(
		session_id=practice.id,
		owner_id=practice.owner_id,
		type=SessionType(practice.type),
		status=SessionStatus(practice.status),
		processing_stage=ProcessingStage(practice.processing_stage),
		processing_error=practice.processing_error,
		total_score=practice.total_score,
		scores=dict(practice.scores or {}),
		module_scores=practice.module_scores,
		strengths=list(practice.strengths or []),
		improvements=list(practice.improvements or []),
		started_at=practice.started_at,
		completed_at=practice.completed_at,
		questions=questions,
	)
