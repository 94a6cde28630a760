from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import JSON, Column, DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from .db import Base


def _new_id() -> str:
	return uuid.uuid4().hex


class Practice(Base):
	__tablename__ = "practices"
	id = Column(String(64), primary_key=True, default=_new_id)
	owner_id = Column(String(128), index=True, nullable=False)
	# module-a | module-b | module-c | simulation
	type = Column(String(32), nullable=False)
	status = Column(String(32), default="pending", nullable=False)
	processing_stage = Column(String(32), default="created", nullable=False)
	processing_error = Column(Text, nullable=True)
	total_score = Column(Integer, nullable=True)
	# criterion -> session average
	scores = Column(JSON, nullable=True)
	module_scores = Column(JSON, nullable=True)
	strengths = Column(JSON, nullable=True)
	improvements = Column(JSON, nullable=True)
	context = Column(JSON, nullable=True)
	started_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	completed_at = Column(DateTime, nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

	questions = relationship(
		"PracticeQuestion",
		back_populates="practice",
		order_by="PracticeQuestion.order_index",
		cascade="all, delete-orphan",
	)


class PracticeQuestion(Base):
	__tablename__ = "practice_questions"
	__table_args__ = (UniqueConstraint("practice_id", "question_id", name="uq_practice_question"),)
	id = Column(String(64), primary_key=True, default=_new_id)
	practice_id = Column(String(64), ForeignKey("practices.id", ondelete="CASCADE"), index=True, nullable=False)
	question_id = Column(String(128), nullable=False)
	question_text = Column(Text, nullable=False)
	order_index = Column(Integer, nullable=False)
	module = Column(String(32), nullable=False)
	duration_seconds = Column(Float, nullable=True)
	video_transcript = Column(Text, nullable=True)
	# pending | uploaded | transcribed | scored | unscored
	stage = Column(String(32), default="pending", nullable=False)
	unscored_reason = Column(String(32), nullable=True)
	recording_ref = Column(String(512), nullable=True)
	# NULL until transcription is attempted; sentinel text on failure
	transcript = Column(Text, nullable=True)
	pronunciation = Column(JSON, nullable=True)
	scores = Column(JSON, nullable=True)
	feedback = Column(JSON, nullable=True)
	total_score = Column(Integer, nullable=True)
	created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
	updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

	practice = relationship("Practice", back_populates="questions")
