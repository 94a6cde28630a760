from __future__ import annotations

from typing import Dict, Set

from .schemas import ProcessingStage, QuestionStage, SessionStatus

_TERMINAL = {ProcessingStage.COMPLETED, ProcessingStage.FAILED}

STAGE_TRANSITIONS: Dict[ProcessingStage, Set[ProcessingStage]] = {
	ProcessingStage.CREATED: {ProcessingStage.UPLOADING, ProcessingStage.FAILED},
	ProcessingStage.UPLOADING: {ProcessingStage.TRANSCRIBING, ProcessingStage.FAILED},
	ProcessingStage.TRANSCRIBING: {ProcessingStage.SCORING, ProcessingStage.FAILED},
	ProcessingStage.SCORING: {ProcessingStage.AGGREGATING, ProcessingStage.FAILED},
	ProcessingStage.AGGREGATING: {ProcessingStage.COMPLETED, ProcessingStage.FAILED},
	ProcessingStage.COMPLETED: set(),
	ProcessingStage.FAILED: set(),
}

QUESTION_TRANSITIONS: Dict[QuestionStage, Set[QuestionStage]] = {
	QuestionStage.PENDING: {QuestionStage.UPLOADED, QuestionStage.UNSCORED},
	QuestionStage.UPLOADED: {QuestionStage.TRANSCRIBED, QuestionStage.UNSCORED},
	QuestionStage.TRANSCRIBED: {QuestionStage.SCORED, QuestionStage.UNSCORED},
	QuestionStage.SCORED: set(),
	QuestionStage.UNSCORED: set(),
}


class InvalidTransition(Exception):
	pass


def status_for(stage: ProcessingStage) -> SessionStatus:
	"""Coarse session status shown to clients for a processing stage."""
	if stage == ProcessingStage.CREATED:
		return SessionStatus.PENDING
	if stage == ProcessingStage.COMPLETED:
		return SessionStatus.COMPLETED
	if stage == ProcessingStage.FAILED:
		return SessionStatus.FAILED
	return SessionStatus.IN_PROGRESS


def can_question_transition(current: QuestionStage, target: QuestionStage) -> bool:
	return target in QUESTION_TRANSITIONS.get(current, set())


class ProcessingStateMachine:
	"""Forward-only processing stages of one practice session"""

	def __init__(self, current: ProcessingStage = ProcessingStage.CREATED) -> None:
		self.current_state = current

	def can_transition(self, target_state: ProcessingStage) -> bool:
		"""Check if transition to target state is allowed"""
		return target_state in STAGE_TRANSITIONS.get(self.current_state, set())

	def transition(self, target_state: ProcessingStage) -> ProcessingStage:
		if not self.can_transition(target_state):
			raise InvalidTransition(f"{self.current_state.value} -> {target_state.value}")
		self.current_state = target_state
		return target_state

	@property
	def status(self) -> SessionStatus:
		return status_for(self.current_state)

	@property
	def terminal(self) -> bool:
		return self.current_state in _TERMINAL
