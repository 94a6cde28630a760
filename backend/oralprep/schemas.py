from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field


# ============================================================================
# ENUMERATIONS
# ============================================================================

class SessionType(str, Enum):
	MODULE_A = "module-a"
	MODULE_B = "module-b"
	MODULE_C = "module-c"
	SIMULATION = "simulation"


class ModuleType(str, Enum):
	A = "module-a"
	B = "module-b"
	# Module C answers questions about a watched video
	C = "module-c"


class SessionStatus(str, Enum):
	PENDING = "pending"
	IN_PROGRESS = "in-progress"
	COMPLETED = "completed"
	FAILED = "failed"


class ProcessingStage(str, Enum):
	CREATED = "created"
	UPLOADING = "uploading"
	TRANSCRIBING = "transcribing"
	SCORING = "scoring"
	AGGREGATING = "aggregating"
	COMPLETED = "completed"
	FAILED = "failed"


class QuestionStage(str, Enum):
	PENDING = "pending"
	UPLOADED = "uploaded"
	TRANSCRIBED = "transcribed"
	SCORED = "scored"
	UNSCORED = "unscored"


class Criterion(str, Enum):
	TOPIC_DEVELOPMENT = "topicDevelopment"
	VOCABULARY = "vocabulary"
	GRAMMAR = "grammar"
	FLUENCY = "fluency"


class UnscoredReason(str, Enum):
	NO_RECORDING = "no_recording"
	UPLOAD_FAILED = "upload_failed"
	NO_SPEECH = "no_speech"
	TRANSCRIPTION_FAILED = "transcription_failed"
	SCORING_FAILED = "scoring_failed"


# Transcript sentinels. A null transcript means transcription was never attempted.
NO_SPEECH_TRANSCRIPT = "[No speech detected]"
FAILED_TRANSCRIPT = "[Transcription failed]"
# older clients stored the no-speech marker without brackets
NO_SPEECH_SENTINELS = frozenset({NO_SPEECH_TRANSCRIPT, "No speech detected"})
TRANSCRIPT_SENTINELS = NO_SPEECH_SENTINELS | {FAILED_TRANSCRIPT}


def is_usable_transcript(text: Optional[str]) -> bool:
	if text is None:
		return False
	stripped = text.strip()
	return bool(stripped) and stripped not in TRANSCRIPT_SENTINELS


# ============================================================================
# TRANSCRIPTION
# ============================================================================

class WordAssessment(BaseModel):
	word: str
	accuracy_score: float = 0
	error_type: str = "None"
	offset_seconds: Optional[float] = None
	duration_seconds: Optional[float] = None


class LongPause(BaseModel):
	after_word: str
	before_word: str
	duration_seconds: float


class PronunciationMetrics(BaseModel):
	accuracy_score: Optional[int] = None
	fluency_score: Optional[int] = None
	prosody_score: Optional[int] = None
	pronunciation_score: Optional[int] = None
	total_words: int = 0
	error_count: int = 0
	words: List[WordAssessment] = Field(default_factory=list)
	problematic_words: List[WordAssessment] = Field(default_factory=list)
	long_pauses: List[LongPause] = Field(default_factory=list)
	long_pause_count: int = 0
	total_long_pause_time: float = 0.0


class TranscriptionResult(BaseModel):
	text: str
	confidence: Optional[float] = None
	pronunciation: Optional[PronunciationMetrics] = None
	failed: bool = False
	no_speech: bool = False
	error: Optional[str] = None

	@property
	def usable(self) -> bool:
		return not self.failed and not self.no_speech and is_usable_transcript(self.text)


# ============================================================================
# SCORING
# ============================================================================

class CriterionResult(BaseModel):
	criterion: Criterion
	score: int = Field(ge=0, le=100)
	weight: int = Field(ge=0, le=100)
	range: Optional[str] = None
	justification: str = ""
	feedback: str = ""
	strengths: List[str] = Field(default_factory=list)
	improvements: List[str] = Field(default_factory=list)


@dataclass(frozen=True)
class Scored:
	total: int
	criteria: List[CriterionResult]


@dataclass(frozen=True)
class Unscored:
	reason: UnscoredReason
	total: int = 0


QuestionResult = Union[Scored, Unscored]


@dataclass
class QuestionOutcome:
	"""One question's result as seen by the session aggregator."""
	question_id: str
	module: ModuleType
	order_index: int
	result: QuestionResult

	@property
	def total(self) -> int:
		return self.result.total if isinstance(self.result, Scored) else 0


@dataclass
class SessionTotals:
	total: int
	module_breakdown: Optional[Dict[str, int]] = None
	criterion_averages: Dict[str, int] = field(default_factory=dict)
	strengths: List[str] = field(default_factory=list)
	improvements: List[str] = field(default_factory=list)


# ============================================================================
# SUBMISSION
# ============================================================================

class QuestionSubmission(BaseModel):
	question_id: str
	question_text: str
	module: Optional[ModuleType] = None
	duration_seconds: Optional[float] = None
	# Module C questions are scored against the transcript of the watched video
	video_transcript: Optional[str] = None
	audio: Optional[bytes] = None


class PracticeSubmission(BaseModel):
	owner_id: str
	type: SessionType
	questions: List[QuestionSubmission] = Field(min_length=1)
	context: Optional[Dict[str, Any]] = None
	started_at: Optional[datetime] = None


# ============================================================================
# STATUS VIEWS
# ============================================================================

class QuestionStatusView(BaseModel):
	question_id: str
	question_text: str
	order_index: int
	module: ModuleType
	stage: QuestionStage
	scored: bool
	unscored_reason: Optional[UnscoredReason] = None
	recording_ref: Optional[str] = None
	transcript: Optional[str] = None
	duration_seconds: Optional[float] = None
	scores: Dict[str, int] = Field(default_factory=dict)
	feedback: Dict[str, Any] = Field(default_factory=dict)
	total_score: Optional[int] = None
	pronunciation: Optional[Dict[str, Any]] = None


class SessionStatusView(BaseModel):
	session_id: str
	owner_id: str
	type: SessionType
	status: SessionStatus
	processing_stage: ProcessingStage
	processing_error: Optional[str] = None
	total_score: Optional[int] = None
	scores: Dict[str, int] = Field(default_factory=dict)
	module_scores: Optional[Dict[str, int]] = None
	strengths: List[str] = Field(default_factory=list)
	improvements: List[str] = Field(default_factory=list)
	started_at: Optional[datetime] = None
	completed_at: Optional[datetime] = None
	questions: List[QuestionStatusView] = Field(default_factory=list)
