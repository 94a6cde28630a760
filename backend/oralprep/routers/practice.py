"""
Practice Submission API
=======================

HTTP surface of the practice pipeline. A client records every answer of a
practice session locally and submits them in one request; processing
(upload, transcription, scoring) continues in the background and the client
polls the session for progress and results.

API Endpoints:
- POST /practice/submit: Submit a finished practice session
- GET /practice/{session_id}: Session status with per-question results
- GET /practice/{session_id}/questions/{question_id}/recording: Signed recording URL
- DELETE /practice/owners/{owner_id}: Erase every session and recording of an owner
"""

from __future__ import annotations

import base64
import binascii
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from ..errors import PipelineError, SessionNotFound, StorageError
from ..orchestrator import SubmissionOrchestrator
from ..schemas import (
	ModuleType,
	PracticeSubmission,
	QuestionSubmission,
	SessionStatus,
	SessionStatusView,
	SessionType,
)
from ..storage import OWNER_ID_PATTERN

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/practice", tags=["practice"])


# ============================================================================
# REQUEST / RESPONSE MODELS
# ============================================================================

class QuestionIn(BaseModel):
	question_id: str = Field(min_length=1)
	question_text: str
	module: Optional[ModuleType] = None
	duration_seconds: Optional[float] = Field(default=None, ge=0)
	video_transcript: Optional[str] = None
	# Recorded answer (webm/opus), base64 encoded; omitted when nothing was recorded
	audio_base64: Optional[str] = None


class SubmitRequest(BaseModel):
	owner_id: str = Field(min_length=1, pattern=OWNER_ID_PATTERN)
	type: SessionType
	questions: List[QuestionIn] = Field(min_length=1)
	context: Optional[Dict[str, Any]] = None
	started_at: Optional[datetime] = None


class SubmitResponse(BaseModel):
	session_id: str
	status: SessionStatus


class RecordingResponse(BaseModel):
	question_id: str
	url: Optional[str] = None


class EraseResponse(BaseModel):
	owner_id: str
	sessions: int
	recordings: int


def get_orchestrator(request: Request) -> SubmissionOrchestrator:
	orchestrator = getattr(request.app.state, "orchestrator", None)
	if orchestrator is None:
		raise HTTPException(status_code=503, detail="Practice pipeline is not configured")
	return orchestrator


def _decode_audio(question: QuestionIn) -> Optional[bytes]:
	if not question.audio_base64:
		return None
	try:
		return base64.b64decode(question.audio_base64, validate=True)
	except (binascii.Error, ValueError):
		raise HTTPException(status_code=400, detail=f"audio_base64 of question {question.question_id} is not valid base64")


def _to_submission(req: SubmitRequest) -> PracticeSubmission:
	return PracticeSubmission(
		owner_id=req.owner_id,
		type=req.type,
		context=req.context,
		started_at=req.started_at,
		questions=[
			QuestionSubmission(
				question_id=q.question_id,
				question_text=q.question_text,
				module=q.module,
				duration_seconds=q.duration_seconds,
				video_transcript=q.video_transcript,
				audio=_decode_audio(q),
			)
			for q in req.questions
		],
	)


# ============================================================================
# ROUTES
# ============================================================================

@router.post("/submit", response_model=SubmitResponse, status_code=202)
async def submit(req: SubmitRequest, orchestrator: SubmissionOrchestrator = Depends(get_orchestrator)):
	"""Accept a finished practice session for background processing.

	The session is persisted before this returns; poll GET /practice/{session_id}
	for progress.
	"""
	submission = _to_submission(req)
	try:
		session_id = await orchestrator.submit(submission)
	except ValueError as e:
		raise HTTPException(status_code=400, detail=str(e))
	except PipelineError as e:
		logger.error("submission for %s rejected: %s", req.owner_id, e)
		raise HTTPException(status_code=503, detail="Could not store the practice session, please retry")
	return SubmitResponse(session_id=session_id, status=SessionStatus.PENDING)


@router.get("/{session_id}", response_model=SessionStatusView)
async def get_status(session_id: str, orchestrator: SubmissionOrchestrator = Depends(get_orchestrator)):
	try:
		return orchestrator.get_status(session_id)
	except SessionNotFound:
		raise HTTPException(status_code=404, detail="Practice session not found")


@router.get("/{session_id}/questions/{question_id}/recording", response_model=RecordingResponse)
async def recording(session_id: str, question_id: str, orchestrator: SubmissionOrchestrator = Depends(get_orchestrator)):
	try:
		url = await orchestrator.recording_url(session_id, question_id)
	except SessionNotFound:
		raise HTTPException(status_code=404, detail="Practice session or question not found")
	except StorageError as e:
		logger.warning("signing recording %s/%s failed: %s", session_id, question_id, e)
		raise HTTPException(status_code=502, detail="Recording storage unavailable")
	return RecordingResponse(question_id=question_id, url=url)


@router.delete("/owners/{owner_id}", response_model=EraseResponse)
async def erase_owner(owner_id: str, orchestrator: SubmissionOrchestrator = Depends(get_orchestrator)):
	"""Delete every practice session and recording of one owner."""
	try:
		counts = await orchestrator.erase_owner(owner_id)
	except ValueError as e:
		raise HTTPException(status_code=400, detail=str(e))
	except StorageError as e:
		logger.error("erasing recordings of %s failed: %s", owner_id, e)
		raise HTTPException(status_code=502, detail="Recording storage unavailable, nothing was deleted")
	return EraseResponse(owner_id=owner_id, **counts)
