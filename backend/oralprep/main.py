from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

from .db import Base, create_db_engine, create_session_factory, ensure_schema
from .llm_client import ReasoningClient
from .orchestrator import SubmissionOrchestrator
from .repository import PracticeRepository
from .routers import practice
from .scorer import CriterionScorer
from .settings import Settings
from .storage import S3RecordingStore
from .transcription import build_transcriber

logger = logging.getLogger(__name__)


def configure_logging(level: str) -> None:
	logging.basicConfig(
		level=getattr(logging, (level or "INFO").upper(), logging.INFO),
		format="%(asctime)s %(levelname)s %(name)s: %(message)s",
	)
	for noisy in ("botocore", "boto3", "urllib3", "httpx", "httpcore"):
		logging.getLogger(noisy).setLevel(logging.WARNING)


def build_orchestrator(settings: Settings) -> SubmissionOrchestrator:
	"""Wire the production adapters. Raises ConfigurationError on missing credentials."""
	engine = create_db_engine(settings)
	Base.metadata.create_all(bind=engine)
	# Apply lightweight dev migrations
	try:
		ensure_schema(engine)
	except Exception:
		logger.warning("schema migration skipped", exc_info=True)
	repository = PracticeRepository(create_session_factory(engine))

	store = S3RecordingStore(settings)
	transcriber = build_transcriber(settings)
	reasoning = ReasoningClient(settings)
	scorer = CriterionScorer(
		reasoning,
		feedback_model=settings.feedback_model,
	)
	return SubmissionOrchestrator(
		repository,
		store,
		transcriber,
		scorer,
		upload_concurrency=settings.upload_concurrency,
		transcription_concurrency=settings.transcription_concurrency,
		scoring_concurrency=settings.scoring_concurrency,
		storage_timeout_seconds=settings.provider_timeout_seconds,
		upload_retries=settings.provider_max_retries,
		retry_backoff_seconds=settings.provider_retry_backoff_seconds,
	)


def create_app(settings: Optional[Settings] = None, *, orchestrator: Optional[SubmissionOrchestrator] = None) -> FastAPI:
	settings = settings or Settings()
	configure_logging(settings.log_level)
	if orchestrator is None:
		orchestrator = build_orchestrator(settings)

	@asynccontextmanager
	async def lifespan(app: FastAPI):
		yield
		# Let in-flight sessions reach a terminal state before closing clients
		await orchestrator.wait_idle()
		for client in (orchestrator.transcriber, getattr(orchestrator.scorer, "provider", None)):
			close = getattr(client, "aclose", None)
			if close is not None:
				await close()

	app = FastAPI(title="Oral Practice API", lifespan=lifespan)
	app.state.settings = settings
	app.state.orchestrator = orchestrator
	app.include_router(practice.router)

	@app.get("/health")
	def health():
		return {"status": "ok"}

	@app.get("/info")
	def info():
		return {
			"status": "ok",
			"transcription_provider": settings.transcription_provider,
			"scoring_model": settings.scoring_model,
			"reasoning_configured": bool(settings.openai_api_key),
			"storage_configured": bool(settings.recordings_bucket),
		}

	return app


def run() -> None:
	import uvicorn

	uvicorn.run("oralprep.main:create_app", factory=True, host="0.0.0.0", port=8000)
