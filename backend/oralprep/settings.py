from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

from .errors import ConfigurationError


class Settings(BaseSettings):
	# Reasoning provider (OpenAI-compatible chat completions endpoint)
	openai_api_key: str | None = Field(default=None, validation_alias="OPENAI_API_KEY")
	openai_base_url: str = Field(default="https://api.openai.com/v1", validation_alias="OPENAI_BASE_URL")
	scoring_model: str = Field(default="gpt-4o-mini", validation_alias="SCORING_MODEL")
	# Optional: separate model for the feedback step
	feedback_model: str | None = Field(default=None, validation_alias="FEEDBACK_MODEL")
	scoring_temperature: float = Field(default=0.2, validation_alias="SCORING_TEMPERATURE")

	# Transcription provider can be "azure" (Speech REST + pronunciation assessment) or "google" (Cloud Speech)
	transcription_provider: str = Field(default="azure", validation_alias="TRANSCRIPTION_PROVIDER")
	azure_speech_key: str | None = Field(default=None, validation_alias="AZURE_SPEECH_KEY")
	azure_speech_region: str = Field(default="eastus", validation_alias="AZURE_SPEECH_REGION")
	speech_language: str = Field(default="en-US", validation_alias="SPEECH_LANGUAGE")
	google_project: str | None = Field(default=None, validation_alias="GOOGLE_CLOUD_PROJECT")
	# Gaps between words at or above this many seconds are reported as abnormal pauses
	pause_threshold_seconds: float = Field(default=2.5, validation_alias="PAUSE_THRESHOLD_SECONDS")

	# Recording storage (S3-compatible, e.g. Cloudflare R2)
	recordings_bucket: str | None = Field(default=None, validation_alias="RECORDINGS_BUCKET")
	s3_endpoint_url: str | None = Field(default=None, validation_alias="S3_ENDPOINT_URL")
	s3_access_key: str | None = Field(default=None, validation_alias="S3_ACCESS_KEY")
	s3_secret_key: str | None = Field(default=None, validation_alias="S3_SECRET_KEY")
	s3_region: str = Field(default="auto", validation_alias="S3_REGION")
	recording_url_ttl_seconds: int = Field(default=3600, validation_alias="RECORDING_URL_TTL_SECONDS")

	# Pipeline limits
	provider_timeout_seconds: float = Field(default=60.0, validation_alias="PROVIDER_TIMEOUT_SECONDS")
	provider_max_retries: int = Field(default=2, validation_alias="PROVIDER_MAX_RETRIES")
	provider_retry_backoff_seconds: float = Field(default=1.0, validation_alias="PROVIDER_RETRY_BACKOFF_SECONDS")
	upload_concurrency: int = Field(default=4, validation_alias="UPLOAD_CONCURRENCY")
	# Speech providers rate-limit aggressively; 1 serializes transcription calls
	transcription_concurrency: int = Field(default=1, validation_alias="TRANSCRIPTION_CONCURRENCY")
	scoring_concurrency: int = Field(default=2, validation_alias="SCORING_CONCURRENCY")

	# Database
	database_url: str | None = Field(default=None, validation_alias="DATABASE_URL")

	log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

	# pydantic-settings v2 style config
	model_config = SettingsConfigDict(env_file=".env", extra="ignore")

	def require(self, *names: str) -> None:
		"""Raise ConfigurationError naming every listed setting that is unset."""
		missing = [name.upper() for name in names if not getattr(self, name, None)]
		if missing:
			raise ConfigurationError(f"missing configuration: {', '.join(missing)}")
