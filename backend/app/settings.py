from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field

class Settings(BaseSettings):
	gemini_api_key: str | None = Field(default=None, validation_alias="GEMINI_API_KEY")
	# Provider can be "vertex" (Vertex AI Express) or "ai_studio" (Generative Language API)
	gemini_provider: str = Field(default="ai_studio", validation_alias="GEMINI_PROVIDER")
	# Model used for JSON-mode generation and grading calls
	gemini_model: str = Field(default="gemini-2.0-flash", validation_alias="GEMINI_JSON_MODEL")
	gemini_temperature: float = Field(default=0.7, validation_alias="GEMINI_TEMPERATURE")
	gemini_max_output_tokens: int = Field(default=4096, validation_alias="GEMINI_MAX_OUTPUT_TOKENS")
	gemini_timeout_seconds: float = Field(default=60.0, validation_alias="GEMINI_TIMEOUT_SECONDS")
	# Vertex configuration
	vertex_region: str = Field(default="us-central1", validation_alias="GEMINI_VERTEX_REGION")
	vertex_project: str | None = Field(default=None, validation_alias="GEMINI_VERTEX_PROJECT")

	# OpenRouter fallback configuration (optional)
	openrouter_api_key: str | None = Field(default=None, validation_alias="OPENROUTER_API_KEY")
	openrouter_model: str = Field(default="openai/gpt-4o-mini", validation_alias="OPENROUTER_MODEL")
	openrouter_base_url: str = Field(default="https://openrouter.ai/api/v1/chat/completions", validation_alias="OPENROUTER_BASE_URL")
	openrouter_referer: str = Field(default="https://localhost", validation_alias="OPENROUTER_HTTP_REFERER")
	openrouter_title: str = Field(default="Practice Engine", validation_alias="OPENROUTER_TITLE")

	# Auth configuration
	jwt_secret_key: str = Field(default="change-me", validation_alias="JWT_SECRET_KEY")
	jwt_algorithm: str = Field(default="HS256", validation_alias="JWT_ALGORITHM")
	access_token_expire_minutes: int = Field(default=120, validation_alias="ACCESS_TOKEN_EXPIRE_MINUTES")

	# Generation: fail instead of producing a context-free problem when no module context resolves
	require_generation_context: bool = Field(default=False, validation_alias="REQUIRE_GENERATION_CONTEXT")

	# Attempt rows older than this many days are purged by the maintenance loop; 0 keeps every attempt
	attempt_retention_days: int = Field(default=0, validation_alias="ATTEMPT_RETENTION_DAYS")

	log_level: str = Field(default="INFO", validation_alias="LOG_LEVEL")

	# Database
	database_url: str | None = Field(default=None, validation_alias="DATABASE_URL")

	# pydantic-settings v2 style config
	model_config = SettingsConfigDict(env_file=".env", extra="ignore")

settings = Settings()
