from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import Optional


class Settings(BaseSettings):
    """
    Manages all orchestrator settings and secrets.
    Reads from environment variables (and .env file).
    """

    # --- Core Application Configuration ---
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # --- Remote tool endpoints ---
    SCANNER_START_URL: str = ""
    SCANNER_LOGS_URL: str = ""
    SCANNER_RESULT_URL: str = ""

    COMPLIANCE_START_URL: str = ""
    COMPLIANCE_LOGS_URL: str = ""
    COMPLIANCE_RESULT_URL: str = ""

    PIPELINE_START_URL: str = ""
    PIPELINE_LOGS_URL: str = ""
    PIPELINE_RESULT_URL: str = ""

    # Shared result endpoint, used when a tool has none of its own
    RESULT_URL: str = ""

    # --- Completion markers (must define a 'filename' group) ---
    SCANNER_COMPLETION_PATTERN: str = (
        r"(?P<filename>scanner-results-[A-Za-z0-9_.-]+?\.(?:json|sarif))\b"
    )
    COMPLIANCE_COMPLETION_PATTERN: str = (
        r"(?P<filename>compliance-results-[A-Za-z0-9_.-]+?\.json)\b"
    )
    PIPELINE_COMPLETION_PATTERN: str = (
        r"(?P<filename>pipeline-results-[A-Za-z0-9_.-]+?\.json)\b"
    )

    # --- Polling & transport ---
    POLL_INTERVAL_SEC: float = 1.2
    HTTP_TIMEOUT_SEC: float = 30.0
    MAX_POLL_FAILURES: Optional[int] = None
    TARGET_HEADER: str = "X-Target-Repo"
    GITHUB_BASE_URL: str = "https://github.com"
    LOG_BUFFER_MAX_LINES: int = 5000

    # --- AI enrichment (Bedrock) ---
    AI_ENABLED: bool = True
    AWS_REGION: str = "us-east-2"
    AWS_ACCESS_KEY_ID: str | None = None
    AWS_SECRET_ACCESS_KEY: str | None = None
    BEDROCK_MODEL_ID: str = "anthropic.claude-3-5-sonnet-20241022-v2:0"
    BEDROCK_INFERENCE_PROFILE_ARN: str | None = None
    AI_MAX_TOKENS: int = 1400
    AI_TEMPERATURE: float = 0.2
    AI_TOP_P: float = 0.9
    AI_TIMEOUT_SEC: int = 60
    ENRICH_BATCH_SIZE: int = 25
    AI_MAX_MESSAGE_CHARS: int = 400
    AI_MAX_SNIPPET_CHARS: int = 800

    @property
    def bedrock_model(self) -> str:
        """
        Inference profiles are addressed through the modelId parameter.
        """
        return self.BEDROCK_INFERENCE_PROFILE_ARN or self.BEDROCK_MODEL_ID

    # Pydantic-Settings configuration
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding='utf-8',
        case_sensitive=False,
        extra="ignore",
    )


@lru_cache()
def get_settings() -> Settings:
    """
    Returns a cached instance of the Settings object.
    Using @lru_cache ensures the .env file is read only once.
    """
    return Settings()

# Create a single, globally accessible settings instance
settings = get_settings()
