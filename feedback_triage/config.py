"""Configuration management for the Feedback Triage Engine.

Loads configuration from environment variables (set by the deployment from
its secret store).
"""

import os
from dataclasses import dataclass, field
from functools import lru_cache


@dataclass(frozen=True)
class DatabaseConfig:
    """PostgreSQL database configuration."""
    host: str
    name: str
    user: str
    password: str
    port: int = 5432
    url: str = ""  # Full URL override (e.g. sqlite+aiosqlite for local runs)

    @property
    def connection_string(self) -> str:
        """SQLAlchemy async connection string."""
        if self.url:
            return self.url
        return f"postgresql+asyncpg://{self.user}:{self.password}@{self.host}:{self.port}/{self.name}"


@dataclass(frozen=True)
class AnthropicConfig:
    """Anthropic API configuration."""
    api_key: str
    # Model selection for different tasks
    fast_model: str = "claude-3-haiku-20240307"      # Fast/cheap for first-pass calls
    quality_model: str = "claude-sonnet-4-20250514"  # Escalation for low confidence
    timeout_seconds: float = 20.0

    @classmethod
    def from_env(cls) -> "AnthropicConfig":
        """Load Anthropic config from environment variables."""
        return cls(
            api_key=os.environ.get("ANTHROPIC_API_KEY", ""),
            timeout_seconds=float(os.environ.get("STEP_TIMEOUT_SECONDS", "20")),
        )


@dataclass(frozen=True)
class TriageConfig:
    """Thresholds and limits for the triage pipeline and batch job.

    Passed explicitly into every component so each one can be exercised
    with deterministic settings in isolation.
    """
    # Classification
    escalation_threshold: float = 0.7  # Below this, ask the quality model

    # Duplicate detection
    similarity_threshold: float = 0.7
    max_duplicate_results: int = 4
    duplicate_candidate_limit: int = 15
    include_related: bool = False

    # Batch reclassification
    reclassify_confidence_threshold: float = 0.6
    reclassify_batch_size: int = 40
    reclassify_max_batch_size: int = 100

    # Background execution
    step_timeout_seconds: float = 20.0
    worker_count: int = 2

    @classmethod
    def from_env(cls) -> "TriageConfig":
        """Load triage settings from environment variables."""
        return cls(
            similarity_threshold=float(os.environ.get("SIMILARITY_THRESHOLD", "0.7")),
            max_duplicate_results=int(os.environ.get("MAX_DUPLICATE_RESULTS", "4")),
            reclassify_confidence_threshold=float(
                os.environ.get("RECLASSIFY_CONFIDENCE_THRESHOLD", "0.6")
            ),
            reclassify_batch_size=int(os.environ.get("RECLASSIFY_BATCH_SIZE", "40")),
            step_timeout_seconds=float(os.environ.get("STEP_TIMEOUT_SECONDS", "20")),
            worker_count=int(os.environ.get("TRIAGE_WORKERS", "2")),
        )


@dataclass(frozen=True)
class AppConfig:
    """Main application configuration."""
    environment: str
    database: DatabaseConfig
    anthropic: AnthropicConfig
    triage: TriageConfig = field(default_factory=TriageConfig)

    # Shared secret for the scheduled reclassification trigger
    cron_secret: str = ""

    @classmethod
    def from_env(cls) -> "AppConfig":
        """Load full configuration from environment variables."""
        return cls(
            environment=os.environ.get("ENVIRONMENT", "dev"),
            database=DatabaseConfig(
                host=os.environ.get("DATABASE_HOST", "localhost"),
                name=os.environ.get("DATABASE_NAME", "feedback_triage"),
                user=os.environ.get("DATABASE_USER", "triage_user"),
                password=os.environ.get("DATABASE_PASSWORD", ""),
                port=int(os.environ.get("DATABASE_PORT", "5432")),
                url=os.environ.get("DATABASE_URL", ""),
            ),
            anthropic=AnthropicConfig.from_env(),
            triage=TriageConfig.from_env(),
            cron_secret=os.environ.get("CRON_SECRET", ""),
        )


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """Get cached application configuration.

    Returns:
        AppConfig instance loaded from environment variables.
    """
    return AppConfig.from_env()


# Feedback categories shown to the classifier. Keys must match Category values.
CATEGORIES = {
    "Feature Request": {
        "description": "Completely new functionality the product does not have yet",
        "keywords": ["add", "new feature", "would like", "request", "support for"],
    },
    "Bug": {
        "description": "Existing functionality not working as expected",
        "keywords": ["error", "not working", "bug", "broken", "fails", "crash"],
    },
    "Improvement": {
        "description": "Enhancements to features that already exist",
        "keywords": ["improve", "enhance", "better", "optimize", "update"],
    },
    "UI/UX": {
        "description": "Interface, visual design and usability",
        "keywords": ["ui", "ux", "design", "dark mode", "theme", "layout", "confusing"],
    },
    "Integration": {
        "description": "Third-party connections, APIs and data sync",
        "keywords": ["api", "integration", "webhook", "connect", "sync", "import", "export"],
    },
    "Performance": {
        "description": "Speed and resource usage",
        "keywords": ["slow", "performance", "speed", "loading", "memory", "timeout"],
    },
    "Documentation": {
        "description": "Help content, guides and explanations",
        "keywords": ["docs", "documentation", "guide", "tutorial", "explain"],
    },
    "Other": {
        "description": "Anything that does not fit the categories above",
        "keywords": [],
    },
}
