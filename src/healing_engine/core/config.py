from pydantic_settings import BaseSettings
from pydantic import Field, validator
from dotenv import load_dotenv

load_dotenv()

class Settings(BaseSettings):
    # LLM Configuration
    MODEL_PROVIDER: str = "online"  # "online" for Gemini, "local" for Ollama
    GEMINI_API_KEY: str | None = None
    ONLINE_MODEL: str = "gemini/gemini-2.5-flash"
    LOCAL_MODEL: str = "ollama/llama3"
    ORACLE_TIMEOUT: float = Field(default=30.0, description="Seconds to wait for a single AI oracle call")
    ORACLE_TEMPERATURE: float = Field(default=0.2, description="Sampling temperature for AI oracle calls")
    ORACLE_MAX_TOKENS: int = Field(default=2000, description="Maximum tokens in an AI oracle answer")

    # Self-Healing Configuration
    SELF_HEALING_ENABLED: bool = Field(default=True, description="Master switch for automatic locator healing")
    SELF_HEALING_THRESHOLD: int = Field(default=85, description="Minimum confidence (0-100) to auto-apply a healed locator")
    SELF_HEALING_REQUIRE_APPROVAL: bool = Field(default=False, description="Park every healed locator for manual approval")
    SELF_HEALING_CONFIG_PATH: str = Field(default="config/self_healing.yaml", description="YAML file with engine settings")
    LOCATORS_FILE: str = Field(default="locators/locators.json", description="Page-object locator file used by the JSON store")

    # Logging Configuration
    LOG_LEVEL: str = Field(default="INFO", description="Root log level")
    LOG_DIR: str = Field(default="logs", description="Directory for rotating log files")

    @validator('MODEL_PROVIDER')
    def validate_model_provider(cls, v):
        """Validate that MODEL_PROVIDER is either 'online' or 'local'."""
        if v.lower() not in ['online', 'local']:
            raise ValueError(f"MODEL_PROVIDER must be 'online' or 'local', got '{v}'")
        return v.lower()

    @validator('SELF_HEALING_THRESHOLD')
    def validate_threshold(cls, v):
        """Validate that SELF_HEALING_THRESHOLD is between 0 and 100."""
        if v < 0 or v > 100:
            raise ValueError(f"SELF_HEALING_THRESHOLD must be between 0 and 100, got {v}")
        return v

    @validator('ORACLE_TIMEOUT')
    def validate_oracle_timeout(cls, v):
        """Validate that ORACLE_TIMEOUT is positive."""
        if v <= 0:
            raise ValueError(f"ORACLE_TIMEOUT must be positive, got {v}")
        return v

    @validator('LOG_LEVEL')
    def validate_log_level(cls, v):
        """Validate that LOG_LEVEL is a standard logging level name."""
        if v.upper() not in ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']:
            raise ValueError(f"LOG_LEVEL must be a standard level name, got '{v}'")
        return v.upper()

    class Config:
        env_file = ".env"
        env_file_encoding = 'utf-8'
        extra = 'allow'  # Allow extra fields from .env file

settings = Settings()
