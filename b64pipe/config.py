# Config
"""
Configuration for the b64pipe extraction-and-decode pipeline.

Settings are read from the environment (prefix ``B64PIPE_``) and an optional
``.env`` file, validated once, and shared through ``get_settings()``.
"""

from pathlib import Path
from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from b64pipe.models import AlphabetName

_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def check_output_template(template: str) -> None:
    """
    Check that a file name template formats with only ``index`` and ``ext``.

    Raises:
        ValueError: If the template is unusable
    """
    if "{index" not in template:
        raise ValueError("output_template must reference {index}")
    try:
        template.format(index=0, ext=".bin")
    except (AttributeError, KeyError, IndexError, ValueError) as e:
        raise ValueError(f"output_template '{template}' cannot be formatted: {e!r}") from e


class Settings(BaseSettings):
    """Runtime settings for b64pipe."""

    model_config = SettingsConfigDict(
        env_prefix="B64PIPE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Logging
    log_level: str = Field("INFO", description="Root logging level")
    log_file_path: Optional[Path] = Field(None, description="Optional log file")
    structured_logging: bool = Field(True, description="Write JSON records to the log file")
    dev_mode: bool = Field(False, description="Show locals in rich tracebacks")

    # Decoding
    alphabet: AlphabetName = Field(AlphabetName.STANDARD, description="Base64 alphabet")
    repair_padding: bool = Field(False, description="Pad short final groups with '='")
    chunk_size: int = Field(64 * 1024, description="Decode window in characters")
    max_workers: int = Field(1, description="Concurrent payload workers")

    # Input
    encoding: str = Field("utf-8", description="Text encoding of input sources")
    encoding_errors: str = Field("replace", description="Codec error handler for input")

    # Output
    output_dir: Path = Field(Path("decoded"), description="Directory for decoded payloads")
    output_template: str = Field(
        "payload_{index:03d}{ext}",
        description="File name template, formatted with index and ext",
    )

    # Extractor defaults
    delimited_start: str = Field("BEGIN BASE64", description="Default block start marker")
    delimited_end: str = Field("END BASE64", description="Default block end marker")
    carve_min_length: int = Field(16, description="Shortest run the carve extractor reports")

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Normalize and check the log level name."""
        level = v.upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(_LOG_LEVELS)}")
        return level

    @field_validator("chunk_size")
    @classmethod
    def validate_chunk_size(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("chunk_size must be positive")
        return v

    @field_validator("max_workers")
    @classmethod
    def validate_max_workers(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_workers must be at least 1")
        return v

    @field_validator("output_template")
    @classmethod
    def validate_output_template(cls, v: str) -> str:
        check_output_template(v)
        return v

    @field_validator("carve_min_length")
    @classmethod
    def validate_carve_min_length(cls, v: int) -> int:
        if v < 4:
            raise ValueError("carve_min_length must be at least 4")
        return v

    def get_log_file_path(self) -> Optional[Path]:
        """Return the log file path, creating its directory if needed."""
        if self.log_file_path is None:
            return None
        self.log_file_path.parent.mkdir(parents=True, exist_ok=True)
        return self.log_file_path


# Singleton instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings so the next access re-reads the environment."""
    global _settings
    _settings = None
