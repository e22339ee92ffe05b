"""Configuration management for the loan disclosure recognition pipeline.

Loads and validates YAML configuration with defaults for segmentation,
recognition, scheduling, deadlines, size limits, normalization, and job
storage. Recognition credentials may be supplied through the environment.
"""

import logging
import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

_MIB = 1024 * 1024

ENV_RECOGNITION_URL = "LOAN_OCR_RECOGNITION_URL"
ENV_RECOGNITION_TOKEN = "LOAN_OCR_RECOGNITION_TOKEN"


class SegmentationConfig(BaseModel):
    """Configuration for splitting documents into page-bounded chunks."""

    pages_per_chunk: int = Field(default=15, ge=1)


class SchedulerConfig(BaseModel):
    """Configuration for bounded-concurrency chunk recognition."""

    max_concurrency: int = Field(default=2, ge=1)


class RecognitionConfig(BaseModel):
    """Configuration for the recognition backend."""

    provider: str = "docai"
    endpoint_url: str | None = None
    api_token: str | None = None
    timeout_s: float = Field(default=25.0, gt=0)
    tesseract_cmd: str | None = None
    default_lang: str = "spa"
    pdf_dpi: int = 300


class LimitsConfig(BaseModel):
    """Size and page-count ceilings enforced before any backend call."""

    max_bytes: int = 8 * _MIB
    max_pages: int = 60
    background_pages: int = 15
    background_bytes: int = 4 * _MIB


class DeadlineConfig(BaseModel):
    """Wall-clock budget for the synchronous attempt."""

    sync_deadline_s: float = Field(default=8.0, gt=0)


class NormalizationConfig(BaseModel):
    """Configuration for field fusion and confidence scoring."""

    pattern_confidence_floor: float = 0.65
    pattern_confidence_ceiling: float = 0.75
    pending_threshold: float = 0.60
    max_pending: int = 5
    critical_weights: dict[str, float] = Field(
        default_factory=lambda: {
            "principal_amount": 0.30,
            "term_months": 0.20,
            "nominal_rate": 0.25,
            "apr": 0.15,
            "payment": 0.10,
        }
    )


class ValidationConfig(BaseModel):
    """Configuration for the coherence rules engine."""

    rules_path: str = "configs/validation_rules.yaml"


class JobsConfig(BaseModel):
    """Configuration for asynchronous job storage."""

    backend: str = "memory"
    directory: str = "jobs"


class AppConfig(BaseModel):
    """Top-level application configuration."""

    segmentation: SegmentationConfig = Field(default_factory=SegmentationConfig)
    scheduler: SchedulerConfig = Field(default_factory=SchedulerConfig)
    recognition: RecognitionConfig = Field(default_factory=RecognitionConfig)
    limits: LimitsConfig = Field(default_factory=LimitsConfig)
    deadline: DeadlineConfig = Field(default_factory=DeadlineConfig)
    normalization: NormalizationConfig = Field(default_factory=NormalizationConfig)
    validation: ValidationConfig = Field(default_factory=ValidationConfig)
    jobs: JobsConfig = Field(default_factory=JobsConfig)
    log_level: str = "INFO"


def _apply_env_overrides(config: AppConfig) -> AppConfig:
    """Replace recognition endpoint and token with environment values."""
    url = os.environ.get(ENV_RECOGNITION_URL)
    token = os.environ.get(ENV_RECOGNITION_TOKEN)
    if url:
        config.recognition.endpoint_url = url
    if token:
        config.recognition.api_token = token
    return config


def load_config(path: Path | None = None) -> AppConfig:
    """Load configuration from a YAML file.

    Args:
        path: Path to the YAML configuration file.
            Defaults to configs/config.yaml.

    Returns:
        Validated application configuration.
    """
    if path is None:
        path = Path("configs/config.yaml")

    if path.exists():
        logger.info("Loading configuration from %s", path)
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
        return _apply_env_overrides(AppConfig(**raw))

    logger.info("No config file found at %s, using defaults", path)
    return _apply_env_overrides(AppConfig())
