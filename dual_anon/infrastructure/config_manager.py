"""Configuration Manager for Pipeline Settings.

Loads the per-run anonymization configuration (hospital context, k, strict
mode, identity salt) from environment variables or a JSON file and validates
it before any record is read.

Security Impact:
    - The identity salt is held as SecretStr and never logged
    - Invalid configuration (k < 1, blank country) fails before processing starts

Architecture:
    - Infrastructure layer; the domain receives validated HospitalContext/k values
    - Type-safe configuration using Pydantic models
"""

import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field, SecretStr, ValidationError, field_validator

from dual_anon.domain.records import HospitalContext
from dual_anon.domain.services.k_anonymity import DEFAULT_K
from dual_anon.domain.services.provenance import DEFAULT_RESOURCE_TYPE

logger = logging.getLogger(__name__)

TRUE_VALUES = ("1", "true", "yes", "on")


class PipelineConfig(BaseModel):
    """Validated configuration for one anonymization run.

    Parameters:
        hospital_country: Hospital country (fallback for records without one)
        hospital_location: Optional hospital location
        hospital_id: Optional hospital identifier written into provenance
        k_anonymity: Minimum quasi-identifier group size
        strict_mode: Fail the batch on the first record-level error
        resource_type: Resource type label for provenance records
        identity_salt: Per-hospital salt for pseudonym-based identifiers (secret)
    """

    hospital_country: str = Field(..., min_length=1, description="Hospital country")
    hospital_location: Optional[str] = Field(None, description="Hospital location")
    hospital_id: Optional[str] = Field(None, description="Hospital identifier")
    k_anonymity: int = Field(default=DEFAULT_K, ge=1, description="k-anonymity threshold")
    strict_mode: bool = Field(default=False, description="Batch-fail-fast on record errors")
    resource_type: str = Field(default=DEFAULT_RESOURCE_TYPE, min_length=1)
    identity_salt: Optional[SecretStr] = Field(None, description="Identity salt (secret)")

    @field_validator("hospital_country")
    @classmethod
    def validate_country(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Hospital country cannot be blank")
        return v.strip()

    def hospital_context(self) -> HospitalContext:
        """HospitalContext handed to the pipeline."""
        return HospitalContext(
            country=self.hospital_country,
            location=self.hospital_location,
            hospital_id=self.hospital_id,
        )


class ConfigManager:
    """Loads PipelineConfig from environment variables or a JSON file.

    Example Usage:
        ```python
        config = ConfigManager.from_environment().get_pipeline_config(
            overrides={"hospital_country": "Uganda"}
        )
        pipeline = AnonymizationPipeline(config.hospital_context(), k=config.k_anonymity)
        ```
    """

    def __init__(self, config_data: dict[str, Any]):
        self._config_data = config_data
        self._pipeline_config: Optional[PipelineConfig] = None

    @classmethod
    def from_environment(cls) -> "ConfigManager":
        """Load configuration from environment variables.

        Environment Variables:
            - DA_HOSPITAL_COUNTRY: Hospital country
            - DA_HOSPITAL_LOCATION: Hospital location
            - DA_HOSPITAL_ID: Hospital identifier
            - DA_K_ANONYMITY: k-anonymity threshold
            - DA_STRICT_MODE: "true" to fail batches on the first record error
            - DA_RESOURCE_TYPE: Resource type label
            - DA_IDENTITY_SALT: Identity salt (secret)
        """
        pipeline: dict[str, Any] = {
            "hospital_country": os.getenv("DA_HOSPITAL_COUNTRY"),
            "hospital_location": os.getenv("DA_HOSPITAL_LOCATION"),
            "hospital_id": os.getenv("DA_HOSPITAL_ID"),
            "k_anonymity": os.getenv("DA_K_ANONYMITY"),
            "strict_mode": os.getenv("DA_STRICT_MODE"),
            "resource_type": os.getenv("DA_RESOURCE_TYPE"),
            "identity_salt": os.getenv("DA_IDENTITY_SALT"),
        }
        if pipeline["strict_mode"] is not None:
            pipeline["strict_mode"] = pipeline["strict_mode"].strip().lower() in TRUE_VALUES
        return cls({"pipeline": {key: value for key, value in pipeline.items() if value is not None}})

    @classmethod
    def from_file(cls, config_path: str) -> "ConfigManager":
        """Load configuration from a JSON file with a "pipeline" section.

        Raises:
            FileNotFoundError: If the file doesn't exist
            ValueError: If the file is not valid JSON
        """
        config_file = Path(config_path)
        if not config_file.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        # Salt files should not be world-readable
        if config_file.stat().st_mode & 0o077 != 0:
            logger.warning(
                f"Configuration file has overly permissive permissions: {config_path}. "
                "Consider setting to 600 when it contains an identity salt."
            )

        try:
            with open(config_file, "r", encoding="utf-8") as f:
                config_data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in configuration file: {e}") from e
        if not isinstance(config_data, dict):
            raise ValueError("Configuration file must contain a JSON object")

        return cls(config_data)

    def get_pipeline_config(self, overrides: Optional[dict[str, Any]] = None) -> PipelineConfig:
        """Validated pipeline configuration.

        Parameters:
            overrides: Values taking precedence over loaded ones (None values ignored)

        Raises:
            ValueError: If the merged configuration is invalid
        """
        if overrides:
            data = dict(self._config_data.get("pipeline", {}))
            data.update({key: value for key, value in overrides.items() if value is not None})
            return self._validate(data)

        if self._pipeline_config is None:
            self._pipeline_config = self._validate(dict(self._config_data.get("pipeline", {})))
        return self._pipeline_config

    @staticmethod
    def _validate(data: dict[str, Any]) -> PipelineConfig:
        try:
            return PipelineConfig(**data)
        except ValidationError as e:
            # Field names only; values may include the salt
            problems = ", ".join(
                ".".join(str(part) for part in error["loc"]) for error in e.errors()
            )
            raise ValueError(f"Invalid pipeline configuration: {problems}") from e
