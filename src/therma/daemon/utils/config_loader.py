import os
from decimal import Decimal
from pathlib import Path
from typing import Dict, Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from .logging_config import StructuredLogger

logger = StructuredLogger(__name__)

DEFAULT_CONFIG_FILE = Path.home() / ".therma" / "config" / "therma.yaml"
DEFAULT_MODEL = "anthropic.claude-3-sonnet-20240229-v1:0"

# --- Schema Models ---


class StoreConfig(BaseModel):
    backend: Literal["dynamodb", "memory"] = "dynamodb"
    region: Optional[str] = None
    endpoint_url: Optional[str] = None
    idempotency_table: str = "therma-idempotency"
    spend_table: str = "therma-user-spend"


class IdempotencyConfig(BaseModel):
    ttl_hours: int = Field(24, ge=1)


class SpendConfig(BaseModel):
    default_daily_limit: Decimal = Field(Decimal("5.00"), gt=0)
    record_ttl_days: int = Field(7, ge=1)


class EncryptionConfig(BaseModel):
    backend: Literal["kms", "local"] = "kms"
    key_id: Optional[str] = None
    local_key_env: str = "THERMA_LOCAL_DATA_KEY"


class ModelPricing(BaseModel):
    input_per_1k: Decimal = Field(..., ge=0)
    output_per_1k: Decimal = Field(..., ge=0)


def _default_pricing() -> Dict[str, ModelPricing]:
    return {
        "anthropic.claude-3-sonnet-20240229-v1:0": ModelPricing(
            input_per_1k=Decimal("0.003"), output_per_1k=Decimal("0.015")
        ),
        "anthropic.claude-3-haiku-20240307-v1:0": ModelPricing(
            input_per_1k=Decimal("0.00025"), output_per_1k=Decimal("0.00125")
        ),
        "anthropic.claude-3-opus-20240229-v1:0": ModelPricing(
            input_per_1k=Decimal("0.015"), output_per_1k=Decimal("0.075")
        ),
    }


class LLMConfig(BaseModel):
    # pricing is declared first so the model validator can see it
    pricing: Dict[str, ModelPricing] = Field(default_factory=_default_pricing)
    model: str = DEFAULT_MODEL
    output_tokens: int = Field(100, ge=0)

    @field_validator("model")
    def validate_model(cls, v, values):
        if "pricing" in values.data and v not in values.data["pricing"]:
            raise ValueError(f"Model '{v}' has no pricing entry")
        return v


class AuthConfig(BaseModel):
    secret_env: str = "THERMA_JWT_SECRET"
    token_ttl_minutes: int = Field(60, ge=1)


class DatabaseConfig(BaseModel):
    backend: Literal["postgres", "memory"] = "postgres"


class WorkflowConfig(BaseModel):
    url: Optional[str] = None
    secret: Optional[str] = None
    timeout_seconds: float = Field(3.0, gt=0)


class ThermaConfig(BaseModel):
    version: int = Field(1, ge=1, le=1)
    store: StoreConfig = Field(default_factory=StoreConfig)
    idempotency: IdempotencyConfig = Field(default_factory=IdempotencyConfig)
    spend: SpendConfig = Field(default_factory=SpendConfig)
    encryption: EncryptionConfig = Field(default_factory=EncryptionConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    auth: AuthConfig = Field(default_factory=AuthConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    workflow: WorkflowConfig = Field(default_factory=WorkflowConfig)


# Environment variables that win over the file
_ENV_OVERRIDES = (
    ("IDEMPOTENCY_TABLE_NAME", ("store", "idempotency_table")),
    ("USER_SPEND_TABLE_NAME", ("store", "spend_table")),
    ("AWS_REGION", ("store", "region")),
    ("KMS_KEY_ID", ("encryption", "key_id")),
    ("THERMA_WORKFLOW_URL", ("workflow", "url")),
)


def _apply_env_overrides(raw: dict) -> dict:
    data = dict(raw)
    for env_name, (section, field) in _ENV_OVERRIDES:
        value = (os.getenv(env_name) or "").strip()
        if not value:
            continue
        block = dict(data.get(section) or {})
        block[field] = value
        data[section] = block
    return data


# --- Config Loader (Atomic Reload) ---


class ConfigLoader:
    def __init__(self, config_file: Optional[Path] = None):
        explicit = config_file or (os.getenv("THERMA_CONFIG_FILE") or "").strip()
        self.explicit = bool(explicit)
        self.config_file = Path(explicit) if explicit else DEFAULT_CONFIG_FILE
        self.config: Optional[ThermaConfig] = None

    def _read_file(self) -> dict:
        if not self.config_file.exists():
            if self.explicit:
                logger.critical("Config file not found", path=str(self.config_file))
                raise FileNotFoundError(f"Config file not found at {self.config_file}")
            logger.info("No config file, using defaults", path=str(self.config_file))
            return {}

        with open(self.config_file, "r", encoding="utf-8") as f:
            raw_data = yaml.safe_load(f)
        if raw_data is None:
            return {}
        if not isinstance(raw_data, dict):
            raise ValueError("Config root must be a mapping")
        return raw_data

    def load_config(self) -> ThermaConfig:
        """
        Loads and validates configuration from the YAML file plus env overrides.
        ATOMIC: On failure, previous config is preserved.
        Raises ValueError if invalid.
        """
        try:
            raw_data = self._read_file()
            logger.info("Loading configuration", path=str(self.config_file))

            # Validate into temporary, never touch self.config until success
            new_config = ThermaConfig(**_apply_env_overrides(raw_data))

            self.config = new_config

            logger.info(
                "Configuration loaded successfully",
                version=self.config.version,
                store=self.config.store.backend,
                encryption=self.config.encryption.backend,
                database=self.config.database.backend,
            )
            return self.config

        except FileNotFoundError:
            raise
        except Exception as e:
            logger.error("Configuration validation failed", error=str(e))
            if self.config is not None:
                logger.warning("Keeping previous valid configuration")
                raise ValueError(f"Invalid configuration (previous config retained): {e}")
            logger.critical("No previous configuration to fall back to")
            raise ValueError(f"Invalid configuration (no fallback): {e}")

    def get(self) -> ThermaConfig:
        if not self.config:
            self.load_config()
        return self.config


config_loader = ConfigLoader()
