"""Configuration management with YAML and environment variable support."""

from pathlib import Path
from typing import ClassVar, Optional

import yaml
from pydantic import BaseModel, Field, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)


class YamlConfigSettingsSource(PydanticBaseSettingsSource):
    """Custom settings source that loads configuration from YAML file."""

    def get_field_value(self, field, field_name: str):
        # Not used with prepare method
        pass

    def prepare_field_value(self, field_name: str, field, value, value_is_complex: bool):
        return value

    def __call__(self):
        yaml_path = Path("config.yaml")
        if not yaml_path.exists():
            return {}

        with open(yaml_path) as f:
            data = yaml.safe_load(f) or {}

        return data


class GoogleCloudConfig(BaseModel):
    """Google Cloud / Gemini access configuration.

    With use_vertex_ai enabled, Application Default Credentials and project_id
    are used. Otherwise api_key must hold a Gemini Developer API key.
    """

    project_id: str = ""
    location: str = "us-central1"
    use_vertex_ai: bool = True
    api_key: Optional[str] = None


class ModelsConfig(BaseModel):
    """AI model identifiers."""

    caption_llm: str = "gemini-2.5-flash"
    image_gen: str = "gemini-2.5-flash-image"


class GenerationConfig(BaseModel):
    """Bounds applied to every collaborator call."""

    timeout_seconds: float = 120.0
    retry_max_attempts: int = 4
    retry_base_delay: int = 2


class BatchConfig(BaseModel):
    """Batch run parameters.

    inter_job_delay is the courtesy interval between two image generations,
    sized against the provider's per-minute request quota.
    """

    inter_job_delay: float = 3.0
    max_quantity: int = Field(default=10, ge=1, le=10)


class StorageConfig(BaseModel):
    """Artifact storage configuration."""

    artifact_dir: Path = Path("tmp/artifacts")

    @field_validator("artifact_dir", mode="before")
    @classmethod
    def convert_artifact_dir_to_path(cls, v):
        """Convert string to Path object."""
        if isinstance(v, str):
            return Path(v)
        return v


class Settings(BaseSettings):
    """Main application settings with YAML and environment variable support.

    Configuration sources (in priority order):
    1. Environment variables (prefix: AUTOPOST_, delimiter: __)
    2. .env file
    3. YAML file (config.yaml)
    4. Field defaults
    """

    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_nested_delimiter="__",
        env_prefix="AUTOPOST_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    google_cloud: GoogleCloudConfig = GoogleCloudConfig()
    models: ModelsConfig = ModelsConfig()
    generation: GenerationConfig = GenerationConfig()
    batch: BatchConfig = BatchConfig()
    storage: StorageConfig = StorageConfig()

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ):
        """Customize settings sources to include YAML configuration.

        Priority order (highest to lowest):
        1. Environment variables
        2. .env file
        3. YAML file
        4. Init settings (programmatic defaults)
        """
        return (
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls),
            init_settings,
        )


# Singleton instance
settings = Settings()
