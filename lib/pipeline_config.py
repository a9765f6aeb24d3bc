"""
Pipeline Configuration — Loads config/pipeline.yaml into validated settings.

The YAML document is the base layer; environment variables prefixed with
``SALESCORE_`` override it, nested with ``__``:

    SALESCORE_CONFIG                     Path of the YAML document to load.
    SALESCORE_BASE_PATH                  Root replacing every layer's base_path (<root>/<layer>).
    SALESCORE_CLEANSING__MAX_WORKERS     Cleansing parallelism.
    SALESCORE_STORAGE__RAW__BASE_PATH    Any single nested setting.
"""

import os
from typing import Any, Dict, Optional, Tuple, Type

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict
from pyspark.sql import SparkSession

from pipeline_errors import ErrorCode, PipelineConfigError


PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
DEFAULT_CONFIG_PATH = os.path.join(PROJECT_ROOT, "config", "pipeline.yaml")

# Lenient parsing so malformed source fields degrade to null instead of raising.
DEFAULT_SPARK_CONF = {
    "spark.sql.ansi.enabled": "false",
    "spark.sql.legacy.timeParserPolicy": "CORRECTED",
}

LAYERS = ("raw", "canonical", "dimensional")


def _stringify_values(value: Any) -> Any:
    # Spark reader options and conf entries are strings; YAML yields bools and ints.
    if isinstance(value, dict):
        return {str(k): str(v).lower() if isinstance(v, bool) else str(v) for k, v in value.items()}
    return value


class LayerStorage(BaseModel):
    """Where and how the tables of one layer are stored."""

    model_config = ConfigDict(populate_by_name=True, extra="forbid")

    base_path: str = Field(..., min_length=1)
    format: str = Field(default="delta", min_length=1)
    options: Dict[str, str] = Field(default_factory=dict)
    catalog: Optional[str] = Field(default=None, description="Unity Catalog name")
    schema_name: Optional[str] = Field(default=None, alias="schema",
                                       description="Unity Catalog schema")

    @field_validator("options", mode="before")
    @classmethod
    def normalize_options(cls, v: Any) -> Any:
        return _stringify_values(v)

    @property
    def uses_catalog(self) -> bool:
        return bool(self.catalog and self.schema_name)


class StorageSettings(BaseModel):
    raw: LayerStorage
    canonical: LayerStorage
    dimensional: LayerStorage


class SparkSettings(BaseModel):
    app_name: str = "salescore-pipeline"
    master: Optional[str] = None
    conf: Dict[str, str] = Field(default_factory=dict)

    @field_validator("conf", mode="before")
    @classmethod
    def normalize_conf(cls, v: Any) -> Any:
        return _stringify_values(v)


class CleansingSettings(BaseModel):
    max_workers: int = Field(
        default=1,
        ge=1,
        le=32,
        description="Canonical entities rebuilt concurrently; 1 runs them in sequence",
    )


class PathSettings(BaseModel):
    schemas: str = "schemas"
    entity_mappings: str = "config/entity_mappings.yaml"
    quality_rules: str = "config/quality_rules.yaml"


class LoggingSettings(BaseModel):
    level: str = "INFO"

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Unknown log level '{v}'")
        return level


class PipelineSettings(BaseSettings):
    """The pipeline document, with ``SALESCORE_*`` environment overrides applied."""

    model_config = SettingsConfigDict(
        env_prefix="SALESCORE_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    project: str = "salescore"
    base_path: Optional[str] = Field(
        default=None,
        description="Root replacing every layer's base_path as <base_path>/<layer>",
    )
    storage: StorageSettings
    tables: Dict[str, str] = Field(default_factory=dict)
    spark: SparkSettings = Field(default_factory=SparkSettings)
    cleansing: CleansingSettings = Field(default_factory=CleansingSettings)
    paths: PathSettings = Field(default_factory=PathSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> Tuple[PydanticBaseSettingsSource, ...]:
        # Environment wins over the YAML document passed as init values.
        return env_settings, init_settings

    @model_validator(mode="after")
    def apply_base_path(self):
        if self.base_path:
            root = self.base_path.rstrip("/")
            for layer in LAYERS:
                getattr(self.storage, layer).base_path = f"{root}/{layer}"
        return self


class PipelineConfig:
    """
    Typed access to the pipeline configuration document.

    Usage:
        config = PipelineConfig.load()
        path = config.table_path("canonical", "customer")
    """

    LAYERS = LAYERS

    def __init__(self, settings: PipelineSettings, root: str = PROJECT_ROOT):
        self.settings = settings
        self.root = root

    @classmethod
    def load(cls, config_path: Optional[str] = None) -> "PipelineConfig":
        """Load the YAML configuration and apply environment overrides."""
        path = config_path or os.getenv("SALESCORE_CONFIG") or DEFAULT_CONFIG_PATH
        if not os.path.exists(path):
            raise PipelineConfigError(
                f"Configuration file not found: {path}",
                error_code=ErrorCode.CONFIG_MISSING,
            )
        with open(path, "r", encoding="utf-8") as f:
            try:
                document = yaml.safe_load(f) or {}
            except yaml.YAMLError as e:
                raise PipelineConfigError(f"Invalid YAML in {path}: {e}", cause=e) from e
        if not isinstance(document, dict):
            raise PipelineConfigError(f"Expected a mapping at the top of {path}")
        return cls.from_dict(document)

    @classmethod
    def from_dict(cls, document: Dict[str, Any], root: str = PROJECT_ROOT) -> "PipelineConfig":
        """Validate a configuration document; every problem is reported at once."""
        try:
            settings = PipelineSettings(**document)
        except ValidationError as e:
            fields = [".".join(str(part) for part in err["loc"]) for err in e.errors()]
            raise PipelineConfigError(
                f"Invalid pipeline configuration: {e}",
                details={"fields": fields},
                cause=e,
            ) from e
        return cls(settings, root)

    # -------------------------------------------------------------------------
    # Storage
    # -------------------------------------------------------------------------

    def storage(self, layer: str) -> LayerStorage:
        if layer not in self.LAYERS:
            raise PipelineConfigError(f"Unknown layer '{layer}'. Available: {list(self.LAYERS)}")
        return getattr(self.settings.storage, layer)

    def table_name(self, entity: str) -> str:
        """Physical table name for a logical entity."""
        return self.settings.tables.get(entity, entity)

    def table_path(self, layer: str, entity: str) -> str:
        return f"{self.storage(layer).base_path.rstrip('/')}/{self.table_name(entity)}"

    def table_fqn(self, layer: str, entity: str) -> Optional[str]:
        """Fully qualified catalog table name, or None when the layer is path-based."""
        storage = self.storage(layer)
        if not storage.uses_catalog:
            return None
        return f"`{storage.catalog}`.`{storage.schema_name}`.`{self.table_name(entity)}`"

    # -------------------------------------------------------------------------
    # Documents & Settings
    # -------------------------------------------------------------------------

    def _resolve(self, path: str) -> str:
        return path if os.path.isabs(path) else os.path.join(self.root, path)

    @property
    def schemas_root(self) -> str:
        return self._resolve(self.settings.paths.schemas)

    @property
    def entity_mappings_path(self) -> str:
        return self._resolve(self.settings.paths.entity_mappings)

    @property
    def quality_rules_path(self) -> str:
        return self._resolve(self.settings.paths.quality_rules)

    @property
    def max_workers(self) -> int:
        return self.settings.cleansing.max_workers

    @property
    def log_level(self) -> str:
        return self.settings.logging.level

    @property
    def spark_conf(self) -> Dict[str, str]:
        return {**DEFAULT_SPARK_CONF, **self.settings.spark.conf}

    def print_config(self):
        """Print the current configuration for verification."""
        print("=" * 60)
        print(f"SalesCore Pipeline — {self.settings.project}")
        print("=" * 60)
        for layer in self.LAYERS:
            storage = self.storage(layer)
            target = (
                f"{storage.catalog}.{storage.schema_name}" if storage.uses_catalog else storage.base_path
            )
            print(f"  {layer:12s} {storage.format:8s} {target}")
        print(f"  Schemas:       {self.schemas_root}")
        print(f"  Mappings:      {self.entity_mappings_path}")
        print(f"  Quality rules: {self.quality_rules_path}")
        print(f"  Max workers:   {self.max_workers}")
        print("=" * 60)


def get_spark(config: Optional[PipelineConfig] = None) -> SparkSession:
    """Return a SparkSession configured from the `spark` section."""
    spark_settings = config.settings.spark if config else SparkSettings()
    builder = SparkSession.builder.appName(spark_settings.app_name)
    if spark_settings.master:
        builder = builder.master(spark_settings.master)
    conf = config.spark_conf if config else DEFAULT_SPARK_CONF
    for key, value in conf.items():
        builder = builder.config(key, value)
    spark = builder.getOrCreate()
    # getOrCreate may return an existing session; runtime SQL settings still apply.
    for key, value in conf.items():
        if key.startswith("spark.sql."):
            spark.conf.set(key, value)
    return spark
