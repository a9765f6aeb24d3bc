import os

import pytest
from pyspark.sql import SparkSession
from pyspark.sql.types import StructField, StructType

from cleansing_engine import CleansingEngine
from schema_catalog import SchemaCatalog
from validation_engine import ValidationEngine


PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
SCHEMAS_ROOT = os.path.join(PROJECT_ROOT, "schemas")
ENTITY_MAPPINGS_PATH = os.path.join(PROJECT_ROOT, "config", "entity_mappings.yaml")
QUALITY_RULES_PATH = os.path.join(PROJECT_ROOT, "config", "quality_rules.yaml")


@pytest.fixture(scope="session")
def spark():
    session = (
        SparkSession.builder.master("local[1]")
        .appName("salescore-tests")
        .config("spark.sql.shuffle.partitions", "1")
        .config("spark.ui.enabled", "false")
        .config("spark.sql.ansi.enabled", "false")
        .config("spark.sql.legacy.timeParserPolicy", "CORRECTED")
        .config("spark.sql.session.timeZone", "UTC")
        .getOrCreate()
    )
    yield session
    session.stop()


@pytest.fixture(scope="session")
def catalog():
    return SchemaCatalog(SCHEMAS_ROOT)


@pytest.fixture(scope="session")
def cleansing_engine():
    return CleansingEngine(ENTITY_MAPPINGS_PATH)


@pytest.fixture(scope="session")
def validation_engine():
    return ValidationEngine(QUALITY_RULES_PATH)


@pytest.fixture
def make_df(spark, catalog):
    """Build a DataFrame for a catalog entity from dicts; omitted columns are null."""

    def _make(entity, rows):
        # All nullable so tests can feed rows that break declared constraints.
        schema = StructType([
            StructField(field.name, field.dataType, True)
            for field in catalog.to_spark_schema(entity).fields
        ])
        records = [tuple(row.get(field.name) for field in schema.fields) for row in rows]
        return spark.createDataFrame(records, schema)

    return _make
