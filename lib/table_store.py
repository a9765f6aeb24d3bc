"""
Table Store — Reads and fully reloads the tables of each pipeline layer.

Every write replaces the whole table. Delta and Unity Catalog tables are
overwritten in a single transaction. Plain file formats (parquet, csv, ...)
are written to a staging directory first and then swapped in, so readers
never observe a half-written table directory.
"""

import logging
from typing import Dict, Optional

from pyspark.sql import DataFrame, SparkSession
from pyspark.sql.types import StructType

from cleansing_engine import conform_to_schema
from pipeline_config import PipelineConfig
from pipeline_errors import ErrorCode, TableStoreError


logger = logging.getLogger(__name__)

TRANSACTIONAL_FORMATS = {"delta"}
SCHEMA_ON_READ_FORMATS = {"csv", "json"}
STAGING_SUFFIX = "__staging"
PREVIOUS_SUFFIX = "__previous"


def _escape(text: str) -> str:
    return text.replace("'", "\\'").replace("\n", " ")


class TableStore:
    """
    Layer-aware access to raw, canonical and dimensional tables.

    Usage:
        store = TableStore(spark, config)
        raw_df = store.read_raw("crm_cust_info", raw_schema)
        store.write("canonical", "customer", canonical_df)
    """

    def __init__(self, spark: SparkSession, config: PipelineConfig):
        self.spark = spark
        self.config = config

    def location(self, layer: str, entity: str) -> str:
        return self.config.table_fqn(layer, entity) or self.config.table_path(layer, entity)

    # -------------------------------------------------------------------------
    # Reads
    # -------------------------------------------------------------------------

    def read(self, layer: str, entity: str, schema: Optional[StructType] = None) -> DataFrame:
        """Read a table; raises TableStoreError when it is unavailable."""
        storage = self.config.storage(layer)
        location = self.location(layer, entity)
        try:
            if storage.uses_catalog:
                return self.spark.table(location)
            reader = self.spark.read.format(storage.format).options(**storage.options)
            if schema is not None and storage.format in SCHEMA_ON_READ_FORMATS:
                reader = reader.schema(schema)
            return reader.load(location)
        except Exception as e:
            raise TableStoreError(
                f"Cannot read {layer} table '{entity}' at {location}: {e}",
                details={"layer": layer, "entity": entity, "location": location},
                cause=e,
            ) from e

    def read_raw(self, entity: str, schema: StructType) -> DataFrame:
        """Read a raw extract conformed to its declared schema (schema-on-read)."""
        return conform_to_schema(self.read("raw", entity, schema), schema)

    # -------------------------------------------------------------------------
    # Writes
    # -------------------------------------------------------------------------

    def write(
        self,
        layer: str,
        entity: str,
        df: DataFrame,
        description: Optional[str] = None,
        column_descriptions: Optional[Dict[str, str]] = None,
    ) -> int:
        """
        Replace a canonical or dimensional table with the given DataFrame.

        Descriptions become table and column comments on catalog tables.

        Returns:
            Number of records in the rebuilt table.
        """
        if layer == "raw":
            raise TableStoreError(
                f"Raw table '{entity}' is read-only",
                error_code=ErrorCode.TABLE_WRITE_FAILED,
                details={"layer": layer, "entity": entity},
            )

        storage = self.config.storage(layer)
        location = self.location(layer, entity)
        try:
            if storage.uses_catalog:
                self._overwrite(df, storage).saveAsTable(location)
                self._comment(location, df, description, column_descriptions or {})
            elif storage.format in TRANSACTIONAL_FORMATS:
                self._overwrite(df, storage).save(location)
            else:
                self._swap_write(df, storage, location)
        except Exception as e:
            raise TableStoreError(
                f"Cannot write {layer} table '{entity}' at {location}: {e}",
                error_code=ErrorCode.TABLE_WRITE_FAILED,
                details={"layer": layer, "entity": entity, "location": location},
                cause=e,
            ) from e

        record_count = self.read(layer, entity).count()
        logger.info("Written %d records to %s", record_count, location)
        return record_count

    def _comment(self, table_fqn: str, df: DataFrame, description: Optional[str],
                 column_descriptions: Dict[str, str]):
        if description:
            self.spark.sql(f"COMMENT ON TABLE {table_fqn} IS '{_escape(description)}'")
        for col_name, text in column_descriptions.items():
            if col_name in df.columns and text:
                self.spark.sql(
                    f"ALTER TABLE {table_fqn} ALTER COLUMN `{col_name}` COMMENT '{_escape(text)}'"
                )

    def _overwrite(self, df: DataFrame, storage):
        return (
            df.write.format(storage.format)
            .mode("overwrite")
            .option("overwriteSchema", "true")
            .options(**storage.options)
        )

    def _swap_write(self, df: DataFrame, storage, location: str):
        """Write next to the target, then swap directories through the Hadoop FileSystem."""
        staging = f"{location}{STAGING_SUFFIX}"
        previous = f"{location}{PREVIOUS_SUFFIX}"
        df.write.format(storage.format).mode("overwrite").options(**storage.options).save(staging)

        jvm = self.spark._jvm
        hadoop_conf = self.spark._jsc.hadoopConfiguration()
        Path = jvm.org.apache.hadoop.fs.Path
        target_path, staging_path, previous_path = Path(location), Path(staging), Path(previous)
        fs = target_path.getFileSystem(hadoop_conf)

        if fs.exists(previous_path):
            fs.delete(previous_path, True)
        had_target = fs.exists(target_path)
        if had_target:
            fs.rename(target_path, previous_path)
        if not fs.rename(staging_path, target_path):
            if had_target:
                fs.rename(previous_path, target_path)
            raise IOError(f"Could not move staged table {staging} into place")
        if had_target:
            fs.delete(previous_path, True)
