"""
Config-Driven Cleansing Engine — Reads entity_mappings.yaml and rebuilds the canonical layer.

For every canonical entity the engine:
  1. Drops rows without a natural key and deduplicates (latest record wins)
  2. Applies the column mappings through registered transform functions
  3. Applies derived fields (multi-column and window rules)
  4. Conforms the result to the canonical schema

The rule tables below (code lookups, key decomposition, date and sales repair)
are fixed business rules; the YAML only declares which rule applies to which
column. Each Spark rule has a pure-Python twin so the rule itself can be
tested without a SparkSession.

A malformed field never fails a row: it degrades to 'n/a' or null.
"""

import logging
from datetime import date, datetime
from typing import Dict, List, Optional, Tuple

import yaml
from pyspark.sql import Column, DataFrame, SparkSession
from pyspark.sql import functions as F
from pyspark.sql.types import StructType
from pyspark.sql.window import Window


logger = logging.getLogger(__name__)


# =============================================================================
# Rule Tables
# =============================================================================

NOT_AVAILABLE = "n/a"

MARITAL_STATUS_CODES = {"S": "Single", "M": "Married"}

CRM_GENDER_CODES = {"F": "Female", "M": "Male"}

ERP_GENDER_CODES = {"F": "Female", "FEMALE": "Female", "M": "Male", "MALE": "Male"}

PRODUCT_LINE_CODES = {"M": "Mountain", "R": "Road", "S": "Other Sales", "T": "Touring"}

COUNTRY_CODES = {"DE": "Germany", "US": "United States", "USA": "United States"}

# ERP demographic ids carry this junk prefix in front of the CRM customer key.
JUNK_ID_PREFIX = "NAS"

DATE_CODE_FORMAT = "yyyyMMdd"
DATE_CODE_LENGTH = 8


def _vocabulary(*tables: Dict[str, str]) -> List[str]:
    labels = {label for table in tables for label in table.values()}
    return sorted(labels) + [NOT_AVAILABLE]


# Canonical value sets, shared with the validation engine's domain checks.
VOCABULARIES = {
    "marital_status": _vocabulary(MARITAL_STATUS_CODES),
    "gender": _vocabulary(CRM_GENDER_CODES, ERP_GENDER_CODES),
    "product_line": _vocabulary(PRODUCT_LINE_CODES),
}


# =============================================================================
# Pure Rule Functions
# =============================================================================

def normalize_code(value: Optional[str], table: Dict[str, str]) -> str:
    """Map a trimmed, case-insensitive code to its label; anything else is 'n/a'."""
    if value is None:
        return NOT_AVAILABLE
    return table.get(str(value).strip().upper(), NOT_AVAILABLE)


def normalize_country(value: Optional[str]) -> str:
    """Expand known country codes; blank becomes 'n/a', other values are kept trimmed."""
    if value is None or not str(value).strip():
        return NOT_AVAILABLE
    trimmed = str(value).strip()
    return COUNTRY_CODES.get(trimmed.upper(), trimmed)


def decompose_product_key(raw_key: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """
    Split a composite product key into (category id, product key).

    'CO-RF-FR-R92B-58' → ('CO_RF', 'FR-R92B-58')
    'AB-1234-XY9Q'     → ('AB_1234', 'XY9Q')

    Keys with fewer than three segments fall back to fixed positions:
    characters 1-5 for the category, 7 onward for the product.
    """
    if raw_key is None:
        return None, None
    key = raw_key.strip()
    parts = key.split("-", 2)
    if len(parts) == 3:
        return f"{parts[0]}_{parts[1]}", parts[2]
    return key[:5].replace("-", "_"), key[6:]


def parse_date_code(value) -> Optional[date]:
    """Parse a yyyyMMdd integer; zero, wrong length or impossible dates give None."""
    if value is None or value == 0:
        return None
    text = str(value)
    if len(text) != DATE_CODE_LENGTH:
        return None
    try:
        return datetime.strptime(text, "%Y%m%d").date()
    except ValueError:
        return None


def strip_junk_prefix(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    trimmed = value.strip()
    if trimmed.upper().startswith(JUNK_ID_PREFIX):
        return trimmed[len(JUNK_ID_PREFIX):]
    return trimmed


def remove_separators(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return value.strip().replace("-", "")


def coerce_cost(value) -> int:
    if value is None or value < 0:
        return 0
    return value


def repair_sales_amount(sales, quantity, price):
    """
    Recompute the amount as quantity * |price| when it is missing,
    non-positive or inconsistent; otherwise keep it.
    """
    expected = quantity * abs(price) if quantity is not None and price is not None else None
    if sales is None or sales <= 0:
        return expected
    if expected is not None and sales != expected:
        return expected
    return sales


def derive_price(price, sales, quantity):
    """Derive price as amount / quantity when the source price is missing or non-positive."""
    if price is not None and price > 0:
        return price
    if sales is None or not quantity:
        return None
    return int(sales / quantity)


# =============================================================================
# Column Transform Registry
# =============================================================================
# Each function takes a column name and returns a PySpark Column expression.

def _code_lookup(col_name: str, table: Dict[str, str]) -> Column:
    """Build a CASE expression from a code table, grouping codes by label."""
    key = F.upper(F.trim(F.col(col_name)))
    by_label: Dict[str, List[str]] = {}
    for code, label in table.items():
        by_label.setdefault(label, []).append(code)

    expr = None
    for label, codes in by_label.items():
        condition = key.isin(*codes)
        expr = F.when(condition, F.lit(label)) if expr is None else expr.when(condition, F.lit(label))
    return expr.otherwise(F.lit(NOT_AVAILABLE))


def _normalize_country(col_name: str) -> Column:
    trimmed = F.trim(F.col(col_name))
    expr = F.when(trimmed.isNull() | (trimmed == ""), F.lit(NOT_AVAILABLE))
    by_label: Dict[str, List[str]] = {}
    for code, label in COUNTRY_CODES.items():
        by_label.setdefault(label, []).append(code)
    for label, codes in by_label.items():
        expr = expr.when(F.upper(trimmed).isin(*codes), F.lit(label))
    return expr.otherwise(trimmed)


def _product_key_parts(col_name: str) -> Tuple[Column, Column]:
    key = F.trim(F.col(col_name))
    parts = F.split(key, "-", 3)
    has_segments = F.size(parts) == 3
    category_id = F.when(
        has_segments, F.concat_ws("_", parts.getItem(0), parts.getItem(1))
    ).otherwise(F.regexp_replace(F.substring(key, 1, 5), "-", "_"))
    product_number = F.when(has_segments, parts.getItem(2)).otherwise(
        key.substr(F.lit(7), F.length(key))
    )
    return category_id, product_number


def _parse_date_code(col_name: str) -> Column:
    """Parse yyyyMMdd integer codes; 0 or a length other than 8 becomes null."""
    as_text = F.col(col_name).cast("string")
    return (
        F.when(
            (F.col(col_name) == 0) | (F.length(as_text) != DATE_CODE_LENGTH),
            F.lit(None).cast("date"),
        )
        .otherwise(F.to_date(F.try_to_timestamp(as_text, F.lit(DATE_CODE_FORMAT))))
    )


def _strip_junk_prefix(col_name: str) -> Column:
    trimmed = F.trim(F.col(col_name))
    return F.when(
        F.upper(trimmed).startswith(JUNK_ID_PREFIX),
        trimmed.substr(F.lit(len(JUNK_ID_PREFIX) + 1), F.length(trimmed)),
    ).otherwise(trimmed)


def _non_negative_or_zero(col_name: str) -> Column:
    return F.when(F.col(col_name).isNull() | (F.col(col_name) < 0), F.lit(0)).otherwise(
        F.col(col_name)
    )


def _null_if_future(col_name: str) -> Column:
    """Null out dates after the processing date."""
    return F.when(F.col(col_name) > F.current_date(), F.lit(None)).otherwise(F.col(col_name))


TRANSFORM_REGISTRY = {
    "trim": lambda col: F.trim(F.col(col)),
    "to_date": lambda col: F.to_date(F.col(col)),
    "date_code": _parse_date_code,
    "marital_status": lambda col: _code_lookup(col, MARITAL_STATUS_CODES),
    "crm_gender": lambda col: _code_lookup(col, CRM_GENDER_CODES),
    "erp_gender": lambda col: _code_lookup(col, ERP_GENDER_CODES),
    "product_line": lambda col: _code_lookup(col, PRODUCT_LINE_CODES),
    "country": _normalize_country,
    "category_id": lambda col: _product_key_parts(col)[0],
    "product_number": lambda col: _product_key_parts(col)[1],
    "strip_junk_prefix": _strip_junk_prefix,
    "remove_separators": lambda col: F.regexp_replace(F.trim(F.col(col)), "-", ""),
    "non_negative_or_zero": _non_negative_or_zero,
    "null_if_future": _null_if_future,
}


# =============================================================================
# Derived Field Registry
# =============================================================================
# Derived rules read several columns; they run after the mappings while the
# raw columns are still available.

def _validity_end_date(start_col: str, partition_col: str) -> Column:
    """Day before the next version's start within the partition; null for the latest."""
    window = Window.partitionBy(partition_col).orderBy(F.col(start_col).asc())
    return F.date_sub(F.lead(F.col(start_col)).over(window), 1)


def _repair_sales_amount(sales_col: str, quantity_col: str, price_col: str) -> Column:
    sales = F.col(sales_col)
    expected = F.col(quantity_col) * F.abs(F.col(price_col))
    return F.when(
        sales.isNull() | (sales <= 0) | (sales != expected), expected
    ).otherwise(sales)


def _derive_price(price_col: str, sales_col: str, quantity_col: str) -> Column:
    price = F.col(price_col)
    quantity = F.col(quantity_col)
    return F.when(
        price.isNull() | (price <= 0),
        F.col(sales_col) / F.when(quantity != 0, quantity),
    ).otherwise(price)


DERIVED_REGISTRY = {
    "validity_end_date": _validity_end_date,
    "repair_sales_amount": _repair_sales_amount,
    "derive_price": _derive_price,
}


# =============================================================================
# Cleansing Engine
# =============================================================================

class CleansingEngine:
    """
    Config-driven raw-to-canonical cleansing engine.

    Reads entity_mappings.yaml, applies column mappings and rules,
    deduplicates, and produces canonical DataFrames conforming to the
    canonical schema. Entities are independent of each other.
    """

    def __init__(self, config_path: str, spark: Optional[SparkSession] = None):
        """
        Args:
            config_path: Path to entity_mappings.yaml
            spark: Active SparkSession (only needed by cleanse())
        """
        self.spark = spark
        with open(config_path, "r", encoding="utf-8") as f:
            self.config = yaml.safe_load(f) or {}
        self.entities = self.config.get("entities", {})
        self._validate_config()

    @property
    def entity_names(self) -> List[str]:
        return list(self.entities)

    def get_entity_config(self, entity_name: str) -> dict:
        """Get the mapping configuration for an entity."""
        if entity_name not in self.entities:
            raise ValueError(
                f"Entity '{entity_name}' not in config. "
                f"Available: {list(self.entities.keys())}"
            )
        return self.entities[entity_name]

    def source_table(self, entity_name: str) -> str:
        """Raw entity the canonical entity is rebuilt from."""
        return self.get_entity_config(entity_name)["raw"]["table"]

    def _validate_config(self):
        unknown = []
        for entity_name, config in self.entities.items():
            if "table" not in (config.get("raw") or {}):
                raise ValueError(f"Entity '{entity_name}' has no raw.table")
            for target, mapping in (config.get("mappings") or {}).items():
                name = (mapping or {}).get("transform")
                if name and name not in TRANSFORM_REGISTRY:
                    unknown.append(f"{entity_name}.{target}: {name}")
            for derived in config.get("derived") or []:
                if derived["transform"] not in DERIVED_REGISTRY:
                    unknown.append(f"{entity_name}.{derived['name']}: {derived['transform']}")
        if unknown:
            raise ValueError(f"Unknown transforms in entity mappings: {unknown}")

    def transform(
        self,
        entity_name: str,
        raw_df: DataFrame,
        canonical_schema: StructType,
    ) -> DataFrame:
        """
        Apply config-driven cleansing rules to a raw DataFrame.

        Steps:
            1. Drop rows with null natural keys, then deduplicate
            2. Apply column mappings with transforms
            3. Apply derived fields
            4. Conform to the canonical schema

        Args:
            entity_name: Canonical entity name (e.g., "customer")
            raw_df: Raw DataFrame as landed in the raw zone
            canonical_schema: Target canonical StructType

        Returns:
            Cleansed DataFrame conforming to the canonical schema
        """
        config = self.get_entity_config(entity_name)
        raw_config = config.get("raw", {})
        mappings = config.get("mappings") or {}
        derived = config.get("derived") or []

        # --- Step 1: Natural keys & deduplication ---
        df = raw_df
        for key_col in raw_config.get("drop_null_keys") or []:
            df = df.filter(F.col(key_col).isNotNull())

        dedup_key = raw_config.get("dedup_key")
        dedup_order = raw_config.get("dedup_order")
        if dedup_key and dedup_order:
            df = self._deduplicate(df, dedup_key, dedup_order)

        # --- Step 2: Column mappings (raw columns stay available) ---
        mapped_cols = [
            self._apply_mapping(target_col, mapping or {})
            for target_col, mapping in mappings.items()
        ]
        passthrough = [c for c in df.columns if c not in mappings]
        df = df.select(*passthrough, *mapped_cols)

        # --- Step 3: Derived fields ---
        for derived_field in derived:
            sources = derived_field["from"]
            if isinstance(sources, str):
                sources = [sources]
            df = df.withColumn(
                derived_field["name"],
                DERIVED_REGISTRY[derived_field["transform"]](*sources),
            )

        # --- Step 4: Conform to canonical schema ---
        return conform_to_schema(df, canonical_schema)

    def _apply_mapping(self, target_col: str, mapping: dict) -> Column:
        """Apply a single column mapping from YAML config."""
        source_col = mapping.get("source")
        transform_name = mapping.get("transform")

        if source_col is None:
            return F.lit(mapping.get("default")).alias(target_col)
        if transform_name is None:
            return F.col(source_col).alias(target_col)
        return TRANSFORM_REGISTRY[transform_name](source_col).alias(target_col)

    def _deduplicate(self, df: DataFrame, id_col: str, order_col: str) -> DataFrame:
        """Keep the most recently created record per ID."""
        window = Window.partitionBy(id_col).orderBy(F.col(order_col).desc_nulls_last())
        return (
            df.withColumn("_row_num", F.row_number().over(window))
            .filter(F.col("_row_num") == 1)
            .drop("_row_num")
        )

    def cleanse(self, entity_name: str, store, catalog) -> int:
        """
        Full reload of one canonical entity: read raw, transform, replace.

        Returns:
            Number of canonical records written.
        """
        source = self.source_table(entity_name)
        raw_df = store.read_raw(source, catalog.to_spark_schema(source))
        canonical_df = self.transform(entity_name, raw_df, catalog.to_spark_schema(entity_name))
        logger.info("Cleansing %s from raw table %s", entity_name, source)
        return store.write(
            "canonical",
            entity_name,
            canonical_df,
            description=catalog.get_entity_description(entity_name),
            column_descriptions=catalog.get_column_descriptions(entity_name),
        )


def conform_to_schema(df: DataFrame, schema: StructType) -> DataFrame:
    """Select and cast columns to match a schema exactly; absent columns become typed nulls."""
    select_cols = []
    for field in schema.fields:
        if field.name in df.columns:
            select_cols.append(F.col(field.name).cast(field.dataType).alias(field.name))
        else:
            select_cols.append(F.lit(None).cast(field.dataType).alias(field.name))
    return df.select(*select_cols)
