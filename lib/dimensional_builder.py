"""
Dimensional Builder — Projects the canonical layer into a star schema.

Dimensions:
    customer_dimension  CRM customers enriched with ERP demographics and location
    product_dimension   current product versions enriched with their category
Fact:
    sales_fact          one row per sales line, keyed to both dimensions

Surrogate keys are dense integers starting at 1, recomputed from scratch on
every run. The builder never filters facts to matched rows: an unmatched
lookup is a null foreign key, reported later by the validation engine.
"""

import logging
from typing import Dict, List, Tuple

from pyspark.sql import DataFrame
from pyspark.sql import functions as F
from pyspark.sql.window import Window

from cleansing_engine import NOT_AVAILABLE, conform_to_schema
from schema_catalog import SchemaCatalog


logger = logging.getLogger(__name__)


def assign_surrogate_key(df: DataFrame, key_col: str, order_cols: List[str]) -> DataFrame:
    """Prepend a dense 1-based key ordered by the given natural columns."""
    window = Window.orderBy(*[F.col(c).asc() for c in order_cols])
    return df.select(F.row_number().over(window).alias(key_col), *df.columns)


class DimensionalBuilder:
    """
    Builds dimension and fact projections from canonical DataFrames.

    Usage:
        builder = DimensionalBuilder(catalog)
        customers = builder.build_customer_dimension(customer_df, demo_df, location_df)
    """

    # Build order matters: the fact looks up both dimensions.
    BUILD_ORDER = ("customer_dimension", "product_dimension", "sales_fact")

    INPUTS: Dict[str, Tuple[Tuple[str, str], ...]] = {
        "customer_dimension": (
            ("canonical", "customer"),
            ("canonical", "customer_demo"),
            ("canonical", "customer_location"),
        ),
        "product_dimension": (
            ("canonical", "product"),
            ("canonical", "product_category"),
        ),
        "sales_fact": (
            ("canonical", "sales_line"),
            ("dimensional", "product_dimension"),
            ("dimensional", "customer_dimension"),
        ),
    }

    def __init__(self, catalog: SchemaCatalog):
        self.catalog = catalog

    # -------------------------------------------------------------------------
    # Dimensions
    # -------------------------------------------------------------------------

    def build_customer_dimension(
        self,
        customer: DataFrame,
        customer_demo: DataFrame,
        customer_location: DataFrame,
    ) -> DataFrame:
        """
        CRM is the primary source. ERP gender is used only when the CRM
        gender is 'n/a'.
        """
        ci, ca, la = customer.alias("ci"), customer_demo.alias("ca"), customer_location.alias("la")
        joined = (
            ci.join(ca, F.col("ci.customer_number") == F.col("ca.customer_number"), "left")
            .join(la, F.col("ci.customer_number") == F.col("la.customer_number"), "left")
        )
        dimension = joined.select(
            F.col("ci.customer_id").alias("customer_id"),
            F.col("ci.customer_number").alias("customer_number"),
            F.col("ci.first_name").alias("first_name"),
            F.col("ci.last_name").alias("last_name"),
            F.col("la.country").alias("country"),
            F.col("ci.marital_status").alias("marital_status"),
            F.when(F.col("ci.gender") != NOT_AVAILABLE, F.col("ci.gender"))
            .otherwise(F.coalesce(F.col("ca.gender"), F.lit(NOT_AVAILABLE)))
            .alias("gender"),
            F.col("ca.birthdate").alias("birthdate"),
            F.col("ci.create_date").alias("create_date"),
        )
        dimension = assign_surrogate_key(dimension, "customer_key", ["customer_id"])
        return conform_to_schema(dimension, self.catalog.to_spark_schema("customer_dimension"))

    def build_product_dimension(
        self,
        product: DataFrame,
        product_category: DataFrame,
    ) -> DataFrame:
        """Current versions only: rows with a derived end date are excluded."""
        pn, pc = product.alias("pn"), product_category.alias("pc")
        dimension = (
            pn.filter(F.col("pn.end_date").isNull())
            .join(pc, F.col("pn.category_id") == F.col("pc.category_id"), "left")
            .select(
                F.col("pn.product_id").alias("product_id"),
                F.col("pn.product_number").alias("product_number"),
                F.col("pn.product_name").alias("product_name"),
                F.col("pn.category_id").alias("category_id"),
                F.col("pc.category").alias("category"),
                F.col("pc.subcategory").alias("subcategory"),
                F.col("pc.maintenance").alias("maintenance"),
                F.col("pn.cost").alias("cost"),
                F.col("pn.product_line").alias("product_line"),
                F.col("pn.start_date").alias("start_date"),
            )
        )
        dimension = assign_surrogate_key(dimension, "product_key", ["start_date", "product_number"])
        return conform_to_schema(dimension, self.catalog.to_spark_schema("product_dimension"))

    # -------------------------------------------------------------------------
    # Fact
    # -------------------------------------------------------------------------

    def build_sales_fact(
        self,
        sales_line: DataFrame,
        product_dimension: DataFrame,
        customer_dimension: DataFrame,
    ) -> DataFrame:
        sd = sales_line.alias("sd")
        pr = product_dimension.select("product_key", "product_number").alias("pr")
        cu = customer_dimension.select("customer_key", "customer_id").alias("cu")
        fact = (
            sd.join(pr, F.col("sd.product_number") == F.col("pr.product_number"), "left")
            .join(cu, F.col("sd.customer_id") == F.col("cu.customer_id"), "left")
            .select(
                F.col("sd.order_number").alias("order_number"),
                F.col("pr.product_key").alias("product_key"),
                F.col("cu.customer_key").alias("customer_key"),
                F.col("sd.order_date").alias("order_date"),
                F.col("sd.ship_date").alias("shipping_date"),
                F.col("sd.due_date").alias("due_date"),
                F.col("sd.sales_amount").alias("sales_amount"),
                F.col("sd.quantity").alias("quantity"),
                F.col("sd.price").alias("price"),
            )
        )
        return conform_to_schema(fact, self.catalog.to_spark_schema("sales_fact"))

    # -------------------------------------------------------------------------
    # Store-backed builds
    # -------------------------------------------------------------------------

    def build(self, name: str, store) -> int:
        """
        Rebuild one dimensional table from the store and replace it.

        Returns:
            Number of records written.
        """
        if name not in self.INPUTS:
            raise ValueError(f"Unknown dimensional table '{name}'. Available: {list(self.INPUTS)}")

        inputs = [store.read(layer, entity) for layer, entity in self.INPUTS[name]]
        builders = {
            "customer_dimension": self.build_customer_dimension,
            "product_dimension": self.build_product_dimension,
            "sales_fact": self.build_sales_fact,
        }
        logger.info("Building %s", name)
        df = builders[name](*inputs)
        return store.write(
            "dimensional",
            name,
            df,
            description=self.catalog.get_entity_description(name),
            column_descriptions=self.catalog.get_column_descriptions(name),
        )
