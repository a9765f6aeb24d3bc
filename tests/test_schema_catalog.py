import json

import pytest
from pyspark.sql.types import DateType, IntegerType, LongType, StringType, TimestampType

from schema_catalog import SchemaCatalog


class TestManifest:

    def test_entities_per_layer(self, catalog):
        assert catalog.entities_in_layer("raw") == [
            "crm_cust_info", "crm_prd_info", "crm_sales_details",
            "erp_cust_az12", "erp_loc_a101", "erp_px_cat_g1v2",
        ]
        assert catalog.entities_in_layer("canonical") == [
            "customer", "product", "sales_line",
            "customer_demo", "customer_location", "product_category",
        ]
        assert catalog.entities_in_layer("dimensional") == [
            "customer_dimension", "product_dimension", "sales_fact",
        ]

    def test_unknown_layer(self, catalog):
        with pytest.raises(ValueError, match="Unknown layer"):
            catalog.entities_in_layer("gold")

    def test_layer_of(self, catalog):
        assert catalog.layer_of("sales_fact") == "dimensional"
        assert catalog.layer_of("erp_loc_a101") == "raw"

    def test_relationships_point_at_dimensions(self, catalog):
        targets = {(r["fromAttribute"], r["toEntity"]) for r in catalog.get_relationships()}
        assert targets == {
            ("customer_key", "customer_dimension"),
            ("product_key", "product_dimension"),
        }


class TestSchemas:

    def test_raw_types(self, catalog):
        schema = catalog.to_spark_schema("crm_sales_details")
        assert schema["sls_order_dt"].dataType == IntegerType()
        assert schema["sls_ord_num"].dataType == StringType()
        assert catalog.to_spark_schema("crm_prd_info")["prd_start_dt"].dataType == TimestampType()

    def test_canonical_key_is_required(self, catalog):
        schema = catalog.to_spark_schema("customer")
        assert not schema["customer_id"].nullable
        assert schema["create_date"].dataType == DateType()

    def test_surrogate_keys_are_long_and_first(self, catalog):
        for entity, key in [("customer_dimension", "customer_key"),
                            ("product_dimension", "product_key")]:
            schema = catalog.to_spark_schema(entity)
            assert schema.fields[0].name == key
            assert schema.fields[0].dataType == LongType()

    def test_fact_columns(self, catalog):
        assert catalog.to_spark_schema("sales_fact").fieldNames() == [
            "order_number", "product_key", "customer_key", "order_date",
            "shipping_date", "due_date", "sales_amount", "quantity", "price",
        ]

    def test_load_layer(self, catalog):
        assert set(catalog.load_layer("dimensional")) == {
            "customer_dimension", "product_dimension", "sales_fact",
        }

    def test_schema_is_cached(self, catalog):
        assert catalog.to_spark_schema("product") is catalog.to_spark_schema("product")

    def test_unknown_entity(self, catalog):
        with pytest.raises(ValueError, match="not in manifest"):
            catalog.to_spark_schema("supplier")


class TestDescriptions:

    def test_entity_description(self, catalog):
        assert "customer" in catalog.get_entity_description("customer").lower()

    def test_column_descriptions_only_include_described_columns(self, catalog):
        descriptions = catalog.get_column_descriptions("product")
        assert "end_date" in descriptions
        assert all(descriptions.values())

    def test_print_entity_summary(self, catalog, capsys):
        catalog.print_entity_summary("customer")
        out = capsys.readouterr().out
        assert "Entity: customer [canonical]" in out
        assert "customer_id" in out
        assert "[REQUIRED]" in out


class TestDocuments:

    def test_missing_manifest(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            SchemaCatalog(str(tmp_path)).load_manifest()

    def test_entity_missing_from_document(self, tmp_path):
        (tmp_path / "manifest.json").write_text(json.dumps({
            "entities": [{"entityName": "orders", "layer": "raw", "entityPath": "raw.schema.json/orders"}],
        }))
        (tmp_path / "raw.schema.json").write_text(json.dumps({"definitions": []}))
        with pytest.raises(ValueError, match="not found in raw.schema.json"):
            SchemaCatalog(str(tmp_path)).load_entity("orders")

    def test_unknown_data_type_falls_back_to_string(self, tmp_path):
        (tmp_path / "manifest.json").write_text(json.dumps({
            "entities": [{"entityName": "orders", "layer": "raw", "entityPath": "raw.schema.json/orders"}],
        }))
        (tmp_path / "raw.schema.json").write_text(json.dumps({"definitions": [{
            "entityName": "orders",
            "hasAttributes": [
                {"name": "id", "dataType": "integer"},
                {"name": "blob", "dataType": "binary"},
                {"name": "id", "dataType": "string"},
            ],
        }]}))
        schema = SchemaCatalog(str(tmp_path)).to_spark_schema("orders")
        assert schema.fieldNames() == ["id", "blob"]
        assert schema["blob"].dataType == StringType()
