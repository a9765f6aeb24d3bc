"""
Schema Catalog — Parses entity definitions (*.schema.json) into PySpark StructTypes.

Every table the pipeline reads or writes is described once, in the JSON
documents under schemas/:

    schemas/
    ├── manifest.json              ← lists all entities, their layer and relationships
    ├── raw.schema.json            ← source extracts as landed by the bulk loader
    ├── canonical.schema.json      ← cleansed, standardized entities
    └── dimensional.schema.json    ← star schema (dimensions + fact)

No PySpark schema is hand-coded; readers and writers conform DataFrames to
the StructTypes produced here.
"""

import json
import os
from typing import Dict, List, Optional, Tuple

from pyspark.sql.types import (
    StructType,
    StructField,
    StringType,
    IntegerType,
    LongType,
    DoubleType,
    DecimalType,
    BooleanType,
    TimestampType,
    DateType,
)


# =============================================================================
# Entity Data Type → PySpark Type Mapping
# =============================================================================

TYPE_MAP = {
    "string": StringType(),
    "integer": IntegerType(),
    "bigInteger": LongType(),
    "double": DoubleType(),
    "decimal": DecimalType(18, 2),
    "boolean": BooleanType(),
    "dateTime": TimestampType(),
    "date": DateType(),
}

LAYERS = ("raw", "canonical", "dimensional")


class SchemaCatalog:
    """
    Resolves entity definitions listed in the manifest into PySpark schemas.

    Usage:
        catalog = SchemaCatalog("/path/to/schemas")
        schema = catalog.to_spark_schema("customer")
        raw_entities = catalog.entities_in_layer("raw")
    """

    def __init__(self, schemas_root: str, manifest_file: str = "manifest.json"):
        """
        Args:
            schemas_root: Directory holding manifest.json and the *.schema.json files.
            manifest_file: Manifest file name relative to schemas_root.
        """
        self.schemas_root = schemas_root
        self.manifest_file = manifest_file
        self._manifest: Optional[dict] = None
        self._document_cache: Dict[str, dict] = {}
        self._schema_cache: Dict[str, StructType] = {}

    # -------------------------------------------------------------------------
    # Manifest
    # -------------------------------------------------------------------------

    def load_manifest(self) -> dict:
        """Load (once) and return the manifest document."""
        if self._manifest is None:
            self._manifest = self._read_json(self.manifest_file)
        return self._manifest

    def get_manifest_entities(self) -> List[dict]:
        """
        Returns:
            List of dicts with keys: entityName, layer, entityPath.
        """
        return self.load_manifest().get("entities", [])

    def get_relationships(self) -> List[dict]:
        """Get the fact → dimension relationship definitions from the manifest."""
        return self.load_manifest().get("relationships", [])

    def entities_in_layer(self, layer: str) -> List[str]:
        """Names of the entities declared for a layer, in manifest order."""
        if layer not in LAYERS:
            raise ValueError(f"Unknown layer '{layer}'. Available: {list(LAYERS)}")
        return [e["entityName"] for e in self.get_manifest_entities() if e.get("layer") == layer]

    def layer_of(self, entity_name: str) -> str:
        return self._manifest_entry(entity_name)["layer"]

    def _manifest_entry(self, entity_name: str) -> dict:
        for entry in self.get_manifest_entities():
            if entry["entityName"] == entity_name:
                return entry
        available = [e["entityName"] for e in self.get_manifest_entities()]
        raise ValueError(f"Entity '{entity_name}' not in manifest. Available: {available}")

    # -------------------------------------------------------------------------
    # Entity Loading
    # -------------------------------------------------------------------------

    def _read_json(self, relative_path: str) -> dict:
        """Read and parse a JSON document under schemas_root."""
        full_path = os.path.join(self.schemas_root, relative_path)
        if not os.path.exists(full_path):
            raise FileNotFoundError(f"Schema file not found: {full_path}")
        with open(full_path, "r", encoding="utf-8") as f:
            return json.load(f)

    def _parse_entity_reference(self, ref: str) -> Tuple[str, Optional[str]]:
        """
        Parse an entity reference string.

        Formats:
            "canonical.schema.json/customer"  → ("canonical.schema.json", "customer")
            "canonical.schema.json"           → ("canonical.schema.json", None)
        """
        parts = ref.rsplit("/", 1)
        if len(parts) == 2 and not parts[1].endswith(".json"):
            return parts[0], parts[1]
        return ref, None

    def load_entity(self, entity_name: str) -> dict:
        """
        Load a single entity definition referenced by the manifest.

        Returns:
            Entity definition dict with keys: entityName, description, hasAttributes.
        """
        path, name = self._parse_entity_reference(self._manifest_entry(entity_name)["entityPath"])
        name = name or entity_name

        if path not in self._document_cache:
            self._document_cache[path] = self._read_json(path)
        definitions = self._document_cache[path].get("definitions", [])

        for defn in definitions:
            if defn.get("entityName") == name:
                return defn

        available = [d["entityName"] for d in definitions if "entityName" in d]
        raise ValueError(f"Entity '{name}' not found in {path}. Available: {available}")

    # -------------------------------------------------------------------------
    # PySpark Schema Generation
    # -------------------------------------------------------------------------

    def to_spark_schema(self, entity_name: str) -> StructType:
        """Convert an entity definition to a PySpark StructType."""
        if entity_name in self._schema_cache:
            return self._schema_cache[entity_name]

        fields = []
        seen_names = set()
        for attr in self.load_entity(entity_name).get("hasAttributes", []):
            name = attr["name"]
            if name in seen_names:
                continue
            seen_names.add(name)
            spark_type = TYPE_MAP.get(attr.get("dataType", "string"), StringType())
            fields.append(StructField(name, spark_type, nullable=attr.get("isNullable", True)))

        schema = StructType(fields)
        self._schema_cache[entity_name] = schema
        return schema

    def load_layer(self, layer: str) -> Dict[str, StructType]:
        """Load every schema declared for a layer."""
        return {name: self.to_spark_schema(name) for name in self.entities_in_layer(layer)}

    # -------------------------------------------------------------------------
    # Descriptions
    # -------------------------------------------------------------------------

    def get_entity_description(self, entity_name: str) -> str:
        return self.load_entity(entity_name).get("description", "")

    def get_column_descriptions(self, entity_name: str) -> Dict[str, str]:
        """
        Returns:
            Dict mapping column name → description string (described columns only).
        """
        return {
            attr["name"]: attr["description"]
            for attr in self.load_entity(entity_name).get("hasAttributes", [])
            if attr.get("description")
        }

    def print_entity_summary(self, entity_name: str):
        """Print a human-readable summary of an entity schema."""
        schema = self.to_spark_schema(entity_name)
        print(f"\n{'='*60}")
        print(f"Entity: {entity_name} [{self.layer_of(entity_name)}]")
        print(f"Description: {self.get_entity_description(entity_name) or 'N/A'}")
        print(f"Fields: {len(schema.fields)}")
        print(f"{'='*60}")
        for field in schema.fields:
            nullable_flag = "" if field.nullable else " [REQUIRED]"
            print(f"  {field.name:30s} {str(field.dataType):20s}{nullable_flag}")
