# Databricks notebook source
# MAGIC %md
# MAGIC # 00 - Configuration & Setup
# MAGIC
# MAGIC Sets up the environment for the SalesCore warehouse (CRM + ERP → star schema).
# MAGIC
# MAGIC - Table schemas are loaded from `schemas/*.schema.json` (listed in `schemas/manifest.json`)
# MAGIC - Storage locations and Spark settings live in `config/pipeline.yaml`
# MAGIC - Raw → canonical column mappings live in `config/entity_mappings.yaml`
# MAGIC - Validation rules live in `config/quality_rules.yaml`
# MAGIC
# MAGIC Set `SALESCORE_CONFIG` to point at another pipeline document, or
# MAGIC `SALESCORE_BASE_PATH` to relocate every layer under one root.

# COMMAND ----------

# MAGIC %md
# MAGIC ## Python Path

# COMMAND ----------

import sys
import os

# In Databricks Repos, this resolves relative to the repo root
_NOTEBOOK_DIR = os.path.dirname(os.path.abspath("__file__"))
_PROJECT_ROOT = os.path.abspath(os.path.join(_NOTEBOOK_DIR, ".."))
sys.path.insert(0, os.path.join(_PROJECT_ROOT, "lib"))

from pipeline_config import PipelineConfig, get_spark
from pipeline_logging import setup_logging
from schema_catalog import SchemaCatalog

print(f"Project root: {_PROJECT_ROOT}")
print("✓ All library modules loaded")

# COMMAND ----------

# MAGIC %md
# MAGIC ## Pipeline Configuration

# COMMAND ----------

config = PipelineConfig.load()
setup_logging(config.log_level)
spark = get_spark(config)

for path in [config.schemas_root, config.entity_mappings_path, config.quality_rules_path]:
    assert os.path.exists(path), f"Missing: {path}"
print("✓ All config files found")

# COMMAND ----------

# MAGIC %md
# MAGIC ## Entity Registry
# MAGIC
# MAGIC The manifest is the single source of truth for which tables exist in each layer.

# COMMAND ----------

catalog = SchemaCatalog(config.schemas_root)

for layer in ("raw", "canonical", "dimensional"):
    print(f"\n{layer}:")
    for entity in catalog.entities_in_layer(layer):
        location = config.table_fqn(layer, entity) or config.table_path(layer, entity)
        print(f"  {entity:22s} → {location}")

print("\nRelationships:")
for rel in catalog.get_relationships():
    print(f"  {rel['fromEntity']}.{rel['fromAttribute']} → {rel['toEntity']}.{rel['toAttribute']}")

# COMMAND ----------

# MAGIC %md
# MAGIC ## Canonical & Dimensional Schemas

# COMMAND ----------

for layer in ("canonical", "dimensional"):
    for entity in catalog.entities_in_layer(layer):
        catalog.print_entity_summary(entity)

# COMMAND ----------

config.print_config()
