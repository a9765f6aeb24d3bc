# Databricks notebook source
# MAGIC %md
# MAGIC # 01 - Pipeline Orchestrator
# MAGIC
# MAGIC End-to-end full reload: **Raw → Canonical → Validate → Dimensional → Validate**
# MAGIC
# MAGIC | Stage | Component | Driven by |
# MAGIC |-------|-----------|-----------|
# MAGIC | `cleanse:<entity>` | `CleansingEngine` | `config/entity_mappings.yaml` |
# MAGIC | `validate:canonical` | `ValidationEngine` | `config/quality_rules.yaml` (raw + canonical rules) |
# MAGIC | `build:<table>` | `DimensionalBuilder` | `schemas/dimensional.schema.json` |
# MAGIC | `validate:dimensional` | `ValidationEngine` | `config/quality_rules.yaml` (dimensional rules) |
# MAGIC
# MAGIC A stage fault stops the run; validation findings are reported but never block publication.

# COMMAND ----------

# MAGIC %run ./00_config

# COMMAND ----------

from pipeline import Pipeline, print_outcome

pipeline = Pipeline(config, spark)
outcome = pipeline.run()

# COMMAND ----------

# MAGIC %md
# MAGIC ## Raw vs Canonical Record Counts

# COMMAND ----------

print("=" * 60)
print("Raw vs Canonical — Record Count Comparison")
print("=" * 60)
print(f"  {'Entity':20s}  {'Raw':>8s}  {'Canonical':>10s}  {'Delta':>8s}")

if outcome.succeeded:
    for entity in pipeline.cleansing.entity_names:
        source = pipeline.cleansing.source_table(entity)
        raw_count = pipeline.store.read_raw(source, catalog.to_spark_schema(source)).count()
        canonical_count = pipeline.store.read("canonical", entity).count()
        print(f"  {entity:20s}  {raw_count:8d}  {canonical_count:10d}  {raw_count - canonical_count:+8d}")

# COMMAND ----------

# MAGIC %md
# MAGIC ## Validation Reports

# COMMAND ----------

for layer, results in outcome.validation.items():
    pipeline.validator.print_full_report(results, title=layer)

# COMMAND ----------

# MAGIC %md
# MAGIC ### Orphan Fact Rows
# MAGIC
# MAGIC Sales lines whose product or customer has no dimension row.

# COMMAND ----------

for report in outcome.validation.get("dimensional", {}).get("sales_fact", []):
    if report.rule_type == "orphan" and report.violations is not None and not report.passed:
        display(report.violations)

# COMMAND ----------

print_outcome(outcome)

if not outcome.succeeded:
    raise outcome.error
