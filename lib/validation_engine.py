"""
Validation Engine — Checks canonical and dimensional tables against quality_rules.yaml.

Every rule is a read-only query producing a (possibly empty) violation set:
the offending rows themselves. An empty set means the rule passed. Results
are informational: they never block publication and never raise.

Rule types supported:
    - not_null: Column must not contain null values
    - unique: Non-null column values must be unique
    - domain: Values must belong to a vocabulary (explicit or named)
    - range: Numeric/date values must be within [min, max] ('today' allowed)
    - whitespace: Text columns must not carry leading/trailing spaces
    - pattern: String must match regex pattern
    - date_code: Raw yyyyMMdd integers must be well-formed and plausible
    - expression: SQL predicate selecting violating rows
    - orphan: Fact rows whose foreign keys resolve to no dimension row
"""

import logging
from datetime import date, datetime
from typing import Callable, Dict, List, Optional

import yaml
from pyspark.sql import Column, DataFrame
from pyspark.sql import functions as F

from cleansing_engine import DATE_CODE_LENGTH, VOCABULARIES


logger = logging.getLogger(__name__)


class ViolationReport:
    """Result of a single validation rule, including the violating rows."""

    def __init__(self, rule_name: str, rule_type: str, entity: str, column: str,
                 severity: str, passed: bool, details: str = "",
                 total_records: int = 0, failing_records: int = 0,
                 violations: Optional[DataFrame] = None):
        self.rule_name = rule_name
        self.rule_type = rule_type
        self.entity = entity
        self.column = column
        self.severity = severity
        self.passed = passed
        self.details = details
        self.total_records = total_records
        self.failing_records = failing_records
        self.violations = violations

    @property
    def status_icon(self) -> str:
        if self.passed:
            return "✓"
        return "✗" if self.severity == "error" else "⚠"

    def to_dict(self) -> dict:
        return {
            "rule": self.rule_name,
            "type": self.rule_type,
            "entity": self.entity,
            "column": self.column,
            "severity": self.severity,
            "passed": self.passed,
            "details": self.details,
            "total_records": self.total_records,
            "failing_records": self.failing_records,
        }

    def __repr__(self):
        return f"{self.status_icon} [{self.severity.upper()}] {self.rule_name}: {self.details}"


def _as_bound(value) -> Column:
    """Turn a YAML bound into a literal; 'today' is the processing date."""
    if isinstance(value, str) and value.lower() == "today":
        return F.current_date()
    if isinstance(value, datetime):
        return F.lit(value.date())
    if isinstance(value, date):
        return F.lit(value)
    if isinstance(value, str):
        return F.lit(date.fromisoformat(value))
    return F.lit(value)


class ValidationEngine:
    """
    Config-driven validation engine for the canonical and dimensional layers.

    Usage:
        engine = ValidationEngine("config/quality_rules.yaml")
        results = engine.validate_entity("customer", customer_df)
        engine.print_entity_report("customer", results)
    """

    def __init__(self, config_path: str):
        with open(config_path, "r", encoding="utf-8") as f:
            self.config = yaml.safe_load(f) or {}
        self.entities_config = self.config.get("entities", {})

    def entities_in_layer(self, layer: str) -> List[str]:
        return [
            name for name, entity in self.entities_config.items()
            if entity.get("layer") == layer
        ]

    def validate_entity(
        self,
        entity_name: str,
        df: DataFrame,
        reference_dfs: Optional[Dict[str, DataFrame]] = None,
    ) -> List[ViolationReport]:
        """
        Validate a DataFrame against its configured rules.

        Args:
            entity_name: Logical entity name (e.g., "customer")
            df: DataFrame to validate
            reference_dfs: Dict of entity_name → DataFrame for orphan checks

        Returns:
            List of ViolationReport objects
        """
        if entity_name not in self.entities_config:
            return [ViolationReport(
                "config_missing", "config", entity_name, "", "warning", False,
                f"No validation rules configured for entity '{entity_name}'"
            )]

        rules = self.entities_config[entity_name].get("rules", [])
        total = df.count()
        return [
            self._evaluate_rule(entity_name, rule, df, total, reference_dfs or {})
            for rule in rules
        ]

    def validate_layers(
        self,
        layers: List[str],
        loader: Callable[[str, str], DataFrame],
    ) -> Dict[str, List[ViolationReport]]:
        """
        Validate every configured entity of the given layers.

        Args:
            layers: Layers to check, e.g. ["raw", "canonical"]
            loader: Callable (layer, entity) → DataFrame

        Returns:
            Dict of entity_name → list of ViolationReport
        """
        dfs = {}
        for layer in layers:
            for entity_name in self.entities_in_layer(layer):
                dfs[entity_name] = loader(layer, entity_name)

        return {
            entity_name: self.validate_entity(entity_name, df, reference_dfs=dfs)
            for entity_name, df in dfs.items()
        }

    def _evaluate_rule(
        self, entity_name: str, rule: dict, df: DataFrame, total: int,
        reference_dfs: Dict[str, DataFrame]
    ) -> ViolationReport:
        """Evaluate a single rule; evaluation errors become a failed report."""
        rule_name = rule["name"]
        rule_type = rule["type"]
        column = rule.get("column", "")
        severity = rule.get("severity", "warning")

        checks = {
            "not_null": self._check_not_null,
            "unique": self._check_unique,
            "domain": self._check_domain,
            "range": self._check_range,
            "whitespace": self._check_whitespace,
            "pattern": self._check_pattern,
            "date_code": self._check_date_code,
            "expression": self._check_expression,
            "orphan": self._check_orphan,
        }
        if rule_type not in checks:
            return ViolationReport(rule_name, rule_type, entity_name, column, severity, False,
                                   f"Unknown rule type: {rule_type}")

        # Spark plans lazily: bad patterns or expressions may only fail at count().
        try:
            if rule_type == "orphan":
                violations, details = self._check_orphan(df, rule, reference_dfs)
            else:
                violations, details = checks[rule_type](df, rule)
            if violations is None:
                return ViolationReport(rule_name, rule_type, entity_name, column, severity, True,
                                       details, total)
            failing = violations.count()
        except Exception as e:
            logger.warning("Rule %s on %s could not be evaluated: %s", rule_name, entity_name, e)
            return ViolationReport(rule_name, rule_type, entity_name, column, severity, False,
                                   f"Error: {str(e)}", total)

        details = details.replace("{failing}", str(failing)).replace("{total}", str(total))
        return ViolationReport(
            rule_name, rule_type, entity_name, column, severity, failing == 0,
            details, total, failing, violations,
        )

    # -------------------------------------------------------------------------
    # Checks: each returns (violations DataFrame, details template)
    # -------------------------------------------------------------------------

    def _check_not_null(self, df, rule):
        col = rule["column"]
        return df.filter(F.col(col).isNull()), "{failing}/{total} null values"

    def _check_unique(self, df, rule):
        """Every row whose key value occurs more than once, returned in full."""
        col = rule["column"]
        duplicated_keys = (
            df.filter(F.col(col).isNotNull())
            .groupBy(col)
            .agg(F.count(F.lit(1)).alias("record_count"))
            .filter(F.col("record_count") > 1)
            .select(col)
        )
        violations = df.join(duplicated_keys, on=col, how="left_semi")
        return violations, "{failing}/{total} rows share a duplicated value"

    def _check_domain(self, df, rule):
        col = rule["column"]
        if "vocabulary" in rule:
            values = VOCABULARIES[rule["vocabulary"]]
        else:
            values = rule["values"]
        violations = df.filter(F.col(col).isNull() | ~F.col(col).isin(*values))
        return violations, "{failing}/{total} values outside " + str(list(values))

    def _check_range(self, df, rule):
        col = F.col(rule["column"])
        min_val, max_val = rule.get("min"), rule.get("max")
        condition = F.lit(False)
        if min_val is not None:
            condition = condition | (col < _as_bound(min_val))
        if max_val is not None:
            condition = condition | (col > _as_bound(max_val))
        violations = df.filter(col.isNotNull() & condition)
        return violations, f"{{failing}} values outside [{min_val}, {max_val}]"

    def _check_whitespace(self, df, rule):
        columns = rule.get("columns") or [rule["column"]]
        condition = F.lit(False)
        for name in columns:
            condition = condition | (F.col(name) != F.trim(F.col(name)))
        return df.filter(condition), "{failing}/{total} values with surrounding whitespace"

    def _check_pattern(self, df, rule):
        col = rule["column"]
        pattern = rule.get("pattern", ".*")
        violations = df.filter(F.col(col).isNotNull() & ~F.col(col).rlike(pattern))
        return violations, f"{{failing}}/{{total}} values don't match pattern '{pattern}'"

    def _check_date_code(self, df, rule):
        col = F.col(rule["column"])
        min_val, max_val = rule.get("min", 19000101), rule.get("max", 20500101)
        violations = df.filter(
            col.isNotNull()
            & (
                (col <= 0)
                | (F.length(col.cast("string")) != DATE_CODE_LENGTH)
                | (col > max_val)
                | (col < min_val)
            )
        )
        return violations, f"{{failing}} date codes outside [{min_val}, {max_val}]"

    def _check_expression(self, df, rule):
        condition = rule["condition"]
        return df.filter(F.expr(condition)), f"{{failing}}/{{total}} rows where {condition}"

    def _check_orphan(self, df, rule, reference_dfs):
        """Rows whose foreign key is null or matches no referenced row, returned in full."""
        missing = [fk["references"]["entity"] for fk in rule["foreign_keys"]
                   if fk["references"]["entity"] not in reference_dfs]
        if missing:
            return None, f"Skipped (reference entities not loaded: {missing})"

        joined = df
        marker_cols = []
        for i, fk in enumerate(rule["foreign_keys"]):
            ref = fk["references"]
            marker = f"_ref_{i}"
            ref_keys = reference_dfs[ref["entity"]].select(F.col(ref["column"]).alias(marker)).distinct()
            joined = joined.join(ref_keys, F.col(fk["column"]) == F.col(marker), "left")
            marker_cols.append(marker)

        unresolved = F.lit(False)
        for marker in marker_cols:
            unresolved = unresolved | F.col(marker).isNull()
        violations = joined.filter(unresolved).drop(*marker_cols)
        targets = ", ".join(
            f"{fk['column']}→{fk['references']['entity']}" for fk in rule["foreign_keys"]
        )
        return violations, f"{{failing}}/{{total}} rows with unresolved keys ({targets})"

    # =========================================================================
    # Reporting
    # =========================================================================

    @staticmethod
    def summarize(all_results: Dict[str, List[ViolationReport]]) -> dict:
        results = [r for entity_results in all_results.values() for r in entity_results]
        passed = sum(1 for r in results if r.passed)
        return {
            "rules": len(results),
            "passed": passed,
            "errors": sum(1 for r in results if not r.passed and r.severity == "error"),
            "warnings": sum(1 for r in results if not r.passed and r.severity == "warning"),
            "score": (passed / len(results) * 100) if results else 0.0,
        }

    def print_entity_report(self, entity_name: str, results: List[ViolationReport]):
        """Print a formatted validation report for an entity."""
        summary = self.summarize({entity_name: results})

        print(f"\n  {'='*50}")
        print(f"  Validation Report: {entity_name.upper()}")
        print(f"  {'='*50}")
        print(f"  Total rules: {summary['rules']}  |  "
              f"Passed: {summary['passed']}  |  "
              f"Errors: {summary['errors']}  |  "
              f"Warnings: {summary['warnings']}")

        for r in results:
            print(f"    {r.status_icon} [{r.severity:7s}] {r.rule_name:35s} {r.details}")

    def print_full_report(self, all_results: Dict[str, List[ViolationReport]], title: str = ""):
        """Print a validation report across all entities."""
        print("=" * 60)
        print(f"VALIDATION REPORT{' — ' + title if title else ''}")
        print("=" * 60)

        for entity_name, results in all_results.items():
            self.print_entity_report(entity_name, results)

        summary = self.summarize(all_results)
        print(f"\n{'='*60}")
        print(f"SUMMARY: {summary['rules']} rules | "
              f"{summary['passed']} passed | "
              f"{summary['errors']} errors | "
              f"{summary['warnings']} warnings")
        print(f"Overall Quality Score: {summary['score']:.1f}%")
        print(f"{'='*60}")
