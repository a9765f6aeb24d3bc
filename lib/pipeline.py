"""
Pipeline Orchestrator — Raw → Canonical → Validate → Dimensional → Validate.

A run is a full reload: every canonical and dimensional table is rebuilt.
Stages run in dependency order and each one is timed. The first stage fault
aborts the run; later stages are not executed and the outcome reports the
stage that failed. Validation findings are reported but never fail a run.

At most one run may target a store at a time; the caller (scheduler) is
responsible for that.

Usage:
    outcome = run_pipeline()
    if not outcome.succeeded:
        print(outcome.failed_stage, outcome.error)
"""

import logging
import sys
import time
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from pyspark.sql import DataFrame, SparkSession

from cleansing_engine import CleansingEngine
from dimensional_builder import DimensionalBuilder
from pipeline_config import PipelineConfig, get_spark
from pipeline_errors import ErrorCode, PipelineStageError
from pipeline_logging import setup_logging
from schema_catalog import SchemaCatalog
from table_store import TableStore
from validation_engine import ValidationEngine, ViolationReport


logger = logging.getLogger(__name__)

SUCCESS = "success"
FAILED = "failed"

_STAGE_ERROR_CODES = {
    "cleanse": ErrorCode.CLEANSING_FAILED,
    "build": ErrorCode.BUILD_FAILED,
    "validate": ErrorCode.VALIDATION_FAILED,
}


@dataclass
class StageTiming:
    """Duration telemetry for one stage."""

    name: str
    started_at: datetime
    ended_at: datetime
    elapsed_seconds: float
    records: Optional[int] = None
    succeeded: bool = True


@dataclass
class RunOutcome:
    """Result of a pipeline run: success, or the stage it stopped at."""

    status: str = "running"
    stages: List[StageTiming] = field(default_factory=list)
    failed_stage: Optional[str] = None
    error: Optional[PipelineStageError] = None
    validation: Dict[str, Dict[str, List[ViolationReport]]] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == SUCCESS

    @property
    def elapsed_seconds(self) -> float:
        return sum(stage.elapsed_seconds for stage in self.stages)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "failed_stage": self.failed_stage,
            "error": self.error.to_dict() if self.error else None,
            "stages": [
                {
                    "name": s.name,
                    "started_at": s.started_at.isoformat(),
                    "ended_at": s.ended_at.isoformat(),
                    "elapsed_seconds": round(s.elapsed_seconds, 3),
                    "records": s.records,
                    "succeeded": s.succeeded,
                }
                for s in self.stages
            ],
            "validation": {
                layer: ValidationEngine.summarize(results)
                for layer, results in self.validation.items()
            },
        }


class Pipeline:
    """
    Wires the cleansing engine, dimensional builder and validation engine
    to one configured store.
    """

    def __init__(self, config: Optional[PipelineConfig] = None, spark: Optional[SparkSession] = None):
        self.config = config or PipelineConfig.load()
        self.spark = spark or get_spark(self.config)
        self.catalog = SchemaCatalog(self.config.schemas_root)
        self.store = TableStore(self.spark, self.config)
        self.cleansing = CleansingEngine(self.config.entity_mappings_path, self.spark)
        self.builder = DimensionalBuilder(self.catalog)
        self.validator = ValidationEngine(self.config.quality_rules_path)

    def run(self) -> RunOutcome:
        outcome = RunOutcome()
        logger.info("=" * 48)
        logger.info("Pipeline run started")
        logger.info("=" * 48)

        try:
            self._cleanse_all(outcome)
            outcome.validation["canonical"] = self._stage(
                outcome, "validate:canonical", lambda: self.validate(["raw", "canonical"])
            )
            for name in DimensionalBuilder.BUILD_ORDER:
                self._stage(outcome, f"build:{name}", lambda name=name: self.builder.build(name, self.store))
            outcome.validation["dimensional"] = self._stage(
                outcome, "validate:dimensional", lambda: self.validate(["dimensional"])
            )
        except PipelineStageError as e:
            outcome.status = FAILED
            outcome.failed_stage = e.stage
            outcome.error = e
            logger.error(
                "Pipeline run failed at %s [%s %s]: %s",
                e.stage, e.error_id, e.error_code.value, e.cause,
            )
            return outcome

        outcome.status = SUCCESS
        logger.info("Pipeline run completed in %.1f seconds", outcome.elapsed_seconds)
        return outcome

    # -------------------------------------------------------------------------
    # Stages
    # -------------------------------------------------------------------------

    def _cleanse_all(self, outcome: RunOutcome):
        """Rebuild every canonical entity; entities are independent of each other."""
        entities = self.cleansing.entity_names
        if self.config.max_workers <= 1:
            for entity in entities:
                self._cleanse_stage(outcome, entity)
            return

        with ThreadPoolExecutor(max_workers=self.config.max_workers) as pool:
            futures = [pool.submit(self._cleanse_stage, outcome, entity) for entity in entities]
            done, pending = wait(futures, return_when=FIRST_EXCEPTION)
            for future in pending:
                future.cancel()
            for future in futures:
                if future in done and future.exception() is not None:
                    raise future.exception()

    def _cleanse_stage(self, outcome: RunOutcome, entity: str) -> int:
        return self._stage(
            outcome,
            f"cleanse:{entity}",
            lambda: self.cleansing.cleanse(entity, self.store, self.catalog),
        )

    def validate(self, layers: List[str]) -> Dict[str, List[ViolationReport]]:
        results = self.validator.validate_layers(layers, self._load_for_validation)
        summary = ValidationEngine.summarize(results)
        logger.info(
            "Validation of %s: %d rules, %d passed, %d errors, %d warnings",
            "+".join(layers), summary["rules"], summary["passed"],
            summary["errors"], summary["warnings"],
        )
        return results

    def _load_for_validation(self, layer: str, entity: str) -> DataFrame:
        if layer == "raw":
            return self.store.read_raw(entity, self.catalog.to_spark_schema(entity))
        return self.store.read(layer, entity)

    def _stage(self, outcome: RunOutcome, name: str, action: Callable[[], Any]) -> Any:
        """Run one stage with timing; any fault becomes a PipelineStageError."""
        started_at = datetime.now(timezone.utc)
        start = time.perf_counter()
        logger.info(">> %s", name)
        succeeded = False
        result = None
        try:
            result = action()
            succeeded = True
            return result
        except Exception as e:
            code = _STAGE_ERROR_CODES.get(name.split(":", 1)[0], ErrorCode.STAGE_FAILED)
            raise PipelineStageError(name, e, error_code=code) from e
        finally:
            elapsed = time.perf_counter() - start
            outcome.stages.append(StageTiming(
                name=name,
                started_at=started_at,
                ended_at=datetime.now(timezone.utc),
                elapsed_seconds=elapsed,
                records=result if isinstance(result, int) else None,
                succeeded=succeeded,
            ))
            logger.info(">> %s %s in %.2f seconds", name, "done" if succeeded else "FAILED", elapsed)


def run_pipeline(
    config_path: Optional[str] = None,
    spark: Optional[SparkSession] = None,
) -> RunOutcome:
    """Run the full pipeline once against the configured store."""
    config = PipelineConfig.load(config_path)
    return Pipeline(config, spark).run()


def print_outcome(outcome: RunOutcome):
    """Print stage telemetry and the run result for operators."""
    print("=" * 60)
    print(f"PIPELINE RUN — {outcome.status.upper()}")
    print("=" * 60)
    for stage in outcome.stages:
        records = f"{stage.records:8d} records" if stage.records is not None else ""
        flag = "✓" if stage.succeeded else "✗"
        print(f"  {flag} {stage.name:32s} {stage.elapsed_seconds:8.2f}s  {records}")
    if outcome.error:
        error = outcome.error
        print(f"\n  Failed at: {outcome.failed_stage}")
        print(f"  Error id:  {error.error_id} ({error.error_code.value})")
        print(f"  Message:   {error.cause}")
        print(f"  Context:   {error.details}")
    print("=" * 60)


def main() -> int:
    config = PipelineConfig.load()
    setup_logging(config.log_level)
    pipeline = Pipeline(config)
    outcome = pipeline.run()
    for layer, results in outcome.validation.items():
        pipeline.validator.print_full_report(results, title=layer)
    print_outcome(outcome)
    return 0 if outcome.succeeded else 1


if __name__ == "__main__":
    sys.exit(main())
