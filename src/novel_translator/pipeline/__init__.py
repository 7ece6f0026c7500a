"""Deep scan and batch translation runs."""

from novel_translator.pipeline.batch import BatchRun, BatchScheduler, BatchState, BatchSummary
from novel_translator.pipeline.extraction import DeepScan, ScanSummary
from novel_translator.pipeline.guard import RunGuard, RunInProgressError

__all__ = [
    "BatchRun",
    "BatchScheduler",
    "BatchState",
    "BatchSummary",
    "DeepScan",
    "RunGuard",
    "RunInProgressError",
    "ScanSummary",
]
