"""
Workflows module - ingestion and digest job orchestration.
"""
from nycping.workflows.digest_job import (
    DigestJobOptions,
    DigestJobResult,
    DigestOrchestrator,
    run_digest_job,
)
from nycping.workflows.ingest import IngestPipeline, IngestReport

__all__ = [
    "DigestJobOptions",
    "DigestJobResult",
    "DigestOrchestrator",
    "IngestPipeline",
    "IngestReport",
    "run_digest_job",
]
