"""Service wiring over one database session.

Every service shares the same stores, the process-wide document lock
registry and the legal hold registry as its protection gate. The ingestion
pipeline is built only when a classifier and an extractor are supplied,
since both are external model integrations.

Usage:
    async with session_scope() as session:
        services = build_services(session)
        await services.archive.archive(ctx, document_id)
"""

from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from src.archive.manager import ArchiveManager
from src.compliance.legal_hold import LegalHoldRegistry
from src.compliance.retention import PolicyRegistry, RetentionEvaluator
from src.db.repositories import SqlArchiveStore, SqlDocumentStore, SqlLegalHoldStore
from src.db.stores import ArchiveStore, DocumentStore, LegalHoldStore
from src.lifecycle.fsm import DocumentLifecycle
from src.lifecycle.locks import document_locks
from src.matching.jobs import JobDirectory, get_job_directory
from src.matching.matcher import CandidateMatcher
from src.pipeline.runner import PipelineRunner, build_stages
from src.pipeline.stages import Classifier, Extractor
from src.routing.engine import RoutingEngine
from src.storage.blob import BlobStore, LocalBlobStore


@dataclass
class Services:
    documents: DocumentStore
    hold_store: LegalHoldStore
    archive_store: ArchiveStore
    blobs: BlobStore
    holds: LegalHoldRegistry
    lifecycle: DocumentLifecycle
    archive: ArchiveManager
    retention: RetentionEvaluator
    matcher: CandidateMatcher
    routing: RoutingEngine
    pipeline: PipelineRunner | None = None


def wire_services(
    documents: DocumentStore,
    hold_store: LegalHoldStore,
    archive_store: ArchiveStore,
    blobs: BlobStore,
    policies: PolicyRegistry | None = None,
    *,
    jobs: JobDirectory | None = None,
    routing: RoutingEngine | None = None,
    classifier: Classifier | None = None,
    extractor: Extractor | None = None,
) -> Services:
    holds = LegalHoldRegistry(hold_store, documents, document_locks)
    lifecycle = DocumentLifecycle(documents, holds, document_locks)
    archive = ArchiveManager(documents, archive_store, blobs, lifecycle, holds)
    retention = RetentionEvaluator(documents, holds, archive, policies)
    matcher = CandidateMatcher(jobs or get_job_directory())
    routing = routing or RoutingEngine()

    pipeline = None
    if classifier is not None and extractor is not None:
        pipeline = PipelineRunner(
            documents,
            build_stages(
                classifier=classifier,
                extractor=extractor,
                documents=documents,
                lifecycle=lifecycle,
                matcher=matcher,
                engine=routing,
            ),
        )

    return Services(
        documents=documents,
        hold_store=hold_store,
        archive_store=archive_store,
        blobs=blobs,
        holds=holds,
        lifecycle=lifecycle,
        archive=archive,
        retention=retention,
        matcher=matcher,
        routing=routing,
        pipeline=pipeline,
    )


def build_services(
    session: AsyncSession,
    blobs: BlobStore | None = None,
    *,
    classifier: Classifier | None = None,
    extractor: Extractor | None = None,
) -> Services:
    """SQL-backed services bound to session. The caller owns commit/rollback."""
    return wire_services(
        SqlDocumentStore(session),
        SqlLegalHoldStore(session),
        SqlArchiveStore(session),
        blobs or LocalBlobStore(),
        classifier=classifier,
        extractor=extractor,
    )
