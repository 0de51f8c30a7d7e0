"""Batch orchestration: segmentation, credit reservation and bounded extraction.

One job runs as follows:
1. Segment every source document (boundary detection, then PDF splitting) and record
   the layout on the job; a resumed job is cut along the recorded layout.
2. Reserve one credit per segment under ``batch:{job_id}:reserve``.
3. Extract segments through a pool bounded by ``batch_concurrency``; each worker
   saves a draft, validates it for the job's output format and records only its
   own result.
4. Refund one credit per failed segment under ``batch:{job_id}:refund:{index}``.
5. Derive the final status from the success and failure counts.

Both credit keys are idempotent, so a job re-run by the recovery task never charges
or refunds twice. If the run breaks off after the reservation, every segment that has
not succeeded is failed and refunded before the job is marked failed.
"""

import asyncio
import logging
from dataclasses import dataclass

from services.api import metrics
from services.batch.boundary import PDF_MIME_TYPE, BoundaryDetector
from services.batch.credits import CreditLedger
from services.batch.drafts import DraftSink
from services.batch.extraction import InvoiceExtractor, extract_with_retry
from services.batch.models import (
    BatchJob,
    BatchResult,
    JobStatus,
    SegmentPlan,
    SegmentStatus,
    SourceDocument,
    utc_now,
)
from services.batch.splitter import PdfSplitter
from services.batch.store import JobStore
from services.format.registry import GeneratorRegistry
from services.shared.config import Settings
from services.shared.errors import CreditInsufficient, JobNotFoundError

logger = logging.getLogger(__name__)


@dataclass
class Segment:
    """One invoice to extract: a whole source document or part of a split PDF."""

    index: int
    filename: str
    content: bytes
    mime_type: str


def reserve_key(job_id: str) -> str:
    return f"batch:{job_id}:reserve"


def refund_key(job_id: str, index: int) -> str:
    return f"batch:{job_id}:refund:{index}"


def final_status(succeeded: int, failed: int) -> JobStatus:
    """completed when nothing failed, failed when nothing succeeded, else partial_success."""
    if failed == 0:
        return JobStatus.COMPLETED
    if succeeded == 0:
        return JobStatus.FAILED
    return JobStatus.PARTIAL_SUCCESS


class BatchOrchestrator:
    """Runs batch jobs end to end."""

    def __init__(
        self,
        settings: Settings,
        store: JobStore,
        ledger: CreditLedger,
        extractor: InvoiceExtractor,
        detector: BoundaryDetector,
        sink: DraftSink,
        splitter: PdfSplitter | None = None,
        registry: GeneratorRegistry | None = None,
    ) -> None:
        self.settings = settings
        self.store = store
        self.ledger = ledger
        self.extractor = extractor
        self.detector = detector
        self.sink = sink
        self.splitter = splitter or PdfSplitter()
        self.registry = registry
        self._job_lock = asyncio.Lock()

    async def create_job(
        self, owner_id: str, sources: list[SourceDocument], output_format: str | None = None
    ) -> BatchJob:
        """Persist a new pending job.

        Raises:
            UnsupportedFormatError: If output_format is not registered
        """
        if output_format and self.registry is not None:
            self.registry.create(output_format)
        job = BatchJob(owner_id=owner_id, sources=sources, output_format=output_format)
        await self.store.create(job)
        logger.info(f"Created batch job {job.id} for {owner_id} with {len(sources)} document(s)")
        return job

    async def plan_source(self, source_index: int, source: SourceDocument) -> list[tuple[SegmentPlan, bytes]]:
        """Lay out the invoices of one source document and cut them out."""
        whole = SegmentPlan(source_index=source_index, filename=source.filename, mime_type=source.mime_type)
        detection = await self.detector.detect(source.content, source.mime_type)
        if detection.total_invoices <= 1 or source.mime_type != PDF_MIME_TYPE:
            return [(whole, source.content)]

        groups = [boundary.pages for boundary in detection.invoices]
        try:
            parts = self.splitter.split(source.content, groups)
        except ValueError as e:
            logger.warning(f"Splitting {source.filename} failed, processing as one invoice: {e}")
            return [(whole, source.content)]

        return [
            (
                SegmentPlan(
                    source_index=source_index,
                    filename=f"{source.filename} [{boundary.label}]",
                    mime_type=PDF_MIME_TYPE,
                    pages=boundary.pages,
                ),
                part,
            )
            for boundary, part in zip(detection.invoices, parts)
        ]

    async def build_segments(self, job: BatchJob) -> list[Segment]:
        """Run boundary detection over every source and record the layout on the job."""
        planned: list[tuple[SegmentPlan, bytes]] = []
        for source_index, source in enumerate(job.sources):
            planned.extend(await self.plan_source(source_index, source))
        job.segments = [plan for plan, _ in planned]
        return [
            Segment(index=index, filename=plan.filename, content=content, mime_type=plan.mime_type)
            for index, (plan, content) in enumerate(planned)
        ]

    def cut_segments(self, job: BatchJob) -> list[Segment]:
        """Rebuild segments from the layout recorded on an earlier run.

        Raises:
            ValueError: If a recorded page range no longer fits its source
        """
        segments: list[Segment] = []
        for index, plan in enumerate(job.segments):
            source = job.sources[plan.source_index]
            content = source.content
            if plan.pages is not None:
                content = self.splitter.split(source.content, [plan.pages])[0]
            segments.append(Segment(index=index, filename=plan.filename, content=content, mime_type=plan.mime_type))
        return segments

    async def process_job(self, job_id: str) -> BatchJob:
        """Process a batch job to a terminal status.

        Args:
            job_id: Batch job identifier

        Returns:
            The job in its terminal state

        Raises:
            JobNotFoundError: If the job or its owner is missing
            CreditInsufficient: If the owner cannot cover one credit per segment
        """
        job = await self.store.get(job_id)
        if job is None:
            raise JobNotFoundError(f"Batch job {job_id} not found")
        if not job.owner_id:
            raise JobNotFoundError(f"Batch job {job_id} has no owner")
        if job.status.is_terminal:
            logger.info(f"Batch job {job_id} already {job.status.value}, skipping")
            return job

        try:
            return await self._run(job)
        except CreditInsufficient:
            raise
        except Exception as e:
            logger.exception(f"Batch job {job_id} failed unexpectedly")
            job.status = JobStatus.FAILED
            job.error_message = str(e)
            job.completed_at = utc_now()
            job.recount()
            job.touch()
            await self.store.update(job)
            metrics.batch_jobs_total.labels(status=job.status.value).inc()
            raise

    async def _run(self, job: BatchJob) -> BatchJob:
        job.status = JobStatus.PROCESSING
        job.processing_started_at = job.processing_started_at or utc_now()
        job.touch()
        await self.store.update(job)

        segments: list[Segment] | None = None
        if not job.segments:
            segments = await self.build_segments(job)
            if not segments:
                return await self._finish(job, JobStatus.FAILED, "No documents to process")

        resuming = job.credits_deducted
        if not resuming:
            job.results = [BatchResult(filename=plan.filename) for plan in job.segments]
        reserved = len(job.results)
        job.recount()

        # layout, results and the reservation flag are saved together
        job.credits_deducted = True
        job.touch()
        await self.store.update(job)

        if not await self.ledger.deduct(job.owner_id, reserved, reserve_key(job.id)):
            logger.warning(f"Batch job {job.id}: insufficient credits for {reserved} segment(s)")
            job.credits_deducted = False
            await self._finish(job, JobStatus.FAILED, "Insufficient credits")
            raise CreditInsufficient(job.owner_id, reserved)

        tasks: list[asyncio.Task[None]] = []
        try:
            if len(job.segments) != reserved:
                raise ValueError(
                    f"Segment layout changed after credits were reserved "
                    f"({len(job.segments)} segment(s), {reserved} reserved)"
                )
            if segments is None:
                segments = self.cut_segments(job)

            pending = [s for s in segments if job.results[s.index].status == SegmentStatus.PENDING]
            if resuming:
                logger.info(f"Resuming batch job {job.id}: {len(pending)} of {reserved} segment(s) left")

            semaphore = asyncio.Semaphore(self.settings.batch_concurrency)

            async def bounded(segment: Segment) -> None:
                async with semaphore:
                    await self._process_segment(job, segment)

            tasks = [asyncio.create_task(bounded(segment)) for segment in pending]
            await asyncio.gather(*tasks)

            job.recount()
            status = final_status(job.completed_files, job.failed_files)
            error_message = "All segments failed" if status == JobStatus.FAILED else None
            return await self._finish(job, status, error_message)
        except Exception as e:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            await self._release_unfinished(job, f"Batch aborted: {e}")
            raise

    async def _process_segment(self, job: BatchJob, segment: Segment) -> None:
        result = job.results[segment.index]
        result.started_at = utc_now()
        try:
            outcome = await extract_with_retry(
                self.extractor, self.settings, segment.content, segment.filename, segment.mime_type
            )
            result.extraction_id = await self.sink.save_draft(job.owner_id, outcome, segment.filename)
            result.confidence_score = outcome.confidence
            result.invoice_number = outcome.invoice.invoice_number
            if job.output_format and self.registry is not None:
                report = self.registry.create(job.output_format).validate(outcome.invoice)
                result.validation_status = report.status
                result.validation_errors = [issue.rule_id for issue in report.errors]
            result.status = SegmentStatus.SUCCESS
        except Exception as e:
            logger.warning(f"Batch job {job.id}: segment {segment.filename} failed: {e}")
            result.status = SegmentStatus.FAILED
            result.error = str(e)
            await self._refund(job, segment.index)
        result.completed_at = utc_now()
        metrics.batch_segments_total.labels(status=result.status.value).inc()

        async with self._job_lock:
            job.recount()
            job.touch()
            try:
                await self.store.update(job)
            except Exception:
                # progress is written again when the job finishes
                logger.exception(f"Batch job {job.id}: saving progress after {segment.filename} failed")

    async def _release_unfinished(self, job: BatchJob, reason: str) -> None:
        """Fail every segment that has not succeeded and return its credit."""
        for index, result in enumerate(job.results):
            if result.status == SegmentStatus.SUCCESS:
                continue
            if result.status == SegmentStatus.PENDING:
                result.status = SegmentStatus.FAILED
                result.error = reason
                result.completed_at = utc_now()
            await self._refund(job, index)
        job.recount()

    async def _refund(self, job: BatchJob, index: int) -> None:
        try:
            await self.ledger.refund(job.owner_id, 1, refund_key(job.id, index))
        except Exception:
            logger.exception(f"Batch job {job.id}: refund for segment {index} failed")

    async def _finish(self, job: BatchJob, status: JobStatus, error_message: str | None) -> BatchJob:
        job.status = status
        job.error_message = error_message
        job.completed_at = utc_now()
        job.recount()
        job.touch()
        await self.store.update(job)
        metrics.batch_jobs_total.labels(status=status.value).inc()
        logger.info(
            f"Batch job {job.id} {status.value}: "
            f"{job.completed_files} succeeded, {job.failed_files} failed"
        )
        return job
