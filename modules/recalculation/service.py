"""
Recalculation Module - Job Engine
===================================
Propagates a metal price or configuration change to every affected
product (and its variants).

Dispatch:
    fewer than SYNC_RECALC_THRESHOLD products -> run inline, return aggregate
    otherwise                                 -> PENDING job, picked up in background

Run:
    claim (conditional PENDING -> RUNNING update), then per product:
    resolve -> context -> calculate -> version check -> persist -> commit.
    A product failure is recorded on the job and never aborts the batch.
    A failure of the run itself goes through mark_failed (retry while
    attempts remain).

The engine owns its unit of work: it commits progress after every product.
"""

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Callable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from common.events import publish_after_commit, JOB_FINISHED, JOB_QUEUED
from common.exceptions import (
    ConfigurationChangedError, JobAlreadyInProgressError, JobStateError, KaratError,
    NotFoundError, RetryLimitExceededError, ValidationError,
)
from common.helpers import as_utc, now_utc, round_money
from config import settings
from modules.catalog.models import Product, PricingMode
from modules.pricing.config_service import config_service
from modules.pricing.models import MetalType, PricingConfiguration
from modules.pricing.resolver import resolve_configuration, resolver
from modules.pricing.service import apply_breakdown, get_metal_rate, price_item
from modules.recalculation.models import (
    ACTIVE_STATUSES, RETRYABLE_STATUSES, JobMode, JobStatus, RecalculationJob, ScopeType,
)

logger = logging.getLogger("karat.recalculation")

UPDATED = "updated"
SKIPPED = "skipped"
FAILED = "failed"


# ==========================================
# Target
# ==========================================

@dataclass(frozen=True)
class RecalculationTarget:
    scope_type: ScopeType
    value: str

    @classmethod
    def for_config(cls, config_id: int) -> "RecalculationTarget":
        return cls(ScopeType.CONFIG, str(int(config_id)))

    @classmethod
    def for_metal_type(cls, metal_type) -> "RecalculationTarget":
        try:
            code = MetalType(metal_type).value
        except ValueError:
            raise ValidationError(f"Unknown metal type: {metal_type}")
        return cls(ScopeType.METAL_TYPE, code)

    @classmethod
    def from_job(cls, job: RecalculationJob) -> "RecalculationTarget":
        return cls(ScopeType(job.scope_type), job.scope_value)

    @property
    def scope_key(self) -> str:
        return f"{self.scope_type.value}:{self.value}"

    @property
    def config_id(self) -> Optional[int]:
        return int(self.value) if self.scope_type == ScopeType.CONFIG else None


class RecalculationService:

    # ------------------------------------------
    # Selection
    # ------------------------------------------

    def _product_query(self, db: Session, target: RecalculationTarget):
        query = db.query(Product).filter(
            Product.is_active == True,
            Product.pricing_mode == PricingMode.SUBCATEGORY_DYNAMIC.value,
        )
        if target.scope_type == ScopeType.CONFIG:
            config = config_service.get(db, target.config_id)
            node_ids = resolver.inheriting_subcategory_ids(db, config.subcategory_id)
            query = query.filter(Product.subcategory_id.in_(node_ids))
        else:
            query = query.filter(Product.metal_type == target.value)
        return query.order_by(Product.id)

    def affected_count(self, db: Session, target: RecalculationTarget) -> int:
        return self._product_query(db, target).count()

    def _active_job(self, db: Session, scope_key: str, exclude_id: int = None) -> Optional[RecalculationJob]:
        query = db.query(RecalculationJob).filter(
            RecalculationJob.scope_key == scope_key,
            RecalculationJob.status.in_(ACTIVE_STATUSES),
        )
        if exclude_id is not None:
            query = query.filter(RecalculationJob.id != exclude_id)
        return query.first()

    def _overlapping_job(self, db: Session, target: RecalculationTarget, exclude_id: int = None) -> Optional[RecalculationJob]:
        """An active job of the other scope type that would reprice some of the same products."""
        query = db.query(RecalculationJob).filter(
            RecalculationJob.scope_type != target.scope_type.value,
            RecalculationJob.status.in_(ACTIVE_STATUSES),
        )
        if exclude_id is not None:
            query = query.filter(RecalculationJob.id != exclude_id)
        others = query.order_by(RecalculationJob.id).all()
        if not others:
            return None

        if target.scope_type == ScopeType.CONFIG:
            metals = {
                metal for (metal,) in self._product_query(db, target)
                .order_by(None).with_entities(Product.metal_type).distinct()
            }
            return next((job for job in others if job.scope_value in metals), None)

        for job in others:
            if db.query(PricingConfiguration).get(int(job.scope_value)) is None:
                continue
            shared = (
                self._product_query(db, RecalculationTarget.from_job(job))
                .filter(Product.metal_type == target.value)
                .first()
            )
            if shared is not None:
                return job
        return None

    def _blocking_job(self, db: Session, target: RecalculationTarget, exclude_id: int = None) -> Optional[RecalculationJob]:
        return (
            self._active_job(db, target.scope_key, exclude_id=exclude_id)
            or self._overlapping_job(db, target, exclude_id=exclude_id)
        )

    # ------------------------------------------
    # Preview (no writes)
    # ------------------------------------------

    def preview_recalculation(self, db: Session, target: RecalculationTarget, metal_rate=None) -> dict:
        """
        Affected count plus before/after prices for a sample of products.
        `metal_rate` overrides the live rate (what-if for a pending price change).
        """
        query = self._product_query(db, target)
        affected = query.count()
        samples = []
        for product in query.limit(settings.PREVIEW_SAMPLE_LIMIT).all():
            before = round_money(product.calculated_price) if product.calculated_price is not None else None
            entry = {"product_id": product.id, "name": product.name, "before": str(before) if before is not None else None}
            try:
                config, _ = resolve_configuration(db, product.subcategory_id)
                rate = metal_rate if metal_rate is not None else get_metal_rate(db, product.metal_type)
                after = price_item(config, product, product.metal_type, rate).total_price
                entry["after"] = str(after)
                entry["delta"] = str(after - before) if before is not None else None
            except KaratError as e:
                entry["after"] = None
                entry["error"] = e.message
            samples.append(entry)

        return {
            "scope": target.scope_key,
            "affected_count": affected,
            "mode": JobMode.SYNC.value if affected < settings.SYNC_RECALC_THRESHOLD else JobMode.BACKGROUND.value,
            "sample_before_after": samples,
        }

    # ------------------------------------------
    # Dispatch
    # ------------------------------------------

    def execute_recalculation(self, db: Session, target: RecalculationTarget, triggered_by: str = "system") -> dict:
        """
        Create a job for the target and run it inline when small, else queue it.

        Raises:
            JobAlreadyInProgressError: a PENDING/RUNNING job exists for the same scope,
                or one of the other scope type covers some of the same products
        """
        existing = self._blocking_job(db, target)
        if existing is not None:
            raise JobAlreadyInProgressError(existing.scope_key, existing.id)

        count = self.affected_count(db, target)
        mode = JobMode.SYNC if count < settings.SYNC_RECALC_THRESHOLD else JobMode.BACKGROUND

        job = RecalculationJob(
            status=JobStatus.PENDING.value,
            mode=mode.value,
            scope_type=target.scope_type.value,
            scope_value=target.value,
            scope_key=target.scope_key,
            total=count,
            failures=[],
            max_attempts=settings.JOB_MAX_ATTEMPTS,
            triggered_by=triggered_by,
        )
        db.add(job)
        try:
            db.flush()
        except IntegrityError:
            db.rollback()
            existing = self._active_job(db, target.scope_key)
            raise JobAlreadyInProgressError(target.scope_key, existing.id if existing else 0)

        if mode == JobMode.BACKGROUND:
            publish_after_commit(db, JOB_QUEUED, {"job_id": job.id, "scope": target.scope_key})
        db.commit()
        logger.info(f"Recalculation job {job.id} for {target.scope_key}: {count} product(s), {mode.value} (by {triggered_by})")

        if mode == JobMode.SYNC:
            job = self.run_job(db, job.id) or job
        return self._summary(job)

    def _summary(self, job: RecalculationJob) -> dict:
        return {
            "mode": job.mode,
            "job_id": job.id,
            "status": job.status,
            "total": job.total,
            "updated": job.succeeded,
            "failed": job.failed,
            "skipped": job.skipped,
        }

    # ------------------------------------------
    # Run
    # ------------------------------------------

    def _claim(self, db: Session, job_id: int) -> bool:
        """Atomically move PENDING -> RUNNING. False if someone else has it."""
        claimed = (
            db.query(RecalculationJob)
            .filter(RecalculationJob.id == job_id, RecalculationJob.status == JobStatus.PENDING.value)
            .update(
                {
                    RecalculationJob.status: JobStatus.RUNNING.value,
                    RecalculationJob.started_at: now_utc(),
                    RecalculationJob.attempts: RecalculationJob.attempts + 1,
                },
                synchronize_session=False,
            )
        )
        db.commit()
        return claimed == 1

    def _current_version(self, db: Session, config_id: int) -> Optional[int]:
        return (
            db.query(PricingConfiguration.version)
            .filter(PricingConfiguration.id == config_id)
            .scalar()
        )

    def _cancel_requested(self, db: Session, job_id: int) -> bool:
        return bool(
            db.query(RecalculationJob.cancel_requested)
            .filter(RecalculationJob.id == job_id)
            .scalar()
        )

    def _process_product(self, db: Session, product: Product, target: RecalculationTarget) -> str:
        """
        Recalculate one product and its active variants.
        Retries when the configuration version moves underneath.
        """
        for attempt in range(1, settings.CONFLICT_RETRY_LIMIT + 1):
            config, _ = resolve_configuration(db, product.subcategory_id)
            expected = config.version

            # a metal price change cannot move a fully frozen configuration
            if target.scope_type == ScopeType.METAL_TYPE and config.all_frozen:
                return SKIPPED

            rate = get_metal_rate(db, product.metal_type)
            now = now_utc()
            breakdown = price_item(config, product, product.metal_type, rate, now)
            variant_breakdowns = [
                (variant, price_item(config, variant, product.metal_type, rate, now))
                for variant in product.variants if variant.is_active
            ]

            actual = self._current_version(db, config.id)
            if actual != expected:
                if attempt >= settings.CONFLICT_RETRY_LIMIT:
                    raise ConfigurationChangedError(config.id, expected, actual)
                logger.debug(
                    f"Config {config.id} moved v{expected} -> v{actual} while pricing product {product.id}; "
                    f"retry {attempt}/{settings.CONFLICT_RETRY_LIMIT}"
                )
                resolver.invalidate()
                db.expire_all()
                continue

            apply_breakdown(product, breakdown)
            for variant, variant_breakdown in variant_breakdowns:
                apply_breakdown(variant, variant_breakdown)
            db.flush()
            return UPDATED

    def _finish_cancelled(self, db: Session, job: RecalculationJob):
        job.status = JobStatus.FAILED.value
        job.completed_at = now_utc()
        job.last_error = job.last_error or "Cancelled"
        job.result = self._result(job, cancelled=True)

    def _result(self, job: RecalculationJob, cancelled: bool = False) -> dict:
        return {
            "total": job.total,
            "updated": job.succeeded,
            "failed": job.failed,
            "skipped": job.skipped,
            "cancelled": cancelled,
        }

    def run_job(self, db: Session, job_id: int) -> Optional[RecalculationJob]:
        """
        Execute a PENDING job. Returns the job, or None if it could not be claimed.
        Resumes after checkpoint_product_id when the job ran before.
        """
        if not self._claim(db, job_id):
            logger.info(f"Recalculation job {job_id} not claimable (already running or finished)")
            return None

        job = db.query(RecalculationJob).get(job_id)
        target = RecalculationTarget.from_job(job)
        logger.info(f"Running recalculation job {job.id} ({target.scope_key}), attempt {job.attempts}/{job.max_attempts}")

        try:
            query = self._product_query(db, target)
            job.total = query.count()
            if job.checkpoint_product_id:
                query = query.filter(Product.id > job.checkpoint_product_id)
            product_ids = [row.id for row in query.with_entities(Product.id).all()]
            db.commit()

            for product_id in product_ids:
                if self._cancel_requested(db, job.id):
                    self._finish_cancelled(db, job)
                    publish_after_commit(db, JOB_FINISHED, {"job_id": job.id, "status": job.status})
                    db.commit()
                    logger.warning(f"Recalculation job {job.id} cancelled after {job.processed} product(s)")
                    return job

                outcome = self._run_one(db, job, target, product_id)
                if outcome == UPDATED:
                    job.succeeded += 1
                elif outcome == SKIPPED:
                    job.skipped += 1
                job.processed += 1
                job.checkpoint_product_id = product_id
                db.commit()

            job.mark_finished(self._result(job))
            publish_after_commit(db, JOB_FINISHED, {"job_id": job.id, "status": job.status})
            db.commit()
            logger.info(
                f"Recalculation job {job.id} {job.status}: "
                f"{job.succeeded} updated, {job.failed} failed, {job.skipped} skipped"
            )
            return job

        except Exception as e:
            db.rollback()
            job = db.query(RecalculationJob).get(job_id)
            message = e.message if isinstance(e, KaratError) else str(e)
            job.mark_failed(message)
            if job.status == JobStatus.FAILED.value:
                publish_after_commit(db, JOB_FINISHED, {"job_id": job.id, "status": job.status})
            db.commit()
            logger.exception(f"Recalculation job {job_id} failed (attempt {job.attempts}/{job.max_attempts}): {message}")
            return job

    def _run_one(self, db: Session, job: RecalculationJob, target: RecalculationTarget, product_id: int) -> str:
        """Process one product inside a savepoint; failures are recorded on the job."""
        product = db.query(Product).get(product_id)
        if product is None:
            return SKIPPED

        savepoint = db.begin_nested()
        try:
            outcome = self._process_product(db, product, target)
            savepoint.commit()
        except KaratError as e:
            savepoint.rollback()
            job.add_failure(product_id, e.message)
            logger.warning(f"Job {job.id}: product {product_id} failed: {e.message}")
            return FAILED
        except (ArithmeticError, ValueError) as e:
            savepoint.rollback()
            job.add_failure(product_id, str(e))
            logger.exception(f"Job {job.id}: product {product_id} failed")
            return FAILED

        return outcome

    # ------------------------------------------
    # Job management
    # ------------------------------------------

    def get_job(self, db: Session, job_id: int) -> RecalculationJob:
        job = db.query(RecalculationJob).get(job_id)
        if job is None:
            raise NotFoundError(f"Recalculation job not found: {job_id}")
        return job

    def list_jobs(self, db: Session, status: str = None, limit: int = 50) -> List[RecalculationJob]:
        query = db.query(RecalculationJob)
        if status:
            try:
                query = query.filter(RecalculationJob.status == JobStatus(status).value)
            except ValueError:
                raise ValidationError(f"Unknown job status: {status}")
        return query.order_by(RecalculationJob.id.desc()).limit(limit).all()

    def retry_job(self, db: Session, job_id: int, actor: str = "system") -> dict:
        """
        Re-run a FAILED or PARTIAL job from scratch.

        Raises:
            JobStateError: job is not FAILED/PARTIAL
            RetryLimitExceededError: attempts >= max_attempts
            JobAlreadyInProgressError: another job holds the scope
        """
        job = self.get_job(db, job_id)
        if job.status not in RETRYABLE_STATUSES:
            raise JobStateError(f"Only FAILED or PARTIAL jobs can be retried (job {job.id} is {job.status}).")
        if job.attempts >= job.max_attempts:
            raise RetryLimitExceededError(job.id, job.max_attempts)

        target = RecalculationTarget.from_job(job)
        other = self._blocking_job(db, target, exclude_id=job.id)
        if other is not None:
            raise JobAlreadyInProgressError(other.scope_key, other.id)

        count = self.affected_count(db, target)
        mode = JobMode.SYNC if count < settings.SYNC_RECALC_THRESHOLD else JobMode.BACKGROUND

        job.reset_progress()
        job.total = count
        job.mode = mode.value
        job.status = JobStatus.PENDING.value
        job.last_error = None
        if mode == JobMode.BACKGROUND:
            publish_after_commit(db, JOB_QUEUED, {"job_id": job.id, "scope": job.scope_key})
        db.commit()
        logger.info(f"Recalculation job {job.id} retried by {actor} ({mode.value})")

        if mode == JobMode.SYNC:
            job = self.run_job(db, job.id) or job
        return self._summary(job)

    def cancel_job(self, db: Session, job_id: int, actor: str = "system") -> RecalculationJob:
        """PENDING jobs end at once; RUNNING jobs stop before their next product."""
        job = self.get_job(db, job_id)
        if job.status == JobStatus.PENDING.value:
            job.last_error = f"Cancelled by {actor}"
            self._finish_cancelled(db, job)
            publish_after_commit(db, JOB_FINISHED, {"job_id": job.id, "status": job.status})
        elif job.status == JobStatus.RUNNING.value:
            job.cancel_requested = True
            job.last_error = f"Cancelled by {actor}"
        else:
            raise JobStateError(f"Job {job.id} is already {job.status}.")
        db.commit()
        logger.info(f"Recalculation job {job.id} cancel requested by {actor}")
        return job

    def recover_stale_jobs(self, db: Session) -> int:
        """RUNNING jobs whose runner died (started too long ago) go through the hard-failure path."""
        cutoff = now_utc() - timedelta(minutes=settings.STALE_JOB_MINUTES)
        stale = [
            job for job in db.query(RecalculationJob)
            .filter(RecalculationJob.status == JobStatus.RUNNING.value)
            .all()
            if job.started_at is None or as_utc(job.started_at) < cutoff
        ]
        for job in stale:
            job.mark_failed("Server crashed or restarted during execution")
            logger.warning(f"Recovered stale recalculation job {job.id} -> {job.status}")
        if stale:
            db.commit()
        return len(stale)

    def retryable_jobs(self, db: Session) -> List[RecalculationJob]:
        since = now_utc() - timedelta(hours=settings.RETRYABLE_JOB_WINDOW_HOURS)
        return (
            db.query(RecalculationJob)
            .filter(
                RecalculationJob.status == JobStatus.PENDING.value,
                RecalculationJob.attempts < RecalculationJob.max_attempts,
                RecalculationJob.created_at >= since,
            )
            .order_by(RecalculationJob.created_at, RecalculationJob.id)
            .all()
        )

    def run_pending_jobs(self, session_factory: Callable[[], Session]) -> int:
        """Run every retryable PENDING job, each in its own session. Returns jobs run."""
        db = session_factory()
        try:
            job_ids = [job.id for job in self.retryable_jobs(db)]
        finally:
            db.close()

        ran = 0
        for job_id in job_ids:
            db = session_factory()
            try:
                if self.run_job(db, job_id) is not None:
                    ran += 1
            finally:
                db.close()
        return ran

    def cleanup_old_jobs(self, db: Session) -> int:
        cutoff = now_utc() - timedelta(days=settings.JOB_RETENTION_DAYS)
        deleted = (
            db.query(RecalculationJob)
            .filter(
                RecalculationJob.status.in_([JobStatus.COMPLETED.value, JobStatus.PARTIAL.value, JobStatus.FAILED.value]),
                RecalculationJob.completed_at < cutoff,
            )
            .delete(synchronize_session=False)
        )
        db.commit()
        if deleted:
            logger.info(f"Deleted {deleted} recalculation job(s) older than {settings.JOB_RETENTION_DAYS} days")
        return deleted


# Singleton
recalculation_service = RecalculationService()
