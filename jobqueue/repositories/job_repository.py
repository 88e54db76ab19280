from typing import List, Optional, Dict, Any
from datetime import datetime, timedelta
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, update, delete, func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import aliased

from jobqueue.constants.queue_status import QueueStatus, can_transition
from jobqueue.core.config import settings
from jobqueue.core.errors import JobNotFound, JobStateConflict, InvalidJobTransition
from jobqueue.core.retry import RetryPolicy
from jobqueue.repositories.base_repository import AsyncBaseRepository
from jobqueue.models.base_model import utcnow
from jobqueue.models.jobs_model import Jobs

# Error messages kept in the history are truncated to this length
MAX_ERROR_LENGTH = 2000


class JobRepository(AsyncBaseRepository[Jobs]):
    def __init__(self, retry_policy: Optional[RetryPolicy] = None):
        super().__init__(Jobs)
        self.retry_policy = retry_policy or RetryPolicy.from_settings()

    @staticmethod
    def _job_data(
            job_type: str,
            payload: Dict[str, Any],
            queue_name: str,
            scheduled_at: Optional[datetime],
            max_tries: Optional[int],
            requeued_from_id: Optional[int] = None,
    ) -> Dict[str, Any]:
        return {
            "job_type": job_type,
            "payload": payload,
            "queue_name": queue_name,
            "status": QueueStatus.queued.value,
            "scheduled_at": scheduled_at or utcnow(),
            "attempts": 0,
            "max_tries": max_tries or settings.DEFAULT_MAX_TRIES,
            "errors": [],
            "requeued_from_id": requeued_from_id,
        }

    async def enqueue_job(
            self,
            db: AsyncSession,
            *,
            job_type: str,
            payload: Dict[str, Any],
            queue_name: str = "default",
            scheduled_at: Optional[datetime] = None,
            max_tries: Optional[int] = None
    ) -> Jobs:
        """
        Record a new queued job. The caller commits; nothing here runs the handler.
        """
        return await self.create(
            db, obj_in=self._job_data(job_type, payload, queue_name, scheduled_at, max_tries)
        )

    async def enqueue_jobs(self, db: AsyncSession, jobs: List[Dict[str, Any]]) -> List[Jobs]:
        """
        Record several queued jobs in the caller's transaction.
        Each item takes the enqueue_job keyword arguments.
        """
        objs_in = [
            self._job_data(
                item["job_type"],
                item["payload"],
                item.get("queue_name", "default"),
                item.get("scheduled_at"),
                item.get("max_tries"),
            )
            for item in jobs
        ]
        return await self.create_many(db, objs_in=objs_in)

    async def claim_next_job(
            self,
            db: AsyncSession,
            queue_names: Optional[List[str]] = None,
            worker_id: Optional[str] = None
    ) -> Optional[Jobs]:
        """
        Atomically claim the oldest claimable job in the given queues.

        The candidate row is selected FOR UPDATE SKIP LOCKED (PostgreSQL) and
        the UPDATE re-checks status = queued, so two workers can never both
        move the same row to in_progress. Returns None when nothing is due.
        """
        try:
            if not queue_names:
                queue_names = ["default"]

            now = utcnow()
            candidate = aliased(Jobs)
            next_job_id = (
                select(candidate.id)
                .where(
                    candidate.status == QueueStatus.queued.value,
                    candidate.queue_name.in_(queue_names),
                    candidate.scheduled_at <= now,
                )
                .order_by(candidate.scheduled_at.asc(), candidate.id.asc())
                .limit(1)
                .with_for_update(skip_locked=True)
                .scalar_subquery()
            )

            stmt = (
                update(Jobs)
                .where(Jobs.id == next_job_id, Jobs.status == QueueStatus.queued.value)
                .values(
                    status=QueueStatus.in_progress.value,
                    attempts=Jobs.attempts + 1,
                    claimed_by=worker_id,
                    claimed_at=now,
                    updated_at=now,
                )
                .returning(Jobs.id)
                .execution_options(synchronize_session=False)
            )

            result = await db.execute(stmt)
            job_id = result.scalar_one_or_none()
            if job_id is None:
                return None

            return await self.get(db, job_id, refresh=True)

        except SQLAlchemyError:
            await db.rollback()
            raise

    async def _transition(
            self,
            db: AsyncSession,
            job_id: int,
            expected: QueueStatus,
            target: QueueStatus,
            values: Dict[str, Any],
            attempt: Optional[int] = None,
    ) -> Jobs:
        """
        Move a job from `expected` to `target` with a guarded UPDATE.

        `attempt` additionally pins the claim: a worker whose claim was
        recovered and re-claimed elsewhere no longer matches and gets
        InvalidJobTransition instead of overwriting the newer attempt.
        """
        if not can_transition(expected, target):
            raise InvalidJobTransition(job_id, expected.value, target.value)

        try:
            conditions = [Jobs.id == job_id, Jobs.status == expected.value]
            if attempt is not None:
                conditions.append(Jobs.attempts == attempt)

            stmt = (
                update(Jobs)
                .where(*conditions)
                .values(status=target.value, updated_at=utcnow(), **values)
                .execution_options(synchronize_session=False)
            )
            result = await db.execute(stmt)
        except SQLAlchemyError:
            await db.rollback()
            raise

        if result.rowcount != 1:
            current = await db.scalar(select(Jobs.status).where(Jobs.id == job_id))
            if current is None:
                raise JobNotFound(job_id)
            raise InvalidJobTransition(job_id, current, target.value)

        return await self.get(db, job_id, refresh=True)

    async def mark_job_completed(
            self,
            db: AsyncSession,
            job_id: int,
            result_data: Optional[Dict[str, Any]] = None,
            attempt: Optional[int] = None,
    ) -> Jobs:
        """
        in_progress -> completed, storing the handler result.
        """
        now = utcnow()
        return await self._transition(
            db,
            job_id,
            QueueStatus.in_progress,
            QueueStatus.completed,
            {"result": result_data, "finished_at": now},
            attempt=attempt,
        )

    async def mark_job_failed(
            self,
            db: AsyncSession,
            job_id: int,
            error_message: str,
            retry: bool = True,
            error_type: Optional[str] = None,
            attempt: Optional[int] = None,
    ) -> Jobs:
        """
        Record a failed attempt.

        With retry=True and attempts < max_tries the job goes back to queued,
        scheduled after the retry policy's backoff. Otherwise it is marked
        failed, which is final.
        """
        job = await self.get(db, job_id, refresh=True)
        if not job:
            raise JobNotFound(job_id)

        should_retry = retry and job.attempts < job.max_tries
        now = utcnow()

        errors = list(job.errors or [])
        errors.append({
            "attempt": job.attempts,
            "error": error_message[:MAX_ERROR_LENGTH],
            "error_type": error_type,
            "retried": should_retry,
            "timestamp": now.isoformat(),
        })

        values = {
            "errors": errors,
            "last_error": error_message[:MAX_ERROR_LENGTH],
        }

        if should_retry:
            values["scheduled_at"] = now + self.retry_policy.delay(job.attempts)
            target = QueueStatus.queued
        else:
            values["finished_at"] = now
            target = QueueStatus.failed

        return await self._transition(
            db, job_id, QueueStatus.in_progress, target, values, attempt=attempt
        )

    async def update_queued_job(
            self,
            db: AsyncSession,
            job_id: int,
            values: Dict[str, Any],
    ) -> Jobs:
        """
        Edit payload, schedule or max_tries of a job no worker has claimed yet.
        """
        allowed = {
            k: v for k, v in values.items()
            if k in ("payload", "scheduled_at", "max_tries") and v is not None
        }
        if not allowed:
            job = await self.get(db, job_id)
            if not job:
                raise JobNotFound(job_id)
            return job

        try:
            stmt = (
                update(Jobs)
                .where(Jobs.id == job_id, Jobs.status == QueueStatus.queued.value)
                .values(updated_at=utcnow(), **allowed)
                .execution_options(synchronize_session=False)
            )
            result = await db.execute(stmt)
        except SQLAlchemyError:
            await db.rollback()
            raise

        if result.rowcount != 1:
            current = await db.scalar(select(Jobs.status).where(Jobs.id == job_id))
            if current is None:
                raise JobNotFound(job_id)
            raise JobStateConflict(
                f"Job {job_id} is '{current}'; only queued jobs can be updated"
            )

        return await self.get(db, job_id, refresh=True)

    async def requeue_failed_job(
            self,
            db: AsyncSession,
            job_id: int,
            max_tries: Optional[int] = None,
    ) -> Jobs:
        """
        Create a fresh queued job from a failed one. The failed job keeps its
        terminal status and error history.
        """
        job = await self.get(db, job_id, refresh=True)
        if not job:
            raise JobNotFound(job_id)
        if job.status != QueueStatus.failed.value:
            raise JobStateConflict(
                f"Job {job_id} is '{job.status}'; only failed jobs can be requeued"
            )

        return await self.create(db, obj_in=self._job_data(
            job.job_type,
            dict(job.payload or {}),
            job.queue_name,
            None,
            max_tries or job.max_tries,
            requeued_from_id=job.id,
        ))

    async def get_jobs_by_queue(
            self,
            db: AsyncSession,
            queue_name: str,
            status: Optional[str] = None,
            limit: int = 100
    ) -> List[Jobs]:
        condition = {"queue_name": queue_name}
        if status:
            condition["status"] = status

        return await self.get_by_condition(db, condition, limit=limit)

    async def get_status_count(
            self,
            db: AsyncSession,
            status: QueueStatus,
            queue_name: Optional[str] = None
    ) -> int:
        condition = {"status": status.value}
        if queue_name:
            condition["queue_name"] = queue_name

        return await self.count(db, condition)

    async def reset_stale_jobs(
            self,
            db: AsyncSession,
            stale_timeout_minutes: int = 30
    ) -> Dict[str, int]:
        """
        Recover jobs left in_progress by a crashed or hung worker.

        Jobs claimed before the cutoff go back to queued when attempts remain,
        otherwise they are marked failed.
        """
        cutoff_time = utcnow() - timedelta(minutes=stale_timeout_minutes)

        stmt = select(Jobs.id).where(
            Jobs.status == QueueStatus.in_progress.value,
            Jobs.claimed_at < cutoff_time,
        ).order_by(Jobs.id)
        result = await db.execute(stmt)
        stale_ids = list(result.scalars().all())

        counts = {"requeued": 0, "failed": 0}
        for job_id in stale_ids:
            try:
                job = await self.mark_job_failed(
                    db,
                    job_id,
                    error_message=f"Claim expired after {stale_timeout_minutes} minutes without completion",
                    error_type="StaleClaim",
                )
            except InvalidJobTransition:
                # finished between the select and the update
                continue

            if job.status == QueueStatus.queued.value:
                counts["requeued"] += 1
            else:
                counts["failed"] += 1

        return counts

    async def get_job_stats(self, db: AsyncSession) -> Dict[str, Any]:
        """
        Counts per status and per queue.
        """
        stats = {f"{status.value}_count": 0 for status in QueueStatus}

        result = await db.execute(
            select(Jobs.status, func.count(Jobs.id)).group_by(Jobs.status)
        )
        for status, count in result.all():
            stats[f"{status}_count"] = count

        result = await db.execute(
            select(Jobs.queue_name, func.count(Jobs.id)).group_by(Jobs.queue_name)
        )
        stats["queue_counts"] = {queue_name: count for queue_name, count in result.all()}

        return stats

    async def cleanup_completed_jobs(
            self,
            db: AsyncSession,
            older_than_days: int = 7
    ) -> int:
        """
        Permanently delete completed jobs that finished more than N days ago.
        Failed jobs are kept for operators.
        """
        try:
            cutoff_date = utcnow() - timedelta(days=older_than_days)

            stmt = (
                delete(Jobs)
                .where(
                    Jobs.status == QueueStatus.completed.value,
                    Jobs.finished_at < cutoff_date,
                )
                .execution_options(synchronize_session=False)
            )
            result = await db.execute(stmt)
            return result.rowcount

        except SQLAlchemyError:
            await db.rollback()
            raise
