from sqlalchemy import Index
from sqlalchemy.sql.schema import Column, ForeignKey
from sqlalchemy.sql.sqltypes import String, DateTime, Integer, JSON, Text

from jobqueue.constants.queue_status import QueueStatus
from jobqueue.models.base_model import BaseModel, utcnow


class Jobs(BaseModel):
    __tablename__ = "jobs"
    __table_args__ = (
        # claim query: WHERE status/queue_name/scheduled_at ORDER BY scheduled_at, id
        Index("ix_jobs_claim", "status", "queue_name", "scheduled_at", "id"),
    )

    #core
    queue_name = Column(String(100), nullable=False, default="default", index=True)
    job_type = Column(String(100), nullable=False, index=True)

    #Job Data
    payload = Column(JSON, nullable=False, default=dict)
    result = Column(JSON, nullable=True)

    # Job status and scheduling
    status = Column(String(20), nullable=False, default=QueueStatus.queued.value, index=True)
    scheduled_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    # Claim bookkeeping
    claimed_by = Column(String(255), nullable=True)
    claimed_at = Column(DateTime(timezone=True), nullable=True)
    finished_at = Column(DateTime(timezone=True), nullable=True)

    # Retry logic
    attempts = Column(Integer, nullable=False, default=0)
    max_tries = Column(Integer, nullable=False, default=3)
    last_error = Column(Text, nullable=True)
    errors = Column(JSON, nullable=False, default=list)

    # Operator requeue of a failed job creates a new row pointing at the old one
    requeued_from_id = Column(Integer, ForeignKey("jobs.id", ondelete="SET NULL"), nullable=True)

    def __repr__(self):
        return f"<Jobs id={self.id} type={self.job_type} status={self.status} attempts={self.attempts}>"
