from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, relationship, sessionmaker

from .model import GateDecision, JobResult, JobStatus, Outcome, PushEvent


class Base(DeclarativeBase):
    pass


class DecisionRow(Base):
    __tablename__ = "decisions"
    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    commit: Mapped[str] = mapped_column(sa.String(64), nullable=False, index=True)
    branch: Mapped[str] = mapped_column(sa.String(32), nullable=False)
    outcome: Mapped[str] = mapped_column(sa.String(16), nullable=False)
    decided_at: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False)
    jobs: Mapped[list["JobResultRow"]] = relationship(
        back_populates="decision", cascade="all, delete-orphan", order_by="JobResultRow.job_name"
    )


class JobResultRow(Base):
    __tablename__ = "job_results"
    id: Mapped[int] = mapped_column(sa.Integer, primary_key=True, autoincrement=True)
    decision_id: Mapped[int] = mapped_column(sa.ForeignKey("decisions.id", ondelete="CASCADE"), nullable=False)
    job_name: Mapped[str] = mapped_column(sa.Text, nullable=False)
    status: Mapped[str] = mapped_column(sa.String(16), nullable=False)
    start_time: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(sa.DateTime(timezone=True), nullable=False)
    log_ref: Mapped[str] = mapped_column(sa.Text, nullable=False)
    failed_step: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    attempts: Mapped[int] = mapped_column(sa.Integer, nullable=False, default=1)
    message: Mapped[Optional[str]] = mapped_column(sa.Text, nullable=True)
    decision: Mapped[DecisionRow] = relationship(back_populates="jobs")


def _engine(database_url: str) -> sa.Engine:
    connect_args = {}
    if database_url.startswith("sqlite"):
        # orchestrator threads and the web server share the engine
        connect_args["check_same_thread"] = False
        db_path = database_url.split("///", 1)[1] if "///" in database_url else ""
        if db_path and db_path != ":memory:":
            Path(db_path).expanduser().parent.mkdir(parents=True, exist_ok=True)
    return sa.create_engine(database_url, pool_pre_ping=True, connect_args=connect_args)


class DecisionStore:
    """Keeps every GateDecision; acts as a reporter and serves lookups."""

    def __init__(self, database_url: str):
        self.engine = _engine(database_url)
        Base.metadata.create_all(self.engine)
        self._session = sessionmaker(self.engine, expire_on_commit=False)

    def report(self, event: PushEvent, decision: GateDecision) -> None:
        with self._session() as s, s.begin():
            row = DecisionRow(commit=decision.commit, branch=decision.branch, outcome=decision.outcome.value)
            for r in decision.per_job.values():
                row.jobs.append(JobResultRow(
                    job_name=r.job_name,
                    status=r.status.value,
                    start_time=r.start_time,
                    end_time=r.end_time,
                    log_ref=r.log_ref,
                    failed_step=r.failed_step,
                    attempts=r.attempts,
                    message=r.message,
                ))
            s.add(row)

    def latest(self, commit: str) -> Optional[GateDecision]:
        """The most recent decision recorded for `commit`, if any."""
        with self._session() as s:
            row = s.scalars(
                sa.select(DecisionRow).where(DecisionRow.commit == commit).order_by(DecisionRow.id.desc()).limit(1)
            ).first()
            if row is None:
                return None
            return _to_decision(row)

    def dispose(self) -> None:
        self.engine.dispose()


def _to_decision(row: DecisionRow) -> GateDecision:
    per_job = {
        j.job_name: JobResult(
            job_name=j.job_name,
            status=JobStatus(j.status),
            start_time=j.start_time,
            end_time=j.end_time,
            log_ref=j.log_ref,
            failed_step=j.failed_step,
            attempts=j.attempts,
            message=j.message,
        )
        for j in row.jobs
    }
    return GateDecision(commit=row.commit, branch=row.branch, outcome=Outcome(row.outcome), per_job=per_job)
