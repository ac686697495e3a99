from sqlalchemy import CheckConstraint, Column, DateTime, Index, Integer, String, Text

from bundler.db.database import Base


class JobRow(Base):
    __tablename__ = "download_jobs"
    __table_args__ = (
        CheckConstraint(
            "status IN ('queued', 'processing', 'completed', 'failed')",
            name="ck_download_jobs_status",
        ),
        Index("idx_jobs_status", "status"),
        Index("idx_jobs_created_at", "created_at"),
    )

    job_id = Column(String, primary_key=True)
    status = Column(String, nullable=False)
    file_keys = Column(Text, nullable=False)  # JSON array
    progress = Column(Integer, nullable=False, default=0)
    files_completed = Column(Integer, nullable=False, default=0)
    total_files = Column(Integer, nullable=False, default=0)
    download_url = Column(Text, nullable=True)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
