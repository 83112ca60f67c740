import json
import logging
from datetime import date, datetime, timezone
from pathlib import Path
from typing import List, Optional

from sqlalchemy import (Column, Date, DateTime, Index, Integer, String, Text,
                        UniqueConstraint, create_engine)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from trend_archive.config import DatabaseConfig
from trend_archive.errors import PersistError
from trend_archive.models import ArchiveRow, ParsedRecord

logger = logging.getLogger(__name__)

Base = declarative_base()

_UPSERT_DIALECTS = {
    "sqlite": sqlite.insert,
    "postgresql": postgresql.insert,
}


class TrendingRepoRecord(Base):
    __tablename__ = "trending_repos"
    __table_args__ = (
        UniqueConstraint("repo_owner", "repo_name", "trending_date",
                         name="unique_trending_repo_per_day"),
        Index("idx_trending_repos_trending_date", "trending_date"),
        Index("idx_trending_repos_owner_name", "repo_owner", "repo_name"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    repo_owner = Column(String(255), nullable=False)
    repo_name = Column(String(255), nullable=False)
    description = Column(Text)
    language = Column(String(100))
    language_color = Column(String(7))
    total_stars = Column(Integer, nullable=False, default=0)
    forks = Column(Integer, nullable=False, default=0)
    stars_today = Column(Integer, nullable=False, default=0)
    topics_json = Column(Text, nullable=False, default="[]")
    trending_date = Column(Date, nullable=False)
    scraped_at = Column(DateTime(timezone=True), nullable=False)

    def to_model(self) -> ArchiveRow:
        return ArchiveRow(
            owner=self.repo_owner,
            name=self.repo_name,
            description=self.description,
            language=self.language,
            language_color=self.language_color,
            total_stars=self.total_stars,
            forks=self.forks,
            stars_today=self.stars_today,
            topics=json.loads(self.topics_json or "[]"),
            trending_date=self.trending_date,
            scraped_at=self.scraped_at,
        )

    @staticmethod
    def values_from_model(record: ParsedRecord, trending_date: date, scraped_at: datetime) -> dict:
        return {
            "repo_owner": record.owner,
            "repo_name": record.name,
            "description": record.description,
            "language": record.language,
            "language_color": record.language_color,
            "total_stars": record.total_stars,
            "forks": record.forks,
            "stars_today": record.stars_today,
            "topics_json": json.dumps(list(record.topics)),
            "trending_date": trending_date,
            "scraped_at": scraped_at,
        }


class TrendingArchive:
    """Durable, append-mostly store of daily trending observations."""

    def __init__(self, config: Optional[DatabaseConfig] = None, database_url: Optional[str] = None):
        self.config = config or DatabaseConfig()
        self.database_url = database_url or self.config.url
        self._engine = None
        self._session_factory = None

    @property
    def engine(self):
        if self._engine is None:
            url = make_url(self.database_url)
            if url.get_backend_name() == "sqlite" and url.database not in (None, "", ":memory:"):
                Path(url.database).parent.mkdir(parents=True, exist_ok=True)
            self._engine = create_engine(self.database_url, echo=self.config.echo)
            Base.metadata.create_all(self._engine)
        return self._engine

    @property
    def session_factory(self):
        if self._session_factory is None:
            self._session_factory = sessionmaker(bind=self.engine)
        return self._session_factory

    def get_session(self) -> Session:
        return self.session_factory()

    def _upsert_statement(self, record: ParsedRecord, trending_date: date, scraped_at: datetime):
        insert = _UPSERT_DIALECTS.get(self.engine.dialect.name)
        if insert is None:
            raise PersistError(f"Unsupported database dialect: {self.engine.dialect.name}")

        values = TrendingRepoRecord.values_from_model(record, trending_date, scraped_at)
        stmt = insert(TrendingRepoRecord).values(**values)
        return stmt.on_conflict_do_update(
            index_elements=["repo_owner", "repo_name", "trending_date"],
            set_={key: stmt.excluded[key] for key in values
                  if key not in ("repo_owner", "repo_name", "trending_date")},
        )

    def persist(
        self,
        records: List[ParsedRecord],
        trending_date: date,
        scraped_at: Optional[datetime] = None
    ) -> int:
        """
        Upsert records for a trending date as one atomic batch.

        Returns:
            Number of rows inserted or replaced

        Raises:
            PersistError: if the batch fails
        """
        if not records:
            return 0

        scraped_at = scraped_at or datetime.now(timezone.utc)
        statements = [self._upsert_statement(r, trending_date, scraped_at) for r in records]

        try:
            with self.engine.begin() as conn:
                results = [conn.execute(stmt) for stmt in statements]
        except SQLAlchemyError as e:
            raise PersistError(f"Archive persistence failed: {e}") from e

        # rowcount is -1 when the driver cannot report it
        rows_written = sum(max(result.rowcount or 0, 0) for result in results)
        logger.debug(f"Persisted {rows_written} rows for {trending_date.isoformat()}")
        return rows_written

    def has_data_for_date(self, trending_date: date) -> bool:
        with self.get_session() as session:
            row = session.query(TrendingRepoRecord.id).filter(
                TrendingRepoRecord.trending_date == trending_date
            ).first()
            return row is not None

    def rows_for_date(self, trending_date: date) -> List[ArchiveRow]:
        with self.get_session() as session:
            records = session.query(TrendingRepoRecord).filter(
                TrendingRepoRecord.trending_date == trending_date
            ).order_by(TrendingRepoRecord.stars_today.desc()).all()

            return [r.to_model() for r in records]

    def count_rows(self) -> int:
        with self.get_session() as session:
            return session.query(TrendingRepoRecord).count()
