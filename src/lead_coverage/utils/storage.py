#!/usr/bin/env python3
# -*- coding: utf-8 -*-

"""
Storage utilities for persisting leads and reading aggregate counts.

Implements SQLAlchemy ORM for database operations with proper session management.
Detection only needs the aggregate read shapes; lead sources use save_leads.
"""

import os
import uuid
from datetime import datetime
from typing import Dict, Any, Optional, Iterable, Iterator
from contextlib import contextmanager

from sqlalchemy import create_engine, Column, String, DateTime, Index
from sqlalchemy.engine import make_url
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from sqlalchemy.pool import StaticPool
from sqlalchemy.sql import func
from sqlalchemy.exc import SQLAlchemyError

from lead_coverage.errors import StoreReadError
from lead_coverage.models.partition import Partition
from lead_coverage.utils.logger import get_logger

# Configure logger
logger = get_logger(__name__)

# Create base class for ORM models
Base = declarative_base()


class LeadModel(Base):
    """SQLAlchemy ORM model for leads."""

    __tablename__ = 'leads'

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    industry = Column(String(64), nullable=False)
    country = Column(String(2), nullable=False)

    name = Column(String(255), nullable=False)
    address = Column(String(255))
    city = Column(String(100))
    phone = Column(String(50))
    website = Column(String(1024))

    # Provenance
    source = Column(String(64))
    external_id = Column(String(255))

    created_at = Column(DateTime, nullable=False, default=datetime.now)

    __table_args__ = (
        Index('idx_leads_industry_country', 'industry', 'country'),
        Index('idx_leads_country', 'country'),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Convert ORM model to dictionary."""
        result = {c.name: getattr(self, c.name) for c in self.__table__.columns}
        if result["created_at"]:
            result["created_at"] = result["created_at"].isoformat()
        return result


class LeadStore:
    """
    Storage manager for leads.

    Provides the per-partition aggregate queries used by detection and
    stats, and a bulk insert used by lead sources.
    """

    def __init__(self, db_url: Optional[str] = None):
        """
        Initialize the lead store.

        Args:
            db_url: SQLAlchemy database URL (defaults to the configured one)
        """
        if db_url is None:
            from lead_coverage.config import config
            db_url = config.database_url

        url = make_url(db_url)
        engine_kwargs: Dict[str, Any] = {}
        if url.get_backend_name() == "sqlite":
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if url.database in (None, "", ":memory:"):
                engine_kwargs["poolclass"] = StaticPool
            else:
                os.makedirs(os.path.dirname(os.path.abspath(url.database)), exist_ok=True)

        self.db_url = db_url
        self.engine = create_engine(db_url, **engine_kwargs)
        self.SessionFactory = sessionmaker(bind=self.engine)

        # Initialize tables if they don't exist
        Base.metadata.create_all(self.engine)

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """
        Provide a transactional scope around a series of operations.

        Yields:
            Session: SQLAlchemy session
        """
        session = self.SessionFactory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            logger.error(f"Database error: {str(e)}")
            raise
        except Exception as e:
            session.rollback()
            logger.error(f"Unexpected error: {str(e)}")
            raise
        finally:
            session.close()

    @contextmanager
    def _read(self, what: str) -> Iterator[Session]:
        try:
            with self.session_scope() as session:
                yield session
        except SQLAlchemyError as e:
            raise StoreReadError(f"Failed to query {what}: {e}", cause=e) from e

    def count_by_partition(self) -> Dict[Partition, int]:
        """
        Count leads grouped by industry and country.

        Returns:
            Dict[Partition, int]: Lead count for every partition with at least one lead

        Raises:
            StoreReadError: If the query fails
        """
        with self._read("lead counts by partition") as session:
            rows = session.query(
                LeadModel.industry,
                LeadModel.country,
                func.count(LeadModel.id).label('count')
            ).group_by(LeadModel.industry, LeadModel.country).all()

            return {Partition(industry, country): count for industry, country, count in rows}

    def count_for_partition(self, partition: Partition) -> int:
        """
        Count leads for a single partition.

        Raises:
            StoreReadError: If the query fails
        """
        with self._read(f"lead count for {partition}") as session:
            return session.query(func.count(LeadModel.id)).filter(
                LeadModel.industry == partition.industry,
                LeadModel.country == partition.country,
            ).scalar() or 0

    def total_leads(self) -> int:
        with self._read("total lead count") as session:
            return session.query(func.count(LeadModel.id)).scalar() or 0

    def count_by_industry(self) -> Dict[str, int]:
        """
        Count leads by industry.

        Returns:
            Dict[str, int]: Dictionary with industries as keys and counts as values
        """
        with self._read("lead counts by industry") as session:
            counts = session.query(
                LeadModel.industry,
                func.count(LeadModel.id).label('count')
            ).group_by(LeadModel.industry).all()

            return {industry: count for industry, count in counts}

    def count_by_country(self) -> Dict[str, int]:
        """
        Count leads by country.

        Returns:
            Dict[str, int]: Dictionary with countries as keys and counts as values
        """
        with self._read("lead counts by country") as session:
            counts = session.query(
                LeadModel.country,
                func.count(LeadModel.id).label('count')
            ).group_by(LeadModel.country).all()

            return {country: count for country, count in counts}

    def save_leads(self, industry: str, country: str, records: Iterable[Dict[str, Any]],
                   source: Optional[str] = None) -> int:
        """
        Insert lead records for a partition.

        Records without a name are skipped. Content is stored as given.

        Args:
            industry: Industry of all records
            country: Country of all records
            records: Raw lead dictionaries from a lead source
            source: Name of the source that produced them

        Returns:
            int: Number of rows inserted
        """
        models = []
        for record in records:
            name = (record.get("name") or "").strip()
            if not name:
                continue
            models.append(LeadModel(
                industry=industry,
                country=country,
                name=name[:255],
                address=record.get("address"),
                city=record.get("city"),
                phone=record.get("phone"),
                website=record.get("website"),
                source=source or record.get("source"),
                external_id=str(record["id"]) if record.get("id") is not None else None,
            ))

        if not models:
            return 0

        with self.session_scope() as session:
            session.add_all(models)

        logger.debug(f"Stored {len(models)} leads for {industry}/{country}")
        return len(models)

    def dispose(self) -> None:
        self.engine.dispose()
