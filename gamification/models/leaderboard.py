"""
Leaderboard + LeaderboardEntry models.

A leaderboard ranks drivers for one (type, timeframe, region) over a period of
calendar days; end_period is the last day included. Entries are rewritten on
every ranking pass and frozen once the leaderboard is deactivated.
"""
from sqlalchemy import (
    Column, Integer, Float, Text, Boolean, Date, DateTime, JSON, ForeignKey,
    UniqueConstraint, Index,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from gamification.database import Base, utcnow
from gamification.engine.periods import leaderboard_status


class Leaderboard(Base):
    __tablename__ = 'leaderboards'

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False)
    leaderboard_type = Column(Text, nullable=False)   # efficiency / on_time / overall ...
    timeframe = Column(Text, nullable=False)          # weekly / monthly / quarterly / yearly
    region = Column(Text, nullable=True)              # null = global
    start_period = Column(Date, nullable=False)
    end_period = Column(Date, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    bonus_structure = Column(JSON, nullable=False, default=dict)
    last_updated = Column(DateTime, default=utcnow)
    created_at = Column(DateTime, server_default=func.now())

    entries = relationship(
        'LeaderboardEntry',
        back_populates='leaderboard',
        cascade='all, delete-orphan',
        order_by='LeaderboardEntry.rank',
    )

    __table_args__ = (
        Index('ix_leaderboards_chain', 'leaderboard_type', 'timeframe', 'region'),
    )

    def status(self, today, days_threshold=1):
        return leaderboard_status(self.is_active, self.end_period, today, days_threshold)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'leaderboard_type': self.leaderboard_type,
            'timeframe': self.timeframe,
            'region': self.region,
            'start_period': self.start_period.isoformat(),
            'end_period': self.end_period.isoformat(),
            'is_active': self.is_active,
            'bonus_structure': self.bonus_structure or {},
            'last_updated': self.last_updated.isoformat() if self.last_updated else None,
        }


class LeaderboardEntry(Base):
    __tablename__ = 'leaderboard_entries'

    id = Column(Integer, primary_key=True, autoincrement=True)
    leaderboard_id = Column(Integer, ForeignKey('leaderboards.id', ondelete='CASCADE'), nullable=False)
    driver_id = Column(Text, nullable=False)
    driver_name = Column(Text, default='')
    score = Column(Float, nullable=False, default=0.0)
    rank = Column(Integer, nullable=False)
    previous_rank = Column(Integer, nullable=True)    # null until the second ranking pass
    rank_change = Column(Integer, nullable=False, default=0)   # positive = moved up
    bonus_amount = Column(Float, nullable=False, default=0.0)
    bonus_paid = Column(Boolean, nullable=False, default=False)
    updated_at = Column(DateTime, default=utcnow)

    leaderboard = relationship('Leaderboard', back_populates='entries')

    __table_args__ = (
        UniqueConstraint('leaderboard_id', 'driver_id', name='uq_leaderboard_driver'),
        Index('ix_leaderboard_entries_driver_id', 'driver_id'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'leaderboard_id': self.leaderboard_id,
            'driver_id': self.driver_id,
            'driver_name': self.driver_name,
            'score': self.score,
            'rank': self.rank,
            'previous_rank': self.previous_rank,
            'rank_change': self.rank_change,
            'bonus_amount': self.bonus_amount,
            'bonus_paid': self.bonus_paid,
        }
