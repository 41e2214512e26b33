"""
DriverScore model — one append-only row per score calculation event.
"""
from sqlalchemy import Column, Integer, Float, Text, Boolean, DateTime, JSON, Index

from gamification.database import Base, utcnow


class DriverScore(Base):
    __tablename__ = 'driver_scores'

    id = Column(Integer, primary_key=True, autoincrement=True)
    driver_id = Column(Text, nullable=False)
    assignment_id = Column(Text, nullable=True)     # null for manual / historical snapshots
    load_id = Column(Text, nullable=True)
    total_score = Column(Float, nullable=False)     # 0-100
    empty_miles_score = Column(Float, nullable=False)
    network_contribution_score = Column(Float, nullable=False)
    on_time_score = Column(Float, nullable=False)
    hub_utilization_score = Column(Float, nullable=False)
    fuel_efficiency_score = Column(Float, nullable=False)
    score_factors = Column(JSON, default=dict)
    calculated_at = Column(DateTime, nullable=False, default=utcnow)
    # Set once SCORE_UPDATED / milestone events went out; a redelivery retries while False
    events_published = Column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index('ix_driver_scores_driver_calculated', 'driver_id', 'calculated_at'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'driver_id': self.driver_id,
            'assignment_id': self.assignment_id,
            'load_id': self.load_id,
            'total_score': self.total_score,
            'empty_miles_score': self.empty_miles_score,
            'network_contribution_score': self.network_contribution_score,
            'on_time_score': self.on_time_score,
            'hub_utilization_score': self.hub_utilization_score,
            'fuel_efficiency_score': self.fuel_efficiency_score,
            'score_factors': self.score_factors or {},
            'calculated_at': self.calculated_at.isoformat() if self.calculated_at else None,
        }
