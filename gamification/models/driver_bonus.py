"""
DriverBonus model — one immutable payout record per reward event.

event_key identifies the reward event (source + driver + assignment) so a
replayed event cannot create a second bonus. Only paid/paid_at ever change.
"""
from sqlalchemy import Column, Integer, Float, Text, Boolean, DateTime, Index

from gamification.database import Base, utcnow


class DriverBonus(Base):
    __tablename__ = 'driver_bonuses'

    id = Column(Integer, primary_key=True, autoincrement=True)
    driver_id = Column(Text, nullable=False)
    source_type = Column(Text, nullable=False)     # bonus_zone / achievement / leaderboard
    source_id = Column(Integer, nullable=False)
    assignment_id = Column(Text, nullable=True)
    amount = Column(Float, nullable=False)
    reason = Column(Text, default='')
    paid = Column(Boolean, nullable=False, default=False)
    payout_reference = Column(Text, nullable=True)
    earned_at = Column(DateTime, nullable=False, default=utcnow)
    paid_at = Column(DateTime, nullable=True)
    event_key = Column(Text, nullable=False, unique=True)

    __table_args__ = (
        Index('ix_driver_bonuses_driver_earned', 'driver_id', 'earned_at'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'driver_id': self.driver_id,
            'source_type': self.source_type,
            'source_id': self.source_id,
            'assignment_id': self.assignment_id,
            'amount': self.amount,
            'reason': self.reason,
            'paid': self.paid,
            'payout_reference': self.payout_reference,
            'earned_at': self.earned_at.isoformat() if self.earned_at else None,
            'paid_at': self.paid_at.isoformat() if self.paid_at else None,
        }
