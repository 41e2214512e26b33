"""
BonusZone model — a geofenced, time-bounded payout multiplier.

boundary is a closed-or-open list of {lat, lng} vertices. Circular zones are
stored as their materialized polygon; center/radius are kept for display only.
"""
from sqlalchemy import Column, Integer, Float, Text, Boolean, DateTime, JSON
from sqlalchemy.sql import func

from gamification.database import Base


class BonusZone(Base):
    __tablename__ = 'bonus_zones'

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False)
    boundary = Column(JSON, nullable=False)
    multiplier = Column(Float, nullable=False, default=1.5)
    reason = Column(Text, default='')
    center_lat = Column(Float, nullable=True)
    center_lng = Column(Float, nullable=True)
    radius_km = Column(Float, nullable=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)    # exclusive
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, server_default=func.now())

    def is_live(self, now):
        """Active flag set and now inside [start_time, end_time)."""
        return bool(self.is_active) and self.start_time <= now < self.end_time

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'boundary': self.boundary,
            'multiplier': self.multiplier,
            'reason': self.reason,
            'center_lat': self.center_lat,
            'center_lng': self.center_lng,
            'radius_km': self.radius_km,
            'start_time': self.start_time.isoformat(),
            'end_time': self.end_time.isoformat(),
            'is_active': self.is_active,
        }
