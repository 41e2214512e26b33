"""
Achievement catalog + DriverAchievement facts.

A DriverAchievement is never updated once written; revocation deletes it.
The (driver_id, achievement_id) constraint is what makes awards at-most-once.
"""
from sqlalchemy import (
    Column, Integer, Text, Boolean, DateTime, JSON, ForeignKey, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from gamification.database import Base, utcnow


class Achievement(Base):
    __tablename__ = 'achievements'

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False, unique=True)
    description = Column(Text, default='')
    category = Column(Text, nullable=False)
    level = Column(Text, nullable=False)
    points = Column(Integer, nullable=False, default=0)
    # {metric_type, threshold, timeframe, comparison_operator, additional_params}
    criteria = Column(JSON, nullable=False)
    badge_image_url = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'category': self.category,
            'level': self.level,
            'points': self.points,
            'criteria': self.criteria,
            'badge_image_url': self.badge_image_url,
            'is_active': self.is_active,
        }


class DriverAchievement(Base):
    __tablename__ = 'driver_achievements'

    id = Column(Integer, primary_key=True, autoincrement=True)
    driver_id = Column(Text, nullable=False, index=True)
    achievement_id = Column(Integer, ForeignKey('achievements.id', ondelete='CASCADE'), nullable=False)
    earned_at = Column(DateTime, nullable=False, default=utcnow)
    achievement_data = Column(JSON, default=dict)   # {score, achievement, points}

    achievement = relationship('Achievement', lazy='joined')

    __table_args__ = (
        UniqueConstraint('driver_id', 'achievement_id', name='uq_driver_achievement'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'driver_id': self.driver_id,
            'achievement_id': self.achievement_id,
            'achievement': self.achievement.to_dict() if self.achievement else None,
            'earned_at': self.earned_at.isoformat() if self.earned_at else None,
            'achievement_data': self.achievement_data or {},
        }
