"""
SQLAlchemy ORM Models

Tables of the reading store. Each row keeps the original event as a
JSON payload plus the indexed columns used for filtering.
"""

from sqlalchemy import JSON, Column, DateTime, Index, Integer, String
from sqlalchemy.sql import func

from .database import Base


class SensorReadingRecord(Base):
    """Per-direction traffic reading"""
    __tablename__ = "sensor_readings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    sensor_id = Column(String, nullable=False, index=True)
    intersection_id = Column(String, index=True)
    sensor_direction = Column(String)  # north, south, east, west
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)

    payload = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime, server_default=func.now())

    __table_args__ = (
        Index('idx_sensor_intersection_time', 'intersection_id', 'timestamp'),
    )


class IntersectionReadingRecord(Base):
    """Intersection-wide reading"""
    __tablename__ = "intersection_readings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    sensor_id = Column(String, nullable=False, index=True)
    intersection_id = Column(String, index=True)
    sensor_direction = Column(String)
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)

    payload = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime, server_default=func.now())

    __table_args__ = (
        Index('idx_intersection_reading_time', 'intersection_id', 'timestamp'),
    )


class TrafficAlertRecord(Base):
    """Alert raised by the sensor network"""
    __tablename__ = "traffic_alerts"

    id = Column(Integer, primary_key=True, autoincrement=True)
    alert_id = Column(String, index=True)
    sensor_id = Column(String)
    intersection_id = Column(String, index=True)
    severity = Column(String, default="low")
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)

    payload = Column(JSON, nullable=False, default=dict)

    created_at = Column(DateTime, server_default=func.now())
