"""Modelos SQLAlchemy de eventos e inscripciones"""
from sqlalchemy import Column, String, Integer, Boolean, DateTime, ForeignKey, JSON
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import uuid
from shared.database.connection import Base


class Event(Base):
    __tablename__ = "events"

    id = Column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    title = Column(String, nullable=False)
    date = Column(String, nullable=True)  # Fecha tal como la cargó el admin
    time = Column(String, nullable=True)
    location = Column(String, nullable=True)
    image_url = Column(String, nullable=True)
    time_slots = Column(JSON, nullable=False, default=list)
    available_tickets = Column(Integer, nullable=False, server_default="0")
    registrations = Column(Integer, nullable=False, server_default="0")
    created_at = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False)

    # Relaciones
    tickets = relationship("Registration", back_populates="event")


class Registration(Base):
    __tablename__ = "registrations"

    id = Column(String(64), primary_key=True, default=lambda: str(uuid.uuid4()))
    ticket_id = Column(String(64), unique=True, nullable=False, index=True)
    event_id = Column(String(64), ForeignKey("events.id"), nullable=False, index=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=False, index=True)
    phone = Column(String, nullable=True)
    time_slot = Column(String, nullable=True)
    token = Column(String, nullable=False)  # Token emitido, nunca se re-codifica
    ticket_sent = Column(Boolean, nullable=False, default=False)
    registered_at = Column(DateTime(timezone=True), nullable=False)

    # Check-in: false -> true una sola vez
    checked_in = Column(Boolean, nullable=False, default=False, index=True)
    checked_in_at = Column(DateTime(timezone=True), nullable=True)
    checked_in_by = Column(String, nullable=True)
    checked_in_location = Column(String, nullable=True)
    verification_method = Column(String, nullable=True)  # qr_scan, manual

    # Relaciones
    event = relationship("Event", back_populates="tickets")
