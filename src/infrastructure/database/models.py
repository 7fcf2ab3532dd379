# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""SQLAlchemy models for the mirrored CRM tables and local course linkage.

The mirrored tables are replicated from the CRM by an external process and
are read-only here. They are declared in the logical "mirror" schema, which
the engine maps onto DATABASE_MIRROR_SCHEMA through schema_translate_map.
Column names follow the CRM's API names (``status__c``), attribute names are
plain Python.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from src.utils.datetime import utc_now

MIRROR_SCHEMA = "mirror"


class Base(DeclarativeBase):
    """Declarative base for all models."""


class TimestampMixin:
    """Adds created_at and updated_at columns."""

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )


# =============================================================================
# Mirrored CRM tables (read-only)
# =============================================================================


class MirrorRecordType(Base):
    """CRM record type. Distinguishes course programs and participant roles."""

    __tablename__ = "recordtype"
    __table_args__ = {"schema": MIRROR_SCHEMA}

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    sfid: Mapped[str] = mapped_column(String(18), unique=True)
    name: Mapped[Optional[str]] = mapped_column(String(80))


class MirrorProgram(Base):
    """CRM program record."""

    __tablename__ = "program__c"
    __table_args__ = {"schema": MIRROR_SCHEMA}

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    sfid: Mapped[str] = mapped_column(String(18), unique=True)
    name: Mapped[Optional[str]] = mapped_column(String(80))
    status: Mapped[Optional[str]] = mapped_column("status__c", String(255))
    record_type_id: Mapped[Optional[str]] = mapped_column(
        "recordtypeid", String(18), ForeignKey(f"{MIRROR_SCHEMA}.recordtype.sfid")
    )
    canvas_course_id: Mapped[Optional[str]] = mapped_column(
        "canvas_cloud_accelerator_course_id__c", String(255)
    )
    discord_server_id: Mapped[Optional[str]] = mapped_column(
        "discord_server_id__c", String(255)
    )
    is_deleted: Mapped[Optional[bool]] = mapped_column("isdeleted", Boolean)


class MirrorContact(Base):
    """CRM contact. One per person, shared by all their participants."""

    __tablename__ = "contact"
    __table_args__ = {"schema": MIRROR_SCHEMA}

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    sfid: Mapped[str] = mapped_column(String(18), unique=True)
    email: Mapped[Optional[str]] = mapped_column(String(80))
    first_name: Mapped[Optional[str]] = mapped_column("firstname", String(40))
    last_name: Mapped[Optional[str]] = mapped_column("lastname", String(80))
    discord_user_id: Mapped[Optional[str]] = mapped_column("discord_user_id__c", String(255))
    is_deleted: Mapped[Optional[bool]] = mapped_column("isdeleted", Boolean)


class MirrorCohort(Base):
    """CRM cohort. Its name is the participant's course section."""

    __tablename__ = "cohort__c"
    __table_args__ = {"schema": MIRROR_SCHEMA}

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    sfid: Mapped[str] = mapped_column(String(18), unique=True)
    name: Mapped[Optional[str]] = mapped_column(String(80))


class MirrorCohortSchedule(Base):
    """CRM cohort schedule. Carries the meetings of a cohort."""

    __tablename__ = "cohortschedule__c"
    __table_args__ = {"schema": MIRROR_SCHEMA}

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    sfid: Mapped[str] = mapped_column(String(18), unique=True)
    name: Mapped[Optional[str]] = mapped_column(String(80))
    zoom_meeting_id_1: Mapped[Optional[str]] = mapped_column("webinar_registration_1__c", String(255))
    zoom_meeting_id_2: Mapped[Optional[str]] = mapped_column("webinar_registration_2__c", String(255))


class MirrorParticipant(Base):
    """CRM participant: one contact's enrollment in one program."""

    __tablename__ = "participant__c"
    __table_args__ = {"schema": MIRROR_SCHEMA}

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    sfid: Mapped[str] = mapped_column(String(18), unique=True)
    program_id: Mapped[Optional[str]] = mapped_column(
        "program__c", String(18), ForeignKey(f"{MIRROR_SCHEMA}.program__c.sfid")
    )
    contact_id: Mapped[Optional[str]] = mapped_column(
        "contact__c", String(18), ForeignKey(f"{MIRROR_SCHEMA}.contact.sfid")
    )
    cohort_id: Mapped[Optional[str]] = mapped_column(
        "cohort__c", String(18), ForeignKey(f"{MIRROR_SCHEMA}.cohort__c.sfid")
    )
    cohort_schedule_id: Mapped[Optional[str]] = mapped_column(
        "cohort_schedule__c", String(18), ForeignKey(f"{MIRROR_SCHEMA}.cohortschedule__c.sfid")
    )
    record_type_id: Mapped[Optional[str]] = mapped_column(
        "recordtypeid", String(18), ForeignKey(f"{MIRROR_SCHEMA}.recordtype.sfid")
    )
    status: Mapped[Optional[str]] = mapped_column("status__c", String(255))
    created_date: Mapped[Optional[datetime]] = mapped_column("createddate", DateTime)
    is_deleted: Mapped[Optional[bool]] = mapped_column("isdeleted", Boolean)


# =============================================================================
# Local tables
# =============================================================================


class Course(Base, TimestampMixin):
    """Local course linked to an LMS course and, once launched, a program."""

    __tablename__ = "courses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    canvas_course_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    program_id: Mapped[Optional[str]] = mapped_column(String(18), index=True)
