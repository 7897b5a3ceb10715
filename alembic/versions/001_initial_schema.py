"""Initial schema for Perfcycle.

Creates the review tables: employees, review_cycles, review_forms,
calibration_records and one_on_ones, plus the enum types their state
columns use.

Revision ID: 001
Revises: None
Create Date: 2026-10-19
"""

from __future__ import annotations

from typing import Sequence, Union

import sqlalchemy as sa
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

ENUMS = {
    "employeerole": ("employee", "hr", "senior_leader"),
    "cyclekind": ("quarterly", "mid_year", "annual", "probation", "custom"),
    "cyclephase": (
        "draft",
        "active",
        "self_review_open",
        "manager_review_open",
        "peer_review_open",
        "calibration",
        "published",
        "closed",
    ),
    "ratingscale": ("five_point", "four_point", "three_point", "percentage"),
    "formkind": ("self", "manager", "peer", "upward"),
    "formstatus": ("not_started", "draft", "submitted", "calibrated", "published"),
    "potentialtier": ("low", "medium", "high", "exceptional"),
    "oneononestatus": ("draft", "scheduled", "completed", "cancelled"),
}


def _enum(name: str) -> sa.Enum:
    return sa.Enum(*ENUMS[name], name=name, create_type=False)


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now()),
    ]


def _flag(name: str) -> sa.Column:
    return sa.Column(name, sa.Boolean(), nullable=False, server_default=sa.false())


def upgrade() -> None:
    bind = op.get_bind()
    for name, values in ENUMS.items():
        sa.Enum(*values, name=name).create(bind, checkfirst=True)

    op.create_table(
        "employees",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("full_name", sa.Text(), nullable=False),
        sa.Column("email", sa.Text(), nullable=True),
        sa.Column("department", sa.Text(), nullable=True),
        sa.Column("manager_id", sa.Uuid(), sa.ForeignKey("employees.id"), nullable=True),
        sa.Column(
            "role",
            _enum("employeerole"),
            nullable=False,
            server_default="employee",
        ),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_timestamps(),
    )

    op.create_table(
        "review_cycles",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("kind", _enum("cyclekind"), nullable=False, server_default="annual"),
        sa.Column("period_start", sa.Date(), nullable=False),
        sa.Column("period_end", sa.Date(), nullable=False),
        sa.Column("self_review_start", sa.Date(), nullable=False),
        sa.Column("self_review_end", sa.Date(), nullable=False),
        sa.Column("manager_review_start", sa.Date(), nullable=False),
        sa.Column("manager_review_end", sa.Date(), nullable=False),
        sa.Column("peer_review_start", sa.Date(), nullable=True),
        sa.Column("peer_review_end", sa.Date(), nullable=True),
        sa.Column("calibration_date", sa.Date(), nullable=True),
        sa.Column("publish_date", sa.Date(), nullable=True),
        sa.Column("phase", _enum("cyclephase"), nullable=False, server_default="draft"),
        sa.Column(
            "rating_scale",
            _enum("ratingscale"),
            nullable=False,
            server_default="five_point",
        ),
        _flag("peer_reviews_enabled"),
        _flag("upward_reviews_enabled"),
        _flag("anonymous_peer_reviews"),
        sa.Column(
            "calibration_required",
            sa.Boolean(),
            nullable=False,
            server_default=sa.true(),
        ),
        _flag("linked_to_compensation"),
        sa.Column("config", sa.JSON(), nullable=False),
        sa.Column("excluded_departments", sa.JSON(), nullable=False),
        sa.Column("excluded_employee_ids", sa.JSON(), nullable=False),
        _flag("self_review_opened_notified"),
        _flag("manager_review_opened_notified"),
        _flag("peer_review_opened_notified"),
        _flag("calibration_notified"),
        sa.Column("team_ready_notified", sa.JSON(), nullable=False),
        sa.Column("activated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_review_cycles_phase", "review_cycles", ["phase"])

    op.create_table(
        "review_forms",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("cycle_id", sa.Uuid(), sa.ForeignKey("review_cycles.id"), nullable=False),
        sa.Column("subject_id", sa.Uuid(), sa.ForeignKey("employees.id"), nullable=False),
        sa.Column("author_id", sa.Uuid(), sa.ForeignKey("employees.id"), nullable=False),
        sa.Column("kind", _enum("formkind"), nullable=False),
        sa.Column(
            "status",
            _enum("formstatus"),
            nullable=False,
            server_default="not_started",
        ),
        sa.Column("answers", sa.JSON(), nullable=False),
        sa.Column("overall_rating", sa.Float(), nullable=True),
        sa.Column("overall_comments", sa.Text(), nullable=True),
        sa.Column("strengths", sa.Text(), nullable=True),
        sa.Column("areas_for_improvement", sa.Text(), nullable=True),
        sa.Column("development_goals", sa.Text(), nullable=True),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("published_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("archived_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reminders_sent", sa.Integer(), nullable=False, server_default=sa.text("0")),
        _flag("manager_notified"),
        _flag("hr_notified"),
        _flag("results_notified"),
        *_timestamps(),
        sa.UniqueConstraint("cycle_id", "subject_id", "author_id", "kind", name="uq_review_form"),
    )
    op.create_index("ix_review_forms_cycle_id", "review_forms", ["cycle_id"])
    op.create_index("ix_review_forms_subject_id", "review_forms", ["subject_id"])
    # Reminder and completed-notification sweeps filter on status
    op.create_index("ix_review_forms_status_kind", "review_forms", ["status", "kind"])

    op.create_table(
        "calibration_records",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("cycle_id", sa.Uuid(), sa.ForeignKey("review_cycles.id"), nullable=False),
        sa.Column("subject_id", sa.Uuid(), sa.ForeignKey("employees.id"), nullable=False),
        sa.Column("pre_calibration_rating", sa.Float(), nullable=True),
        sa.Column("final_rating", sa.Float(), nullable=True),
        sa.Column("potential", _enum("potentialtier"), nullable=True),
        sa.Column("justification", sa.Text(), nullable=True),
        sa.Column("approver_id", sa.Uuid(), sa.ForeignKey("employees.id"), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        _flag("is_finalized"),
        _flag("disputed"),
        sa.Column("dispute_reason", sa.Text(), nullable=True),
        sa.Column("dispute_resolution", sa.Text(), nullable=True),
        sa.Column("dispute_resolved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("change_log", sa.JSON(), nullable=False),
        sa.Column("version_id", sa.Integer(), nullable=False, server_default=sa.text("1")),
        *_timestamps(),
        sa.UniqueConstraint("cycle_id", "subject_id", name="uq_calibration_subject"),
    )
    op.create_index("ix_calibration_records_cycle_id", "calibration_records", ["cycle_id"])

    op.create_table(
        "one_on_ones",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("manager_id", sa.Uuid(), sa.ForeignKey("employees.id"), nullable=False),
        sa.Column("employee_id", sa.Uuid(), sa.ForeignKey("employees.id"), nullable=False),
        sa.Column("scheduled_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column(
            "status",
            _enum("oneononestatus"),
            nullable=False,
            server_default="scheduled",
        ),
        sa.Column("location", sa.Text(), nullable=True),
        _flag("reminder_sent"),
        *_timestamps(),
    )
    op.create_index("ix_one_on_ones_scheduled_at", "one_on_ones", ["scheduled_at"])


def downgrade() -> None:
    op.drop_index("ix_one_on_ones_scheduled_at", table_name="one_on_ones")
    op.drop_table("one_on_ones")
    op.drop_index("ix_calibration_records_cycle_id", table_name="calibration_records")
    op.drop_table("calibration_records")
    op.drop_index("ix_review_forms_status_kind", table_name="review_forms")
    op.drop_index("ix_review_forms_subject_id", table_name="review_forms")
    op.drop_index("ix_review_forms_cycle_id", table_name="review_forms")
    op.drop_table("review_forms")
    op.drop_index("ix_review_cycles_phase", table_name="review_cycles")
    op.drop_table("review_cycles")
    op.drop_table("employees")

    bind = op.get_bind()
    for name in reversed(list(ENUMS)):
        sa.Enum(name=name).drop(bind, checkfirst=True)
