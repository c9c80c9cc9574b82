"""payroll settlement engine: initial tables

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-16 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '0001_initial'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _stamps():
    return [
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(), nullable=True),
    ]


def upgrade() -> None:
    op.create_table(
        'employees',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('code', sa.String(32), nullable=False, unique=True),
        sa.Column('email', sa.String(255), nullable=False, unique=True),
        sa.Column('first_name', sa.String(80), nullable=False),
        sa.Column('last_name', sa.String(80)),
        sa.Column('department', sa.String(80)),
        sa.Column('position', sa.String(120)),
        sa.Column('basic_salary', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('doj', sa.Date()),
        sa.Column('status', sa.String(16), nullable=False, server_default='active'),
        *_stamps(),
    )
    op.create_index('ix_emp_department', 'employees', ['department'])

    op.create_table(
        'attendance_records',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('employee_id', sa.Integer(), sa.ForeignKey('employees.id', ondelete='CASCADE'), nullable=False),
        sa.Column('work_date', sa.Date(), nullable=False),
        sa.Column('time_in', sa.DateTime()),
        sa.Column('time_out', sa.DateTime()),
        sa.Column('hours_worked', sa.Float()),
        sa.Column('late_minutes', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('status', sa.String(16), nullable=False, server_default='PRESENT'),
        sa.Column('cross_boundary', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('source', sa.String(16), nullable=False, server_default='clock'),
        *_stamps(),
        sa.UniqueConstraint('employee_id', 'work_date', name='uq_attendance_employee_day'),
        sa.CheckConstraint("status in ('PRESENT','LATE','ABSENT','INCOMPLETE')", name='ck_attendance_status'),
    )
    op.create_index('ix_attendance_records_employee_id', 'attendance_records', ['employee_id'])
    op.create_index('ix_attendance_day', 'attendance_records', ['work_date'])

    op.create_table(
        'overtime_requests',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('employee_id', sa.Integer(), sa.ForeignKey('employees.id', ondelete='CASCADE'), nullable=False),
        sa.Column('work_date', sa.Date(), nullable=False),
        sa.Column('start_time', sa.DateTime(), nullable=False),
        sa.Column('end_time', sa.DateTime()),
        sa.Column('total_hours', sa.Numeric(6, 2)),
        sa.Column('overtime_rate', sa.Numeric(4, 2), nullable=False, server_default='1.25'),
        sa.Column('day_type', sa.String(16), nullable=False, server_default='weekday'),
        sa.Column('overtime_pay', sa.Numeric(14, 2)),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('project_task', sa.String(255)),
        sa.Column('status', sa.String(20), nullable=False, server_default='PENDING'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('reviewed_by', sa.Integer()),
        sa.Column('reviewed_at', sa.DateTime()),
        sa.Column('review_notes', sa.Text()),
        sa.Column('needs_review', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('review_flag_reason', sa.String(255)),
        sa.Column('completed_by', sa.Integer()),
        sa.Column('completed_at', sa.DateTime()),
        sa.Column('completion_source', sa.String(16)),
        *_stamps(),
        sa.CheckConstraint("status in ('PENDING','APPROVED','REJECTED','CANCELLED')", name='ck_overtime_status'),
    )
    op.create_index('ix_overtime_requests_employee_id', 'overtime_requests', ['employee_id'])
    op.create_index('ix_overtime_employee_day', 'overtime_requests', ['employee_id', 'work_date'])
    op.create_index(
        'uq_overtime_active_day', 'overtime_requests', ['employee_id', 'work_date'],
        unique=True,
        postgresql_where=sa.text('is_active'),
        sqlite_where=sa.text('is_active = 1'),
    )

    op.create_table(
        'leave_requests',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('employee_id', sa.Integer(), sa.ForeignKey('employees.id', ondelete='CASCADE'), nullable=False),
        sa.Column('leave_type', sa.String(20), nullable=False),
        sa.Column('start_date', sa.Date(), nullable=False),
        sa.Column('end_date', sa.Date()),
        sa.Column('total_days', sa.Numeric(6, 2)),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('attachment_url', sa.String(512)),
        sa.Column('status', sa.String(20), nullable=False, server_default='PENDING'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('reviewed_by', sa.Integer()),
        sa.Column('reviewed_at', sa.DateTime()),
        sa.Column('review_notes', sa.Text()),
        sa.Column('needs_review', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('review_flag_reason', sa.String(255)),
        sa.Column('settled_by', sa.Integer()),
        sa.Column('settled_at', sa.DateTime()),
        sa.Column('settlement_source', sa.String(16)),
        *_stamps(),
        sa.CheckConstraint("status in ('PENDING','APPROVED','REJECTED','CANCELLED')", name='ck_leave_status'),
    )
    op.create_index('ix_leave_requests_employee_id', 'leave_requests', ['employee_id'])
    op.create_index(
        'uq_leave_active_employee', 'leave_requests', ['employee_id'],
        unique=True,
        postgresql_where=sa.text('is_active'),
        sqlite_where=sa.text('is_active = 1'),
    )

    op.create_table(
        'leave_credits',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('employee_id', sa.Integer(), sa.ForeignKey('employees.id', ondelete='CASCADE'), nullable=False),
        sa.Column('leave_type', sa.String(20), nullable=False),
        sa.Column('credits', sa.Numeric(6, 2), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('adjusted_by', sa.Integer()),
        sa.Column('adjusted_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('employee_id', 'leave_type', name='uq_leave_credit_employee_type'),
    )
    op.create_index('ix_leave_credits_employee_id', 'leave_credits', ['employee_id'])

    op.create_table(
        'cash_advance_requests',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('employee_id', sa.Integer(), sa.ForeignKey('employees.id', ondelete='CASCADE'), nullable=False),
        sa.Column('amount', sa.Numeric(14, 2), nullable=False),
        sa.Column('reason', sa.Text(), nullable=False),
        sa.Column('repayment_plan', sa.String(120), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='PENDING'),
        sa.Column('manager_approval', sa.String(20), nullable=False, server_default='PENDING'),
        sa.Column('admin_approval', sa.String(20), nullable=False, server_default='PENDING'),
        sa.Column('manager_id', sa.Integer()),
        sa.Column('manager_at', sa.DateTime()),
        sa.Column('manager_notes', sa.Text()),
        sa.Column('admin_id', sa.Integer()),
        sa.Column('admin_at', sa.DateTime()),
        sa.Column('admin_notes', sa.Text()),
        sa.Column('is_disbursed', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('disbursed_at', sa.DateTime()),
        sa.Column('disbursed_by', sa.Integer()),
        sa.Column('remaining_balance', sa.Numeric(14, 2), nullable=False, server_default='0'),
        sa.Column('is_fully_repaid', sa.Boolean(), nullable=False, server_default=sa.false()),
        *_stamps(),
    )
    op.create_index('ix_cash_advance_requests_employee_id', 'cash_advance_requests', ['employee_id'])
    op.create_index('ix_cash_advance_disbursed', 'cash_advance_requests', ['employee_id', 'is_disbursed', 'disbursed_at'])

    op.create_table(
        'payroll_batches',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('period_start', sa.Date(), nullable=False),
        sa.Column('period_end', sa.Date(), nullable=False),
        sa.Column('status', sa.String(16), nullable=False, server_default='FINALIZED'),
        sa.Column('payout_date', sa.Date(), nullable=False),
        sa.Column('employee_count', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('totals', sa.JSON()),
        sa.Column('finalized_by', sa.Integer()),
        sa.Column('finalized_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
    )

    money = lambda name: sa.Column(name, sa.Numeric(14, 2), nullable=False, server_default='0')
    op.create_table(
        'payroll_lines',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('batch_id', sa.Integer(), sa.ForeignKey('payroll_batches.id'), nullable=False),
        sa.Column('employee_id', sa.Integer(), sa.ForeignKey('employees.id'), nullable=False),
        sa.Column('period_start', sa.Date(), nullable=False),
        sa.Column('period_end', sa.Date(), nullable=False),
        sa.Column('period_half', sa.String(8), nullable=False),
        money('basic_pay'),
        money('overtime_pay'),
        money('gross_pay'),
        money('social_insurance'),
        money('health_insurance'),
        money('housing_fund'),
        money('tax'),
        money('late_deduction'),
        money('total_deductions'),
        money('net_pay'),
        money('cash_advance'),
        money('take_home'),
        money('absence_deduction'),
        money('er_social_insurance'),
        money('er_social_insurance_ec'),
        money('er_health_insurance'),
        money('er_housing_fund'),
        money('er_total'),
        sa.Column('status', sa.String(16), nullable=False, server_default='FINALIZED'),
        sa.Column('payout_date', sa.Date()),
        sa.Column('calc_meta', sa.JSON()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.UniqueConstraint('employee_id', 'period_start', 'period_end', name='uq_payroll_line_period'),
    )
    op.create_index('ix_payroll_lines_batch_id', 'payroll_lines', ['batch_id'])
    op.create_index('ix_payroll_lines_employee_id', 'payroll_lines', ['employee_id'])
    op.create_index('ix_payroll_line_period', 'payroll_lines', ['period_start', 'period_end'])

    op.create_table(
        'settlement_events',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('kind', sa.String(20), nullable=False),
        sa.Column('employee_id', sa.Integer(), sa.ForeignKey('employees.id', ondelete='CASCADE'), nullable=False),
        sa.Column('attendance_id', sa.Integer(), sa.ForeignKey('attendance_records.id', ondelete='CASCADE'), nullable=False),
        sa.Column('work_date', sa.Date(), nullable=False),
        sa.Column('occurred_at', sa.DateTime(), nullable=False),
        sa.Column('status', sa.String(16), nullable=False, server_default='pending'),
        sa.Column('attempts', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_error', sa.Text()),
        sa.Column('outcome', sa.JSON()),
        sa.Column('created_at', sa.DateTime(), nullable=False, server_default=sa.func.now()),
        sa.Column('processed_at', sa.DateTime()),
        sa.CheckConstraint("kind in ('day_closed','day_opened')", name='ck_settlement_event_kind'),
    )
    op.create_index('ix_settlement_events_employee_id', 'settlement_events', ['employee_id'])
    op.create_index('ix_settlement_event_status', 'settlement_events', ['status', 'created_at'])

    op.create_table(
        'system_settings',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('category', sa.String(40), nullable=False, unique=True),
        sa.Column('value_json', sa.JSON(), nullable=False),
        sa.Column('updated_by', sa.Integer()),
        sa.Column('updated_at', sa.DateTime()),
    )


def downgrade() -> None:
    op.drop_table('system_settings')
    op.drop_table('settlement_events')
    op.drop_table('payroll_lines')
    op.drop_table('payroll_batches')
    op.drop_table('cash_advance_requests')
    op.drop_table('leave_credits')
    op.drop_table('leave_requests')
    op.drop_table('overtime_requests')
    op.drop_table('attendance_records')
    op.drop_table('employees')
