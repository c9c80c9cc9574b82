# hrpay_api/services/payroll_batch.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, date
from decimal import Decimal
from typing import List, Dict, Any, Optional, Iterable, Union
import logging

from sqlalchemy.exc import IntegrityError

from hrpay_api.extensions import db
from hrpay_api.common.errors import (
    APIError,
    ValidationError,
    NotFoundError,
    DuplicatePeriod,
    BatchValidationError,
)
from hrpay_api.models.employee import Employee
from hrpay_api.models.payroll import PayrollBatch, PayrollLine, FINALIZED
from hrpay_api.services.settings_store import PayrollSettings, load_settings
from hrpay_api.services.payroll_calc import PayrollBreakdown, PeriodInputs, compute_payroll_line
from hrpay_api.services.attendance_ledger import attendance_summary
from hrpay_api.services import cash_advance_service
from hrpay_api.services import statutory

log = logging.getLogger(__name__)


@dataclass
class DraftRegister:
    """In-memory projection. Nothing is written until finalize()."""
    period_start: date
    period_end: date
    lines: List[PayrollBreakdown] = field(default_factory=list)
    failures: List[Dict[str, Any]] = field(default_factory=list)
    generated_at: datetime = field(default_factory=datetime.utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "period_start": self.period_start.isoformat(),
            "period_end": self.period_end.isoformat(),
            "status": "DRAFT",
            "generated_at": self.generated_at.isoformat(),
            "lines": [ln.to_dict() for ln in self.lines],
            "failures": self.failures,
            "totals": register_totals(self.lines),
        }


def _figures(line) -> Dict[str, Decimal]:
    # works for both PayrollBreakdown and a persisted PayrollLine
    if isinstance(line, PayrollBreakdown):
        return {
            "gross_pay": line.gross_pay,
            "total_deductions": line.deductions.total,
            "net_pay": line.net_pay,
            "take_home": line.take_home,
            "employer_total": line.employer.total,
        }
    return {
        "gross_pay": Decimal(str(line.gross_pay)),
        "total_deductions": Decimal(str(line.total_deductions)),
        "net_pay": Decimal(str(line.net_pay)),
        "take_home": Decimal(str(line.take_home)),
        "employer_total": Decimal(str(line.er_total)),
    }


def register_totals(lines: Iterable) -> Dict[str, Any]:
    acc = {"gross_pay": Decimal("0"), "total_deductions": Decimal("0"),
           "net_pay": Decimal("0"), "take_home": Decimal("0"), "employer_total": Decimal("0")}
    n = 0
    for ln in lines:
        n += 1
        for k, v in _figures(ln).items():
            acc[k] += v
    out = {k: float(v) for k, v in acc.items()}
    out["employee_count"] = n
    return out


def _check_period(start: date, end: date):
    if start is None or end is None:
        raise ValidationError("period_start and period_end are required")
    if end < start:
        raise ValidationError("period_end precedes period_start",
                              payload={"period": [start.isoformat(), end.isoformat()]})


def _failure(employee_id, code, message, detail=None) -> Dict[str, Any]:
    out = {"employee_id": employee_id, "code": code, "message": message}
    if detail:
        out["detail"] = detail
    return out


def _allocate(advances, recovered: Decimal) -> List[List[Any]]:
    """Spread the recovered amount over the advances, oldest first: [[id, amount], ...]."""
    out = []
    left = recovered
    for a in advances:
        take = min(Decimal(str(a.remaining_balance)), left)
        if take > 0:
            out.append([a.id, float(take)])
        left -= take
    return out


# ---------- draft ----------

def run_draft(period_start: date, period_end: date, employee_ids: Optional[List[int]] = None,
              settings: Optional[PayrollSettings] = None) -> DraftRegister:
    _check_period(period_start, period_end)
    settings = settings or load_settings()
    draft = DraftRegister(period_start=period_start, period_end=period_end)

    if employee_ids is None:
        employees = Employee.query.filter_by(status="active").order_by(Employee.id.asc()).all()
    else:
        employees = []
        for eid in employee_ids:
            emp = db.session.get(Employee, eid)
            if emp is None:
                draft.failures.append(_failure(eid, NotFoundError.code, "Employee not found"))
            else:
                employees.append(emp)

    for emp in employees:
        try:
            summary = attendance_summary(emp.id, period_start, period_end, settings)
            advances = cash_advance_service.eligible_advances(emp.id, period_start, period_end)
            inputs = PeriodInputs(
                days_absent=summary.days_absent,
                total_overtime_hours=summary.total_overtime_hours,
                overtime_pay=summary.overtime_pay,
                total_late_minutes=summary.total_late_minutes,
                cash_advance=float(sum(Decimal(str(a.remaining_balance)) for a in advances)),
            )
            line = compute_payroll_line(emp.id, emp.basic_salary, period_start, period_end, inputs, settings)
        except APIError as e:
            draft.failures.append(_failure(emp.id, e.code, e.message, e.payload))
            continue
        line.meta["attendance"] = summary.to_dict()
        line.meta["cash_advance_recovered"] = _allocate(advances, line.cash_advance)
        draft.lines.append(line)

    log.info(
        "payroll draft %s..%s: %s lines, %s failures",
        period_start, period_end, len(draft.lines), len(draft.failures),
    )
    return draft


# ---------- finalize ----------

def _to_row(line: PayrollBreakdown, batch: PayrollBatch, payout: date, snapshot: Dict[str, Any]) -> PayrollLine:
    d, e = line.deductions, line.employer
    return PayrollLine(
        batch=batch,
        employee_id=line.employee_id,
        period_start=line.period_start,
        period_end=line.period_end,
        period_half=line.period_half,
        basic_pay=line.basic_pay,
        overtime_pay=line.overtime_pay,
        gross_pay=line.gross_pay,
        social_insurance=d.social_insurance,
        health_insurance=d.health_insurance,
        housing_fund=d.housing_fund,
        tax=d.tax,
        late_deduction=d.late,
        total_deductions=d.total,
        net_pay=line.net_pay,
        cash_advance=line.cash_advance,
        take_home=line.take_home,
        absence_deduction=line.absence_deduction,
        er_social_insurance=e.social_insurance,
        er_social_insurance_ec=e.social_insurance_ec,
        er_health_insurance=e.health_insurance,
        er_housing_fund=e.housing_fund,
        er_total=e.total,
        status=FINALIZED,
        payout_date=payout,
        calc_meta={**line.meta, "settings": snapshot},
    )


def finalize(draft: Union[DraftRegister, List[PayrollBreakdown]], finalized_by: Optional[int] = None,
             payout_date: Optional[date] = None, settings: Optional[PayrollSettings] = None) -> PayrollBatch:
    """
    Persist every line as FINALIZED in one transaction, or nothing at all.
    Any (employee, period) already finalized fails the whole batch with
    DuplicatePeriod; any other bad line fails it with BatchValidationError.
    """
    if isinstance(draft, DraftRegister):
        if draft.failures:
            raise BatchValidationError("Draft has failed employees; nothing was finalized", draft.failures)
        lines = list(draft.lines)
    else:
        lines = list(draft or [])
    if not lines:
        raise ValidationError("Nothing to finalize: the draft has no lines")

    periods = {(ln.period_start, ln.period_end) for ln in lines}
    if len(periods) != 1:
        raise ValidationError(
            "All lines in a batch must share one period",
            payload={"periods": sorted([s.isoformat(), e.isoformat()] for s, e in periods)},
        )
    (start, end), = periods
    period = {"period_start": start.isoformat(), "period_end": end.isoformat()}

    failures: List[Dict[str, Any]] = []
    seen = set()
    for ln in lines:
        if ln.employee_id in seen:
            failures.append(_failure(ln.employee_id, "DUPLICATE_LINE", "Employee appears twice in the batch", period))
        seen.add(ln.employee_id)
        if ln.net_pay != ln.gross_pay - ln.deductions.total:
            failures.append(_failure(ln.employee_id, "NET_MISMATCH", "net_pay != gross_pay - deductions.total",
                                     {"gross_pay": float(ln.gross_pay), "total": float(ln.deductions.total),
                                      "net_pay": float(ln.net_pay)}))

    already = (
        PayrollLine.query
        .filter(
            PayrollLine.period_start == start,
            PayrollLine.period_end == end,
            PayrollLine.employee_id.in_(list(seen)),
            PayrollLine.status == FINALIZED,
        )
        .all()
    )
    dup = [_failure(r.employee_id, DuplicatePeriod.code, "Period already finalized",
                    {**period, "line_id": r.id, "batch_id": r.batch_id}) for r in already]

    if dup:
        raise DuplicatePeriod("Period already finalized for some employees", payload={**period, "failures": dup + failures})
    if failures:
        raise BatchValidationError("Batch failed validation; nothing was finalized", failures)

    settings = settings or load_settings()
    snapshot = settings.snapshot()
    payout = payout_date or end
    batch = PayrollBatch(
        period_start=start,
        period_end=end,
        status=FINALIZED,
        payout_date=payout,
        employee_count=len(lines),
        totals=register_totals(lines),
        finalized_by=finalized_by,
        finalized_at=datetime.utcnow(),
    )
    db.session.add(batch)
    for ln in lines:
        db.session.add(_to_row(ln, batch, payout, snapshot))

    recovered = [pair for ln in lines for pair in ln.meta.get("cash_advance_recovered", [])]
    cash_advance_service.apply_repayments(recovered)

    try:
        db.session.commit()
    except IntegrityError:
        # a concurrent finalize took uq_payroll_line_period first
        db.session.rollback()
        raise DuplicatePeriod("Period already finalized for some employees", payload=period)

    log.info("payroll finalized batch=%s period=%s..%s lines=%s by=%s", batch.id, start, end, len(lines), finalized_by)
    return batch


# ---------- queries ----------

def get_batch(batch_id: int) -> PayrollBatch:
    b = db.session.get(PayrollBatch, batch_id)
    if not b:
        raise NotFoundError("Payroll batch not found", payload={"batch_id": batch_id})
    return b


def list_batches(period_start: Optional[date] = None, period_end: Optional[date] = None) -> List[PayrollBatch]:
    q = PayrollBatch.query
    if period_start:
        q = q.filter(PayrollBatch.period_start >= period_start)
    if period_end:
        q = q.filter(PayrollBatch.period_end <= period_end)
    return q.order_by(PayrollBatch.period_start.desc(), PayrollBatch.id.desc()).all()


def list_lines(period_start: Optional[date] = None, period_end: Optional[date] = None,
               employee_id: Optional[int] = None) -> List[PayrollLine]:
    q = PayrollLine.query.filter(PayrollLine.status == FINALIZED)
    if period_start:
        q = q.filter(PayrollLine.period_start >= period_start)
    if period_end:
        q = q.filter(PayrollLine.period_end <= period_end)
    if employee_id:
        q = q.filter(PayrollLine.employee_id == employee_id)
    return q.order_by(PayrollLine.period_start.desc(), PayrollLine.employee_id.asc()).all()


def thirteenth_month_for(employee_id: int, year: int) -> Dict[str, Any]:
    """Basic salary x months employed in the year / 12."""
    emp = db.session.get(Employee, employee_id)
    if not emp:
        raise NotFoundError("Employee not found", payload={"employee_id": employee_id})
    months = 12
    if emp.doj and emp.doj.year == year:
        months = 12 - emp.doj.month + 1
    elif emp.doj and emp.doj.year > year:
        months = 0
    amount = statutory.thirteenth_month(emp.basic_salary, months)
    return {"employee_id": employee_id, "year": year, "months_worked": months, "amount": round(amount, 2)}
