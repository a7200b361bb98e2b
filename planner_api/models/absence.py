from datetime import datetime
from planner_api.extensions import db

STATUS_PENDING = "pending"
STATUS_APPROVED = "approved"
STATUS_REJECTED = "rejected"

TYPE_ANNUAL_LEAVE = "annual_leave"
TYPE_SICK_DAY = "sick_day"
TYPE_OTHER_LEAVE = "other_leave"
TYPE_BANK_HOLIDAY = "bank_holiday"
ABSENCE_TYPES = (TYPE_ANNUAL_LEAVE, TYPE_SICK_DAY, TYPE_OTHER_LEAVE, TYPE_BANK_HOLIDAY)

# allowance used when an employee has no allocation row for the year
DEFAULT_ANNUAL_LEAVE_DAYS = 25

class AbsenceRecord(db.Model):
    __tablename__ = "absence_records"

    id           = db.Column(db.Integer, primary_key=True)
    employee_id  = db.Column(db.Integer, db.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False)
    absence_type = db.Column(db.String(20), nullable=False, default=TYPE_ANNUAL_LEAVE)
    start_date   = db.Column(db.Date, nullable=False)
    end_date     = db.Column(db.Date, nullable=False)
    slot         = db.Column(db.String(10), nullable=True)   # null = full day; set only for single-day half-day records
    status       = db.Column(db.String(20), nullable=False, default=STATUS_PENDING)  # pending|approved|rejected
    notes        = db.Column(db.String(500))

    approved_by_user_id = db.Column(db.Integer, db.ForeignKey("users.id"))
    approved_at         = db.Column(db.DateTime)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, onupdate=datetime.utcnow)

    __table_args__ = (
        db.Index("ix_absence_emp_range", "employee_id", "start_date", "end_date"),
    )

    employee = db.relationship("Employee")

    @property
    def is_half_day(self) -> bool:
        return self.slot is not None

    def covers(self, d, slot) -> bool:
        if not (self.start_date <= d <= self.end_date):
            return False
        return self.slot is None or self.slot == slot


class AbsenceAllocation(db.Model):
    __tablename__ = "absence_allocations"

    id          = db.Column(db.Integer, primary_key=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False, index=True)
    year        = db.Column(db.Integer, nullable=False)

    annual_leave_days        = db.Column(db.Numeric(5, 2), nullable=False, default=DEFAULT_ANNUAL_LEAVE_DAYS)
    sick_days_allowed        = db.Column(db.Numeric(5, 2), nullable=False, default=0)
    other_leave_days_allowed = db.Column(db.Numeric(5, 2), nullable=False, default=0)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, onupdate=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint("employee_id", "year", name="uq_absence_alloc_emp_year"),
    )
