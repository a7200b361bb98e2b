from datetime import datetime
from planner_api.extensions import db

SLOT_MORNING = "morning"
SLOT_AFTERNOON = "afternoon"
SLOTS = (SLOT_MORNING, SLOT_AFTERNOON)

class Assignment(db.Model):
    __tablename__ = "assignments"

    id          = db.Column(db.Integer, primary_key=True)
    task_id     = db.Column(db.Integer, db.ForeignKey("project_tasks.id", ondelete="RESTRICT"), nullable=False, index=True)
    employee_id = db.Column(db.Integer, db.ForeignKey("employees.id", ondelete="CASCADE"), nullable=False)

    assigned_date = db.Column(db.Date, nullable=False)
    slot          = db.Column(db.String(10), nullable=False)   # morning|afternoon
    notes         = db.Column(db.String(500), nullable=True)

    # display order inside the slot (0 = leftmost); not a time offset
    slot_order = db.Column(db.Integer, nullable=False, default=0)

    is_active  = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.Index("ix_assign_emp_date_slot", "employee_id", "assigned_date", "slot"),
        db.Index("ix_assign_date", "assigned_date"),
    )

    task = db.relationship("ProjectTask", lazy="joined")
    employee = db.relationship("Employee")

    @property
    def slot_key(self):
        return (self.employee_id, self.assigned_date, self.slot)


class SlotLock(db.Model):
    """
    One row per (employee, date, slot) touched by a writer.

    Writers bump `version` before counting occupancy, which takes a row lock
    (Postgres) or the database write lock (SQLite) for the rest of the
    transaction. Concurrent writers on the same slot therefore serialize.
    """
    __tablename__ = "slot_locks"

    employee_id   = db.Column(db.Integer, primary_key=True)
    assigned_date = db.Column(db.Date, primary_key=True)
    slot          = db.Column(db.String(10), primary_key=True)
    version       = db.Column(db.Integer, nullable=False, default=0)
