from datetime import datetime
from planner_api.extensions import db

class Team(db.Model):
    __tablename__ = "teams"

    id          = db.Column(db.Integer, primary_key=True)
    name        = db.Column(db.String(100), nullable=False)
    code        = db.Column(db.String(10), nullable=True)   # e.g. "TEAM01"
    description = db.Column(db.String(500), nullable=True)
    is_active   = db.Column(db.Boolean, nullable=False, default=True)
    created_at  = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)


class Employee(db.Model):
    __tablename__ = "employees"

    id      = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, unique=True)
    team_id = db.Column(db.Integer, db.ForeignKey("teams.id", ondelete="RESTRICT"), nullable=True)

    code       = db.Column(db.String(20), nullable=False, unique=True)   # e.g. "EMP001"
    first_name = db.Column(db.String(80), nullable=False)
    last_name  = db.Column(db.String(80), nullable=True)
    position   = db.Column(db.String(100), nullable=True)
    is_active  = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, onupdate=datetime.utcnow)

    __table_args__ = (
        db.Index("ix_emp_team_id", "team_id"),
    )

    user = db.relationship("User", lazy="joined")
    team = db.relationship("Team", lazy="joined")

    @property
    def full_name(self) -> str:
        name = f"{(self.first_name or '').strip()} {(self.last_name or '').strip()}".strip()
        return name or f"Employee {self.id}"

    @property
    def role(self):
        from planner_api.models.user import ROLE_TEAM_MEMBER
        return self.user.role if self.user else ROLE_TEAM_MEMBER
