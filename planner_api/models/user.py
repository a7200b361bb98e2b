from datetime import datetime
from planner_api.extensions import db

ROLE_TEAM_MEMBER = "team_member"
ROLE_MANAGER = "manager"
ROLE_ADMIN = "admin"
ROLES = (ROLE_TEAM_MEMBER, ROLE_MANAGER, ROLE_ADMIN)

class User(db.Model):
    __tablename__ = "users"

    id         = db.Column(db.Integer, primary_key=True)
    email      = db.Column(db.String(255), unique=True, index=True, nullable=False)
    full_name  = db.Column(db.String(255), nullable=False)
    role       = db.Column(db.String(20), nullable=False, default=ROLE_TEAM_MEMBER)  # team_member/manager/admin
    status     = db.Column(db.String(20), default="active")
    created_at = db.Column(db.DateTime, default=datetime.utcnow)

    managed_teams = db.relationship(
        "TeamManager",
        back_populates="user",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def managed_team_ids(self):
        return sorted(m.team_id for m in self.managed_teams)

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r} role={self.role!r}>"


class TeamManager(db.Model):
    """Many-to-many: a manager user may manage several teams and vice versa."""
    __tablename__ = "team_managers"

    user_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), primary_key=True)
    team_id = db.Column(db.Integer, db.ForeignKey("teams.id", ondelete="CASCADE"), primary_key=True)
    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)

    user = db.relationship("User", back_populates="managed_teams")
    team = db.relationship("Team")
