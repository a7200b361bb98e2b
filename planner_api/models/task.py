from datetime import datetime
from planner_api.extensions import db

TASK_DONE = "done"

class ProjectTask(db.Model):
    __tablename__ = "project_tasks"

    id           = db.Column(db.Integer, primary_key=True)
    title        = db.Column(db.String(200), nullable=False)
    project_code = db.Column(db.String(32), nullable=True)
    task_type    = db.Column(db.String(100), nullable=True)
    priority     = db.Column(db.String(20), nullable=False, default="medium")       # low|medium|high|critical
    status       = db.Column(db.String(20), nullable=False, default="not_started")  # not_started|in_progress|done
    due_date     = db.Column(db.Date, nullable=True)
    is_active    = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime, nullable=False, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, onupdate=datetime.utcnow)
