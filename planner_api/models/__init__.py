# planner_api/models/__init__.py
from importlib import import_module

# order matters only for readability; relationships resolve by name
MODEL_MODULES = ("user", "employee", "task", "assignment", "absence")


def load_all():
    """Import every model module so all tables are registered on db.metadata."""
    return [import_module(f"{__name__}.{name}") for name in MODEL_MODULES]
