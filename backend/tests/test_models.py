from app.db.base import Base
from app.db import models  # noqa: F401  ensure models are loaded


def test_metadata_contains_core_tables() -> None:
    table_names = set(Base.metadata.tables.keys())
    expected = {
        "users",
        "goals",
        "milestones",
        "tasks",
        "agent_actions_log",
    }

    assert expected.issubset(table_names)


def test_children_cascade_on_parent_delete() -> None:
    milestone_fk = next(iter(Base.metadata.tables["milestones"].c.goal_id.foreign_keys))
    task_fk = next(iter(Base.metadata.tables["tasks"].c.milestone_id.foreign_keys))

    assert milestone_fk.ondelete == "CASCADE"
    assert task_fk.ondelete == "CASCADE"
