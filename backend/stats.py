"""Dashboard statistics computed over one user's tasks."""
from datetime import datetime, timedelta
from typing import Optional

from pymongo.database import Database

from backend.database import TASK_COLLECTION, to_storage_datetime
from schemas import TaskPriority, TaskStatus

_STATUS_KEYS = {
    TaskStatus.PENDING.value: "pending",
    TaskStatus.IN_PROGRESS.value: "inProgress",
    TaskStatus.COMPLETED.value: "completed",
}
_PRIORITY_KEYS = {
    TaskPriority.LOW.value: "lowPriority",
    TaskPriority.MEDIUM.value: "mediumPriority",
    TaskPriority.HIGH.value: "highPriority",
}


def start_of_day(now: datetime) -> datetime:
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def _grouped_counts(db: Database, user_id: str, field: str) -> dict:
    pipeline = [
        {"$match": {"user_id": user_id}},
        {"$group": {"_id": f"${field}", "count": {"$sum": 1}}},
    ]
    return {row["_id"]: row["count"] for row in db[TASK_COLLECTION].aggregate(pipeline)}


def task_stats(db: Database, user_id: str, now: Optional[datetime] = None) -> dict:
    """
    Count a user's tasks by status, by priority and by due-date bucket.

    ``now`` fixes what "today" means; its timezone decides where the day
    starts. Every key is present and zero when the user has no tasks.
    """
    now = now or datetime.now().astimezone()
    today = start_of_day(now)
    tomorrow = today + timedelta(days=1)
    today_utc = to_storage_datetime(today)
    tomorrow_utc = to_storage_datetime(tomorrow)

    collection = db[TASK_COLLECTION]
    stats = {"total": collection.count_documents({"user_id": user_id})}

    by_status = _grouped_counts(db, user_id, "status")
    for value, key in _STATUS_KEYS.items():
        stats[key] = by_status.get(value, 0)

    by_priority = _grouped_counts(db, user_id, "priority")
    for value, key in _PRIORITY_KEYS.items():
        stats[key] = by_priority.get(value, 0)

    stats["dueToday"] = collection.count_documents(
        {"user_id": user_id, "due_date": {"$gte": today_utc, "$lt": tomorrow_utc}}
    )
    stats["overdue"] = collection.count_documents(
        {
            "user_id": user_id,
            "due_date": {"$ne": None, "$lt": today_utc},
            "status": {"$ne": TaskStatus.COMPLETED.value},
        }
    )
    return stats
