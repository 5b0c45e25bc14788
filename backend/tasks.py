"""
Task repository and query engine.

Every operation takes the caller's user id and is scoped to it. Reads,
updates and deletes of a single task go through ``load_and_authorize`` so
the not-found / not-yours distinction is decided in exactly one place.
"""
import logging
import math
import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional, Tuple

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo.database import Database

from backend.database import (
    TASK_COLLECTION,
    create_document,
    from_storage_datetime,
    parse_object_id,
    to_storage_datetime,
    utcnow,
)
from backend.errors import ForbiddenError, NotFoundError, ValidationError
from schemas import Task, TaskPriority, TaskStatus

logger = logging.getLogger(__name__)

# Public sort names mapped to stored field names
SORTABLE_FIELDS = {
    "title": "title",
    "status": "status",
    "priority": "priority",
    "dueDate": "due_date",
    "createdAt": "created_at",
    "updatedAt": "updated_at",
}
DEFAULT_SORT = [("created_at", DESCENDING)]
MAX_PAGE_SIZE = 100

MUTABLE_FIELDS = ("title", "description", "status", "priority", "due_date", "tags")

_STATUS_VALUES = {s.value for s in TaskStatus}
_PRIORITY_VALUES = {p.value for p in TaskPriority}


def serialize_task(doc: dict) -> dict:
    return {
        "id": str(doc["_id"]),
        "owner": doc.get("user_id"),
        "title": doc.get("title"),
        "description": doc.get("description", ""),
        "status": doc.get("status", TaskStatus.PENDING.value),
        "priority": doc.get("priority", TaskPriority.MEDIUM.value),
        "dueDate": from_storage_datetime(doc.get("due_date")),
        "tags": doc.get("tags", []),
        "createdAt": from_storage_datetime(doc.get("created_at")),
        "updatedAt": from_storage_datetime(doc.get("updated_at")),
    }


class TaskQuery(BaseModel):
    """Listing parameters. Unknown enum or sort values are ignored, not rejected."""

    search: Optional[str] = None
    status: Optional[str] = None
    priority: Optional[str] = None
    sort: Optional[str] = None
    page: int = Field(default=1, ge=1)
    limit: int = Field(default=10, ge=1, le=MAX_PAGE_SIZE)

    def filter_for(self, user_id: str) -> dict:
        query = {"user_id": user_id}
        if self.search:
            pattern = re.escape(self.search.strip())
            query["$or"] = [
                {"title": {"$regex": pattern, "$options": "i"}},
                {"description": {"$regex": pattern, "$options": "i"}},
            ]
        if self.status in _STATUS_VALUES:
            query["status"] = self.status
        if self.priority in _PRIORITY_VALUES:
            query["priority"] = self.priority
        return query

    def sort_spec(self) -> List[Tuple[str, int]]:
        spec = DEFAULT_SORT
        if self.sort:
            descending = self.sort.startswith("-")
            name = self.sort[1:] if descending else self.sort
            field = SORTABLE_FIELDS.get(name)
            if field is not None:
                spec = [(field, DESCENDING if descending else ASCENDING)]
        # _id breaks ties so pages don't overlap
        return spec + [("_id", spec[0][1])]

    @property
    def skip(self) -> int:
        return (self.page - 1) * self.limit


@dataclass
class TaskPage:
    items: List[dict]
    total: int
    page: int
    limit: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit)

    def pagination(self) -> dict:
        return {"current": self.page, "pages": self.pages, "total": self.total, "limit": self.limit}


class Access(Enum):
    OWNED = "owned"
    NOT_OWNED = "not_owned"
    NOT_FOUND = "not_found"


class TaskRepository:
    def __init__(self, db: Database):
        self.db = db

    @property
    def tasks(self):
        return self.db[TASK_COLLECTION]

    def load_and_authorize(self, user_id: str, task_id: str) -> Tuple[Access, Optional[dict]]:
        """Look a task up by id alone, then compare its owner with the caller."""
        oid = parse_object_id(task_id)
        doc = self.tasks.find_one({"_id": oid}) if oid is not None else None
        if doc is None:
            return Access.NOT_FOUND, None
        if doc.get("user_id") != user_id:
            return Access.NOT_OWNED, doc
        return Access.OWNED, doc

    def _owned_or_raise(self, user_id: str, task_id: str, action: str) -> dict:
        access, doc = self.load_and_authorize(user_id, task_id)
        if access is Access.NOT_FOUND:
            raise NotFoundError("Task not found")
        if access is Access.NOT_OWNED:
            logger.warning("User %s attempted to %s task %s owned by another user", user_id, action, task_id)
            raise ForbiddenError(f"Not authorized to {action} this task")
        return doc

    def list(self, user_id: str, query: TaskQuery) -> TaskPage:
        criteria = query.filter_for(user_id)
        cursor = self.tasks.find(criteria).sort(query.sort_spec()).skip(query.skip).limit(query.limit)
        items = [serialize_task(d) for d in cursor]
        total = self.tasks.count_documents(criteria)
        return TaskPage(items=items, total=total, page=query.page, limit=query.limit)

    def get(self, user_id: str, task_id: str) -> dict:
        return serialize_task(self._owned_or_raise(user_id, task_id, "access"))

    def create(self, user_id: str, fields: dict) -> dict:
        data = {k: v for k, v in fields.items() if k in MUTABLE_FIELDS}
        # Owner is always the caller, whatever the payload said
        data["user_id"] = user_id
        task = self._validate(data)
        inserted_id = create_document(self.db, TASK_COLLECTION, task)
        logger.debug("User %s created task %s", user_id, inserted_id)
        return serialize_task(self.tasks.find_one({"_id": parse_object_id(inserted_id)}))

    def update(self, user_id: str, task_id: str, fields: dict) -> dict:
        doc = self._owned_or_raise(user_id, task_id, "update")
        updates = {k: v for k, v in fields.items() if k in MUTABLE_FIELDS}
        if not updates:
            return serialize_task(doc)

        merged = {k: doc.get(k) for k in MUTABLE_FIELDS if k in doc}
        merged.update(updates)
        merged["user_id"] = doc["user_id"]
        task = self._validate(merged)

        new_values = {k: v for k, v in task.items() if k in updates}
        new_values["updated_at"] = utcnow()
        updated = self.tasks.find_one_and_update(
            {"_id": doc["_id"], "user_id": user_id},
            {"$set": new_values},
            return_document=ReturnDocument.AFTER,
        )
        if updated is None:
            # Deleted between the ownership check and the write
            raise NotFoundError("Task not found")
        return serialize_task(updated)

    def delete(self, user_id: str, task_id: str) -> None:
        doc = self._owned_or_raise(user_id, task_id, "delete")
        self.tasks.delete_one({"_id": doc["_id"]})
        logger.debug("User %s deleted task %s", user_id, task_id)

    @staticmethod
    def _validate(data: dict) -> dict:
        try:
            task = Task(**data)
        except PydanticValidationError as e:
            raise ValidationError.from_pydantic(e) from e
        values = task.model_dump()
        values["due_date"] = to_storage_datetime(values["due_date"])
        return values
