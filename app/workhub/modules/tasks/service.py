from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any

from pymongo.database import Database
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session
from werkzeug.utils import secure_filename

from app.workhub.errors import BadRequestError, ForbiddenError, NotFoundError, raise_if_errors
from app.workhub.responses import PageParams
from app.workhub.utils import clean_str, is_int_id, live_user_ids, optional_str, parse_bool, parse_datetime, user_summaries
from app.workhub.modules.projects.models import Project
from app.workhub.modules.projects.service import get_project
from app.workhub.modules.tasks.models import (
    TASK_PRIORITIES,
    TASK_STATUSES,
    SubTaskRef,
    Tag,
    Task,
    TaskActivity,
    TaskAssignee,
    TaskAttachment,
    TaskComment,
    TaskTag,
)

logger = logging.getLogger(__name__)

MAX_ATTACHMENT_BYTES = 10 * 1024 * 1024
OPEN_STATUSES = ("TODO", "IN_PROGRESS")

# activity action types
CREATED = "CREATED"
UPDATED = "UPDATED"
STATUS_CHANGED = "STATUS_CHANGED"
ASSIGNEES_CHANGED = "ASSIGNEES_CHANGED"
TAGS_CHANGED = "TAGS_CHANGED"
COMMENTED = "COMMENTED"
ATTACHMENT_ADDED = "ATTACHMENT_ADDED"
DELETED = "DELETED"


def validate_task_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors: list[str] = []
    if not partial:
        if payload.get("project_id") in (None, ""):
            errors.append("Project is required")
        elif not is_int_id(payload["project_id"]):
            errors.append("Project id must be an integer")
        if payload.get("parent_task_id") not in (None, "") and not is_int_id(payload["parent_task_id"]):
            errors.append("Parent task id must be an integer")
        if not payload.get("due_date"):
            errors.append("Due date is required")
    if not partial or "title" in payload:
        if not clean_str(payload.get("title")):
            errors.append("Task title is required")
    status = payload.get("status")
    if status is not None and status not in TASK_STATUSES:
        errors.append(f"Status must be one of: {', '.join(TASK_STATUSES)}")
    priority = payload.get("priority")
    if priority is not None and priority not in TASK_PRIORITIES:
        errors.append(f"Priority must be one of: {', '.join(TASK_PRIORITIES)}")
    for field in ("assignees", "tags"):
        if field in payload and payload[field] is not None and not isinstance(payload[field], list):
            errors.append(f"{field.capitalize()} must be a list")
    return errors


def _log(s: Session, task: Task, action_type: str, description: str, actor_id: str | None) -> None:
    s.add(TaskActivity(task_id=task.id, action_type=action_type, description=description, action_by=actor_id))


def _normalize_tags(raw: list) -> list[str]:
    titles: list[str] = []
    for value in raw:
        title = clean_str(value).lower()
        if title and title not in titles:
            titles.append(title)
    return titles


def _resolve_tags(s: Session, titles: list[str]) -> list[Tag]:
    if not titles:
        return []
    existing = {t.title: t for t in s.execute(select(Tag).where(Tag.title.in_(titles))).scalars()}
    tags = []
    for title in titles:
        tag = existing.get(title)
        if tag is None:
            tag = Tag(title=title)
            s.add(tag)
        tags.append(tag)
    s.flush()
    return tags


def _require_assignees(db: Database, raw: list) -> list[str]:
    wanted = list(dict.fromkeys(str(u) for u in raw if u))
    found = live_user_ids(db, wanted)
    missing = [u for u in wanted if u not in found]
    if missing:
        raise NotFoundError("One or more assignees not found", details=missing)
    return wanted


def _set_status(task: Task, status: str) -> None:
    if status == task.status:
        return
    task.status = status
    task.completed_at = datetime.utcnow() if status == "COMPLETED" else None


def get_task(s: Session, task_id: int) -> Task:
    task = s.get(Task, task_id)
    if not task or task.deleted_at is not None:
        raise NotFoundError("Task not found")
    return task


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


def task_to_dict(task: Task, people: dict[str, dict] | None = None) -> dict:
    people = people or {}
    return {
        "id": task.id,
        "ref_id": task.ref_id,
        "title": task.title,
        "description": task.description,
        "status": task.status,
        "priority": task.priority,
        "due_date": _iso(task.due_date),
        "project_id": task.project_id,
        "is_sub_task": task.is_sub_task,
        "assignees": [people.get(a.user_id) or {"id": a.user_id} for a in task.assignees],
        "tags": [link.tag.title for link in task.tag_links],
        "created_by": task.created_by,
        "updated_by": task.updated_by,
        "created_at": _iso(task.created_at),
        "updated_at": _iso(task.updated_at),
        "completed_at": _iso(task.completed_at),
    }


def tasks_to_dicts(db: Database, tasks: list[Task]) -> list[dict]:
    people = user_summaries(db, [a.user_id for t in tasks for a in t.assignees])
    return [task_to_dict(t, people) for t in tasks]


def task_detail(s: Session, db: Database, task: Task) -> dict:
    data = tasks_to_dicts(db, [task])[0]
    data["project"] = {"id": task.project.id, "title": task.project.title, "code": task.project.code}
    sub_ids = s.execute(select(SubTaskRef.sub_task).where(SubTaskRef.parent_task == task.id)).scalars().all()
    subs = []
    if sub_ids:
        subs = s.execute(
            select(Task).where(Task.id.in_(sub_ids), Task.deleted_at.is_(None)).order_by(Task.id)
        ).scalars().all()
    data["sub_tasks"] = [{"id": t.id, "ref_id": t.ref_id, "title": t.title, "status": t.status} for t in subs]
    parent_id = s.execute(select(SubTaskRef.parent_task).where(SubTaskRef.sub_task == task.id)).scalar_one_or_none()
    data["parent_task_id"] = parent_id
    return data


def create_task(s: Session, db: Database, payload: dict, actor: dict) -> Task:
    raise_if_errors(validate_task_payload(payload))
    project = get_project(s, int(payload["project_id"]))
    due_date = parse_datetime(payload["due_date"], "due_date")
    assignees = _require_assignees(db, payload.get("assignees") or [])
    actor_id = str(actor["_id"])

    parent: Task | None = None
    if payload.get("parent_task_id") not in (None, ""):
        parent = get_task(s, int(payload["parent_task_id"]))
        if parent.project_id != project.id:
            raise BadRequestError("Parent task belongs to a different project")
        if parent.is_sub_task:
            raise BadRequestError("A sub-task cannot have its own sub-tasks")

    now = datetime.utcnow()
    task = Task(
        title=clean_str(payload["title"]),
        description=optional_str(payload.get("description")),
        status="TODO",
        priority=payload.get("priority") or "LOW",
        due_date=due_date,
        project_id=project.id,
        is_sub_task=parent is not None,
        created_by=actor_id,
        updated_by=actor_id,
        created_at=now,
        updated_at=now,
    )
    _set_status(task, payload.get("status") or "TODO")
    for user_id in assignees:
        task.assignees.append(TaskAssignee(user_id=user_id))
    for tag in _resolve_tags(s, _normalize_tags(payload.get("tags") or [])):
        task.tag_links.append(TaskTag(tag=tag))
    s.add(task)
    s.flush()
    task.ref_id = f"{project.code}-{task.id}"
    if parent is not None:
        s.add(SubTaskRef(parent_task=parent.id, sub_task=task.id))
    _log(s, task, CREATED, f"Task {task.ref_id} created", actor_id)
    logger.info("Task created id=%s ref=%s by=%s", task.id, task.ref_id, actor_id)
    return task


def update_task(s: Session, db: Database, task_id: int, payload: dict, actor: dict) -> Task:
    if not payload:
        raise BadRequestError("No fields provided for update")
    raise_if_errors(validate_task_payload(payload, partial=True))
    task = get_task(s, task_id)
    actor_id = str(actor["_id"])
    changed: list[str] = []

    if "title" in payload:
        title = clean_str(payload["title"])
        if title != task.title:
            task.title = title
            changed.append("title")
    if "description" in payload:
        description = optional_str(payload["description"])
        if description != task.description:
            task.description = description
            changed.append("description")
    if payload.get("priority") and payload["priority"] != task.priority:
        task.priority = payload["priority"]
        changed.append("priority")
    if payload.get("due_date"):
        due_date = parse_datetime(payload["due_date"], "due_date")
        if due_date != task.due_date:
            task.due_date = due_date
            changed.append("due date")
    if changed:
        _log(s, task, UPDATED, f"Updated {', '.join(changed)}", actor_id)

    if payload.get("status") and payload["status"] != task.status:
        old = task.status
        _set_status(task, payload["status"])
        _log(s, task, STATUS_CHANGED, f"Status changed from {old} to {task.status}", actor_id)

    if payload.get("assignees") is not None:
        wanted = _require_assignees(db, payload["assignees"])
        current = [a.user_id for a in task.assignees]
        if set(wanted) != set(current):
            for a in list(task.assignees):
                if a.user_id not in wanted:
                    task.assignees.remove(a)
            for user_id in wanted:
                if user_id not in current:
                    task.assignees.append(TaskAssignee(user_id=user_id))
            _log(s, task, ASSIGNEES_CHANGED, f"Assignees set to {len(wanted)} user(s)", actor_id)

    if payload.get("tags") is not None:
        titles = _normalize_tags(payload["tags"])
        current_titles = [link.tag.title for link in task.tag_links]
        if set(titles) != set(current_titles):
            for link in list(task.tag_links):
                if link.tag.title not in titles:
                    task.tag_links.remove(link)
            for tag in _resolve_tags(s, [t for t in titles if t not in current_titles]):
                task.tag_links.append(TaskTag(tag=tag))
            _log(s, task, TAGS_CHANGED, f"Tags set to {', '.join(titles) or 'none'}", actor_id)

    task.updated_by = actor_id
    task.updated_at = datetime.utcnow()
    return task


def set_task_status(s: Session, task_id: int, status: Any, actor: dict) -> Task:
    if status not in TASK_STATUSES:
        raise_if_errors([f"Status must be one of: {', '.join(TASK_STATUSES)}"])
    task = get_task(s, task_id)
    if status != task.status:
        old = task.status
        _set_status(task, status)
        _log(s, task, STATUS_CHANGED, f"Status changed from {old} to {status}", str(actor["_id"]))
        task.updated_by = str(actor["_id"])
        task.updated_at = datetime.utcnow()
    return task


def delete_task(s: Session, task_id: int, actor: dict) -> int:
    """Soft-deletes the task and its sub-tasks; returns how many rows were removed."""
    task = get_task(s, task_id)
    now = datetime.utcnow()
    sub_ids = s.execute(select(SubTaskRef.sub_task).where(SubTaskRef.parent_task == task.id)).scalars().all()
    targets = [task]
    if sub_ids:
        targets += s.execute(select(Task).where(Task.id.in_(sub_ids), Task.deleted_at.is_(None))).scalars().all()
    for t in targets:
        t.deleted_at = now
        t.updated_at = now
        t.updated_by = str(actor["_id"])
        _log(s, t, DELETED, f"Task {t.ref_id} deleted", str(actor["_id"]))
    return len(targets)


def _task_query(filters: dict, search: str | None = None):
    q = select(Task).join(Project, Project.id == Task.project_id).where(
        Task.deleted_at.is_(None), Project.deleted_at.is_(None)
    )
    if filters.get("project_id"):
        try:
            q = q.where(Task.project_id == int(filters["project_id"]))
        except (TypeError, ValueError) as e:
            raise BadRequestError("project_id must be an integer") from e
    if filters.get("status"):
        if filters["status"] not in TASK_STATUSES:
            raise BadRequestError(f"Status must be one of: {', '.join(TASK_STATUSES)}")
        q = q.where(Task.status == filters["status"])
    if filters.get("priority"):
        if filters["priority"] not in TASK_PRIORITIES:
            raise BadRequestError(f"Priority must be one of: {', '.join(TASK_PRIORITIES)}")
        q = q.where(Task.priority == filters["priority"])
    if filters.get("assignee_id"):
        q = q.where(Task.id.in_(select(TaskAssignee.task_id).where(TaskAssignee.user_id == str(filters["assignee_id"]))))
    if filters.get("tag"):
        tagged = select(TaskTag.task_id).join(Tag, Tag.id == TaskTag.tag_id).where(Tag.title == clean_str(filters["tag"]).lower())
        q = q.where(Task.id.in_(tagged))
    if filters.get("is_sub_task") not in (None, ""):
        flag = parse_bool(filters["is_sub_task"])
        if flag is None:
            raise BadRequestError("is_sub_task must be true or false")
        q = q.where(Task.is_sub_task.is_(flag))
    if filters.get("due_from"):
        q = q.where(Task.due_date >= parse_datetime(filters["due_from"], "due_from"))
    if filters.get("due_to"):
        q = q.where(Task.due_date <= parse_datetime(filters["due_to"], "due_to"))
    if search:
        like = f"%{search}%"
        q = q.where(or_(Task.title.ilike(like), Task.ref_id.ilike(like)))
    return q


def list_tasks(s: Session, db: Database, params: PageParams, filters: dict) -> tuple[list[dict], int]:
    q = _task_query(filters, params.search_string)
    total = s.execute(select(func.count()).select_from(q.subquery())).scalar_one()
    tasks = s.execute(
        q.order_by(Task.created_at.desc(), Task.id.desc()).offset(params.skip).limit(params.page_size)
    ).scalars().all()
    return tasks_to_dicts(db, list(tasks)), total


def status_counts(s: Session, filters: dict) -> dict[str, int]:
    sub = _task_query(filters).subquery()
    rows = s.execute(select(sub.c.status, func.count()).group_by(sub.c.status)).all()
    counts = {status: 0 for status in TASK_STATUSES}
    counts.update({status: n for status, n in rows})
    counts["total"] = sum(counts[st] for st in TASK_STATUSES)
    return counts


def task_summary_for_user(s: Session, user_id: str) -> dict[str, int]:
    return status_counts(s, {"assignee_id": user_id})


def list_activities(s: Session, task_id: int) -> list[dict]:
    task = get_task(s, task_id)
    rows = s.execute(
        select(TaskActivity).where(TaskActivity.task_id == task.id).order_by(TaskActivity.time.desc(), TaskActivity.id.desc())
    ).scalars().all()
    return [
        {"id": a.id, "action_type": a.action_type, "description": a.description, "action_by": a.action_by, "time": _iso(a.time)}
        for a in rows
    ]


def mark_overdue_tasks(s: Session, now: datetime | None = None) -> int:
    """Flip open tasks past their due date to OVER_DUE. Returns the number updated."""
    now = now or datetime.utcnow()
    tasks = s.execute(
        select(Task).where(Task.deleted_at.is_(None), Task.status.in_(OPEN_STATUSES), Task.due_date < now)
    ).scalars().all()
    for task in tasks:
        old = task.status
        task.status = "OVER_DUE"
        task.updated_at = now
        _log(s, task, STATUS_CHANGED, f"Status changed from {old} to OVER_DUE", None)
    if tasks:
        logger.info("Marked %s task(s) overdue", len(tasks))
    return len(tasks)


def export_task_rows(s: Session, db: Database, filters: dict, search: str | None) -> list[dict]:
    tasks = s.execute(_task_query(filters, search).order_by(Task.created_at.desc())).scalars().all()
    people = user_summaries(db, [a.user_id for t in tasks for a in t.assignees])
    rows = []
    for t in tasks:
        names = []
        for a in t.assignees:
            p = people.get(a.user_id) or {}
            names.append({"name": " ".join(x for x in (p.get("first_name"), p.get("last_name")) if x) or a.user_id})
        rows.append(
            {
                "ref_id": t.ref_id,
                "title": t.title,
                "project": t.project.title,
                "status": t.status,
                "priority": t.priority,
                "due_date": t.due_date,
                "assignees": names,
                "tags": [link.tag.title for link in t.tag_links],
                "is_sub_task": t.is_sub_task,
                "completed_at": t.completed_at,
                "created_at": t.created_at,
            }
        )
    return rows


# ---------- Comments ----------


def comment_to_dict(c: TaskComment, people: dict[str, dict] | None = None) -> dict:
    return {
        "id": c.id,
        "task_id": c.task_id,
        "message": c.message,
        "reply_to": c.reply_to,
        "commented_by": (people or {}).get(c.commented_by) or {"id": c.commented_by},
        "created_at": _iso(c.created_at),
        "updated_at": _iso(c.updated_at),
    }


def list_comments(s: Session, db: Database, task_id: int) -> list[dict]:
    task = get_task(s, task_id)
    rows = s.execute(
        select(TaskComment)
        .where(TaskComment.task_id == task.id, TaskComment.deleted_at.is_(None))
        .order_by(TaskComment.created_at, TaskComment.id)
    ).scalars().all()
    people = user_summaries(db, [c.commented_by for c in rows])
    return [comment_to_dict(c, people) for c in rows]


def _get_comment(s: Session, task: Task, comment_id: int) -> TaskComment:
    comment = s.get(TaskComment, comment_id)
    if not comment or comment.task_id != task.id or comment.deleted_at is not None:
        raise NotFoundError("Comment not found")
    return comment


def add_comment(s: Session, task_id: int, payload: dict, actor: dict) -> TaskComment:
    message = clean_str(payload.get("message"))
    if not message:
        raise_if_errors(["Comment message is required"])
    if payload.get("reply_to") not in (None, "") and not is_int_id(payload["reply_to"]):
        raise_if_errors(["Reply-to comment id must be an integer"])
    task = get_task(s, task_id)
    reply_to = None
    if payload.get("reply_to") not in (None, ""):
        reply_to = _get_comment(s, task, int(payload["reply_to"])).id
    now = datetime.utcnow()
    comment = TaskComment(
        task_id=task.id,
        message=message,
        commented_by=str(actor["_id"]),
        reply_to=reply_to,
        created_at=now,
        updated_at=now,
    )
    s.add(comment)
    s.flush()
    _log(s, task, COMMENTED, "Comment added", str(actor["_id"]))
    return comment


def update_comment(s: Session, task_id: int, comment_id: int, payload: dict, actor: dict) -> TaskComment:
    message = clean_str(payload.get("message"))
    if not message:
        raise_if_errors(["Comment message is required"])
    comment = _get_comment(s, get_task(s, task_id), comment_id)
    if comment.commented_by != str(actor["_id"]):
        raise ForbiddenError("Only the author can edit this comment")
    comment.message = message
    comment.updated_at = datetime.utcnow()
    return comment


def delete_comment(s: Session, task_id: int, comment_id: int, actor: dict) -> None:
    comment = _get_comment(s, get_task(s, task_id), comment_id)
    if comment.commented_by != str(actor["_id"]):
        raise ForbiddenError("Only the author can delete this comment")
    comment.deleted_at = datetime.utcnow()


# ---------- Attachments ----------


def build_attachment_key(task_id: int, filename: str) -> str:
    safe_filename = secure_filename(filename) or "attachment.bin"
    return f"tasks/{task_id}/{uuid.uuid4().hex}_{safe_filename}"


def attachment_to_dict(a: TaskAttachment) -> dict:
    return {
        "id": a.id,
        "task_id": a.task_id,
        "file_name": a.file_name,
        "file_type": a.file_type,
        "file_size": a.file_size,
        "uploaded_by": a.uploaded_by,
        "uploaded_at": _iso(a.uploaded_at),
    }


def add_attachment(
    s: Session,
    storage,
    task_id: int,
    *,
    filename: str,
    data: bytes,
    content_type: str | None,
    actor: dict,
) -> TaskAttachment:
    if not filename:
        raise_if_errors(["A file is required"])
    if len(data) > MAX_ATTACHMENT_BYTES:
        raise BadRequestError("File too large. Maximum size is 10MB.")
    task = get_task(s, task_id)
    key = build_attachment_key(task.id, filename)
    storage.put_bytes(key, data, content_type=content_type)
    attachment = TaskAttachment(
        task_id=task.id,
        file_name=filename,
        key=key,
        file_type=content_type,
        file_size=len(data),
        uploaded_by=str(actor["_id"]),
    )
    s.add(attachment)
    s.flush()
    _log(s, task, ATTACHMENT_ADDED, f"Attached {filename}", str(actor["_id"]))
    return attachment


def list_attachments(s: Session, task_id: int) -> list[dict]:
    task = get_task(s, task_id)
    rows = s.execute(
        select(TaskAttachment).where(TaskAttachment.task_id == task.id).order_by(TaskAttachment.uploaded_at.desc())
    ).scalars().all()
    return [attachment_to_dict(a) for a in rows]


def get_attachment(s: Session, attachment_id: int) -> TaskAttachment:
    attachment = s.get(TaskAttachment, attachment_id)
    if not attachment:
        raise NotFoundError("Attachment not found")
    get_task(s, attachment.task_id)
    return attachment
