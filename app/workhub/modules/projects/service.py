from __future__ import annotations

import logging
import re
from datetime import datetime
from typing import Any

from pymongo.database import Database
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from app.workhub.errors import BadRequestError, ConflictError, NotFoundError, raise_if_errors
from app.workhub.responses import PageParams
from app.workhub.utils import clean_str, live_user_ids, optional_str, parse_choice, user_summaries
from app.workhub.modules.projects.models import PROJECT_ROLES, Project, ProjectUser

logger = logging.getLogger(__name__)

CODE_RE = re.compile(r"^[A-Z0-9]{2,10}$")
PROJECT_STATUSES = ("active", "inactive", "all")


def slugify(title: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-") or "project"


def _unique_slug(s: Session, title: str, exclude_id: int | None = None) -> str:
    base = slugify(title)
    slug, n = base, 1
    while True:
        q = select(Project.id).where(Project.slug == slug)
        if exclude_id is not None:
            q = q.where(Project.id != exclude_id)
        if s.execute(q).first() is None:
            return slug
        n += 1
        slug = f"{base}-{n}"


def validate_project_payload(payload: dict, *, partial: bool = False) -> list[str]:
    errors: list[str] = []
    if not partial or "title" in payload:
        if not clean_str(payload.get("title")):
            errors.append("Project title is required")
    if not partial:
        code = clean_str(payload.get("code")).upper()
        if not code:
            errors.append("Project code is required")
        elif not CODE_RE.match(code):
            errors.append("Project code must be 2-10 letters or digits")
    elif "code" in payload:
        errors.append("Project code cannot be changed")
    if "active" in payload and not isinstance(payload["active"], bool):
        errors.append("Active must be a boolean")
    if "members" in payload and not isinstance(payload["members"], list):
        errors.append("Members must be a list of user ids")
    return errors


def _require_live_users(db: Database, user_ids: list) -> list[str]:
    wanted = list(dict.fromkeys(str(u) for u in user_ids if u))
    found = live_user_ids(db, wanted)
    missing = [u for u in wanted if u not in found]
    if missing:
        raise NotFoundError("One or more users not found", details=missing)
    return wanted


def get_project(s: Session, project_id: int) -> Project:
    project = s.get(Project, project_id)
    if not project or project.deleted_at is not None:
        raise NotFoundError("Project not found")
    return project


def project_to_dict(project: Project) -> dict:
    return {
        "id": project.id,
        "title": project.title,
        "description": project.description,
        "slug": project.slug,
        "code": project.code,
        "active": project.active,
        "logo": project.logo,
        "timezone": project.timezone,
        "created_by": project.created_by,
        "updated_by": project.updated_by,
        "created_at": project.created_at.isoformat() if project.created_at else None,
        "updated_at": project.updated_at.isoformat() if project.updated_at else None,
    }


def project_members(db: Database, project: Project) -> list[dict]:
    people = user_summaries(db, [m.user_id for m in project.members])
    return [
        {"user_id": m.user_id, "role": m.role, "user": people.get(m.user_id), "joined_at": m.created_at.isoformat()}
        for m in project.members
    ]


def project_task_counts(s: Session, project_id: int) -> dict[str, int]:
    from app.workhub.modules.tasks.models import TASK_STATUSES, Task

    rows = s.execute(
        select(Task.status, func.count(Task.id))
        .where(Task.project_id == project_id, Task.deleted_at.is_(None))
        .group_by(Task.status)
    ).all()
    counts = {status: 0 for status in TASK_STATUSES}
    counts.update({status: n for status, n in rows})
    counts["total"] = sum(counts[st] for st in TASK_STATUSES)
    return counts


def project_detail(s: Session, db: Database, project: Project) -> dict:
    data = project_to_dict(project)
    data["members"] = project_members(db, project)
    data["task_counts"] = project_task_counts(s, project.id)
    return data


def _set_member(project: Project, user_id: str, role: str) -> bool:
    for m in project.members:
        if m.user_id == user_id:
            changed = m.role != role
            m.role = role
            return changed
    project.members.append(ProjectUser(user_id=user_id, role=role))
    return True


def create_project(s: Session, db: Database, payload: dict, actor: dict) -> Project:
    raise_if_errors(validate_project_payload(payload))
    code = clean_str(payload["code"]).upper()
    if s.execute(select(Project.id).where(Project.code == code)).first() is not None:
        raise ConflictError(f"Project code {code} is already in use")
    actor_id = str(actor["_id"])
    members = _require_live_users(db, payload.get("members") or [])

    now = datetime.utcnow()
    title = clean_str(payload["title"])
    project = Project(
        title=title,
        description=optional_str(payload.get("description")),
        slug=_unique_slug(s, title),
        code=code,
        active=payload.get("active", True),
        logo=optional_str(payload.get("logo")),
        timezone=optional_str(payload.get("timezone")),
        created_by=actor_id,
        updated_by=actor_id,
        created_at=now,
        updated_at=now,
    )
    project.members.append(ProjectUser(user_id=actor_id, role="MANAGER"))
    for user_id in members:
        if user_id != actor_id:
            project.members.append(ProjectUser(user_id=user_id, role="MEMBER"))
    s.add(project)
    s.flush()
    logger.info("Project created id=%s code=%s by=%s", project.id, code, actor_id)
    return project


def update_project(s: Session, project_id: int, payload: dict, actor: dict) -> Project:
    if not payload:
        raise BadRequestError("No fields provided for update")
    raise_if_errors(validate_project_payload(payload, partial=True))
    project = get_project(s, project_id)
    if "title" in payload:
        project.title = clean_str(payload["title"])
        project.slug = _unique_slug(s, project.title, exclude_id=project.id)
    for field in ("description", "logo", "timezone"):
        if field in payload:
            setattr(project, field, optional_str(payload[field]))
    if "active" in payload:
        project.active = payload["active"]
    project.updated_by = str(actor["_id"])
    project.updated_at = datetime.utcnow()
    return project


def delete_project(s: Session, project_id: int, actor: dict) -> int:
    """Soft-deletes the project and its live tasks; returns the number of tasks removed."""
    from app.workhub.modules.tasks.models import Task

    project = get_project(s, project_id)
    now = datetime.utcnow()
    project.deleted_at = now
    project.updated_at = now
    project.updated_by = str(actor["_id"])
    tasks = s.execute(select(Task).where(Task.project_id == project.id, Task.deleted_at.is_(None))).scalars().all()
    for task in tasks:
        task.deleted_at = now
    return len(tasks)


def add_members(s: Session, db: Database, project_id: int, user_ids: Any, role: Any) -> Project:
    if not isinstance(user_ids, list) or not user_ids:
        raise_if_errors(["user_ids must be a non-empty list"])
    if role in (None, ""):
        role = "MEMBER"
    role = role.strip().upper() if isinstance(role, str) else None
    if role not in PROJECT_ROLES:
        raise_if_errors([f"Role must be one of: {', '.join(PROJECT_ROLES)}"])
    project = get_project(s, project_id)
    for user_id in _require_live_users(db, user_ids):
        _set_member(project, user_id, role)
    project.updated_at = datetime.utcnow()
    return project


def remove_member(s: Session, project_id: int, user_id: str) -> None:
    project = get_project(s, project_id)
    member = next((m for m in project.members if m.user_id == user_id), None)
    if member is None:
        raise NotFoundError("User is not a member of this project")
    project.members.remove(member)
    project.updated_at = datetime.utcnow()


def _project_query(search: str | None, status: str | None):
    status = parse_choice(status, PROJECT_STATUSES, "Status")
    q = select(Project).where(Project.deleted_at.is_(None))
    if status == "active":
        q = q.where(Project.active.is_(True))
    elif status == "inactive":
        q = q.where(Project.active.is_(False))
    if search:
        like = f"%{search}%"
        q = q.where(or_(Project.title.ilike(like), Project.code.ilike(like)))
    return q


def list_projects(s: Session, params: PageParams, status: str | None = None) -> tuple[list[dict], int]:
    q = _project_query(params.search_string, status)
    total = s.execute(select(func.count()).select_from(q.subquery())).scalar_one()
    rows = s.execute(
        q.order_by(Project.created_at.desc(), Project.id.desc()).offset(params.skip).limit(params.page_size)
    ).scalars().all()
    return [project_to_dict(p) for p in rows], total


def all_projects(s: Session) -> list[dict]:
    rows = s.execute(
        select(Project).where(Project.deleted_at.is_(None), Project.active.is_(True)).order_by(Project.title)
    ).scalars().all()
    return [{"id": p.id, "title": p.title, "code": p.code} for p in rows]


def export_project_rows(s: Session, search: str | None, status: str | None) -> list[dict]:
    rows = s.execute(_project_query(search, status).order_by(Project.created_at.desc())).scalars().all()
    return [
        {
            "code": p.code,
            "title": p.title,
            "description": p.description,
            "timezone": p.timezone,
            "active": p.active,
            "members": len(p.members),
            "created_at": p.created_at,
        }
        for p in rows
    ]
