from __future__ import annotations

from flask import Blueprint, current_app, g, request, send_file

from app.workhub.csv_export import csv_response
from app.workhub.db import db_session
from app.workhub.errors import NotFoundError, ValidationError
from app.workhub.mongo import mongo_db
from app.workhub.rbac import require_permission
from app.workhub.responses import json_body, paginated, parse_page_params, success
from app.workhub.storage import StorageError, storage_from_config
from app.workhub.utils import optional_str
from app.workhub.modules.tasks import service as task_service

bp = Blueprint("tasks", __name__)

_LIST_FILTERS = ("project_id", "status", "priority", "assignee_id", "tag", "is_sub_task", "due_from", "due_to")


def _filters_from(source) -> dict:
    return {k: source.get(k) for k in _LIST_FILTERS if source.get(k) not in (None, "")}


@bp.post("/")
@require_permission("task", "CREATE")
def create_task():
    s = db_session()
    db = mongo_db()
    task = task_service.create_task(s, db, json_body(), g.current_user)
    s.commit()
    return success(task_service.task_detail(s, db, task), "Task created successfully", 201)


@bp.get("/")
@require_permission("task", "VIEW")
def list_tasks():
    params = parse_page_params()
    records, total = task_service.list_tasks(db_session(), mongo_db(), params, _filters_from(request.args))
    return paginated(records, total, params, "Tasks fetched successfully")


@bp.get("/my")
def my_tasks():
    params = parse_page_params()
    filters = _filters_from(request.args)
    filters["assignee_id"] = str(g.current_user["_id"])
    records, total = task_service.list_tasks(db_session(), mongo_db(), params, filters)
    return paginated(records, total, params, "Tasks fetched successfully")


@bp.get("/status-count")
@require_permission("task", "VIEW")
def task_status_count():
    filters = {"project_id": request.args.get("project_id")} if request.args.get("project_id") else {}
    return success(task_service.status_counts(db_session(), filters), "Task status counts fetched successfully")


@bp.post("/export-csv")
@require_permission("task", "EXPORT")
def export_tasks_csv():
    payload = json_body()
    search = optional_str(payload.get("search_string"))
    rows = task_service.export_task_rows(db_session(), mongo_db(), _filters_from(payload), search)
    return csv_response(rows, "tasks")


@bp.get("/<int:task_id>")
@require_permission("task", "VIEW")
def get_task(task_id: int):
    s = db_session()
    return success(task_service.task_detail(s, mongo_db(), task_service.get_task(s, task_id)), "Task fetched successfully")


@bp.patch("/<int:task_id>")
@require_permission("task", "UPDATE", "EDIT")
def update_task(task_id: int):
    s = db_session()
    db = mongo_db()
    task = task_service.update_task(s, db, task_id, json_body(), g.current_user)
    s.commit()
    return success(task_service.task_detail(s, db, task), "Task updated successfully")


@bp.patch("/<int:task_id>/status")
@require_permission("task", "UPDATE", "EDIT")
def update_task_status(task_id: int):
    s = db_session()
    task = task_service.set_task_status(s, task_id, json_body().get("status"), g.current_user)
    s.commit()
    return success(task_service.task_to_dict(task), "Task status updated successfully")


@bp.delete("/<int:task_id>")
@require_permission("task", "DELETE")
def delete_task(task_id: int):
    s = db_session()
    removed = task_service.delete_task(s, task_id, g.current_user)
    s.commit()
    return success({"deleted_tasks": removed}, "Task deleted successfully")


@bp.get("/<int:task_id>/activities")
@require_permission("task", "VIEW")
def task_activities(task_id: int):
    return success(task_service.list_activities(db_session(), task_id), "Task activities fetched successfully")


# ---------- Comments ----------
@bp.get("/<int:task_id>/comments")
@require_permission("task", "VIEW")
def list_comments(task_id: int):
    return success(task_service.list_comments(db_session(), mongo_db(), task_id), "Comments fetched successfully")


@bp.post("/<int:task_id>/comments")
@require_permission("task", "VIEW")
def add_comment(task_id: int):
    s = db_session()
    comment = task_service.add_comment(s, task_id, json_body(), g.current_user)
    s.commit()
    return success(task_service.comment_to_dict(comment), "Comment added successfully", 201)


@bp.patch("/<int:task_id>/comments/<int:comment_id>")
@require_permission("task", "VIEW")
def update_comment(task_id: int, comment_id: int):
    s = db_session()
    comment = task_service.update_comment(s, task_id, comment_id, json_body(), g.current_user)
    s.commit()
    return success(task_service.comment_to_dict(comment), "Comment updated successfully")


@bp.delete("/<int:task_id>/comments/<int:comment_id>")
@require_permission("task", "VIEW")
def delete_comment(task_id: int, comment_id: int):
    s = db_session()
    task_service.delete_comment(s, task_id, comment_id, g.current_user)
    s.commit()
    return success(message="Comment deleted successfully")


# ---------- Attachments ----------
@bp.post("/<int:task_id>/attachments")
@require_permission("task", "UPDATE", "EDIT")
def upload_attachment(task_id: int):
    f = request.files.get("file")
    if not f or not f.filename:
        raise ValidationError("A file is required", details=["A file is required"])
    s = db_session()
    attachment = task_service.add_attachment(
        s,
        storage_from_config(current_app.config),
        task_id,
        filename=f.filename,
        data=f.read(),
        content_type=f.mimetype or None,
        actor=g.current_user,
    )
    s.commit()
    return success(task_service.attachment_to_dict(attachment), "Attachment uploaded successfully", 201)


@bp.get("/<int:task_id>/attachments")
@require_permission("task", "VIEW")
def list_attachments(task_id: int):
    return success(task_service.list_attachments(db_session(), task_id), "Attachments fetched successfully")


@bp.get("/attachments/<int:attachment_id>/download")
@require_permission("task", "VIEW")
def download_attachment(attachment_id: int):
    attachment = task_service.get_attachment(db_session(), attachment_id)
    try:
        fobj = storage_from_config(current_app.config).open(attachment.key)
    except StorageError as e:
        current_app.logger.error("Attachment %s missing from storage (key=%s)", attachment.id, attachment.key)
        raise NotFoundError("Attachment file is missing from storage") from e
    return send_file(
        fobj,
        mimetype=attachment.file_type or "application/octet-stream",
        as_attachment=True,
        download_name=attachment.file_name,
        max_age=0,
    )
