from __future__ import annotations

from flask import Blueprint, g, request

from app.workhub.csv_export import csv_response
from app.workhub.db import db_session
from app.workhub.mongo import mongo_db
from app.workhub.rbac import require_permission
from app.workhub.responses import json_body, paginated, parse_page_params, success
from app.workhub.utils import optional_str
from app.workhub.modules.projects import service as project_service

bp = Blueprint("projects", __name__)


@bp.post("/")
@require_permission("projects", "CREATE")
def create_project():
    s = db_session()
    db = mongo_db()
    project = project_service.create_project(s, db, json_body(), g.current_user)
    s.commit()
    return success(project_service.project_detail(s, db, project), "Project created successfully", 201)


@bp.get("/")
@require_permission("projects", "VIEW")
def list_projects():
    params = parse_page_params()
    records, total = project_service.list_projects(db_session(), params, request.args.get("status"))
    return paginated(records, total, params, "Projects fetched successfully")


@bp.get("/all")
@require_permission("projects", "VIEW")
def all_projects():
    return success(project_service.all_projects(db_session()), "Projects fetched successfully")


@bp.post("/export-csv")
@require_permission("projects", "EXPORT")
def export_projects_csv():
    payload = json_body()
    search = optional_str(payload.get("search_string"))
    rows = project_service.export_project_rows(db_session(), search, payload.get("status"))
    return csv_response(rows, "projects")


@bp.get("/<int:project_id>")
@require_permission("projects", "VIEW")
def get_project(project_id: int):
    s = db_session()
    project = project_service.get_project(s, project_id)
    return success(project_service.project_detail(s, mongo_db(), project), "Project fetched successfully")


@bp.patch("/<int:project_id>")
@require_permission("projects", "UPDATE", "EDIT")
def update_project(project_id: int):
    s = db_session()
    project = project_service.update_project(s, project_id, json_body(), g.current_user)
    s.commit()
    return success(project_service.project_detail(s, mongo_db(), project), "Project updated successfully")


@bp.delete("/<int:project_id>")
@require_permission("projects", "DELETE")
def delete_project(project_id: int):
    s = db_session()
    removed = project_service.delete_project(s, project_id, g.current_user)
    s.commit()
    return success({"deleted_tasks": removed}, "Project deleted successfully")


@bp.get("/<int:project_id>/members")
@require_permission("projects", "VIEW")
def list_project_members(project_id: int):
    project = project_service.get_project(db_session(), project_id)
    return success(project_service.project_members(mongo_db(), project), "Project members fetched successfully")


@bp.post("/<int:project_id>/members")
@require_permission("projects", "UPDATE", "EDIT")
def add_project_members(project_id: int):
    s = db_session()
    db = mongo_db()
    payload = json_body()
    project = project_service.add_members(s, db, project_id, payload.get("user_ids"), payload.get("role"))
    s.commit()
    return success(project_service.project_members(db, project), "Project members updated successfully")


@bp.delete("/<int:project_id>/members/<user_id>")
@require_permission("projects", "UPDATE", "EDIT")
def remove_project_member(project_id: int, user_id: str):
    s = db_session()
    project_service.remove_member(s, project_id, user_id)
    s.commit()
    return success(message="Project member removed successfully")
