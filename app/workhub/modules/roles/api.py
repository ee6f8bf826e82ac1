from __future__ import annotations

from flask import Blueprint, g, request

from app.workhub.csv_export import csv_response
from app.workhub.mongo import mongo_db
from app.workhub.rbac import ADMIN_ROLES, READ_ROLES, require_roles
from app.workhub.responses import json_body, paginated, parse_page_params, success
from app.workhub.utils import optional_str
from app.workhub.modules.roles import service as role_service

bp = Blueprint("roles", __name__)


@bp.post("/")
@require_roles(*ADMIN_ROLES)
def create_role():
    db = mongo_db()
    role = role_service.create_role(db, json_body(), g.current_user)
    return success(role_service.role_detail(db, role), "Role created successfully", 201)


@bp.get("/")
@require_roles(*READ_ROLES)
def list_roles():
    params = parse_page_params()
    records, total = role_service.list_roles(mongo_db(), params, request.args.get("permission_section"))
    return paginated(records, total, params, "Roles fetched successfully")


@bp.get("/all")
@require_roles(*READ_ROLES)
def all_roles():
    return success(role_service.all_roles(mongo_db()), "Roles fetched successfully")


@bp.post("/export-csv")
@require_roles(*READ_ROLES)
def export_roles_csv():
    payload = json_body()
    search = optional_str(payload.get("search_string"))
    rows = role_service.export_role_rows(mongo_db(), search, payload.get("permission_section"))
    return csv_response(rows, "roles")


@bp.get("/<role_id>")
@require_roles(*READ_ROLES)
def get_role(role_id: str):
    db = mongo_db()
    return success(role_service.role_detail(db, role_service.get_role(db, role_id)), "Role fetched successfully")


@bp.patch("/<role_id>")
@require_roles(*ADMIN_ROLES)
def update_role(role_id: str):
    db = mongo_db()
    role = role_service.update_role(db, role_id, json_body(), g.current_user)
    return success(role_service.role_detail(db, role), "Role updated successfully")


@bp.delete("/<role_id>")
@require_roles(*ADMIN_ROLES)
def delete_role(role_id: str):
    role_service.delete_role(mongo_db(), role_id)
    return success(message="Role deleted successfully")
