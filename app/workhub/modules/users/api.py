from __future__ import annotations

from flask import Blueprint, g, request

from app.workhub.csv_export import csv_response
from app.workhub.db import db_session
from app.workhub.errors import NotFoundError
from app.workhub.mongo import DEPARTMENTS, ORGANIZATIONS, ROLES, mongo_db, serialize, to_object_id
from app.workhub.rbac import ADMIN_ROLES, READ_ROLES, require_roles
from app.workhub.responses import json_body, paginated, parse_page_params, success
from app.workhub.utils import find_live, optional_str
from app.workhub.modules.users import service as users_service
from app.workhub.modules.tasks.service import task_summary_for_user

bp = Blueprint("users", __name__)

_LIST_FILTERS = ("organization_id", "department_id", "role_id", "location_id", "status")


def _filters_from(source) -> dict:
    return {k: source.get(k) for k in _LIST_FILTERS if source.get(k)}


@bp.get("/my")
def my_profile():
    db = mongo_db()
    return success(users_service.user_profile(db, g.current_user), "User profile fetched successfully")


@bp.get("/")
@require_roles(*READ_ROLES)
def list_users():
    db = mongo_db()
    params = parse_page_params()
    records, total = users_service.list_users(db, params, _filters_from(request.args))
    return paginated(records, total, params, "Users fetched successfully")


@bp.get("/all")
@require_roles(*READ_ROLES)
def all_users():
    return success(users_service.all_users(mongo_db()), "Users fetched successfully")


@bp.post("/")
@require_roles(*ADMIN_ROLES)
def create_user():
    db = mongo_db()
    user, generated = users_service.create_user(db, json_body(), g.current_user)
    data = users_service.user_profile(db, user)
    if generated:
        # Delivery by email is out of scope, so the generated password is returned once.
        data["temporary_password"] = generated
    return success(data, "User created successfully", 201)


@bp.patch("/update-password")
def update_password():
    payload = json_body()
    users_service.update_own_password(
        mongo_db(), g.current_user, payload.get("current_password"), payload.get("new_password")
    )
    return success(message="Password updated successfully")


@bp.post("/export-csv")
@require_roles(*READ_ROLES)
def export_users_csv():
    payload = json_body()
    search = optional_str(payload.get("search_string"))
    rows = users_service.export_user_rows(mongo_db(), _filters_from(payload), search)
    return csv_response(rows, "users")


@bp.get("/organization/<org_id>")
@require_roles(*READ_ROLES)
def users_by_organization(org_id: str):
    db = mongo_db()
    find_live(db, ORGANIZATIONS, org_id, "Organization", {"_id": 1})
    params = parse_page_params()
    filters = _filters_from(request.args)
    filters["organization_id"] = org_id
    records, total = users_service.list_users(db, params, filters)
    return paginated(records, total, params, "Users fetched successfully")


@bp.get("/department/<department_id>")
@require_roles(*READ_ROLES)
def users_by_department(department_id: str):
    db = mongo_db()
    find_live(db, DEPARTMENTS, department_id, "Department", {"_id": 1})
    params = parse_page_params()
    filters = _filters_from(request.args)
    filters["department_id"] = department_id
    records, total = users_service.list_users(db, params, filters)
    return paginated(records, total, params, "Users fetched successfully")


@bp.get("/role/<role_id>")
@require_roles(*READ_ROLES)
def users_by_role(role_id: str):
    db = mongo_db()
    if not db[ROLES].find_one({"_id": to_object_id(role_id, "role id")}, {"_id": 1}):
        raise NotFoundError("Role not found")
    params = parse_page_params()
    filters = _filters_from(request.args)
    filters["role_id"] = role_id
    records, total = users_service.list_users(db, params, filters)
    return paginated(records, total, params, "Users fetched successfully")


@bp.get("/<user_id>")
@require_roles(*READ_ROLES)
def get_user(user_id: str):
    db = mongo_db()
    return success(users_service.user_profile(db, users_service.get_user(db, user_id)), "User fetched successfully")


@bp.get("/<user_id>/task-summary")
@require_roles(*READ_ROLES)
def user_task_summary(user_id: str):
    user = users_service.get_user(mongo_db(), user_id)
    return success(task_summary_for_user(db_session(), str(user["_id"])), "Task summary fetched successfully")


@bp.patch("/<user_id>")
@require_roles(*ADMIN_ROLES)
def update_user(user_id: str):
    db = mongo_db()
    user = users_service.update_user(db, user_id, json_body(), g.current_user)
    return success(users_service.user_profile(db, user), "User updated successfully")


@bp.patch("/<user_id>/status")
@require_roles(*ADMIN_ROLES)
def update_user_status(user_id: str):
    db = mongo_db()
    user = users_service.set_user_status(db, user_id, json_body().get("active"), g.current_user)
    return success(serialize(user), "User status updated successfully")


@bp.patch("/<user_id>/reset-password")
@require_roles(*ADMIN_ROLES)
def reset_user_password(user_id: str):
    temporary = users_service.reset_password(mongo_db(), user_id, g.current_user)
    return success({"temporary_password": temporary}, "Password reset successfully")


@bp.delete("/<user_id>")
@require_roles(*ADMIN_ROLES)
def delete_user(user_id: str):
    users_service.delete_user(mongo_db(), user_id, g.current_user)
    return success(message="User deleted successfully")
