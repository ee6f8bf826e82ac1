from __future__ import annotations

from flask import Blueprint, g, request

from app.workhub.mongo import mongo_db
from app.workhub.rbac import MANAGE_ROLES, READ_ROLES, require_roles
from app.workhub.responses import json_body, paginated, parse_page_params, success
from app.workhub.modules.groups import service as group_service

bp = Blueprint("groups", __name__)


@bp.post("/")
@require_roles(*MANAGE_ROLES)
def create_group():
    db = mongo_db()
    group = group_service.create_group(db, json_body(), g.current_user)
    return success(group_service.group_detail(db, group), "Group created successfully", 201)


@bp.get("/")
@require_roles(*READ_ROLES)
def list_groups():
    params = parse_page_params()
    records, total = group_service.list_groups(mongo_db(), params, {"department": request.args.get("department")})
    return paginated(records, total, params, "Groups fetched successfully")


@bp.get("/all")
@require_roles(*READ_ROLES)
def all_groups():
    return success(group_service.all_groups(mongo_db()), "Groups fetched successfully")


@bp.get("/<group_id>")
@require_roles(*READ_ROLES)
def get_group(group_id: str):
    db = mongo_db()
    return success(group_service.group_detail(db, group_service.get_group(db, group_id)), "Group fetched successfully")


@bp.get("/<group_id>/members")
@require_roles(*READ_ROLES)
def list_group_members(group_id: str):
    params = parse_page_params()
    filters = {"department": request.args.get("department"), "status": request.args.get("status")}
    records, total = group_service.list_group_members(mongo_db(), group_id, params, filters)
    return paginated(records, total, params, "Group members fetched successfully")


@bp.patch("/<group_id>")
@require_roles(*MANAGE_ROLES)
def update_group(group_id: str):
    db = mongo_db()
    group = group_service.update_group(db, group_id, json_body(), g.current_user)
    return success(group_service.group_detail(db, group), "Group updated successfully")


@bp.delete("/<group_id>")
@require_roles(*MANAGE_ROLES)
def delete_group(group_id: str):
    group_service.delete_group(mongo_db(), group_id, g.current_user)
    return success(message="Group deleted successfully")
