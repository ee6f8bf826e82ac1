from __future__ import annotations

from flask import Blueprint, g

from app.workhub.mongo import mongo_db, serialize
from app.workhub.rbac import MANAGE_ROLES, READ_ROLES, require_roles
from app.workhub.responses import json_body, paginated, parse_page_params, success
from app.workhub.modules.organizations import service as org_service

bp = Blueprint("organizations", __name__)


@bp.post("/")
@require_roles(*MANAGE_ROLES)
def create_organization():
    db = mongo_db()
    org = org_service.create_organization(db, json_body(), g.current_user)
    return success(org_service.organization_detail(db, org), "Organization created successfully", 201)


@bp.get("/")
@require_roles(*READ_ROLES)
def list_organizations():
    params = parse_page_params()
    records, total = org_service.list_organizations(mongo_db(), params)
    return paginated(records, total, params, "Organizations fetched successfully")


@bp.get("/all")
@require_roles(*READ_ROLES)
def all_organizations():
    return success(org_service.all_organizations(mongo_db()), "Organizations fetched successfully")


@bp.get("/my")
@require_roles(*READ_ROLES)
def my_organizations():
    params = parse_page_params()
    records, total = org_service.list_organizations(mongo_db(), params, created_by=g.current_user["_id"])
    return paginated(records, total, params, "Organizations fetched successfully")


@bp.get("/<org_id>")
@require_roles(*READ_ROLES)
def get_organization(org_id: str):
    db = mongo_db()
    return success(org_service.organization_detail(db, org_service.get_organization(db, org_id)), "Organization fetched successfully")


@bp.patch("/<org_id>")
@require_roles(*MANAGE_ROLES)
def update_organization(org_id: str):
    org = org_service.update_organization(mongo_db(), org_id, json_body(), g.current_user)
    return success(serialize(org), "Organization updated successfully")


@bp.delete("/<org_id>")
@require_roles(*MANAGE_ROLES)
def delete_organization(org_id: str):
    org_service.delete_organization(mongo_db(), org_id, g.current_user)
    return success(message="Organization deleted successfully")
