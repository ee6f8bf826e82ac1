from __future__ import annotations

from flask import Blueprint, g, request

from app.workhub.csv_export import csv_response
from app.workhub.mongo import mongo_db
from app.workhub.rbac import MANAGE_ROLES, READ_ROLES, require_roles
from app.workhub.responses import json_body, paginated, parse_page_params, success
from app.workhub.utils import optional_str
from app.workhub.modules.locations import service as location_service

bp = Blueprint("locations", __name__)


@bp.post("/")
@require_roles(*MANAGE_ROLES)
def create_locations():
    db = mongo_db()
    docs = location_service.create_locations(db, json_body().get("addresses"), g.current_user)
    return success(
        location_service.enrich_locations(db, docs),
        f"{len(docs)} locations created successfully",
        201,
    )


@bp.get("/")
@require_roles(*READ_ROLES)
def list_locations():
    params = parse_page_params()
    records, total = location_service.list_locations(mongo_db(), params, organization_id=request.args.get("organization_id"))
    return paginated(records, total, params, "Locations fetched successfully")


@bp.get("/all")
@require_roles(*READ_ROLES)
def all_locations():
    return success(location_service.all_locations(mongo_db()), "Locations fetched successfully")


@bp.get("/my")
@require_roles(*READ_ROLES)
def my_locations():
    params = parse_page_params()
    records, total = location_service.list_locations(mongo_db(), params, created_by=g.current_user["_id"])
    return paginated(records, total, params, "Locations fetched successfully")


@bp.post("/export-csv")
@require_roles(*READ_ROLES)
def export_locations_csv():
    payload = json_body()
    search = optional_str(payload.get("search_string"))
    rows = location_service.export_location_rows(mongo_db(), search, payload.get("organization_id"))
    return csv_response(rows, "locations")


@bp.get("/<location_id>")
@require_roles(*READ_ROLES)
def get_location(location_id: str):
    db = mongo_db()
    return success(
        location_service.location_detail(db, location_service.get_location(db, location_id)),
        "Location fetched successfully",
    )


@bp.patch("/<location_id>")
@require_roles(*MANAGE_ROLES)
def update_location(location_id: str):
    db = mongo_db()
    location = location_service.update_location(db, location_id, json_body(), g.current_user)
    return success(location_service.location_detail(db, location), "Location updated successfully")


@bp.delete("/<location_id>")
@require_roles(*MANAGE_ROLES)
def delete_location(location_id: str):
    location_service.delete_location(mongo_db(), location_id, g.current_user)
    return success(message="Location deleted successfully")
