from __future__ import annotations

from flask import Blueprint, g, request

from app.workhub.mongo import ORGANIZATIONS, mongo_db
from app.workhub.responses import json_body, paginated, parse_page_params, success
from app.workhub.utils import find_live
from app.workhub.modules.departments import service as dept_service

bp = Blueprint("departments", __name__)


@bp.post("/")
def create_department():
    db = mongo_db()
    dept = dept_service.create_department(db, json_body(), g.current_user)
    return success(dept_service.department_detail(db, dept), "Department created successfully", 201)


@bp.get("/")
def list_departments():
    params = parse_page_params()
    filters = {k: request.args.get(k) for k in ("organization_id", "department_id", "status")}
    records, total = dept_service.list_departments(mongo_db(), params, filters)
    return paginated(records, total, params, "Departments fetched successfully")


@bp.get("/all")
def all_departments():
    return success(dept_service.all_departments(mongo_db()), "Departments fetched successfully")


@bp.get("/organization/<org_id>")
def departments_by_organization(org_id: str):
    db = mongo_db()
    find_live(db, ORGANIZATIONS, org_id, "Organization", {"_id": 1})
    params = parse_page_params()
    filters = {"organization_id": org_id, "status": request.args.get("status")}
    records, total = dept_service.list_departments(db, params, filters)
    return paginated(records, total, params, "Departments fetched successfully")


@bp.get("/<dept_id>")
def get_department(dept_id: str):
    db = mongo_db()
    return success(dept_service.department_detail(db, dept_service.get_department(db, dept_id)), "Department fetched successfully")


@bp.patch("/<dept_id>")
def update_department(dept_id: str):
    db = mongo_db()
    dept = dept_service.update_department(db, dept_id, json_body(), g.current_user)
    return success(dept_service.department_detail(db, dept), "Department updated successfully")


@bp.delete("/<dept_id>")
def delete_department(dept_id: str):
    dept_service.delete_department(mongo_db(), dept_id, g.current_user)
    return success(message="Department deleted successfully")
