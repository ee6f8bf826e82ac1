from flask import Blueprint

from app.workhub.mongo import mongo_db
from app.workhub.rbac import READ_ROLES, require_roles
from app.workhub.responses import success
from app.workhub.modules.statistics.service import user_statistics

bp = Blueprint("statistics", __name__)


@bp.get("/users")
@require_roles(*READ_ROLES)
def users_statistics():
    return success(user_statistics(mongo_db()), "User statistics fetched successfully")
