from datetime import datetime

from flask import Blueprint, current_app

from app.workhub.responses import success

bp = Blueprint("routes", __name__)


@bp.get("/")
def index():
    return success(
        {"timestamp": datetime.utcnow().isoformat(), "version": current_app.config.get("API_VERSION")},
        "Workhub API is running",
    )


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """
    Fast health check for k8s probes. No DB access, minimal overhead.
    """
    return "ok", 200
