from flask import jsonify
from sqlalchemy import text

from orgassess.extensions import db, limiter
from . import bp


@bp.get("/healthz")
@limiter.exempt
def healthz():
    return {"status": "ok"}, 200


@bp.get("/readyz")
@limiter.exempt
def readyz():
    db.session.execute(text("SELECT 1"))
    return jsonify(status="ok", database="ok")
