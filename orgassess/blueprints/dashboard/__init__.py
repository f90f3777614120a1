from flask import Blueprint

bp = Blueprint("dashboard", __name__)

# Import routes so their @bp decorators register
from . import routes  # noqa: E402,F401
