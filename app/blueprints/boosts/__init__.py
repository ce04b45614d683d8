from flask import Blueprint

bp = Blueprint("boosts", __name__)

from . import routes  # noqa: E402,F401
