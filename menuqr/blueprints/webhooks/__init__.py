from flask import Blueprint

bp = Blueprint("webhooks", __name__)

# Import submodules so their @bp.route decorators register
from . import routes
