"""
app/settings/__init__.py
------------------------
System settings blueprint.
URL prefix: /settings
"""
from flask import Blueprint

settings = Blueprint('settings', __name__)

from app.settings import routes  # noqa: E402, F401
from app.settings import models  # noqa: E402, F401
