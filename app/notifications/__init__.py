"""
app/notifications/__init__.py
-----------------------------
Notifications blueprint: full fetch, read/delete transitions and the
live event stream.
URL prefix: /notifications
"""
from flask import Blueprint

notifications = Blueprint('notifications', __name__)

from app.notifications import routes  # noqa: E402, F401
from app.notifications import models  # noqa: E402, F401
