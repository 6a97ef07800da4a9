"""
app/utils/logging.py
───────────────────
Log setup for the POS service: a rotating file plus stdout.
"""
import os
import logging
from logging.handlers import RotatingFileHandler
from flask import has_request_context, request, session


class RequestFormatter(logging.Formatter):
    """
    Adds the request URL, client address and acting user id to each record
    when a request context is active.
    """
    def format(self, record):
        if has_request_context():
            record.url = request.url
            record.remote_addr = request.remote_addr
            record.user_id = session.get('user_id')
        else:
            record.url = None
            record.remote_addr = None
            record.user_id = None
        return super().format(record)


def _add_file_handler(app):
    try:
        log_dir = os.path.join(app.root_path, '..', 'logs')
        os.makedirs(log_dir, exist_ok=True)

        file_handler = RotatingFileHandler(
            os.path.join(log_dir, 'app.log'),
            maxBytes=5 * 1024 * 1024,
            backupCount=5
        )
        file_handler.setFormatter(RequestFormatter(
            '%(asctime)s | %(levelname)s | %(name)s | %(remote_addr)s | '
            'user=%(user_id)s | %(url)s | %(message)s'
        ))
        file_handler.setLevel(logging.INFO)
        app.logger.addHandler(file_handler)
    except OSError:
        app.logger.warning("Log directory not writable, logging to stdout only")


def setup_logging(app):
    """
    logs/app.log, 5MB x 5 backups:
        timestamp | level | logger | ip | user | url | message
    File logging is skipped under TESTING.
    """
    # app.logger is shared by name across app instances
    app.logger.handlers.clear()

    if not app.testing:
        _add_file_handler(app)

    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(logging.Formatter(
        '%(asctime)s | %(levelname)s | %(message)s'
    ))
    stream_handler.setLevel(logging.INFO)
    app.logger.addHandler(stream_handler)

    # The notification channel client logs under its module name
    logging.getLogger('app.notifications').setLevel(logging.INFO)

    app.logger.setLevel(logging.INFO)
    app.logger.info("POS engine startup")
