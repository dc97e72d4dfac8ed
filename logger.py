"""Rotating file + console logging for the portal."""
import logging
import os
from logging.handlers import RotatingFileHandler

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(module)s:%(lineno)d | %(message)s"


def init_logging(app, log_dir=None, level_name=None):
    log_dir = log_dir or app.config.get('LOG_DIR') or os.path.join(app.instance_path, 'logs')
    level_name = (level_name or app.config.get('LOG_LEVEL') or 'INFO').upper()
    level = getattr(logging, level_name, logging.INFO)

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt="%Y-%m-%dT%H:%M:%S%z")

    handlers = []
    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(level)
    stream_handler.setFormatter(formatter)
    handlers.append(stream_handler)

    log_path = None
    try:
        os.makedirs(log_dir, exist_ok=True)
        log_path = os.path.join(log_dir, 'portal.log')
        file_handler = RotatingFileHandler(log_path, maxBytes=5_000_000, backupCount=5, encoding='utf-8')
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)
    except OSError:
        # Read-only deployments still get console logs.
        log_path = None

    # Module loggers (models, workflow, realtime) hang off the root logger.
    root = logging.getLogger()
    root.setLevel(level)
    for handler in list(root.handlers):
        if getattr(handler, '_portal_handler', False):
            root.removeHandler(handler)
    for handler in handlers:
        handler._portal_handler = True
        root.addHandler(handler)

    app.logger.handlers = []
    app.logger.setLevel(level)
    app.logger.propagate = True

    app.logger.info("Logging initialized (file=%s, level=%s)", log_path or '-', level_name)
    return app.logger
