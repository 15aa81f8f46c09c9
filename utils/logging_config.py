# utils/logging_config.py

import json
import logging
import logging.handlers
import sys
from datetime import datetime
from pathlib import Path


def setup_logging(config, console: bool = True):
    """
    Configure root logging for the engine.

    Console output at the configured level, a rotating text log with
    function/line detail, and a rotating JSON log for structured events.

    Args:
        config: SystemConfig (uses log_dir and log_level)
        console: Also log to stdout
    """
    log_dir = Path(config.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    level = getattr(logging, str(config.log_level).upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for handler in list(root.handlers):
        if getattr(handler, '_engine_handler', False):
            root.removeHandler(handler)
            handler.close()

    handlers = []

    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))
        handlers.append(console_handler)

    # File handler (rotating)
    file_handler = logging.handlers.RotatingFileHandler(
        log_dir / "engine.log",
        maxBytes=10*1024*1024,  # 10 MB
        backupCount=5
    )
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'
    ))
    handlers.append(file_handler)

    # JSON handler for structured logs
    json_handler = logging.handlers.RotatingFileHandler(
        log_dir / "engine_structured.json",
        maxBytes=10*1024*1024,
        backupCount=5
    )
    json_handler.setLevel(logging.INFO)
    json_handler.setFormatter(JSONFormatter())
    handlers.append(json_handler)

    for handler in handlers:
        handler._engine_handler = True
        root.addHandler(handler)

    return root


def log_operation(logger: logging.Logger, operation: str, **kwargs):
    """Log structured operation data"""
    data = {
        'operation': operation,
        'timestamp': datetime.now().isoformat(),
        **kwargs
    }
    logger.info(json.dumps(data, default=str))


class JSONFormatter(logging.Formatter):
    """Format logs as JSON"""

    def format(self, record):
        log_data = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data)
