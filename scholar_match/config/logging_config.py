import asyncio
import functools
import logging
import logging.config
import os
from datetime import datetime

LOG_MAX_BYTES = 10 * 1024 * 1024


def _rotating(log_dir, filename, level, formatter, backups=5):
    return {
        'class': 'logging.handlers.RotatingFileHandler',
        'level': level,
        'formatter': formatter,
        'filename': os.path.join(log_dir, filename),
        'maxBytes': LOG_MAX_BYTES,
        'backupCount': backups,
    }


def _logger(handlers, level='INFO'):
    return {'handlers': handlers, 'level': level, 'propagate': False}


def build_logging_config(log_dir="logs", level=None):
    """dictConfig for the service: console, rotating app/error files, request and telemetry logs"""
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()

    return {
        'version': 1,
        'disable_existing_loggers': False,
        'formatters': {
            'standard': {
                'format': '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
            },
            'detailed': {
                'format': '%(asctime)s [%(levelname)s] %(name)s:%(lineno)d: %(message)s'
            },
            # One JSON object per line for request logs
            'json': {
                'format': '{"timestamp": "%(asctime)s", "level": "%(levelname)s", '
                          '"logger": "%(name)s", "message": "%(message)s"}'
            },
            # Telemetry messages are already JSON
            'bare': {
                'format': '%(asctime)s %(message)s'
            },
        },
        'handlers': {
            'console': {
                'class': 'logging.StreamHandler',
                'level': level,
                'formatter': 'standard',
                'stream': 'ext://sys.stdout',
            },
            'app_file': _rotating(log_dir, 'scholar_match.log', 'DEBUG', 'detailed'),
            'error_file': _rotating(log_dir, 'errors.log', 'ERROR', 'detailed'),
            'request_file': _rotating(log_dir, 'api_requests.log', 'INFO', 'json'),
            'telemetry_file': _rotating(log_dir, 'telemetry.log', 'INFO', 'bare', backups=3),
        },
        'loggers': {
            '': _logger(['console', 'app_file', 'error_file'], 'DEBUG'),
            'uvicorn': _logger(['console', 'app_file']),
            'uvicorn.error': _logger(['console', 'error_file']),
            'uvicorn.access': _logger(['request_file']),
            'scholar_match.api': _logger(['console', 'request_file', 'error_file']),
            # Stage events go to their own file only; stdout stays readable
            'scholar_match.core.telemetry': _logger(['telemetry_file']),
            'scholar_match.core': _logger(['console', 'app_file', 'error_file'], 'DEBUG'),
            'scholar_match.match_agent': _logger(['console', 'app_file', 'error_file'], 'DEBUG'),
        },
    }


def setup_logging(log_dir=None, level=None):
    """Setup logging configuration for the application"""
    log_dir = log_dir or os.getenv("LOG_DIR", "logs")
    os.makedirs(log_dir, exist_ok=True)

    logging.config.dictConfig(build_logging_config(log_dir, level))

    logger = logging.getLogger(__name__)
    logger.info(f"Logging initialized, files in {os.path.abspath(log_dir)}")


# Performance logging decorator
def log_execution_time(logger):
    """Decorator to log execution time of functions (plain or coroutine)"""
    def report(func, start_time, error=None):
        elapsed = (datetime.now() - start_time).total_seconds()
        if error is not None:
            logger.error(f"{func.__name__} failed after {elapsed:.4f} seconds: {str(error)}")
        else:
            logger.info(f"{func.__name__} executed in {elapsed:.4f} seconds")

    def decorator(func):
        if asyncio.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args, **kwargs):
                start_time = datetime.now()
                try:
                    result = await func(*args, **kwargs)
                except Exception as e:
                    report(func, start_time, e)
                    raise
                report(func, start_time)
                return result
            return async_wrapper

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            start_time = datetime.now()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                report(func, start_time, e)
                raise
            report(func, start_time)
            return result
        return wrapper
    return decorator
