"""
Structured logging with donor PII protection.

Donor contact details must never reach the logs, so structured extras are
sanitised before they are rendered.
"""
import json
import logging
import os
from datetime import datetime, timezone
from typing import Any, Dict, Optional

SENSITIVE_FIELDS = {
    'password',
    'password_hash',
    'token',
    'access_token',
    'secret',
    'email',
    'phone',
    'contact_phone',
    'emergency_contact_name',
    'emergency_contact_phone',
    'date_of_birth',
    'notes',
    'address',
    'text',
}

_STANDARD_ATTRS = {
    'name', 'msg', 'args', 'created', 'filename', 'funcName', 'levelname',
    'levelno', 'lineno', 'module', 'msecs', 'pathname', 'process',
    'processName', 'relativeCreated', 'thread', 'threadName', 'exc_info',
    'exc_text', 'stack_info', 'taskName', 'message',
}


def sanitize_value(value: Any) -> Any:
    if isinstance(value, dict):
        return sanitize_dict(value)
    if isinstance(value, (list, tuple)):
        return [sanitize_value(v) for v in value]
    return value


def sanitize_dict(data: Dict[str, Any]) -> Dict[str, Any]:
    return {
        k: '[REDACTED]' if k.lower() in SENSITIVE_FIELDS else sanitize_value(v)
        for k, v in data.items()
    }


class SanitizedJSONFormatter(logging.Formatter):
    """JSON formatter that redacts sensitive fields passed through `extra`."""

    def format(self, record):
        log_data = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key in log_data or key.startswith('_') or key in _STANDARD_ATTRS:
                continue
            if key.lower() in SENSITIVE_FIELDS:
                log_data[key] = '[REDACTED]'
            else:
                log_data[key] = sanitize_value(value)

        if record.exc_info:
            log_data['exception'] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def configure_logging(level: Optional[str] = None, fmt: Optional[str] = None) -> None:
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    fmt = (fmt or os.getenv("LOG_FORMAT", "json")).lower()

    handler = logging.StreamHandler()
    if fmt == "text":
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    else:
        handler.setFormatter(SanitizedJSONFormatter())

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(level)


logger = logging.getLogger("lifeline.events")


def log_domain_event(event_name: str, entity_type: Optional[str] = None, entity_id: Optional[str] = None,
                     result: str = 'success', **extra_fields):
    """
    Log a business event with structured data.

    Example:
        log_domain_event('donation_recorded', entity_type='Donation',
                         entity_id=donation_id, donor_id=donor_id)
    """
    event_data = {'event': event_name, 'result': result}
    if entity_type:
        event_data['entity_type'] = entity_type
    if entity_id:
        event_data['entity_id'] = entity_id
    event_data.update(sanitize_dict(extra_fields))

    if result in ('failure', 'error'):
        logger.error(f'Domain event: {event_name}', extra=event_data)
    elif result in ('warning', 'blocked', 'rejected'):
        logger.warning(f'Domain event: {event_name}', extra=event_data)
    else:
        logger.info(f'Domain event: {event_name}', extra=event_data)
