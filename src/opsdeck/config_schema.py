"""
JSON schemas for configuration validation.
"""

TRANSPORT_SCHEMA = {
    "type": "object",
    "properties": {
        "timeout": {"type": "number", "exclusiveMinimum": 0},
        "max_retries": {"type": "integer", "minimum": 0},
        "retry_delay": {"type": "number", "minimum": 0.0},
        "long_timeout": {"type": "number", "exclusiveMinimum": 0},
        "connect_test_timeout": {"type": "number", "exclusiveMinimum": 0},
    },
    "additionalProperties": False,
}

STREAM_SCHEMA = {
    "type": "object",
    "properties": {
        "reconnect_delay": {"type": "number", "minimum": 0.0},
        "heartbeat_interval": {"type": "number", "exclusiveMinimum": 0},
        "events_path": {"type": "string", "pattern": "^/"},
    },
    "additionalProperties": False,
}

POLLING_SCHEMA = {
    "type": "object",
    "properties": {
        "interval": {"type": "number", "exclusiveMinimum": 0},
        "backstop_interval": {"type": "number", "exclusiveMinimum": 0},
    },
    "additionalProperties": False,
}

STORE_SCHEMA = {
    "type": "object",
    "properties": {
        "error_ttl": {"type": "number", "exclusiveMinimum": 0},
    },
    "additionalProperties": False,
}

CACHE_SCHEMA = {
    "type": "object",
    "properties": {
        "enabled": {"type": "boolean"},
        "cache_dir": {"type": "string"},
        "filename": {"type": "string", "minLength": 1},
        "keep_days": {"type": "integer", "minimum": 1},
    },
    "additionalProperties": False,
}

LOGGING_SCHEMA = {
    "type": "object",
    "properties": {
        "level": {"type": "string", "enum": ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]},
        "format": {"type": "string", "enum": ["text", "json"]},
        "log_file": {"type": ["string", "null"]},
        "log_requests": {"type": "boolean"},
        "log_events": {"type": "boolean"},
    },
    "additionalProperties": False,
}

CONFIG_SCHEMA = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "opsdeck configuration",
    "type": "object",
    "properties": {
        "base_url": {"type": ["string", "null"]},
        "preferences_path": {"type": "string"},
        "transport": TRANSPORT_SCHEMA,
        "stream": STREAM_SCHEMA,
        "polling": POLLING_SCHEMA,
        "store": STORE_SCHEMA,
        "cache": CACHE_SCHEMA,
        "logging": LOGGING_SCHEMA,
    },
    "additionalProperties": False,
}
