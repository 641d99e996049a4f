"""
Validate merged content against an output schema.

Supports the JSON-Schema subset the output schemas use: ``type`` (a name or
a list of names), ``required``, ``properties``, ``items`` and ``enum``.
Every violation is collected so a caller can fix them all at once.
"""

import logging

from videodocs.core.error_codes import SchemaValidationError

logger = logging.getLogger(__name__)

_TYPE_CHECKS = {
    'string': lambda v: isinstance(v, str),
    'number': lambda v: isinstance(v, (int, float)) and not isinstance(v, bool),
    'integer': lambda v: isinstance(v, int) and not isinstance(v, bool),
    'boolean': lambda v: isinstance(v, bool),
    'object': lambda v: isinstance(v, dict),
    'array': lambda v: isinstance(v, list),
    'null': lambda v: v is None,
}


def _type_name(value) -> str:
    if value is None:
        return 'null'
    if isinstance(value, bool):
        return 'boolean'
    if isinstance(value, (int, float)):
        return 'number'
    if isinstance(value, str):
        return 'string'
    if isinstance(value, list):
        return 'array'
    if isinstance(value, dict):
        return 'object'
    return type(value).__name__


def _field_path(parent: str, name: str) -> str:
    return f"{parent}.{name}" if parent else name


def _matches_type(value, expected) -> bool:
    names = expected if isinstance(expected, list) else [expected]
    # unknown type names are not enforced
    return any(_TYPE_CHECKS.get(name, lambda v: True)(value) for name in names)


def _check(value, schema: dict, path: str, violations: list[str]):
    expected = schema.get('type')
    if expected is not None and not _matches_type(value, expected):
        shown = ' or '.join(expected) if isinstance(expected, list) else expected
        violations.append(f"{path or '<root>'}: expected {shown}, got {_type_name(value)}")
        return

    if 'enum' in schema and value not in schema['enum']:
        allowed = ', '.join(str(v) for v in schema['enum'])
        violations.append(f"{path or '<root>'}: value {value!r} not in allowed values ({allowed})")

    if isinstance(value, dict):
        for name in schema.get('required', []):
            if name not in value:
                violations.append(f"{_field_path(path, name)}: required field missing")
        for name, sub_schema in schema.get('properties', {}).items():
            if name in value:
                _check(value[name], sub_schema, _field_path(path, name), violations)

    elif isinstance(value, list) and isinstance(schema.get('items'), dict):
        for i, item in enumerate(value):
            _check(item, schema['items'], f"{path}[{i}]", violations)


def collect_violations(content, schema: dict) -> list[str]:
    """Return every violation as 'field.path: reason', in document order."""
    violations: list[str] = []
    _check(content, schema or {}, '', violations)
    return violations


def validate_content(content, schema: dict):
    """
    Return content unchanged if it conforms to schema.
    Raises SchemaValidationError listing all violations otherwise.
    """
    violations = collect_violations(content, schema)
    if violations:
        logger.info("Schema validation failed with %d violation(s)", len(violations))
        raise SchemaValidationError(violations)
    return content
