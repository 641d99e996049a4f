"""
Built-in output schema for tutorial-style documents, and schema loading.
"""

import json
import logging
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT_SCHEMA = {
    'type': 'object',
    'required': ['title', 'summary', 'sections'],
    'properties': {
        'title': {
            'type': 'string',
            'description': 'The title of the tutorial',
        },
        'summary': {
            'type': 'string',
            'description': 'A brief overview of what the tutorial covers',
        },
        'sections': {
            'type': 'array',
            'items': {
                'type': 'object',
                'required': ['title', 'content', 'steps'],
                'properties': {
                    'title': {'type': 'string', 'description': 'Section title'},
                    'content': {'type': 'string', 'description': 'Section overview'},
                    'steps': {
                        'type': 'array',
                        'items': {
                            'type': 'object',
                            'required': ['description', 'details'],
                            'properties': {
                                'description': {
                                    'type': 'string',
                                    'description': 'Step description',
                                },
                                'details': {
                                    'type': 'string',
                                    'description': 'Detailed explanation of the step',
                                },
                                'duration': {
                                    'type': 'string',
                                    'description': 'Estimated time for this step (optional)',
                                },
                                'materials': {
                                    'type': 'array',
                                    'items': {'type': 'string'},
                                    'description': 'Required materials or tools (optional)',
                                },
                            },
                        },
                    },
                },
            },
        },
        'difficulty': {
            'type': 'string',
            'enum': ['beginner', 'intermediate', 'advanced'],
            'description': 'The difficulty level of the tutorial',
        },
        'keywords': {
            'type': 'array',
            'items': {'type': 'string'},
            'description': 'Relevant keywords for searchability',
        },
        'materials': {
            'type': 'array',
            'items': {
                'type': 'object',
                'required': ['name'],
                'properties': {
                    'name': {'type': 'string'},
                    'quantity': {'type': 'string'},
                    'notes': {'type': 'string'},
                },
            },
            'description': 'Everything needed for the whole tutorial (optional)',
        },
        'timeEstimate': {
            'type': 'string',
            'description': 'Total time needed (optional)',
        },
    },
}


def load_schema(path: Path) -> dict:
    """Read an output schema from a JSON file."""
    with open(path, 'r', encoding='utf-8') as f:
        schema = json.load(f)
    if not isinstance(schema, dict):
        raise ValueError(f"Schema file {path} must contain a JSON object")
    logger.info("Loaded output schema from %s", path)
    return schema
