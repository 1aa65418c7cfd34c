# embedq/core/worker/text.py
"""
Text composition for embeddings.

Each entity kind has a builder that turns an enriched row into the single
string sent to the embedding provider. Parts are joined with '. ' and only
present (non-empty) fields contribute.
"""

from __future__ import annotations

import json
from decimal import Decimal
from typing import Any, Callable, Mapping, Optional

from embedq.core.types.status import EntityKind

PART_SEPARATOR = '. '

_PRICE_LABELS = {1: 'budget', 2: 'moderate', 3: 'higher-end', 4: 'luxury'}
_PRICE_SYMBOL = '₹'


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    if isinstance(value, (list, tuple, dict)):
        return len(value) == 0
    return False


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def _format_number(value: Any) -> str:
    # 4.0 -> '4', 4.5 -> '4.5'
    return f'{float(value):g}'


def _stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    return json.dumps(value, default=str, ensure_ascii=False, separators=(',', ':'))


def _flatten(data: Any) -> Optional[str]:
    """'k: v, k2: v2' for the non-empty entries of a mapping, or None."""
    if not isinstance(data, Mapping):
        return None
    entries = [f'{key}: {_stringify(value)}' for key, value in data.items() if not _is_blank(value)]
    return ', '.join(entries) if entries else None


def _labels(value: Any) -> Optional[str]:
    if not isinstance(value, (list, tuple)):
        return None
    labels = [str(label) for label in value if not _is_blank(label)]
    return ', '.join(labels) if labels else None


def _price_fragment(content_data: Any) -> Optional[str]:
    if not isinstance(content_data, Mapping):
        return None

    level = content_data.get('price_level') or content_data.get('priceLevel')
    if isinstance(level, bool) or not isinstance(level, int):
        level = None
    label = content_data.get('price_label') or None
    symbol = content_data.get('price_text') or None
    if level is None and label is None and symbol is None:
        return None

    label = label or _PRICE_LABELS.get(level)  # type: ignore[arg-type]
    if symbol is None and level in _PRICE_LABELS:
        symbol = _PRICE_SYMBOL * level  # type: ignore[operator]

    parts: list[str] = []
    if symbol:
        parts.append(f'Price {symbol}')
    if label:
        parts.append(f'Pricing {label}')
    return ' '.join(parts) if parts else None


def _join(parts: list[str], what: str) -> str:
    text = PART_SEPARATOR.join(parts)
    if not text.strip():
        raise ValueError(f'No meaningful text content found in {what} data')
    return text


def compose_recommendation_text(record: Mapping[str, Any]) -> str:
    """Build the embedding text of an enriched recommendation row."""
    parts: list[str] = []

    def add(prefix: str, key: str) -> None:
        value = record.get(key)
        if not _is_blank(value):
            parts.append(f'{prefix}: {value}')

    add('Type', 'content_type')
    add('Title', 'title')
    add('Description', 'description')
    if tags := _labels(record.get('labels')):
        parts.append(f'Tags: {tags}')
    if _is_number(record.get('rating')):
        parts.append(f'Rating: {_format_number(record["rating"])}/5')

    add('Place', 'place_name')
    add('Address', 'place_address')
    add('Service', 'service_name')
    add('Service Type', 'service_type')
    add('Business', 'business_name')
    add('Service Address', 'address')
    add('By', 'user_name')

    content_data = record.get('content_data')
    if price := _price_fragment(content_data):
        parts.append(price)
    if details := _flatten(content_data):
        parts.append(f'Details: {details}')
    if metadata := _flatten(record.get('metadata')):
        parts.append(f'Metadata: {metadata}')

    return _join(parts, 'recommendation')


def compose_annotation_text(record: Mapping[str, Any]) -> str:
    """Build the embedding text of an enriched annotation (place review) row."""
    parts: list[str] = []

    def add(prefix: str, key: str) -> None:
        value = record.get(key)
        if not _is_blank(value):
            parts.append(f'{prefix}: {value}')

    add('Place', 'place_name')
    add('Address', 'place_address')
    add('Reviewer', 'user_name')
    add('Review', 'notes')
    if tags := _labels(record.get('labels')):
        parts.append(f'Tags: {tags}')
    if companions := _labels(record.get('went_with')):
        parts.append(f'Went with: {companions}')
    rating = record.get('rating')
    if _is_number(rating) and rating:
        parts.append(f'Rating: {_format_number(rating)}/5 stars')
    add('Visited', 'visit_date')
    if details := _flatten(record.get('metadata')):
        parts.append(f'Details: {details}')

    return _join(parts, 'annotation')


TEXT_BUILDERS: dict[EntityKind, Callable[[Mapping[str, Any]], str]] = {
    EntityKind.RECOMMENDATION: compose_recommendation_text,
    EntityKind.ANNOTATION: compose_annotation_text,
}


def compose_text(kind: EntityKind, record: Mapping[str, Any]) -> str:
    return TEXT_BUILDERS[kind](record)
