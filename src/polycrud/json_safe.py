import json
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID


def json_safe(obj):
    if isinstance(obj, (datetime, date)):
        return obj.isoformat()
    if isinstance(obj, Decimal):
        return float(obj)
    if isinstance(obj, (set, frozenset, tuple)):
        return list(obj)
    if isinstance(obj, UUID):
        return str(obj)
    return str(obj)


def dumps(value: Any, **kwargs) -> str:
    return json.dumps(value, default=json_safe, **kwargs)
