from typing import Iterable, List

from bson import ObjectId

from chatcore.utils.errors import ValidationError


def ensure_object_id(value: str, field: str) -> str:
    if not isinstance(value, str) or not ObjectId.is_valid(value):
        raise ValidationError(f"Invalid {field}: {value!r}")
    return value


def ensure_object_ids(values: Iterable[str], field: str) -> List[str]:
    ids = [ensure_object_id(v, field) for v in values]
    if not ids:
        raise ValidationError(f"{field} must not be empty")
    # keep first occurrence order, drop repeats
    return list(dict.fromkeys(ids))
