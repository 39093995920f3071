from __future__ import annotations

import math
import re
from collections.abc import Iterable, Mapping
from datetime import date
from typing import Any

ZIP_RE = re.compile(r"^\d{5}(-\d{4})?$")
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+$")
WEBSITE_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)
BARE_DOMAIN_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9-]{1,61}[a-zA-Z0-9]\.[a-zA-Z]{2,}$")


class ValidationError(ValueError):
    pass


def require(value: Any, field: str) -> None:
    if value is None or str(value).strip() == "":
        raise ValidationError(f"{field} is required.")


def validate_enum(value: str | None, allowed: Iterable[str], field: str) -> None:
    if value is None:
        return
    allowed = list(allowed)
    if value not in allowed:
        raise ValidationError(f"{field} must be one of: {', '.join(sorted(allowed))}")


def parse_date(value: str | None, field: str) -> date | None:
    if value is None:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise ValidationError(f"{field} must be YYYY-MM-DD.") from exc


def validate_zip(value: str | None) -> None:
    if value is None or value == "":
        return
    if not ZIP_RE.match(value):
        raise ValidationError("zip_code must be in format XXXXX or XXXXX-XXXX.")


def validate_email(value: str | None, field: str) -> None:
    if value is None:
        return
    if not EMAIL_RE.match(value.strip()):
        raise ValidationError(f"{field} must be an email address.")


def validate_non_negative_int(value: Any, field: str) -> None:
    if value is None:
        return
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f"{field} must be a non-negative integer.")


def validate_non_negative_number(value: Any, field: str) -> None:
    if value is None:
        return
    if (
        isinstance(value, bool)
        or not isinstance(value, (int, float))
        or (isinstance(value, float) and not math.isfinite(value))
        or value < 0
    ):
        raise ValidationError(f"{field} must be a non-negative number.")


def validate_bool(value: Any, field: str) -> None:
    if value is None:
        return
    if not isinstance(value, bool):
        raise ValidationError(f"{field} must be true or false.")


def reject_unknown(fields: Mapping[str, Any], allowed: Iterable[str], kind: str) -> None:
    unknown = sorted(set(fields) - set(allowed))
    if unknown:
        raise ValidationError(f"Unknown {kind} field(s): {', '.join(unknown)}")


def reject_readonly(fields: Mapping[str, Any], readonly: Iterable[str]) -> None:
    present = sorted(set(fields) & set(readonly))
    if present:
        raise ValidationError(f"Field(s) cannot be changed: {', '.join(present)}")


def normalize_website(url: str | None) -> str | None:
    if not url:
        return url
    url = url.strip()
    if WEBSITE_SCHEME_RE.match(url):
        return url
    if url.lower().startswith("www.") or BARE_DOMAIN_RE.match(url):
        return f"https://{url}"
    return url
