from typing import Any, Optional, get_origin, get_args
from datetime import datetime, timezone
import logging
import re

import requests

from utils.errors import ValidationError

logger = logging.getLogger("marketplace_messaging")

TEMPLATE_VARIABLE_PATTERN = re.compile(r"\{\{\s*([a-z_]+)\s*\}\}", re.IGNORECASE)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(value: Optional[datetime]) -> Optional[str]:
    """
    Serializes a datetime as ISO8601, treating naive values as UTC
    (sqlite hands back naive datetimes)
    """
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def validate_payload(
    data: dict,
    payload_fields: list[dict],
    one_of_fields: list = None,
) -> None:
    """
    Validates an incoming payload against a list of field specs.
        - checks if the required fields are present and of the correct data type.
        - checks that at least one of one_of_fields is present and non-empty.

    Args:
        data: json payload
        payload_fields: list of dicts with payload field name, data type, required flag
        one_of_fields: list of optional fields, at least one of which must be present.

    Returns:
        None
    """
    if not isinstance(data, dict):
        raise ValidationError("payload must be a json object")

    errors = []

    for item in payload_fields:
        field_name = item["field"]
        expected_type = item["type"]
        required_field = item["required"]
        choices = item.get("choices")
        value = data.get(field_name)

        if value is None:
            if required_field:
                errors.append(f"payload missing required field: {field_name}")
            continue

        # handle generic types like list[str]
        origin = get_origin(expected_type)
        if origin is list:
            item_type = get_args(expected_type)[0]
            if not isinstance(value, list) or not all(
                isinstance(x, item_type) for x in value
            ):
                errors.append(
                    f"payload field '{field_name}' must be a list of {item_type.__name__}"
                )

        # bool is a subclass of int, don't let it through as a number
        elif expected_type is int and isinstance(value, bool):
            errors.append(f"payload field '{field_name}' must be of type int")

        # handle other types
        else:
            if not isinstance(value, expected_type):
                errors.append(
                    f"payload field '{field_name}' must be of type {expected_type.__name__}"
                )
            elif choices is not None and value not in choices:
                errors.append(
                    f"payload field '{field_name}' must be one of: {', '.join(choices)}"
                )

    if not errors:
        check_one_of_fields(data, one_of_fields)

    if errors:
        raise ValidationError("; ".join(errors))


def check_one_of_fields(data: dict, one_of_fields: list) -> None:
    """
    Checks that at least one field in one_of_fields is present and non-empty.
    Args:
        data: the incoming request JSON payload.
        one_of_fields: list of optional fields, at least one of which must be present.

    Returns:
        None
    """
    if one_of_fields:
        for field in one_of_fields:
            value = data.get(field)
            if value is not None and (
                not isinstance(value, str) or value.strip() != ""
            ):
                return

        raise ValidationError(
            f"one of the following fields must be provided in payload: {', '.join(one_of_fields)}"
        )


def sanitize_filename(filename: str) -> str:
    """Replaces anything outside [a-zA-Z0-9.-] so the name is safe in a storage path"""
    sanitized = re.sub(r"[^a-zA-Z0-9.\-]", "_", filename or "")
    return sanitized or "file"


def render_message_template(template: str, variables: dict) -> str:
    """
    Substitutes {{variable}} placeholders. Unknown or missing variables render as
    an empty string.

    Args:
        template: message body with placeholders
        variables: mapping of variable name to value

    Returns:
        the rendered message
    """

    def replace(match: re.Match) -> str:
        value = variables.get(match.group(1).lower())
        return "" if value is None else str(value)

    return TEMPLATE_VARIABLE_PATTERN.sub(replace, template)


def post_json(api_url: str, payload: dict, headers: dict = None, timeout: float = 5) -> Any:
    """
    Posts a json payload to the specified api url

    Args:
        api_url: url to post to
        payload: json payload
        headers: extra request headers
        timeout: seconds before giving up on the request

    Returns:
        the decoded json response, or None if the response has no body
    """
    request_headers = {"Content-Type": "application/json"}
    if headers:
        request_headers.update(headers)

    response = requests.post(
        api_url,
        json=payload,
        headers=request_headers,
        timeout=timeout,
    )
    response.raise_for_status()

    logger.debug(f"response status code: {response.status_code}")

    if not response.content:
        return None
    return response.json()
