from __future__ import annotations

from flask import request


def payload_from_request(*fields: str) -> dict:
    """Collect the named fields from a JSON body or an HTML form."""
    if request.is_json:
        body = request.get_json(silent=True) or {}
        return {f: body.get(f) for f in fields}
    return {f: request.form.get(f) for f in fields}
