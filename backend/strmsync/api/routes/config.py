"""Runtime configuration routes — publish hot-reload change events."""

from typing import Any

from fastapi import APIRouter, Body, HTTPException

from strmsync.services import get_config_store

router = APIRouter()

_SECRET_FIELDS = {"token", "bot_token", "corp_secret"}


def _redact(values: dict[str, Any]) -> dict[str, Any]:
    out = {}
    for key, value in values.items():
        if isinstance(value, dict):
            out[key] = _redact(value)
        elif key in _SECRET_FIELDS and value:
            out[key] = "***"
        else:
            out[key] = value
    return out


@router.get("")
async def list_config():
    store = get_config_store()
    return {code: _redact(store.as_dict(code)) for code in store.codes()}


@router.get("/{code}")
async def get_config(code: str):
    try:
        return _redact(get_config_store().as_dict(code))
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown config: {code}")


@router.patch("/{code}")
async def update_config(code: str, changes: dict[str, Any] = Body(...)):
    """Replace fields of one config snapshot; subscribers pick it up immediately."""
    store = get_config_store()
    try:
        store.update(code, **changes)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"Unknown config: {code}")
    except (TypeError, ValueError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _redact(store.as_dict(code))
