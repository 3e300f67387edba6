"""Shared test helpers."""

from typing import Dict


def auth(token: str) -> Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
