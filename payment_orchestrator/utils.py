"""Small helpers shared by the provider adapters."""
from typing import Mapping


def get_header(headers: Mapping[str, str], name: str) -> str:
    """Case-insensitive header lookup; empty string when absent."""
    wanted = name.lower()
    for key, value in headers.items():
        if key.lower() == wanted:
            return value or ""
    return ""
