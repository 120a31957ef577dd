"""
Recipient Link Builders.

Links carry an opaque signing token only; object-storage keys never appear
in anything sent to a recipient.
"""

from urllib.parse import quote

from modules.esign.core.config import DEFAULT_PUBLIC_BASE_URL


def _base(base_url: str) -> str:
    return (base_url or "").strip().rstrip("/") or DEFAULT_PUBLIC_BASE_URL


def _escape(token: str) -> str:
    return quote(token.strip(), safe="")


def build_sign_link(base_url: str, token: str) -> str:
    if not token.strip():
        return ""
    return f"{_base(base_url)}/sign/{_escape(token)}"


def build_completion_link(base_url: str, token: str) -> str:
    if not token.strip():
        return ""
    return f"{_base(base_url)}/sign/{_escape(token)}/complete"


def build_asset_contract_link(base_url: str, token: str) -> str:
    if not token.strip():
        return ""
    return f"{_base(base_url)}/api/v1/esign/signing/assets/{_escape(token)}"
