"""
E-Sign Module Core Package.

Contains configuration and link builders.
"""

from modules.esign.core.config import EsignSettings, get_esign_settings
from modules.esign.core.links import build_asset_contract_link, build_completion_link, build_sign_link

__all__ = [
    "EsignSettings",
    "get_esign_settings",
    "build_sign_link",
    "build_completion_link",
    "build_asset_contract_link",
]
