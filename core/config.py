"""
Admin Configuration.

AdminConfig is the immutable configuration an Admin instance is built from.
AdminSettings loads the same values from environment variables (ADMIN_ prefix)
so the host can construct a config without hard-coding it.
"""

from enum import Enum
from functools import lru_cache
from typing import Annotated, Iterable, Mapping

from pydantic import BaseModel, ConfigDict, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Feature(str, Enum):
    """Recognized feature flags."""

    DASHBOARD = "dashboard"
    SEARCH = "search"
    CMS = "cms"
    COMMANDS = "commands"
    JOBS = "jobs"

    def __str__(self) -> str:
        return self.value


DEFAULT_FEATURES: tuple[str, ...] = tuple(f.value for f in Feature)


class Features(BaseModel):
    """Ordered mapping from feature name to enabled flag."""

    model_config = ConfigDict(frozen=True)

    flags: dict[str, bool] = Field(default_factory=dict)

    @classmethod
    def of(cls, enabled: Iterable[str | Feature] = DEFAULT_FEATURES, **overrides: bool) -> "Features":
        flags: dict[str, bool] = {str(name).strip().lower(): True for name in enabled}
        for name, value in overrides.items():
            flags[name.lower()] = bool(value)
        return cls(flags=flags)

    @classmethod
    def from_mapping(cls, mapping: Mapping[str, bool]) -> "Features":
        return cls(flags={str(k).strip().lower(): bool(v) for k, v in mapping.items()})

    def is_enabled(self, name: str | Feature) -> bool:
        return self.flags.get(str(name).strip().lower(), False)

    def enabled(self) -> list[str]:
        return [name for name, on in self.flags.items() if on]


class AdminConfig(BaseModel):
    """Configuration of one Admin instance."""

    model_config = ConfigDict(frozen=True)

    title: str = "Admin"
    base_path: str = "/admin"
    default_locale: str = "en"
    theme: str = "admin"
    theme_variant: str = "light"
    nav_menu_code: str = "admin_main"
    features: Features = Field(default_factory=Features.of)

    def normalized_base_path(self) -> str:
        path = "/" + self.base_path.strip().strip("/")
        return "" if path == "/" else path


class AdminSettings(BaseSettings):
    """
    Admin settings loaded from environment variables.

    All variables use the ADMIN_ prefix except the server bind address,
    which keeps the SERVER_ names shared with other hosts.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    title: Annotated[str, Field(validation_alias="ADMIN_TITLE")] = "Admin"
    base_path: Annotated[str, Field(validation_alias="ADMIN_BASE_PATH")] = "/admin"
    default_locale: Annotated[str, Field(validation_alias="ADMIN_DEFAULT_LOCALE")] = "en"
    theme: Annotated[str, Field(validation_alias="ADMIN_THEME")] = "admin"
    theme_variant: Annotated[str, Field(validation_alias="ADMIN_THEME_VARIANT")] = "light"
    nav_menu_code: Annotated[str, Field(validation_alias="ADMIN_NAV_MENU_CODE")] = "admin_main"
    features: Annotated[
        str,
        Field(
            description="Comma separated list of enabled features",
            validation_alias="ADMIN_FEATURES",
        ),
    ] = ",".join(DEFAULT_FEATURES)
    modules: Annotated[
        str,
        Field(
            description="Comma separated list of modules loaded by the host",
            validation_alias="ADMIN_MODULES",
        ),
    ] = "web,commerce,esign"

    jwt_secret_key: Annotated[
        SecretStr,
        Field(
            description="HMAC secret for admin bearer tokens; empty disables auth",
            validation_alias="ADMIN_JWT_SECRET_KEY",
        ),
    ] = SecretStr("")
    jwt_algorithm: Annotated[str, Field(validation_alias="ADMIN_JWT_ALGORITHM")] = "HS256"
    login_path: Annotated[str, Field(validation_alias="ADMIN_LOGIN_PATH")] = "/admin/login"

    log_level: Annotated[str, Field(validation_alias="ADMIN_LOG_LEVEL")] = "INFO"
    server_host: Annotated[str, Field(validation_alias="SERVER_HOST")] = "127.0.0.1"
    server_port: Annotated[int, Field(validation_alias="SERVER_PORT")] = 8000

    def feature_list(self) -> list[str]:
        return [f.strip().lower() for f in self.features.split(",") if f.strip()]

    def module_list(self) -> list[str]:
        return [m.strip().lower() for m in self.modules.split(",") if m.strip()]

    def to_config(self) -> AdminConfig:
        return AdminConfig(
            title=self.title,
            base_path=self.base_path,
            default_locale=self.default_locale,
            theme=self.theme,
            theme_variant=self.theme_variant,
            nav_menu_code=self.nav_menu_code,
            features=Features.of(self.feature_list()),
        )


@lru_cache
def get_admin_settings() -> AdminSettings:
    """Get cached admin settings instance."""
    return AdminSettings()
