from os import environ as os_environ
from typing import Mapping
from pydantic import BaseModel, ConfigDict, Field, field_validator

ORIGIN_ENV_VARS = ("VITE_API_URL", "NEXT_PUBLIC_API_URL")
DEFAULT_ORIGIN = "https://api.akobot.in"
PROXY_MOUNT = "/api/proxy"
WILDCARD = "*"


class RewriteRule(BaseModel):
    """
    One entry of the rewrite table.

    ``source`` is a path of literal segments, optionally ending in ``*`` which
    captures zero or more remaining segments. ``destination`` is the backend
    path; its ``*`` segment is replaced with the captured remainder.
    """
    model_config = ConfigDict(frozen=True)

    source: str
    destination: str

    @field_validator("source")
    @classmethod
    def wildcard_must_be_last(cls, value: str) -> str:
        segments = [s for s in value.split("/") if s]
        if WILDCARD in segments[:-1]:
            raise ValueError(f"wildcard must be the last segment: {value!r}")
        return value

    @property
    def source_segments(self) -> tuple[str, ...]:
        return tuple(s for s in self.source.split("/") if s)

    @property
    def has_wildcard(self) -> bool:
        segments = self.source_segments
        return bool(segments) and segments[-1] == WILDCARD


DEFAULT_RULES = (
    RewriteRule(source="/api/auth/*", destination="/auth/*"),
    RewriteRule(source="/api/admin/*", destination="/api/admin/*"),
    RewriteRule(source="/api/main/*", destination="/*"),
    RewriteRule(source="/api/packages", destination="/api/packages"),
    RewriteRule(source="/api/packages/*", destination="/api/packages/*"),
    RewriteRule(source="/api/payment/*", destination="/api/payment/*"),
    RewriteRule(source="/api/apimodule/*", destination="/*"),
    RewriteRule(source="/api/provider/*", destination="/*"),
)

DEFAULT_FALLBACK = RewriteRule(source="/api/*", destination="/*")


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    origin: str = DEFAULT_ORIGIN
    rules: tuple[RewriteRule, ...] = Field(default=DEFAULT_RULES)
    fallback: RewriteRule | None = DEFAULT_FALLBACK
    timeout: float = 20.0

    @field_validator("origin")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


def resolve_origin(environ: Mapping[str, str]) -> str:
    """First non-empty origin variable wins, else the literal default."""
    for name in ORIGIN_ENV_VARS:
        value = environ.get(name, "").strip()
        if value:
            return value
    return DEFAULT_ORIGIN


def load_settings(environ: Mapping[str, str] | None = None) -> Settings:
    """Build the settings once at process start."""
    if environ is None:
        environ = os_environ
    return Settings(
        origin=resolve_origin(environ),
        timeout=float(environ.get("PROXY_TIMEOUT", "20.0")),
    )
