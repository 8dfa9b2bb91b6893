# authrouter/policy.py
"""Per-user access policy, loaded once at startup from a YAML document.

    passthrough: false
    users:
      alice:
        entrypoint: /basicui/app?sitemap=home
        sitemaps:
          default: home
          allowed: [home, garden]
        paths:
          /paperui:
            allowed: false
"""
import logging
from pathlib import Path
from typing import Any, Mapping

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

logger = logging.getLogger(__name__)

WILDCARD = "*"


class PolicyError(Exception):
    pass


class PathRule(BaseModel):
    model_config = ConfigDict(frozen=True)

    # A rule without `allowed` denies, same as an explicit `allowed: false`.
    allowed: bool = False


class SitemapPolicy(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    default_sitemap: str = Field(default="", alias="default")
    allowed_sitemaps: tuple[str, ...] = Field(default=(), alias="allowed")

    @field_validator("allowed_sitemaps", mode="before")
    @classmethod
    def _none_is_empty(cls, value):
        return () if value is None else value

    @property
    def allows_all(self) -> bool:
        """Only a lone "*" switches the allow-list off; "*" next to names does not."""
        return self.allowed_sitemaps == (WILDCARD,)


class UserPolicy(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    entrypoint: str = ""
    sitemap_policy: SitemapPolicy = Field(default_factory=SitemapPolicy, alias="sitemaps")
    path_rules: dict[str, PathRule] = Field(default_factory=dict, alias="paths")

    @field_validator("sitemap_policy", mode="before")
    @classmethod
    def _no_sitemaps(cls, value):
        return {} if value is None else value

    @field_validator("path_rules", mode="before")
    @classmethod
    def _no_paths(cls, value):
        if value is None:
            return {}
        # `/x:` with nothing under it parses as None.
        if isinstance(value, Mapping):
            return {str(k): ({} if v is None else v) for k, v in value.items()}
        return value


class PolicyModel(BaseModel):
    """Read-only snapshot of the whole policy; never mutated after load."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    passthrough_enabled: bool = Field(default=False, alias="passthrough")
    users: dict[str, UserPolicy] = Field(default_factory=dict)

    @field_validator("users", mode="before")
    @classmethod
    def _no_users(cls, value):
        return {} if value is None else value

    @model_validator(mode="after")
    def _check_required_fields(self):
        for name, user in self.users.items():
            if not user.entrypoint:
                raise ValueError(f"The field `entrypoint` is missing for user '{name}'")
            if not user.sitemap_policy.default_sitemap:
                raise ValueError(f"The field `sitemaps.default` is missing for user '{name}'")
            if not user.sitemap_policy.allowed_sitemaps:
                raise ValueError(f"The field `sitemaps.allowed` is missing for user '{name}'")
        return self

    def lookup(self, username: str) -> UserPolicy | None:
        return self.users.get(username)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "PolicyModel":
        if data is None:
            data = {}
        if not isinstance(data, Mapping):
            raise PolicyError("policy document must be a mapping at the top level")
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise PolicyError(f"failed to validate config: {_first_error(exc)}") from exc


def _first_error(exc: ValidationError) -> str:
    err = exc.errors()[0]
    loc = ".".join(str(p) for p in err.get("loc", ()))
    msg = err.get("msg", "")
    # model_validator errors carry a "Value error, " prefix and no location.
    msg = msg.removeprefix("Value error, ")
    return f"{loc}: {msg}" if loc else msg


def load_policy(path: str | Path) -> PolicyModel:
    """Read, parse and validate the policy file; raise PolicyError on any failure."""
    path = Path(path)
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise PolicyError(f"could not read config file '{path}'") from exc

    try:
        data = yaml.safe_load(raw)
    except yaml.YAMLError as exc:
        raise PolicyError("could not parse config file, please ensure it is valid YAML") from exc

    policy = PolicyModel.from_mapping(data)
    logger.debug(
        "Loaded policy from %s (passthrough=%s, users=%d)",
        path, policy.passthrough_enabled, len(policy.users),
    )
    return policy
