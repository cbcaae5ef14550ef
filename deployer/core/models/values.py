"""
Validated value objects — domain strings that are valid by construction.

Every type validates its raw input once, at construction, and is frozen
afterwards. Code further down the pipeline never re-validates.

    name = EnvironmentName.parse("staging")
    token = ApiToken.parse(raw, field="provider.api_token")

``parse()`` reports failures as ``deployer.core.errors.ValidationError``
carrying the field name. Secret-carrying types (Password, ApiToken) are
redacted in ``str()``, ``repr()`` and JSON dumps; only ``reveal()`` hands
out the raw value.
"""

from __future__ import annotations

import re
from typing import Any, ClassVar
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, SecretStr, field_validator
from pydantic import ValidationError as PydanticValidationError

from deployer.core.errors import ValidationError

REDACTED = "**********"


def _first_reason(error: PydanticValidationError) -> str:
    """Pull the human reason out of a pydantic error."""
    detail = error.errors()[0]
    ctx = detail.get("ctx") or {}
    if "error" in ctx:
        return str(ctx["error"])
    return detail.get("msg", "invalid value")


class ValueObject(BaseModel):
    """Base for single-string value objects."""

    model_config = ConfigDict(frozen=True)

    field_name: ClassVar[str] = "value"

    value: str

    @classmethod
    def parse(cls, raw: Any, field: str | None = None):
        """Validate ``raw`` and return an instance, or raise ValidationError."""
        try:
            return cls(value=raw)
        except PydanticValidationError as e:
            raise ValidationError(field or cls.field_name, _first_reason(e)) from None

    def redacted(self) -> str:
        return self.value

    def __str__(self) -> str:
        return self.value

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.value!r})"


class SecretValueObject(BaseModel):
    """Base for secrets: never shown unless ``reveal()`` is called."""

    model_config = ConfigDict(frozen=True)

    field_name: ClassVar[str] = "secret"

    value: SecretStr

    @classmethod
    def parse(cls, raw: Any, field: str | None = None):
        try:
            return cls(value=raw)
        except PydanticValidationError as e:
            raise ValidationError(field or cls.field_name, _first_reason(e)) from None

    def reveal(self) -> str:
        """Return the raw secret. Every call site is an audit point."""
        return self.value.get_secret_value()

    def redacted(self) -> str:
        return REDACTED

    def __str__(self) -> str:
        return REDACTED

    def __repr__(self) -> str:
        return f"{type(self).__name__}({REDACTED!r})"


# ── Names ───────────────────────────────────────────────────────


_NAME_EXAMPLES = "dev, staging, production, e2e-full, release-v1-2"


class EnvironmentName(ValueObject):
    """Unique, human-chosen environment identifier.

    Lowercase letters, digits and single dashes; must start with a letter
    because it is embedded in instance names.
    """

    field_name: ClassVar[str] = "environment.name"
    max_length: ClassVar[int] = 63

    @field_validator("value")
    @classmethod
    def _check(cls, v: str) -> str:
        if not v:
            raise ValueError("name cannot be empty")
        if len(v) > cls.max_length:
            raise ValueError(f"name must be {cls.max_length} characters or less, got {len(v)}")
        uppercase = "".join(c for c in v if c.isascii() and c.isupper())
        if uppercase:
            raise ValueError(f"contains uppercase letters: {uppercase} (valid: {_NAME_EXAMPLES})")
        invalid = sorted({c for c in v if not (c.isascii() and (c.islower() or c.isdigit() or c == "-"))})
        if invalid:
            raise ValueError(f"contains invalid characters: {''.join(invalid)} (valid: {_NAME_EXAMPLES})")
        if v[0].isdigit():
            raise ValueError("starts with a number")
        if v.startswith("-"):
            raise ValueError("starts with dash")
        if v.endswith("-"):
            raise ValueError("ends with dash")
        if "--" in v:
            raise ValueError("contains consecutive dashes")
        return v


class InstanceName(ValueObject):
    """VM/container name as accepted by LXD (a DNS-style hostname label)."""

    field_name: ClassVar[str] = "environment.instance_name"

    @field_validator("value")
    @classmethod
    def _check(cls, v: str) -> str:
        if not v:
            raise ValueError("instance name cannot be empty")
        if len(v) > 63:
            raise ValueError(f"instance name must be 63 characters or less, got {len(v)}")
        if not all(c.isascii() and (c.isalnum() or c == "-") for c in v):
            raise ValueError("instance name must contain only ASCII letters, numbers, and dashes")
        if v[0].isdigit() or v[0] == "-":
            raise ValueError("instance name must not start with a digit or dash")
        if v.endswith("-"):
            raise ValueError("instance name must not end with a dash")
        return v

    @classmethod
    def for_environment(cls, name: EnvironmentName, prefix: str = "deployer-vm") -> InstanceName:
        return cls.parse(f"{prefix}-{name.value}", field=cls.field_name)


class ProfileName(InstanceName):
    """LXD profile name, validated like an instance name."""

    field_name: ClassVar[str] = "provider.profile_name"


class Username(ValueObject):
    """Linux user name used for SSH logins."""

    field_name: ClassVar[str] = "ssh.username"

    @field_validator("value")
    @classmethod
    def _check(cls, v: str) -> str:
        if not v:
            raise ValueError("username cannot be empty")
        if len(v) > 32:
            raise ValueError(f"username must be 32 characters or less, got {len(v)} characters")
        if not (v[0].isascii() and (v[0].isalpha() or v[0] == "_")):
            raise ValueError("username must start with a letter (a-z, A-Z) or underscore (_)")
        if not all(c.isascii() and (c.isalnum() or c in "_-") for c in v):
            raise ValueError("username must contain only letters, digits, underscores, and hyphens")
        return v


# ── Network ─────────────────────────────────────────────────────


_LABEL_RE = re.compile(r"^[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?$")


def _check_domain(v: str) -> str:
    """Shared RFC 1035 domain checks; returns the lower-cased name."""
    if not v:
        raise ValueError("domain name cannot be empty")
    if any(c.isspace() for c in v):
        raise ValueError("domain cannot contain whitespace")
    v = v.lower()
    if len(v) > 253:
        raise ValueError(f"domain must be 253 characters or less, got {len(v)}")
    if "." not in v:
        raise ValueError("domain must have at least one dot (e.g., 'example.com')")
    if v.startswith(".") or v.endswith("."):
        raise ValueError("domain cannot start or end with a dot")
    if ".." in v:
        raise ValueError("domain cannot have consecutive dots")
    for label in v.split("."):
        if not _LABEL_RE.match(label):
            raise ValueError(
                f"invalid label '{label}': labels are 1-63 letters, digits or dashes "
                "and cannot start or end with a dash"
            )
    if v.rsplit(".", 1)[1].isdigit():
        raise ValueError("top-level domain cannot be numeric")
    return v


class DomainName(ValueObject):
    """Fully-qualified domain name, normalized to lowercase."""

    field_name: ClassVar[str] = "domain"

    @field_validator("value")
    @classmethod
    def _check(cls, v: str) -> str:
        return _check_domain(v)

    @property
    def tld(self) -> str:
        return self.value.rsplit(".", 1)[1]

    @property
    def subdomains(self) -> list[str]:
        return self.value.split(".")[:-1]


# RFC 5322 dot-atom local part
_LOCAL_PART_RE = re.compile(r"^[A-Za-z0-9!#$%&'*+/=?^_`{|}~-]+(\.[A-Za-z0-9!#$%&'*+/=?^_`{|}~-]+)*$")


class Email(ValueObject):
    """Email address (dot-atom local part, validated domain)."""

    field_name: ClassVar[str] = "admin_email"

    @field_validator("value")
    @classmethod
    def _check(cls, v: str) -> str:
        if not v:
            raise ValueError("email cannot be empty")
        if len(v) > 254:
            raise ValueError("email must be 254 characters or less")
        if v.count("@") != 1:
            raise ValueError("email must contain exactly one '@'")
        local, domain = v.split("@")
        if not local or len(local) > 64:
            raise ValueError("local part must be 1-64 characters")
        if not _LOCAL_PART_RE.match(local):
            raise ValueError(f"invalid local part '{local}'")
        return f"{local}@{_check_domain(domain)}"

    @property
    def local_part(self) -> str:
        return self.value.split("@")[0]

    @property
    def domain_part(self) -> str:
        return self.value.split("@")[1]


class ServiceEndpoint(ValueObject):
    """Absolute http(s) URL of a service, e.g. a health-check endpoint."""

    field_name: ClassVar[str] = "health_check"
    schemes: ClassVar[tuple[str, ...]] = ("http", "https")

    @field_validator("value")
    @classmethod
    def _check(cls, v: str) -> str:
        if not v:
            raise ValueError("URL cannot be empty")
        if any(c.isspace() for c in v):
            raise ValueError("URL cannot contain whitespace")
        parts = urlsplit(v)
        if not parts.scheme:
            raise ValueError("URL must include a scheme (http:// or https://)")
        if parts.scheme not in cls.schemes:
            raise ValueError(f"unsupported scheme '{parts.scheme}' (expected http or https)")
        if not parts.hostname:
            raise ValueError("URL must include a host")
        try:
            parts.port
        except ValueError as e:
            raise ValueError(f"invalid port: {e}") from None
        return v

    @property
    def scheme(self) -> str:
        return urlsplit(self.value).scheme

    @property
    def host(self) -> str:
        return urlsplit(self.value).hostname or ""

    @property
    def port(self) -> int:
        parts = urlsplit(self.value)
        return parts.port or (443 if parts.scheme == "https" else 80)

    @property
    def uses_tls(self) -> bool:
        return self.scheme == "https"


# ── Secrets ─────────────────────────────────────────────────────


class Password(SecretValueObject):
    field_name: ClassVar[str] = "admin_password"

    @field_validator("value")
    @classmethod
    def _check(cls, v: SecretStr) -> SecretStr:
        raw = v.get_secret_value()
        if len(raw) < 8:
            raise ValueError("password must be at least 8 characters")
        if len(raw) > 128:
            raise ValueError("password must be 128 characters or less")
        if any(ord(c) < 32 or ord(c) == 127 for c in raw):
            raise ValueError("password cannot contain control characters")
        return v


_TOKEN_RE = re.compile(r"^[A-Za-z0-9_.\-]+$")


class ApiToken(SecretValueObject):
    """Provider API token."""

    field_name: ClassVar[str] = "provider.api_token"

    @field_validator("value")
    @classmethod
    def _check(cls, v: SecretStr) -> SecretStr:
        raw = v.get_secret_value()
        if not raw:
            raise ValueError("API token cannot be empty")
        if len(raw) > 256:
            raise ValueError("API token must be 256 characters or less")
        if not _TOKEN_RE.match(raw):
            # Never echo the token itself
            raise ValueError("API token may only contain letters, digits, '_', '.' and '-'")
        return v
