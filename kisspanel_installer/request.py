"""Installation request model and resolver.

The resolver turns CLI flags, interactive answers and persisted defaults into
one immutable InstallationRequest. Precedence is:

    explicit flags > interactive answers > persisted defaults > built-ins

Each field is validated on its own, in a fixed order, and the first invalid
field stops resolution.
"""

import logging
import re
import secrets
import socket
import string
from dataclasses import dataclass, field
from functools import partial
from types import MappingProxyType
from typing import Any, Callable, Mapping

from kisspanel_installer.errors import ValidationError

_logging = logging.getLogger(__name__)

PORT_MIN = 2000
PORT_MAX = 9999
DEFAULT_PORT = 2006
LANGUAGES = ("en", "es")
PASSWORD_LENGTH = 16
PASSWORD_SYMBOLS = "!#$%&*+-=?@^_"

CORE_COMPONENTS = ("nginx", "sqlite")

# Optional components and whether each is enabled by default.
DEFAULT_COMPONENTS: dict[str, bool] = {
    "apache": True,
    "phpfpm": True,
    "multiphp": False,
    "mariadb": True,
    "mysql8": False,
    "postgresql": False,
    "exim": True,
    "dovecot": True,
    "sieve": False,
    "clamav": True,
    "spamassassin": True,
    "bind": True,
    "vsftpd": True,
    "proftpd": False,
    "iptables": True,
    "fail2ban": True,
    "quota": False,
}
OPTIONAL_COMPONENTS = tuple(DEFAULT_COMPONENTS)

DEFAULT_MODES: dict[str, bool] = {
    "interactive": True,
    "force": False,
    "api": True,
}

HOSTNAME_PATTERN = re.compile(
    r"^[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?"
    r"(\.[a-zA-Z0-9]([a-zA-Z0-9-]{0,61}[a-zA-Z0-9])?)*$"
)
EMAIL_PATTERN = re.compile(r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$")
FALLBACK_EMAIL = "root@localhost.localdomain"


def validate_port(value: Any) -> int:
    text = str(value).strip()
    if not re.fullmatch(r"[0-9]+", text):
        raise ValidationError("port", f"Port must be a number between {PORT_MIN}-{PORT_MAX}, got '{value}'")
    port = int(text)
    if not PORT_MIN <= port <= PORT_MAX:
        raise ValidationError("port", f"Port must be between {PORT_MIN}-{PORT_MAX}, got {port}")
    return port


def validate_hostname(value: str) -> str:
    if len(value) > 253 or not HOSTNAME_PATTERN.fullmatch(value):
        raise ValidationError("hostname", f"Invalid hostname: '{value}'")
    return value


def validate_email(value: str) -> str:
    if not EMAIL_PATTERN.fullmatch(value):
        raise ValidationError("email", f"Invalid email address format: '{value}'")
    return value


def default_email(hostname: str) -> str:
    """root@<hostname>, or root@localhost.localdomain for single-label hosts."""
    address = f"root@{hostname}"
    if EMAIL_PATTERN.fullmatch(address):
        return address
    _logging.info(f"{address} is not a deliverable address; using {FALLBACK_EMAIL}")
    return FALLBACK_EMAIL


def validate_password(value: str) -> str:
    """Check an admin password. The empty string means "none supplied"."""
    if not value:
        return ""
    if not (
        value[0].isascii()
        and value[0].isalpha()
        and re.search(r"[A-Z]", value)
        and re.search(r"[a-z]", value)
        and re.search(r"[0-9]", value)
    ):
        raise ValidationError(
            "password",
            "Password must start with letter and include upper, lower, and number",
        )
    return value


def validate_language(value: str) -> str:
    if value not in LANGUAGES:
        raise ValidationError("lang", f"Supported languages: {', '.join(LANGUAGES)}")
    return value


def parse_toggle(flag: str, value: Any) -> bool:
    """Accept only the literal tokens "yes" and "no"."""
    if isinstance(value, bool):
        return value
    if value == "yes":
        return True
    if value == "no":
        return False
    raise ValidationError(flag, f"Value for --{flag} must be 'yes' or 'no', got '{value}'")


def generate_password(length: int = PASSWORD_LENGTH) -> str:
    """Generate an admin password that passes validate_password.

    The first character is always a letter; the rest guarantees at least one
    uppercase, lowercase, digit and symbol.
    """
    if length < 5:
        raise ValueError("password length must be at least 5")
    letters = string.ascii_letters
    alphabet = letters + string.digits + PASSWORD_SYMBOLS
    rng = secrets.SystemRandom()

    first = rng.choice(letters)
    rest = [
        rng.choice(string.ascii_lowercase),
        rng.choice(string.ascii_uppercase),
        rng.choice(string.digits),
        rng.choice(PASSWORD_SYMBOLS),
    ]
    rest.extend(rng.choice(alphabet) for _ in range(length - 1 - len(rest)))
    rng.shuffle(rest)
    return first + "".join(rest)


@dataclass(frozen=True)
class InstallationRequest:
    port: int
    hostname: str
    admin_email: str
    admin_password: str
    language: str
    components: Mapping[str, bool]
    interactive: bool = False
    force: bool = False
    api: bool = True
    password_generated: bool = False

    def is_enabled(self, name: str) -> bool:
        if name in CORE_COMPONENTS:
            return True
        return bool(self.components.get(name, False))

    @property
    def enabled_components(self) -> list[str]:
        return list(CORE_COMPONENTS) + [n for n in OPTIONAL_COMPONENTS if self.is_enabled(n)]

    @property
    def panel_url(self) -> str:
        return f"https://{self.hostname}:{self.port}"

    def to_defaults(self) -> dict[str, Any]:
        """Snapshot for the persisted defaults file. Never includes the password."""
        snapshot: dict[str, Any] = {
            "port": self.port,
            "lang": self.language,
            "hostname": self.hostname,
            "email": self.admin_email,
        }
        for name in OPTIONAL_COMPONENTS:
            snapshot[name] = "yes" if self.is_enabled(name) else "no"
        snapshot["interactive"] = "yes" if self.interactive else "no"
        snapshot["force"] = "yes" if self.force else "no"
        snapshot["api"] = "yes" if self.api else "no"
        return snapshot


@dataclass
class RequestBuilder:
    """Mutable staging area used only while a request is being resolved."""

    port: int | None = None
    hostname: str | None = None
    email: str | None = None
    password: str | None = None
    language: str | None = None
    components: dict[str, bool] = field(default_factory=dict)
    modes: dict[str, bool] = field(default_factory=dict)

    def apply(self, flag: str, value: Any) -> None:
        setter = FLAG_SETTERS.get(flag)
        if setter is None:
            raise ValidationError(flag, f"Unknown option: --{flag}")
        setter(self, value)


def _set_port(builder: RequestBuilder, value: Any) -> None:
    builder.port = validate_port(value)


def _set_hostname(builder: RequestBuilder, value: Any) -> None:
    builder.hostname = validate_hostname(str(value))


def _set_email(builder: RequestBuilder, value: Any) -> None:
    builder.email = validate_email(str(value))


def _set_password(builder: RequestBuilder, value: Any) -> None:
    builder.password = validate_password(str(value)) or None


def _set_language(builder: RequestBuilder, value: Any) -> None:
    builder.language = validate_language(str(value))


def _set_component(name: str, builder: RequestBuilder, value: Any) -> None:
    builder.components[name] = parse_toggle(name, value)


def _set_mode(name: str, builder: RequestBuilder, value: Any) -> None:
    builder.modes[name] = parse_toggle(name, value)


def _set_core(name: str, builder: RequestBuilder, value: Any) -> None:
    if not parse_toggle(name, value):
        raise ValidationError(name, f"{name} is a core component and cannot be disabled")


# Closed set of known flags, in validation order.
FLAG_SETTERS: dict[str, Callable[[RequestBuilder, Any], None]] = {
    "port": _set_port,
    "lang": _set_language,
    "hostname": _set_hostname,
    "email": _set_email,
    "password": _set_password,
    **{name: partial(_set_core, name) for name in CORE_COMPONENTS},
    **{name: partial(_set_component, name) for name in OPTIONAL_COMPONENTS},
    **{name: partial(_set_mode, name) for name in DEFAULT_MODES},
}

# Fields solicited interactively when left empty: (builder attribute, flag, label)
PROMPTED_FIELDS = (
    ("hostname", "hostname", "Enter hostname"),
    ("port", "port", "Enter panel port"),
    ("email", "email", "Enter admin email"),
)


def _apply_all(builder: RequestBuilder, values: Mapping[str, Any]) -> None:
    unknown = [k for k in values if k not in FLAG_SETTERS]
    if unknown:
        raise ValidationError(unknown[0], f"Unknown option: --{unknown[0]}")
    for flag in FLAG_SETTERS:
        if flag in values and values[flag] is not None and values[flag] != "":
            builder.apply(flag, values[flag])


def validate_flags(values: Mapping[str, Any]) -> None:
    """Check a flag mapping without resolving it into a request.

    Raises:
        ValidationError: On an unknown flag or the first invalid value
    """
    _apply_all(RequestBuilder(), values)


def _system_hostname() -> str:
    return socket.getfqdn() or socket.gethostname()


def resolve(
    args: Mapping[str, Any],
    persisted_defaults: Mapping[str, Any] | None = None,
    interactive_allowed: bool = False,
    ask: Callable[[str, str], str] | None = None,
    system_hostname: Callable[[], str] = _system_hostname,
) -> InstallationRequest:
    """Resolve flags, prompts and defaults into a validated request.

    Args:
        args: Flag name to raw value; None means "not given"
        persisted_defaults: Optional snapshot of a previous configuration
        interactive_allowed: False when no terminal is attached
        ask: Callback (label, default) -> answer used for interactive prompts

    Raises:
        ValidationError: On the first invalid field
    """
    explicit = RequestBuilder()
    _apply_all(explicit, args)

    fallback = RequestBuilder()
    if persisted_defaults:
        _apply_all(fallback, persisted_defaults)

    modes = {**DEFAULT_MODES, **fallback.modes, **explicit.modes}
    interactive = modes["interactive"]

    if interactive and interactive_allowed and ask is not None:
        for attr, flag, label in PROMPTED_FIELDS:
            if getattr(explicit, attr) is not None:
                continue
            default = getattr(fallback, attr)
            if default is None:
                default = _builtin_default(attr, explicit, fallback, system_hostname)
            answer = ask(label, str(default)).strip()
            if answer:
                explicit.apply(flag, answer)
    elif interactive and not interactive_allowed:
        _logging.info("No terminal attached; skipping interactive prompts")

    hostname = explicit.hostname or fallback.hostname
    if hostname is None:
        hostname = validate_hostname(system_hostname())
    port = explicit.port or fallback.port or DEFAULT_PORT
    email = explicit.email or fallback.email or default_email(hostname)
    language = explicit.language or fallback.language or LANGUAGES[0]

    password = explicit.password or ""
    generated = False
    if not password:
        password = generate_password()
        generated = True

    components = {**DEFAULT_COMPONENTS, **fallback.components, **explicit.components}

    return InstallationRequest(
        port=port,
        hostname=hostname,
        admin_email=email,
        admin_password=password,
        language=language,
        components=MappingProxyType(components),
        interactive=interactive,
        force=modes["force"],
        api=modes["api"],
        password_generated=generated,
    )


def _builtin_default(
    attr: str,
    explicit: RequestBuilder,
    fallback: RequestBuilder,
    system_hostname: Callable[[], str],
) -> Any:
    if attr == "hostname":
        return system_hostname()
    if attr == "port":
        return DEFAULT_PORT
    return default_email(explicit.hostname or fallback.hostname or system_hostname())


__all__ = [
    "PORT_MIN",
    "PORT_MAX",
    "DEFAULT_PORT",
    "LANGUAGES",
    "CORE_COMPONENTS",
    "OPTIONAL_COMPONENTS",
    "DEFAULT_COMPONENTS",
    "DEFAULT_MODES",
    "FLAG_SETTERS",
    "InstallationRequest",
    "RequestBuilder",
    "validate_port",
    "validate_hostname",
    "validate_email",
    "default_email",
    "validate_password",
    "validate_language",
    "parse_toggle",
    "validate_flags",
    "generate_password",
    "resolve",
]
