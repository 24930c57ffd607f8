"""Static component catalog.

Order here is the tie-breaker for plan ordering: components are walked in
catalog order and each is placed after its dependencies.
"""

from . import actions
from .models import Component


def _optional(
    name: str, description: str, dependencies: tuple[str, ...] = (), **overrides
) -> Component:
    fields = dict(
        name=name,
        description=description,
        required=False,
        install=actions.install_packages,
        configure=actions.configure_service,
        verify=actions.verify_service,
        dependencies=("base", *dependencies),
    )
    fields.update(overrides)
    return Component(**fields)


_BUILTIN_COMPONENTS: tuple[Component, ...] = (
    Component(
        name="base",
        description="System preparation",
        required=True,
        install=actions.prepare_system,
    ),
    Component(
        name="nginx",
        description="Nginx web server",
        required=True,
        install=actions.install_nginx,
        configure=actions.configure_nginx,
        verify=actions.verify_service,
        dependencies=("base",),
    ),
    Component(
        name="sqlite",
        description="SQLite",
        required=True,
        install=actions.install_sqlite,
        dependencies=("base",),
    ),
    Component(
        name="system-database",
        description="Panel system database",
        required=True,
        install=actions.create_system_database,
        configure=actions.seed_system_database,
        verify=actions.verify_database,
        dependencies=("sqlite", "nginx"),
    ),
    _optional("apache", "Apache web server", ("nginx",)),
    _optional("phpfpm", "PHP-FPM", ("nginx",), configure=actions.configure_phpfpm),
    _optional("multiphp", "Additional PHP versions", ("phpfpm",), verify=None),
    _optional("mariadb", "MariaDB database server"),
    _optional("mysql8", "MySQL 8 database server"),
    _optional("postgresql", "PostgreSQL database server"),
    _optional("exim", "Exim mail server"),
    _optional("dovecot", "Dovecot IMAP/POP3 server"),
    _optional("sieve", "Sieve mail filtering", ("dovecot",), verify=None),
    _optional("spamassassin", "SpamAssassin"),
    _optional("clamav", "ClamAV antivirus"),
    _optional("bind", "BIND DNS server"),
    _optional("vsftpd", "vsftpd FTP server"),
    _optional("proftpd", "ProFTPD FTP server"),
    _optional("iptables", "Firewall", configure=actions.configure_firewall),
    _optional("fail2ban", "Fail2ban"),
    _optional("quota", "Disk quotas", verify=None),
    Component(
        name="panel",
        description="KissPanel control panel",
        required=True,
        install=actions.install_panel,
        configure=actions.configure_panel,
        verify=actions.verify_panel,
        dependencies=("system-database",),
    ),
)


def get_all_components() -> tuple[Component, ...]:
    return _BUILTIN_COMPONENTS


def get_component(name: str) -> Component | None:
    for component in _BUILTIN_COMPONENTS:
        if component.name == name:
            return component
    return None


__all__ = [
    "get_all_components",
    "get_component",
]
