import logging

import pytest
import yaml
from click.testing import CliRunner

from kisspanel_installer import __version__, setup_logging
from kisspanel_installer.commands import cli
from kisspanel_installer.commands.utils import exit_code_for
from kisspanel_installer.errors import (
    ConcurrentRunError,
    DeployError,
    ExecutionError,
    PlanError,
    UnsupportedPlatformError,
    ValidationError,
)
from kisspanel_installer.lock import run_lock

from .conftest import FakeHost, make_bundle

IDENTITY = ["--hostname", "panel.test", "--email", "root@panel.test"]


@pytest.fixture
def runner():
    """Create a CliRunner for testing."""
    return CliRunner()


@pytest.fixture
def target(temp_dir, ubuntu_os_release, defaults_file):
    """Common install target arguments."""
    return ["--root", str(temp_dir / "root"), "--os-release", str(ubuntu_os_release)]


class TestCli:
    def test_help(self, runner):
        for flag in ("--help", "-h"):
            result = runner.invoke(cli, [flag])
            assert result.exit_code == 0
            assert "install" in result.output
            assert "defaults" in result.output
            assert "uninstall" in result.output

    def test_install_help_lists_component_flags(self, runner):
        result = runner.invoke(cli, ["install", "--help"])
        assert result.exit_code == 0
        assert "--apache" in result.output
        assert "--dry-run" in result.output
        assert "--nginx" not in result.output

    def test_version(self, runner):
        result = runner.invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_unknown_flag(self, runner, target):
        result = runner.invoke(cli, ["install", "--webmail", "yes", *target])
        assert result.exit_code == 2


class TestInstallCommand:
    def test_invalid_port(self, runner, target):
        result = runner.invoke(cli, ["install", "--port", "80", *IDENTITY, *target])
        assert result.exit_code == 2
        assert "Error:" in result.output
        assert "2000" in result.output

    def test_invalid_toggle(self, runner, target):
        result = runner.invoke(cli, ["install", "--apache", "maybe", *IDENTITY, *target])
        assert result.exit_code == 2
        assert "apache" in result.output

    def test_unsupported_platform(self, runner, temp_dir, defaults_file):
        os_release = temp_dir / "os-release"
        os_release.write_text('ID=debian\nVERSION_ID="12"\n')
        result = runner.invoke(
            cli, ["install", *IDENTITY, "--os-release", str(os_release), "--dry-run"]
        )
        assert result.exit_code == 3
        assert "Unsupported operating system" in result.output

    def test_disabled_dependency_is_plan_error(self, runner, target):
        result = runner.invoke(
            cli, ["install", "--multiphp", "yes", "--phpfpm", "no", *IDENTITY, *target]
        )
        assert result.exit_code == 4

    def test_dry_run(self, runner, target, temp_dir, defaults_file, mocker):
        host = mocker.patch("kisspanel_installer.commands.install.Host")
        result = runner.invoke(cli, ["install", "--dry-run", "--apache", "no", *IDENTITY, *target])

        assert result.exit_code == 0, result.output
        assert "Installation Plan: Ubuntu 22.04" in result.output
        assert "panel:configure" in result.output
        assert "apache:install" not in result.output
        assert "Dry run: no changes were made." in result.output
        assert "Generated admin password" not in result.output
        assert not (temp_dir / "root").exists()
        assert not defaults_file.exists()
        assert not host.return_value.run.called

    def test_declined_confirmation(self, runner, target, temp_dir, mocker):
        mocker.patch("kisspanel_installer.commands.install.has_terminal", return_value=True)
        args = ["install", *IDENTITY, "--port", "2006", "--password", "Secret123", *target]
        result = runner.invoke(cli, args, input="n\n")

        assert result.exit_code == 1
        assert "Installation cancelled." in result.output
        assert not (temp_dir / "root").exists()

    def test_failed_step_writes_partial_report(self, runner, target, temp_dir, mocker):
        mocker.patch(
            "kisspanel_installer.commands.install.Host", return_value=FakeHost(root=False)
        )
        result = runner.invoke(cli, ["install", *IDENTITY, *target])

        assert result.exit_code == 5
        assert "must be run as root" in result.output
        assert "Generated admin password" in result.output

        report = yaml.safe_load((temp_dir / "root" / "logs" / "install-report.yaml").read_text())
        assert report["passed"] is False
        assert report["execution"][-1]["step"] == "base:install"
        assert report["execution"][-1]["status"] == "failed"

    def test_concurrent_run(self, runner, target, temp_dir, mocker):
        host = FakeHost()
        mocker.patch("kisspanel_installer.commands.install.Host", return_value=host)
        with run_lock(temp_dir / "root" / ".install.lock"):
            result = runner.invoke(cli, ["install", *IDENTITY, *target])

        assert result.exit_code == 7
        assert "Another installer run" in result.output
        assert host.commands == []


@pytest.fixture
def local_install(temp_dir, test_profile, defaults_file, mocker):
    """Host, root and install arguments for runs against the test profile."""
    host = FakeHost()
    for module in ("install", "uninstall"):
        mocker.patch(f"kisspanel_installer.commands.{module}.load_profile", return_value=test_profile)
        mocker.patch(f"kisspanel_installer.commands.{module}.Host", return_value=host)
    root = temp_dir / "root"
    archive = make_bundle(temp_dir / "bundles")
    args = ["install", *IDENTITY, "--root", str(root), "--bundle-url", str(archive)]
    return host, root, args


class TestLocalInstall:
    def test_install_and_rerun_keeps_password(self, runner, local_install):
        host, root, args = local_install

        result = runner.invoke(cli, args)
        assert result.exit_code == 0, result.output
        assert "Generated admin password" in result.output
        assert "KissPanel installation completed" in result.output
        assert (root / "data" / "kisspanel.db").is_file()

        result = runner.invoke(cli, args)
        assert result.exit_code == 0, result.output
        assert "Generated admin password" not in result.output
        assert "An admin password is already set; keeping it." in result.output
        assert "Password:   unchanged" in result.output
        assert "Existing admin password kept" not in result.output

    def test_uninstall_restores_replaced_files(self, runner, local_install, temp_dir):
        host, root, args = local_install
        nginx_conf = temp_dir / "etc" / "nginx" / "nginx.conf"
        nginx_conf.parent.mkdir(parents=True)
        nginx_conf.write_text("# distribution default\n")

        result = runner.invoke(cli, args)
        assert result.exit_code == 0, result.output
        assert nginx_conf.is_symlink()

        result = runner.invoke(cli, ["uninstall", "--yes", "--remove-packages", "--root", str(root)])

        assert result.exit_code == 0, result.output
        assert "KissPanel removed" in result.output
        assert not root.exists()
        assert not nginx_conf.is_symlink()
        assert nginx_conf.read_text() == "# distribution default\n"
        assert not (temp_dir / "etc" / "panel" / "kisspanel.service").exists()
        assert "kisspanel" not in host.users
        assert "kisspanel" not in host.groups
        assert "kisspanel" not in host.active
        assert "nginx" not in host.enabled
        assert "firewall" in host.active
        assert host.commands_matching("pkg remove")

    def test_uninstall_keeps_packages_by_default(self, runner, local_install):
        host, root, args = local_install
        runner.invoke(cli, args)

        result = runner.invoke(cli, ["uninstall", "--yes", "--root", str(root)])

        assert result.exit_code == 0, result.output
        assert host.commands_matching("pkg remove") == []
        assert "packages:remove" not in result.output

    def test_uninstall_declined(self, runner, local_install, mocker):
        host, root, args = local_install
        runner.invoke(cli, args)
        mocker.patch("kisspanel_installer.commands.uninstall.has_terminal", return_value=True)

        result = runner.invoke(cli, ["uninstall", "--root", str(root)], input="n\n")

        assert result.exit_code == 1
        assert "Uninstallation cancelled." in result.output
        assert root.exists()

    def test_uninstall_without_terminal_needs_yes(self, runner, local_install):
        host, root, args = local_install

        result = runner.invoke(cli, ["uninstall", "--root", str(root)])

        assert result.exit_code == 2
        assert "--yes" in result.output
        assert host.commands == []


class TestPlanCommand:
    def test_prints_steps(self, runner, target):
        result = runner.invoke(cli, ["plan", "--bind", "no", *IDENTITY, *target])

        assert result.exit_code == 0, result.output
        assert "Installation Plan: Ubuntu 22.04" in result.output
        assert "base:install" in result.output
        assert "bind:install" not in result.output
        assert "https://panel.test:2006" in result.output

    def test_uses_saved_defaults(self, runner, target):
        runner.invoke(cli, ["defaults", "save", "--port", "3000", "--postgresql", "yes"])
        result = runner.invoke(cli, ["plan", *IDENTITY, *target])

        assert result.exit_code == 0, result.output
        assert "postgresql:install" in result.output
        assert ":3000" in result.output


class TestVerifyCommand:
    def test_reports_without_failing(self, runner, target, mocker):
        mocker.patch("kisspanel_installer.commands.verify.Host", return_value=FakeHost())
        runner.invoke(cli, ["defaults", "save", *IDENTITY])

        result = runner.invoke(cli, ["verify", *target])

        assert result.exit_code == 0, result.output
        assert "Directory missing" in result.output
        assert "checks passed" in result.output


class TestDefaultsCommands:
    def test_save_show_command_reset(self, runner, defaults_file):
        result = runner.invoke(cli, ["defaults", "show"])
        assert result.exit_code == 0
        assert "No saved defaults" in result.output

        result = runner.invoke(cli, ["defaults", "save", "--port", "3000", "--apache", "no"])
        assert result.exit_code == 0, result.output
        assert "Saved 2 value(s)" in result.output
        assert yaml.safe_load(defaults_file.read_text()) == {"port": 3000, "apache": "no"}

        result = runner.invoke(cli, ["defaults", "command"])
        assert result.output.strip() == "kisspanel-install install --port 3000 --apache no"

        result = runner.invoke(cli, ["defaults", "show", "--all"])
        assert "port: 3000" in result.output
        assert "nginx: 'yes'" in result.output

        result = runner.invoke(cli, ["defaults", "reset"])
        assert result.exit_code == 0
        assert not defaults_file.exists()
        assert defaults_file.with_suffix(".yaml.bak").exists()

    def test_save_merges(self, runner, defaults_file):
        runner.invoke(cli, ["defaults", "save", "--port", "3000"])
        runner.invoke(cli, ["defaults", "save", "--lang", "es"])
        assert yaml.safe_load(defaults_file.read_text()) == {"port": 3000, "lang": "es"}

    def test_save_rejects_invalid_values(self, runner, defaults_file):
        result = runner.invoke(cli, ["defaults", "save", "--email", "not-an-email"])
        assert result.exit_code == 2
        assert not defaults_file.exists()

    def test_corrupt_defaults_file(self, runner, defaults_file):
        defaults_file.parent.mkdir(parents=True)
        defaults_file.write_text("webmail: yes\n")
        result = runner.invoke(cli, ["defaults", "command"])
        assert result.exit_code == 2
        assert "unknown keys" in result.output


@pytest.mark.parametrize(
    "error, code",
    [
        (ValidationError("port", "bad port"), 2),
        (UnsupportedPlatformError("nope"), 3),
        (PlanError("cycle"), 4),
        (ExecutionError("nginx:install", "boom"), 5),
        (DeployError("missing"), 6),
        (ConcurrentRunError("held"), 7),
    ],
)
def test_exit_codes(error, code):
    assert exit_code_for(error) == code


def test_setup_logging(temp_dir):
    log_file = temp_dir / "logs" / "install.log"
    setup_logging(debug=False, log_file=log_file)

    logger = logging.getLogger("kisspanel_installer.installer")
    logger.info("recorded in file only")
    logger.debug("dropped")

    content = log_file.read_text()
    assert "recorded in file only" in content
    assert "dropped" not in content
    assert not logging.getLogger("kisspanel_installer").propagate
