"""Configuration bundle deployment.

A bundle is a versioned tarball whose config root holds one directory per
configuration domain. Deployment is validate-then-apply:

1. fetch and extract into a private scratch directory
2. check every required subtree is present (nothing in the target tree has
   been touched if this fails)
3. copy the subtrees to conf/bundles/<version>/ through a staging directory
   renamed into place
4. point conf/<subtree> at the installed copy with an atomic symlink swap

Re-deploying is therefore a pointer swap, and re-deploying the same version
changes nothing.
"""

import logging
import os
import shutil
import tarfile
import tempfile
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from urllib.parse import urlparse

import requests

from kisspanel_installer.errors import DeployError
from kisspanel_installer.paths import TargetLayout

BUNDLE_SUBTREES = ("nginx", "php", "panel", "system")
DEFAULT_BUNDLE_VERSION = "0.1.3"
DEFAULT_BUNDLE_URL = "https://github.com/kisspanel/kisspanel/archive/refs/tags/v{version}.tar.gz"
DOWNLOAD_TIMEOUT = 60
COMPLETE_MARKER = ".complete"

_logging = logging.getLogger(__name__)


@dataclass(frozen=True)
class BundleRef:
    version: str
    source: str

    @classmethod
    def default(cls, version: str = DEFAULT_BUNDLE_VERSION, url: str | None = None) -> "BundleRef":
        return cls(version=version, source=(url or DEFAULT_BUNDLE_URL).format(version=version))

    @property
    def is_remote(self) -> bool:
        return urlparse(self.source).scheme in ("http", "https")


@dataclass(frozen=True)
class DeployPolicy:
    owner: str | None = None
    group: str | None = None
    dir_mode: int = 0o755
    file_mode: int = 0o640


@dataclass
class DeployReport:
    version: str
    installed_dir: Path
    subtrees: list[str]
    files: int = 0
    backups: list[Path] = field(default_factory=list)
    changed: bool = False


def timestamp_suffix() -> str:
    return datetime.now().strftime("%Y%m%d_%H%M%S")


def fetch(ref: BundleRef, dest_dir: Path) -> Path:
    """Download or copy the bundle archive into dest_dir.

    Raises:
        DeployError: On any network, HTTP or filesystem failure
    """
    archive = dest_dir / "bundle.tar.gz"
    if ref.is_remote:
        _logging.info(f"Downloading bundle from: {ref.source}")
        try:
            with requests.get(ref.source, stream=True, timeout=DOWNLOAD_TIMEOUT) as response:
                response.raise_for_status()
                with open(archive, "wb") as f:
                    for chunk in response.iter_content(chunk_size=65536):
                        f.write(chunk)
        except requests.RequestException as e:
            raise DeployError(f"Failed to download configuration bundle from {ref.source}: {e}") from e
        return archive

    source = Path(urlparse(ref.source).path if ref.source.startswith("file://") else ref.source)
    if not source.is_file():
        raise DeployError(f"Configuration bundle not found: {source}")
    try:
        shutil.copyfile(source, archive)
    except OSError as e:
        raise DeployError(f"Failed to copy configuration bundle {source}: {e}") from e
    return archive


def extract(archive: Path, dest_dir: Path) -> Path:
    """Extract an archive, refusing members that would land outside dest_dir."""
    out = dest_dir / "extracted"
    out.mkdir()
    try:
        with tarfile.open(archive, "r:*") as tar:
            for member in tar.getmembers():
                target = (out / member.name).resolve()
                if not target.is_relative_to(out.resolve()):
                    raise DeployError(f"Bundle member escapes extraction root: {member.name}")
            tar.extractall(out, filter="data")
    except (tarfile.TarError, OSError) as e:
        raise DeployError(f"Failed to extract configuration bundle: {e}") from e
    return out


def missing_subtrees(root: Path, subtrees: tuple[str, ...] = BUNDLE_SUBTREES) -> list[str]:
    return [name for name in subtrees if not (root / name).is_dir()]


def locate_config_root(extracted: Path, subtrees: tuple[str, ...] = BUNDLE_SUBTREES) -> Path:
    """Find the directory holding the bundle's subtrees.

    Release tarballs wrap everything in one top-level directory and may keep
    the subtrees under configs/, so both levels are searched.

    Raises:
        DeployError: If no candidate holds every required subtree
    """
    candidates = [extracted, extracted / "configs"]
    entries = [p for p in extracted.iterdir() if p.is_dir()]
    if len(entries) == 1:
        candidates.extend([entries[0], entries[0] / "configs"])

    best, best_missing = extracted, list(subtrees)
    for candidate in candidates:
        if not candidate.is_dir():
            continue
        missing = missing_subtrees(candidate, subtrees)
        if not missing:
            return candidate
        if len(missing) < len(best_missing):
            best, best_missing = candidate, missing

    raise DeployError(
        f"Configuration bundle is missing required directories: {', '.join(best_missing)}"
        f" (searched {best.name or best})"
    )


def apply_policy(root: Path, policy: DeployPolicy) -> int:
    """Apply the ownership and permission policy to a tree. Returns file count."""
    files = 0
    for dirpath, dirnames, filenames in os.walk(root):
        current = Path(dirpath)
        _apply(current, policy, policy.dir_mode)
        for name in filenames:
            path = current / name
            if path.is_symlink():
                continue
            _apply(path, policy, policy.file_mode)
            files += 1
    return files


def _apply(path: Path, policy: DeployPolicy, mode: int) -> None:
    os.chmod(path, mode)
    if policy.owner or policy.group:
        shutil.chown(path, user=policy.owner, group=policy.group)


def _backup_path(backup_dir: Path, name: str) -> Path:
    candidate = backup_dir / f"{name}.bak.{timestamp_suffix()}"
    counter = 1
    while candidate.exists():
        candidate = backup_dir / f"{name}.bak.{timestamp_suffix()}.{counter}"
        counter += 1
    return candidate


def _atomic_symlink(target: Path, link: Path) -> None:
    tmp = link.with_name(f".{link.name}.tmp-link")
    if tmp.is_symlink() or tmp.exists():
        tmp.unlink()
    os.symlink(target, tmp)
    os.replace(tmp, link)


def swap_link(link: Path, target: Path, backup_dir: Path) -> tuple[bool, Path | None]:
    """Point `link` at `target`.

    An existing real directory or file at `link` is moved to backup_dir
    first; an empty directory is simply removed.

    Returns:
        (changed, backup path or None)
    """
    backup = None
    if link.is_symlink():
        if Path(os.readlink(link)) == target:
            return False, None
    elif link.is_dir() and not any(link.iterdir()):
        link.rmdir()
    elif link.exists():
        backup_dir.mkdir(parents=True, exist_ok=True)
        backup = _backup_path(backup_dir, link.name)
        shutil.move(str(link), str(backup))
        _logging.info(f"Backed up {link} to {backup}")

    link.parent.mkdir(parents=True, exist_ok=True)
    _atomic_symlink(target, link)
    return True, backup


def link_managed_file(source: Path, dest: Path) -> bool:
    """Make `dest` a symlink to the managed copy at `source`.

    A regular file already at `dest` (typically the distribution default) is
    kept beside it with a timestamped .bak suffix.

    Returns:
        True if anything changed
    """
    if dest.is_symlink():
        if Path(os.readlink(dest)) == source:
            return False
    elif dest.exists():
        backup = dest.with_name(f"{dest.name}.bak.{timestamp_suffix()}")
        shutil.move(str(dest), str(backup))
        _logging.info(f"Backed up {dest} to {backup}")

    dest.parent.mkdir(parents=True, exist_ok=True)
    _atomic_symlink(source, dest)
    return True


def unlink_managed_file(dest: Path, managed_root: Path) -> bool:
    """Remove a link made by link_managed_file and restore the newest backup.

    Only symlinks pointing below `managed_root` are touched.

    Returns:
        True if anything changed
    """
    if not dest.is_symlink():
        return False
    target = Path(os.readlink(dest))
    if not target.is_relative_to(managed_root):
        _logging.warning(f"Leaving {dest}: it points outside {managed_root}")
        return False

    dest.unlink()
    backups = sorted(dest.parent.glob(f"{dest.name}.bak.*"))
    if backups:
        shutil.move(str(backups[-1]), str(dest))
        _logging.info(f"Restored {dest} from {backups[-1]}")
    return True


def is_installed(installed_dir: Path, subtrees: tuple[str, ...] = BUNDLE_SUBTREES) -> bool:
    return (installed_dir / COMPLETE_MARKER).exists() and not missing_subtrees(installed_dir, subtrees)


def deploy(
    ref: BundleRef,
    layout: TargetLayout,
    policy: DeployPolicy | None = None,
    subtrees: tuple[str, ...] = BUNDLE_SUBTREES,
) -> DeployReport:
    """Install a bundle version and make it the active configuration.

    Raises:
        DeployError: If the bundle cannot be fetched, extracted, or lacks a
            required subtree. Nothing under the target root is written in
            those cases.
    """
    policy = policy or DeployPolicy()
    installed = layout.bundles_dir / ref.version
    report = DeployReport(version=ref.version, installed_dir=installed, subtrees=list(subtrees))

    if is_installed(installed, subtrees):
        _logging.info(f"Bundle {ref.version} already installed at {installed}")
    else:
        scratch = Path(tempfile.mkdtemp(prefix="kisspanel-bundle-"))
        try:
            archive = fetch(ref, scratch)
            config_root = locate_config_root(extract(archive, scratch), subtrees)

            layout.bundles_dir.mkdir(parents=True, exist_ok=True)
            staging = Path(tempfile.mkdtemp(prefix=f".{ref.version}.", dir=layout.bundles_dir))
            try:
                for name in subtrees:
                    _logging.info(f"Copying {name} configurations...")
                    shutil.copytree(config_root / name, staging / name, symlinks=True)
                report.files = apply_policy(staging, policy)
                (staging / COMPLETE_MARKER).write_text(f"{ref.version}\n")
                if installed.exists():
                    shutil.rmtree(installed)
                os.replace(staging, installed)
            except OSError:
                shutil.rmtree(staging, ignore_errors=True)
                raise
            report.changed = True
        except OSError as e:
            raise DeployError(f"Failed to install configuration bundle {ref.version}: {e}") from e
        finally:
            shutil.rmtree(scratch, ignore_errors=True)

    for name in subtrees:
        changed, backup = swap_link(layout.conf_dir / name, installed / name, layout.backups_dir)
        report.changed = report.changed or changed
        if backup:
            report.backups.append(backup)

    return report


__all__ = [
    "BUNDLE_SUBTREES",
    "DEFAULT_BUNDLE_VERSION",
    "BundleRef",
    "DeployPolicy",
    "DeployReport",
    "fetch",
    "extract",
    "locate_config_root",
    "missing_subtrees",
    "apply_policy",
    "swap_link",
    "link_managed_file",
    "unlink_managed_file",
    "is_installed",
    "deploy",
]
