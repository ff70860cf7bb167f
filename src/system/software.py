"""Downloadable software: fetch, verify, install into the sandbox, configure.

Layout for a package named ``kubelet``:

    <temp>/kubelet/kubelet                      download (checksum verified)
    <sandbox>/usr/local/bin/kubelet             installed binary
    <sandbox>/usr/lib/systemd/system/kubelet.service.latest
                                                installed unit, pristine copy
    /usr/local/bin/kubelet -> sandbox binary    configure: symlink
    /usr/lib/systemd/system/kubelet.service     configure: copy of .latest

is_configured() compares the live unit file with the .latest copy by
content hash, so a unit edited outside the provisioner counts as drift and
is reconfigured (the drifted file is backed up first).
"""

import hashlib
import logging
import os
import shutil
import tarfile
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

import requests

from common import ExecutionContext
from config import Checksum, Paths, SoftwareSpec
from errors import CleanupError, ConfigurationError, DownloadError, InstallationError

logger = logging.getLogger(__name__)

DOWNLOAD_CHUNK = 1024 * 1024
DOWNLOAD_TIMEOUT = 60


@runtime_checkable
class Installer(Protocol):
    def is_installed(self) -> bool: ...

    def download(self, ctx: ExecutionContext) -> None: ...

    def install(self, ctx: ExecutionContext) -> None: ...

    def cleanup(self, ctx: ExecutionContext) -> None: ...

    def uninstall(self, ctx: ExecutionContext) -> None: ...


@runtime_checkable
class Configurable(Protocol):
    def is_configured(self) -> bool: ...

    def configure(self, ctx: ExecutionContext) -> None: ...

    def remove_configuration(self, ctx: ExecutionContext) -> None: ...


def file_digest(path: Path, algorithm: str = 'sha256') -> str:
    try:
        h = hashlib.new(algorithm)
    except ValueError as e:
        raise DownloadError(f"unsupported checksum algorithm: {algorithm}") from e
    with open(path, 'rb') as f:
        for chunk in iter(lambda: f.read(DOWNLOAD_CHUNK), b''):
            h.update(chunk)
    return h.hexdigest()


def checksum_matches(path: Path, checksum: Checksum) -> bool:
    """True when path exists and matches; an empty checksum only checks existence."""
    if not path.exists():
        return False
    if not checksum.value:
        return True
    return file_digest(path, checksum.algorithm) == checksum.value.lower()


class BinaryInstaller:
    """Installer + Configurable for a single catalog entry."""

    def __init__(self, spec: SoftwareSpec, paths: Paths, session: Optional[requests.Session] = None):
        self.spec = spec
        self.paths = paths
        self.session = session or requests.Session()

    @property
    def name(self) -> str:
        return self.spec.name

    @property
    def download_dir(self) -> Path:
        return self.paths.temp_dir / self.name

    @property
    def download_path(self) -> Path:
        return self.download_dir / self.spec.resolved_url().rsplit('/', 1)[-1]

    def sandbox_binary(self, binary: str) -> Path:
        return self.paths.sandbox_bin_dir / binary

    def system_binary(self, binary: str) -> Path:
        return self.paths.system_bin_dir / binary

    @property
    def is_archive(self) -> bool:
        return self.download_path.name.endswith(('.tar.gz', '.tgz'))

    def _latest_config(self, config_name: str) -> Path:
        return self.paths.sandbox_unit_dir / f'{config_name}.latest'

    def _backup(self, config_name: str) -> Path:
        return self.paths.backup_dir / f'{config_name}.bak'

    # Installer

    def is_downloaded(self) -> bool:
        return checksum_matches(self.download_path, self.spec.checksum)

    def is_installed(self) -> bool:
        if not all(self.sandbox_binary(b).exists() for b in self.spec.binary_names):
            return False
        if not self.is_archive and self.spec.checksum.value:
            return checksum_matches(self.sandbox_binary(self.spec.binary_names[0]), self.spec.checksum)
        return all(self._latest_config(c.name).exists() for c in self.spec.configs)

    def download(self, ctx: ExecutionContext) -> None:
        if self.is_downloaded():
            logger.debug(f"{self.name}: download already present at {self.download_path}")
        else:
            self._fetch(ctx, self.spec.resolved_url(), self.download_path)
            if not checksum_matches(self.download_path, self.spec.checksum):
                self.download_path.unlink(missing_ok=True)
                raise DownloadError(f"checksum mismatch for {self.download_path.name}")

        for cfg in self.spec.configs:
            target = self.download_dir / cfg.name
            if checksum_matches(target, cfg.checksum):
                continue
            self._fetch(ctx, cfg.url.format(version=self.spec.version), target)
            if not checksum_matches(target, cfg.checksum):
                target.unlink(missing_ok=True)
                raise DownloadError(f"checksum mismatch for {cfg.name}")

    def _fetch(self, ctx: ExecutionContext, url: str, dest: Path) -> None:
        logger.info(f"Downloading {url}")
        dest.parent.mkdir(parents=True, exist_ok=True)
        partial = dest.with_name(dest.name + '.part')
        try:
            with self.session.get(url, stream=True, timeout=DOWNLOAD_TIMEOUT) as resp:
                resp.raise_for_status()
                with open(partial, 'wb') as f:
                    for chunk in resp.iter_content(chunk_size=DOWNLOAD_CHUNK):
                        ctx.check()
                        f.write(chunk)
        except requests.exceptions.RequestException as e:
            partial.unlink(missing_ok=True)
            raise DownloadError(f"failed to download {url}: {e}") from e
        except BaseException:
            partial.unlink(missing_ok=True)
            raise
        partial.replace(dest)

    def install(self, ctx: ExecutionContext) -> None:
        ctx.check()
        if not self.download_path.exists():
            raise InstallationError(f"{self.name}: nothing downloaded at {self.download_path}")
        self.paths.sandbox_bin_dir.mkdir(parents=True, exist_ok=True)
        try:
            if self.is_archive:
                self._extract()
            else:
                dest = self.sandbox_binary(self.spec.binary_names[0])
                shutil.copy2(self.download_path, dest)
                dest.chmod(0o755)

            for cfg in self.spec.configs:
                src = self.download_dir / cfg.name
                if not src.exists():
                    raise InstallationError(f"{self.name}: config {cfg.name} was not downloaded")
                dest = self._latest_config(cfg.name)
                dest.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(src, dest)
        except (OSError, tarfile.TarError) as e:
            raise InstallationError(f"failed to install {self.name}: {e}") from e
        logger.info(f"Installed {self.name} {self.spec.version} into {self.paths.sandbox_bin_dir}")

    def _extract(self) -> None:
        members = {self.spec.archive_member} if self.spec.archive_member else set()
        with tarfile.open(self.download_path, 'r:gz') as tar:
            for member in tar.getmembers():
                if not member.isfile():
                    continue
                base = os.path.basename(member.name)
                if member.name in members or (not members and base in self.spec.binary_names):
                    binary = base if base in self.spec.binary_names else self.spec.binary_names[0]
                    src = tar.extractfile(member)
                    dest = self.sandbox_binary(binary)
                    with open(dest, 'wb') as out:
                        shutil.copyfileobj(src, out)
                    dest.chmod(0o755)
        missing = [b for b in self.spec.binary_names if not self.sandbox_binary(b).exists()]
        if missing:
            raise InstallationError(f"{self.name}: archive did not contain {', '.join(missing)}")

    def cleanup(self, ctx: ExecutionContext) -> None:
        try:
            shutil.rmtree(self.download_dir, ignore_errors=False)
        except FileNotFoundError:
            return
        except OSError as e:
            raise CleanupError(f"failed to remove {self.download_dir}: {e}") from e

    def uninstall(self, ctx: ExecutionContext) -> None:
        try:
            for binary in self.spec.binary_names:
                self.sandbox_binary(binary).unlink(missing_ok=True)
            for cfg in self.spec.configs:
                self._latest_config(cfg.name).unlink(missing_ok=True)
        except OSError as e:
            raise InstallationError(f"failed to uninstall {self.name}: {e}") from e
        logger.info(f"Uninstalled {self.name}")

    # Configurable

    def _unit_configs(self) -> list[str]:
        return [self.spec.systemd_unit] if self.spec.systemd_unit else []

    def is_configured(self) -> bool:
        for binary in self.spec.binary_names:
            link = self.system_binary(binary)
            if not link.is_symlink() or Path(os.readlink(link)) != self.sandbox_binary(binary):
                return False
        for unit in self._unit_configs():
            live = self.paths.systemd_unit_dir / unit
            latest = self._latest_config(unit)
            if not live.exists() or not latest.exists():
                return False
            if file_digest(live) != file_digest(latest):
                logger.info(f"{unit} differs from the installed copy")
                return False
        return True

    def configure(self, ctx: ExecutionContext) -> None:
        ctx.check()
        try:
            self.paths.system_bin_dir.mkdir(parents=True, exist_ok=True)
            for binary in self.spec.binary_names:
                link = self.system_binary(binary)
                if link.is_symlink() or link.exists():
                    link.unlink()
                link.symlink_to(self.sandbox_binary(binary))

            for unit in self._unit_configs():
                latest = self._latest_config(unit)
                if not latest.exists():
                    raise ConfigurationError(f"{self.name}: {latest} missing, install first")
                live = self.paths.systemd_unit_dir / unit
                backup = self._backup(unit)
                if live.exists() and not backup.exists():
                    self.paths.backup_dir.mkdir(parents=True, exist_ok=True)
                    shutil.copy2(live, backup)
                live.parent.mkdir(parents=True, exist_ok=True)
                shutil.copy2(latest, live)
        except OSError as e:
            raise ConfigurationError(f"failed to configure {self.name}: {e}") from e
        logger.info(f"Configured {self.name}")

    def remove_configuration(self, ctx: ExecutionContext) -> None:
        try:
            for binary in self.spec.binary_names:
                link = self.system_binary(binary)
                if link.is_symlink() and Path(os.readlink(link)) == self.sandbox_binary(binary):
                    link.unlink()
            for unit in self._unit_configs():
                live = self.paths.systemd_unit_dir / unit
                backup = self._backup(unit)
                if backup.exists():
                    shutil.move(str(backup), live)
                else:
                    live.unlink(missing_ok=True)
        except OSError as e:
            raise ConfigurationError(f"failed to remove configuration of {self.name}: {e}") from e
        logger.info(f"Removed configuration of {self.name}")
