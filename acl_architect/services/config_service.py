"""
Service for reading, writing and applying nginx configuration files.
"""
import logging
import os
import re
import shlex
import shutil
import subprocess
import threading
import time
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple

from acl_architect.core.config import Settings
from acl_architect.models.nginx import NginxConfig
from acl_architect.schemas.config import SaveResult
from acl_architect.services.config_generator import ConfigGenerator
from acl_architect.services.config_validator import (
    count_braces,
    validate_and_fix_nginx_config,
    validate_nginx_config,
)
from acl_architect.utils.parsers.acl_models import ParseResult
from acl_architect.utils.parsers.nginx_parser import NginxAclParser

logger = logging.getLogger(__name__)

SAFE_FILENAME = re.compile(r"[^A-Za-z0-9._-]")


class ConfigNotFoundError(FileNotFoundError):
    """Configuration file missing and no cached copy available."""


class ConfigValidationError(ValueError):
    """Configuration text rejected before it was written."""

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = errors or []


class ConfigApplyError(RuntimeError):
    """The proxy rejected the written configuration or failed to reload."""

    def __init__(self, message: str, stage: str, output: str = "", rolled_back: bool = False):
        super().__init__(message)
        self.stage = stage  # "test" or "reload"
        self.output = output
        self.rolled_back = rolled_back


class LastKnownGoodCache:
    """Last successfully read or written text per configuration path."""

    def __init__(self):
        self._entries: Dict[str, str] = {}

    def get(self, path: str) -> Optional[str]:
        return self._entries.get(path)

    def put(self, path: str, text: str) -> None:
        self._entries[path] = text

    def clear(self) -> None:
        self._entries.clear()


class ConfigService:
    """Service for configuration file processing."""

    def __init__(
        self,
        settings: Settings,
        cache: LastKnownGoodCache,
        runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
        lock: Optional["threading.RLock"] = None,
    ):
        """
        Initialize config service.

        Args:
            settings: Application settings
            cache: Caller-owned last-known-good cache
            runner: Command runner with the subprocess.run signature
            lock: Caller-owned writer lock shared by every service of one app
        """
        self.settings = settings
        self.cache = cache
        self.runner = runner
        self.lock = lock if lock is not None else threading.RLock()
        self.upload_dir = Path(settings.UPLOAD_DIR)
        try:
            self.upload_dir.mkdir(parents=True, exist_ok=True)
        except Exception as e:
            logger.error(f"Failed to create upload directory {self.upload_dir}: {e}")
            raise ValueError(f"Cannot create upload directory: {e}")

    @property
    def generator(self) -> ConfigGenerator:
        return ConfigGenerator(
            anchored=self.settings.URL_REGEX_ANCHORED,
            final_decision=self.settings.FINAL_DECISION_VARIABLE,
        )

    def resolve_path(self, path: Optional[str] = None) -> Path:
        """
        Resolve a requested path, allowing only known configuration files.

        Raises:
            ValueError: If the path is neither a configured path nor an upload
        """
        target = Path(path or self.settings.NGINX_CONF_PATH)
        real = os.path.realpath(target)
        allowed = {os.path.realpath(p) for p in [self.settings.NGINX_CONF_PATH, *self.settings.CANDIDATE_CONFIG_PATHS]}
        if real in allowed or os.path.dirname(real) == os.path.realpath(self.upload_dir):
            return target
        raise ValueError(f"Path not allowed: {target}")

    def read_config(self, path: Optional[str] = None) -> str:
        """
        Read configuration text, falling back to the last known good copy.

        Raises:
            ConfigNotFoundError: If the file cannot be read and nothing is cached
        """
        target = self.resolve_path(path)
        try:
            text = target.read_text(encoding="utf-8")
        except OSError as e:
            cached = self.cache.get(str(target))
            if cached is not None:
                logger.warning(f"Could not read {target} ({e}); serving last known good configuration")
                return cached
            raise ConfigNotFoundError(f"Configuration file not found: {target}") from e

        logger.info(f"Read configuration from {target} ({len(text)} bytes)")
        self.cache.put(str(target), text)
        return text

    def load_acls(self, path: Optional[str] = None) -> ParseResult:
        """Read, repair and parse a configuration file."""
        text = validate_and_fix_nginx_config(self.read_config(path))
        return NginxAclParser(text, anchored=self.settings.URL_REGEX_ANCHORED).parse_all()

    def _run(self, command: str) -> Tuple[bool, str]:
        try:
            completed = self.runner(
                shlex.split(command),
                capture_output=True,
                text=True,
                timeout=self.settings.COMMAND_TIMEOUT,
            )
        except (OSError, subprocess.SubprocessError) as e:
            return False, str(e)
        output = ((completed.stdout or "") + (completed.stderr or "")).strip()
        return completed.returncode == 0, output

    def _backup_path(self, target: Path) -> Path:
        stamp = int(time.time() * 1000)
        backup = Path(f"{target}.bak.{stamp}")
        while backup.exists():
            stamp += 1
            backup = Path(f"{target}.bak.{stamp}")
        return backup

    def list_backups(self, path: Optional[str] = None) -> List[Path]:
        """Backups of a configuration file, newest first."""
        target = self.resolve_path(path)
        backups = []
        for candidate in target.parent.glob(f"{target.name}.bak.*"):
            suffix = candidate.name.rsplit(".", 1)[-1]
            if suffix.isdigit():
                backups.append((int(suffix), candidate))
        return [p for _, p in sorted(backups, reverse=True)]

    def _prune_backups(self, target: Path) -> None:
        keep = self.settings.BACKUP_KEEP
        if keep <= 0:
            return
        for old in self.list_backups(str(target))[keep:]:
            try:
                old.unlink()
                logger.debug(f"Pruned backup {old}")
            except OSError as e:
                logger.warning(f"Failed to prune backup {old}: {e}")

    def save_config(self, text: str, path: Optional[str] = None) -> SaveResult:
        """
        Write configuration text, test it with the proxy and reload.

        A failing test restores the previous file. Only one save runs at a
        time per lock.

        Raises:
            ConfigValidationError: Empty text or structural errors
            ConfigApplyError: Test or reload failure
        """
        with self.lock:
            return self._apply(text, path)

    def _apply(self, text: str, path: Optional[str]) -> SaveResult:
        target = self.resolve_path(path)
        if not text or not text.strip():
            raise ConfigValidationError("Configuration cannot be empty")

        text = validate_and_fix_nginx_config(text)
        validation = validate_nginx_config(text)
        if not validation.is_valid:
            raise ConfigValidationError(
                f"Invalid configuration: {'; '.join(validation.errors)}", validation.errors
            )
        for warning in validation.warnings:
            logger.info(f"Configuration lint: {warning}")

        backup: Optional[Path] = None
        if target.exists():
            backup = self._backup_path(target)
            shutil.copy2(target, backup)
            logger.info(f"Created backup at: {backup}")

        target.write_text(text, encoding="utf-8")
        logger.info(f"Saved configuration to {target}")

        ok, output = self._run(self.settings.NGINX_TEST_COMMAND)
        if not ok:
            logger.error(f"nginx configuration test failed: {output}")
            if backup is not None:
                shutil.copy2(backup, target)
                logger.info(f"Reverted {target} to backup {backup}")
            else:
                target.unlink()
                logger.info(f"Removed new file {target}")
            raise ConfigApplyError(
                f"Invalid nginx configuration. Changes were reverted: {output}",
                stage="test",
                output=output,
                rolled_back=True,
            )

        self.cache.put(str(target), text)
        self._prune_backups(target)

        ok, output = self._run(self.settings.NGINX_RELOAD_COMMAND)
        if not ok:
            logger.error(f"Failed to reload nginx: {output}")
            raise ConfigApplyError(
                f"Configuration saved but failed to reload nginx: {output}",
                stage="reload",
                output=output,
            )

        logger.info("Configuration saved and nginx reloaded")
        return SaveResult(
            success=True,
            message="Configuration saved and nginx reloaded",
            path=str(target),
            backup_path=str(backup) if backup else None,
        )

    def generate_config(self, config: NginxConfig, path: Optional[str] = None, use_base: bool = True) -> str:
        """Render a model, keeping the boilerplate of the current file when it can be read."""
        base_text = None
        if use_base:
            try:
                base_text = self.read_config(path)
            except ConfigNotFoundError:
                logger.info("No current configuration to use as base; using the built-in template")
        return self.generator.generate(config, base_text)

    def save_acls(self, config: NginxConfig, path: Optional[str] = None) -> SaveResult:
        """Generate configuration text for a model and save it."""
        with self.lock:
            return self.save_config(self.generate_config(config, path), path)

    def list_config_files(self) -> List[str]:
        """Existing well-known configuration files plus uploaded files."""
        files = [p for p in self.settings.CANDIDATE_CONFIG_PATHS if Path(p).is_file()]
        default = self.settings.NGINX_CONF_PATH
        if default not in files and Path(default).is_file():
            files.insert(0, default)
        for upload in sorted(self.upload_dir.iterdir()):
            if upload.is_file() and ".bak." not in upload.name:
                files.append(str(upload))
        return files

    def save_uploaded_file(self, filename: str, content: bytes) -> Path:
        """
        Store an uploaded configuration file.

        Raises:
            ValueError: Oversized, non UTF-8 or structurally broken content
        """
        if len(content) > self.settings.MAX_UPLOAD_SIZE:
            raise ValueError(
                f"File size exceeds maximum allowed size of {self.settings.MAX_UPLOAD_SIZE} bytes"
            )
        try:
            text = content.decode("utf-8")
        except UnicodeDecodeError as e:
            raise ValueError(f"Configuration file is not valid UTF-8: {e}")

        opening, closing = count_braces(text)
        if opening != closing:
            raise ConfigValidationError(
                f"Invalid NGINX configuration file: unbalanced braces ({opening} opening vs {closing} closing)"
            )

        name = SAFE_FILENAME.sub("_", Path(filename or "").name).lstrip(".") or "nginx.conf"
        file_path = self.upload_dir / name
        try:
            file_path.write_text(text, encoding="utf-8")
        except Exception as e:
            logger.error(f"Failed to write file to {file_path}: {e}")
            raise ValueError(f"Cannot save file to disk: {e}")

        logger.info(f"Saved uploaded config file: {filename} -> {file_path} ({len(content)} bytes)")
        return file_path
