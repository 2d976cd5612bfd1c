"""
Tests for the configuration store: read, save with backup/test/rollback/reload, uploads.
"""
import os
import re
import subprocess
import threading
from pathlib import Path

import pytest

from acl_architect.models import IpAclEntry
from acl_architect.services.config_service import (
    ConfigApplyError,
    ConfigNotFoundError,
    ConfigService,
    ConfigValidationError,
    LastKnownGoodCache,
)

NEW_CONFIG = """events {
}
http {
    server {
        listen 9090;
    }
}
"""


def _backups(path):
    return sorted(p for p in Path(path).parent.iterdir() if re.fullmatch(r"nginx\.conf\.bak\.\d+", p.name))


def test_read_config_returns_text_and_caches(config_service, config_file, sample_config, cache):
    assert config_service.read_config() == sample_config
    assert cache.get(config_file) == sample_config


def test_read_missing_config_without_cache_raises(config_service):
    with pytest.raises(ConfigNotFoundError):
        config_service.read_config()


def test_read_falls_back_to_last_known_good(config_service, config_file, sample_config):
    config_service.read_config()
    os.remove(config_file)
    assert config_service.read_config() == sample_config


def test_paths_outside_known_locations_are_rejected(config_service):
    with pytest.raises(ValueError):
        config_service.read_config("/etc/passwd")


def test_load_acls_parses_the_file(config_service, config_file):
    result = config_service.load_acls()
    assert [g.name for g in result.config.ip_acl_groups] == ["acl_internal_ips"]
    assert result.skipped_count == 1


def test_save_config_backs_up_tests_and_reloads(config_service, config_file, sample_config, runner, cache):
    result = config_service.save_config(NEW_CONFIG)

    assert result.success is True
    assert result.path == config_file
    assert Path(config_file).read_text() == NEW_CONFIG
    backups = _backups(config_file)
    assert [str(b) for b in backups] == [result.backup_path]
    assert backups[0].read_text() == sample_config
    assert runner.calls == [["nginx", "-t"], ["nginx", "-s", "reload"]]
    assert cache.get(config_file) == NEW_CONFIG


def test_save_config_to_new_file_has_no_backup(config_service, settings, runner):
    result = config_service.save_config(NEW_CONFIG)
    assert result.backup_path is None
    assert Path(settings.NGINX_CONF_PATH).read_text() == NEW_CONFIG


def test_failed_test_restores_backup(config_service, config_file, sample_config, runner):
    runner.fail("-t", 'nginx: [emerg] unknown directive "listne" in /etc/nginx/nginx.conf:5')

    with pytest.raises(ConfigApplyError) as exc_info:
        config_service.save_config(NEW_CONFIG)

    error = exc_info.value
    assert error.stage == "test"
    assert error.rolled_back is True
    assert error.output == 'nginx: [emerg] unknown directive "listne" in /etc/nginx/nginx.conf:5'
    assert error.output in str(error)
    assert Path(config_file).read_text() == sample_config
    # No reload after a failed test
    assert runner.calls == [["nginx", "-t"]]


def test_failed_test_on_new_file_removes_it(config_service, settings, runner):
    runner.fail("-t", "nginx: configuration file test failed")
    with pytest.raises(ConfigApplyError):
        config_service.save_config(NEW_CONFIG)
    assert not Path(settings.NGINX_CONF_PATH).exists()


def test_missing_test_command_is_a_failure(settings, cache, config_file, sample_config):
    def runner(args, **kwargs):
        raise FileNotFoundError(2, "No such file or directory", args[0])

    service = ConfigService(settings, cache, runner=runner)
    with pytest.raises(ConfigApplyError) as exc_info:
        service.save_config(NEW_CONFIG)
    assert "No such file or directory" in exc_info.value.output
    assert Path(config_file).read_text() == sample_config


def test_timeout_is_a_failure(settings, cache, config_file):
    def runner(args, **kwargs):
        raise subprocess.TimeoutExpired(args, kwargs["timeout"])

    service = ConfigService(settings, cache, runner=runner)
    with pytest.raises(ConfigApplyError) as exc_info:
        service.save_config(NEW_CONFIG)
    assert exc_info.value.stage == "test"


def test_failed_reload_keeps_new_file(config_service, config_file, runner):
    runner.fail("reload", "nginx: [error] invalid PID number")

    with pytest.raises(ConfigApplyError) as exc_info:
        config_service.save_config(NEW_CONFIG)

    assert exc_info.value.stage == "reload"
    assert "failed to reload nginx: nginx: [error] invalid PID number" in str(exc_info.value)
    assert Path(config_file).read_text() == NEW_CONFIG


def test_empty_and_unbalanced_text_rejected_before_writing(config_service, config_file, sample_config, runner):
    with pytest.raises(ConfigValidationError):
        config_service.save_config("   \n")
    with pytest.raises(ConfigValidationError) as exc_info:
        config_service.save_config("http {\n")
    assert exc_info.value.errors == ["Unbalanced braces: 1 opening vs 0 closing"]
    assert Path(config_file).read_text() == sample_config
    assert runner.calls == []


def test_save_config_repairs_unsupported_conditions(config_service, config_file):
    config_service.save_config("http {\n    access_log off if=$allowed = 0;\n}\n")
    assert "if=$allowed != 1;" in Path(config_file).read_text()


def test_old_backups_are_pruned(config_service, config_file):
    for _ in range(5):
        config_service.save_config(NEW_CONFIG)
    assert len(_backups(config_file)) == 3
    assert len(config_service.list_backups()) == 3


def test_save_acls_keeps_surrounding_text(config_service, config_file):
    config = config_service.load_acls().config
    config.ip_acl_groups[0].entries.append(IpAclEntry(cidr="10.0.0.0/8", description="vpn"))

    config_service.save_acls(config)

    text = Path(config_file).read_text()
    assert "        10.0.0.0/8 1;  # vpn" in text
    assert "listen 8080;" in text
    assert "access_log /var/log/nginx/denied.log denied if=$deny_log;" in text
    reparsed = config_service.load_acls().config
    assert reparsed == config


def test_list_config_files(config_service, config_file, settings):
    uploaded = config_service.save_uploaded_file("proxy.conf", b"events {}\n")
    files = config_service.list_config_files()
    assert files == [config_file, str(uploaded)]


def test_save_uploaded_file_sanitizes_name(config_service, settings):
    stored = config_service.save_uploaded_file("../../etc/my proxy.conf", b"http {}\n")
    assert stored.name == "my_proxy.conf"
    assert stored.parent == Path(settings.UPLOAD_DIR)
    # Uploaded files can be opened like any configured file
    assert config_service.read_config(str(stored)) == "http {}\n"


def test_save_uploaded_file_rejects_bad_content(config_service):
    config_service.settings.MAX_UPLOAD_SIZE = 16
    with pytest.raises(ValueError):
        config_service.save_uploaded_file("big.conf", b"x" * 17)
    with pytest.raises(ValueError):
        config_service.save_uploaded_file("binary.conf", b"\xff\xfe\x00")
    with pytest.raises(ConfigValidationError):
        config_service.save_uploaded_file("broken.conf", b"http {\n")


def test_cache_is_per_path():
    cache = LastKnownGoodCache()
    cache.put("/a", "one")
    assert cache.get("/a") == "one"
    assert cache.get("/b") is None
    cache.clear()
    assert cache.get("/a") is None


def test_save_holds_writer_lock_while_running_commands(settings, cache, config_file):
    lock = threading.RLock()
    held = []

    def runner(args, **kwargs):
        # Another thread cannot take the lock while a save is in progress
        worker = threading.Thread(target=lambda: held.append(not lock.acquire(blocking=False)))
        worker.start()
        worker.join()
        return subprocess.CompletedProcess(args, 0, stdout="", stderr="")

    service = ConfigService(settings, cache, runner=runner, lock=lock)
    service.save_config(NEW_CONFIG)

    assert held == [True, True]
    # Released afterwards
    assert lock.acquire(blocking=False)
    lock.release()


def test_services_share_the_callers_lock(settings, cache):
    lock = threading.RLock()
    assert ConfigService(settings, cache, lock=lock).lock is lock
    assert ConfigService(settings, cache).lock is not lock
