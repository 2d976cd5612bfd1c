"""
Pytest configuration and fixtures.
"""
import subprocess

import pytest
from fastapi.testclient import TestClient
from unittest.mock import patch

from acl_architect.api.deps import get_config_service
from acl_architect.core.config import Settings
from acl_architect.main import app
from acl_architect.services.config_service import ConfigService, LastKnownGoodCache

SAMPLE_NGINX_CONFIG = r"""worker_processes auto;
events {
    worker_connections 1024;
}

http {
    log_format denied '$remote_addr - [$time_local] "$request" '
                      'Reason: "$deny_reason"';
    access_log /var/log/nginx/denied.log denied if=$deny_log;

#==============================================================================
    # Structured ACL Definitions
    # IP-based ACL Groups
    geo $acl_internal_ips {  # Internal Production Network
        default 0;
        192.168.1.0/24 1;  # internal
        1.2.3.4 0;  # blocked
    }

    # URL-based ACL Groups
    map $host $acl_microsoft_urls {  # Microsoft Services
        default 0;
        "~*.*\.microsoft\.com"         1;  # all microsoft
        "example.com"                  1;
    }

    # Combined ACL Logic
    map "$acl_internal_ips$acl_microsoft_urls" $access_granted {  # Final Access Decision
        default 0;
        "11" 1;  # internal to microsoft
    }

    map "$acl_internal_ips$acl_microsoft_urls" $deny_reason {
        "01" "Denied by acl_internal_ips";
        default "";
    }
# END OF CODE TO EDIT, DO NOT EDIT BELOW.
    server {
        listen 8080;
        if ($access_granted != 1) {
            return 403 "Access Denied: $deny_reason";
        }
    }
}
"""


class FakeRunner:
    """Stands in for subprocess.run; records calls and fails on request."""

    def __init__(self):
        self.calls = []
        self.failures = {}

    def fail(self, keyword, output, returncode=1):
        """Fail any command whose arguments contain `keyword`."""
        self.failures[keyword] = (returncode, output)

    def __call__(self, args, **kwargs):
        self.calls.append(list(args))
        for keyword, (returncode, output) in self.failures.items():
            if keyword in args:
                return subprocess.CompletedProcess(args, returncode, stdout="", stderr=output)
        return subprocess.CompletedProcess(args, 0, stdout="", stderr="")


@pytest.fixture(scope="function", autouse=True)
def disable_api_key():
    """Disable API key authentication for all tests."""
    with patch("acl_architect.core.config.settings.API_KEY", None):
        yield


@pytest.fixture
def sample_config():
    return SAMPLE_NGINX_CONFIG


@pytest.fixture
def settings(tmp_path):
    """Settings pointing every path at a temporary directory."""
    conf_path = tmp_path / "nginx.conf"
    return Settings(
        NGINX_CONF_PATH=str(conf_path),
        CANDIDATE_CONFIG_PATHS=[str(conf_path), str(tmp_path / "conf.d" / "default.conf")],
        UPLOAD_DIR=str(tmp_path / "uploads"),
        NGINX_TEST_COMMAND="nginx -t",
        NGINX_RELOAD_COMMAND="nginx -s reload",
        BACKUP_KEEP=3,
        API_KEY=None,
    )


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def cache():
    return LastKnownGoodCache()


@pytest.fixture
def config_service(settings, cache, runner):
    return ConfigService(settings, cache, runner=runner)


@pytest.fixture
def config_file(settings, sample_config):
    """Write the sample configuration to the configured path."""
    path = settings.NGINX_CONF_PATH
    with open(path, "w", encoding="utf-8") as f:
        f.write(sample_config)
    return path


@pytest.fixture(scope="function")
def client(config_service):
    """
    Create a test client whose ConfigService uses the temporary settings
    and the fake command runner.
    """
    app.dependency_overrides[get_config_service] = lambda: config_service

    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def client_with_auth(config_service):
    """
    Create a test client with API key authentication enabled.

    Sets API_KEY="test-key" for testing authentication.
    """
    app.dependency_overrides[get_config_service] = lambda: config_service

    with patch("acl_architect.core.config.settings.API_KEY", "test-key"):
        yield TestClient(app)

    app.dependency_overrides.clear()
