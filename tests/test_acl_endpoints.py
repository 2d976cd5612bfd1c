"""
Tests for the structured ACL endpoints under /api/v1/acls.
"""
import inspect
from pathlib import Path

from fastapi import status
from fastapi.routing import APIRoute

from acl_architect.main import app


def _ip_entries(data, group="acl_internal_ips"):
    groups = {g["name"]: g for g in data["config"]["ipAclGroups"]}
    return [e["cidr"] for e in groups[group]["entries"]]


def test_get_acls(client, config_file):
    response = client.get("/api/v1/acls")

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    config = data["config"]
    assert config["ipAclGroups"][0]["name"] == "acl_internal_ips"
    assert config["urlAclGroups"][0]["entries"][0]["isRegex"] is True
    assert config["combinedAcls"][0]["sourceGroups"] == ["acl_internal_ips", "acl_microsoft_urls"]
    assert data["skippedBlocks"][0]["reason"] == "derived"
    assert data["skippedEntries"] == 0


def test_get_acls_missing_file_returns_404(client):
    response = client.get("/api/v1/acls")
    assert response.status_code == status.HTTP_404_NOT_FOUND


def test_parse_posted_text(client, sample_config):
    response = client.post("/api/v1/acls/parse", content=sample_config, headers={"Content-Type": "text/plain"})
    assert response.status_code == status.HTTP_200_OK
    assert _ip_entries(response.json()) == ["192.168.1.0/24", "1.2.3.4"]


def test_generate_from_json(client):
    body = {
        "ipAclGroups": [
            {"name": "acl_office", "description": "Office", "entries": [{"cidr": "10.1.0.0/16", "value": "1"}]}
        ],
        "urlAclGroups": [],
        "combinedAcls": [],
    }
    response = client.post("/api/v1/acls/generate", json=body)

    assert response.status_code == status.HTTP_200_OK
    assert response.text.startswith("worker_processes auto;")
    assert "geo $acl_office {  # Office" in response.text
    assert "10.1.0.0/16 1;" in response.text


def test_generate_with_base_splices_current_file(client, config_file):
    body = {"ipAclGroups": [{"name": "acl_office", "description": "Office"}]}
    response = client.post("/api/v1/acls/generate", params={"base": "true"}, json=body)

    assert response.status_code == status.HTTP_200_OK
    assert "listen 8080;" in response.text
    assert "acl_internal_ips" not in response.text


def test_generate_rejects_invalid_model(client):
    body = {"ipAclGroups": [{"name": "acl_office", "entries": [{"cidr": "300.1.1.1"}]}]}
    response = client.post("/api/v1/acls/generate", json=body)
    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY


def test_put_acls_saves_model(client, config_file, runner):
    model = client.get("/api/v1/acls").json()["config"]
    model["ipAclGroups"].append({"name": "acl_vpn", "description": "VPN", "entries": [{"cidr": "10.8.0.0/24"}]})

    response = client.put("/api/v1/acls", json=model)

    assert response.status_code == status.HTTP_200_OK
    assert response.json()["success"] is True
    text = Path(config_file).read_text()
    assert "geo $acl_vpn {  # VPN" in text
    assert ["nginx", "-t"] in runner.calls


def test_available_groups(client, config_file):
    response = client.get("/api/v1/acls/groups")
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["groups"] == [
        {"name": "acl_internal_ips", "description": "Internal Production Network"},
        {"name": "acl_microsoft_urls", "description": "Microsoft Services"},
        {"name": "access_granted", "description": "Final Access Decision"},
    ]


def test_add_update_delete_ip_entry(client, config_file):
    url = "/api/v1/acls/ip-groups/acl_internal_ips/entries"

    response = client.post(url, json={"cidr": "10.0.0.0/8", "value": "1", "description": "vpn"})
    assert response.status_code == status.HTTP_201_CREATED
    assert _ip_entries(response.json()) == ["192.168.1.0/24", "1.2.3.4", "10.0.0.0/8"]
    assert "10.0.0.0/8 1;  # vpn" in Path(config_file).read_text()

    response = client.put(url, json={"key": "1.2.3.4", "entry": {"cidr": "1.2.3.5", "value": "0"}})
    assert response.status_code == status.HTTP_200_OK
    assert _ip_entries(response.json()) == ["192.168.1.0/24", "1.2.3.5", "10.0.0.0/8"]

    response = client.delete(url, params={"key": "1.2.3.5"})
    assert response.status_code == status.HTTP_200_OK
    assert _ip_entries(response.json()) == ["192.168.1.0/24", "10.0.0.0/8"]
    assert "1.2.3.5" not in Path(config_file).read_text()


def test_invalid_ip_entry_returns_422(client, config_file, sample_config):
    response = client.post("/api/v1/acls/ip-groups/acl_internal_ips/entries", json={"cidr": "192.168.1.0/33"})
    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    assert Path(config_file).read_text() == sample_config


def test_duplicate_ip_entry_returns_422(client, config_file):
    response = client.post("/api/v1/acls/ip-groups/acl_internal_ips/entries", json={"cidr": "1.2.3.4"})
    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    assert "already in acl_internal_ips" in response.json()["detail"]


def test_unknown_group_returns_404(client, config_file):
    response = client.post("/api/v1/acls/ip-groups/acl_nope/entries", json={"cidr": "10.0.0.1"})
    assert response.status_code == status.HTTP_404_NOT_FOUND
    response = client.delete("/api/v1/acls/ip-groups/acl_internal_ips/entries", params={"key": "8.8.8.8"})
    assert response.status_code == status.HTTP_404_NOT_FOUND


def test_url_entry_endpoints(client, config_file):
    url = "/api/v1/acls/url-groups/acl_microsoft_urls/entries"

    response = client.post(url, json={"pattern": "*.bing.com", "isRegex": False})
    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    response = client.post(url, json={"pattern": r".*\.bing\.com", "isRegex": True, "caseInsensitive": True})
    assert response.status_code == status.HTTP_201_CREATED
    assert r'"~*.*\.bing\.com"' in Path(config_file).read_text()

    response = client.put(url, json={"key": "example.com", "entry": {"pattern": "example.org", "value": "0"}})
    assert response.status_code == status.HTTP_200_OK

    response = client.delete(url, params={"key": "example.org"})
    assert response.status_code == status.HTTP_200_OK
    patterns = [e["pattern"] for e in response.json()["config"]["urlAclGroups"][0]["entries"]]
    assert patterns == [r".*\.microsoft\.com", r".*\.bing\.com"]


def test_combined_rule_endpoints(client, config_file):
    url = "/api/v1/acls/combined/access_granted/rules"

    response = client.post(url, json={"pattern": "111", "value": "1"})
    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    assert "combines 2 source groups" in response.json()["detail"]

    response = client.post(url, json={"pattern": "1.", "value": "1", "description": "any internal"})
    assert response.status_code == status.HTTP_201_CREATED
    assert '"1." 1;  # any internal' in Path(config_file).read_text()

    response = client.put(url, json={"key": "1.", "rule": {"pattern": ".1", "value": "0"}})
    assert response.status_code == status.HTTP_200_OK

    response = client.delete(url, params={"key": ".1"})
    assert response.status_code == status.HTTP_200_OK
    rules = response.json()["config"]["combinedAcls"][0]["rules"]
    assert [r["pattern"] for r in rules] == ["11"]


def test_group_and_combined_acl_lifecycle(client, config_file):
    response = client.post("/api/v1/acls/ip-groups", json={"name": "acl_vpn", "description": "VPN"})
    assert response.status_code == status.HTTP_201_CREATED
    response = client.post("/api/v1/acls/url-groups", json={"name": "acl_cdn_urls", "description": "CDN"})
    assert response.status_code == status.HTTP_201_CREATED

    response = client.post(
        "/api/v1/acls/combined",
        json={"name": "vpn_cdn", "description": "VPN to CDN", "sourceGroups": ["acl_vpn", "acl_cdn_urls"]},
    )
    assert response.status_code == status.HTTP_201_CREATED

    response = client.delete("/api/v1/acls/ip-groups/acl_vpn")
    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY

    assert client.delete("/api/v1/acls/combined/vpn_cdn").status_code == status.HTTP_200_OK
    assert client.delete("/api/v1/acls/ip-groups/acl_vpn").status_code == status.HTTP_200_OK
    response = client.delete("/api/v1/acls/url-groups/acl_cdn_urls")
    assert response.status_code == status.HTTP_200_OK
    assert response.json()["config"]["urlAclGroups"][0]["name"] == "acl_microsoft_urls"


def test_failed_proxy_test_leaves_file_untouched(client, config_file, sample_config, runner):
    runner.fail("-t", "nginx: [emerg] host not found")
    response = client.post("/api/v1/acls/ip-groups/acl_internal_ips/entries", json={"cidr": "10.0.0.0/8"})
    assert response.status_code == status.HTTP_400_BAD_REQUEST
    assert "host not found" in response.json()["detail"]
    assert Path(config_file).read_text() == sample_config


def test_entry_routes_are_registered():
    routes = {(r.path, m) for r in app.routes if isinstance(r, APIRoute) for m in r.methods}
    for path in (
        "/api/v1/acls/ip-groups/{group}/entries",
        "/api/v1/acls/url-groups/{group}/entries",
        "/api/v1/acls/combined/{name}/rules",
    ):
        for method in ("POST", "PUT", "DELETE"):
            assert (path, method) in routes


def test_write_routes_run_in_threadpool():
    """Handlers that run proxy commands must not be coroutines."""
    for route in app.routes:
        if not isinstance(route, APIRoute) or not route.path.startswith("/api/v1/acls"):
            continue
        if route.methods & {"PUT", "DELETE"} or route.path.endswith(("-groups", "entries", "rules", "combined")):
            assert not inspect.iscoroutinefunction(route.endpoint), route.path


def test_group_without_description_reloads_unchanged(client, config_file):
    response = client.post("/api/v1/acls/ip-groups", json={"name": "acl_office"})
    assert response.status_code == status.HTTP_201_CREATED
    created = response.json()["config"]["ipAclGroups"][-1]
    assert created == {"name": "acl_office", "description": "acl_office", "entries": []}

    reloaded = client.get("/api/v1/acls").json()["config"]["ipAclGroups"][-1]
    assert reloaded == created
