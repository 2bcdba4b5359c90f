# tests/test_configure.py
from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, List

import pytest

import aadsetup.configure as cmod
from aadsetup.config_patcher import ConfigKeyNotFound
from aadsetup.graph_client import AuthenticationError
from aadsetup.models import Application, Credential, ServicePrincipal, TenantDetails

SERVICE_CONFIG = """<?xml version="1.0" encoding="utf-8"?>
<configuration>
  <appSettings>
    <add key="ida:Tenant" value="[Enter tenant name, e.g. contoso.onmicrosoft.com]" />
    <add key="ida:Audience" value="[Enter App ID URI of TodoListService]" />
  </appSettings>
</configuration>
"""

CLIENT_CONFIG = """<?xml version="1.0" encoding="utf-8"?>
<configuration>
  <appSettings>
    <add key="ida:AADInstance" value="https://login.microsoftonline.com/{0}" />
    <add key="ida:Tenant" value="[Enter tenant name]" />
    <add key="ida:ClientId" value="[Enter client ID]" />
    <add key="ida:RedirectUri" value="[Enter redirect URI]" />
    <add key="todo:TodoListResourceId" value="[Enter App ID URI]" />
    <add key="todo:TodoListBaseAddress" value="https://localhost:44321" />
  </appSettings>
</configuration>
"""


# -----------------------------
# Fake directory
# -----------------------------
class FakeGraphClient:
    """In-memory stand-in for GraphClient with the same public surface."""

    def __init__(self, domain: str = "contoso.onmicrosoft.com"):
        self.domain = domain
        self.apps: List[Dict[str, Any]] = []
        self.sps: List[ServicePrincipal] = []
        self.updates: List[Any] = []
        self.auth_args = None

    def authenticate(self, credential=None, tenant_id=None):
        self.auth_args = (credential, tenant_id)
        return tenant_id or "tid-from-token"

    def get_tenant_details(self):
        return TenantDetails(
            tenant_id="tid",
            display_name="Contoso",
            verified_domains=[{"name": "contoso.com", "isDefault": False}, {"name": self.domain, "isDefault": True}],
        )

    def create_application(self, body):
        n = len(self.apps) + 1
        data = dict(body, id=f"obj-{n}", appId=f"app-{n}")
        self.apps.append(data)
        return Application.from_graph(data)

    def create_service_principal(self, app_id):
        app = next(a for a in self.apps if a["appId"] == app_id)
        sp = ServicePrincipal.from_graph({
            "id": f"sp-{app_id}",
            "appId": app_id,
            "displayName": app["displayName"],
            "oauth2PermissionScopes": (app.get("api") or {}).get("oauth2PermissionScopes", [])
            + [{"id": "dir-read", "value": "Directory.Read"}],
        })
        self.sps.append(sp)
        return sp

    def find_service_principal(self, display_name):
        return next((sp for sp in self.sps if sp.display_name == display_name), None)

    def update_required_resource_access(self, object_id, records):
        self.updates.append((object_id, [r.to_graph() for r in records]))


@pytest.fixture
def config_files(tmp_path: Path):
    svc = tmp_path / "Web.Config"
    cli = tmp_path / "App.Config"
    svc.write_text(SERVICE_CONFIG, encoding="utf-8")
    cli.write_text(CLIENT_CONFIG, encoding="utf-8")
    return svc, cli


def setting(path: Path, key: str) -> str:
    from lxml import etree

    root = etree.parse(str(path)).getroot()
    return next(el.get("value") for el in root.iter("add") if el.get("key") == key)


# -----------------------------
# Orchestration
# -----------------------------
def test_end_to_end_contoso(config_files):
    svc, cli = config_files
    graph = FakeGraphClient()
    result = cmod.configure_applications(graph, None, None, service_config=svc, client_config=cli)

    assert result.tenant_name == "contoso.onmicrosoft.com"
    assert result.tenant_id == "tid-from-token"

    audience = "https://contoso.onmicrosoft.com/TodoListService-ManualJwt"
    assert setting(svc, "ida:Tenant") == "contoso.onmicrosoft.com"
    assert setting(svc, "ida:Audience") == audience

    assert setting(cli, "ida:Tenant") == "contoso.onmicrosoft.com"
    assert setting(cli, "ida:ClientId") == result.client.app_id == "app-2"
    assert setting(cli, "ida:RedirectUri") == "https://TodoListClient-ManualJwt"
    assert setting(cli, "todo:TodoListResourceId") == audience
    assert setting(cli, "todo:TodoListBaseAddress") == "https://localhost:44324"
    # untouched entry
    assert setting(cli, "ida:AADInstance") == "https://login.microsoftonline.com/{0}"


def test_applications_are_registered_as_expected(config_files):
    svc, cli = config_files
    graph = FakeGraphClient()
    cmod.configure_applications(graph, service_config=svc, client_config=cli)

    service, client = graph.apps
    assert service["displayName"] == "TodoListService-ManualJwt"
    assert service["isFallbackPublicClient"] is False
    assert service["web"]["homePageUrl"] == "https://localhost:44324"
    assert "redirectUris" not in service["web"]
    assert service["identifierUris"] == ["https://contoso.onmicrosoft.com/TodoListService-ManualJwt"]

    assert client["displayName"] == "TodoListClient-ManualJwt"
    assert client["isFallbackPublicClient"] is True
    assert client["publicClient"]["redirectUris"] == ["https://TodoListClient-ManualJwt"]

    # one service principal per application
    assert [sp.app_id for sp in graph.sps] == ["app-1", "app-2"]


def test_client_gets_only_user_impersonation_on_service(config_files):
    svc, cli = config_files
    graph = FakeGraphClient()
    cmod.configure_applications(graph, service_config=svc, client_config=cli)

    scope_id = graph.apps[0]["api"]["oauth2PermissionScopes"][0]["id"]
    assert graph.updates == [
        ("obj-2", [{"resourceAppId": "app-1", "resourceAccess": [{"id": scope_id, "type": "Scope"}]}])
    ]


def test_credential_and_tenant_are_passed_to_sign_in(config_files):
    svc, cli = config_files
    graph = FakeGraphClient()
    cred = Credential("admin@contoso.onmicrosoft.com", "pw")
    result = cmod.configure_applications(graph, cred, "t-guid", service_config=svc, client_config=cli)
    assert graph.auth_args == (cred, "t-guid")
    assert result.tenant_id == "t-guid"


def test_missing_client_key_aborts_after_service_patch(config_files):
    svc, cli = config_files
    cli.write_text(CLIENT_CONFIG.replace("ida:RedirectUri", "ida:Other"), encoding="utf-8")
    before = cli.read_bytes()
    graph = FakeGraphClient()

    with pytest.raises(ConfigKeyNotFound) as ei:
        cmod.configure_applications(graph, service_config=svc, client_config=cli)
    assert "ida:RedirectUri" in str(ei.value)
    # no rollback: apps stay created and the service file stays patched
    assert len(graph.apps) == 2
    assert setting(svc, "ida:Tenant") == "contoso.onmicrosoft.com"
    assert cli.read_bytes() == before


def test_authentication_failure_creates_nothing(config_files):
    svc, cli = config_files

    class Rejecting(FakeGraphClient):
        def authenticate(self, credential=None, tenant_id=None):
            raise AuthenticationError("AADSTS50126")

    graph = Rejecting()
    with pytest.raises(AuthenticationError):
        cmod.configure_applications(graph, service_config=svc, client_config=cli)
    assert graph.apps == []


# -----------------------------
# CLI
# -----------------------------
@pytest.fixture
def cli_env(tmp_path: Path, monkeypatch):
    work = tmp_path / "AppCreationScripts"
    work.mkdir()
    (tmp_path / "TodoListService-ManualJwt").mkdir()
    (tmp_path / "TodoListClient").mkdir()
    (tmp_path / "TodoListService-ManualJwt" / "Web.Config").write_text(SERVICE_CONFIG, encoding="utf-8")
    (tmp_path / "TodoListClient" / "App.Config").write_text(CLIENT_CONFIG, encoding="utf-8")
    monkeypatch.chdir(work)
    monkeypatch.delenv("AADSETUP_CONFIG", raising=False)
    return tmp_path


def test_main_success_uses_default_paths(cli_env: Path, monkeypatch, capsys):
    graph = FakeGraphClient()
    monkeypatch.setattr(cmod, "GraphClient", lambda cfg: graph)
    monkeypatch.setenv("AADSETUP_PASSWORD", "pw")

    rc = cmod.main(["--username", "admin@contoso.onmicrosoft.com", "--tenant-id", "t-guid"])
    assert rc == 0
    cred, tenant = graph.auth_args
    assert cred.username == "admin@contoso.onmicrosoft.com" and cred.password == "pw"
    assert tenant == "t-guid"
    assert setting(cli_env / "TodoListClient" / "App.Config", "ida:ClientId") == "app-2"
    out = capsys.readouterr().out
    assert "app-1" in out and "app-2" in out


def test_main_without_arguments_signs_in_interactively(cli_env: Path, monkeypatch):
    graph = FakeGraphClient()
    monkeypatch.setattr(cmod, "GraphClient", lambda cfg: graph)
    assert cmod.main([]) == 0
    assert graph.auth_args == (None, None)


def test_main_reports_errors_with_nonzero_exit(cli_env: Path, monkeypatch, capsys):
    (cli_env / "TodoListService-ManualJwt" / "Web.Config").write_text(
        SERVICE_CONFIG.replace("ida:Audience", "ida:Something"), encoding="utf-8"
    )
    monkeypatch.setattr(cmod, "GraphClient", lambda cfg: FakeGraphClient())
    rc = cmod.main([])
    assert rc == 1
    err = capsys.readouterr().err
    assert "ida:Audience" in err and "Web.Config" in err


def test_resolve_config_prefers_explicit_file(tmp_path: Path, monkeypatch):
    p = tmp_path / "cfg.json"
    p.write_text('{"client_id": "from-file"}', encoding="utf-8")
    monkeypatch.setenv("AADSETUP_CONFIG", str(p))
    cfg, mode = cmod.resolve_config()
    assert cfg.client_id == "from-file"
    assert mode.startswith("file:")


def test_resolve_config_missing_file_raises(monkeypatch):
    monkeypatch.setenv("AADSETUP_CONFIG", "does-not-exist.json")
    with pytest.raises(FileNotFoundError):
        cmod.resolve_config()


def test_main_prompts_for_password_when_not_in_env(cli_env: Path, monkeypatch):
    graph = FakeGraphClient()
    prompts: List[str] = []

    def fake_getpass(prompt: str = "") -> str:
        prompts.append(prompt)
        return "typed-pw"

    monkeypatch.setattr(cmod, "GraphClient", lambda cfg: graph)
    monkeypatch.setattr(cmod.getpass, "getpass", fake_getpass)

    rc = cmod.main(["--username", "admin@contoso.onmicrosoft.com"])
    assert rc == 0
    assert prompts == ["Password for admin@contoso.onmicrosoft.com: "]
    cred, tenant = graph.auth_args
    assert cred.password == "typed-pw"
    assert tenant is None
