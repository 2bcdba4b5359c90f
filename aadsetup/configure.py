#!/usr/bin/env python3
"""
Register the TodoList manual-JWT sample in an Entra ID tenant.

Usage:
  python -m aadsetup [--tenant-id TENANT_ID] [--username USER@TENANT]

Steps (strictly in this order, no rollback on failure):
- sign in to Microsoft Graph (device code, or username/password when
  --username is given; password from AADSETUP_PASSWORD or prompted)
- look up the tenant's default domain
- register TodoListService-ManualJwt and its service principal
- register TodoListClient-ManualJwt (public client) and its service principal
- declare the client's delegated access to the service's user_impersonation
- write the ids into ../TodoListService-ManualJwt/Web.Config and
  ../TodoListClient/App.Config

If a step fails, applications already created stay in the tenant and must
be removed by hand before re-running.
"""

from __future__ import annotations

import argparse
import getpass
import os
import sys
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from .config_patcher import replace_settings
from .graph_client import GraphClient, GraphConfig
from .models import Application, Credential, PermissionKind, RequiredResourceAccess
from .permissions import aggregate_required_access, resolve_permissions

SERVICE_NAME = "TodoListService-ManualJwt"
SERVICE_HOME_PAGE = "https://localhost:44324"
CLIENT_NAME = "TodoListClient-ManualJwt"
CLIENT_REPLY_URL = "https://TodoListClient-ManualJwt"
USER_IMPERSONATION = "user_impersonation"

SERVICE_CONFIG = Path("..") / "TodoListService-ManualJwt" / "Web.Config"
CLIENT_CONFIG = Path("..") / "TodoListClient" / "App.Config"
DEFAULT_CONFIG_FILE = "aadsetup_config.json"

PORTAL_APP_URL = "https://portal.azure.com/#blade/Microsoft_AAD_RegisteredApps/ApplicationMenuBlade/Overview/appId/{app_id}/isMSAApp/"


@dataclass
class ProvisioningResult:
    tenant_id: str
    tenant_name: str
    service: Application
    client: Application
    required_access: List[RequiredResourceAccess] = field(default_factory=list)


def _status(msg: str) -> None:
    print(f"[configure] {msg}")


def resolve_config(path_arg: Optional[str] = None) -> tuple[GraphConfig, str]:
    """Use AADSETUP_CONFIG if set; else aadsetup_config.json if present; else env."""
    path_arg = path_arg or os.environ.get("AADSETUP_CONFIG")
    if path_arg:
        p = Path(path_arg)
        if not p.exists():
            raise FileNotFoundError(f"config file '{path_arg}' not found")
        return GraphConfig.from_file(str(p)), f"file:{p.resolve()}"
    default = Path(DEFAULT_CONFIG_FILE)
    if default.exists():
        return GraphConfig.from_file(str(default)), f"file:{default.resolve()}"
    return GraphConfig.from_env(), "env"


def service_application_body(tenant_name: str) -> dict:
    return {
        "displayName": SERVICE_NAME,
        "identifierUris": [f"https://{tenant_name}/{SERVICE_NAME}"],
        "isFallbackPublicClient": False,
        "web": {"homePageUrl": SERVICE_HOME_PAGE},
        "api": {
            "oauth2PermissionScopes": [
                {
                    "adminConsentDescription": f"Allow the application to access {SERVICE_NAME} on behalf of the signed-in user.",
                    "adminConsentDisplayName": f"Access {SERVICE_NAME}",
                    "userConsentDescription": f"Allow the application to access {SERVICE_NAME} on your behalf.",
                    "userConsentDisplayName": f"Access {SERVICE_NAME}",
                    "id": str(uuid.uuid4()),
                    "isEnabled": True,
                    "type": "User",
                    "value": USER_IMPERSONATION,
                }
            ]
        },
    }


def client_application_body() -> dict:
    return {
        "displayName": CLIENT_NAME,
        "isFallbackPublicClient": True,
        "publicClient": {"redirectUris": [CLIENT_REPLY_URL]},
    }


def configure_applications(
    client: GraphClient,
    credential: Optional[Credential] = None,
    tenant_id: Optional[str] = None,
    service_config: Path = SERVICE_CONFIG,
    client_config: Path = CLIENT_CONFIG,
) -> ProvisioningResult:
    _status("Signing in to Microsoft Graph...")
    tenant_id = client.authenticate(credential, tenant_id)

    tenant = client.get_tenant_details()
    tenant_name = tenant.default_domain
    if not tenant_name:
        raise RuntimeError(f"Tenant {tenant_id} has no default verified domain")
    _status(f"Tenant: {tenant_name} ({tenant_id})")

    _status(f"Creating the AAD application ({SERVICE_NAME})")
    service_app = client.create_application(service_application_body(tenant_name))
    service_sp = client.create_service_principal(service_app.app_id)
    _status(f"Done creating the service application ({SERVICE_NAME}), appId {service_app.app_id}")

    _status(f"Creating the AAD application ({CLIENT_NAME})")
    client_app = client.create_application(client_application_body())
    client.create_service_principal(client_app.app_id)
    _status(f"Done creating the client application ({CLIENT_NAME}), appId {client_app.app_id}")

    _status(f"Getting access from '{CLIENT_NAME}' to '{SERVICE_NAME}'")
    access = resolve_permissions(client, service_sp, USER_IMPERSONATION, PermissionKind.DELEGATED)
    if not access:
        print(f"[configure] WARN: '{USER_IMPERSONATION}' is not exposed by {SERVICE_NAME}", file=sys.stderr)
    required = aggregate_required_access((service_app.app_id, access))
    client.update_required_resource_access(client_app.id, required)
    _status("Granted permissions.")

    audience = service_app.identifier_uris[0]
    _status(f"Updating the sample code ({service_config})")
    replace_settings(service_config, {
        "ida:Tenant": tenant_name,
        "ida:Audience": audience,
    })

    _status(f"Updating the sample code ({client_config})")
    replace_settings(client_config, {
        "ida:Tenant": tenant_name,
        "ida:ClientId": client_app.app_id,
        "ida:RedirectUri": client_app.reply_urls[0],
        "todo:TodoListResourceId": audience,
        "todo:TodoListBaseAddress": service_app.home_page or SERVICE_HOME_PAGE,
    })

    return ProvisioningResult(
        tenant_id=tenant_id,
        tenant_name=tenant_name,
        service=service_app,
        client=client_app,
        required_access=required,
    )


def _read_credential(username: Optional[str]) -> Optional[Credential]:
    if not username:
        return None
    password = os.environ.get("AADSETUP_PASSWORD") or getpass.getpass(f"Password for {username}: ")
    return Credential(username=username, password=password)


def main(argv: list[str] | None = None) -> int:
    ap = argparse.ArgumentParser(description="Register the TodoList manual-JWT sample applications in Entra ID.")
    ap.add_argument("--username", help="Sign in with this account (password from AADSETUP_PASSWORD or prompt)")
    ap.add_argument("--tenant-id", help="Tenant id or domain to sign in to (default: the account's home tenant)")
    args = ap.parse_args(argv)

    try:
        cfg, mode = resolve_config()
        _status(f"Config mode: {mode}")
        credential = _read_credential(args.username)
        result = configure_applications(GraphClient(cfg), credential, args.tenant_id)
    except Exception as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    print()
    print(f"{SERVICE_NAME}: {PORTAL_APP_URL.format(app_id=result.service.app_id)}")
    print(f"{CLIENT_NAME}: {PORTAL_APP_URL.format(app_id=result.client.app_id)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
