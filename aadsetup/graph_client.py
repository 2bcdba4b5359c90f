#!/usr/bin/env python3
from __future__ import annotations

import json
import os
import sys
from dataclasses import dataclass
from typing import Any, Dict, Generator, List, Optional

import msal
import requests

from .models import Application, Credential, RequiredResourceAccess, ServicePrincipal, TenantDetails

DEFAULT_GRAPH_BASE = "https://graph.microsoft.com/v1.0"
DEFAULT_AUTHORITY = "https://login.microsoftonline.com"
# Well-known public client id of Azure PowerShell (pre-consented in every tenant)
DEFAULT_CLIENT_ID = "1950a258-227b-4e31-a9cf-717495945fc2"
DEFAULT_TIMEOUT = 60


class AuthenticationError(RuntimeError):
    pass


class GraphError(RuntimeError):
    def __init__(self, status: int, message: str, body: str = "") -> None:
        super().__init__(f"Graph API error {status}: {message}")
        self.status = status
        self.body = body


class DuplicateApplicationError(RuntimeError):
    pass


@dataclass
class GraphConfig:
    client_id: str = DEFAULT_CLIENT_ID
    graph_base: str = DEFAULT_GRAPH_BASE
    authority_base: str = DEFAULT_AUTHORITY
    timeout: int = DEFAULT_TIMEOUT

    @staticmethod
    def from_file(path: str) -> "GraphConfig":
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return GraphConfig(
            client_id=data.get("client_id", DEFAULT_CLIENT_ID),
            graph_base=data.get("graph_base", DEFAULT_GRAPH_BASE),
            authority_base=data.get("authority_base", DEFAULT_AUTHORITY),
            timeout=int(data.get("timeout", DEFAULT_TIMEOUT)),
        )

    @staticmethod
    def from_env() -> "GraphConfig":
        timeout = os.environ.get("GRAPH_TIMEOUT", "")
        return GraphConfig(
            client_id=os.environ.get("AADSETUP_CLIENT_ID") or DEFAULT_CLIENT_ID,
            graph_base=os.environ.get("GRAPH_BASE") or DEFAULT_GRAPH_BASE,
            authority_base=os.environ.get("AUTHORITY_BASE") or DEFAULT_AUTHORITY,
            timeout=int(timeout) if timeout else DEFAULT_TIMEOUT,
        )

    @property
    def scopes(self) -> List[str]:
        resource = self.graph_base.split("/v1.0")[0].split("/beta")[0].rstrip("/")
        return [f"{resource}/.default"]


def _odata_quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


class GraphClient:
    """Authenticated session against the directory.

    Every directory operation goes through an instance of this class; there
    is no module-level sign-in state.
    """

    def __init__(self, cfg: GraphConfig) -> None:
        self.cfg = cfg
        self.session = requests.Session()
        self.tenant_id: Optional[str] = None
        self._token: Optional[str] = None

    # ----- Auth -----
    def _build_app(self, tenant_id: Optional[str]) -> msal.PublicClientApplication:
        authority = f"{self.cfg.authority_base.rstrip('/')}/{tenant_id or 'organizations'}"
        return msal.PublicClientApplication(self.cfg.client_id, authority=authority)

    def _device_flow(self, app: msal.PublicClientApplication) -> Dict[str, Any]:
        flow = app.initiate_device_flow(scopes=self.cfg.scopes)
        if "user_code" not in flow:
            raise AuthenticationError(f"Failed to create device flow: {flow.get('error_description') or flow}")
        print(flow["message"], file=sys.stderr)
        return app.acquire_token_by_device_flow(flow)

    def authenticate(self, credential: Optional[Credential] = None, tenant_id: Optional[str] = None) -> str:
        """Sign in and return the effective tenant id.

        - tenant only: interactive device code sign-in against that tenant
        - credential only: username/password against 'organizations'
        - both: username/password against the tenant
        - neither: device code sign-in against 'organizations'
        """
        app = self._build_app(tenant_id)
        if credential is None:
            result = self._device_flow(app)
        else:
            result = app.acquire_token_by_username_password(
                credential.username, credential.password, scopes=self.cfg.scopes
            )
        if "access_token" not in result:
            raise AuthenticationError(f"MSAL token acquisition failed: {result.get('error_description') or result}")

        self._token = result["access_token"]
        if not tenant_id:
            tenant_id = (result.get("id_token_claims") or {}).get("tid")
        if not tenant_id:
            raise AuthenticationError("Signed in, but the tenant id could not be determined")
        self.tenant_id = tenant_id
        return tenant_id

    def _headers(self) -> Dict[str, str]:
        if not self._token:
            raise AuthenticationError("Not signed in; call authenticate() first")
        return {"Authorization": f"Bearer {self._token}", "Content-Type": "application/json"}

    # ----- HTTP with bearer -----
    def _url(self, path: str) -> str:
        if path.startswith("https://"):
            return path
        return f"{self.cfg.graph_base.rstrip('/')}/{path.lstrip('/')}"

    def _check(self, resp: requests.Response) -> None:
        if resp.status_code >= 400:
            message = resp.text
            try:
                message = resp.json()["error"]["message"]
            except (ValueError, KeyError, TypeError):
                pass
            raise GraphError(resp.status_code, message, resp.text)

    def _get(self, path: str, params: Optional[Dict] = None) -> Dict:
        resp = self.session.get(self._url(path), headers=self._headers(), params=params, timeout=self.cfg.timeout)
        self._check(resp)
        return resp.json()

    def _post(self, path: str, body: Dict) -> Dict:
        resp = self.session.post(self._url(path), headers=self._headers(), json=body, timeout=self.cfg.timeout)
        self._check(resp)
        return resp.json()

    def _patch(self, path: str, body: Dict) -> None:
        resp = self.session.patch(self._url(path), headers=self._headers(), json=body, timeout=self.cfg.timeout)
        self._check(resp)

    def _iter_values(self, path: str, params: Optional[Dict] = None) -> Generator[Dict, None, None]:
        url = self._url(path)
        while True:
            data = self._get(url, params=params)
            for item in data.get("value", []):
                yield item
            next_link = data.get("@odata.nextLink")
            if not next_link:
                break
            url = next_link
            params = None  # nextLink already has query

    # ----- Public API -----
    def get_tenant_details(self) -> TenantDetails:
        orgs = list(self._iter_values("organization"))
        if not orgs:
            raise GraphError(404, "No organization returned for the signed-in tenant")
        return TenantDetails.from_graph(orgs[0])

    def list_applications_by_name(self, display_name: str) -> List[Application]:
        params = {"$filter": f"displayName eq {_odata_quote(display_name)}"}
        return [Application.from_graph(a) for a in self._iter_values("applications", params=params)]

    def create_application(self, body: Dict[str, Any]) -> Application:
        name = body.get("displayName") or ""
        existing = self.list_applications_by_name(name)
        if existing:
            raise DuplicateApplicationError(
                f"An application named '{name}' already exists (appId {existing[0].app_id}); "
                "delete it from the tenant and re-run"
            )
        return Application.from_graph(self._post("applications", body))

    def create_service_principal(self, app_id: str) -> ServicePrincipal:
        return ServicePrincipal.from_graph(self._post("servicePrincipals", {"appId": app_id}))

    def find_service_principal(self, display_name: str) -> Optional[ServicePrincipal]:
        params = {"$filter": f"displayName eq {_odata_quote(display_name)}"}
        for sp in self._iter_values("servicePrincipals", params=params):
            return ServicePrincipal.from_graph(sp)
        return None

    def update_required_resource_access(self, object_id: str, records: List[RequiredResourceAccess]) -> None:
        # Replaces the whole collection; anything not listed is removed.
        self._patch(f"applications/{object_id}", {"requiredResourceAccess": [r.to_graph() for r in records]})
