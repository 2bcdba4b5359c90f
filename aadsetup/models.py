from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class PermissionKind(str, Enum):
    # Wire values of resourceAccess.type
    DELEGATED = "Scope"
    APPLICATION = "Role"


@dataclass
class Credential:
    username: str
    password: str

    def __repr__(self) -> str:
        return f"Credential(username={self.username!r}, password='***')"


@dataclass
class PermissionEntry:
    id: str
    value: str
    kind: PermissionKind

    @staticmethod
    def from_scope(data: Dict[str, Any]) -> "PermissionEntry":
        return PermissionEntry(
            id=data["id"],
            value=data.get("value") or "",
            kind=PermissionKind.DELEGATED,
        )

    @staticmethod
    def from_role(data: Dict[str, Any]) -> "PermissionEntry":
        return PermissionEntry(
            id=data["id"],
            value=data.get("value") or "",
            kind=PermissionKind.APPLICATION,
        )


@dataclass
class ResourceAccess:
    id: str
    kind: PermissionKind

    def to_graph(self) -> Dict[str, str]:
        return {"id": self.id, "type": self.kind.value}


@dataclass
class RequiredResourceAccess:
    resource_app_id: str
    resource_access: List[ResourceAccess] = field(default_factory=list)

    def to_graph(self) -> Dict[str, Any]:
        return {
            "resourceAppId": self.resource_app_id,
            "resourceAccess": [ra.to_graph() for ra in self.resource_access],
        }


@dataclass
class Application:
    id: str  # directory object id
    app_id: str
    display_name: str
    home_page: Optional[str] = None
    reply_urls: List[str] = field(default_factory=list)
    public_client: bool = False
    identifier_uris: List[str] = field(default_factory=list)

    @staticmethod
    def from_graph(data: Dict[str, Any]) -> "Application":
        web = data.get("web") or {}
        public = data.get("publicClient") or {}
        reply_urls = list(web.get("redirectUris") or []) + list(public.get("redirectUris") or [])
        return Application(
            id=data["id"],
            app_id=data["appId"],
            display_name=data.get("displayName") or "",
            home_page=web.get("homePageUrl"),
            reply_urls=reply_urls,
            public_client=bool(data.get("isFallbackPublicClient")),
            identifier_uris=list(data.get("identifierUris") or []),
        )


@dataclass
class ServicePrincipal:
    id: str
    app_id: str
    display_name: str
    oauth2_permissions: List[PermissionEntry] = field(default_factory=list)
    app_roles: List[PermissionEntry] = field(default_factory=list)

    @staticmethod
    def from_graph(data: Dict[str, Any]) -> "ServicePrincipal":
        return ServicePrincipal(
            id=data["id"],
            app_id=data["appId"],
            display_name=data.get("displayName") or "",
            oauth2_permissions=[PermissionEntry.from_scope(s) for s in data.get("oauth2PermissionScopes") or []],
            app_roles=[PermissionEntry.from_role(r) for r in data.get("appRoles") or []],
        )

    def exposed_permissions(self, kind: PermissionKind) -> List[PermissionEntry]:
        if kind is PermissionKind.DELEGATED:
            return self.oauth2_permissions
        return self.app_roles


@dataclass
class TenantDetails:
    tenant_id: str
    display_name: str
    verified_domains: List[Dict[str, Any]] = field(default_factory=list)

    @staticmethod
    def from_graph(data: Dict[str, Any]) -> "TenantDetails":
        return TenantDetails(
            tenant_id=data.get("id") or "",
            display_name=data.get("displayName") or "",
            verified_domains=list(data.get("verifiedDomains") or []),
        )

    @property
    def default_domain(self) -> Optional[str]:
        for d in self.verified_domains:
            if d.get("isDefault"):
                return d.get("name")
        return None
