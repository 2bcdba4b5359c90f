from __future__ import annotations

from typing import Iterable, List, Sequence, Tuple, Union

from .graph_client import GraphClient
from .models import PermissionEntry, PermissionKind, RequiredResourceAccess, ResourceAccess, ServicePrincipal


class ServicePrincipalNotFound(RuntimeError):
    pass


def _split_requested(requested: str) -> set[str]:
    return {p.strip() for p in (requested or "").strip().split("|") if p.strip()}


def filter_permissions(
    catalog: Iterable[PermissionEntry], requested: str, kind: PermissionKind
) -> List[ResourceAccess]:
    """
    Match catalog entries against a pipe-delimited list of permission names.

    Output follows catalog order. Requested names missing from the catalog
    produce nothing and raise nothing, so a typo silently yields no grant.
    Matching is by name only; a disabled entry still matches.
    """
    wanted = _split_requested(requested)
    return [ResourceAccess(id=entry.id, kind=kind) for entry in catalog if entry.value in wanted]


def resolve_permissions(
    client: GraphClient,
    target: Union[str, ServicePrincipal],
    requested: str,
    kind: PermissionKind,
) -> List[ResourceAccess]:
    if isinstance(target, ServicePrincipal):
        sp = target
    else:
        sp = client.find_service_principal(target)
        if sp is None:
            raise ServicePrincipalNotFound(f"No service principal named '{target}'")
    return filter_permissions(sp.exposed_permissions(kind), requested, kind)


def required_resource_access(resource_app_id: str, access: Sequence[ResourceAccess]) -> RequiredResourceAccess:
    return RequiredResourceAccess(resource_app_id=resource_app_id, resource_access=list(access))


def aggregate_required_access(*pairs: Tuple[str, Sequence[ResourceAccess]]) -> List[RequiredResourceAccess]:
    """Build the complete requiredResourceAccess list for a client application.

    The result is submitted as a full replacement: access not listed here is
    dropped from the client.
    """
    return [required_resource_access(app_id, access) for app_id, access in pairs]
