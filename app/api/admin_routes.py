"""
Admin API routes for the client approval lifecycle.

Protected by bearer authentication; every route requires the admin role.
"""

from uuid import UUID

from fastapi import APIRouter, Depends, Query
from structlog import get_logger

from app.api.dependencies import (
    get_client_admin_service,
    get_read_credential_store,
    require_admin,
)
from app.db.models import Client
from app.models.api import (
    ApiResponse,
    CleanupData,
    ClientActionRequest,
    ClientData,
    ClientStatus,
    DeleteUserRequest,
    UpdateQuotaRequest,
)
from app.models.domain import AuthContext
from app.services.client_admin import ClientAdminService
from app.services.credentials import CredentialStore

logger = get_logger(__name__)
router = APIRouter(prefix="/admin", tags=["admin"])


def _client_data(client: Client) -> ClientData:
    return ClientData(
        client_id=client.client_id,
        user_id=client.user_id,
        description=client.description,
        status=ClientStatus(client.status),
        usage_quota=client.usage_quota,
        usage_count=client.usage_count,
        reset_date=client.reset_date,
        approved_by=client.approved_by,
        approved_at=client.approved_at,
        last_used_at=client.last_used_at,
        created_at=client.created_at,
    )


@router.get("/clients", response_model=ApiResponse[list[ClientData]])
async def list_clients(
    status: ClientStatus | None = Query(None),
    admin: AuthContext = Depends(require_admin),
    store: CredentialStore = Depends(get_read_credential_store),
) -> ApiResponse[list[ClientData]]:
    """List clients, newest first, optionally filtered by status."""
    clients = await store.list_clients(status)
    return ApiResponse(
        message=f"{len(clients)} clients",
        data=[_client_data(c) for c in clients],
    )


@router.post("/clients/{client_id}/approve", response_model=ApiResponse[ClientData])
async def approve_client(
    client_id: str,
    admin: AuthContext = Depends(require_admin),
    service: ClientAdminService = Depends(get_client_admin_service),
) -> ApiResponse[ClientData]:
    """Pending -> active. Anything else is a 409."""
    client = await service.approve(client_id, admin.email)
    return ApiResponse(message="Client approved", data=_client_data(client))


@router.post("/clients/{client_id}/suspend", response_model=ApiResponse[ClientData])
async def suspend_client(
    client_id: str,
    request: ClientActionRequest | None = None,
    admin: AuthContext = Depends(require_admin),
    service: ClientAdminService = Depends(get_client_admin_service),
) -> ApiResponse[ClientData]:
    """
    Active -> suspended.

    The owning user is deactivated and every token of the client revoked.
    """
    client = await service.suspend(client_id, admin.email, request.reason if request else None)
    return ApiResponse(message="Client suspended", data=_client_data(client))


@router.post("/clients/{client_id}/revoke", response_model=ApiResponse[ClientData])
async def revoke_client(
    client_id: str,
    request: ClientActionRequest | None = None,
    admin: AuthContext = Depends(require_admin),
    service: ClientAdminService = Depends(get_client_admin_service),
) -> ApiResponse[ClientData]:
    """Any non-revoked status -> revoked. Revoked is terminal."""
    client = await service.revoke(client_id, admin.email, request.reason if request else None)
    return ApiResponse(message="Client revoked", data=_client_data(client))


@router.post("/clients/{client_id}/reinstate", response_model=ApiResponse[ClientData])
async def reinstate_client(
    client_id: str,
    request: ClientActionRequest | None = None,
    admin: AuthContext = Depends(require_admin),
    service: ClientAdminService = Depends(get_client_admin_service),
) -> ApiResponse[ClientData]:
    client = await service.reinstate(client_id, admin.email, request.reason if request else None)
    return ApiResponse(message="Client reinstated", data=_client_data(client))


@router.put("/clients/{client_id}/quota", response_model=ApiResponse[ClientData])
async def update_client_quota(
    client_id: str,
    request: UpdateQuotaRequest,
    admin: AuthContext = Depends(require_admin),
    service: ClientAdminService = Depends(get_client_admin_service),
) -> ApiResponse[ClientData]:
    client = await service.update_quota(client_id, request.usage_quota)
    return ApiResponse(message="Quota updated", data=_client_data(client))


@router.post("/clients/{client_id}/reset-usage", response_model=ApiResponse[ClientData])
async def reset_client_usage(
    client_id: str,
    admin: AuthContext = Depends(require_admin),
    service: ClientAdminService = Depends(get_client_admin_service),
) -> ApiResponse[ClientData]:
    client = await service.reset_usage(client_id)
    return ApiResponse(message="Usage reset", data=_client_data(client))


@router.delete("/users/{user_id}", response_model=ApiResponse[None])
async def delete_user(
    user_id: UUID,
    request: DeleteUserRequest | None = None,
    admin: AuthContext = Depends(require_admin),
    service: ClientAdminService = Depends(get_client_admin_service),
) -> ApiResponse[None]:
    """Soft-delete a user, its clients and every token they hold."""
    await service.delete_user(user_id, request.reason if request else None)
    logger.info("admin_deleted_user", user_id=str(user_id), admin=admin.email)
    return ApiResponse(message="User deleted")


@router.post("/tokens/cleanup", response_model=ApiResponse[CleanupData])
async def cleanup_tokens(
    admin: AuthContext = Depends(require_admin),
    service: ClientAdminService = Depends(get_client_admin_service),
) -> ApiResponse[CleanupData]:
    """Run the expired-token sweep now instead of waiting for the cron job."""
    result = await service.cleanup_tokens()
    return ApiResponse(
        message="Expired tokens cleaned up",
        data=CleanupData(
            expired_marked=result.expired_marked,
            deleted=result.deleted,
            deny_list_purged=result.deny_list_purged,
        ),
    )
