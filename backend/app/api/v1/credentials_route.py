"""
凭证管理路由 (/api/v1/credentials)

端点:
- GET /credentials - 列出凭证概要（令牌脱敏）
- POST /credentials/refresh-expiring - 立即执行一次批量刷新
- POST /credentials/{subject_id}/refresh - 强制刷新指定凭证
- DELETE /credentials/{subject_id} - 删除凭证（幂等）
"""
from fastapi import APIRouter, Depends, HTTPException, status

from app.deps.services import get_credential_service
from app.schemas.base import MessageResponse
from app.schemas.credential import CredentialSummary, RefreshSummaryResponse
from app.services.credentials.credential_service import (
    CredentialNotFoundError,
    CredentialRefreshError,
    CredentialService,
)

router = APIRouter(prefix="/credentials", tags=["Credentials"])


@router.get("", response_model=list[CredentialSummary])
async def list_credentials(
    service: CredentialService = Depends(get_credential_service),
) -> list[CredentialSummary]:
    credentials = await service.list_credentials()
    return [
        CredentialSummary.build(item, needs_refresh=service.needs_refresh(item))
        for item in credentials
    ]


@router.post("/refresh-expiring", response_model=RefreshSummaryResponse)
async def refresh_expiring_credentials(
    service: CredentialService = Depends(get_credential_service),
) -> RefreshSummaryResponse:
    summary = await service.refresh_expiring_credentials()
    return RefreshSummaryResponse.model_validate(summary)


@router.post("/{subject_id}/refresh", response_model=CredentialSummary)
async def refresh_credential(
    subject_id: str,
    service: CredentialService = Depends(get_credential_service),
) -> CredentialSummary:
    try:
        credential = await service.refresh(subject_id)
    except CredentialNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    except CredentialRefreshError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
    return CredentialSummary.build(credential, needs_refresh=service.needs_refresh(credential))


@router.delete("/{subject_id}", response_model=MessageResponse)
async def delete_credential(
    subject_id: str,
    service: CredentialService = Depends(get_credential_service),
) -> MessageResponse:
    deleted = await service.delete_by_subject(subject_id)
    return MessageResponse(message="deleted" if deleted else "not_found")
