"""
访问网关管理路由 (/api/v1/access)

端点:
- GET /access/rules - 查看当前规则（令牌脱敏）
- PUT /access/rules - 热更新规则，下一次请求立即生效
- GET /access/logs - 审计日志，游标分页
"""
from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi_pagination.cursor import CursorPage, CursorParams
from fastapi_pagination.ext.sqlalchemy import apaginate
from sqlalchemy.ext.asyncio import AsyncSession

from app.deps.services import get_access_rule_source, get_db
from app.repositories.access_log_repository import AccessLogRepository
from app.schemas.access import AccessLogDTO, AccessRulesResponse, AccessRulesUpdate
from app.services.access.rules import AccessRules, AccessRuleSource
from app.utils.security import mask_secret

router = APIRouter(prefix="/access", tags=["Access"])


def _to_response(rules: AccessRules) -> AccessRulesResponse:
    return AccessRulesResponse(
        enabled=rules.enabled,
        ip_allowlist=list(rules.ip_allowlist),
        pass_token_enabled=rules.pass_token_enabled,
        pass_tokens_masked=[mask_secret(token, head=2, tail=2) for token in rules.pass_tokens],
    )


@router.get("/rules", response_model=AccessRulesResponse)
async def get_access_rules(
    source: AccessRuleSource = Depends(get_access_rule_source),
) -> AccessRulesResponse:
    return _to_response(source.current())


@router.put("/rules", response_model=AccessRulesResponse)
async def update_access_rules(
    payload: AccessRulesUpdate,
    source: AccessRuleSource = Depends(get_access_rule_source),
) -> AccessRulesResponse:
    changes = payload.model_dump(exclude_none=True)
    if not changes:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="未提供任何规则字段")
    return _to_response(source.update(**changes))


@router.get("/logs", response_model=CursorPage[AccessLogDTO])
async def list_access_logs(
    params: CursorParams = Depends(),
    client_ip: str | None = Query(None, max_length=64, description="按客户端 IP 过滤"),
    passed: bool | None = Query(None, description="按是否通过过滤"),
    db: AsyncSession = Depends(get_db),
) -> CursorPage[AccessLogDTO]:
    """
    查询访问审计日志，使用游标分页。
    """
    stmt = AccessLogRepository(db).build_query(client_ip=client_ip, passed=passed)
    return await apaginate(db, stmt, params=params)
