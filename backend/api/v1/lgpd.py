from fastapi import APIRouter, Depends, Query, Request
from datetime import datetime
from typing import Optional
from schemas.lgpd_schema import ConsentIn, DataRequestCreate, RectificationRequest, ProcessDataRequest
from api.dependencies import get_current_user, admin_required
from db.models.user import User as UserModel
from db.session import get_db_session
from sqlalchemy.ext.asyncio import AsyncSession
from services.lgpd_service import (
    record_consent, revoke_consent, list_consents, process_access_request, process_portability_request,
    process_rectification_request, create_erasure_request, list_user_requests, process_request,
    list_requests_admin, generate_compliance_report, get_consent_stats,
)
from utils.responses import success_response
from utils.timing import timeit

router = APIRouter(prefix="/api/lgpd")

@router.post("/consent")
async def consent(data: ConsentIn, request: Request, current_user: UserModel = Depends(get_current_user), db: AsyncSession = Depends(get_db_session)):
    result = await record_consent(current_user, data.consent_type, data.granted, data.purpose, db, request)
    return success_response(result, "Consentimento registrado com sucesso")

@router.get("/consent")
async def consents(current_user: UserModel = Depends(get_current_user), db: AsyncSession = Depends(get_db_session)):
    return success_response(await list_consents(current_user, db))

@router.delete("/consent/{consent_type}")
async def revoke(consent_type: str, request: Request, current_user: UserModel = Depends(get_current_user), db: AsyncSession = Depends(get_db_session)):
    result = await revoke_consent(current_user, consent_type, db, request)
    return success_response(result, "Consentimento revogado com sucesso")

@router.post("/request/access")
@timeit("lgpd_access")
async def access(request: Request, current_user: UserModel = Depends(get_current_user), db: AsyncSession = Depends(get_db_session)):
    result = await process_access_request(current_user, db, request)
    return success_response(result, "Dados pessoais coletados com sucesso")

@router.post("/request/portability")
@timeit("lgpd_portability")
async def portability(request: Request, current_user: UserModel = Depends(get_current_user), db: AsyncSession = Depends(get_db_session)):
    result = await process_portability_request(current_user.id, db, request=request)
    return success_response(result, "Solicitação de portabilidade processada. Você receberá um email com o link para download.")

@router.post("/request/rectification")
async def rectification(data: RectificationRequest, request: Request, current_user: UserModel = Depends(get_current_user), db: AsyncSession = Depends(get_db_session)):
    result = await process_rectification_request(current_user, data, db, request)
    return success_response(result, "Dados atualizados com sucesso")

@router.post("/request/erasure")
async def erasure(data: DataRequestCreate, request: Request, current_user: UserModel = Depends(get_current_user), db: AsyncSession = Depends(get_db_session)):
    result = await create_erasure_request(current_user, data.reason, db, request)
    return success_response(result, "Solicitação de exclusão enviada. Será analisada pela equipe em até 15 dias úteis.")

@router.get("/requests")
async def my_requests(current_user: UserModel = Depends(get_current_user), db: AsyncSession = Depends(get_db_session)):
    return success_response(await list_user_requests(current_user, db))

# Admin

@router.get("/admin/requests")
async def admin_requests(
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    status: Optional[str] = None,
    type: Optional[str] = None,
    admin: UserModel = Depends(admin_required),
    db: AsyncSession = Depends(get_db_session),
):
    return success_response(await list_requests_admin(db, page, limit, status, type))

@router.patch("/admin/requests/{request_id}/process")
@timeit("lgpd_process_request")
async def admin_process_request(request_id: int, data: ProcessDataRequest, request: Request, admin: UserModel = Depends(admin_required), db: AsyncSession = Depends(get_db_session)):
    result = await process_request(admin, request_id, data.action, db, data.admin_notes, request)
    verb = "aprovada" if data.action == "approve" else "rejeitada"
    return success_response(result, f"Solicitação {verb} com sucesso")

@router.get("/admin/compliance-report")
async def compliance_report(start_date: datetime, end_date: datetime, admin: UserModel = Depends(admin_required), db: AsyncSession = Depends(get_db_session)):
    return success_response({"report": await generate_compliance_report(db, start_date, end_date)})

@router.get("/admin/consent-stats")
async def consent_stats(admin: UserModel = Depends(admin_required), db: AsyncSession = Depends(get_db_session)):
    return success_response(await get_consent_stats(db))

@router.get("/admin/export-user/{user_id}")
async def export_user(user_id: int, request: Request, admin: UserModel = Depends(admin_required), db: AsyncSession = Depends(get_db_session)):
    result = await process_portability_request(user_id, db, admin_email=admin.email, request=request)
    return success_response(result, "Dados do usuário exportados com sucesso")
