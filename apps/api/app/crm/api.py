from __future__ import annotations

import uuid
from typing import Any, Literal

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from app.context import get_correlation_id, set_acting_user_id
from app.core.auth import require_authenticated_user
from app.core.database import get_db
from app.core.errors import http_error_response
from app.crm import repositories  # noqa: F401
from app.crm.dashboard import DashboardService
from app.crm.models import TaskStatus
from app.crm.schemas import (
    ActivityCreate,
    ActivityRead,
    ActivityTimeline,
    CompanyCreate,
    CompanyRead,
    CompanyUpdate,
    ContactCreate,
    ContactRead,
    ContactUpdate,
    DashboardRead,
    DealBoard,
    DealCreate,
    DealRead,
    DealStageChange,
    DealUpdate,
    FormOptions,
    ListView,
    TaskCreate,
    TaskRead,
    TaskStatusChange,
    TaskUpdate,
)
from app.crm.service import (
    ActivityService,
    CompanyService,
    ContactService,
    DealService,
    OptionsService,
    TaskService,
)
from app.platform.gateway.gateway import DataGateway
from app.platform.gateway.registry import get_repositories
from app.platform.security.context import AuthContext

companies_router = APIRouter(prefix="/api/crm", tags=["crm.companies"])
contacts_router = APIRouter(prefix="/api/crm", tags=["crm.contacts"])
deals_router = APIRouter(prefix="/api/crm", tags=["crm.deals"])
tasks_router = APIRouter(prefix="/api/crm", tags=["crm.tasks"])
activities_router = APIRouter(prefix="/api/crm", tags=["crm.activities"])
dashboard_router = APIRouter(prefix="/api/crm", tags=["crm.dashboard"])
company_service = CompanyService()
contact_service = ContactService()
deal_service = DealService()
task_service = TaskService()
activity_service = ActivityService()
options_service = OptionsService()
dashboard_service = DashboardService()


async def get_current_user(
    request: Request,
    user_id: uuid.UUID = Depends(require_authenticated_user),
) -> AuthContext:
    set_acting_user_id(str(user_id))
    correlation_id = get_correlation_id() or getattr(getattr(request.state, "context", None), "request_id", None)
    return AuthContext(user_id=user_id, correlation_id=correlation_id)


def get_gateway(
    db: Session = Depends(get_db),
    user: AuthContext = Depends(get_current_user),
) -> DataGateway:
    return DataGateway(db, user, get_repositories())


@companies_router.get("/companies", response_model=ListView[CompanyRead])
def list_companies(
    request: Request,
    search: str | None = Query(default=None),
    gateway: DataGateway = Depends(get_gateway),
) -> ListView[CompanyRead] | JSONResponse:
    try:
        return company_service.list_companies(gateway, search=search)
    except HTTPException as exc:
        return http_error_response(request, exc, code="crm_company_list_failed")


@companies_router.post("/companies", response_model=CompanyRead, status_code=status.HTTP_201_CREATED)
def create_company(
    request: Request,
    dto: CompanyCreate,
    gateway: DataGateway = Depends(get_gateway),
) -> CompanyRead | JSONResponse:
    try:
        return company_service.create_company(gateway, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, code="crm_company_create_failed")


@companies_router.get("/companies/{company_id}", response_model=CompanyRead)
def get_company(
    request: Request,
    company_id: uuid.UUID,
    gateway: DataGateway = Depends(get_gateway),
) -> CompanyRead | JSONResponse:
    try:
        return company_service.get(gateway, company_id)
    except HTTPException as exc:
        return http_error_response(request, exc, code="crm_company_get_failed")


@companies_router.patch("/companies/{company_id}", response_model=CompanyRead)
def patch_company(
    request: Request,
    company_id: uuid.UUID,
    dto: CompanyUpdate,
    gateway: DataGateway = Depends(get_gateway),
) -> CompanyRead | JSONResponse:
    try:
        return company_service.update_company(gateway, company_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, code="crm_company_update_failed")


@companies_router.delete("/companies/{company_id}", response_model=None)
def delete_company(
    request: Request,
    company_id: uuid.UUID,
    confirm: bool = Query(default=False),
    gateway: DataGateway = Depends(get_gateway),
) -> Any:
    try:
        company_service.delete(gateway, company_id, confirm=confirm)
        return {"status": "deleted"}
    except HTTPException as exc:
        return http_error_response(request, exc, code="crm_company_delete_failed")


@contacts_router.get("/contacts", response_model=ListView[ContactRead])
def list_contacts(
    request: Request,
    search: str | None = Query(default=None),
    gateway: DataGateway = Depends(get_gateway),
) -> ListView[ContactRead] | JSONResponse:
    try:
        return contact_service.list_contacts(gateway, search=search)
    except HTTPException as exc:
        return http_error_response(request, exc, code="crm_contact_list_failed")


@contacts_router.post("/contacts", response_model=ContactRead, status_code=status.HTTP_201_CREATED)
def create_contact(
    request: Request,
    dto: ContactCreate,
    gateway: DataGateway = Depends(get_gateway),
) -> ContactRead | JSONResponse:
    try:
        return contact_service.create_contact(gateway, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, code="crm_contact_create_failed")


@contacts_router.get("/contacts/{contact_id}", response_model=ContactRead)
def get_contact(
    request: Request,
    contact_id: uuid.UUID,
    gateway: DataGateway = Depends(get_gateway),
) -> ContactRead | JSONResponse:
    try:
        return contact_service.get(gateway, contact_id)
    except HTTPException as exc:
        return http_error_response(request, exc, code="crm_contact_get_failed")


@contacts_router.patch("/contacts/{contact_id}", response_model=ContactRead)
def patch_contact(
    request: Request,
    contact_id: uuid.UUID,
    dto: ContactUpdate,
    gateway: DataGateway = Depends(get_gateway),
) -> ContactRead | JSONResponse:
    try:
        return contact_service.update_contact(gateway, contact_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, code="crm_contact_update_failed")


@contacts_router.delete("/contacts/{contact_id}", response_model=None)
def delete_contact(
    request: Request,
    contact_id: uuid.UUID,
    confirm: bool = Query(default=False),
    gateway: DataGateway = Depends(get_gateway),
) -> Any:
    try:
        contact_service.delete(gateway, contact_id, confirm=confirm)
        return {"status": "deleted"}
    except HTTPException as exc:
        return http_error_response(request, exc, code="crm_contact_delete_failed")


@deals_router.get("/deals", response_model=ListView[DealRead])
def list_deals(
    request: Request,
    gateway: DataGateway = Depends(get_gateway),
) -> ListView[DealRead] | JSONResponse:
    try:
        return deal_service.list_deals(gateway)
    except HTTPException as exc:
        return http_error_response(request, exc, code="crm_deal_list_failed")


@deals_router.get("/deals/board", response_model=DealBoard)
def deal_board(
    request: Request,
    gateway: DataGateway = Depends(get_gateway),
) -> DealBoard | JSONResponse:
    try:
        return deal_service.board(gateway)
    except HTTPException as exc:
        return http_error_response(request, exc, code="crm_deal_board_failed")


@deals_router.post("/deals", response_model=DealRead, status_code=status.HTTP_201_CREATED)
def create_deal(
    request: Request,
    dto: DealCreate,
    gateway: DataGateway = Depends(get_gateway),
) -> DealRead | JSONResponse:
    try:
        return deal_service.create_deal(gateway, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, code="crm_deal_create_failed")


@deals_router.get("/deals/{deal_id}", response_model=DealRead)
def get_deal(
    request: Request,
    deal_id: uuid.UUID,
    gateway: DataGateway = Depends(get_gateway),
) -> DealRead | JSONResponse:
    try:
        return deal_service.get(gateway, deal_id)
    except HTTPException as exc:
        return http_error_response(request, exc, code="crm_deal_get_failed")


@deals_router.patch("/deals/{deal_id}", response_model=DealRead)
def patch_deal(
    request: Request,
    deal_id: uuid.UUID,
    dto: DealUpdate,
    gateway: DataGateway = Depends(get_gateway),
) -> DealRead | JSONResponse:
    try:
        return deal_service.update_deal(gateway, deal_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, code="crm_deal_update_failed")


@deals_router.post("/deals/{deal_id}/stage", response_model=DealRead)
def change_deal_stage(
    request: Request,
    deal_id: uuid.UUID,
    dto: DealStageChange,
    gateway: DataGateway = Depends(get_gateway),
) -> DealRead | JSONResponse:
    try:
        return deal_service.change_stage(gateway, deal_id, dto.stage)
    except HTTPException as exc:
        return http_error_response(request, exc, code="crm_deal_stage_change_failed")


@deals_router.delete("/deals/{deal_id}", response_model=None)
def delete_deal(
    request: Request,
    deal_id: uuid.UUID,
    confirm: bool = Query(default=False),
    gateway: DataGateway = Depends(get_gateway),
) -> Any:
    try:
        deal_service.delete(gateway, deal_id, confirm=confirm)
        return {"status": "deleted"}
    except HTTPException as exc:
        return http_error_response(request, exc, code="crm_deal_delete_failed")


@tasks_router.get("/tasks", response_model=ListView[TaskRead])
def list_tasks(
    request: Request,
    status_filter: Literal["all", "pending", "in_progress", "completed"] = Query(default="all", alias="status"),
    gateway: DataGateway = Depends(get_gateway),
) -> ListView[TaskRead] | JSONResponse:
    try:
        task_status = None if status_filter == "all" else TaskStatus(status_filter)
        return task_service.list_tasks(gateway, status_filter=task_status)
    except HTTPException as exc:
        return http_error_response(request, exc, code="crm_task_list_failed")


@tasks_router.post("/tasks", response_model=TaskRead, status_code=status.HTTP_201_CREATED)
def create_task(
    request: Request,
    dto: TaskCreate,
    gateway: DataGateway = Depends(get_gateway),
) -> TaskRead | JSONResponse:
    try:
        return task_service.create_task(gateway, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, code="crm_task_create_failed")


@tasks_router.get("/tasks/{task_id}", response_model=TaskRead)
def get_task(
    request: Request,
    task_id: uuid.UUID,
    gateway: DataGateway = Depends(get_gateway),
) -> TaskRead | JSONResponse:
    try:
        return task_service.get(gateway, task_id)
    except HTTPException as exc:
        return http_error_response(request, exc, code="crm_task_get_failed")


@tasks_router.patch("/tasks/{task_id}", response_model=TaskRead)
def patch_task(
    request: Request,
    task_id: uuid.UUID,
    dto: TaskUpdate,
    gateway: DataGateway = Depends(get_gateway),
) -> TaskRead | JSONResponse:
    try:
        return task_service.update_task(gateway, task_id, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, code="crm_task_update_failed")


@tasks_router.post("/tasks/{task_id}/status", response_model=TaskRead)
def change_task_status(
    request: Request,
    task_id: uuid.UUID,
    dto: TaskStatusChange,
    gateway: DataGateway = Depends(get_gateway),
) -> TaskRead | JSONResponse:
    try:
        return task_service.change_status(gateway, task_id, dto.status)
    except HTTPException as exc:
        return http_error_response(request, exc, code="crm_task_status_change_failed")


@tasks_router.delete("/tasks/{task_id}", response_model=None)
def delete_task(
    request: Request,
    task_id: uuid.UUID,
    confirm: bool = Query(default=False),
    gateway: DataGateway = Depends(get_gateway),
) -> Any:
    try:
        task_service.delete(gateway, task_id, confirm=confirm)
        return {"status": "deleted"}
    except HTTPException as exc:
        return http_error_response(request, exc, code="crm_task_delete_failed")


@activities_router.get("/activities", response_model=ListView[ActivityRead])
def list_activities(
    request: Request,
    gateway: DataGateway = Depends(get_gateway),
) -> ListView[ActivityRead] | JSONResponse:
    try:
        return activity_service.list_activities(gateway)
    except HTTPException as exc:
        return http_error_response(request, exc, code="crm_activity_list_failed")


@activities_router.get("/activities/timeline", response_model=ActivityTimeline)
def activity_timeline(
    request: Request,
    gateway: DataGateway = Depends(get_gateway),
) -> ActivityTimeline | JSONResponse:
    try:
        return activity_service.timeline(gateway)
    except HTTPException as exc:
        return http_error_response(request, exc, code="crm_activity_timeline_failed")


@activities_router.post("/activities", response_model=ActivityRead, status_code=status.HTTP_201_CREATED)
def log_activity(
    request: Request,
    dto: ActivityCreate,
    gateway: DataGateway = Depends(get_gateway),
) -> ActivityRead | JSONResponse:
    try:
        return activity_service.log_activity(gateway, dto)
    except HTTPException as exc:
        return http_error_response(request, exc, code="crm_activity_create_failed")


@activities_router.get("/activities/{activity_id}", response_model=ActivityRead)
def get_activity(
    request: Request,
    activity_id: uuid.UUID,
    gateway: DataGateway = Depends(get_gateway),
) -> ActivityRead | JSONResponse:
    try:
        return activity_service.get(gateway, activity_id)
    except HTTPException as exc:
        return http_error_response(request, exc, code="crm_activity_get_failed")


@activities_router.delete("/activities/{activity_id}", response_model=None)
def delete_activity(
    request: Request,
    activity_id: uuid.UUID,
    confirm: bool = Query(default=False),
    gateway: DataGateway = Depends(get_gateway),
) -> Any:
    try:
        activity_service.delete(gateway, activity_id, confirm=confirm)
        return {"status": "deleted"}
    except HTTPException as exc:
        return http_error_response(request, exc, code="crm_activity_delete_failed")


@dashboard_router.get("/options", response_model=FormOptions)
def form_options(
    request: Request,
    gateway: DataGateway = Depends(get_gateway),
) -> FormOptions | JSONResponse:
    try:
        return options_service.form_options(gateway)
    except HTTPException as exc:
        return http_error_response(request, exc, code="crm_options_failed")


@dashboard_router.get("/dashboard", response_model=DashboardRead)
def dashboard(
    request: Request,
    gateway: DataGateway = Depends(get_gateway),
) -> DashboardRead | JSONResponse:
    try:
        return dashboard_service.fetch(gateway)
    except HTTPException as exc:
        return http_error_response(request, exc, code="crm_dashboard_failed")
