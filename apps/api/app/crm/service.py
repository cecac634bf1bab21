from __future__ import annotations

import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, ClassVar

from fastapi import HTTPException, status
from pydantic import BaseModel

from app import audit, events
from app.crm.models import DealStage, TaskStatus
from app.crm.schemas import (
    STAGE_LABELS,
    ActivityCreate,
    ActivityDay,
    ActivityRead,
    ActivityTimeline,
    CompanyCreate,
    CompanyRead,
    CompanyUpdate,
    ContactCreate,
    ContactRead,
    ContactUpdate,
    DealBoard,
    DealBoardColumn,
    DealCreate,
    DealRead,
    DealUpdate,
    FormOptions,
    ListView,
    OptionItem,
    TaskCreate,
    TaskRead,
    TaskUpdate,
    assume_utc,
)
from app.crm.store import ConfirmationRequiredError, EntityStore
from app.platform.gateway.gateway import DataGateway
from app.platform.gateway.http import GATEWAY_ERRORS, to_http_exception
from app.platform.gateway.query import Order


logger = logging.getLogger("app.crm")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@contextmanager
def gateway_errors_as_http() -> Iterator[None]:
    try:
        yield
    except ConfirmationRequiredError as exc:
        raise HTTPException(status_code=status.HTTP_428_PRECONDITION_REQUIRED, detail=str(exc)) from exc
    except GATEWAY_ERRORS as exc:
        raise to_http_exception(exc) from exc


def matches_search(values: list[Any], search: str | None) -> bool:
    """Case-insensitive substring match over the given field values."""

    if not search or not search.strip():
        return True
    needle = search.strip().lower()
    return any(isinstance(value, str) and needle in value.lower() for value in values)


def is_overdue(row: dict[str, Any], now: datetime | None = None) -> bool:
    due_date = assume_utc(row.get("due_date"))
    if due_date is None or row.get("status") == TaskStatus.COMPLETED.value:
        return False
    return due_date < (now or utcnow())


class EntityService:
    table: ClassVar[str]
    entity: ClassVar[str]
    read_model: ClassVar[type[BaseModel]]
    embed: ClassVar[tuple[str, ...]] = ()
    empty_message: ClassVar[str]

    @property
    def entity_type(self) -> str:
        return f"crm.{self.entity}"

    def store(self, gateway: DataGateway, **kwargs: Any) -> EntityStore:
        return EntityStore(gateway, self.table, embed=self.embed, **kwargs)

    def get(self, gateway: DataGateway, row_id: uuid.UUID) -> Any:
        with gateway_errors_as_http():
            row = gateway.select_one(self.table, row_id, embed=self.embed)
        if row is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{self.entity} not found")
        return self.to_read(row)

    def create(self, gateway: DataGateway, dto: BaseModel) -> Any:
        with gateway_errors_as_http():
            row = self.store(gateway).create(self.create_values(dto))
        read_model = self.to_read(row)
        self._record(gateway, "create", read_model, before=None)
        return read_model

    def update(self, gateway: DataGateway, row_id: uuid.UUID, dto: BaseModel) -> Any:
        before = self.get(gateway, row_id)
        changes = dto.model_dump(exclude_unset=True)
        with gateway_errors_as_http():
            row = self.store(gateway).update(row_id, changes)
        if row is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{self.entity} not found")
        read_model = self.to_read(row)
        self._record(gateway, "update", read_model, before=before)
        return read_model

    def delete(self, gateway: DataGateway, row_id: uuid.UUID, *, confirm: bool) -> None:
        with gateway_errors_as_http():
            deleted = self.store(gateway).delete(row_id, confirm=confirm)
        if not deleted:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"{self.entity} not found")
        audit.record(
            actor_user_id=gateway.ctx.actor,
            entity_type=self.entity_type,
            entity_id=str(row_id),
            action="delete",
            before=None,
            after=None,
            correlation_id=gateway.ctx.correlation_id,
        )
        events.publish(
            f"crm.{self.entity}.deleted",
            actor_user_id=gateway.ctx.actor,
            payload={f"{self.entity}_id": str(row_id)},
        )
        logger.info("crm.deleted", extra={"table": self.table, "action": "delete", "row_id": str(row_id)})

    def create_values(self, dto: BaseModel) -> dict[str, Any]:
        return dto.model_dump()

    def to_read(self, row: dict[str, Any]) -> Any:
        return self.read_model.model_validate(row)

    def list_view(self, items: list[Any]) -> ListView[Any]:
        return ListView[self.read_model](
            items=items,
            count=len(items),
            empty_message=None if items else self.empty_message,
        )

    def _record(self, gateway: DataGateway, action: str, read_model: Any, *, before: Any) -> None:
        verb = f"{action}d"
        audit.record(
            actor_user_id=gateway.ctx.actor,
            entity_type=self.entity_type,
            entity_id=str(read_model.id),
            action=action,
            before=before.model_dump(mode="json") if before is not None else None,
            after=read_model.model_dump(mode="json"),
            correlation_id=gateway.ctx.correlation_id,
        )
        events.publish(
            f"crm.{self.entity}.{verb}",
            actor_user_id=gateway.ctx.actor,
            payload={f"{self.entity}_id": str(read_model.id)},
        )
        logger.info(f"crm.{verb}", extra={"table": self.table, "action": verb, "row_id": str(read_model.id)})


class CompanyService(EntityService):
    table = "companies"
    entity = "company"
    read_model = CompanyRead
    empty_message = "No companies found"

    def list_companies(self, gateway: DataGateway, *, search: str | None = None) -> ListView[CompanyRead]:
        with gateway_errors_as_http():
            rows = self.store(gateway).refresh()
        items = [
            self.to_read(row)
            for row in rows
            if matches_search([row["name"], row["industry"], row["email"]], search)
        ]
        return self.list_view(items)

    def create_company(self, gateway: DataGateway, dto: CompanyCreate) -> CompanyRead:
        return self.create(gateway, dto)

    def update_company(self, gateway: DataGateway, company_id: uuid.UUID, dto: CompanyUpdate) -> CompanyRead:
        return self.update(gateway, company_id, dto)


class ContactService(EntityService):
    table = "contacts"
    entity = "contact"
    read_model = ContactRead
    embed = ("company",)
    empty_message = "No contacts found"

    def list_contacts(self, gateway: DataGateway, *, search: str | None = None) -> ListView[ContactRead]:
        with gateway_errors_as_http():
            rows = self.store(gateway).refresh()
        items = [
            self.to_read(row)
            for row in rows
            if matches_search(
                [
                    row["first_name"],
                    row["last_name"],
                    row["email"],
                    (row.get("company") or {}).get("name"),
                ],
                search,
            )
        ]
        return self.list_view(items)

    def create_contact(self, gateway: DataGateway, dto: ContactCreate) -> ContactRead:
        return self.create(gateway, dto)

    def update_contact(self, gateway: DataGateway, contact_id: uuid.UUID, dto: ContactUpdate) -> ContactRead:
        return self.update(gateway, contact_id, dto)


class DealService(EntityService):
    table = "deals"
    entity = "deal"
    read_model = DealRead
    embed = ("company", "contact")
    empty_message = "No deals yet"

    def list_deals(self, gateway: DataGateway) -> ListView[DealRead]:
        with gateway_errors_as_http():
            rows = self.store(gateway).refresh()
        return self.list_view([self.to_read(row) for row in rows])

    def board(self, gateway: DataGateway) -> DealBoard:
        """All six pipeline columns, in pipeline order, whether or not they hold deals."""

        deals = self.list_deals(gateway).items
        columns = []
        for stage in DealStage:
            stage_deals = [deal for deal in deals if deal.stage == stage]
            columns.append(
                DealBoardColumn(
                    stage=stage,
                    label=STAGE_LABELS[stage],
                    deals=stage_deals,
                    count=len(stage_deals),
                    total_value=sum((deal.value for deal in stage_deals), start=0),
                )
            )
        return DealBoard(
            columns=columns,
            total_deals=len(deals),
            pipeline_value=sum((deal.value for deal in deals), start=0),
        )

    def create_deal(self, gateway: DataGateway, dto: DealCreate) -> DealRead:
        return self.create(gateway, dto)

    def update_deal(self, gateway: DataGateway, deal_id: uuid.UUID, dto: DealUpdate) -> DealRead:
        return self.update(gateway, deal_id, dto)

    def change_stage(self, gateway: DataGateway, deal_id: uuid.UUID, stage: DealStage) -> DealRead:
        before = self.get(gateway, deal_id)
        with gateway_errors_as_http():
            row = self.store(gateway).transition(deal_id, "stage", stage.value)
        if row is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="deal not found")
        deal = self.to_read(row)
        if before.stage != deal.stage:
            audit.record(
                actor_user_id=gateway.ctx.actor,
                entity_type=self.entity_type,
                entity_id=str(deal.id),
                action="stage_change",
                before={"stage": before.stage.value},
                after={"stage": deal.stage.value},
                correlation_id=gateway.ctx.correlation_id,
            )
            events.publish(
                "crm.deal.stage_changed",
                actor_user_id=gateway.ctx.actor,
                payload={"deal_id": str(deal.id), "from_stage": before.stage.value, "to_stage": deal.stage.value},
            )
        return deal


class TaskService(EntityService):
    table = "tasks"
    entity = "task"
    read_model = TaskRead
    empty_message = "No tasks found"

    def to_read(self, row: dict[str, Any]) -> TaskRead:
        return TaskRead.model_validate({**row, "is_overdue": is_overdue(row)})

    def list_tasks(self, gateway: DataGateway, *, status_filter: TaskStatus | None = None) -> ListView[TaskRead]:
        filters = {"status": status_filter.value} if status_filter is not None else None
        with gateway_errors_as_http():
            rows = self.store(gateway, filters=filters).refresh()
        return self.list_view([self.to_read(row) for row in rows])

    def create_task(self, gateway: DataGateway, dto: TaskCreate) -> TaskRead:
        return self.create(gateway, dto)

    def update_task(self, gateway: DataGateway, task_id: uuid.UUID, dto: TaskUpdate) -> TaskRead:
        return self.update(gateway, task_id, dto)

    def change_status(self, gateway: DataGateway, task_id: uuid.UUID, task_status: TaskStatus) -> TaskRead:
        before = self.get(gateway, task_id)
        with gateway_errors_as_http():
            row = self.store(gateway).transition(task_id, "status", task_status.value)
        if row is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="task not found")
        task = self.to_read(row)
        if before.status != task.status:
            audit.record(
                actor_user_id=gateway.ctx.actor,
                entity_type=self.entity_type,
                entity_id=str(task.id),
                action="status_change",
                before={"status": before.status.value},
                after={"status": task.status.value},
                correlation_id=gateway.ctx.correlation_id,
            )
            events.publish(
                "crm.task.status_changed",
                actor_user_id=gateway.ctx.actor,
                payload={"task_id": str(task.id), "from_status": before.status.value, "to_status": task.status.value},
            )
        return task


class ActivityService(EntityService):
    table = "activities"
    entity = "activity"
    read_model = ActivityRead
    empty_message = "No activities logged yet"

    def list_activities(self, gateway: DataGateway) -> ListView[ActivityRead]:
        with gateway_errors_as_http():
            rows = self.store(gateway).refresh()
        return self.list_view([self.to_read(row) for row in rows])

    def timeline(self, gateway: DataGateway) -> ActivityTimeline:
        activities = self.list_activities(gateway).items
        days: dict[Any, list[ActivityRead]] = {}
        for activity in activities:
            days.setdefault(activity.activity_date.astimezone(timezone.utc).date(), []).append(activity)
        return ActivityTimeline(
            days=[ActivityDay(day=day, activities=items, count=len(items)) for day, items in days.items()],
            count=len(activities),
            empty_message=None if activities else self.empty_message,
        )

    def create_values(self, dto: BaseModel) -> dict[str, Any]:
        values = dto.model_dump()
        if values.get("activity_date") is None:
            values["activity_date"] = utcnow()
        return values

    def log_activity(self, gateway: DataGateway, dto: ActivityCreate) -> ActivityRead:
        return self.create(gateway, dto)


class OptionsService:
    """Pick lists for the forms: companies by name, contacts by first name."""

    def form_options(self, gateway: DataGateway) -> FormOptions:
        with gateway_errors_as_http():
            companies = gateway.select("companies", order=[Order("name")])
            contacts = gateway.select("contacts", order=[Order("first_name")])
        return FormOptions(
            companies=[OptionItem(id=row["id"], label=row["name"]) for row in companies],
            contacts=[OptionItem(id=row["id"], label=f"{row['first_name']} {row['last_name']}") for row in contacts],
        )
