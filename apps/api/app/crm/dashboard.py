from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

from fastapi import HTTPException, status

from app.crm.models import DealStage, TaskStatus
from app.crm.schemas import STAGE_LABELS, DashboardRead, StageBreakdown
from app.crm.service import is_overdue
from app.metrics import observe_dashboard_failure
from app.otel import get_tracer
from app.platform.gateway.gateway import DataGateway
from app.platform.gateway.http import GATEWAY_ERRORS


logger = logging.getLogger("app.crm")
tracer = get_tracer("app.crm.dashboard")

ACTIVE_STATUSES = {TaskStatus.PENDING.value, TaskStatus.IN_PROGRESS.value}


def round_half_up(value: Decimal | float, places: int = 0) -> Decimal:
    exponent = Decimal(1).scaleb(-places)
    return Decimal(str(value)).quantize(exponent, rounding=ROUND_HALF_UP)


def ratio(numerator: Decimal | int, denominator: int, *, places: int = 0, scale: int = 1) -> Decimal:
    if denominator <= 0:
        return Decimal(0)
    return round_half_up(Decimal(numerator) * scale / Decimal(denominator), places)


class DashboardService:
    """Summary counts across every table, computed in one pass and failing as a whole."""

    def fetch(self, gateway: DataGateway, *, now: datetime | None = None) -> DashboardRead:
        now = now or datetime.now(timezone.utc)
        with tracer.start_as_current_span("crm.dashboard.fetch"):
            try:
                total_contacts = gateway.count("contacts")
                total_companies = gateway.count("companies")
                deals = gateway.select("deals", order=())
                tasks = gateway.select("tasks", order=())
                recent_activities = gateway.count("activities")
            except GATEWAY_ERRORS as exc:
                observe_dashboard_failure()
                logger.error("dashboard.failed", extra={"resource": "dashboard", "error": str(exc)})
                raise HTTPException(
                    status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                    detail="dashboard data is unavailable",
                ) from exc

        total_deals = len(deals)
        total_value = sum((Decimal(deal["value"]) for deal in deals), start=Decimal(0))

        active_tasks = sum(1 for task in tasks if task["status"] in ACTIVE_STATUSES)
        overdue_tasks = sum(1 for task in tasks if task["status"] in ACTIVE_STATUSES and is_overdue(task, now))
        completed_tasks = sum(1 for task in tasks if task["status"] == TaskStatus.COMPLETED.value)

        stage_counts = Counter(deal["stage"] for deal in deals)
        deals_by_stage = [
            StageBreakdown(
                stage=stage,
                label=STAGE_LABELS[stage],
                count=stage_counts[stage.value],
                percentage=float(ratio(stage_counts[stage.value], total_deals, places=1, scale=100)),
            )
            for stage in DealStage
            if stage_counts[stage.value]
        ]

        return DashboardRead(
            total_contacts=total_contacts,
            total_companies=total_companies,
            total_deals=total_deals,
            total_deal_value=total_value,
            active_tasks=active_tasks,
            overdue_tasks=overdue_tasks,
            completed_tasks=completed_tasks,
            recent_activities=recent_activities,
            deals_by_stage=deals_by_stage,
            deals_by_stage_empty_message=None if deals_by_stage else "No deals yet",
            average_deal_value=int(ratio(total_value, total_deals)),
            contacts_per_company=float(ratio(total_contacts, total_companies, places=1)),
            task_completion_rate=int(ratio(active_tasks, active_tasks + overdue_tasks, scale=100)),
            completed_task_rate=int(ratio(completed_tasks, len(tasks), scale=100)),
        )
