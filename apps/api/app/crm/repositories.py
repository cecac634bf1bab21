from __future__ import annotations

from app.crm.models import Activity, Company, Contact, Deal, Task
from app.platform.gateway.query import Order
from app.platform.gateway.registry import register_repository
from app.platform.security.repository import BaseRepository


class CompanyRepository(BaseRepository):
    resource = "companies"
    model = Company
    default_order = (Order("name"),)


class ContactRepository(BaseRepository):
    resource = "contacts"
    model = Contact
    embeds = {"company": "company"}
    default_order = (Order("created_at", ascending=False),)


class DealRepository(BaseRepository):
    resource = "deals"
    model = Deal
    embeds = {"company": "company", "contact": "contact"}
    default_order = (Order("created_at", ascending=False),)


class TaskRepository(BaseRepository):
    resource = "tasks"
    model = Task
    embeds = {"company": "company", "contact": "contact", "deal": "deal"}
    default_order = (Order("due_date", ascending=True, nulls_first=False),)


class ActivityRepository(BaseRepository):
    resource = "activities"
    model = Activity
    embeds = {"company": "company", "contact": "contact", "deal": "deal"}
    default_order = (Order("activity_date", ascending=False),)


company_repository = register_repository(CompanyRepository())
contact_repository = register_repository(ContactRepository())
deal_repository = register_repository(DealRepository())
task_repository = register_repository(TaskRepository())
activity_repository = register_repository(ActivityRepository())
