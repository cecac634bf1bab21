from app.crm.models import (
	Activity,
	Company,
	Contact,
	Deal,
	Task,
)

__all__ = [
	"Activity",
	"Company",
	"Contact",
	"Deal",
	"Task",
]
