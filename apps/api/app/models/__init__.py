from app.crm.models import (
	Company,
	CRMContact,
	CRMOpportunity,
	CRMProject,
	CRMProperty,
	CRMUser,
)
from app.divisions.models import Division, DivisionClosure

__all__ = [
	"Company",
	"CRMUser",
	"CRMContact",
	"CRMProperty",
	"CRMOpportunity",
	"CRMProject",
	"Division",
	"DivisionClosure",
]
