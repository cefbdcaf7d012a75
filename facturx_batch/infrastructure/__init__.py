"""Infrastructure layer exports."""

from .billing import BillingLedger, InMemoryBillingLedger
from .composer import DocumentComposer, configure_composer, get_composer, reset_composer
from .facturx import FacturXComposer, extract_facturx_xml
from .jobs import InMemoryJobRepository, JobRepository
from .usage import InMemoryUsageLog, UsageLog

__all__ = [
    "BillingLedger",
    "DocumentComposer",
    "FacturXComposer",
    "InMemoryBillingLedger",
    "InMemoryJobRepository",
    "InMemoryUsageLog",
    "JobRepository",
    "UsageLog",
    "configure_composer",
    "extract_facturx_xml",
    "get_composer",
    "reset_composer",
]
