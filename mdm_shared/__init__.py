"""Wire schemas, enums and canonical time shared by the MDM server."""

from mdm_shared.enums import AccountType, DeviceStatus, TelemetryCategory
from mdm_shared.schemas import AgentReport, AgentReportResponse

__all__ = [
    "AgentReport",
    "AgentReportResponse",
    "AccountType",
    "DeviceStatus",
    "TelemetryCategory",
]
