"""ACM Gateway Services Module."""

from acm_gateway.services.session_manager import ConnectionSessionManager, ConnectionSession
from acm_gateway.services.codesystem_service import (
    CodeTableRegistry,
    CodeTag,
    CodesystemError,
    BootstrapResult,
    BootstrapStatus,
)
from acm_gateway.services.alarm_record_service import AlarmRecordWriter, AlarmRecordService
from acm_gateway.services.health_service import HealthService, health_service
