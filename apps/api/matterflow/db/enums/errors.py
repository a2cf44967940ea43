"""Error code taxonomy written to the error log."""

from enum import Enum


class ErrorCode(str, Enum):
    """Structured error codes with a default human message."""

    # Assignee resolution
    ASSIGNEE_NO_ATTORNEY = "ERR_ASSIGNEE_NO_ATTORNEY"
    ASSIGNEE_NO_CSC = "ERR_ASSIGNEE_NO_CSC"
    ASSIGNEE_NO_PARALEGAL = "ERR_ASSIGNEE_NO_PARALEGAL"
    ASSIGNEE_NO_FUND_TABLE = "ERR_ASSIGNEE_NO_FUND_TABLE"
    ASSIGNEE_INVALID_TYPE = "ERR_ASSIGNEE_INVALID_TYPE"
    ASSIGNEE_NOT_FOUND = "ERR_ASSIGNEE_NOT_FOUND"

    # Meeting location
    MEETING_NO_LOCATION = "ERR_MEETING_NO_LOCATION"
    MEETING_INVALID_LOCATION = "ERR_MEETING_INVALID_LOCATION"

    # Templates
    TEMPLATE_MISSING = "ERR_TEMPLATE_MISSING"
    TEMPLATE_DUPLICATE = "ERR_TEMPLATE_DUPLICATE"
    TEMPLATE_NOT_FOUND = "ERR_TEMPLATE_NOT_FOUND"

    # External API and store sync
    CLIO_API_FAILED = "ERR_CLIO_API_FAILED"
    STORE_SYNC_FAILED = "ERR_SUPABASE_SYNC_FAILED"
    TASK_NOT_FOUND_IN_CLIO = "ERR_TASK_NOT_FOUND_IN_CLIO"

    # Validation of inbound events
    VALIDATION_MISSING_STAGE = "ERR_VALIDATION_MISSING_STAGE"
    VALIDATION_MISSING_MATTER = "ERR_VALIDATION_MISSING_MATTER"
    VALIDATION_MISSING_EVENT_TYPE = "ERR_VALIDATION_MISSING_EVENT_TYPE"
    VALIDATION_MISSING_REQUIRED_FIELD = "ERR_VALIDATION_MISSING_REQUIRED_FIELD"

    # Webhook security
    WEBHOOK_INVALID_SIGNATURE = "ERR_WEBHOOK_INVALID_SIGNATURE"
    WEBHOOK_MISSING_SIGNATURE = "ERR_WEBHOOK_MISSING_SIGNATURE"

    # Billing
    BILL_CHECK_FAILED = "ERR_BILL_CHECK_FAILED"
    PAYMENT_CHECK_FAILED = "ERR_PAYMENT_CHECK_FAILED"
    CLOSED_MATTER_TASK_FAILED = "ERR_CLOSED_MATTER_TASK_FAILED"

    AUTOMATION_FAILED = "ERR_AUTOMATION_FAILED"

    @property
    def default_message(self) -> str:
        return _MESSAGES.get(self, "Unknown error")


_MESSAGES: dict[ErrorCode, str] = {
    ErrorCode.ASSIGNEE_NO_ATTORNEY: "No originating attorney found on matter",
    ErrorCode.ASSIGNEE_NO_CSC: "No CSC found for location",
    ErrorCode.ASSIGNEE_NO_PARALEGAL: "No paralegal found for attorney",
    ErrorCode.ASSIGNEE_NO_FUND_TABLE: "No user found for fund table",
    ErrorCode.ASSIGNEE_INVALID_TYPE: "Invalid assignee type",
    ErrorCode.ASSIGNEE_NOT_FOUND: "Assignee could not be resolved",
    ErrorCode.MEETING_NO_LOCATION: "Signing meeting has no location",
    ErrorCode.MEETING_INVALID_LOCATION: "Meeting location does not contain required keywords",
    ErrorCode.TEMPLATE_MISSING: "No task templates found for stage",
    ErrorCode.TEMPLATE_DUPLICATE: "Duplicate task_number found in templates",
    ErrorCode.TEMPLATE_NOT_FOUND: "Task template not found",
    ErrorCode.CLIO_API_FAILED: "Clio API request failed",
    ErrorCode.STORE_SYNC_FAILED: "Store sync failed after Clio success",
    ErrorCode.TASK_NOT_FOUND_IN_CLIO: "Task not found in Clio (404) - marked for regeneration",
    ErrorCode.VALIDATION_MISSING_STAGE: "Matter missing required stage information",
    ErrorCode.VALIDATION_MISSING_MATTER: "Task missing required matter association",
    ErrorCode.VALIDATION_MISSING_EVENT_TYPE: "Calendar entry missing required event type",
    ErrorCode.VALIDATION_MISSING_REQUIRED_FIELD: "Missing required field from Clio API",
    ErrorCode.WEBHOOK_INVALID_SIGNATURE: "Invalid webhook signature",
    ErrorCode.WEBHOOK_MISSING_SIGNATURE: "Missing webhook signature",
    ErrorCode.BILL_CHECK_FAILED: "Failed to check bills for matter",
    ErrorCode.PAYMENT_CHECK_FAILED: "Failed to check payments for matter",
    ErrorCode.CLOSED_MATTER_TASK_FAILED: "Failed to create task for closed matter",
    ErrorCode.AUTOMATION_FAILED: "Automation failed",
}
