"""Tool catalog models: names, declarations, invocations and results."""

from enum import Enum
from typing import Dict, Any, Optional
from pydantic import BaseModel, ConfigDict, Field


class ToolName(str, Enum):
    """Closed set of tools the assistant can invoke."""
    # Chat & conversations
    LIST_CONVERSATIONS = "list_conversations"
    GET_CONVERSATION_MESSAGES = "get_conversation_messages"
    CLOSE_CONVERSATION = "close_conversation"
    DELETE_CHAT_MESSAGES = "delete_chat_messages"
    DELETE_CONVERSATION = "delete_conversation"
    # Contacts
    LIST_CONTACTS = "list_contacts"
    CREATE_CONTACT = "create_contact"
    UPDATE_CONTACT_STATUS = "update_contact_status"
    DELETE_CONTACT = "delete_contact"
    # Email & campaigns
    SEND_EMAIL = "send_email"
    LIST_EMAIL_TEMPLATES = "list_email_templates"
    CREATE_EMAIL_TEMPLATE = "create_email_template"
    UPDATE_EMAIL_TEMPLATE = "update_email_template"
    DELETE_EMAIL_TEMPLATE = "delete_email_template"
    LIST_CAMPAIGNS = "list_campaigns"
    CREATE_CAMPAIGN = "create_campaign"
    SEND_CAMPAIGN = "send_campaign"
    DELETE_CAMPAIGN = "delete_campaign"
    # AI behavior
    CREATE_AI_LEARNING = "create_ai_learning"
    LIST_AI_LEARNINGS = "list_ai_learnings"
    DELETE_AI_LEARNING = "delete_ai_learning"
    UPDATE_AI_MODE = "update_ai_mode"
    GET_AI_FEEDBACK_SUMMARY = "get_ai_feedback_summary"
    RESOLVE_AI_FEEDBACK = "resolve_ai_feedback"
    # System & audit
    GET_AUDIT_LOGS = "get_audit_logs"
    GET_SYSTEM_STATS = "get_system_stats"
    LIST_ESP_CONFIGURATIONS = "list_esp_configurations"
    UPDATE_ESP_CONFIGURATION = "update_esp_configuration"
    GET_ADMIN_USERS = "get_admin_users"
    # Bulk data
    BULK_DELETE_CONVERSATIONS = "bulk_delete_conversations"
    BULK_DELETE_CONTACTS = "bulk_delete_contacts"
    EXPORT_DATA = "export_data"
    # Automation
    CREATE_AUTOMATION_RULE = "create_automation_rule"
    LIST_AUTOMATION_RULES = "list_automation_rules"
    UPDATE_AUTOMATION_RULE = "update_automation_rule"
    DELETE_AUTOMATION_RULE = "delete_automation_rule"
    GET_AUTOMATION_LOGS = "get_automation_logs"
    EXECUTE_AUTOMATION_RULE = "execute_automation_rule"
    # Social publishing & integrations
    CREATE_SOCIAL_POST = "create_social_post"
    LIST_SOCIAL_POSTS = "list_social_posts"
    SEND_WHATSAPP_MESSAGE = "send_whatsapp_message"
    GET_SOCIAL_ACCOUNTS = "get_social_accounts"
    CHECK_SOCIAL_INTEGRATION_STATUS = "check_social_integration_status"
    LIST_INTEGRATION_REQUIREMENTS = "list_integration_requirements"
    SAVE_INTEGRATION_CONFIG = "save_integration_config"
    GET_META_SETUP_GUIDE = "get_meta_setup_guide"
    GET_WHATSAPP_SETUP_GUIDE = "get_whatsapp_setup_guide"
    TEST_SOCIAL_CONNECTION = "test_social_connection"
    REQUEST_SECRET_CONFIGURATION = "request_secret_configuration"


class ToolDeclaration(BaseModel):
    """Immutable description of one tool as offered to the model."""
    model_config = ConfigDict(frozen=True)

    name: ToolName = Field(..., description="Unique tool name")
    description: str = Field(..., description="What the tool does, shown to the model")
    parameters_schema: Dict[str, Any] = Field(..., description="JSON Schema for arguments")
    destructive: bool = Field(default=False, description="Irreversible; governed by the confirmation policy")
    read_only: bool = Field(default=False, description="No side effects; not audited unless audit_action is set")
    audit_action: Optional[str] = Field(default=None, description="Action name written to the audit log")
    target_table: Optional[str] = Field(default=None, description="Table the audit entry refers to")

    @property
    def audited(self) -> bool:
        return self.audit_action is not None


class ToolInvocation(BaseModel):
    """A tool call requested by the model. Untrusted until validated."""
    call_id: str
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)
    # Set when the model sent arguments that are not a JSON object
    malformed_arguments: Optional[str] = None


class ToolResult(BaseModel):
    """Uniform outcome of one tool invocation."""
    success: bool
    data: Optional[Any] = None
    error: Optional[str] = None
    requires_confirmation: bool = False
    action_id: Optional[str] = None
    # Identifier of the primary record touched, used for the audit entry
    target_id: Optional[str] = Field(default=None, exclude=True)

    @classmethod
    def ok(cls, data: Any = None, target_id: Optional[str] = None) -> "ToolResult":
        return cls(success=True, data=data, target_id=target_id)

    @classmethod
    def fail(cls, error: str, data: Any = None, target_id: Optional[str] = None) -> "ToolResult":
        return cls(success=False, error=error, data=data, target_id=target_id)

    def to_model_content(self) -> Dict[str, Any]:
        """Payload fed back to the model in the tool message."""
        if self.requires_confirmation:
            return {
                "status": "pending_confirmation",
                "action_id": self.action_id,
                "preview": self.data,
                "note": "Not executed. The administrator must confirm this action.",
            }
        if self.success:
            return {"status": "success", "result": self.data}
        payload: Dict[str, Any] = {"status": "error", "error": self.error}
        if self.data is not None:
            payload["details"] = self.data
        return payload
