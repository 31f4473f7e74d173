"""Table bindings for the business data store.

The assistant does not own most of these tables; they are declared here so
handlers can use SQLAlchemy Core statements and tests can build a throwaway
database. Only ``ai_pending_actions`` and ``admin_access_tokens`` are created
by this project's migrations.
"""

import uuid
from datetime import datetime

import sqlalchemy as sa

metadata = sa.MetaData()


def new_id() -> str:
    return str(uuid.uuid4())


def _id_column() -> sa.Column:
    return sa.Column("id", sa.String(36), primary_key=True, default=new_id)


def _created_at() -> sa.Column:
    return sa.Column("created_at", sa.DateTime, nullable=False, default=datetime.utcnow)


# ---- Contacts & chat ----

contact_submissions = sa.Table(
    "contact_submissions", metadata,
    _id_column(),
    sa.Column("name", sa.String(255), nullable=False),
    sa.Column("email", sa.String(255), nullable=False),
    sa.Column("phone", sa.String(64)),
    sa.Column("message", sa.Text, nullable=False),
    sa.Column("user_type", sa.String(64)),
    sa.Column("source", sa.String(64), default="manual"),
    sa.Column("read_at", sa.DateTime),
    sa.Column("replied_at", sa.DateTime),
    _created_at(),
)

chat_conversations = sa.Table(
    "chat_conversations", metadata,
    _id_column(),
    sa.Column("visitor_name", sa.String(255)),
    sa.Column("visitor_email", sa.String(255)),
    sa.Column("visitor_phone", sa.String(64)),
    sa.Column("subject", sa.String(255)),
    sa.Column("status", sa.String(32), nullable=False, default="active"),
    sa.Column("current_mode", sa.String(64)),
    sa.Column("ai_confidence", sa.Float),
    sa.Column("closed_at", sa.DateTime),
    _created_at(),
)

chat_messages = sa.Table(
    "chat_messages", metadata,
    _id_column(),
    sa.Column("conversation_id", sa.String(36), nullable=False, index=True),
    sa.Column("role", sa.String(32), nullable=False),
    sa.Column("content", sa.Text, nullable=False),
    sa.Column("is_ai_response", sa.Boolean, default=False),
    sa.Column("file_url", sa.Text),
    sa.Column("file_name", sa.String(255)),
    _created_at(),
)

# ---- Email ----

email_templates = sa.Table(
    "email_templates", metadata,
    _id_column(),
    sa.Column("name", sa.String(255), nullable=False),
    sa.Column("subject", sa.String(500), nullable=False),
    sa.Column("html_content", sa.Text, nullable=False),
    sa.Column("text_content", sa.Text),
    sa.Column("is_active", sa.Boolean, nullable=False, default=True),
    _created_at(),
    sa.Column("updated_at", sa.DateTime, default=datetime.utcnow),
)

email_campaigns = sa.Table(
    "email_campaigns", metadata,
    _id_column(),
    sa.Column("name", sa.String(255), nullable=False),
    sa.Column("subject", sa.String(500), nullable=False),
    sa.Column("html_content", sa.Text, nullable=False),
    sa.Column("text_content", sa.Text),
    sa.Column("status", sa.String(32), nullable=False, default="draft"),
    sa.Column("total_recipients", sa.Integer, default=0),
    sa.Column("sent_count", sa.Integer, default=0),
    sa.Column("opened_count", sa.Integer, default=0),
    sa.Column("clicked_count", sa.Integer, default=0),
    sa.Column("sent_at", sa.DateTime),
    _created_at(),
)

# ---- AI behavior ----

ai_learnings = sa.Table(
    "ai_learnings", metadata,
    _id_column(),
    sa.Column("pattern", sa.Text, nullable=False),
    sa.Column("category", sa.String(64), nullable=False, default="general"),
    sa.Column("keywords", sa.JSON, default=list),
    sa.Column("response_template", sa.Text),
    sa.Column("success_score", sa.Integer, default=0),
    sa.Column("fail_score", sa.Integer, default=0),
    sa.Column("is_active", sa.Boolean, nullable=False, default=True),
    _created_at(),
)

ai_mode_config = sa.Table(
    "ai_mode_config", metadata,
    _id_column(),
    sa.Column("mode", sa.String(64), nullable=False, unique=True),
    sa.Column("description", sa.Text),
    sa.Column("is_enabled", sa.Boolean, nullable=False, default=False),
    sa.Column("confidence_threshold", sa.Float),
    sa.Column("updated_by", sa.String(36)),
    sa.Column("updated_at", sa.DateTime, default=datetime.utcnow),
)

ai_feedback = sa.Table(
    "ai_feedback", metadata,
    _id_column(),
    sa.Column("conversation_id", sa.String(36)),
    sa.Column("rating", sa.Integer),
    sa.Column("comment", sa.Text),
    sa.Column("resolved", sa.Boolean, nullable=False, default=False),
    _created_at(),
)

ai_assistant_settings = sa.Table(
    "ai_assistant_settings", metadata,
    _id_column(),
    sa.Column("setting_key", sa.String(255), nullable=False, unique=True),
    sa.Column("setting_value", sa.JSON, nullable=False),
    sa.Column("updated_by", sa.String(36)),
    sa.Column("updated_at", sa.DateTime, default=datetime.utcnow),
)

# ---- System ----

admin_audit_log = sa.Table(
    "admin_audit_log", metadata,
    _id_column(),
    sa.Column("admin_id", sa.String(36), nullable=False, index=True),
    sa.Column("action", sa.String(128), nullable=False, index=True),
    sa.Column("target_table", sa.String(128)),
    sa.Column("target_id", sa.String(255)),
    sa.Column("details", sa.JSON, default=dict),
    _created_at(),
)

esp_configurations = sa.Table(
    "esp_configurations", metadata,
    _id_column(),
    sa.Column("name", sa.String(255), nullable=False),
    sa.Column("provider", sa.String(64), nullable=False),
    sa.Column("is_active", sa.Boolean, nullable=False, default=False),
    sa.Column("is_default", sa.Boolean, nullable=False, default=False),
    sa.Column("updated_at", sa.DateTime, default=datetime.utcnow),
)

admin_emails = sa.Table(
    "admin_emails", metadata,
    _id_column(),
    sa.Column("name", sa.String(255)),
    sa.Column("email", sa.String(255), nullable=False),
    sa.Column("is_active", sa.Boolean, nullable=False, default=True),
    _created_at(),
)

user_roles = sa.Table(
    "user_roles", metadata,
    _id_column(),
    sa.Column("user_id", sa.String(36), nullable=False, index=True),
    sa.Column("role", sa.String(32), nullable=False),
    _created_at(),
)

# ---- Automation ----

automation_rules = sa.Table(
    "automation_rules", metadata,
    _id_column(),
    sa.Column("name", sa.String(255), nullable=False),
    sa.Column("description", sa.Text),
    sa.Column("trigger_type", sa.String(64), nullable=False),
    sa.Column("trigger_config", sa.JSON, default=dict),
    sa.Column("action_type", sa.String(64), nullable=False),
    sa.Column("action_config", sa.JSON, default=dict),
    sa.Column("priority", sa.Integer, default=1),
    sa.Column("is_active", sa.Boolean, nullable=False, default=True),
    sa.Column("execution_count", sa.Integer, default=0),
    sa.Column("last_executed_at", sa.DateTime),
    sa.Column("created_by", sa.String(36)),
    _created_at(),
    sa.Column("updated_at", sa.DateTime, default=datetime.utcnow),
)

automation_logs = sa.Table(
    "automation_logs", metadata,
    _id_column(),
    sa.Column("rule_id", sa.String(36), nullable=False, index=True),
    sa.Column("trigger_data", sa.JSON, default=dict),
    sa.Column("action_result", sa.JSON, default=dict),
    sa.Column("status", sa.String(32), nullable=False),
    sa.Column("error_message", sa.Text),
    sa.Column("executed_at", sa.DateTime, nullable=False, default=datetime.utcnow),
)

# ---- Social ----

social_posts = sa.Table(
    "social_posts", metadata,
    _id_column(),
    sa.Column("platforms", sa.JSON, nullable=False),
    sa.Column("content", sa.Text, nullable=False),
    sa.Column("media_type", sa.String(16)),
    sa.Column("media_url", sa.Text),
    sa.Column("status", sa.String(32), nullable=False),  # scheduled | published | partial | failed
    sa.Column("scheduled_at", sa.DateTime),
    sa.Column("published_at", sa.DateTime),
    sa.Column("results", sa.JSON, default=dict),
    sa.Column("created_by", sa.String(36)),
    _created_at(),
)

# ---- Owned by the assistant ----

admin_access_tokens = sa.Table(
    "admin_access_tokens", metadata,
    _id_column(),
    sa.Column("user_id", sa.String(36), nullable=False, index=True),
    sa.Column("token_prefix", sa.String(16), nullable=False, index=True),
    sa.Column("token_hash", sa.String(255), nullable=False),
    sa.Column("name", sa.String(255)),
    sa.Column("is_active", sa.Boolean, nullable=False, default=True),
    sa.Column("expires_at", sa.DateTime),
    sa.Column("last_used_at", sa.DateTime),
    _created_at(),
)

ai_pending_actions = sa.Table(
    "ai_pending_actions", metadata,
    _id_column(),
    sa.Column("actor_id", sa.String(36), nullable=False, index=True),
    sa.Column("tool_name", sa.String(128), nullable=False),
    sa.Column("arguments", sa.JSON, nullable=False),
    sa.Column("preview", sa.JSON, default=dict),
    sa.Column("status", sa.String(32), nullable=False, default="pending"),
    sa.Column("expires_at", sa.DateTime, nullable=False),
    sa.Column("resolved_at", sa.DateTime),
    _created_at(),
)


def row_to_dict(row) -> dict:
    """Convert a Core result row into a JSON-friendly dict."""
    data = dict(row._mapping)
    for key, value in data.items():
        if isinstance(value, datetime):
            data[key] = value.isoformat()
    return data
