"""Tool name to ``ToolCategory`` lookup.

Every tool the workflows reference (and the other tools the agent can call
ad hoc) is listed here. The category decides the default autonomy level of a
call and which graduation record an approval or rejection counts against.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Dict, Iterable, Mapping

from ..schemas.domain import ToolCategory


def _tag(category: ToolCategory, names: Iterable[str]) -> Dict[str, ToolCategory]:
    return {name: category for name in names}


_QUERY_TOOLS = (
    "get_property",
    "get_properties",
    "search_tenants",
    "get_tenancy",
    "get_payments",
    "get_rent_schedule",
    "get_arrears",
    "get_maintenance",
    "get_maintenance_detail",
    "get_quotes",
    "get_inspections",
    "get_listings",
    "get_applications",
    "get_application_detail",
    "get_conversations",
    "get_compliance_status",
    "get_financial_summary",
    "get_transactions",
    "get_trades",
    "get_background_tasks",
    "get_pending_actions",
    "get_documents",
)

_ACTION_TOOLS = (
    "send_rent_reminder",
    "send_receipt",
    "create_maintenance",
    "update_maintenance_status",
    "schedule_inspection",
    "cancel_inspection",
    "reject_quote",
    "update_listing",
    "pause_listing",
    "record_compliance",
    "send_message",
    "create_work_order",
    "shortlist_application",
    "retry_payment",
    "create_listing",
    "publish_listing",
    "create_payment_plan",
    "update_autopay",
    "send_breach_notice",
    "approve_quote",
    "accept_application",
    "reject_application",
    "process_payment",
    "change_rent_amount",
    "lodge_bond",
    "escalate_arrears",
    "terminate_lease",
    "claim_bond",
)

_GENERATE_TOOLS = (
    "generate_listing",
    "draft_message",
    "score_application",
    "rank_applications",
    "triage_maintenance",
    "estimate_cost",
    "analyze_rent",
    "generate_notice",
    "generate_inspection_report",
    "compare_inspections",
    "generate_financial_report",
    "suggest_rent_price",
    "generate_lease",
)

_INTEGRATION_TOOLS = (
    "syndicate_listing_domain",
    "syndicate_listing_rea",
    "run_credit_check",
    "run_tica_check",
    "collect_rent_stripe",
    "refund_payment_stripe",
    "send_docusign_envelope",
    "lodge_bond_state",
    "send_sms_twilio",
    "send_email_sendgrid",
    "send_push_expo",
    "search_trades_hipages",
)

_WORKFLOW_TOOLS = (
    "workflow_find_tenant",
    "workflow_onboard_tenant",
    "workflow_end_tenancy",
    "workflow_maintenance_lifecycle",
    "workflow_arrears_escalation",
)

_MEMORY_TOOLS = ("remember", "recall", "search_precedent", "get_owner_rules")

_PLANNING_TOOLS = ("plan_task", "check_plan", "replan")


TOOL_CATEGORIES: Mapping[str, ToolCategory] = MappingProxyType(
    {
        **_tag(ToolCategory.query, _QUERY_TOOLS),
        **_tag(ToolCategory.action, _ACTION_TOOLS),
        **_tag(ToolCategory.generate, _GENERATE_TOOLS),
        **_tag(ToolCategory.integration, _INTEGRATION_TOOLS),
        **_tag(ToolCategory.workflow, _WORKFLOW_TOOLS),
        **_tag(ToolCategory.memory, _MEMORY_TOOLS),
        **_tag(ToolCategory.planning, _PLANNING_TOOLS),
    }
)
