"""The five business workflows.

Each definition is immutable and registered by name in ``WORKFLOW_DEFINITIONS``.
Every workflow checkpoints after each step and is resumable within its
window.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Mapping

from ..errors import NotFoundError
from ..schemas.domain import ParamResolver, TaskCategory, WorkflowGate
from .models import WorkflowDefinition, WorkflowStep

DAY_MS = 86_400_000

FROM_CONTEXT = ParamResolver.from_context
FROM_PREVIOUS = ParamResolver.from_previous
OWNER_APPROVAL = WorkflowGate.owner_approval
WEBHOOK_WAIT = WorkflowGate.webhook_wait
SCHEDULE_WAIT = WorkflowGate.schedule_wait


WORKFLOW_FIND_TENANT = WorkflowDefinition(
    name="workflow_find_tenant",
    description="Find a tenant: generate listing, syndicate, screen applications, recommend",
    task_category=TaskCategory.tenant_finding,
    steps=(
        WorkflowStep(
            step_index=0,
            tool_name="get_property",
            param_resolver=FROM_CONTEXT,
            description="Load property details for the listing",
        ),
        WorkflowStep(step_index=1, tool_name="generate_listing", description="Write listing copy from property data"),
        WorkflowStep(step_index=2, tool_name="suggest_rent_price", description="Suggest rent from comparables"),
        WorkflowStep(
            step_index=3,
            tool_name="create_listing",
            gate=OWNER_APPROVAL,
            compensation_tool="pause_listing",
            description="Create the draft listing for the owner to review",
        ),
        WorkflowStep(
            step_index=4,
            tool_name="publish_listing",
            compensation_tool="pause_listing",
            description="Publish the approved listing",
        ),
        WorkflowStep(
            step_index=5,
            tool_name="syndicate_listing_domain",
            optional=True,
            description="Syndicate to Domain",
        ),
        WorkflowStep(
            step_index=6,
            tool_name="syndicate_listing_rea",
            optional=True,
            description="Syndicate to realestate.com.au",
        ),
        WorkflowStep(
            step_index=7,
            tool_name="get_applications",
            gate=WEBHOOK_WAIT,
            description="Wait for applications to arrive, then load them",
        ),
        WorkflowStep(step_index=8, tool_name="score_application", per_item=True, description="Score each application"),
        WorkflowStep(
            step_index=9,
            tool_name="run_credit_check",
            per_item=True,
            optional=True,
            description="Credit check each applicant",
        ),
        WorkflowStep(
            step_index=10,
            tool_name="run_tica_check",
            per_item=True,
            optional=True,
            description="TICA check each applicant",
        ),
        WorkflowStep(step_index=11, tool_name="rank_applications", description="Rank the screened applications"),
        WorkflowStep(
            step_index=12,
            tool_name="accept_application",
            gate=OWNER_APPROVAL,
            description="Accept the applicant the owner selects",
        ),
        WorkflowStep(
            step_index=13,
            tool_name="reject_application",
            per_item=True,
            optional=True,
            description="Decline the remaining applicants",
        ),
    ),
    max_duration_ms=30 * DAY_MS,
    resume_window_ms=30 * DAY_MS,
)


WORKFLOW_ONBOARD_TENANT = WorkflowDefinition(
    name="workflow_onboard_tenant",
    description="Onboard a tenant: lease, signing, bond, entry inspection, welcome",
    task_category=TaskCategory.lease_management,
    steps=(
        WorkflowStep(
            step_index=0,
            tool_name="get_application_detail",
            param_resolver=FROM_CONTEXT,
            description="Load the accepted application",
        ),
        WorkflowStep(step_index=1, tool_name="generate_lease", description="Generate a state-compliant lease"),
        WorkflowStep(
            step_index=2,
            tool_name="send_docusign_envelope",
            gate=OWNER_APPROVAL,
            description="Send the lease for e-signing once the owner has reviewed it",
        ),
        WorkflowStep(
            step_index=3,
            tool_name="get_tenancy",
            gate=WEBHOOK_WAIT,
            description="Wait for signatures, then load the tenancy",
        ),
        WorkflowStep(
            step_index=4,
            tool_name="collect_rent_stripe",
            compensation_tool="refund_payment_stripe",
            description="Collect the bond payment",
        ),
        WorkflowStep(step_index=5, tool_name="lodge_bond_state", description="Lodge the bond with the state authority"),
        WorkflowStep(
            step_index=6,
            tool_name="schedule_inspection",
            compensation_tool="cancel_inspection",
            description="Schedule the entry condition inspection",
        ),
        WorkflowStep(step_index=7, tool_name="send_message", description="Send the welcome message"),
        WorkflowStep(step_index=8, tool_name="update_listing", description="Mark the listing as leased"),
        WorkflowStep(
            step_index=9,
            tool_name="remember",
            optional=True,
            description="Remember tenant preferences",
        ),
    ),
    max_duration_ms=14 * DAY_MS,
    resume_window_ms=14 * DAY_MS,
)


WORKFLOW_END_TENANCY = WorkflowDefinition(
    name="workflow_end_tenancy",
    description="End a tenancy: exit inspection, bond disposition, final report, relist",
    task_category=TaskCategory.lease_management,
    steps=(
        WorkflowStep(
            step_index=0,
            tool_name="get_tenancy",
            param_resolver=FROM_CONTEXT,
            description="Load the tenancy",
        ),
        WorkflowStep(
            step_index=1,
            tool_name="schedule_inspection",
            compensation_tool="cancel_inspection",
            static_params={"type": "exit"},
            description="Schedule the exit condition inspection",
        ),
        WorkflowStep(
            step_index=2,
            tool_name="generate_inspection_report",
            gate=WEBHOOK_WAIT,
            description="Wait for the inspection, then write the report",
        ),
        WorkflowStep(step_index=3, tool_name="compare_inspections", description="Compare entry and exit condition"),
        WorkflowStep(
            step_index=4,
            tool_name="lodge_bond_state",
            gate=OWNER_APPROVAL,
            description="Release or claim the bond (owner decides deductions)",
        ),
        WorkflowStep(
            step_index=5,
            tool_name="generate_financial_report",
            description="Final tenancy financial report",
        ),
        WorkflowStep(step_index=6, tool_name="send_message", description="Farewell message with bond details"),
        WorkflowStep(
            step_index=7,
            tool_name="workflow_find_tenant",
            param_resolver=FROM_CONTEXT,
            optional=True,
            description="Start finding a new tenant",
        ),
    ),
    max_duration_ms=30 * DAY_MS,
    resume_window_ms=30 * DAY_MS,
)


WORKFLOW_MAINTENANCE_LIFECYCLE = WorkflowDefinition(
    name="workflow_maintenance_lifecycle",
    description="Maintenance: triage, estimate, work order, completion, payment",
    task_category=TaskCategory.maintenance,
    steps=(
        WorkflowStep(
            step_index=0,
            tool_name="triage_maintenance",
            param_resolver=FROM_CONTEXT,
            description="Categorize urgency and suggest an action",
        ),
        WorkflowStep(step_index=1, tool_name="estimate_cost", description="Estimate the cost"),
        WorkflowStep(step_index=2, tool_name="get_trades", description="Find available tradespeople"),
        WorkflowStep(
            step_index=3,
            tool_name="create_work_order",
            gate=OWNER_APPROVAL,
            compensation_tool="update_maintenance_status",
            compensation_params={"status": "cancelled"},
            description="Create the work order",
        ),
        WorkflowStep(step_index=4, tool_name="send_message", description="Tell the tenant when the job is booked"),
        WorkflowStep(
            step_index=5,
            tool_name="update_maintenance_status",
            gate=WEBHOOK_WAIT,
            static_params={"status": "completed"},
            description="Wait for the job to finish, then close the request",
        ),
        WorkflowStep(step_index=6, tool_name="send_message", description="Ask the tenant to confirm the fix"),
        WorkflowStep(
            step_index=7,
            tool_name="process_payment",
            optional=True,
            description="Pay the tradesperson",
        ),
    ),
    max_duration_ms=14 * DAY_MS,
    resume_window_ms=30 * DAY_MS,
)


WORKFLOW_ARREARS_ESCALATION = WorkflowDefinition(
    name="workflow_arrears_escalation",
    description="Arrears ladder: friendly reminder, formal reminder, breach notice, owner decision",
    task_category=TaskCategory.rent_collection,
    steps=(
        WorkflowStep(
            step_index=0,
            tool_name="send_rent_reminder",
            param_resolver=FROM_CONTEXT,
            static_params={"tone": "friendly"},
            description="Friendly rent reminder",
        ),
        WorkflowStep(
            step_index=1,
            tool_name="send_rent_reminder",
            param_resolver=FROM_CONTEXT,
            gate=SCHEDULE_WAIT,
            wait_ms=3 * DAY_MS,
            static_params={"tone": "formal"},
            description="Formal rent reminder",
        ),
        WorkflowStep(
            step_index=2,
            tool_name="send_push_expo",
            param_resolver=FROM_CONTEXT,
            description="Alert the owner about the arrears",
        ),
        WorkflowStep(
            step_index=3,
            tool_name="generate_notice",
            param_resolver=FROM_CONTEXT,
            gate=OWNER_APPROVAL,
            static_params={"notice_type": "breach"},
            description="Draft a breach notice for the owner to approve",
        ),
        WorkflowStep(
            step_index=4,
            tool_name="send_breach_notice",
            description="Send the approved breach notice",
        ),
        WorkflowStep(
            step_index=5,
            tool_name="escalate_arrears",
            param_resolver=FROM_CONTEXT,
            gate=OWNER_APPROVAL,
            description="Owner decides the next step: payment plan, tribunal or wait",
        ),
    ),
    max_duration_ms=30 * DAY_MS,
    resume_window_ms=90 * DAY_MS,
)


WORKFLOW_DEFINITIONS: Mapping[str, WorkflowDefinition] = MappingProxyType(
    {
        definition.name: definition
        for definition in (
            WORKFLOW_FIND_TENANT,
            WORKFLOW_ONBOARD_TENANT,
            WORKFLOW_END_TENANCY,
            WORKFLOW_MAINTENANCE_LIFECYCLE,
            WORKFLOW_ARREARS_ESCALATION,
        )
    }
)


def get_definition(name: str, definitions: Mapping[str, WorkflowDefinition] = WORKFLOW_DEFINITIONS) -> WorkflowDefinition:
    """
    Look up a workflow definition by name.

    Raises:
        NotFoundError: If no workflow has that name.
    """
    try:
        return definitions[name]
    except KeyError:
        raise NotFoundError("workflow", name) from None
