"""Leasewise-AI.

This package contains the autonomous-agent core used by the Leasewise property
management product: the engine that decides whether a tool call may run on its
own, queues it for the owner otherwise, and strings tool calls together into
long-running, resumable business workflows.

High-level architecture
-----------------------

- ``leasewise_ai.agent_core``:

  - Autonomy policy and the per-user graduation tracker.
  - The pending action (approval) queue and the agent task state machine.
  - Workflow definitions and a LangGraph-based executor with gates,
    compensation and crash-safe checkpoints.
  - Repository interfaces and SQL implementations for persistence.

- ``leasewise_ai.server``:

  - A FastAPI surface used by the owner app to approve/reject actions, take
    control of tasks and deliver external events.

Typical workflow
----------------

Most integrations should use ``leasewise_ai.agent_core.service.AgentService``:

1. Call a tool ad hoc (``call_tool``) or start a workflow (``start_workflow``).
2. Autonomous calls execute immediately; anything else becomes a pending action
   attached to an agent task.
3. The owner approves or rejects; the workflow resumes from its last checkpoint
   or is compensated.
"""
