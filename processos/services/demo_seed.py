"""
ProcessOS
Demo workspace seed used by ``flask seed-demo``.

Creates two teams, a handful of users, one published process and one run
in progress. Running it twice is a no-op.
"""

import logging

from processos.models.directory import PERMISSION_FLAGS, Team
from processos.models.process import Delegation
from processos.services import directory_service, process_lifecycle, run_engine

logger = logging.getLogger(__name__)

_ALL_FLAGS = {flag: True for flag in PERMISSION_FLAGS}
_DESIGNER = {"can_design": True, "can_execute": True}
_OPERATOR = {"can_execute": True}
_REVIEWER = {"can_verify_design": True, "can_verify_run": True, "can_execute": True}


def seed_demo() -> dict:
    if Team.query.filter_by(name="Finance").first() is not None:
        logger.info("Demo data already present, skipping")
        return {"created": False}

    finance = directory_service.create_team("Finance", description="Month-end close",
                                            color="emerald")
    ops = directory_service.create_team("Operations", description="Warehouse and logistics",
                                        color="amber")

    admin = directory_service.create_user("Ada Admin", "ada@example.com",
                                          job_title="Workspace Admin", permissions=_ALL_FLAGS)
    lead = directory_service.create_user("Lee Lead", "lee@example.com", job_title="Controller",
                                         team_id=finance.id,
                                         permissions={**_DESIGNER, **_REVIEWER})
    analyst = directory_service.create_user("Ana Analyst", "ana@example.com",
                                            job_title="Accountant", team_id=finance.id,
                                            permissions=_DESIGNER)
    directory_service.create_user("Oli Operator", "oli@example.com", job_title="Dispatcher",
                                  team_id=ops.id, permissions=_OPERATOR)
    directory_service.set_team_lead(finance.id, lead.id)

    process = process_lifecycle.create_process(
        analyst, "Month-end close", finance.id,
        description="Close the books for the month.",
        sequential_execution=True,
        estimated_duration_days=5,
        delegations={"run_validator": Delegation.to_user(lead.id)},
        steps=[
            {"text": "Read the close calendar", "input_type": "INFO"},
            {"text": "Reconcile bank accounts", "input_type": "CHECKBOX"},
            {"text": "Post accruals journal id", "input_type": "TEXT_INPUT",
             "assigned_job_titles": ["Accountant"]},
            {"text": "Upload trial balance", "input_type": "FILE_UPLOAD", "required": False},
        ],
    )
    process_lifecycle.submit_for_review(process.id, analyst)
    process_lifecycle.publish(process.id, lead)

    run = run_engine.create_run(process.id, analyst)
    bank_step = process.ordered_steps[1]
    run_engine.toggle_step(run.id, bank_step.id, analyst)

    logger.info("Demo data seeded: process=%s run=%s", process.id, run.id)
    return {"created": True, "admin_id": admin.id, "process_id": process.id, "run_id": run.id}
