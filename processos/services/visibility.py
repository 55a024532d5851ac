"""
ProcessOS
Visibility Filter — who may observe a run.

Seeing is broader than acting: Global Admins, the initiator, the resolved
Executor and Run Validator populations, the resolved assignee of any task
on the run (OPEN or DONE), and every member or lead of the owning team.
INACTIVE users see nothing.
"""

from processos.models.directory import User
from processos.models.process import ROLE_EXECUTOR, ROLE_RUN_VALIDATOR, ProcessDefinition
from processos.models.run import ProcessRun, Task
from processos.services.directory_service import Directory, load_directory
from processos.services.governance import (
    has_governance_permission,
    is_global_admin,
    is_owning_team_member,
)


def can_see_run(
    user: User,
    run: ProcessRun,
    process: ProcessDefinition | None = None,
    tasks: list[Task] | None = None,
    directory: Directory | None = None,
) -> bool:
    """``process`` defaults to the run's frozen version, ``tasks`` to the run's own tasks."""
    if user is None or not user.is_active:
        return False
    if is_global_admin(user):
        return True
    if run.started_by == user.id:
        return True

    process = process or run.process
    directory = directory or load_directory()
    if has_governance_permission(user, process, ROLE_EXECUTOR, directory):
        return True
    if has_governance_permission(user, process, ROLE_RUN_VALIDATOR, directory):
        return True

    from processos.services.run_engine import resolve_task_assignee

    for task in (run.tasks if tasks is None else tasks):
        if task.run_id not in (None, run.id):
            continue
        assignee = resolve_task_assignee(task, directory)
        if assignee is not None and assignee.id == user.id:
            return True

    return is_owning_team_member(user, process, directory)


def visible_runs(user: User, runs: list[ProcessRun]) -> list[ProcessRun]:
    directory = load_directory()
    return [run for run in runs if can_see_run(user, run, directory=directory)]
