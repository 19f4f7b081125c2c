"""Celery 任务模块"""

from concierge.tasks.recommendation import (
    find_pending_session_ids,
    generate_pending_recommendations_task,
    generate_recommendations_task,
    run_generation,
)

__all__ = [
    "find_pending_session_ids",
    "generate_pending_recommendations_task",
    "generate_recommendations_task",
    "run_generation",
]
