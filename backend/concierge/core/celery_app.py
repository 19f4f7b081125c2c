"""Celery 配置

worker 负责推荐生成；beat 定期为已完成但还没有推荐的会话补生成。
"""

from celery import Celery

from concierge.core.config import get_settings

settings = get_settings()

celery_app = Celery(
    "concierge_tasks",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="Asia/Tokyo",
    enable_utc=True,
    task_track_started=True,
    # 单个会话：AI 调用最多 ai_request_timeout 秒，其余为数据库读写
    task_time_limit=120,
    task_soft_time_limit=90,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    beat_schedule={
        "generate-pending-recommendations": {
            "task": "concierge.generate_pending_recommendations",
            "schedule": float(settings.pending_generation_interval),
            # 上一批没跑完时不要堆积
            "options": {"expires": settings.pending_generation_interval},
        },
    },
)

celery_app.autodiscover_tasks(["concierge.tasks"])
