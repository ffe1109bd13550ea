"""ARQ worker for storefront payment reconciliation."""

from arq import cron
from libs.common.arq_config import get_queue_name, get_redis_settings
from libs.common.config import get_settings
from libs.common.logging import configure_logging, get_logger
from services.storefront_service.services.engine import StorefrontEngine

logger = get_logger(__name__)
settings = get_settings()


async def startup(ctx: dict):
    configure_logging(settings)
    ctx["engine"] = StorefrontEngine.from_settings(settings)


async def shutdown(ctx: dict):
    engine = ctx.get("engine")
    if engine is not None:
        await engine.close()


async def task_reconcile_pending_transactions(ctx: dict):
    from services.storefront_service.tasks import reconcile_pending_transactions

    logger.info("Running: reconcile_pending_transactions")
    await reconcile_pending_transactions(ctx["engine"])


class WorkerSettings:
    redis_settings = get_redis_settings(settings)
    queue_name = get_queue_name(settings)

    on_startup = startup
    on_shutdown = shutdown

    functions = [task_reconcile_pending_transactions]

    cron_jobs = [
        cron(
            task_reconcile_pending_transactions,
            minute={0, 5, 10, 15, 20, 25, 30, 35, 40, 45, 50, 55},
            run_at_startup=True,
        ),
    ]
