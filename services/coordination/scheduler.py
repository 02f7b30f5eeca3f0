from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from conflict_config import CONFLICT_SWEEP_CRON
from error_handler import ErrorHandler
from logging_config import get_logger

logger = get_logger(__name__)


async def conflict_sweep(batch_runner):
    """
    NIGHTLY: re-evaluate conflicts for every active project.

    Repairs symmetric conflict entries whose secondary update failed and
    clears conflict_verification_pending once detection succeeds.
    """
    report = await ErrorHandler.run_job("conflict_sweep", batch_runner.run_all_active())
    if report is None:
        return None

    if report.failed:
        logger.warning("conflict_sweep_partial_failure",
                       failed=[str(pid) for pid in report.failed])
    logger.info("conflict_sweep_completed",
                projects=len(report),
                succeeded=len(report.succeeded),
                failed=len(report.failed))
    return report


async def report_expiring_moratoriums(moratorium_service, days: int = 30):
    """DAILY: log moratoriums ending within `days` so coordinators can extend them."""
    expiring = await ErrorHandler.run_job(
        "expiring_moratoriums",
        moratorium_service.find_expiring_soon(days=days),
        default=[],
    )
    for moratorium in expiring:
        logger.info("moratorium_expiring_soon",
                    moratorium_id=str(moratorium.id),
                    municipality_code=moratorium.municipality_code,
                    valid_to=moratorium.valid_to.isoformat())
    return expiring


def create_scheduler(batch_runner, moratorium_service=None, cron: str = CONFLICT_SWEEP_CRON) -> AsyncIOScheduler:
    """Scheduler with the maintenance jobs registered; caller starts it."""
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        conflict_sweep,
        CronTrigger.from_crontab(cron),
        args=[batch_runner],
        id='conflict_sweep',
        max_instances=1,
        coalesce=True,
    )

    if moratorium_service is not None:
        scheduler.add_job(
            report_expiring_moratoriums,
            'cron',
            hour=7,
            minute=0,
            args=[moratorium_service],
            id='expiring_moratoriums',
        )

    return scheduler


def start_scheduler(scheduler: AsyncIOScheduler) -> None:
    scheduler.start()
    logger.info("scheduler_started",
                jobs=[job.id for job in scheduler.get_jobs()])


def stop_scheduler(scheduler: AsyncIOScheduler) -> None:
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("scheduler_stopped")
