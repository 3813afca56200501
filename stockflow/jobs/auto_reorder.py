"""
Auto-Reorder Background Job.

Runs a reorder cycle: analyzes reorder needs and raises purchase
orders for every urgent and recommended item, grouped by supplier.
Notifications for the created orders go through the notification
dispatcher.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from stockflow.core.events import EventDispatcher
from stockflow.database import get_db_session
from stockflow.services.notification_service import default_dispatcher
from stockflow.services.procurement_service import ProcurementService

logger = logging.getLogger(__name__)


async def run_auto_reorder_job(
    db: AsyncSession,
    events: Optional[EventDispatcher] = None,
) -> Dict[str, Any]:
    """
    Main job to analyze reorder needs and create purchase orders.

    Returns:
        Summary of the purchase orders created and the errors collected
    """
    logger.info("Starting auto-reorder job...")

    results: Dict[str, Any] = {
        "started_at": datetime.now(timezone.utc).isoformat(),
        "orders_created": 0,
        "total_value": 0.0,
        "errors": [],
    }

    try:
        service = ProcurementService(db, events or default_dispatcher())
        outcome = await service.run_reorder_cycle(user_id="auto-reorder")
        results.update(outcome.summary)
        results["errors"] = [str(error.get("error")) for error in outcome.errors]
    except Exception as e:
        error_msg = f"Auto-reorder job failed: {e}"
        logger.error(error_msg)
        results["errors"].append(error_msg)

    results["completed_at"] = datetime.now(timezone.utc).isoformat()
    logger.info(
        f"Auto-reorder job completed: {results['orders_created']} purchase orders, "
        f"{len(results['errors'])} errors"
    )
    return results


async def run_lead_time_refresh_job(
    db: AsyncSession,
    events: Optional[EventDispatcher] = None,
) -> Dict[str, Any]:
    """Recalibrate supplier lead times from received purchase orders."""
    logger.info("Starting supplier lead-time refresh...")
    try:
        return await ProcurementService(db, events or default_dispatcher()).update_supplier_lead_times()
    except Exception as e:
        logger.error(f"Lead-time refresh failed: {e}")
        return {"suppliers_analyzed": 0, "suppliers_updated": 0, "errors": [str(e)]}


async def scheduled_auto_reorder() -> None:
    """Entry point used by the scheduler; owns its session."""
    async with get_db_session() as db:
        await run_auto_reorder_job(db)


async def scheduled_lead_time_refresh() -> None:
    async with get_db_session() as db:
        await run_lead_time_refresh_job(db)
