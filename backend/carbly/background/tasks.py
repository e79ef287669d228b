import uuid
import asyncio
import logging

from carbly.core.async_context import AsyncContext
from carbly.core.celery_app import celery_app
from carbly.core.exceptions import CarblyError
from carbly.database import get_sync_db_session
from carbly.services import contract_service, email_service, reminder_service

logger = logging.getLogger(__name__)

def run_async_task(async_func, *args, **kwargs):
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(async_func(*args, **kwargs))
    finally:
        tasks = asyncio.all_tasks(loop=loop)
        for task in tasks: task.cancel()
        if tasks: loop.run_until_complete(asyncio.gather(*tasks, return_exceptions=True))
        loop.close()
        asyncio.set_event_loop(None)

async def _async_generate_contract(reservation_id: str):
    # The engine must belong to this task's event loop
    context = AsyncContext()
    try:
        async with context.session_factory() as db:
            contract = await contract_service.generate_and_send(db, uuid.UUID(reservation_id))
            logger.info("Contract %s sent for signature (reservation %s)", contract.id, reservation_id)
    except CarblyError as e:
        logger.error("Contract pipeline failed for reservation %s: %s", reservation_id, e.message)
    finally:
        await context.close()

@celery_app.task(
    name='carbly.background.tasks.send_email_task',
    autoretry_for=(CarblyError,),
    retry_backoff=True,
    max_retries=3,
)
def send_email_task(to: str, subject: str, html: str):
    message_id = run_async_task(email_service.send_email, to, subject, html)
    logger.info("Email %r sent to %s (%s)", subject, to, message_id)
    return message_id

@celery_app.task(name='carbly.background.tasks.generate_contract_task')
def generate_contract_task(reservation_id: str):
    """Generates the contract of a fully paid reservation and sends it to Yousign."""
    run_async_task(_async_generate_contract, reservation_id)

@celery_app.task(name='carbly.background.tasks.send_return_reminders_task')
def send_return_reminders_task():
    with get_sync_db_session() as db:
        return reminder_service.send_return_reminders(db)
