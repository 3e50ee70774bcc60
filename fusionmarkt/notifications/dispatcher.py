import asyncio
from typing import Any, Dict
from fusionmarkt.background_workers.base_worker import BaseWorker
from fusionmarkt.common.logging_setup import get_logger
from fusionmarkt.notifications.templates import render

logger = get_logger("fusionmarkt.notifications")


class NotificationDispatcher(BaseWorker):
    """
    Fire-and-forget e-mail queue. ``dispatch`` only enqueues and never raises;
    worker tasks render and send, and a failed send is only logged.
    Call ``dispatch`` after the order's transaction has committed.
    """
    name = "notifications"

    def __init__(self, sender, workers_count: int = 2, max_queue_size: int = 1000):
        super().__init__(workers_count=workers_count, max_queue_size=max_queue_size)
        self.sender = sender

    def dispatch(self, kind: str, to: str, **params: Any) -> bool:
        if not to:
            logger.warning("notification.skipped.no_recipient", extra={"kind": kind})
            return False
        try:
            self.queue.put_nowait({"kind": kind, "to": to, "params": params})
        except asyncio.QueueFull:
            logger.error("notification.dropped.queue_full", extra={"kind": kind})
            return False
        logger.debug("notification.queued", extra={"kind": kind})
        return True

    async def handle(self, item: Dict[str, Any], wname: str) -> None:
        try:
            subject, html = render(item["kind"], item["params"])
        except ValueError:
            logger.error("notification.unknown_kind", extra={"kind": item["kind"]})
            return
        result = await self.sender.send(item["to"], subject, html)
        logger.info("notification.sent", extra={"kind": item["kind"], "worker": wname,
                                                "message_id": result.message_id})
