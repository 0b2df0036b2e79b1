# app/services/generation_queue.py
from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from app.core.errors import LifecycleError
from app.services.generation_service import GenerationService

logger = logging.getLogger(__name__)


class GenerationQueue:
    """
    Background runner for generation jobs.

    Each job opens its own DB session. An order already queued or running is
    not queued again; the lifecycle guard in GenerationService still rejects
    duplicates coming from other processes.
    """
    def __init__(
        self,
        session_factory: Callable[[], Session],
        service: GenerationService,
        *,
        max_workers: int = 4,
    ):
        self.session_factory = session_factory
        self.service = service
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="generation")
        self._lock = threading.Lock()
        self._in_flight: Dict[str, Future] = {}
        self._closed = False

    def submit(self, order_id: str) -> bool:
        """Returns False if the order is already queued/running or the queue is shut down."""
        with self._lock:
            if self._closed:
                logger.warning("generation queue closed; job dropped", extra={"order_id": order_id})
                return False
            if order_id in self._in_flight:
                return False
            future = self._executor.submit(self._run, order_id)
            self._in_flight[order_id] = future
        future.add_done_callback(lambda _f, oid=order_id: self._forget(oid))
        logger.info("generation queued", extra={"order_id": order_id})
        return True

    def pending(self) -> List[str]:
        with self._lock:
            return list(self._in_flight)

    def wait_idle(self, timeout: Optional[float] = None) -> None:
        """Blocks until every job submitted so far has finished."""
        with self._lock:
            futures = list(self._in_flight.values())
        for f in futures:
            f.exception(timeout=timeout)

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=wait)

    def _forget(self, order_id: str) -> None:
        with self._lock:
            self._in_flight.pop(order_id, None)

    def _run(self, order_id: str) -> None:
        db = self.session_factory()
        try:
            order = self.service.generate(db, order_id)
            logger.info(
                "generation job finished",
                extra={"order_id": order_id, "status": order.lifecycle_status},
            )
        except LifecycleError as e:
            logger.warning("generation job ended", extra={"order_id": order_id, "error": e.message})
        except Exception:
            logger.exception("generation job crashed", extra={"order_id": order_id})
        finally:
            db.close()
