import itertools
import logging
import threading
from queue import Empty, PriorityQueue
from typing import Callable, Optional

from roadguard.config import config

logger = logging.getLogger(__name__)

# speak(text, cancel_event) blocks until the item is spoken or cancel_event is set
Speaker = Callable[[str, threading.Event], None]


class AnnouncementQueue:
    """
    Sequential announcement playback.

    Producers call announce() from any thread. A single worker drains the
    queue in priority order (lower value first, FIFO within a priority) and
    waits a fixed gap between items. cancel() drops everything queued and
    signals the item being spoken to stop.
    """

    def __init__(self, speak: Speaker, gap: float = config.ANNOUNCEMENT_GAP_SEC):
        self.speak = speak
        self.gap = gap
        self.queue = PriorityQueue()
        self._counter = itertools.count()
        self._abort = threading.Event()
        self._generation = 0
        self._generation_lock = threading.Lock()
        self._stop = threading.Event()
        self._worker: Optional[threading.Thread] = None

    def start(self):
        if self._worker and self._worker.is_alive():
            return
        self._stop.clear()
        self._worker = threading.Thread(target=self._run, name="announcer", daemon=True)
        self._worker.start()

    def announce(self, text: str, priority: int = 1):
        with self._generation_lock:
            self.queue.put((priority, next(self._counter), self._generation, text))

    def cancel(self):
        with self._generation_lock:
            # items announced before this point are stale, even one the worker already holds
            self._generation += 1
            dropped = 0
            while True:
                try:
                    self.queue.get_nowait()
                    self.queue.task_done()
                    dropped += 1
                except Empty:
                    break
            self._abort.set()
        logger.info(f"Announcements cancelled, {dropped} queued items dropped")

    def stop(self):
        self._stop.set()
        self.cancel()
        if self._worker:
            self._worker.join()
            self._worker = None

    def _run(self):
        while not self._stop.is_set():
            try:
                _, _, generation, text = self.queue.get(timeout=0.1)
            except Empty:
                continue

            with self._generation_lock:
                stale = generation != self._generation
                if not stale:
                    self._abort.clear()
            if stale:
                self.queue.task_done()
                continue

            try:
                self.speak(text, self._abort)
            except Exception as e:
                logger.error(f"Announcement error: {e}")
            finally:
                self.queue.task_done()

            # abort also cuts the inter-item pause short
            self._abort.wait(self.gap)
