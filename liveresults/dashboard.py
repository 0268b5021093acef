import logging

from django.conf import settings

from panel.models import Exam
from .stats import exam_stats

logger = logging.getLogger(__name__)

WATCHED_TABLES = ('answers', 'results')


def load_exam_stats(exam_id):
    return exam_stats(Exam.objects.get(pk=exam_id))


class LiveDashboard:
    """Keeps one exam's statistics current while it is being watched.

    Every change event for the exam triggers a full recomputation; with a
    scheduler the statistics are also refreshed every ``refresh_interval``
    seconds. ``on_update`` receives each new statistics payload.
    """

    def __init__(self, exam_id, feed, on_update, scheduler=None, refresh_interval=None, loader=None):
        self.exam_id = str(exam_id)
        self.feed = feed
        self.on_update = on_update
        self.scheduler = scheduler
        self.refresh_interval = refresh_interval or settings.LIVE_RESULTS_REFRESH_SECONDS
        self.loader = loader or load_exam_stats
        self.stats = None
        self._subscriptions = []
        self._refresh_handle = None

    def start(self):
        self._subscriptions = [
            self.feed.subscribe(table, self._on_change, predicate=self._for_exam)
            for table in WATCHED_TABLES
        ]
        if self.scheduler is not None:
            self._refresh_handle = self.scheduler.call_every(self.refresh_interval, self.refresh)
        return self.refresh()

    def _for_exam(self, event):
        return event.exam_id == self.exam_id

    def _on_change(self, event):
        logger.debug(f"{event.event_type} on {event.table} for exam {self.exam_id}")
        self.refresh()

    def refresh(self):
        self.stats = self.loader(self.exam_id)
        self.on_update(self.stats)
        return self.stats

    def stop(self):
        for subscription in self._subscriptions:
            subscription.unsubscribe()
        self._subscriptions = []
        if self._refresh_handle is not None:
            self._refresh_handle.cancel()
            self._refresh_handle = None
