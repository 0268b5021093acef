from django.apps import apps
from django.db import transaction
from django.db.models.signals import post_delete, post_save

from examroom.models import Answer, Result
from .feed import DELETE, INSERT, UPDATE, ChangeEvent

TABLES = {Answer: 'answers', Result: 'results'}


def get_feed():
    return apps.get_app_config('liveresults').feed


def _record(instance):
    return {
        'id': str(instance.pk),
        'exam_id': str(instance.exam_id),
        'student_id': str(instance.student_id),
    }


def connect_feed(feed):
    """Publish committed Answer and Result changes to ``feed``."""

    def publish(sender, instance, event_type):
        event = ChangeEvent(
            table=TABLES[sender],
            event_type=event_type,
            exam_id=str(instance.exam_id),
            record=_record(instance),
        )
        transaction.on_commit(lambda: feed.publish(event))

    def saved(sender, instance, created, **kwargs):
        publish(sender, instance, INSERT if created else UPDATE)

    def deleted(sender, instance, **kwargs):
        publish(sender, instance, DELETE)

    for model in TABLES:
        post_save.connect(saved, sender=model, weak=False, dispatch_uid=f'liveresults_save_{model.__name__}')
        post_delete.connect(deleted, sender=model, weak=False, dispatch_uid=f'liveresults_delete_{model.__name__}')
