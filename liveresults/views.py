import json
import logging
import queue

from django.conf import settings
from django.core.serializers.json import DjangoJSONEncoder
from django.http import StreamingHttpResponse
from django.shortcuts import get_object_or_404
from rest_framework.decorators import api_view, renderer_classes
from rest_framework.renderers import BaseRenderer, JSONRenderer
from rest_framework.response import Response

from panel.models import Exam
from .dashboard import LiveDashboard
from .signals import get_feed
from .stats import exam_stats

logger = logging.getLogger(__name__)


def sse_message(event, data):
    return f"event: {event}\ndata: {json.dumps(data, cls=DjangoJSONEncoder)}\n\n"


class EventStreamRenderer(BaseRenderer):
    media_type = 'text/event-stream'
    format = 'sse'

    def render(self, data, accepted_media_type=None, renderer_context=None):
        # Only error bodies reach the renderer; the stream itself bypasses it
        return sse_message('error', data)


def stats_stream(exam_id, feed, refresh_seconds):
    updates = queue.Queue()
    dashboard = LiveDashboard(exam_id, feed, on_update=updates.put)
    try:
        dashboard.start()
        while True:
            try:
                stats = updates.get(timeout=refresh_seconds)
            except queue.Empty:
                dashboard.refresh()
                continue
            yield sse_message('stats', stats)
    finally:
        dashboard.stop()
        logger.debug(f"Live results stream for exam {exam_id} closed")


@api_view(['GET'])
def snapshot(request, exam_id):
    exam = get_object_or_404(Exam, pk=exam_id)
    return Response(exam_stats(exam))


@api_view(['GET'])
@renderer_classes([EventStreamRenderer, JSONRenderer])
def stream(request, exam_id):
    exam = get_object_or_404(Exam, pk=exam_id)
    response = StreamingHttpResponse(
        stats_stream(exam.pk, get_feed(), settings.LIVE_RESULTS_REFRESH_SECONDS),
        content_type='text/event-stream',
    )
    response['Cache-Control'] = 'no-cache'
    response['X-Accel-Buffering'] = 'no'
    return response
