from django.apps import AppConfig


class LiveresultsConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'liveresults'
    verbose_name = 'Live results'

    def ready(self):
        from .feed import ChangeFeed
        from .signals import connect_feed

        self.feed = ChangeFeed()
        connect_feed(self.feed)
