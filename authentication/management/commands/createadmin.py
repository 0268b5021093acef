from decouple import config
from django.contrib.auth.models import User
from django.core.management.base import BaseCommand, CommandError


class Command(BaseCommand):
    help = 'Creates the panel administrator, or resets its password if it already exists'

    def add_arguments(self, parser):
        parser.add_argument('--email', default=config('ADMIN_EMAIL', default=None))
        parser.add_argument('--password', default=config('ADMIN_PASSWORD', default=None))

    def handle(self, *args, **options):
        email, password = options['email'], options['password']
        if not email or not password:
            raise CommandError('Set ADMIN_EMAIL and ADMIN_PASSWORD or pass --email and --password')

        user = User.objects.filter(email__iexact=email).first()
        if user is None:
            User.objects.create_superuser(username=email.split('@')[0], email=email, password=password)
            self.stdout.write(self.style.SUCCESS(f'Admin {email} created successfully'))
            return

        user.is_staff = True
        user.is_superuser = True
        user.is_active = True
        user.set_password(password)
        user.save()
        self.stdout.write(self.style.SUCCESS(f'Admin {email} already existed; password reset'))
