from io import StringIO

from django.contrib.auth.models import User
from django.core.cache import cache
from django.core.management import call_command
from django.core.management.base import CommandError
from django.test import TestCase
from django.urls import reverse
from rest_framework import status
from rest_framework.test import APITestCase
from rest_framework_simplejwt.tokens import RefreshToken


class AuthenticationTests(APITestCase):
    def setUp(self):
        cache.clear()
        self.user = User.objects.create_user(
            username='admin',
            email='admin@example.com',
            password='testpass123',
            is_active=True,
            is_staff=True
        )
        self.signin_url = reverse('signin')
        self.signout_url = reverse('signout')

    def test_signin_success(self):
        response = self.client.post(self.signin_url, {
            'email': 'Admin@Example.com',
            'password': 'testpass123',
            'remember_me': 'true'
        })
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn('access', response.data['tokens'])
        self.assertIn('refresh', response.data['tokens'])
        self.assertEqual(response.data['user']['email'], 'admin@example.com')
        self.assertTrue(response.cookies.get('access_token').value)
        self.assertEqual(response.cookies['refresh_token']['max-age'], 60 * 60 * 24 * 30)

    def test_signin_requires_staff(self):
        User.objects.create_user(username='proctor', email='proctor@example.com', password='testpass123')
        response = self.client.post(self.signin_url, {
            'email': 'proctor@example.com',
            'password': 'testpass123'
        })
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_signin_missing_fields(self):
        response = self.client.post(self.signin_url, {'email': 'admin@example.com'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_signin_rate_limit(self):
        for _ in range(6):
            response = self.client.post(self.signin_url, {
                'email': 'admin@example.com',
                'password': 'wrong'
            })
        self.assertEqual(response.status_code, status.HTTP_429_TOO_MANY_REQUESTS)

    def test_access_cookie_authenticates(self):
        refresh = RefreshToken.for_user(self.user)
        self.client.cookies['access_token'] = str(refresh.access_token)
        response = self.client.get(reverse('me'))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['username'], 'admin')

    def test_panel_rejects_anonymous(self):
        response = self.client.get(reverse('me'))
        self.assertIn(response.status_code, (status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN))

    def test_refresh_issues_new_access_cookie(self):
        refresh = RefreshToken.for_user(self.user)
        self.client.cookies['refresh_token'] = str(refresh)
        response = self.client.post(reverse('token_refresh'))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertTrue(response.cookies['access_token'].value)

    def test_signout_blacklists_refresh_token(self):
        refresh = RefreshToken.for_user(self.user)
        self.client.cookies['refresh_token'] = str(refresh)

        response = self.client.post(self.signout_url)
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.cookies['refresh_token'].value, '')
        self.assertEqual(response.cookies['access_token'].value, '')

        response = self.client.post(reverse('token_refresh'), {'refresh': str(refresh)})
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_change_password(self):
        self.client.force_authenticate(user=self.user)
        response = self.client.post(reverse('change_password'), {
            'current_password': 'testpass123',
            'new_password': 'a-much-longer-passphrase',
            'confirm_password': 'a-much-longer-passphrase'
        })
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.user.refresh_from_db()
        self.assertTrue(self.user.check_password('a-much-longer-passphrase'))

    def test_change_password_mismatch(self):
        self.client.force_authenticate(user=self.user)
        response = self.client.post(reverse('change_password'), {
            'current_password': 'testpass123',
            'new_password': 'a-much-longer-passphrase',
            'confirm_password': 'something-else-entirely'
        })
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)


class CreateAdminCommandTests(TestCase):
    def test_creates_superuser(self):
        call_command('createadmin', email='root@example.com', password='secret-pass', stdout=StringIO())
        user = User.objects.get(email='root@example.com')
        self.assertTrue(user.is_superuser)
        self.assertTrue(user.check_password('secret-pass'))

    def test_resets_existing_admin(self):
        User.objects.create_user(username='root', email='root@example.com', password='old')
        call_command('createadmin', email='root@example.com', password='new-pass', stdout=StringIO())
        user = User.objects.get(email='root@example.com')
        self.assertTrue(user.is_staff)
        self.assertTrue(user.check_password('new-pass'))

    def test_requires_credentials(self):
        with self.assertRaises(CommandError):
            call_command('createadmin', email='', password='')
