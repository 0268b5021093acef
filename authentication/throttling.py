from rest_framework.throttling import SimpleRateThrottle


class FieldRateThrottle(SimpleRateThrottle):
    """Counts attempts per submitted credential instead of per client address."""

    fields = ()

    def normalize(self, value):
        return value.strip()

    def get_cache_key(self, request, view):
        value = next((request.data.get(name) for name in self.fields if request.data.get(name)), None)
        if not value:
            return None

        return self.cache_format % {
            'scope': self.scope,
            'ident': self.normalize(str(value))
        }


class AuthenticationThrottle(FieldRateThrottle):
    rate = '5/minute'
    scope = 'auth_login'
    fields = ('email',)

    def normalize(self, value):
        return value.strip().lower()


class EntryCodeThrottle(FieldRateThrottle):
    rate = '10/minute'
    scope = 'exam_login'
    fields = ('student-code', 'student_code')

    def normalize(self, value):
        return value.strip().upper()
