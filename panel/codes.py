import secrets

# 0, O, 1 and I are left out so codes survive being read aloud or handwritten
ENTRY_CODE_ALPHABET = 'ABCDEFGHJKLMNPQRSTUVWXYZ23456789'
ENTRY_CODE_LENGTH = 6


def generate_entry_code(length=ENTRY_CODE_LENGTH):
    return ''.join(secrets.choice(ENTRY_CODE_ALPHABET) for _ in range(length))


def unique_entry_code(queryset, field='student_code', length=ENTRY_CODE_LENGTH):
    """Generate a code that no row of ``queryset`` uses in ``field`` yet."""
    code = generate_entry_code(length)
    while queryset.filter(**{field: code}).exists():
        code = generate_entry_code(length)
    return code
