"""Small helpers shared by the test modules."""

SERVICE_KEY = 'test-service-key'


def bearer(account_or_token) -> dict:
    """Authorization header for a signup result or a raw token."""
    token = account_or_token['token'] if isinstance(account_or_token, dict) else account_or_token
    return {'Authorization': f'Bearer {token}'}
