import jwt
import pytest

from agency_scheduler.auth import jwt_handler


def test_access_token_round_trip_keeps_subject_and_claims() -> None:
    token = jwt_handler.create_access_token('host@agency.test', role='team_member')

    payload = jwt_handler.decode_access_token(token)
    assert payload['sub'] == 'host@agency.test'
    assert payload['role'] == 'team_member'
    assert payload['exp'] > payload['iat']


def test_oauth_state_round_trip_returns_user_id() -> None:
    state = jwt_handler.create_oauth_state(42)

    assert jwt_handler.read_oauth_state(state) == 42


@pytest.mark.parametrize(
    ('subject', 'claims'),
    [
        ('host@agency.test', {}),
        ('42', {}),
        ('42', {'purpose': 'password_reset'}),
        ('abc', {'purpose': jwt_handler.OAUTH_STATE_PURPOSE}),
    ],
)
def test_oauth_state_rejects_other_tokens(subject: str, claims: dict) -> None:
    with pytest.raises(jwt.InvalidTokenError):
        jwt_handler.read_oauth_state(jwt_handler.create_access_token(subject, **claims))


def test_oauth_state_rejects_expired_and_tampered_tokens() -> None:
    expired = jwt_handler.create_access_token('42', expires_minutes=-1, purpose=jwt_handler.OAUTH_STATE_PURPOSE)

    with pytest.raises(jwt.ExpiredSignatureError):
        jwt_handler.read_oauth_state(expired)
    with pytest.raises(jwt.InvalidTokenError):
        jwt_handler.read_oauth_state(jwt_handler.create_oauth_state(42) + 'x')
