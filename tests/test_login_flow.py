"""Unit tests for auth/flow.py -- EmailLoginFlow.

The flow is wired over a real engine with a FakeClock and a MemoryMailer,
the same way api/main.py wires it, minus HTTP.
"""

from urllib.parse import parse_qs, urlsplit

import pytest

from auth.challenges import TokenIssuer, TokenVerifier
from auth.flow import EmailLoginFlow
from auth.store import ChallengeStore
from auth.tokens import CredentialIssuer
from core.errors import (
    AccountSuspended,
    AlreadyUsed,
    InvalidToken,
    MailDeliveryError,
    NotFound,
    RateLimited,
    TokenExpired,
    ValidationError,
)
from directory.models import UserStatus
from directory.store import UserStore
from mail.sender import MemoryMailer


@pytest.fixture
def users(engine, clock):
    return UserStore(engine, clock=clock)


@pytest.fixture
def mailer():
    return MemoryMailer()


@pytest.fixture
def flow(engine, clock, users, mailer):
    challenges = ChallengeStore(engine)
    return EmailLoginFlow(
        users=users,
        issuer=TokenIssuer(challenges, debounce_seconds=180, clock=clock),
        verifier=TokenVerifier(challenges, expiry_seconds=900, clock=clock),
        credentials=CredentialIssuer("s" * 40, "airlock"),
        mailer=mailer,
        service_url="auth.example.com",
        email_auth_path="/auth/email/verify",
    )


def _token_from(mailer: MemoryMailer) -> str:
    return parse_qs(urlsplit(mailer.outbox[-1].link).query)["token"][0]


# ---------------------------------------------------------------------------
# request_login
# ---------------------------------------------------------------------------


def test_request_sends_link(flow, users, mailer):
    user = users.create_user("alice@example.com")

    assert flow.request_login("alice@example.com").id == user.id
    msg = mailer.outbox[-1]
    assert msg.to_email == "alice@example.com"
    parts = urlsplit(msg.link)
    assert parts.scheme == "https"
    assert parts.netloc == "auth.example.com"
    assert parts.path == "/auth/email/verify"
    query = parse_qs(parts.query)
    assert query["email"] == ["alice@example.com"]
    assert len(query["token"][0]) == 64
    assert "redirect" not in query


def test_request_carries_redirect(flow, users, mailer):
    users.create_user("redir@example.com")
    flow.request_login("redir@example.com", redirect="/dashboard")
    assert parse_qs(urlsplit(mailer.outbox[-1].link).query)["redirect"] == ["/dashboard"]


@pytest.mark.parametrize("email", ["", "   ", "not-an-email", "a@b", "@example.com"])
def test_request_rejects_bad_email(flow, mailer, email):
    with pytest.raises(ValidationError):
        flow.request_login(email)
    assert mailer.outbox == []


def test_request_unknown_user(flow, mailer):
    with pytest.raises(NotFound):
        flow.request_login("ghost@example.com")
    assert mailer.outbox == []


def test_request_suspended_user_is_not_found(flow, users, mailer):
    users.create_user("sus@example.com", UserStatus.SUSPENDED)
    with pytest.raises(NotFound):
        flow.request_login("sus@example.com")
    assert mailer.outbox == []


def test_request_debounced(flow, users, mailer, clock):
    users.create_user("again@example.com")
    flow.request_login("again@example.com")
    clock.advance(60)

    with pytest.raises(RateLimited) as exc_info:
        flow.request_login("again@example.com")
    assert exc_info.value.retry_after_seconds == 120
    assert len(mailer.outbox) == 1


def test_mail_failure_propagates(flow, users, mailer, monkeypatch):
    users.create_user("bounce@example.com")

    def fail(to_email, link):
        raise MailDeliveryError("SES rejected")

    monkeypatch.setattr(mailer, "send", fail)
    with pytest.raises(MailDeliveryError):
        flow.request_login("bounce@example.com")


# ---------------------------------------------------------------------------
# complete_login
# ---------------------------------------------------------------------------


def test_complete_issues_credential(flow, users, mailer, clock):
    user = users.create_user("bob@example.com")
    flow.request_login("bob@example.com")
    clock.advance(100)

    result = flow.complete_login("bob@example.com", _token_from(mailer))
    assert result.user.id == user.id
    assert result.expires_in == 2592000
    assert flow.credentials.decode(result.access_token)["sub"] == user.id
    assert users.get_by_id(user.id).last_login_at == clock.now


def test_complete_twice_fails(flow, users, mailer, clock):
    users.create_user("twice@example.com")
    flow.request_login("twice@example.com")
    token = _token_from(mailer)
    flow.complete_login("twice@example.com", token)
    clock.advance(1)

    with pytest.raises(AlreadyUsed):
        flow.complete_login("twice@example.com", token)


def test_complete_expired(flow, users, mailer, clock):
    users.create_user("late@example.com")
    flow.request_login("late@example.com")
    clock.advance(901)
    with pytest.raises(TokenExpired):
        flow.complete_login("late@example.com", _token_from(mailer))


def test_complete_with_other_users_token(flow, users, mailer):
    users.create_user("one@example.com")
    users.create_user("two@example.com")
    flow.request_login("one@example.com")
    token_one = _token_from(mailer)
    flow.request_login("two@example.com")

    with pytest.raises(InvalidToken):
        flow.complete_login("two@example.com", token_one)


@pytest.mark.parametrize("email,token", [("", "ff"), ("x@example.com", ""), ("bad", "ff")])
def test_complete_rejects_missing_params(flow, email, token):
    with pytest.raises(ValidationError):
        flow.complete_login(email, token)


def test_complete_unknown_user(flow):
    with pytest.raises(NotFound):
        flow.complete_login("ghost@example.com", "00" * 32)


def test_complete_suspended_after_request(flow, users, mailer):
    user = users.create_user("later-sus@example.com")
    flow.request_login("later-sus@example.com")
    users.update_status(user.id, UserStatus.SUSPENDED)

    with pytest.raises(AccountSuspended):
        flow.complete_login("later-sus@example.com", _token_from(mailer))
