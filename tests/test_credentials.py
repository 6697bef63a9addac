import json

import pytest

from correlation_store import PushSubscription
from credentials import (
    SAFETY_MARGIN_SECONDS,
    CredentialLifecycle,
    RefreshFailed,
    StoredCredential,
    TokenGrant,
)

USER = "42"
PRIMARY = "a@example.com"
SECONDARY = "b@example.com"


class Refresher:
    def __init__(self, grant=None, error=None):
        self.grant = grant
        self.error = error
        self.calls = []

    def __call__(self, refresh_token):
        self.calls.append(refresh_token)
        if self.error:
            raise self.error
        return self.grant


class Notifier:
    def __init__(self, error=None):
        self.error = error
        self.calls = []

    def __call__(self, user_id, account):
        self.calls.append((user_id, account))
        if self.error:
            raise self.error


@pytest.fixture
def notifier():
    return Notifier()


def _lifecycle(store, clock, refresher, notifier):
    return CredentialLifecycle(store, refresher=refresher, notifier=notifier, clock=clock)


def _link(lifecycle, clock, account=PRIMARY, expires_in=3600):
    return lifecycle.link_account(USER, account, TokenGrant("access-" + account, clock() + expires_in, "refresh-" + account))


def test_fresh_credential_is_returned_without_refresh(store, clock, notifier):
    refresher = Refresher(error=AssertionError("must not refresh"))
    lifecycle = _lifecycle(store, clock, refresher, notifier)
    _link(lifecycle, clock, expires_in=SAFETY_MARGIN_SECONDS + 1)

    credential = lifecycle.get_valid_credential(USER)

    assert credential.access_token == "access-" + PRIMARY
    assert refresher.calls == []


def test_credential_inside_safety_margin_is_refreshed_and_persisted(store, clock, notifier):
    refresher = Refresher(grant=TokenGrant("new-access", clock() + 3600))
    lifecycle = _lifecycle(store, clock, refresher, notifier)
    _link(lifecycle, clock, expires_in=SAFETY_MARGIN_SECONDS)

    credential = lifecycle.get_valid_credential(USER)

    assert refresher.calls == ["refresh-" + PRIMARY]
    assert credential.access_token == "new-access"
    assert credential.refresh_token == "refresh-" + PRIMARY
    stored = json.loads(store.get_credential_record(USER, PRIMARY))
    assert stored["access_token"] == "new-access"
    assert stored["expiry"] == int((clock() + 3600) * 1000)


def test_refresh_failure_notifies_once_and_cleans_up(store, clock, notifier):
    lifecycle = _lifecycle(store, clock, Refresher(error=RefreshFailed("invalid_grant")), notifier)
    _link(lifecycle, clock, expires_in=0)
    store.put_push_subscription(USER, PRIMARY, PushSubscription(enabled=True))

    assert lifecycle.get_valid_credential(USER) is None

    assert notifier.calls == [(USER, PRIMARY)]
    assert store.get_credential_record(USER, PRIMARY) is None
    assert store.get_accounts(USER) == []
    assert store.get_active_account(USER) is None
    assert store.get_push_subscription(USER, PRIMARY) is None


def test_expiry_notice_is_debounced_by_guard(store, clock, notifier):
    lifecycle = _lifecycle(store, clock, Refresher(), notifier)

    lifecycle.notify_expired(USER, PRIMARY)
    lifecycle.notify_expired(USER, PRIMARY)
    assert notifier.calls == [(USER, PRIMARY)]

    clock.advance(24 * 60 * 60)
    lifecycle.notify_expired(USER, PRIMARY)
    assert len(notifier.calls) == 2


def test_failed_notice_does_not_set_guard_and_cleanup_still_runs(store, clock):
    notifier = Notifier(error=RuntimeError("telegram down"))
    lifecycle = _lifecycle(store, clock, Refresher(error=RefreshFailed("boom")), notifier)
    _link(lifecycle, clock, expires_in=0)

    assert lifecycle.get_valid_credential(USER) is None
    assert not store.is_expiry_notified(USER, PRIMARY)
    assert store.get_accounts(USER) == []


def test_missing_or_unparsable_record_takes_the_same_path(store, clock, notifier):
    lifecycle = _lifecycle(store, clock, Refresher(), notifier)
    _link(lifecycle, clock, PRIMARY)
    _link(lifecycle, clock, SECONDARY)
    store.put_credential_record(USER, SECONDARY, "{oops")

    assert lifecycle.get_valid_credential(USER) is None
    assert store.get_accounts(USER) == [PRIMARY]
    assert store.get_active_account(USER) == PRIMARY

    store.delete_credential_record(USER, PRIMARY)
    assert lifecycle.get_valid_credential(USER) is None
    assert store.get_accounts(USER) == []
    assert notifier.calls == [(USER, SECONDARY), (USER, PRIMARY)]


def test_cleanup_repoints_active_and_is_idempotent(store, clock, notifier):
    lifecycle = _lifecycle(store, clock, Refresher(), notifier)
    _link(lifecycle, clock, PRIMARY)
    _link(lifecycle, clock, SECONDARY)
    assert lifecycle.active_account(USER) == SECONDARY

    lifecycle.cleanup(USER, SECONDARY)
    once = dict(store.kv._entries)
    lifecycle.cleanup(USER, SECONDARY)

    assert dict(store.kv._entries) == once
    assert lifecycle.accounts(USER) == [PRIMARY]
    assert lifecycle.active_account(USER) == PRIMARY

    lifecycle.cleanup(USER, PRIMARY)
    assert lifecycle.accounts(USER) == []
    assert lifecycle.active_account(USER) is None


def test_cleanup_clears_active_pointer_to_unknown_account(store, clock, notifier):
    lifecycle = _lifecycle(store, clock, Refresher(), notifier)
    _link(lifecycle, clock, PRIMARY)
    store.set_active_account(USER, "ghost@example.com")

    lifecycle.cleanup(USER, SECONDARY)
    assert lifecycle.active_account(USER) == PRIMARY


def test_relink_clears_guard_and_keeps_single_entry(store, clock, notifier):
    lifecycle = _lifecycle(store, clock, Refresher(), notifier)
    _link(lifecycle, clock, PRIMARY)
    lifecycle.notify_expired(USER, PRIMARY)

    _link(lifecycle, clock, PRIMARY)

    assert not store.is_expiry_notified(USER, PRIMARY)
    assert lifecycle.accounts(USER) == [PRIMARY]


def test_switch_active_only_accepts_linked_accounts(store, clock, notifier):
    lifecycle = _lifecycle(store, clock, Refresher(), notifier)
    _link(lifecycle, clock, PRIMARY)
    _link(lifecycle, clock, SECONDARY)

    assert lifecycle.switch_active(USER, PRIMARY)
    assert lifecycle.active_account(USER) == PRIMARY
    assert not lifecycle.switch_active(USER, "ghost@example.com")
    assert lifecycle.active_account(USER) == PRIMARY


def test_stored_credential_uses_millisecond_expiry():
    credential = StoredCredential("a@example.com", "tok", "ref", 1_700_000_000.5)
    data = json.loads(credential.to_json())
    assert data == {"access_token": "tok", "refresh_token": "ref", "expiry": 1_700_000_000_500}

    parsed = StoredCredential.from_json("a@example.com", credential.to_json())
    assert parsed.expiry == pytest.approx(1_700_000_000.5)


@pytest.mark.parametrize("raw", ["[]", '{"access_token": ""}', '{"access_token": "t", "expiry": "soon"}'])
def test_stored_credential_rejects_incomplete_records(raw):
    with pytest.raises(ValueError):
        StoredCredential.from_json("a@example.com", raw)
