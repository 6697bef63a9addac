from correlation_store import (
    AUTH_NONCE_TTL,
    INDEX_MAP_TTL,
    PREVIEW_TOKEN_TTL,
    PushSubscription,
)


def test_index_map_is_replaced_wholesale(store):
    store.put_index_map("42", ["a", "b", "c"])
    store.put_index_map("42", ["x"])

    assert store.get_indexed_message("42", 0) == "x"
    assert store.get_indexed_message("42", 1) is None


def test_index_map_expires(store, clock):
    store.put_index_map("42", ["a"])
    clock.advance(INDEX_MAP_TTL)
    assert store.get_indexed_message("42", 0) is None


def test_records_of_different_users_do_not_collide(store):
    store.put_index_map("1", ["a"])
    store.put_index_map("2", ["b"])
    store.set_current_message("1", "a")

    assert store.get_indexed_message("1", 0) == "a"
    assert store.get_indexed_message("2", 0) == "b"
    assert store.get_current_message("2") is None


def test_malformed_json_reads_as_absent(store, kv):
    kv.put("mailmap:42", "{not json")
    kv.put("accounts:42", '"just a string"')
    kv.put("page:42:1", "[]")

    assert store.get_indexed_message("42", 0) is None
    assert store.get_accounts("42") == []
    assert store.get_page_cursor("42", "1") is None


def test_accounts_are_deduplicated_and_validated(store, kv):
    kv.put("accounts:42", '["a@example.com", "a@example.com", 7, "", "b@example.com"]')
    assert store.get_accounts("42") == ["a@example.com", "b@example.com"]


def test_page_cursor_round_trip_uses_one_timestamp(store, clock):
    key = store.put_page_cursor("42", "in:inbox", "tok-2")

    assert key == str(int(clock() * 1000))
    cursor = store.get_page_cursor("42", key)
    assert cursor.query == "in:inbox"
    assert cursor.token == "tok-2"


def test_preview_token_expires_and_stays_expired(store, clock):
    token = store.issue_preview_token("42", "m1", "me@example.com")
    grant = store.get_preview_grant(token)
    assert (grant.user_id, grant.message_id, grant.account) == ("42", "m1", "me@example.com")

    clock.advance(PREVIEW_TOKEN_TTL)
    assert store.get_preview_grant(token) is None
    assert store.get_preview_grant(token) is None


def test_preview_tokens_are_unguessable_and_distinct(store):
    first = store.issue_preview_token("42", "m1", "me@example.com")
    second = store.issue_preview_token("42", "m1", "me@example.com")
    assert first != second
    assert len(first) == 32


def test_nonce_matches_only_the_issued_value_until_it_expires(store, clock):
    nonce = store.issue_nonce("42")

    assert store.nonce_matches("42", nonce)
    assert not store.nonce_matches("42", "forged")
    assert not store.nonce_matches("42", None)
    assert not store.nonce_matches("43", nonce)

    clock.advance(AUTH_NONCE_TTL)
    assert not store.nonce_matches("42", nonce)


def test_account_index_resolves_against_snapshot(store):
    store.put_account_index("42", ["a@example.com", "b@example.com"])
    store.put_accounts("42", ["b@example.com"])

    assert store.get_indexed_account("42", 1) == "b@example.com"
    assert store.get_indexed_account("42", 0) == "a@example.com"
    assert store.get_indexed_account("42", 2) is None


def test_push_subscriptions_are_enumerated_by_prefix(store, kv):
    store.put_push_subscription("1", "a@example.com", PushSubscription(enabled=True, history_id="10"))
    store.put_push_subscription("2", "b@example.com", PushSubscription(enabled=False))
    kv.put("push:broken", "{}")
    kv.put("token:1:a@example.com", "{}")

    entries = {(user, account): sub for user, account, sub in store.iter_push_subscriptions()}

    assert set(entries) == {("1", "a@example.com"), ("2", "b@example.com")}
    assert entries[("1", "a@example.com")].enabled
    assert entries[("1", "a@example.com")].history_id == "10"
    assert not entries[("2", "b@example.com")].enabled


def test_push_subscription_serializes_with_stored_field_names(store, kv):
    store.put_push_subscription("1", "a@example.com", PushSubscription(True, "10", "1700000000000"))
    assert kv.get("push:1:a@example.com") == '{"enabled": true, "historyId": "10", "expiry": "1700000000000"}'
