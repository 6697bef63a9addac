import pytest

from commands import (
    CALLBACK_DATA_LIMIT,
    Callback,
    CallbackKind,
    Command,
    MessageAction,
    callback_data,
    parse_callback,
    parse_search,
    parse_text_command,
)


@pytest.mark.parametrize(
    "data, expected",
    [
        ("stats:refresh", Callback(CallbackKind.STATS_REFRESH)),
        ("acc:refresh", Callback(CallbackKind.ACCOUNTS_REFRESH)),
        ("add", Callback(CallbackKind.ADD_ACCOUNT)),
        ("readall", Callback(CallbackKind.READ_ALL)),
        ("sw:1", Callback(CallbackKind.SWITCH_ACCOUNT, "1")),
        ("list:is:unread", Callback(CallbackKind.LIST, "is:unread")),
        ("ref:after:1700000000", Callback(CallbackKind.REFRESH, "after:1700000000")),
        ("pg:1700000000123", Callback(CallbackKind.PAGE, "1700000000123")),
        ("do:unstar", Callback(CallbackKind.MESSAGE_ACTION, "unstar")),
        ("sf:alice@example.com", Callback(CallbackKind.SEARCH_SENDER, "alice@example.com")),
        ("push:off", Callback(CallbackKind.PUSH, "off")),
    ],
)
def test_parse_callback_accepts_the_grammar(data, expected):
    assert parse_callback(data) == expected


@pytest.mark.parametrize(
    "data",
    [
        None, "", "stats", "stats:other", "acc:x", "m:", "m:x", "m:-1", "do:explode", "push:maybe", "nope:1", "x" * 65,
        "m:\u00b2", "sw:\u0663", "del:\uff11", "att:1\u00b2",
    ],
)
def test_parse_callback_rejects_unknown_or_malformed_data(data):
    assert parse_callback(data) is None


def test_callback_properties():
    assert parse_callback("att:2").index == 2
    assert parse_callback("do:read").action is MessageAction.READ
    assert parse_callback("push:on").enable
    assert not parse_callback("push:off").enable


def test_callback_data_truncates_queries_and_fits_byte_limit():
    assert callback_data(CallbackKind.REFRESH, "q" * 80) == "ref:" + "q" * 50
    assert callback_data(CallbackKind.SEARCH_SENDER, "someone.with.a.long.name@example.com") == "sf:someone.with.a.long.name@"

    data = callback_data(CallbackKind.LIST, "é" * 50)
    assert len(data.encode("utf-8")) <= CALLBACK_DATA_LIMIT
    assert parse_callback(data) == Callback(CallbackKind.LIST, data[len("list:"):])


def test_exact_kinds_ignore_arguments():
    assert callback_data(CallbackKind.BACK, "ignored") == "back"


def test_text_commands_and_search():
    assert parse_text_command("📬 Inbox") is Command.INBOX
    assert parse_text_command(" /start ") is Command.START
    assert parse_text_command("hello") is None
    assert parse_search("search from:bob") == "from:bob"
    assert parse_search("/search   invoices ") == "invoices"
    assert parse_search("search ") is None
    assert parse_search("hello") is None
