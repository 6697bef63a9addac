from devserver import startup_hints
from settings import Settings


def test_hints_point_at_setup_when_public_url_is_known(settings):
    hints = startup_hints(settings, "127.0.0.1", 8000)

    assert hints[0] == "Serving on http://127.0.0.1:8000"
    assert "Register the webhook: open https://bot.example.com/setup?secret=<BOT_SECRET>" in hints
    assert "OAuth redirect URI: https://bot.example.com/oauth/callback" in hints
    assert len(hints) == 3


def test_hints_list_missing_configuration():
    hints = startup_hints(Settings(), "0.0.0.0", 9000)

    assert any("PUBLIC_BASE_URL is not set" in hint and "9000" in hint for hint in hints)
    assert any(hint.startswith("BOT_SECRET is not set") for hint in hints)
    assert any(hint.startswith("TELEGRAM_BOT_TOKEN is not set") for hint in hints)
    assert any(hint.startswith("GOOGLE_CLIENT_ID") for hint in hints)
    assert not any("/setup" in hint for hint in hints)
