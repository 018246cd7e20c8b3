from unittest.mock import MagicMock

from app.models.notification import EventNotificationSettings
from app.services.event_config import (
    StaticEventConfigProvider,
    SupabaseEventConfigProvider,
    settings_from_row,
)


def _client_returning(rows=None, error=None):
    client = MagicMock()
    chain = client.table.return_value.select.return_value.eq.return_value.limit.return_value
    if error is not None:
        chain.execute.side_effect = error
    else:
        chain.execute.return_value = MagicMock(data=rows or [])
    return client


def test_settings_from_legacy_camel_case_row():
    row = {
        "id": "evt-1",
        "name": "BioConf 2026",
        "email_settings": {
            "enabled": True,
            "senderName": "BioConf",
            "senderEmail": "bio@example.com",
            "automaticEmails": {"reviewSubmittedNotificationToAdmin": True},
        },
    }
    s = settings_from_row(row)
    assert s.event_name == "BioConf 2026"
    assert s.email_enabled is True
    assert s.notify_admins_on_approval is True
    assert s.sender_name == "BioConf"
    assert s.sender_email == "bio@example.com"


def test_settings_explicit_flag_wins_over_legacy():
    s = settings_from_row(
        {
            "id": "evt-1",
            "email_settings": {
                "enabled": True,
                "notify_admins_on_approval": False,
                "automaticEmails": {"reviewSubmittedNotificationToAdmin": True},
            },
        }
    )
    assert s.notify_admins_on_approval is False
    assert s.event_name == "Event"


def test_settings_without_email_settings_are_disabled():
    s = settings_from_row({"id": "evt-1", "name": "X", "email_settings": None})
    assert s.email_enabled is False
    assert s.notify_admins_on_approval is False


def test_supabase_provider_reads_event():
    client = _client_returning(
        [{"id": "evt-1", "name": "BioConf", "email_settings": {"enabled": True}}]
    )
    s = SupabaseEventConfigProvider(client=client).get_settings("evt-1")
    client.table.assert_called_with("events")
    assert s.email_enabled is True


def test_supabase_provider_missing_event_disables_email():
    s = SupabaseEventConfigProvider(client=_client_returning([])).get_settings("evt-x")
    assert s.event_id == "evt-x"
    assert s.email_enabled is False


def test_supabase_provider_error_disables_email(caplog):
    client = _client_returning(error=RuntimeError("timeout"))
    with caplog.at_level("WARNING", logger="abstractflow.event_config"):
        s = SupabaseEventConfigProvider(client=client).get_settings("evt-1")
    assert s.email_enabled is False
    assert "timeout" in caplog.text


def test_static_provider_set_and_default():
    provider = StaticEventConfigProvider()
    assert provider.get_settings("evt-1").email_enabled is False
    provider.set(EventNotificationSettings(event_id="evt-1", email_enabled=True))
    assert provider.get_settings("evt-1").email_enabled is True
