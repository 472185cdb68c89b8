from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import patch

from insightbot.services.context_service import (
    acquire_phone_lock,
    end_of_day,
    get_context,
    is_expired,
    save_channel_selection,
    save_dataset_selection,
)


class TestEndOfDay:
    def test_next_local_midnight(self):
        # 23:30 UTC on the 17th is 20:30 on the 17th in Sao Paulo (UTC-3)
        moment = datetime(2026, 10, 17, 23, 30, tzinfo=timezone.utc)
        boundary = end_of_day(moment, "America/Sao_Paulo")
        assert boundary.astimezone(timezone.utc) == datetime(2026, 10, 18, 3, 0, tzinfo=timezone.utc)

    def test_after_local_midnight_rolls_to_next_day(self):
        # 03:30 UTC on the 18th is 00:30 on the 18th in Sao Paulo
        moment = datetime(2026, 10, 18, 3, 30, tzinfo=timezone.utc)
        boundary = end_of_day(moment, "America/Sao_Paulo")
        assert boundary.astimezone(timezone.utc) == datetime(2026, 10, 19, 3, 0, tzinfo=timezone.utc)

    def test_naive_input_is_treated_as_utc(self):
        boundary = end_of_day(datetime(2026, 10, 17, 12, 0), "UTC")
        assert boundary == datetime(2026, 10, 18, 0, 0, tzinfo=timezone.utc)


class TestGetContext:
    def test_returns_live_context(self, db_session, now):
        context = SimpleNamespace(expires_at=now + timedelta(hours=2))
        db_session.query.return_value.filter.return_value.first.return_value = context
        assert get_context(db_session, "5511999998888", now) is context

    def test_absent(self, db_session, now):
        db_session.query.return_value.filter.return_value.first.return_value = None
        assert get_context(db_session, "5511999998888", now) is None

    def test_expired_context_behaves_as_absent(self, db_session, now):
        context = SimpleNamespace(expires_at=now - timedelta(seconds=1))
        db_session.query.return_value.filter.return_value.first.return_value = context
        assert get_context(db_session, "5511999998888", now) is None

    def test_is_expired_at_boundary(self, now):
        assert is_expired(SimpleNamespace(expires_at=now), now) is True


class TestSaveSelection:
    @patch("insightbot.services.context_service.upsert_context")
    def test_channel_selection_drops_dataset(self, mock_upsert, db_session, make_contact, now):
        contact = make_contact()
        save_channel_selection(db_session, contact.phone, contact, now)

        kwargs = mock_upsert.call_args.kwargs
        assert kwargs["selected_contact_id"] == contact.id
        assert kwargs["selected_channel_instance_id"] == contact.channel_instance_id
        assert kwargs["dataset_id"] is None
        assert kwargs["connection_id"] is None

    @patch("insightbot.services.context_service.upsert_context")
    def test_dataset_selection(self, mock_upsert, db_session, make_contact, make_binding, now):
        contact, binding = make_contact(), make_binding()
        save_dataset_selection(db_session, contact.phone, contact, binding, now)

        kwargs = mock_upsert.call_args.kwargs
        assert kwargs["dataset_id"] == "ds-1"
        assert kwargs["dataset_name"] == "Financeiro"
        assert kwargs["connection_id"] == binding.connection_id

    def test_upsert_executes_single_statement(self, db_session, now):
        from insightbot.services.context_service import upsert_context

        upsert_context(db_session, "5511999998888", now=now, dataset_id="ds-1")

        db_session.execute.assert_called_once()
        compiled = str(db_session.execute.call_args[0][0])
        assert "ON CONFLICT" in compiled


class TestPhoneLock:
    def test_takes_advisory_lock(self, db_session):
        acquire_phone_lock(db_session, "5511999998888")
        statement, params = db_session.execute.call_args[0]
        assert "pg_advisory_xact_lock" in str(statement)
        assert params == {"phone": "5511999998888"}
