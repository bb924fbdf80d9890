from datetime import datetime, timezone

from app.models import Conversation, Message
from app.services.conversation_service import (
    apply_sticky_state,
    conversation_id_for,
    find_conversation,
    get_or_create_conversation,
    normalize_contact,
    record_activity,
)
from app.services.message_service import (
    find_outbound_by_external_id,
    get_recent_history,
    save_message,
    soft_delete_message,
)
from app.services.training_engine import StickyState
from app.services.training_service import deactivate_training, get_active_training_for_chat, load_active_rules


class TestContacts:
    def test_normalize_jid(self):
        assert normalize_contact("5511988887777@s.whatsapp.net") == "5511988887777"

    def test_normalize_formatted_number(self):
        assert normalize_contact("+55 (11) 98888-7777") == "5511988887777"

    def test_id_is_deterministic(self):
        assert conversation_id_for("shop1", "5511988887777@s.whatsapp.net") == conversation_id_for(
            "shop1", "+55 11 98888-7777"
        )
        assert conversation_id_for("shop1", "5511") != conversation_id_for("shop2", "5511")


class TestGetOrCreate:
    def test_creates_once(self, db):
        first, created = get_or_create_conversation(db, "shop1", "5511988887777", display_name="Maria")
        db.commit()
        second, created_again = get_or_create_conversation(db, "shop1", "5511988887777@s.whatsapp.net")

        assert created is True
        assert created_again is False
        assert first.id == second.id
        assert first.display_name == "Maria"
        assert db.query(Conversation).count() == 1

    def test_other_session_reuses_row(self, session_factory):
        one, two = session_factory(), session_factory()
        conv_one, created_one = get_or_create_conversation(one, "shop1", "5511")
        one.commit()
        conv_two, created_two = get_or_create_conversation(two, "shop1", "5511")
        two.commit()

        assert created_one is True
        assert created_two is False
        assert conv_one.id == conv_two.id
        one.close()
        two.close()

    def test_automation_flag(self, db):
        conversation, _ = get_or_create_conversation(db, "shop1", "5511", automation_enabled=True)
        assert conversation.automation_enabled is True

    def test_find_missing(self, db):
        assert find_conversation(db, "shop1", "5511") is None


class TestActivity:
    def test_inbound_updates_counters(self, db):
        conversation, _ = get_or_create_conversation(db, "shop1", "5511")
        record_activity(db, conversation, "oi", inbound=True, display_name="Ana")

        assert conversation.message_count == 1
        assert conversation.display_name == "Ana"
        assert conversation.last_message_preview == "oi"

    def test_outbound_keeps_counter(self, db):
        conversation, _ = get_or_create_conversation(db, "shop1", "5511")
        record_activity(db, conversation, "resposta")
        assert conversation.message_count == 0

    def test_preview_keeps_full_text(self, db):
        conversation, _ = get_or_create_conversation(db, "shop1", "5511")
        record_activity(db, conversation, "x" * 500)
        assert conversation.last_message_preview == "x" * 500

    def test_apply_sticky_state(self, db):
        conversation, _ = get_or_create_conversation(db, "shop1", "5511")
        started = datetime(2026, 3, 1, tzinfo=timezone.utc)

        assert apply_sticky_state(db, conversation, StickyState("rule-1", started)) is True
        assert apply_sticky_state(db, conversation, StickyState("rule-1", started)) is False
        assert apply_sticky_state(db, conversation, StickyState()) is True
        assert conversation.active_training_id is None


class TestMessages:
    def test_history_oldest_first(self, db):
        conversation, _ = get_or_create_conversation(db, "shop1", "5511")
        for minute, (direction, body) in enumerate([("inbound", "a"), ("outbound", "b"), ("inbound", "c")]):
            save_message(db, conversation.id, "shop1", direction, body, created_at=datetime(2026, 3, 1, 12, minute))

        history = get_recent_history(db, conversation.id, limit=2)
        assert history == [{"role": "assistant", "content": "b"}, {"role": "user", "content": "c"}]

    def test_soft_deleted_excluded(self, db):
        conversation, _ = get_or_create_conversation(db, "shop1", "5511")
        message = save_message(db, conversation.id, "shop1", "inbound", "apagar")
        soft_delete_message(db, message)

        assert get_recent_history(db, conversation.id) == []
        assert db.query(Message).count() == 1

    def test_delivery_status_defaults(self, db):
        conversation, _ = get_or_create_conversation(db, "shop1", "5511")
        assert save_message(db, conversation.id, "shop1", "inbound", "a").delivery_status == "delivered"
        assert save_message(db, conversation.id, "shop1", "outbound", "b").delivery_status == "sent"

    def test_find_outbound_by_external_id(self, db):
        conversation, _ = get_or_create_conversation(db, "shop1", "5511")
        save_message(db, conversation.id, "shop1", "outbound", "b", external_id="3EB0")
        save_message(db, conversation.id, "shop1", "inbound", "c", external_id="IN1")

        assert find_outbound_by_external_id(db, "shop1", "3EB0") is not None
        assert find_outbound_by_external_id(db, "shop1", "IN1") is None
        assert find_outbound_by_external_id(db, "shop2", "3EB0") is None
        assert find_outbound_by_external_id(db, "shop1", None) is None


class TestTrainingService:
    def test_load_active_rules(self, db, add_rule):
        add_rule(id="a", activation_mode="always", priority=3)
        add_rule(id="b", is_active=False)
        add_rule(connection_id="shop2", id="c")

        rules = load_active_rules(db, "shop1")
        assert [rule.id for rule in rules] == ["a"]
        assert rules[0].priority == 3

    def test_unknown_mode_treated_as_keywords(self, db, add_rule):
        add_rule(id="a", activation_mode="sometimes", keywords=["oi"])
        [rule] = load_active_rules(db, "shop1")
        assert rule.activation_mode.value == "keywords"

    def test_active_training_of_other_connection_cleared(self, db, add_rule):
        add_rule(connection_id="shop2", id="foreign", activation_mode="always")
        conversation, _ = get_or_create_conversation(db, "shop1", "5511")
        conversation.active_training_id = "foreign"

        assert get_active_training_for_chat(db, conversation) is None
        assert conversation.active_training_id is None

    def test_deactivate(self, db):
        conversation, _ = get_or_create_conversation(db, "shop1", "5511")
        conversation.active_training_id = "x"
        assert deactivate_training(db, conversation) is True
        assert deactivate_training(db, conversation) is False
