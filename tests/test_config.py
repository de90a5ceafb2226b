"""Tests for breakbot.config — settings loaded from the test environment."""

from breakbot.config import CommunityConfig, PoolChats, settings


class TestSettings:
    def test_loaded_from_env(self):
        assert settings.TELEGRAM_BOT_TOKEN == "fake-token-for-tests"
        assert settings.TIMEZONE == "Europe/Istanbul"
        assert settings.MAINTENANCE_INTERVAL_SECONDS == 30
        assert [c.community_id for c in settings.COMMUNITIES] == [-100500]

    def test_admin_ids_parsed(self):
        assert settings.community(-100500).admin_user_ids == [999]

    def test_unknown_community(self):
        assert settings.community(1) is None


class TestChannelContext:
    def test_break_channel(self):
        ctx = settings.channel_context(-1003)
        assert (ctx.community_id, ctx.pool_key, ctx.channel_type) == (-100500, "evening", "break")

    def test_reservation_channel(self):
        ctx = settings.channel_context(-1006)
        assert (ctx.pool_key, ctx.channel_type) == ("night", "rez")

    def test_unknown_chat(self):
        assert settings.channel_context(-42) is None

    def test_admin_chat_is_not_a_pool_channel(self):
        assert settings.channel_context(-1007) is None

    def test_community_for_chat(self):
        assert settings.community_for_chat(-1007).community_id == -100500
        assert settings.community_for_chat(-100500).community_id == -100500
        assert settings.community_for_chat(-1002).community_id == -100500
        assert settings.community_for_chat(-42) is None


class TestCommunityConfig:
    def test_chat_ids_parsed_from_strings(self):
        chats = PoolChats(break_chat_ids=" -1, -2 ,", rez_chat_ids="")
        assert chats.break_chat_ids == [-1, -2]
        assert chats.rez_chat_ids == []

    def test_chat_ids_for(self):
        cfg = CommunityConfig(
            community_id=1,
            pools={"morning": PoolChats(break_chat_ids=[10], rez_chat_ids=[11])},
            admin_break_chat_ids=[12],
        )
        assert cfg.chat_ids_for("morning", "break") == [10]
        assert cfg.chat_ids_for("morning", "rez") == [11]
        assert cfg.chat_ids_for("admin", "break") == [12]
        assert cfg.chat_ids_for("admin", "rez") == []
        assert cfg.chat_ids_for("night", "break") == []
