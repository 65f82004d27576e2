"""Tests for identity normalization and tenant mapping."""

from __future__ import annotations

import pytest

from src.conversation.identity import TenantDirectory, lock_key, normalize_identity


class TestNormalizeIdentity:
    def test_whatsapp_and_bare_phone_share_identity(self):
        assert normalize_identity("whatsapp:+1 416-555-0000") == "+14165550000"
        assert normalize_identity("+14165550000") == "+14165550000"

    def test_phone_without_plus_gets_one(self):
        assert normalize_identity("sms:(416) 555-0000") == "+4165550000"

    def test_prefix_is_case_insensitive(self):
        assert normalize_identity("WhatsApp:+14165550000") == "+14165550000"

    def test_non_phone_identity_kept(self):
        assert normalize_identity("telegram:12345") == "telegram:12345"

    def test_surrounding_whitespace_stripped(self):
        assert normalize_identity("  telegram:7  ") == "telegram:7"

    @pytest.mark.parametrize("raw", ["", "   ", None])
    def test_empty_rejected(self, raw):
        with pytest.raises(ValueError, match="must not be empty"):
            normalize_identity(raw)


class TestLockKey:
    def test_prefixed(self):
        assert lock_key("+14165550000") == "lock:+14165550000"


class TestTenantDirectory:
    def test_default_tenant_is_phone_digits(self):
        assert TenantDirectory().tenant_for("+14165550000") == "14165550000"

    def test_non_numeric_identity_falls_back_to_digits(self):
        assert TenantDirectory().tenant_for("telegram:42") == "42"

    def test_identity_without_digits_is_its_own_tenant(self):
        assert TenantDirectory().tenant_for("alice") == "alice"

    def test_mapped_entry_wins(self):
        tenants = TenantDirectory.from_setting(
            "whatsapp:+1 416 555 0001=14165550000, telegram:42=14165550000"
        )
        assert tenants.tenant_for("+14165550001") == "14165550000"
        assert tenants.tenant_for("telegram:42") == "14165550000"
        assert tenants.tenant_for("+19055550000") == "19055550000"

    def test_empty_setting(self):
        assert TenantDirectory.from_setting("").entries == {}
