"""Tests for caller identification."""
import uuid

from tts_proxy.services.identity import CallerIdentity, client_ip, new_user_id, resolve_identity


class TestClientIp:

    def test_first_forwarded_hop(self):
        assert client_ip({"x-forwarded-for": "203.0.113.9, 10.0.0.2, 10.0.0.1"}) == "203.0.113.9"

    def test_forwarded_beats_real_ip(self):
        headers = {"x-forwarded-for": "203.0.113.9", "x-real-ip": "198.51.100.1"}
        assert client_ip(headers) == "203.0.113.9"

    def test_real_ip_fallback(self):
        assert client_ip({"x-real-ip": " 198.51.100.1 "}) == "198.51.100.1"

    def test_empty_forwarded_falls_through(self):
        assert client_ip({"x-forwarded-for": " , 10.0.0.1", "x-real-ip": "198.51.100.1"}) == "198.51.100.1"

    def test_unknown(self):
        assert client_ip({}) == "unknown"


class TestResolveIdentity:

    def test_existing_cookie(self):
        identity = resolve_identity({}, {"tts_user_id": "abc"}, "tts_user_id")
        assert identity == CallerIdentity(ip="unknown", user_id="abc", user_is_new=False)
        assert identity.kind == "returning_user"

    def test_minted_when_absent(self):
        identity = resolve_identity({"x-real-ip": "198.51.100.1"}, {}, "tts_user_id")
        assert identity.user_is_new
        assert identity.kind == "new_user"
        assert uuid.UUID(identity.user_id).version == 4

    def test_empty_cookie_is_absent(self):
        assert resolve_identity({}, {"tts_user_id": ""}, "tts_user_id").user_is_new

    def test_ids_are_unique(self):
        assert new_user_id() != new_user_id()
