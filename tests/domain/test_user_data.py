"""Tests for user-data encoding."""

import base64

import pytest

from nimbus.domain.value_objects.user_data import UserData


class TestUserData:
    def test_exact_wire_format(self):
        user_data = UserData.from_env({"B": "2", "A": "1"})
        assert base64.b64decode(user_data.encoded) == b'{"A":"1","B":"2"}'

    def test_empty_env(self):
        assert UserData.from_env({}).encoded == base64.b64encode(b"{}").decode()

    def test_non_ascii_is_utf8(self):
        user_data = UserData.from_env({"GREETING": "héllo"})
        assert base64.b64decode(user_data.encoded) == '{"GREETING":"héllo"}'.encode()

    def test_decode(self):
        env = {"PORT": "8080", "MODE": "prod"}
        assert UserData.from_env(env).decode() == env

    def test_deterministic(self):
        assert UserData.from_env({"x": "1", "y": "2"}) == UserData.from_env(
            {"y": "2", "x": "1"}
        )

    def test_unserializable_value_raises_type_error(self):
        with pytest.raises(TypeError):
            UserData.from_env({"K": object()})

    def test_decode_invalid_base64(self):
        with pytest.raises(ValueError, match="base64"):
            UserData("not base64!").decode()

    def test_str_is_encoded(self):
        user_data = UserData.from_env({"A": "1"})
        assert str(user_data) == user_data.encoded


class TestGoCompatibleEscaping:
    """Payloads must match what Go's encoding/json produces for the same map."""

    def test_html_characters_escaped(self):
        user_data = UserData.from_env({"A": "<b>&"})
        assert user_data.encoded == "eyJBIjoiXHUwMDNjYlx1MDAzZVx1MDAyNiJ9"

    def test_line_separators_escaped(self):
        user_data = UserData.from_env({"A": "x" + chr(0x2028) + "y" + chr(0x2029)})
        assert user_data.encoded == "eyJBIjoieFx1MjAyOHlcdTIwMjkifQ=="

    def test_url_keeps_slashes(self):
        user_data = UserData.from_env({"URL": "http://h/?a=1&b=2"})
        assert user_data.encoded == "eyJVUkwiOiJodHRwOi8vaC8/YT0xXHUwMDI2Yj0yIn0="

    def test_escaped_payload_decodes_to_original(self):
        env = {"A": "<b>&", "B": "x" + chr(0x2028)}
        assert UserData.from_env(env).decode() == env
