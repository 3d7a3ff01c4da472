# tests/sms_flows/test_http_sender.py
import os
from unittest.mock import MagicMock, patch

import pytest
import requests

from sms_flows.delivery import HttpSmsSender, get_sender, normalize_phone
from sms_flows.errors import ConfigurationError


def _response(status_code=200, payload=None, reason="OK"):
    response = MagicMock()
    response.status_code = status_code
    response.ok = 200 <= status_code < 300
    response.reason = reason
    response.json.return_value = payload if payload is not None else {}
    return response


class TestNormalizePhone:
    def test_e164_kept(self):
        assert normalize_phone("+447700900123") == "+447700900123"

    def test_national_number_gets_country_code(self):
        assert normalize_phone("(555) 000-1111") == "+15550001111"


class TestHttpSmsSender:
    def test_payload_and_auth(self):
        sender = HttpSmsSender(endpoint="https://api.example/send-sms", service_key="secret")
        with patch.object(sender.session, "post", return_value=_response(payload={"success": True, "messageSid": "SM1"})) as mock_post:
            result = sender.send("5550001111", "hello", use_user_number=True)

        assert result.success is True
        assert result.provider_id == "SM1"
        mock_post.assert_called_once()
        assert mock_post.call_args.kwargs["json"] == {"to": "+15550001111", "message": "hello", "useUserNumber": True}
        assert sender.session.headers["Authorization"] == "Bearer secret"

    def test_http_error_is_failed_result(self):
        sender = HttpSmsSender(endpoint="https://api.example/send-sms", service_key="secret")
        response = _response(status_code=500, payload={"success": False, "error": "Twilio error: invalid number"}, reason="Server Error")
        with patch.object(sender.session, "post", return_value=response):
            result = sender.send("+15550001111", "hello")

        assert result.success is False
        assert "invalid number" in result.error

    def test_network_error_is_failed_result(self):
        sender = HttpSmsSender(endpoint="https://api.example/send-sms", service_key="secret")
        with patch.object(sender.session, "post", side_effect=requests.ConnectionError("connection refused")):
            result = sender.send("+15550001111", "hello")

        assert result.success is False
        assert "connection refused" in result.error

    def test_non_json_success_body(self):
        sender = HttpSmsSender(endpoint="https://api.example/send-sms", service_key="secret")
        response = _response()
        response.json.side_effect = ValueError("no json")
        with patch.object(sender.session, "post", return_value=response):
            assert sender.send("+15550001111", "hello").success is True

    @patch.dict(os.environ, {"SMS_SEND_URL": "https://api.example/send-sms", "SMS_SERVICE_KEY": "k"})
    def test_configured_from_environment(self):
        sender = get_sender()
        assert isinstance(sender, HttpSmsSender)
        assert sender.endpoint == "https://api.example/send-sms"

    @patch.dict(os.environ, {}, clear=True)
    def test_missing_configuration_raises(self):
        with pytest.raises(ConfigurationError):
            HttpSmsSender()
