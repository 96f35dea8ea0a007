"""
Tests for the MQTT and HTTPS protocol handlers.
Uses httpx.MockTransport and a patched paho client; no live brokers or servers.
"""

import json
from unittest.mock import MagicMock, patch

import httpx
import pytest

from devsim.services.protocols import protocol_registry
from devsim.services.protocols.base import TransportTarget
from devsim.services.protocols.http_handler import HTTPHandler
from devsim.services.protocols.mqtt_handler import MQTTHandler


def _https_target(auth_type="NONE", auth_config=None, **config):
    return TransportTarget(
        type="HTTPS",
        host="api.example.com",
        port=None,
        endpoint="/ingest",
        auth_type=auth_type,
        auth_config=auth_config or {},
        connection_config={"method": "POST", "timeout": 5, "verify_ssl": True, **config},
    )


def _mqtt_target(auth_type="NONE", auth_config=None, qos=1, ssl=False, port=None):
    return TransportTarget(
        type="MQTT",
        host="broker.local",
        port=port,
        endpoint="plant/sensors",
        auth_type=auth_type,
        auth_config=auth_config or {},
        connection_config={"client_id": "devsim_test", "keep_alive": 30, "qos": qos, "ssl": ssl},
    )


# ═══════════════════════════════════════════════════════════════
# HTTPS
# ═══════════════════════════════════════════════════════════════


class TestHTTPHandler:

    @pytest.mark.asyncio
    async def test_publish_success(self):
        seen = {}

        def respond(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["url"] = str(request.url)
            seen["body"] = json.loads(request.content)
            return httpx.Response(201)

        handler = HTTPHandler(transport=httpx.MockTransport(respond))
        result = await handler.publish(_https_target(), {"temp": 21.5})

        assert result.success is True
        assert seen["method"] == "POST"
        assert seen["url"] == "https://api.example.com/ingest"
        assert seen["body"] == {"temp": 21.5}

    @pytest.mark.asyncio
    async def test_publish_uses_configured_method(self):
        seen = {}

        def respond(request):
            seen["method"] = request.method
            return httpx.Response(200)

        handler = HTTPHandler(transport=httpx.MockTransport(respond))
        await handler.publish(_https_target(method="PUT"), {})
        assert seen["method"] == "PUT"

    @pytest.mark.asyncio
    async def test_publish_http_error(self):
        handler = HTTPHandler(transport=httpx.MockTransport(lambda request: httpx.Response(500, text="oops")))
        result = await handler.publish(_https_target(), {"temp": 1})

        assert result.success is False
        assert result.error_code == "HTTP_500"

    @pytest.mark.asyncio
    async def test_publish_timeout(self):
        def respond(request):
            raise httpx.ReadTimeout("timed out", request=request)

        handler = HTTPHandler(transport=httpx.MockTransport(respond))
        result = await handler.publish(_https_target(), {})

        assert result.success is False
        assert result.error_code == "TIMEOUT"

    @pytest.mark.asyncio
    async def test_token_auth_header(self):
        seen = {}

        def respond(request):
            seen["authorization"] = request.headers.get("Authorization")
            return httpx.Response(200)

        handler = HTTPHandler(transport=httpx.MockTransport(respond))
        target = _https_target("TOKEN", {"token": "abc", "token_type": "Token"})
        await handler.publish(target, {})

        assert seen["authorization"] == "Token abc"

    @pytest.mark.asyncio
    async def test_api_key_in_query(self):
        seen = {}

        def respond(request):
            seen["params"] = dict(request.url.params)
            return httpx.Response(200)

        handler = HTTPHandler(transport=httpx.MockTransport(respond))
        target = _https_target("API_KEY", {"key": "k1", "location": "query", "parameter_name": "api_key"})
        await handler.publish(target, {})

        assert seen["params"] == {"api_key": "k1"}

    @pytest.mark.asyncio
    async def test_basic_auth(self):
        seen = {}

        def respond(request):
            seen["authorization"] = request.headers.get("Authorization", "")
            return httpx.Response(200)

        handler = HTTPHandler(transport=httpx.MockTransport(respond))
        await handler.publish(_https_target("USER_PASS", {"username": "u", "password": "p"}), {})

        assert seen["authorization"].startswith("Basic ")

    @pytest.mark.asyncio
    async def test_connection_test_auth_failure(self):
        handler = HTTPHandler(transport=httpx.MockTransport(lambda request: httpx.Response(401)))
        result = await handler.test_connection(_https_target())

        assert result.success is False
        assert result.error_code == "AUTHENTICATION_FAILED"

    def test_build_url_keeps_scheme_and_port(self):
        target = _https_target()
        target.host = "http://localhost"
        target.port = 8080
        assert HTTPHandler().build_url(target) == "http://localhost:8080/ingest"


# ═══════════════════════════════════════════════════════════════
# MQTT
# ═══════════════════════════════════════════════════════════════


def _wire_client(instance, connect_rc=0):
    """Make the mocked paho client fire its v2 callbacks synchronously"""

    def fake_connect(host, port, keepalive):
        instance.on_connect(instance, None, {}, connect_rc, None)

    def fake_publish(topic, payload, qos, retain):
        info = MagicMock()
        info.rc = 0
        info.mid = 7
        instance.on_publish(instance, None, 7, 0, None)
        return info

    instance.connect.side_effect = fake_connect
    instance.publish.side_effect = fake_publish


class TestMQTTHandler:

    @pytest.mark.asyncio
    async def test_publish_success(self):
        with patch("devsim.services.protocols.mqtt_handler.mqtt.Client") as MockClient:
            instance = MockClient.return_value
            _wire_client(instance)

            result = await MQTTHandler().publish(_mqtt_target(), {"temp": 22.5})

            assert result.success is True
            assert result.message_id == "7"
            topic, payload, qos, retain = instance.publish.call_args.args
            assert topic == "plant/sensors"
            assert json.loads(payload) == {"temp": 22.5}
            assert qos == 1
            instance.connect.assert_called_once_with("broker.local", 1883, 30)
            instance.loop_stop.assert_called_once()
            instance.disconnect.assert_called_once()

    @pytest.mark.asyncio
    async def test_client_ids_are_unique_per_publish(self):
        with patch("devsim.services.protocols.mqtt_handler.mqtt.Client") as MockClient:
            _wire_client(MockClient.return_value)
            handler = MQTTHandler()

            await handler.publish(_mqtt_target(), {})
            await handler.publish(_mqtt_target(), {})

            ids = [call.kwargs["client_id"] for call in MockClient.call_args_list]
            assert len(set(ids)) == 2
            assert all(i.startswith("devsim_test_") for i in ids)

    @pytest.mark.asyncio
    async def test_connection_refused_by_broker(self):
        with patch("devsim.services.protocols.mqtt_handler.mqtt.Client") as MockClient:
            instance = MockClient.return_value
            _wire_client(instance, connect_rc=5)

            result = await MQTTHandler().publish(_mqtt_target(), {})

            assert result.success is False
            instance.publish.assert_not_called()

    @pytest.mark.asyncio
    async def test_socket_error(self):
        with patch("devsim.services.protocols.mqtt_handler.mqtt.Client") as MockClient:
            instance = MockClient.return_value
            instance.connect.side_effect = ConnectionRefusedError("Connection refused")

            result = await MQTTHandler().publish(_mqtt_target(), {})

            assert result.success is False
            assert result.error_code == "CONNECTION_REFUSED"

    @pytest.mark.asyncio
    async def test_credentials_and_tls(self):
        with patch("devsim.services.protocols.mqtt_handler.mqtt.Client") as MockClient:
            instance = MockClient.return_value
            _wire_client(instance)
            target = _mqtt_target("USER_PASS", {"username": "u", "password": "p"}, ssl=True)

            await MQTTHandler().publish(target, {})

            instance.username_pw_set.assert_called_once_with("u", "p")
            instance.tls_set_context.assert_called_once()
            assert instance.connect.call_args.args[1] == 8883


class TestRegistry:

    def test_handlers_by_connection_type(self):
        assert isinstance(protocol_registry.get_handler("MQTT"), MQTTHandler)
        assert isinstance(protocol_registry.get_handler("https"), HTTPHandler)
        assert protocol_registry.get_handler("KAFKA") is None
