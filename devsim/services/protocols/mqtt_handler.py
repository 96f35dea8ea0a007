"""
MQTT Protocol Handler
Publishes device payloads to a broker topic over TCP or TLS
"""

import asyncio
import json
import ssl
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Tuple

import paho.mqtt.client as mqtt

from .base import ProtocolHandler, PublishResult, TransportTarget


class MQTTHandler(ProtocolHandler):
    """Handler for MQTT protocol data transmission"""

    def __init__(self):
        super().__init__("MQTT")

    def _endpoint(self, target: TransportTarget) -> Tuple[str, int, bool]:
        use_tls = bool(target.connection_config.get("ssl", False))
        port = target.port or (8883 if use_tls else 1883)
        return target.host, int(port), use_tls

    def _build_client(self, target: TransportTarget) -> mqtt.Client:
        config = target.connection_config
        # Devices sharing a connection publish concurrently; identical ids would evict each other
        base_id = config.get("client_id") or f"devsim_{int(time.time())}"
        client_id = f"{base_id}_{uuid.uuid4().hex[:8]}"

        client = mqtt.Client(mqtt.CallbackAPIVersion.VERSION2, client_id=client_id, clean_session=True)

        auth = target.auth_config
        if target.auth_type == "USER_PASS":
            client.username_pw_set(auth["username"], auth["password"])
        elif target.auth_type == "TOKEN":
            client.username_pw_set(auth["token"])
        elif target.auth_type == "API_KEY":
            client.username_pw_set(auth.get("parameter_name") or "X-API-Key", auth["key"])

        _, _, use_tls = self._endpoint(target)
        if use_tls:
            client.tls_set_context(ssl.create_default_context())
        return client

    async def _connect(self, client: mqtt.Client, target: TransportTarget, timeout: float):
        host, port, _ = self._endpoint(target)
        keep_alive = int(target.connection_config.get("keep_alive", 60))

        connected = asyncio.Event()
        conn_error: Dict[str, Any] = {"error": None}
        loop = asyncio.get_running_loop()

        def on_connect(_client, _userdata, _flags, reason_code, _properties):
            if reason_code != 0:
                conn_error["error"] = f"Connection failed with code {reason_code}"
            loop.call_soon_threadsafe(connected.set)

        client.on_connect = on_connect

        await loop.run_in_executor(None, client.connect, host, port, keep_alive)
        client.loop_start()

        await asyncio.wait_for(connected.wait(), timeout=timeout)
        if conn_error["error"]:
            raise ConnectionError(conn_error["error"])

    async def publish(
        self,
        target: TransportTarget,
        payload: Dict[str, Any],
        timeout: float = 30
    ) -> PublishResult:
        """Publish message to the connection's topic"""
        start_time = time.perf_counter()
        timestamp = datetime.now(timezone.utc)
        client = None

        try:
            client = self._build_client(target)
            published = asyncio.Event()
            pub_result: Dict[str, Any] = {"mid": None}
            loop = asyncio.get_running_loop()

            def on_publish(_client, _userdata, mid, _reason_code, _properties):
                pub_result["mid"] = mid
                loop.call_soon_threadsafe(published.set)

            client.on_publish = on_publish
            await self._connect(client, target, timeout)

            qos = int(target.connection_config.get("qos", 1))
            topic = target.endpoint
            result = await loop.run_in_executor(
                None,
                lambda: client.publish(topic, json.dumps(payload, default=str), qos, False)
            )
            if result.rc != mqtt.MQTT_ERR_SUCCESS:
                raise ConnectionError(f"Publish failed with code {result.rc}")

            if qos > 0:
                await asyncio.wait_for(published.wait(), timeout=timeout)

            host, port, _ = self._endpoint(target)
            return PublishResult(
                success=True,
                message="Message published successfully",
                latency_ms=(time.perf_counter() - start_time) * 1000,
                timestamp=timestamp,
                message_id=str(pub_result["mid"]) if pub_result["mid"] else None,
                details={"protocol": "mqtt", "host": host, "port": port, "topic": topic, "qos": qos}
            )

        except asyncio.TimeoutError:
            return PublishResult(
                success=False,
                message="Broker did not acknowledge in time",
                latency_ms=(time.perf_counter() - start_time) * 1000,
                timestamp=timestamp,
                error_code="TIMEOUT"
            )
        except Exception as e:
            self.logger.warning("MQTT publish failed", error=str(e))
            return PublishResult(
                success=False,
                message=self._sanitize_error_message(e),
                latency_ms=(time.perf_counter() - start_time) * 1000,
                timestamp=timestamp,
                error_code=self._get_error_code(e),
                details={"exception": str(e)}
            )
        finally:
            if client is not None:
                client.loop_stop()
                client.disconnect()

    async def test_connection(self, target: TransportTarget, timeout: float = 10) -> PublishResult:
        """Connect to the broker and disconnect"""
        start_time = time.perf_counter()
        timestamp = datetime.now(timezone.utc)
        client = None

        try:
            client = self._build_client(target)
            await self._connect(client, target, timeout)
            host, port, _ = self._endpoint(target)
            return PublishResult(
                success=True,
                message=f"Connected to MQTT broker {host}:{port}",
                latency_ms=(time.perf_counter() - start_time) * 1000,
                timestamp=timestamp
            )
        except asyncio.TimeoutError:
            return PublishResult(False, "Broker did not answer in time",
                                 (time.perf_counter() - start_time) * 1000, timestamp, error_code="TIMEOUT")
        except Exception as e:
            self.logger.warning("MQTT connection test failed", error=str(e))
            return PublishResult(
                success=False,
                message=self._sanitize_error_message(e),
                latency_ms=(time.perf_counter() - start_time) * 1000,
                timestamp=timestamp,
                error_code=self._get_error_code(e)
            )
        finally:
            if client is not None:
                client.loop_stop()
                client.disconnect()
