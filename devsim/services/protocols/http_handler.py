"""
HTTPS Protocol Handler
Sends device payloads to HTTP APIs with the connection's auth variant applied
"""

import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

import httpx

from .base import ProtocolHandler, PublishResult, TransportTarget


class HTTPHandler(ProtocolHandler):
    """Handler for HTTPS API transmission"""

    def __init__(self, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__("HTTPS")
        self._transport = transport

    def build_url(self, target: TransportTarget) -> str:
        host = target.host.rstrip("/")
        if not host.startswith(("http://", "https://")):
            host = f"https://{host}"
        if target.port:
            host = f"{host}:{target.port}"
        path = target.endpoint.lstrip("/")
        return f"{host}/{path}" if path else host

    def build_auth(
        self,
        target: TransportTarget
    ) -> Tuple[Dict[str, str], Dict[str, str], Optional[Tuple[str, str]]]:
        """Headers, query params and basic auth for the auth variant"""
        headers = {"Content-Type": "application/json"}
        params: Dict[str, str] = {}
        basic = None
        auth = target.auth_config

        if target.auth_type == "USER_PASS":
            basic = (auth["username"], auth["password"])
        elif target.auth_type == "TOKEN":
            headers["Authorization"] = f"{auth.get('token_type', 'Bearer')} {auth['token']}"
        elif target.auth_type == "API_KEY":
            name = auth.get("parameter_name") or "X-API-Key"
            if auth.get("location") == "query":
                params[name] = auth["key"]
            else:
                headers[name] = auth["key"]

        return headers, params, basic

    def _client(self, timeout: float, verify_ssl: bool) -> httpx.AsyncClient:
        kwargs: Dict[str, Any] = {"timeout": httpx.Timeout(timeout), "verify": verify_ssl}
        if self._transport is not None:
            kwargs["transport"] = self._transport
        return httpx.AsyncClient(**kwargs)

    async def publish(
        self,
        target: TransportTarget,
        payload: Dict[str, Any],
        timeout: float = 30
    ) -> PublishResult:
        """Send payload with the configured method (POST by default)"""
        start_time = time.perf_counter()
        timestamp = datetime.now(timezone.utc)
        config = target.connection_config
        method = (config.get("method") or "POST").upper()

        try:
            url = self.build_url(target)
            headers, params, basic = self.build_auth(target)

            async with self._client(timeout, config.get("verify_ssl", True)) as client:
                response = await client.request(
                    method, url, json=payload, headers=headers, params=params or None, auth=basic
                )

            latency_ms = (time.perf_counter() - start_time) * 1000

            if response.status_code < 400:
                return PublishResult(
                    success=True,
                    message=f"HTTP {response.status_code}",
                    latency_ms=latency_ms,
                    timestamp=timestamp,
                    details={
                        "protocol": "https",
                        "url": url,
                        "method": method,
                        "status_code": response.status_code,
                    }
                )
            return PublishResult(
                success=False,
                message=f"HTTP error {response.status_code}",
                latency_ms=latency_ms,
                timestamp=timestamp,
                error_code=f"HTTP_{response.status_code}",
                details={
                    "url": url,
                    "status_code": response.status_code,
                    "response": response.text[:500],
                }
            )

        except httpx.TimeoutException as e:
            return PublishResult(
                success=False,
                message="Request timed out",
                latency_ms=(time.perf_counter() - start_time) * 1000,
                timestamp=timestamp,
                error_code="TIMEOUT",
                details={"exception": str(e)}
            )
        except Exception as e:
            self.logger.warning("HTTPS publish failed", error=str(e))
            return PublishResult(
                success=False,
                message=self._sanitize_error_message(e),
                latency_ms=(time.perf_counter() - start_time) * 1000,
                timestamp=timestamp,
                error_code=self._get_error_code(e),
                details={"exception": str(e)}
            )

    async def test_connection(self, target: TransportTarget, timeout: float = 10) -> PublishResult:
        """GET the endpoint; anything but an auth or server error counts as reachable"""
        start_time = time.perf_counter()
        timestamp = datetime.now(timezone.utc)

        try:
            url = self.build_url(target)
            headers, params, basic = self.build_auth(target)
            verify_ssl = target.connection_config.get("verify_ssl", True)

            async with self._client(timeout, verify_ssl) as client:
                response = await client.get(url, headers=headers, params=params or None, auth=basic)

            latency_ms = (time.perf_counter() - start_time) * 1000
            code = response.status_code
            if code in (401, 403):
                return PublishResult(False, f"Authentication failed (HTTP {code})", latency_ms, timestamp,
                                     error_code="AUTHENTICATION_FAILED")
            if code >= 500:
                return PublishResult(False, f"Server error (HTTP {code})", latency_ms, timestamp,
                                     error_code=f"HTTP_{code}")
            return PublishResult(True, f"HTTPS endpoint reachable (HTTP {code})", latency_ms, timestamp,
                                 details={"url": url, "status_code": code})

        except Exception as e:
            self.logger.warning("HTTPS connection test failed", error=str(e))
            return PublishResult(
                success=False,
                message=self._sanitize_error_message(e),
                latency_ms=(time.perf_counter() - start_time) * 1000,
                timestamp=timestamp,
                error_code=self._get_error_code(e)
            )
