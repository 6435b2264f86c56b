"""
Vehicle Registry Client.

Reads vehicle metadata and fleet counts from the vehicle service.
Vehicle lookups are cached in Redis; every remote call goes through a
circuit breaker so an unhealthy registry fails fast.
"""

import json
import logging
from typing import Any, Dict, Optional

import httpx

from fleet_analytics.app.core.config import settings
from fleet_analytics.app.core.exceptions import CollaboratorUnavailableError
from fleet_analytics.app.core.reliability import CircuitBreaker, CircuitOpenError

logger = logging.getLogger("fleet_analytics.registry")

REGISTRY = "vehicle-registry"


def vehicle_cache_key(vehicle_id: str) -> str:
    return f"vehicle:{vehicle_id}:summary"


class VehicleRegistryClient:

    def __init__(
        self,
        base_url: str = None,
        timeout: float = None,
        redis=None,
        cache_ttl: int = None,
        breaker: CircuitBreaker = None,
        http_client: httpx.AsyncClient = None
    ):
        self.base_url = (base_url or settings.vehicle_service_url).rstrip("/")
        self.redis = redis
        self.cache_ttl = cache_ttl if cache_ttl is not None else settings.vehicle_cache_ttl_seconds
        self.breaker = breaker or CircuitBreaker(
            failure_threshold=settings.registry_failure_threshold,
            reset_timeout=settings.registry_reset_timeout_seconds,
            name=REGISTRY,
        )
        self._client = http_client or httpx.AsyncClient(
            timeout=timeout if timeout is not None else settings.vehicle_service_timeout_seconds
        )

    async def aclose(self):
        await self._client.aclose()

    async def _get(self, path: str) -> httpx.Response:
        response = await self._client.get(f"{self.base_url}{path}")
        if response.status_code >= 500:
            response.raise_for_status()
        return response

    async def _call(self, path: str) -> httpx.Response:
        try:
            return await self.breaker.call(self._get, path)
        except CircuitOpenError as e:
            raise CollaboratorUnavailableError(REGISTRY, str(e))
        except httpx.HTTPError as e:
            logger.warning("Registry call failed", extra={"path": path, "error": str(e)})
            raise CollaboratorUnavailableError(REGISTRY, str(e))

    def _body(self, response: httpx.Response, path: str) -> Dict[str, Any]:
        """Decoded JSON object body. Anything else counts as a failing registry."""
        try:
            body = response.json()
        except ValueError as e:
            logger.warning("Registry returned a non-JSON body", extra={"path": path, "error": str(e)})
            raise CollaboratorUnavailableError(REGISTRY, "invalid response body") from e
        if not isinstance(body, dict):
            logger.warning("Registry returned an unexpected body", extra={"path": path})
            raise CollaboratorUnavailableError(REGISTRY, "invalid response body")
        return body

    async def _cache_get(self, key: str) -> Optional[Dict[str, Any]]:
        if self.redis is None:
            return None
        try:
            cached = await self.redis.get(key)
            return json.loads(cached) if cached else None
        except Exception as e:
            logger.warning("Vehicle cache read failed", extra={"key": key, "error": str(e)})
            return None

    async def _cache_set(self, key: str, value: Dict[str, Any]) -> None:
        if self.redis is None:
            return
        try:
            await self.redis.setex(key, self.cache_ttl, json.dumps(value))
        except Exception as e:
            logger.warning("Vehicle cache write failed", extra={"key": key, "error": str(e)})

    async def get_vehicle(self, vehicle_id: str) -> Optional[Dict[str, Any]]:
        """
        Fetch vehicle metadata.

        Returns:
            The registry's "data" object, or None when the vehicle is unknown

        Raises:
            CollaboratorUnavailableError: Registry unreachable, failing, circuit open or answering garbage
        """
        key = vehicle_cache_key(vehicle_id)
        cached = await self._cache_get(key)
        if cached is not None:
            return cached

        path = f"/vehicles/{vehicle_id}"
        response = await self._call(path)
        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise CollaboratorUnavailableError(REGISTRY, f"HTTP {response.status_code}")

        vehicle = self._body(response, path).get("data")
        if vehicle is None:
            return None
        if not isinstance(vehicle, dict):
            raise CollaboratorUnavailableError(REGISTRY, "invalid vehicle record")

        await self._cache_set(key, vehicle)
        return vehicle

    async def get_fleet_counts(self) -> Dict[str, Dict[str, int]]:
        """Vehicle counts grouped by type and by status."""
        response = await self._call("/vehicles/stats")
        if response.status_code >= 400:
            raise CollaboratorUnavailableError(REGISTRY, f"HTTP {response.status_code}")

        body = self._body(response, "/vehicles/stats")
        data = body.get("data", body)
        if not isinstance(data, dict):
            raise CollaboratorUnavailableError(REGISTRY, "invalid fleet counts")

        counts = {}
        for field in ("countByType", "countByStatus"):
            value = data.get(field) or {}
            if not isinstance(value, dict):
                raise CollaboratorUnavailableError(REGISTRY, f"invalid {field}")
            counts[field] = value
        return counts
