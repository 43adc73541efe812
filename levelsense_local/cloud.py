#
# Copyright 2025 The LevelSenseLocal contributors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#

"""LevelSense Cloud API client.

Session Management:
-------------------
- A session key is either configured up front (``sessionKey``) or obtained
  from /v1/login with email and password.
- Strategy: Lazy login - only when an API call needs a key.
- Any failed call clears the key it used, so the next call logs in again.
  This costs a few extra logins but never leaves us stuck on a stale key.
- A failed login puts the client in degraded mode: every call fails fast
  without touching the network until reset_degraded() is called.

Success Signal:
---------------
Every endpoint answers with a ``success`` boolean. ``success: false`` is an
error even on HTTP 200, and is handled exactly like a transport failure.
"""

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

import aiohttp

from .models import Device, DeviceReading

logger = logging.getLogger('levelsense-local')


class LevelSenseError(Exception):
    """Base class for LevelSense API failures."""


class AuthError(LevelSenseError):
    """Login failed (bad credentials or login transport failure)."""


class FetchError(LevelSenseError):
    """A device list or reading call failed; the session key was dropped."""


class ServiceDegraded(LevelSenseError):
    """The client is in degraded mode after a failed login."""


class LevelSenseCloudAPI:
    """
    Client for the LevelSense device-management API.

    Only three endpoints are used:
    - GET /v1/login            -> {success, message, sessionKey}
    - GET /v1/getDeviceList    -> {success, deviceList, errorId, message}
    - GET /v2/getAlarmConfig   -> {success, errorId, message, device}
    """

    API_BASE_URL = "https://dash.level-sense.com/Level-Sense-API/web/api"

    def __init__(
        self,
        email: Optional[str] = None,
        password: Optional[str] = None,
        session_key: Optional[str] = None,
        request_timeout: float = 30.0,
        base_url: Optional[str] = None,
        session: Optional[aiohttp.ClientSession] = None
    ):
        """Initialize LevelSense Cloud API client.

        Args:
            email: Account email (required unless session_key is given)
            password: Account password (required unless session_key is given)
            session_key: Preconfigured session key, bypasses login
            request_timeout: Total timeout in seconds for each HTTP call
            base_url: Override for the API base URL
            session: Shared aiohttp session; a short-lived one is used per call otherwise
        """
        self.email = email
        self.password = password
        self.configured_session_key = session_key
        self.base_url = (base_url or self.API_BASE_URL).rstrip('/')
        self.timeout = aiohttp.ClientTimeout(total=request_timeout)
        self._session = session

        self.session_key: Optional[str] = None
        self.degraded: bool = False
        self.degraded_reason: Optional[str] = None
        self.last_error: Optional[str] = None
        self.last_success_at: Optional[float] = None
        self.login_count: int = 0

        self._auth_lock = asyncio.Lock()

    # ========================================================================
    # Session handling
    # ========================================================================

    async def authenticate(self) -> str:
        """
        Acquire a session key.

        Returns:
            The session key now held by the client

        Raises:
            AuthError: login failed; the client is now degraded
        """
        async with self._auth_lock:
            return await self._login()

    async def _login(self) -> str:
        if self.configured_session_key:
            self.session_key = self.configured_session_key
            logger.info("A sessionKey was found in the config, skipping login attempt.")
            return self.session_key

        logger.info("Attempting to login and acquire sessionKey.")
        try:
            data = await self._request(
                '/v1/login',
                headers={'Content-Type': 'application/json'},
                payload={'email': self.email, 'password': self.password}
            )
        except FetchError as e:
            self._mark_degraded(f"Login request failed: {e}")
            raise AuthError(self.degraded_reason) from e

        session_key = data.get('sessionKey')
        if not data.get('success') or not session_key:
            self._mark_degraded(f"Login rejected: {data.get('message') or 'no sessionKey returned'}")
            raise AuthError(self.degraded_reason)

        self.session_key = session_key
        self.login_count += 1
        logger.info("✓ Logged in to LevelSense API")
        return session_key

    async def _ensure_session(self) -> str:
        """Return the held session key, logging in first if there is none."""
        if self.session_key:
            return self.session_key

        async with self._auth_lock:
            # Another caller may have logged in while we waited
            if self.session_key:
                return self.session_key
            if self.degraded:
                raise ServiceDegraded(self.degraded_reason)
            return await self._login()

    def _invalidate(self, used_key: str):
        """Drop the session key, unless someone already replaced it."""
        if self.session_key == used_key:
            self.session_key = None
            logger.debug("Cleared LevelSense session key, will login again on next call")

    def _mark_degraded(self, reason: str):
        self.degraded = True
        self.degraded_reason = reason
        self.last_error = reason
        self.session_key = None
        logger.error(f"{reason} - LevelSense API calls are disabled until credentials are fixed")

    def reset_degraded(self):
        """Leave degraded mode so the next call attempts a fresh login."""
        if self.degraded:
            logger.info("Clearing degraded mode, next API call will login again")
        self.degraded = False
        self.degraded_reason = None
        self.session_key = None

    def is_authenticated(self) -> bool:
        """Check if a session key is currently held."""
        return self.session_key is not None

    # ========================================================================
    # HTTP plumbing
    # ========================================================================

    async def _request(self, path: str, headers: Dict[str, str],
                       payload: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Perform a GET against the API and return the decoded JSON object.

        The API expects JSON bodies even on GET requests.

        Raises:
            FetchError: on timeout, transport failure, non-2xx status or a non-object body
        """
        url = f"{self.base_url}{path}"
        try:
            if self._session is not None:
                return await self._get_json(self._session, url, headers, payload)
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                return await self._get_json(session, url, headers, payload)
        except asyncio.TimeoutError as e:
            raise FetchError(f"Timed out after {self.timeout.total}s calling {path}") from e
        except aiohttp.ClientError as e:
            raise FetchError(f"Request to {path} failed: {e}") from e

    async def _get_json(self, session, url: str, headers: Dict[str, str],
                        payload: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        logger.debug(f"Fetching {url}")
        async with session.get(url, headers=headers, json=payload, timeout=self.timeout) as resp:
            if resp.status < 200 or resp.status >= 300:
                error_text = await resp.text()
                raise FetchError(f"HTTP {resp.status} - {error_text}")
            try:
                data = await resp.json(content_type=None)
            except ValueError as e:
                raise FetchError(f"Invalid JSON from {url}: {e}") from e

        if not isinstance(data, dict):
            raise FetchError(f"Unexpected response from {url}: {type(data).__name__}")
        return data

    async def _authorized_call(self, path: str, what: str,
                               payload: Optional[Dict[str, Any]] = None,
                               parse=None):
        """
        Call an endpoint that needs the SESSIONKEY header.

        Any failure, including ``success: false`` and a malformed body,
        invalidates the session key that was used.
        """
        if self.degraded:
            logger.error("Something is not working, check your login credentials.")
            raise ServiceDegraded(self.degraded_reason)

        session_key = await self._ensure_session()
        headers = {
            'SESSIONKEY': session_key,
            'Accept': 'application/json',
            'Content-Type': 'application/json'
        }

        try:
            data = await self._request(path, headers=headers, payload=payload)
            if not data.get('success'):
                message = data.get('message') or data.get('errorId') or 'unknown error'
                raise FetchError(f"{what} failed: {message}")
            result = parse(data) if parse else data
        except (FetchError, KeyError, TypeError, ValueError) as e:
            self._invalidate(session_key)
            self.last_error = f"{what}: {e}"
            if isinstance(e, FetchError):
                raise
            raise FetchError(f"{what} returned malformed data: {e}") from e

        self.last_success_at = time.time()
        return result

    # ========================================================================
    # LevelSense API Methods
    # ========================================================================

    async def get_device_list(self) -> List[Device]:
        """
        Get all devices registered to the account.

        Returns:
            List of devices (may be empty)

        Raises:
            ServiceDegraded: client is degraded, no request was made
            AuthError: lazy login failed
            FetchError: the call failed and the session key was dropped
        """
        logger.info("Attempting to get Device List.")
        return await self._authorized_call('/v1/getDeviceList', 'getDeviceList', parse=self._parse_device_list)

    async def get_device_alarm(self, device_id: str) -> DeviceReading:
        """
        Get the alarm configuration, including current sensor values, for one device.

        Raises:
            ServiceDegraded, AuthError, FetchError: as for get_device_list()
        """
        return await self._authorized_call(
            '/v2/getAlarmConfig', f'getAlarmConfig({device_id})',
            payload={'id': device_id},
            parse=lambda data: DeviceReading.from_dict(data['device'])
        )

    @staticmethod
    def _parse_device_list(data: Dict[str, Any]) -> List[Device]:
        entries = data.get('deviceList') or []
        devices = []
        for entry in entries:
            try:
                devices.append(Device.from_dict(entry))
            except (KeyError, TypeError) as e:
                logger.warning(f"Skipping malformed device entry: {e}")
        return devices

    def status(self) -> Dict[str, Any]:
        """Summarize client state for the status endpoint."""
        return {
            'authenticated': self.is_authenticated(),
            'static_session_key': bool(self.configured_session_key),
            'degraded': self.degraded,
            'degraded_reason': self.degraded_reason,
            'last_error': self.last_error,
            'last_success_at': self.last_success_at,
            'login_count': self.login_count,
        }

    async def close(self):
        """Close the shared aiohttp session, if one was handed in."""
        if self._session is not None and not self._session.closed:
            await self._session.close()
