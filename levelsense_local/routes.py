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

"""FastAPI route handlers for LevelSense Local."""

import logging
import os
import time
from typing import Optional

from fastapi import FastAPI, HTTPException, Depends, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from .__version__ import __version__
from .homekit_uuids import enhance_accessory_data

logger = logging.getLogger(__name__)

# Security
security = HTTPBearer(auto_error=False)

# API key configuration (from environment variable)
# Multiple keys can be specified, space-separated
API_KEYS_RAW = os.environ.get('LEVELSENSE_API_KEYS', '').strip()
API_KEYS = set(key.strip() for key in API_KEYS_RAW.split() if key.strip()) if API_KEYS_RAW else set()

STARTED_AT = time.time()


def get_api_key(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> Optional[str]:
    """
    Validate API key from Authorization header.

    If API keys are configured (LEVELSENSE_API_KEYS environment variable), checks Bearer token.
    If no API keys are configured, authentication is disabled.

    Raises:
        HTTPException 401 if authentication fails
    """
    if not API_KEYS:
        return None

    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if credentials.credentials not in API_KEYS:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return credentials.credentials


def create_app():
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="LevelSense Local",
        description="Local REST API exposing LevelSense sensors as HomeKit-style accessories",
        version=__version__
    )

    if API_KEYS:
        logger.info(f"API authentication enabled ({len(API_KEYS)} key(s) configured)")
    else:
        logger.info("API authentication disabled (no LEVELSENSE_API_KEYS configured)")

    return app


def register_routes(app: FastAPI, get_platform):
    """Register all API routes.

    Args:
        app: FastAPI application instance
        get_platform: Callable that returns the current LevelSensePlatform instance
    """

    def require_platform():
        platform = get_platform()
        if platform is None:
            raise HTTPException(status_code=503, detail="Platform not started")
        return platform

    @app.get("/", include_in_schema=False)
    async def root():
        return {
            "service": "LevelSense Local",
            "version": __version__,
            "documentation": "/docs",
            "api_info": "/api",
        }

    @app.get("/api", tags=["Info"])
    async def api_info(api_key: Optional[str] = Depends(get_api_key)):
        """List the available endpoints."""
        return {
            "service": "LevelSense Local",
            "version": __version__,
            "endpoints": {
                "GET /status": "Reconciliation and LevelSense API status",
                "GET /accessories": "All registered accessories",
                "GET /accessories/{serial_number}": "One accessory by device serial number",
                "POST /refresh": "Run a poll pass now",
                "POST /refresh/login": "Clear degraded mode after fixing credentials",
            },
        }

    @app.get("/status", tags=["Status"])
    async def get_status(api_key: Optional[str] = Depends(get_api_key)):
        """Get overall system status."""
        platform = require_platform()
        return {
            "status": "degraded" if platform.cloud_api.degraded else "ok",
            "version": __version__,
            "uptime": time.time() - STARTED_AT,
            "platform": platform.status(),
            "cloud_api": platform.cloud_api.status(),
        }

    @app.get("/accessories", tags=["Accessories"])
    async def get_accessories(enhanced: bool = True, api_key: Optional[str] = Depends(get_api_key)):
        """
        Get all tracked accessories and their characteristics.

        Args:
            enhanced: If True, include human-readable names for UUIDs (default: True)
        """
        platform = require_platform()
        accessories = [acc.handle.to_dict() for acc in platform.current_accessories.values()]

        if enhanced:
            return {
                "accessories": enhance_accessory_data(accessories),
                "enhanced": True,
            }
        return {
            "accessories": accessories,
            "enhanced": False
        }

    @app.get("/accessories/{serial_number}", tags=["Accessories"])
    async def get_accessory(serial_number: str, enhanced: bool = True, api_key: Optional[str] = Depends(get_api_key)):
        """Get a specific accessory by device serial number."""
        platform = require_platform()
        accessory = platform.current_accessories.get(serial_number)
        if accessory is None:
            raise HTTPException(status_code=404, detail=f"Accessory {serial_number} not found")

        data = accessory.handle.to_dict()
        data["online"] = accessory.device.online
        data["reading"] = accessory.reading.to_dict() if accessory.reading else None
        if enhanced:
            data = enhance_accessory_data([data])[0]
        return data

    @app.post("/refresh", tags=["Admin"])
    async def refresh_data(api_key: Optional[str] = Depends(get_api_key)):
        """Run a poll pass now instead of waiting for the next tick."""
        platform = require_platform()
        if platform.pass_running:
            raise HTTPException(status_code=409, detail="A reconciliation pass is already running")

        result = await platform.poll_for_new_data()
        if result is None:
            raise HTTPException(status_code=409, detail="A reconciliation pass is already running")
        return result

    @app.post("/refresh/login", tags=["Admin"])
    async def reset_login(api_key: Optional[str] = Depends(get_api_key)):
        """Leave degraded mode; the next API call will login again."""
        platform = require_platform()
        was_degraded = platform.cloud_api.degraded
        platform.cloud_api.reset_degraded()
        return {
            "was_degraded": was_degraded,
            "cloud_api": platform.cloud_api.status(),
        }

    return app
