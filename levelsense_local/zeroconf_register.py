"""mDNS advertisement of the REST API via AsyncZeroconf.

Best effort: a failure is logged and reported back, the server keeps
running without advertisement.
"""
import logging
import socket
from typing import Dict, Optional, Tuple

from zeroconf import ServiceInfo
from zeroconf.asyncio import AsyncZeroconf

logger = logging.getLogger(__name__)

SERVICE_TYPE = '_levelsense-local._tcp.local.'

# module-level registration handle: (async_zc, info)
_reg: Optional[Tuple[AsyncZeroconf, ServiceInfo]] = None


def _props_to_txt(props: Dict[str, str]) -> Dict[str, bytes]:
    return {k: (v.encode('utf-8') if isinstance(v, str) else v) for k, v in props.items()}


def get_primary_ipv4() -> Optional[str]:
    """Return the address of the interface carrying the default route, or None.

    Connecting a UDP socket sends no packets but makes the kernel pick the
    outbound address.
    """
    try:
        s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        try:
            s.connect(("8.8.8.8", 80))
            return s.getsockname()[0]
        finally:
            s.close()
    except OSError:
        try:
            return socket.gethostbyname(socket.gethostname())
        except OSError:
            return None


def build_service_info(name: str, port: int, props: Optional[Dict[str, str]] = None,
                       advertise_addr: Optional[str] = None) -> ServiceInfo:
    addresses = None
    addr = advertise_addr or get_primary_ipv4()
    if addr:
        try:
            addresses = [socket.inet_pton(socket.AF_INET, addr)]
        except OSError:
            logger.warning(f"Cannot advertise invalid IPv4 address {addr}")

    return ServiceInfo(
        SERVICE_TYPE,
        f"{name}.{SERVICE_TYPE}",
        addresses=addresses,
        port=port,
        properties=_props_to_txt(props or {}),
    )


async def register_service_async(name: str = 'levelsense-local', port: int = 4408,
                                 props: Optional[Dict[str, str]] = None,
                                 advertise_addr: Optional[str] = None) -> Tuple[bool, Optional[str]]:
    """Advertise the REST API.

    Returns (ok, message).
    """
    global _reg
    if _reg is not None:
        return True, "already registered"

    info = build_service_info(name, port, props, advertise_addr)
    async_zc = AsyncZeroconf()
    try:
        # Let zeroconf rename us ("levelsense-local (2)") on a name conflict
        await async_zc.async_register_service(info, allow_name_change=True)
    except Exception as e:
        logger.exception("AsyncZeroconf registration failed for %s", name)
        await async_zc.async_close()
        return False, str(e)

    _reg = (async_zc, info)
    logger.info("Advertised %s as %s on port %s", name, info.name, port)
    return True, None


async def unregister_service_async():
    """Withdraw the advertisement, if any."""
    global _reg
    if _reg is None:
        return
    async_zc, info = _reg
    _reg = None
    try:
        await async_zc.async_unregister_service(info)
    except Exception as e:
        logger.warning(f"Failed to unregister mDNS service: {e}")
    finally:
        await async_zc.async_close()
