"""RouterOS REST API backend (HTTPS/JSON).

A single ``GET /rest/interface`` returns every interface with its 64-bit
byte counters, comment, running flag and MAC address. Rates are derived
from counter deltas between successive polls.
"""
from typing import List, Optional

import requests
import urllib3

from config import INTERVALS, NETWORK, get_logger
from config.exceptions import AuthenticationFailure, ConnectivityFailure, ProtocolError
from monitor.backend import CounterRateTracker, CounterReading, ProtocolBackend
from monitor.models import ConnectionMethod, Device, InterfaceStats

logger = get_logger(__name__)

if not NETWORK.REST_VERIFY_TLS:
    urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)


class RestApiBackend(ProtocolBackend):
    """Polls a device through the RouterOS REST API."""

    method = ConnectionMethod.REST

    INTERFACE_PATH = "/rest/interface"

    def __init__(self, rate_tracker: Optional[CounterRateTracker] = None,
                 timeout: float = INTERVALS.REST_TIMEOUT_SECONDS,
                 verify_tls: bool = NETWORK.REST_VERIFY_TLS):
        self._rates = rate_tracker or CounterRateTracker()
        self._timeout = timeout
        self._verify = verify_tls

    def _url(self, device: Device) -> str:
        return f"https://{device.address}:{device.rest_port}{self.INTERFACE_PATH}"

    def _get_interfaces(self, device: Device) -> List[dict]:
        """Fetch the raw interface list.

        Raises:
            AuthenticationFailure: HTTP 401/403.
            ConnectivityFailure: Timeout or connection error.
            ProtocolError: Other HTTP errors or a non-JSON / non-list body.
        """
        url = self._url(device)
        try:
            response = requests.get(
                url,
                auth=(device.username, device.secret),
                timeout=self._timeout,
                verify=self._verify,
            )
        except requests.exceptions.Timeout as e:
            raise ConnectivityFailure(
                f"REST request to {url} timed out", method="rest",
                details={"timeout": self._timeout},
            ) from e
        except requests.exceptions.RequestException as e:
            raise ConnectivityFailure(f"REST request to {url} failed: {e}", method="rest") from e

        if response.status_code in (401, 403):
            raise AuthenticationFailure(
                f"REST login to {device.address} rejected", method="rest",
                details={"status": response.status_code},
            )
        if response.status_code >= 400:
            raise ProtocolError(
                f"REST request to {url} returned HTTP {response.status_code}", method="rest",
                details={"status": response.status_code},
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise ProtocolError(f"REST response from {url} is not JSON", method="rest") from e

        if not isinstance(payload, list):
            raise ProtocolError(
                f"REST response from {url} is not an interface list", method="rest"
            )
        return [entry for entry in payload if isinstance(entry, dict) and entry.get('name')]

    def fetch_interface_names(self, device: Device) -> List[str]:
        return [entry['name'] for entry in self._get_interfaces(device)]

    def fetch_interface_stats(self, device: Device) -> List[InterfaceStats]:
        readings = []
        for entry in self._get_interfaces(device):
            try:
                rx_bytes = int(entry.get('rx-byte', 0))
                tx_bytes = int(entry.get('tx-byte', 0))
            except (TypeError, ValueError) as e:
                raise ProtocolError(
                    f"non-numeric byte counter for {entry['name']}", method="rest"
                ) from e

            readings.append(CounterReading(
                name=entry['name'],
                rx_bytes=rx_bytes,
                tx_bytes=tx_bytes,
                comment=entry.get('comment') or None,
                running=str(entry.get('running', 'true')).lower() == 'true',
                mac_address=entry.get('mac-address') or None,
            ))

        stats = self._rates.rates(device.address, readings)
        logger.debug(f"REST API returned {len(stats)} interfaces from {device.display_name}")
        return stats
