"""SNMP backend (UDP, v1/v2c, IF-MIB).

Walks the interface table for names and operational status, then the
64-bit ``ifHC*Octets`` counters. Devices or agents without high-capacity
counters (always the case for SNMPv1) fall back to the 32-bit
``ifInOctets``/``ifOutOctets`` columns. SNMP carries no interface comments.

pysnmp's high-level API is asyncio based; each walk runs its own short
event loop inside the calling worker thread.
"""
import asyncio
from typing import Dict, List, Optional

from pysnmp.hlapi.v3arch.asyncio import (
    CommunityData,
    ContextData,
    ObjectIdentity,
    ObjectType,
    SnmpEngine,
    UdpTransportTarget,
    get_cmd,
    walk_cmd,
)

from config import INTERVALS, NETWORK, get_logger
from config.exceptions import ConnectivityFailure, ProtocolError
from monitor.backend import CounterRateTracker, CounterReading, ProtocolBackend
from monitor.models import ConnectionMethod, Device, InterfaceStats

logger = get_logger(__name__)


# Standard IF-MIB columns
OIDS = {
    "ifDescr": "1.3.6.1.2.1.2.2.1.2",
    "ifOperStatus": "1.3.6.1.2.1.2.2.1.8",
    "ifInOctets": "1.3.6.1.2.1.2.2.1.10",
    "ifOutOctets": "1.3.6.1.2.1.2.2.1.16",
    "ifHCInOctets": "1.3.6.1.2.1.31.1.1.1.6",
    "ifHCOutOctets": "1.3.6.1.2.1.31.1.1.1.10",
}

# SNMPv2-MIB::sysUpTime.0, answered by every agent
SYS_UPTIME_OID = "1.3.6.1.2.1.1.3.0"

# ifOperStatus "up", raw or MIB-resolved
OPER_STATUS_UP = ("1", "up")

TIMEOUT_MARKERS = ("timed out", "timeout", "no snmp response")


class SnmpBackend(ProtocolBackend):
    """Polls a device over SNMP v1/v2c."""

    method = ConnectionMethod.SNMP

    def __init__(self, rate_tracker: Optional[CounterRateTracker] = None,
                 timeout: float = INTERVALS.SNMP_TIMEOUT_SECONDS,
                 retries: int = INTERVALS.SNMP_RETRIES):
        self._rates = rate_tracker or CounterRateTracker()
        self._timeout = timeout
        self._retries = retries

    @staticmethod
    def _mp_model(device: Device) -> int:
        """Message processing model: 0 for SNMPv1, 1 for SNMPv2c."""
        if device.snmp_version == "1":
            return 0
        if device.snmp_version != "2c":
            logger.debug(
                f"SNMP version {device.snmp_version!r} unsupported for "
                f"{device.display_name}, using 2c"
            )
        return 1

    async def _walk_async(self, device: Device, oids: List[str]) -> Dict[str, Dict[str, str]]:
        engine = SnmpEngine()
        try:
            transport = await UdpTransportTarget.create(
                (device.address, device.snmp_port),
                timeout=self._timeout,
                retries=self._retries,
            )
            auth = CommunityData(device.snmp_community, mpModel=self._mp_model(device))
            columns: Dict[str, Dict[str, str]] = {}

            for oid in oids:
                column: Dict[str, str] = {}
                async for error_indication, error_status, error_index, var_binds in walk_cmd(
                    engine, auth, transport, ContextData(),
                    ObjectType(ObjectIdentity(oid)),
                    lexicographicMode=False,
                    lookupMib=False,
                    maxRows=NETWORK.SNMP_MAX_ROWS,
                ):
                    if error_indication:
                        text = str(error_indication)
                        if any(marker in text.lower() for marker in TIMEOUT_MARKERS):
                            raise ConnectivityFailure(
                                f"SNMP request to {device.address} timed out", method="snmp",
                                details={"oid": oid},
                            )
                        raise ProtocolError(f"SNMP walk of {oid} failed: {text}", method="snmp")
                    if error_status:
                        raise ProtocolError(
                            f"SNMP walk of {oid} failed: {error_status.prettyPrint()}",
                            method="snmp", details={"index": int(error_index)},
                        )
                    for name, value in var_binds:
                        index = str(name)[len(oid) + 1:]
                        column[index] = value.prettyPrint()
                columns[oid] = column

            return columns
        finally:
            engine.close_dispatcher()

    def _walk(self, device: Device, oids: List[str]) -> Dict[str, Dict[str, str]]:
        """Walk IF-MIB columns, returning ``{oid: {ifIndex: value}}``.

        Raises:
            ConnectivityFailure: No answer before the timeout.
            ProtocolError: The agent returned an error status.
        """
        # Overall cap: every column may use all retries
        deadline = self._timeout * (self._retries + 1) * (len(oids) + 1)
        try:
            return asyncio.run(asyncio.wait_for(self._walk_async(device, oids), deadline))
        except asyncio.TimeoutError as e:
            raise ConnectivityFailure(
                f"SNMP walk of {device.address} exceeded {deadline:.0f}s", method="snmp"
            ) from e
        except (ConnectivityFailure, ProtocolError):
            raise
        except Exception as e:
            # pysnmp raises PySnmpError for resolution and transport failures
            raise ConnectivityFailure(
                f"SNMP transport to {device.address} failed: {e}", method="snmp"
            ) from e

    def _read_counters(self, device: Device) -> Dict[str, Dict[str, str]]:
        """Read 64-bit counters, falling back to the 32-bit columns."""
        if device.snmp_version != "1":
            try:
                hc = self._walk(device, [OIDS["ifHCInOctets"], OIDS["ifHCOutOctets"]])
                if hc[OIDS["ifHCInOctets"]]:
                    return {
                        "rx": hc[OIDS["ifHCInOctets"]],
                        "tx": hc[OIDS["ifHCOutOctets"]],
                    }
            except ProtocolError as e:
                logger.debug(f"64-bit counters unavailable on {device.display_name}: {e}")

        legacy = self._walk(device, [OIDS["ifInOctets"], OIDS["ifOutOctets"]])
        return {"rx": legacy[OIDS["ifInOctets"]], "tx": legacy[OIDS["ifOutOctets"]]}

    def fetch_interface_names(self, device: Device) -> List[str]:
        names = self._walk(device, [OIDS["ifDescr"]])[OIDS["ifDescr"]]
        return [name for name in names.values() if name]

    def fetch_interface_stats(self, device: Device) -> List[InterfaceStats]:
        table = self._walk(device, [OIDS["ifDescr"], OIDS["ifOperStatus"]])
        names = table[OIDS["ifDescr"]]
        status = table[OIDS["ifOperStatus"]]
        counters = self._read_counters(device)

        readings = []
        for index, name in names.items():
            if not name or index not in counters["rx"] or index not in counters["tx"]:
                continue
            try:
                rx_bytes = int(counters["rx"][index])
                tx_bytes = int(counters["tx"][index])
            except ValueError as e:
                raise ProtocolError(
                    f"non-numeric octet counter for {name}", method="snmp"
                ) from e
            readings.append(CounterReading(
                name=name,
                rx_bytes=rx_bytes,
                tx_bytes=tx_bytes,
                running=status.get(index, "1") in OPER_STATUS_UP,
            ))

        stats = self._rates.rates(device.address, readings)
        logger.debug(f"SNMP returned {len(stats)} interfaces from {device.display_name}")
        return stats

    async def _get_async(self, device: Device, oid: str, timeout: float) -> bool:
        engine = SnmpEngine()
        try:
            transport = await UdpTransportTarget.create(
                (device.address, device.snmp_port), timeout=timeout, retries=0,
            )
            auth = CommunityData(device.snmp_community, mpModel=self._mp_model(device))
            error_indication, error_status, _, _ = await get_cmd(
                engine, auth, transport, ContextData(),
                ObjectType(ObjectIdentity(oid)),
                lookupMib=False,
            )
            return not error_indication and not error_status
        finally:
            engine.close_dispatcher()

    def is_alive(self, device: Device, timeout: float = INTERVALS.PROBE_TIMEOUT_SECONDS) -> bool:
        """Single ``sysUpTime`` GET, used as the reachability probe for UDP-only devices.

        A wrong community gets no answer from most agents, so this also
        fails for a live device with bad SNMP credentials.
        """
        try:
            return asyncio.run(asyncio.wait_for(
                self._get_async(device, SYS_UPTIME_OID, timeout), timeout + 1.0
            ))
        except Exception as e:
            logger.debug(f"SNMP liveness check of {device.display_name} failed: {e}")
            return False
