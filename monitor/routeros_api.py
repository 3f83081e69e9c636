"""Native RouterOS API backend.

The API is a stateful TCP protocol (port 8728). Each message is a
*sentence*: a sequence of length-prefixed *words* ended by an empty word.
A session logs in, then issues commands; every command is answered by zero
or more ``!re`` sentences followed by ``!done`` (or ``!trap`` / ``!fatal``
on error).

Interface rates come from ``/interface/monitor-traffic``; comments, the
running flag and MAC addresses need a second ``/interface/print`` call and
are merged in by interface name.

Example:
    >>> backend = NativeApiBackend()
    >>> stats = backend.fetch_interface_stats(device)
"""
import hashlib
import socket
from contextlib import contextmanager
from typing import Dict, Iterator, List, Optional, Tuple

from config import INTERVALS, get_logger
from config.exceptions import AuthenticationFailure, ConnectivityFailure, ProtocolError
from monitor.backend import ProtocolBackend
from monitor.models import ConnectionMethod, Device, InterfaceStats

logger = get_logger(__name__)


# === Word codec ===

def encode_length(length: int) -> bytes:
    """Encode a word length with the API's variable-width prefix."""
    if length < 0:
        raise ValueError(f"negative word length: {length}")
    if length < 0x80:
        return bytes([length])
    if length < 0x4000:
        return (length | 0x8000).to_bytes(2, 'big')
    if length < 0x200000:
        return (length | 0xC00000).to_bytes(3, 'big')
    if length < 0x10000000:
        return (length | 0xE0000000).to_bytes(4, 'big')
    return b'\xf0' + length.to_bytes(4, 'big')


def encode_word(word: str) -> bytes:
    data = word.encode('utf-8')
    return encode_length(len(data)) + data


def encode_sentence(words: List[str]) -> bytes:
    """Encode a full sentence including the terminating empty word."""
    return b''.join(encode_word(w) for w in words) + b'\x00'


def parse_attributes(words: List[str]) -> Dict[str, str]:
    """Turn ``=key=value`` words into a dict, ignoring tags and the reply type."""
    attrs = {}
    for word in words:
        if not word.startswith('='):
            continue
        key, sep, value = word[1:].partition('=')
        if not sep:
            raise ProtocolError(f"malformed attribute word: {word!r}", method="native")
        attrs[key] = value
    return attrs


class ApiSession:
    """One logged-in (or logging-in) API connection.

    Not thread-safe; each poll opens its own session.
    """

    def __init__(self, sock: socket.socket, host: str):
        self._sock = sock
        self._host = host

    # === Transport ===

    def _recv_exact(self, count: int) -> bytes:
        chunks = []
        remaining = count
        while remaining > 0:
            try:
                chunk = self._sock.recv(remaining)
            except socket.timeout as e:
                raise ConnectivityFailure(
                    f"read from {self._host} timed out", method="native"
                ) from e
            except OSError as e:
                raise ConnectivityFailure(
                    f"read from {self._host} failed: {e}", method="native"
                ) from e
            if not chunk:
                raise ConnectivityFailure(
                    f"{self._host} closed the API connection", method="native"
                )
            chunks.append(chunk)
            remaining -= len(chunk)
        return b''.join(chunks)

    def _read_length(self) -> int:
        first = self._recv_exact(1)[0]
        if first & 0x80 == 0x00:
            return first
        if first & 0xC0 == 0x80:
            return ((first & 0x3F) << 8) | self._recv_exact(1)[0]
        if first & 0xE0 == 0xC0:
            return ((first & 0x1F) << 16) | int.from_bytes(self._recv_exact(2), 'big')
        if first & 0xF0 == 0xE0:
            return ((first & 0x0F) << 24) | int.from_bytes(self._recv_exact(3), 'big')
        if first == 0xF0:
            return int.from_bytes(self._recv_exact(4), 'big')
        raise ProtocolError(f"unexpected control byte 0x{first:02x}", method="native")

    def read_sentence(self) -> List[str]:
        words = []
        while True:
            length = self._read_length()
            if length == 0:
                return words
            words.append(self._recv_exact(length).decode('utf-8', errors='replace'))

    def write_sentence(self, words: List[str]) -> None:
        try:
            self._sock.sendall(encode_sentence(words))
        except socket.timeout as e:
            raise ConnectivityFailure(f"write to {self._host} timed out", method="native") from e
        except OSError as e:
            raise ConnectivityFailure(f"write to {self._host} failed: {e}", method="native") from e

    # === Commands ===

    def talk(self, words: List[str]) -> Tuple[List[Dict[str, str]], Dict[str, str]]:
        """Send a command and collect its replies.

        Returns:
            Tuple of (``!re`` attribute dicts, ``!done`` attributes).

        Raises:
            ProtocolError: The device answered ``!trap``.
            ConnectivityFailure: The device answered ``!fatal`` or the socket failed.
        """
        self.write_sentence(words)
        replies = []
        trap: Optional[Dict[str, str]] = None

        while True:
            sentence = self.read_sentence()
            if not sentence:
                continue
            reply_type, attrs = sentence[0], parse_attributes(sentence[1:])

            if reply_type == '!re':
                replies.append(attrs)
            elif reply_type == '!trap':
                trap = attrs
            elif reply_type == '!done':
                if trap is not None:
                    raise ProtocolError(
                        f"{words[0]} failed: {trap.get('message', 'unknown error')}",
                        method="native",
                        details={"command": words[0]},
                    )
                return replies, attrs
            elif reply_type == '!fatal':
                raise ConnectivityFailure(
                    f"{self._host} terminated the session: {' '.join(sentence[1:])}",
                    method="native",
                )
            else:
                raise ProtocolError(f"unknown reply type {reply_type!r}", method="native")

    def login(self, username: str, password: str) -> None:
        """Log in, supporting both plain and legacy challenge-response login.

        Raises:
            AuthenticationFailure: The device rejected the credentials.
        """
        try:
            _, done = self.talk(['/login', f'=name={username}', f'=password={password}'])
            challenge = done.get('ret')
            if challenge:
                # RouterOS before 6.43 answers with an MD5 challenge
                digest = hashlib.md5(
                    b'\x00' + password.encode('utf-8') + bytes.fromhex(challenge)
                ).hexdigest()
                self.talk(['/login', f'=name={username}', f'=response=00{digest}'])
        except ProtocolError as e:
            raise AuthenticationFailure(
                f"login to {self._host} rejected: {e.message}", method="native"
            ) from e
        except ValueError as e:
            raise ProtocolError(f"bad login challenge from {self._host}", method="native") from e

    def close(self) -> None:
        try:
            self._sock.close()
        except OSError:
            pass


class NativeApiBackend(ProtocolBackend):
    """Polls a device through the native RouterOS API."""

    method = ConnectionMethod.NATIVE

    INTERFACE_PROPS = "name,comment,running,mac-address"

    def __init__(self, timeout: float = INTERVALS.NATIVE_TIMEOUT_SECONDS):
        self._timeout = timeout

    @contextmanager
    def _session(self, device: Device) -> Iterator[ApiSession]:
        """Open and log in a session, closing it on exit."""
        try:
            sock = socket.create_connection(
                (device.address, device.native_port), timeout=self._timeout
            )
        except socket.timeout as e:
            raise ConnectivityFailure(
                f"connect to {device.address}:{device.native_port} timed out",
                method="native", details={"timeout": self._timeout},
            ) from e
        except OSError as e:
            raise ConnectivityFailure(
                f"connect to {device.address}:{device.native_port} failed: {e}",
                method="native",
            ) from e

        session = ApiSession(sock, device.address)
        try:
            session.login(device.username, device.secret)
            yield session
        finally:
            session.close()

    def _print_interfaces(self, session: ApiSession) -> List[Dict[str, str]]:
        replies, _ = session.talk(['/interface/print', f'=.proplist={self.INTERFACE_PROPS}'])
        return [r for r in replies if r.get('name')]

    def fetch_interface_names(self, device: Device) -> List[str]:
        with self._session(device) as session:
            return [r['name'] for r in self._print_interfaces(session)]

    def fetch_interface_stats(self, device: Device) -> List[InterfaceStats]:
        with self._session(device) as session:
            interfaces = self._print_interfaces(session)
            if not interfaces:
                return []

            names = ','.join(r['name'] for r in interfaces)
            traffic, _ = session.talk([
                '/interface/monitor-traffic', f'=interface={names}', '=once=',
            ])

        metadata = {r['name']: r for r in interfaces}
        results = []
        for entry in traffic:
            name = entry.get('name') or entry.get('interface')
            if not name:
                continue
            try:
                # monitor-traffic reports bits per second
                rx = int(entry.get('rx-bits-per-second', '0')) / 8
                tx = int(entry.get('tx-bits-per-second', '0')) / 8
            except ValueError as e:
                raise ProtocolError(
                    f"non-numeric traffic counter for {name}", method="native"
                ) from e

            meta = metadata.get(name, {})
            results.append(InterfaceStats(
                name=name,
                rx_bytes_per_second=rx,
                tx_bytes_per_second=tx,
                comment=meta.get('comment') or None,
                running=meta.get('running', 'true') == 'true',
                mac_address=meta.get('mac-address') or None,
            ))

        logger.debug(f"Native API returned {len(results)} interfaces from {device.display_name}")
        return results
