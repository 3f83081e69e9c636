"""Tests for the native RouterOS API backend."""

import socket
from unittest.mock import patch

import pytest

from config.exceptions import AuthenticationFailure, ConnectivityFailure, ProtocolError
from monitor.routeros_api import (
    ApiSession,
    NativeApiBackend,
    encode_length,
    encode_sentence,
    encode_word,
    parse_attributes,
)


class FakeSocket:
    """Socket double that serves scripted reply sentences."""

    def __init__(self, replies=None):
        self._buffer = b''.join(encode_sentence(s) for s in (replies or []))
        self.sent = []
        self.closed = False

    def queue(self, *sentences):
        self._buffer += b''.join(encode_sentence(s) for s in sentences)

    def recv(self, count):
        chunk, self._buffer = self._buffer[:count], self._buffer[count:]
        return chunk

    def sendall(self, data):
        self.sent.append(data)

    def close(self):
        self.closed = True


class TestWordCodec:
    """Tests for the length-prefixed word encoding."""

    @pytest.mark.parametrize("length,expected", [
        (0, b'\x00'),
        (0x7F, b'\x7f'),
        (0x80, b'\x80\x80'),
        (0x3FFF, b'\xbf\xff'),
        (0x4000, b'\xc0\x40\x00'),
        (0x200000, b'\xe0\x20\x00\x00'),
        (0x10000000, b'\xf0\x10\x00\x00\x00'),
    ])
    def test_length_prefix_widths(self, length, expected):
        assert encode_length(length) == expected

    def test_negative_length_rejected(self):
        with pytest.raises(ValueError):
            encode_length(-1)

    def test_word_uses_utf8_byte_length(self):
        assert encode_word("é") == b'\x02\xc3\xa9'

    def test_sentence_ends_with_empty_word(self):
        assert encode_sentence(['/login']) == b'\x06/login\x00'

    def test_long_word_decodes_back(self):
        word = "=comment=" + "x" * 300
        session = ApiSession(FakeSocket([['!re', word], ['!done']]), "r1")
        replies, _ = session.talk(['/interface/print'])
        assert replies[0]['comment'] == "x" * 300


class TestParseAttributes:
    """Tests for =key=value parsing."""

    def test_parses_and_skips_non_attribute_words(self):
        attrs = parse_attributes(['=name=ether1', '.tag=4', '=comment=a=b'])
        assert attrs == {'name': 'ether1', 'comment': 'a=b'}

    def test_empty_value(self):
        assert parse_attributes(['=comment=']) == {'comment': ''}

    def test_malformed_word_is_protocol_error(self):
        with pytest.raises(ProtocolError):
            parse_attributes(['=novalue'])


class TestApiSession:
    """Tests for command/reply handling."""

    def test_talk_collects_replies_until_done(self):
        sock = FakeSocket([
            ['!re', '=name=ether1'],
            ['!re', '=name=ether2'],
            ['!done', '=ret=ok'],
        ])
        replies, done = ApiSession(sock, "r1").talk(['/interface/print'])

        assert [r['name'] for r in replies] == ['ether1', 'ether2']
        assert done == {'ret': 'ok'}
        assert sock.sent == [encode_sentence(['/interface/print'])]

    def test_trap_raises_after_done(self):
        sock = FakeSocket([['!trap', '=message=no such command'], ['!done']])
        with pytest.raises(ProtocolError, match="no such command"):
            ApiSession(sock, "r1").talk(['/bogus'])

    def test_fatal_is_connectivity_failure(self):
        sock = FakeSocket([['!fatal', 'session terminated']])
        with pytest.raises(ConnectivityFailure):
            ApiSession(sock, "r1").talk(['/interface/print'])

    def test_closed_connection_is_connectivity_failure(self):
        with pytest.raises(ConnectivityFailure):
            ApiSession(FakeSocket(), "r1").talk(['/interface/print'])

    def test_read_timeout_is_connectivity_failure(self):
        sock = FakeSocket()
        with patch.object(sock, 'recv', side_effect=socket.timeout()):
            with pytest.raises(ConnectivityFailure, match="timed out"):
                ApiSession(sock, "r1").read_sentence()

    def test_plain_login(self):
        sock = FakeSocket([['!done']])
        ApiSession(sock, "r1").login("admin", "pw")
        assert len(sock.sent) == 1

    def test_legacy_challenge_login_sends_md5_response(self):
        sock = FakeSocket([['!done', '=ret=00112233445566778899aabbccddeeff'], ['!done']])
        ApiSession(sock, "r1").login("admin", "pw")

        assert len(sock.sent) == 2
        assert b'=response=00' in sock.sent[1]

    def test_rejected_login_is_authentication_failure(self):
        sock = FakeSocket([['!trap', '=message=invalid user name or password'], ['!done']])
        with pytest.raises(AuthenticationFailure):
            ApiSession(sock, "r1").login("admin", "wrong")


class TestNativeApiBackend:
    """Tests for NativeApiBackend against a scripted device."""

    def _device_socket(self):
        return FakeSocket([
            ['!done'],  # login
            ['!re', '=name=ether1', '=comment=WAN', '=running=true', '=mac-address=AA:BB'],
            ['!re', '=name=ether2', '=running=false'],
            ['!done'],
            ['!re', '=name=ether1', '=rx-bits-per-second=8000', '=tx-bits-per-second=16000'],
            ['!re', '=name=ether2', '=rx-bits-per-second=0', '=tx-bits-per-second=0'],
            ['!done'],
        ])

    def test_fetch_interface_stats_merges_metadata(self, sample_device):
        sock = self._device_socket()
        with patch("monitor.routeros_api.socket.create_connection", return_value=sock):
            stats = NativeApiBackend().fetch_interface_stats(sample_device)

        by_name = {s.name: s for s in stats}
        assert by_name['ether1'].rx_bytes_per_second == 1000
        assert by_name['ether1'].tx_bytes_per_second == 2000
        assert by_name['ether1'].comment == "WAN"
        assert by_name['ether1'].mac_address == "AA:BB"
        assert by_name['ether2'].running is False
        assert sock.closed

    def test_fetch_interface_names(self, sample_device):
        sock = FakeSocket([['!done'], ['!re', '=name=ether1'], ['!re', '=name=wlan1'], ['!done']])
        with patch("monitor.routeros_api.socket.create_connection", return_value=sock):
            assert NativeApiBackend().fetch_interface_names(sample_device) == ['ether1', 'wlan1']

    def test_connect_refused_is_connectivity_failure(self, sample_device):
        with patch("monitor.routeros_api.socket.create_connection",
                   side_effect=ConnectionRefusedError()):
            with pytest.raises(ConnectivityFailure):
                NativeApiBackend().fetch_interface_stats(sample_device)

    def test_connect_timeout_is_connectivity_failure(self, sample_device):
        with patch("monitor.routeros_api.socket.create_connection",
                   side_effect=socket.timeout()):
            with pytest.raises(ConnectivityFailure, match="timed out"):
                NativeApiBackend(timeout=0.1).fetch_interface_stats(sample_device)

    def test_non_numeric_rate_is_protocol_error(self, sample_device):
        sock = FakeSocket([
            ['!done'],
            ['!re', '=name=ether1'], ['!done'],
            ['!re', '=name=ether1', '=rx-bits-per-second=lots'], ['!done'],
        ])
        with patch("monitor.routeros_api.socket.create_connection", return_value=sock):
            with pytest.raises(ProtocolError):
                NativeApiBackend().fetch_interface_stats(sample_device)

    def test_test_connection_false_on_failure(self, sample_device):
        with patch("monitor.routeros_api.socket.create_connection", side_effect=OSError("down")):
            assert NativeApiBackend().test_connection(sample_device) is False
