"""URL formatting tests"""

import pytest

from remote_dnssd.utils.url import format_url, server_address


@pytest.mark.parametrize("node, expected", [
    ("192.168.1.10", "tcp://192.168.1.10:5555"),
    ("fe80::10%2", "tcp://[fe80::10%2]:5555"),
    ("2001:db8::1", "tcp://[2001:db8::1]:5555"),
    ("soapy.local", "tcp://soapy.local:5555"),
])
def test_format_url(node, expected):
    assert format_url("tcp", node, "5555") == expected


def test_format_url_int_port():
    assert format_url("tcp", "10.0.0.1", 1234) == "tcp://10.0.0.1:1234"


class TestServerAddress:

    def test_ipv4_untouched(self):
        assert server_address("192.168.1.10", 3, is_ipv6=False) == "192.168.1.10"

    def test_ipv6_gets_scope(self):
        assert server_address("fe80::10", 3, is_ipv6=True) == "fe80::10%3"

    def test_ipv6_unknown_interface(self):
        assert server_address("fe80::10", -1, is_ipv6=True) == "fe80::10"

    def test_existing_scope_kept(self):
        assert server_address("fe80::10%eth0", 3, is_ipv6=True) == "fe80::10%eth0"
