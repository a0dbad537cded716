"""Connection URL formatting."""


def format_url(scheme: str, node: str, service) -> str:
    """'tcp', '192.168.1.2', 5555 -> 'tcp://192.168.1.2:5555'

    IPv6 ホスト（':' を含む）は角括弧で囲む。
    """
    host = f"[{node}]" if ":" in node else node
    return f"{scheme}://{host}:{service}"


def server_address(address: str, interface: int, is_ipv6: bool) -> str:
    """Annotate a v6 address with its interface scope (link-local needs it)."""
    if is_ipv6 and interface >= 0 and "%" not in address:
        return f"{address}%{interface}"
    return address
