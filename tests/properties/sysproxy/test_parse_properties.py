from hypothesis import given, strategies as st

from relaybox.sysproxy import parse_bypass, parse_server

hosts = st.from_regex(r"[a-z0-9][a-z0-9.\-]{0,30}", fullmatch=True)
ports = st.integers(min_value=1, max_value=65535)
patterns = st.from_regex(r"[a-z0-9.*<>\-]{1,20}", fullmatch=True)


@given(host=hosts, port=ports)
def test_server_round_trips(host: str, port: int) -> None:
    assert parse_server(f"{host}:{port}") == (host, port)


@given(value=st.text())
def test_server_always_yields_valid_port(value: str) -> None:
    _host, port = parse_server(value)

    assert 0 < port < 65536


@given(items=st.lists(patterns, min_size=1))
def test_bypass_round_trips(items: list[str]) -> None:
    assert parse_bypass(";".join(items)) == tuple(items)
