import pytest
from hypothesis import given, strategies as st

from relaybox.utils.database import safe_identifier

valid_identifier = st.from_regex(r"[A-Za-z_][A-Za-z0-9_]*", fullmatch=True)

INJECTION_CHARS = frozenset("'\";-/*\\ ")


@given(name=valid_identifier)
def test_safe_identifier_accepts_valid_identifiers(name: str) -> None:
    assert safe_identifier(name) == f'"{name}"'


@given(
    prefix=st.text(max_size=10),
    injection_char=st.sampled_from(sorted(INJECTION_CHARS)),
    suffix=st.text(max_size=10),
)
def test_safe_identifier_rejects_injection_characters(
    prefix: str, injection_char: str, suffix: str
) -> None:
    with pytest.raises(ValueError, match="Invalid SQL identifier"):
        _ = safe_identifier(prefix + injection_char + suffix)
