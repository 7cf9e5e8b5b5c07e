import pytest

from lib.signature import (
    compute_signature,
    constant_time_equal,
    parse_signature_header,
    validate_signature,
)

SECRET = 'whsec_abc'
BODY = b'{"event":"message.received"}'
NOW = 1_700_000_000

def header_for(body=BODY, secret=SECRET, timestamp=NOW):
    return f"t={timestamp},v1={compute_signature(body, str(timestamp), secret)}"

def test_valid_signature():
    assert validate_signature(BODY, header_for(), SECRET, now=NOW)

def test_any_matching_v1_is_accepted():
    good = compute_signature(BODY, str(NOW), SECRET)
    header = f"t={NOW},v1=deadbeef,v1={good}"
    assert validate_signature(BODY, header, SECRET, now=NOW)

def test_uppercase_hex_is_accepted():
    good = compute_signature(BODY, str(NOW), SECRET).upper()
    assert validate_signature(BODY, f"t={NOW},v1={good}", SECRET, now=NOW)

def test_tampered_body_is_rejected():
    assert not validate_signature(BODY + b' ', header_for(), SECRET, now=NOW)

def test_wrong_secret_is_rejected():
    assert not validate_signature(BODY, header_for(secret='other'), SECRET, now=NOW)

@pytest.mark.parametrize("offset, expected", [
    (0, True),
    (900, True),
    (-900, True),
    (901, False),
    (-901, False),
])
def test_replay_window(offset, expected):
    header = header_for(timestamp=NOW + offset)
    assert validate_signature(BODY, header, SECRET, now=NOW) is expected

def test_custom_tolerance():
    header = header_for(timestamp=NOW - 120)
    assert not validate_signature(BODY, header, SECRET, tolerance=60, now=NOW)

@pytest.mark.parametrize("header", [
    None,
    '',
    'garbage',
    f"v1={compute_signature(BODY, str(NOW), SECRET)}",
    f"t={NOW}",
    f"t=yesterday,v1={compute_signature(BODY, 'yesterday', SECRET)}",
])
def test_malformed_headers_fail_closed(header):
    assert not validate_signature(BODY, header, SECRET, now=NOW)

def test_missing_secret_fails_closed():
    assert not validate_signature(BODY, header_for(secret=''), '', now=NOW)
    assert not validate_signature(BODY, header_for(), None, now=NOW)

def test_parse_signature_header():
    timestamp, hashes = parse_signature_header('t=123, v1=aa ,v1=bb,v0=cc')
    assert timestamp == '123'
    assert hashes == ['aa', 'bb']

def test_constant_time_equal():
    assert constant_time_equal(b'abc', b'abc')
    assert not constant_time_equal(b'abc', b'abd')
    assert not constant_time_equal(b'abc', b'abcd')
    assert constant_time_equal(b'', b'')
