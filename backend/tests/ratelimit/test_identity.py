from coachdesk.ratelimit.identity import client_ip_from_headers


def test_forwarded_for_wins_and_uses_first_hop():
    headers = {"x-forwarded-for": "203.0.113.7, 10.0.0.1", "x-real-ip": "198.51.100.2"}

    assert client_ip_from_headers(headers, "127.0.0.1") == "203.0.113.7"


def test_real_ip_before_cloudflare():
    headers = {"x-real-ip": "198.51.100.2", "cf-connecting-ip": "192.0.2.9"}

    assert client_ip_from_headers(headers) == "198.51.100.2"


def test_cloudflare_header():
    assert client_ip_from_headers({"cf-connecting-ip": "192.0.2.9"}) == "192.0.2.9"


def test_falls_back_to_peer_then_unknown():
    assert client_ip_from_headers({}, "127.0.0.1") == "127.0.0.1"
    assert client_ip_from_headers({"x-forwarded-for": " "}) == "unknown"
