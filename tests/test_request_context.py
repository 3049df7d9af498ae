from utils.request_context import LOOPBACK_IP, client_ip, normalize_email


def test_normalize_email():
    assert normalize_email("  Alice@Example.COM ") == "alice@example.com"
    assert normalize_email(None) == ""


def test_cloudflare_header_wins():
    headers = {
        "CF-Connecting-IP": "198.51.100.4",
        "X-Forwarded-For": "203.0.113.1, 10.0.0.1",
        "X-Real-IP": "10.0.0.2",
    }
    assert client_ip(headers) == "198.51.100.4"


def test_first_forwarded_hop():
    headers = {"X-Forwarded-For": " 203.0.113.1 , 10.0.0.1", "X-Real-IP": "10.0.0.2"}
    assert client_ip(headers) == "203.0.113.1"


def test_real_ip_then_loopback():
    assert client_ip({"X-Real-IP": "10.0.0.2"}) == "10.0.0.2"
    assert client_ip({}) == LOOPBACK_IP
    assert client_ip({"X-Forwarded-For": ""}) == LOOPBACK_IP


def test_outside_request_uses_default():
    assert client_ip() == LOOPBACK_IP


def test_reads_flask_request_headers(app):
    with app.test_request_context("/", headers={"X-Forwarded-For": "203.0.113.9"}):
        assert client_ip() == "203.0.113.9"
