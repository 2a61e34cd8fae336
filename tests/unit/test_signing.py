"""Unit tests for canonical query construction and signing helpers."""

import base64
import hashlib
import hmac
import re

from cloudfusion.utils.signing import (
    authorization_header_v3,
    canonical_query,
    encode_signature2,
    flatten_params,
    format_iso8601,
    format_rfc2616,
    generate_nonce,
    hex_to_base64,
    hmac_sha256,
    is_base64,
    sign,
    sort_params,
    split_domain,
    string_to_sign_v2,
    to_query_string,
)

SECRET = "wJalrXUtnFEMI/K7MDENG+bPxRfiCYEXAMPLEKEY"


class TestCanonicalQuery:
    """Test ordering and escaping of the signable string."""

    def test_uppercase_sorts_before_lowercase(self):
        """Byte-wise ordering puts B before a."""
        assert canonical_query({"B": "2", "a": "1"}) == "B=2&a=1"

    def test_sort_is_bytewise_not_case_insensitive(self):
        pairs = sort_params({"b": "1", "Action": "x", "AWSAccessKeyId": "k", "Z": "z"})
        assert [k for k, _ in pairs] == ["AWSAccessKeyId", "Action", "Z", "b"]

    def test_rfc3986_escaping(self):
        assert encode_signature2("a b") == "a%20b"
        assert encode_signature2("~tilde") == "~tilde"
        assert encode_signature2("a/b+c=d&e") == "a%2Fb%2Bc%3Dd%26e"
        assert encode_signature2("2011-03-13T07:06:40Z") == "2011-03-13T07%3A06%3A40Z"

    def test_unicode_values_are_utf8_escaped(self):
        assert encode_signature2("é") == "%C3%A9"

    def test_booleans_and_numbers_are_stringified(self):
        assert canonical_query({"Flag": True, "Off": False, "Count": 3}) == (
            "Count=3&Flag=true&Off=false"
        )

    def test_nested_parameters_are_flattened(self):
        flat = flatten_params(
            {"Filter": [{"Name": "tag", "Value": ["a", "b"]}], "MaxResults": 5}
        )
        assert flat == {
            "Filter.1.Name": "tag",
            "Filter.1.Value.1": "a",
            "Filter.1.Value.2": "b",
            "MaxResults": "5",
        }

    def test_query_string_keeps_given_order(self):
        assert to_query_string([("b", "2"), ("a", "x y")]) == "b=2&a=x%20y"


class TestSignature:
    """Test HMAC computation and encoding."""

    def test_signature_is_deterministic(self):
        message = string_to_sign_v2("sdb.amazonaws.com", "/", "Action=ListDomains")
        assert sign(SECRET, message) == sign(SECRET, message)

    def test_signature_matches_hmac_sha256(self):
        message = "POST\nsdb.amazonaws.com\n/\nAction=ListDomains"
        expected = base64.b64encode(
            hmac.new(SECRET.encode(), message.encode(), hashlib.sha256).digest()
        ).decode()
        assert sign(SECRET, message) == expected

    def test_base64_signature_decodes_to_raw_digest(self):
        message = "Sun, 13 Mar 2011 07:06:40 GMTnonce"
        encoded = sign(SECRET, message)
        assert is_base64(encoded)
        assert base64.b64decode(encoded) == hmac_sha256(SECRET, message)

    def test_different_secrets_give_different_signatures(self):
        assert sign(SECRET, "payload") != sign(SECRET + "x", "payload")

    def test_hex_to_base64(self):
        digest = hashlib.md5(b"Action=ListDomains").hexdigest()
        assert hex_to_base64(digest) == base64.b64encode(
            hashlib.md5(b"Action=ListDomains").digest()
        ).decode()

    def test_is_base64_rejects_other_characters(self):
        assert not is_base64("not base64!")

    def test_authorization_header_v3(self):
        assert authorization_header_v3("AKID", "c2ln") == (
            "AWS3-HTTPS AWSAccessKeyId=AKID,Algorithm=HmacSHA256,Signature=c2ln"
        )


class TestRequestParts:
    """Test host, date and nonce helpers."""

    def test_split_domain_strips_scheme_and_lowercases(self):
        assert split_domain("https://SDB.AmazonAWS.com") == ("sdb.amazonaws.com", "/")

    def test_split_domain_keeps_nonstandard_port_and_path(self):
        assert split_domain("localhost:8080/api") == ("localhost:8080", "/api")

    def test_split_domain_drops_standard_ports(self):
        assert split_domain("example.com:443") == ("example.com", "/")
        assert split_domain("example.com:80") == ("example.com", "/")

    def test_date_formats(self):
        assert format_iso8601(1300000000) == "2011-03-13T07:06:40Z"
        assert format_rfc2616(1300000000) == "Sun, 13 Mar 2011 07:06:40 GMT"

    def test_nonce_shape(self):
        nonce = generate_nonce()
        assert re.match(
            r"^[0-9A-F]{8}-[0-9A-F]{4}-4[0-9A-F]{3}-[89AB][0-9A-F]{3}-[0-9A-F]{12}$",
            nonce,
        )
        assert generate_nonce() != nonce
