import base64
import json

import pytest

from ucan_inspector import (
    DecodeError,
    DecoderSettings,
    decode_car,
    decode_payload,
    decode_payload_message,
)
from ucan_inspector.decoder.display import EXP_INHERITED
from ucan_inspector.decoder.envelope import is_ucan
from ucan_inspector.decoder.ipld import canonical_cid

from ucan_fixtures import (
    DID_WEB_BYTES,
    ED25519_DID_BYTES,
    EMAIL_UCAN,
    build_car,
    diamond_chain,
    encode_cbor,
    make_block,
    make_cid,
    make_ucan,
)


def _dag_json_bytes(data):
    return {"/": {"bytes": base64.b64encode(data).decode("ascii").rstrip("=")}}


def _proof_chain_archive():
    root_cid, root_data = make_block(make_ucan(att=[{"can": "*", "with": "did:key:root"}]))
    leaf_cid, leaf_data = make_block(make_ucan(prf=[root_cid]))
    return root_cid, build_car([(leaf_cid, leaf_data), (root_cid, root_data)])


def test_car_with_single_ucan(settings):
    archive = build_car([make_block(make_ucan())])

    result = decode_payload(archive, settings=settings)

    assert result.format == "car"
    assert result.total_ucans == 1
    assert is_ucan(result.resolved[0])
    assert result.ucans[0]["iss"] == "did:web:up.storacha.network"
    assert result.ucans[0]["exp"] == EXP_INHERITED


def test_decoding_is_deterministic(settings):
    text = base64.b64encode(build_car([make_block(make_ucan(exp=1700000000))])).decode("ascii")

    first = decode_payload(text, settings=settings).to_dict()
    second = decode_payload(text, settings=settings).to_dict()

    assert first == second


def test_captured_email_delegation(settings):
    result = decode_payload(EMAIL_UCAN, settings=settings)

    assert result.format == "car"
    assert result.total_ucans == 1
    ucan = result.ucans[0]
    assert ucan["iss"] == "did:web:up.storacha.network"
    assert ucan["aud"] == "did:web:up.storacha.network"
    assert ucan["v"] == "0.9.1"
    assert ucan["exp"] == "1768154513 (2026-01-11T18:01:53+00:00)"
    assert ucan["prf"] == []
    capability = ucan["att"][0]
    assert capability["can"] == "access/confirm"
    assert capability["with"] == "did:web:up.storacha.network"
    assert capability["nb"]["iss"] == "did:mailto:gmail.com:antrikshgwal"
    # The cause is not part of the archive and stays a link.
    assert capability["nb"]["cause"].startswith("bafy")
    json.dumps(result.to_dict())


def test_base64_cbor_payload(settings):
    text = base64.b64encode(encode_cbor(make_ucan())).decode("ascii")

    result = decode_payload(text, settings=settings)

    assert result.format == "cbor"
    assert result.total_ucans == 1
    assert not result.has_invocations
    assert "invocations" not in result.to_dict()


def test_hex_cbor_payload(settings):
    text = encode_cbor(make_ucan(exp=1700000000)).hex()

    result = decode_payload(text, settings=settings)

    assert result.format == "cbor"
    assert result.ucans[0]["exp"] == "1700000000 (2023-11-14T22:13:20+00:00)"


def test_separator_prefixed_text(settings):
    text = ":" + base64.urlsafe_b64encode(encode_cbor(make_ucan())).decode("ascii").rstrip("=")

    assert decode_payload(text, settings=settings).total_ucans == 1


def test_invocation_payload_reports_invocations(settings):
    payload = {"invocation": {"run": "store/add"}, "proofs": [make_ucan()]}

    result = decode_payload(encode_cbor(payload), settings=settings)

    assert result.format == "cbor"
    assert result.has_invocations
    body = result.to_dict()
    assert body["hasInvocations"] is True
    assert body["totalUCANs"] == 1
    assert body["invocations"][0]["invocation"] == {"run": "store/add"}


def test_dag_json_document(settings):
    document = {
        "iss": _dag_json_bytes(DID_WEB_BYTES),
        "aud": _dag_json_bytes(ED25519_DID_BYTES),
        "att": [{"can": "store/add", "with": "did:key:example"}],
        "prf": [{"/": make_cid(b"proof").encode("base32")}],
    }

    result = decode_payload(json.dumps(document, indent=2), settings=settings)

    assert result.format == "json"
    assert result.ucans[0]["iss"] == "did:web:up.storacha.network"
    assert result.ucans[0]["prf"] == [make_cid(b"proof").encode("base32")]


def test_multipart_body(settings):
    encoded = base64.b64encode(encode_cbor(make_ucan())).decode("ascii")
    body = (
        "--form-boundary\r\n"
        'Content-Disposition: form-data; name="comment"\r\n'
        "\r\n"
        "just a note\r\n"
        "--form-boundary\r\n"
        'Content-Disposition: form-data; name="ucan"\r\n'
        "\r\n"
        f"{encoded}\r\n"
        "--form-boundary--\r\n"
    )

    text_result = decode_payload(body, settings=settings)
    bytes_result = decode_payload(body.encode("ascii"), settings=settings)

    assert text_result.format == "multipart"
    assert text_result.total_ucans == 1
    assert bytes_result.to_dict() == text_result.to_dict()


def test_proofs_are_resolved_from_the_archive(settings):
    _, archive = _proof_chain_archive()

    result = decode_payload(archive, settings=settings)

    assert result.total_ucans == 2
    assert is_ucan(result.resolved[0]["prf"][0])
    assert result.ucans[0]["prf"][0]["att"] == [{"can": "*", "with": "did:key:root"}]


def test_proof_resolution_can_be_disabled():
    root_cid, archive = _proof_chain_archive()

    result = decode_payload(archive, settings=DecoderSettings(resolve_proofs=False))

    assert result.ucans[0]["prf"] == [canonical_cid(root_cid)]


def test_cyclic_proofs_are_reported(settings):
    first = make_cid(b"a")
    second = make_cid(b"b")
    archive = build_car(
        [
            (first, encode_cbor(make_ucan(prf=[second]))),
            (second, encode_cbor(make_ucan(prf=[first]))),
        ]
    )

    with pytest.raises(DecodeError, match="Cyclic proof graph detected"):
        decode_payload(archive, settings=settings)


def test_unrecognised_payload_lists_supported_formats(settings):
    with pytest.raises(DecodeError) as excinfo:
        decode_payload("not-a-valid-payload", settings=settings)

    message = str(excinfo.value)
    assert message.startswith("Unable to extract UCANs")
    for name in ("CAR", "CBOR", "JSON"):
        assert name in message
    assert [attempt.strategy for attempt in excinfo.value.attempts] == ["json"]


def test_cbor_without_ucans_is_an_error(settings):
    with pytest.raises(DecodeError) as excinfo:
        decode_payload(encode_cbor({"note": "no tokens here"}), settings=settings)

    assert "contains no UCAN" in str(excinfo.value)


@pytest.mark.parametrize("payload", ["", "   \n", b""])
def test_empty_input(payload, settings):
    with pytest.raises(DecodeError, match="Decoder input is empty"):
        decode_payload(payload, settings=settings)


def test_unsupported_payload_type(settings):
    with pytest.raises(TypeError):
        decode_payload(12345, settings=settings)


def test_decode_car_requires_ucans(settings):
    archive = build_car([make_block({"note": "no tokens here"})])

    with pytest.raises(DecodeError, match="No UCANs found in CAR file"):
        decode_car(archive, settings=settings)


def test_decode_car_rejects_invalid_archives(settings):
    with pytest.raises(DecodeError, match="Invalid CAR file"):
        decode_car(b"\x05hello", settings=settings)


def test_decode_car_scans_every_block(settings):
    _, archive = _proof_chain_archive()

    assert decode_car(archive, settings=settings).total_ucans == 2


def test_payload_message_success(settings):
    message = decode_payload_message(build_car([make_block(make_ucan())]), settings=settings)

    assert message["success"] is True
    assert message["format"] == "car"
    assert message["totalUCANs"] == 1
    assert message["hasInvocations"] is False


@pytest.mark.parametrize(
    "payload, fragment",
    [
        ("not-a-valid-payload", "Unable to extract UCANs"),
        (12345, "Unsupported payload type"),
    ],
)
def test_payload_message_failure(payload, fragment, settings):
    message = decode_payload_message(payload, settings=settings)

    assert message["success"] is False
    assert fragment in message["error"]


def test_decode_calls_are_logged(settings, decode_logger, caplog):
    decode_payload(build_car([make_block(make_ucan())]), settings=settings, logger=decode_logger)

    messages = [record.getMessage() for record in caplog.records]
    summaries = [message for message in messages if "Decoded 1 UCAN(s)" in message]
    assert len(summaries) == 1
    assert summaries[0].startswith("[decode ")


def test_deep_diamond_proof_chains_fail_fast(settings):
    _, blocks = diamond_chain(30)
    archive = build_car(blocks)

    with pytest.raises(DecodeError, match="expands to more than 100000 values"):
        decode_payload(archive, settings=settings)
    with pytest.raises(DecodeError, match="Unable to resolve proofs"):
        decode_car(archive, settings=settings)
