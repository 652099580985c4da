import pytest
from pydantic import ValidationError

from lanrelay.core import proto


def test_build_frame_has_fields():
    f = proto.build_frame("DEVICES", "lanrelay", "*", {"devices": []})
    assert set(f.keys()) == {"type", "from", "to", "ts", "payload"}
    assert isinstance(f["ts"], int)


def test_envelope_round_trips_from_alias():
    env = proto.Envelope.model_validate_json('{"type":"REGISTER","from":"c","to":"lanrelay","ts":1,"payload":{}}')
    assert env.from_ == "c"
    with pytest.raises(ValidationError):
        proto.Envelope.model_validate_json('{"type":"REGISTER","from":"c","to":"x","ts":-1,"payload":{}}')
    with pytest.raises(ValidationError):
        proto.Envelope.model_validate_json("not json")


def test_register_payload_degrades_gracefully():
    req = proto.RegisterPayload.model_validate({"clientId": "  ", "name": {"nested": 1}})
    assert req.client_id is None
    assert req.name is None

    req = proto.RegisterPayload.model_validate({"clientId": 42, "name": " Bob "})
    assert req.client_id == "42"
    assert req.name == "Bob"


def test_submit_payload_defaults():
    req = proto.SubmitPayload.model_validate(
        {"files": [{"name": "a.bin", "data": "AAE="}], "toClientId": "", "fromName": "Alice"}
    )
    assert req.to_client_id is None
    assert req.files[0].mime_type == "application/octet-stream"
    assert req.from_name == "Alice"

    with pytest.raises(ValidationError):
        proto.SubmitPayload.model_validate({"files": [{"name": "", "data": ""}]})


def test_normalize_name():
    assert proto.normalize_name(None) == "Unknown"
    assert proto.normalize_name("   ") == "Unknown"
    assert proto.normalize_name("  Bob ") == "Bob"
    assert len(proto.normalize_name("y" * 100)) == 40


def test_b64decode_is_strict():
    assert proto.b64decode(proto.b64encode(b"\x00\xff")) == b"\x00\xff"
    with pytest.raises(ValueError):
        proto.b64decode("not base64!")
