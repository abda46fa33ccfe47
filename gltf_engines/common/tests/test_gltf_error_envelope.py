import pytest
from fastapi import HTTPException

from gltf_engines.common.error_envelope import (
    build_error_envelope,
    error_response,
    import_error_response,
    status_for_import_error,
)
from gltf_engines.common.errors import (
    FormatError,
    GltfImportError,
    ImportCancelled,
    PartialDataWarning,
    ResolutionError,
)


def test_build_error_envelope_mirrors_status():
    envelope = build_error_envelope(code="gltf.format.magic", message="bad", status_code=422)
    assert envelope.error.http_status == 422
    assert envelope.error.details == {}


def test_error_response_raises_http_exception():
    with pytest.raises(HTTPException) as exc:
        error_response(code="gltf.request.empty_body", message="empty", status_code=400, resource_kind="gltf_asset")
    assert exc.value.status_code == 400
    assert exc.value.detail["error"]["code"] == "gltf.request.empty_body"


@pytest.mark.parametrize(
    "error,status",
    [
        (FormatError("magic", "bad magic"), 422),
        (ResolutionError("fetch_failed", "gone"), 424),
        (ImportCancelled("textures"), 409),
        (GltfImportError("other", "?"), 500),
    ],
)
def test_status_for_import_error(error, status):
    assert status_for_import_error(error) == status


def test_import_error_response_carries_code_and_details():
    error = ResolutionError("buffer_length", "short", {"declared": 8, "actual": 4})
    with pytest.raises(HTTPException) as exc:
        import_error_response(error)
    body = exc.value.detail["error"]
    assert body["code"] == "gltf.resolution.buffer_length"
    assert body["details"] == {"declared": 8, "actual": 4}
    assert body["resource_kind"] == "gltf_asset"


def test_error_codes_and_warning_text():
    assert str(FormatError("version", "nope")) == "[gltf.format.version] nope"
    assert ImportCancelled("scenes").code == "gltf.import.cancelled"
    assert str(PartialDataWarning("draw_mode", "points")) == "draw_mode: points"
