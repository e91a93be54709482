import base64
from io import BytesIO

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from product_studio.errors import MissingCredential, NoImageReturned
from product_studio.server import create_app
from product_studio.studio import Studio

from conftest import InlineExecutor, data_url, image_bytes


@pytest.fixture
def app(config, fake_client):
    studio = Studio(config, fake_client, executor=InlineExecutor())
    return create_app(config, client=fake_client, studio=studio)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


def _decode_uri(uri: str) -> Image.Image:
    header, _, payload = uri.partition(",")
    assert header.endswith(";base64")
    return Image.open(BytesIO(base64.b64decode(payload)))


def _upload_and_save(client):
    png = image_bytes((800, 600), fmt="PNG")
    resp = client.post("/api/product", json={"image": data_url(png, "image/png")})
    assert resp.status_code == 200
    resp = client.post("/api/crop/save")
    assert resp.status_code == 200
    return resp.json()


def test_health(client):
    assert client.get("/health").json()["ok"] is True


def test_options_lists_enums_and_limits(client):
    body = client.get("/api/options").json()

    assert [a["value"] for a in body["aspect_ratios"]] == ["1:1", "3:4", "16:9"]
    assert body["aspect_ratios"][2]["ratio"] == pytest.approx(1.778, abs=1e-3)
    assert len(body["lighting_styles"]) == 6
    assert len(body["camera_perspectives"]) == 6
    assert body["upload"] == {"mime_types": ["image/jpeg", "image/png", "image/webp"], "max_bytes": 10 * 1024 * 1024}


def test_startup_synthesizes_prompt(client, fake_client):
    state = client.get("/api/studio").json()

    assert state["prompt"] == "prompt 1: Studio Lighting"
    assert state["is_generating_prompt"] is False


def test_settings_update_resynthesizes(client, fake_client):
    resp = client.put(
        "/api/settings",
        json={"aspect_ratio": "16:9", "lighting_style": "Soft Glow", "camera_perspective": "Close-up"},
    )

    assert resp.status_code == 200
    assert resp.json()["prompt"] == "prompt 2: Soft Glow"
    assert len(fake_client.prompt_calls) == 2


def test_settings_rejects_unknown_values(client):
    resp = client.put("/api/settings", json={"aspect_ratio": "4:3"})
    assert resp.status_code == 422


def test_crop_flow(client):
    jpeg = image_bytes((1000, 1000), fmt="JPEG")
    raw = base64.b64encode(jpeg).decode()
    client.put("/api/settings", json={"aspect_ratio": "16:9"})

    crop = client.post("/api/product", json={"image": raw, "mime_type": "image/jpeg"}).json()
    assert crop["state"] == "initialized"
    assert crop["natural_width"] == 1000

    crop = client.put("/api/crop/display", json={"width": 500, "height": 500}).json()
    assert crop["displayed_width"] == 500

    crop = client.put("/api/crop/zoom", json={"scale": 2}).json()
    assert crop["displayed_width"] == 1000
    assert crop["zoom"] == 2

    crop = client.put("/api/crop/region", json={"x": 0, "y": 219, "width": 1000, "height": 562.5}).json()
    assert crop["region"] == {"x": 0, "y": pytest.approx(21.9), "width": 100, "height": 56.25, "unit": "%"}

    saved = client.post("/api/crop/save").json()
    assert saved["mime_type"] == "image/jpeg"
    assert _decode_uri(saved["product_image"]).size == (1000, 562)
    assert client.get("/api/crop").json() is None


def test_zoom_out_of_range_is_rejected(client):
    client.post("/api/product", json={"image": data_url(image_bytes(), "image/png")})
    assert client.put("/api/crop/zoom", json={"scale": 5}).status_code == 422


def test_region_outside_image_is_rejected(client):
    client.post("/api/product", json={"image": data_url(image_bytes((1000, 1000), fmt="PNG"), "image/png")})
    client.put("/api/crop/display", json={"width": 500, "height": 500})
    before = client.get("/api/crop").json()["region"]

    resp = client.put("/api/crop/region", json={"x": 400, "y": 400, "width": 400, "height": 100})

    assert resp.status_code == 422
    assert resp.json()["kind"] == "InvalidCropRegion"
    assert "aspect ratio" in client.get("/api/studio").json()["error"]
    assert client.get("/api/crop").json()["region"] == before

    saved = client.post("/api/crop/save").json()
    assert _decode_uri(saved["product_image"]).size == (900, 900)


def test_unsupported_upload_sets_banner(client):
    gif = image_bytes(fmt="GIF")
    resp = client.post("/api/product", json={"image": data_url(gif, "image/gif")})

    assert resp.status_code == 415
    assert resp.json()["kind"] == "UnsupportedFormat"
    assert "JPEG, PNG, or WEBP" in client.get("/api/studio").json()["error"]

    client.delete("/api/error")
    assert client.get("/api/studio").json()["error"] is None


def test_oversized_upload_is_rejected(client):
    big = base64.b64encode(b"\0" * (15 * 1024 * 1024)).decode()
    resp = client.post("/api/product", json={"image": big, "mime_type": "image/jpeg"})

    assert resp.status_code == 413
    assert resp.json()["kind"] == "FileTooLarge"


def test_bad_base64_is_rejected(client):
    resp = client.post("/api/product", json={"image": "abc", "mime_type": "image/png"})
    assert resp.status_code == 415
    assert client.get("/api/studio").json()["error"]


def test_crop_endpoints_without_session(client):
    resp = client.post("/api/crop/save")
    assert resp.status_code == 409
    assert resp.json()["kind"] == "NoCropSession"


def test_style_reference_roundtrip(client, fake_client):
    resp = client.post("/api/style", json={"image": data_url(image_bytes(fmt="PNG"), "image/png")})
    assert resp.status_code == 200
    assert fake_client.prompt_calls[-1][1] is not None

    client.delete("/api/style")
    assert fake_client.prompt_calls[-1][1] is None
    assert client.get("/api/studio").json()["style_image"] is None


def test_generate_and_download(client, fake_client):
    _upload_and_save(client)

    resp = client.post("/api/generate")
    assert resp.status_code == 200
    assert resp.json()["image"].startswith("data:image/png;base64,")

    download = client.get("/api/result/download")
    assert download.status_code == 200
    assert download.headers["content-type"] == "image/png"
    assert download.headers["content-disposition"] == 'attachment; filename="ai-photo-studio-result.png"'
    assert download.content == fake_client.result.data


def test_generate_without_product_is_rejected(client):
    resp = client.post("/api/generate")
    assert resp.status_code == 400
    assert resp.json()["kind"] == "MissingInput"


def test_generate_with_no_image_keeps_previous(client, fake_client):
    _upload_and_save(client)
    first = client.post("/api/generate").json()["image"]
    fake_client.edit_error = NoImageReturned("The AI model did not return an image.")

    resp = client.post("/api/generate")

    assert resp.status_code == 502
    assert resp.json()["kind"] == "NoImageReturned"
    state = client.get("/api/studio").json()
    assert state["generated_image"] == first
    assert state["error"] == "The AI model did not return an image."


def test_prompt_can_be_edited(client, fake_client):
    _upload_and_save(client)
    client.put("/api/prompt", json={"prompt": "Floating above a calm lake."})
    client.post("/api/generate")

    assert fake_client.edit_calls[-1][1] == "Floating above a calm lake."


def test_download_documents_every_output_format(app):
    responses = app.openapi()["paths"]["/api/result/download"]["get"]["responses"]
    assert set(responses["200"]["content"]) == {"image/png", "image/jpeg", "image/webp"}


def test_all_clients_share_one_studio(app):
    first, second = TestClient(app), TestClient(app)
    first.put("/api/prompt", json={"prompt": "On a wooden pier at dawn."})
    assert second.get("/api/studio").json()["prompt"] == "On a wooden pier at dawn."


def test_missing_api_key_is_fatal(monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    with pytest.raises(MissingCredential):
        create_app()
