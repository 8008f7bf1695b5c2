"""
API endpoint tests for the design pipeline.
"""

import pytest
from httpx import ASGITransport, AsyncClient

from design_pipeline.api.dependencies import get_runner, get_stage_catalog, get_storage, get_store
from design_pipeline.api.routes.designs import limiter
from design_pipeline.main import app
from design_pipeline.worker.runner import PipelineRunner
from design_pipeline.worker.stage_loader import StageCatalog

from conftest import instant_stages

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


@pytest.fixture
def overrides(store, storage, tmp_path):
    limiter.enabled = False
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_runner] = lambda: None
    app.dependency_overrides[get_stage_catalog] = lambda: StageCatalog(tmp_path / "stages.yaml")
    yield app.dependency_overrides
    app.dependency_overrides.clear()
    limiter.enabled = True


@pytest.fixture
async def client(overrides):
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def submit(client, prompt="make it denim", filename="shirt.png", swatch=None):
    files = {"garment_image": (filename, PNG_BYTES, "image/png")}
    if swatch:
        files["style_swatch_image"] = (swatch, PNG_BYTES, "image/png")
    return await client.post("/api/designs", data={"design_prompt": prompt}, files=files)


@pytest.mark.asyncio
async def test_health(client):
    r = await client.get("/health")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] in ["healthy", "degraded"]
    assert body["checks"]["database"] is True
    assert body["checks"]["notifier"] is True


@pytest.mark.asyncio
async def test_ready(client):
    r = await client.get("/ready")
    assert r.status_code == 200
    body = r.json()
    assert body["ready"] is True
    assert body["worker_mode"] in ["inline", "external"]


@pytest.mark.asyncio
async def test_list_stages(client):
    r = await client.get("/api/stages")
    assert r.status_code == 200
    stages = r.json()
    assert [s["name"] for s in stages] == [
        "upload", "segmentation", "concept_generation", "pattern_drafting", "fit_simulation", "tech_pack",
    ]
    assert stages[1]["title"] == "Garment Segmentation"
    assert [s["position"] for s in stages] == list(range(6))


@pytest.mark.asyncio
async def test_create_design(client):
    r = await submit(client, swatch="swatch.webp")
    assert r.status_code == 201
    body = r.json()
    assert body["status"] == "pending"
    assert body["design_prompt"] == "make it denim"
    assert body["overall_progress"] == 0
    assert len(body["steps"]) == 6
    assert body["style_swatch_path"].endswith("style_swatch.webp")


@pytest.mark.asyncio
async def test_create_design_runs_inline(client, overrides, store):
    overrides[get_runner] = lambda: PipelineRunner(store, instant_stages())

    r = await submit(client)
    assert r.status_code == 201
    design_id = r.json()["id"]

    r = await client.get(f"/api/designs/{design_id}")
    assert r.status_code == 200
    body = r.json()
    assert body["status"] == "completed"
    assert body["overall_progress"] == 100
    assert all(step["status"] == "completed" for step in body["steps"])


@pytest.mark.asyncio
async def test_create_design_without_prompt(client, store):
    r = await submit(client, prompt="  ")
    assert r.status_code == 400
    assert r.json()["error"]["code"] == "VALIDATION_ERROR"
    assert store.list_jobs()[1] == 0


@pytest.mark.asyncio
async def test_create_design_without_garment(client):
    r = await client.post("/api/designs", data={"design_prompt": "make it denim"})
    assert r.status_code == 400
    assert "garment image" in r.json()["error"]["message"]


@pytest.mark.asyncio
async def test_create_design_bad_file_type(client):
    r = await submit(client, filename="shirt.gif")
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_get_nonexistent_design(client):
    r = await client.get("/api/designs/nonexistent-id")
    assert r.status_code == 404
    assert r.json()["error"]["code"] == "NOT_FOUND"


@pytest.mark.asyncio
async def test_list_designs(client):
    await submit(client)
    await submit(client, prompt="add a hood")

    r = await client.get("/api/designs")
    assert r.status_code == 200
    body = r.json()
    assert body["total"] == 2
    assert len(body["jobs"]) == 2

    r = await client.get("/api/designs", params={"status": "completed"})
    assert r.json()["total"] == 0


@pytest.mark.asyncio
async def test_list_designs_invalid_status(client):
    r = await client.get("/api/designs", params={"status": "exploded"})
    assert r.status_code == 400
