import pytest

from app.utils.pricing import ENHANCEMENT_MODELS, calculate_task_credits
from app.utils.providers import (
    ProviderError, ProviderStatus, ReplicateProvider, RunningHubProvider
)
from app.utils.service_balance import CreditsService


async def fund(SessionLocal, user, amount=1000):
    async with SessionLocal() as session:
        await CreditsService(session).grant_bonus_credits(user.id, amount, "test funds")


async def balance_of(SessionLocal, user):
    async with SessionLocal() as session:
        return (await CreditsService(session).get_user_credits(user.id)).remaining


async def create_task(async_client, headers, model_id="skin-editor", **extra):
    return await async_client.post(
        "/api/tasks",
        json={"imageUrl": "https://cdn.example.com/in.png", "modelId": model_id, **extra},
        headers=headers,
    )


# **************    Routes
@pytest.mark.asyncio
async def test_create_task_submits_to_provider(async_client, db, providers, user_auth):
    user, headers = user_auth
    await fund(db, user)

    resp = await create_task(async_client, headers, prompt="smooth skin")
    assert resp.status_code == 201

    task = resp.json()["task"]
    assert task["status"] == "processing"
    assert task["provider"] == "runninghub"
    assert task["modelId"] == "skin-editor"
    assert task["jobId"] == "runninghub_job_1"
    assert task["originalImageUrl"] == "https://cdn.example.com/in.png"
    assert task["creditsConsumed"] == 0

    model_id, image_url, prompt, _ = providers["runninghub"].submitted[0]
    assert model_id == "skin-editor"
    assert prompt == "smooth skin"

    # кредити списуються лише після завершення
    assert await balance_of(db, user) == 1000


@pytest.mark.asyncio
async def test_create_task_unknown_model(async_client, db, user_auth):
    user, headers = user_auth
    await fund(db, user)

    resp = await create_task(async_client, headers, model_id="dall-e")
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_create_task_requires_credits(async_client, db, providers, user_auth):
    user, headers = user_auth
    await fund(db, user, amount=100)

    resp = await create_task(async_client, headers, model_id="smart-upscaler")
    assert resp.status_code == 402
    assert providers["runninghub"].submitted == []


@pytest.mark.asyncio
async def test_create_task_empty_image_url(async_client, db, user_auth):
    user, headers = user_auth
    await fund(db, user)

    resp = await async_client.post(
        "/api/tasks", json={"imageUrl": "", "modelId": "skin-editor"}, headers=headers
    )
    assert resp.status_code == 422


@pytest.mark.asyncio
async def test_create_task_provider_failure(async_client, db, providers, user_auth):
    user, headers = user_auth
    await fund(db, user)
    providers["replicate"].submit_error = ProviderError("replicate", "HTTP 500: boom")

    resp = await create_task(async_client, headers, model_id="real-esrgan")
    assert resp.status_code == 502

    task_id = resp.json()["detail"]["taskId"]
    resp = await async_client.get(f"/api/tasks/{task_id}", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["task"]["status"] == "failed"
    assert resp.json()["task"]["errorMessage"] == "HTTP 500: boom"
    assert await balance_of(db, user) == 1000


@pytest.mark.asyncio
async def test_poll_until_completed_deducts_once(async_client, db, providers, user_auth):
    user, headers = user_auth
    await fund(db, user)

    task_id = (await create_task(async_client, headers)).json()["task"]["id"]

    providers["runninghub"].status = ProviderStatus(status="processing", progress=50)
    resp = await async_client.get(f"/api/tasks/{task_id}", headers=headers)
    assert resp.json()["task"]["progress"] == 50
    assert resp.json()["task"]["status"] == "processing"

    providers["runninghub"].status = ProviderStatus(
        status="completed", progress=100, output_url="https://cdn.example.com/out.png"
    )
    for _ in range(2):
        resp = await async_client.get(f"/api/tasks/{task_id}", headers=headers)
        assert resp.status_code == 200

    task = resp.json()["task"]
    assert task["status"] == "completed"
    assert task["progress"] == 100
    assert task["enhancedImageUrl"] == "https://cdn.example.com/out.png"
    assert task["creditsConsumed"] == 120
    assert task["processingTime"] is not None
    assert await balance_of(db, user) == 1000 - 120


@pytest.mark.asyncio
async def test_failed_task_costs_nothing(async_client, db, providers, user_auth):
    user, headers = user_auth
    await fund(db, user)

    task_id = (await create_task(async_client, headers)).json()["task"]["id"]
    providers["runninghub"].status = ProviderStatus(status="failed", error="RunningHub task failed")

    resp = await async_client.get(f"/api/tasks/{task_id}", headers=headers)
    assert resp.json()["task"]["status"] == "failed"
    assert resp.json()["task"]["failedAt"] is not None
    assert await balance_of(db, user) == 1000


@pytest.mark.asyncio
async def test_poll_error_returns_stored_task(async_client, db, providers, user_auth):
    user, headers = user_auth
    await fund(db, user)

    task_id = (await create_task(async_client, headers)).json()["task"]["id"]
    providers["runninghub"].status_error = ProviderError("runninghub", "request failed")

    resp = await async_client.get(f"/api/tasks/{task_id}", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["task"]["status"] == "processing"


@pytest.mark.asyncio
async def test_task_of_other_user_not_found(async_client, db, providers, user_auth, other_user_auth):
    user, headers = user_auth
    _, other_headers = other_user_auth
    await fund(db, user)

    task_id = (await create_task(async_client, headers)).json()["task"]["id"]

    resp = await async_client.get(f"/api/tasks/{task_id}", headers=other_headers)
    assert resp.status_code == 404

    resp = await async_client.get("/api/tasks/does-not-exist", headers=headers)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_list_tasks_filter_and_pagination(async_client, db, providers, user_auth):
    user, headers = user_auth
    await fund(db, user)

    for _ in range(3):
        resp = await create_task(async_client, headers, model_id="real-esrgan")
        assert resp.status_code == 201
    providers["runninghub"].submit_error = ProviderError("runninghub", "down")
    await create_task(async_client, headers)

    resp = await async_client.get("/api/tasks/list?limit=2", headers=headers)
    assert resp.status_code == 200
    data = resp.json()
    assert data["total"] == 4
    assert len(data["tasks"]) == 2
    assert data["hasMore"] is True
    # найновіші першими
    assert data["tasks"][0]["status"] == "failed"

    resp = await async_client.get("/api/tasks/list?status=processing&offset=2", headers=headers)
    data = resp.json()
    assert data["total"] == 3
    assert len(data["tasks"]) == 1
    assert data["hasMore"] is False

    resp = await async_client.get("/api/tasks/list?status=exploded", headers=headers)
    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_delete_task(async_client, db, providers, user_auth, other_user_auth):
    user, headers = user_auth
    _, other_headers = other_user_auth
    await fund(db, user)

    task_id = (await create_task(async_client, headers)).json()["task"]["id"]

    resp = await async_client.delete(f"/api/tasks/{task_id}", headers=other_headers)
    assert resp.status_code == 404

    resp = await async_client.delete(f"/api/tasks/{task_id}", headers=headers)
    assert resp.status_code == 200
    assert resp.json() == {"success": True, "taskId": task_id}

    resp = await async_client.get(f"/api/tasks/{task_id}", headers=headers)
    assert resp.status_code == 404
    resp = await async_client.delete(f"/api/tasks/{task_id}", headers=headers)
    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_create_task_checks_tiered_price(async_client, db, providers, user_auth):
    user, headers = user_auth
    await fund(db, user, amount=250)

    # 2000x2000 - тир 4 MP, 300 кредитів
    resp = await create_task(
        async_client, headers, settings={"imageWidth": 2000, "imageHeight": 2000}
    )
    assert resp.status_code == 402

    resp = await create_task(
        async_client, headers, settings={"imageWidth": 1500, "imageHeight": 1500}
    )
    assert resp.status_code == 201


@pytest.mark.asyncio
async def test_completed_task_deducts_tiered_price(async_client, db, providers, user_auth):
    user, headers = user_auth
    await fund(db, user)

    resp = await create_task(
        async_client, headers, settings={"imageWidth": 1200, "imageHeight": 1200}
    )
    task_id = resp.json()["task"]["id"]
    providers["runninghub"].status = ProviderStatus(
        status="completed", progress=100, output_url="https://cdn.example.com/out.png"
    )

    resp = await async_client.get(f"/api/tasks/{task_id}", headers=headers)
    assert resp.json()["task"]["creditsConsumed"] == 180
    assert await balance_of(db, user) == 1000 - 180


# **************    Pricing
def test_resolution_tier_boundaries():
    model = ENHANCEMENT_MODELS["skin-editor"]

    def price(width, height):
        return calculate_task_credits(model, {"imageWidth": width, "imageHeight": height})

    assert price(400, 400) == 50
    assert price(500, 500) == 50
    assert price(501, 500) == 120
    assert price(1000, 1000) == 120
    assert price(1001, 1000) == 180
    assert price(4000, 4000) == 800
    # більші за найвищий тир - за найвищим
    assert price(8000, 6000) == 800


def test_price_without_dimensions_uses_default_tier():
    assert calculate_task_credits(ENHANCEMENT_MODELS["skin-editor"], {}) == 120
    assert calculate_task_credits(ENHANCEMENT_MODELS["smart-upscaler"], None) == 240
    assert calculate_task_credits(ENHANCEMENT_MODELS["real-esrgan"], {}) == 60
    assert calculate_task_credits(
        ENHANCEMENT_MODELS["skin-editor"], {"imageWidth": "wide", "imageHeight": 0}
    ) == 120


def test_setting_increments():
    skin = ENHANCEMENT_MODELS["skin-editor"]
    size = {"imageWidth": 1000, "imageHeight": 1000}

    # 2 кроки понад 10 по 5 кредитів
    assert calculate_task_credits(skin, {**size, "steps": 12}) == 130
    assert calculate_task_credits(skin, {**size, "steps": 8}) == 120
    assert calculate_task_credits(skin, {**size, "guidance_scale": 12}) == 138
    assert calculate_task_credits(skin, {**size, "guidance_scale": 7}) == 126
    assert calculate_task_credits(skin, {**size, "denoise": 0.3}) == 120
    assert calculate_task_credits(skin, {**size, "denoise": "strong"}) == 120


def test_multiplier_applied_after_increments():
    upscaler = ENHANCEMENT_MODELS["smart-upscaler"]
    esrgan = ENHANCEMENT_MODELS["real-esrgan"]

    # (120 + 35%) x 2
    assert calculate_task_credits(upscaler, {"enable_myupscaler": True}) == 324
    assert calculate_task_credits(upscaler, {"enable_myupscaler": False}) == 240
    assert calculate_task_credits(upscaler, {"upscale_model": "4x-UltraSharp.pth"}) == 276
    # 2000x2000: 200 x 0.75
    assert calculate_task_credits(esrgan, {"imageWidth": 2000, "imageHeight": 2000}) == 150
    assert calculate_task_credits(esrgan, {"face_enhance": True}) == 66


# **************    Providers
@pytest.mark.asyncio
async def test_replicate_status_mapping(monkeypatch):
    provider = ReplicateProvider("r8_token")
    responses = {}

    async def fake_call(method, path, json=None):
        return responses["next"]

    monkeypatch.setattr(provider, "_call", fake_call)

    responses["next"] = {"status": "starting"}
    assert (await provider.get_status("p1")).progress == 10

    responses["next"] = {"status": "processing"}
    assert (await provider.get_status("p1")).progress == 50

    responses["next"] = {"status": "succeeded", "output": ["a.png", "b.png"]}
    result = await provider.get_status("p1")
    assert result.status == "completed"
    assert result.output_url == "b.png"

    responses["next"] = {"status": "canceled"}
    assert (await provider.get_status("p1")).status == "failed"


@pytest.mark.asyncio
async def test_replicate_submit_builds_input(monkeypatch):
    provider = ReplicateProvider("r8_token")
    sent = {}

    async def fake_call(method, path, json=None):
        sent.update(method=method, path=path, json=json)
        return {"id": "pred_1"}

    monkeypatch.setattr(provider, "_call", fake_call)
    model = ENHANCEMENT_MODELS["real-esrgan"]

    job_id = await provider.submit(
        model, "https://in.png", None, {"scale": 2, "imageWidth": 800, "imageHeight": 600}
    )

    assert job_id == "pred_1"
    assert sent["path"] == "/predictions"
    assert sent["json"]["version"] == model.reference
    assert sent["json"]["input"] == {"scale": 2, "face_enhance": False, "image": "https://in.png"}


@pytest.mark.asyncio
async def test_runninghub_submit_node_overrides(monkeypatch):
    provider = RunningHubProvider("rh_key", "https://www.runninghub.ai/")
    sent = {}

    async def fake_call(path, payload):
        sent.update(path=path, payload=payload)
        return {"taskId": 987}

    monkeypatch.setattr(provider, "_call", fake_call)
    model = ENHANCEMENT_MODELS["skin-editor"]
    override = {"nodeId": "86", "fieldName": "text", "fieldValue": "custom prompt"}

    job_id = await provider.submit(model, "https://in.png", "default prompt", {"nodeInfoList": [override]})

    assert job_id == "987"
    assert sent["path"] == "create"
    assert sent["payload"]["workflowId"] == model.reference
    assert sent["payload"]["nodeInfoList"] == [
        {"nodeId": "97", "fieldName": "image", "fieldValue": "https://in.png"},
        override,
    ]


@pytest.mark.asyncio
async def test_runninghub_status_success_reads_outputs(monkeypatch):
    provider = RunningHubProvider("rh_key", "https://www.runninghub.ai")

    async def fake_call(path, payload):
        if path == "status":
            return "SUCCESS"
        return [{"fileUrl": "https://out/1.png"}, {"fileUrl": "https://out/2.png"}]

    monkeypatch.setattr(provider, "_call", fake_call)

    result = await provider.get_status("987")
    assert result.status == "completed"
    assert result.output_url == "https://out/2.png"
