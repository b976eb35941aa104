async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "Healthy"}


async def test_request_id_generated(client):
    response = await client.get("/health")

    assert len(response.headers["X-Request-ID"]) == 36


async def test_request_id_echoed(client):
    response = await client.get("/health", headers={"X-Request-ID": "trace-abc"})

    assert response.headers["X-Request-ID"] == "trace-abc"
