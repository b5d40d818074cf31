from __future__ import annotations

from datetime import datetime

import pytest

from xarchive.web.app import create_flask_app


@pytest.fixture
def client(task_queue, extraction_repo):
    app = create_flask_app(task_queue, extraction_repo, default_target_lang="中文")
    app.config["TESTING"] = True
    return app.test_client()


def test_health(client) -> None:
    assert client.get("/health").get_json()["status"] == "ok"


def test_fetch_tweet_enqueues_extract(client, task_queue) -> None:
    resp = client.post("/api/fetch-tweet", json={"url": "https://x.com/a/status/1", "scrollTimes": 4})
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["status"] == "queued"

    task = task_queue.get_task(body["taskId"])
    assert task.type == "extract"
    assert task.scroll_times == 4


def test_fetch_tweet_requires_url(client) -> None:
    assert client.post("/api/fetch-tweet", json={}).status_code == 400


def test_create_task_validation(client) -> None:
    resp = client.post("/api/task", json={"type": "bogus", "params": {}})
    assert resp.status_code == 400
    assert "extract" in resp.get_json()["supportedTypes"]

    resp = client.post("/api/task", json={"type": "translate", "params": {}})
    assert resp.status_code == 400
    assert resp.get_json()["field"] == "extractionId"

    assert client.post("/api/task", json={"type": "tag"}).status_code == 400


def test_task_lifecycle_over_http(client, task_queue) -> None:
    resp = client.post("/api/task", json={"type": "summary", "params": {"extractionId": 1}, "priority": 3})
    task_id = resp.get_json()["taskId"]

    body = client.get(f"/api/task/{task_id}").get_json()
    assert body["status"] == "pending"
    assert body["priority"] == 3
    assert body["result"] is None

    assert client.delete(f"/api/task/{task_id}").status_code == 200
    assert client.delete(f"/api/task/{task_id}").status_code == 400
    assert client.get("/api/task/task_0_missing").status_code == 404


def test_completed_task_includes_result(client, task_queue) -> None:
    task_id = task_queue.enqueue("tag", {"extraction_id": 1})
    task_queue.claim("w1")
    task_queue.complete(task_id, result={"tags": ["tech"]}, result_kind="tag")

    body = client.get(f"/api/task/{task_id}").get_json()
    assert body["status"] == "completed"
    assert body["result"] == {"tags": ["tech"]}


def test_queue_status(client, task_queue) -> None:
    task_queue.enqueue("summary", {"extraction_id": 1})
    body = client.get("/api/queue/status?page=1&pageSize=5").get_json()
    assert body["summary"]["pending"] == 1
    assert body["queue"][0]["estimatedTime"] == "30秒后"
    assert body["pagination"]["pageSize"] == 5

    assert client.get("/api/queue/status?filter=done").status_code == 400


def test_extraction_endpoints(client, extraction_repo, task_queue, sample_result) -> None:
    extraction_id = extraction_repo.save_extraction(sample_result)

    listed = client.get("/api/extractions").get_json()["extractions"]
    assert [e["id"] for e in listed] == [extraction_id]
    assert client.get(f"/api/extractions/{extraction_id}").get_json()["count"] == 3
    assert client.get("/api/extractions/999").status_code == 404

    article = client.get(f"/api/extractions/{extraction_id}/article-markdown").get_json()
    assert article["tweetCount"] == 2
    assert article["content"] == "First part about Rust\n\n---\n\nSecond part"

    resp = client.post(f"/api/extractions/{extraction_id}/translate", json={"targetLang": "English"})
    task = task_queue.get_task(resp.get_json()["taskId"])
    assert task.type == "translate"
    assert '"target_lang": "English"' in task.params

    resp = client.post(f"/api/extractions/{extraction_id}/tag")
    assert task_queue.get_task(resp.get_json()["taskId"]).type == "tag"

    assert client.post("/api/extractions/999/tag").status_code == 404
    assert client.post(f"/api/extractions/{extraction_id}/delete").status_code == 404


def test_queue_status_survives_broken_params_row(client, db_pool) -> None:
    with db_pool.connection() as conn:
        with conn.cursor() as cur:
            cur.execute(
                "INSERT INTO task_queue (task_id, type, url, scroll_times, params, status, priority, progress, created_at)"
                " VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)",
                ("task_6_aaaaaaaaa", "tag", "", 0, "{broken", "failed", 0, 0, datetime.now()),
            )

    resp = client.get("/api/queue/status")
    assert resp.status_code == 200
    assert resp.get_json()["summary"]["failed"] == 1

    body = client.get("/api/task/task_6_aaaaaaaaa").get_json()
    assert body["params"] == "{broken"
