from __future__ import annotations

import json

ADMIN = {"Authorization": "Bearer admin-secret"}


def _put(key: str, record: dict) -> None:
    from quote_intake.core.storage import get_storage

    get_storage().put(key=key, body=json.dumps(record).encode("utf-8"), content_type="application/json")


def _record(record_id: str, *, ts: str, zip_code: str, line: str, **extra) -> dict:
    return {
        "id": record_id,
        "ts": ts,
        "ip": "203.0.113.9",
        "zip": zip_code,
        "image_count": 2,
        "serviceable": True,
        "customer_line": line,
        "model": "gpt-4o-mini",
        "model_text": line,
        "data": {},
        "request": {"description": "couch", "image_urls": []},
        "timings": {"ai_ms": 812},
        **extra,
    }


def _seed() -> None:
    _put(
        "estimates/2026-09/aaa.json",
        _record("aaa", ts="2026-09-30T23:10:00Z", zip_code="06268", line="$150 - $200 for a couch."),
    )
    _put(
        "estimates/2026-10/bbb.json",
        _record(
            "bbb",
            ts="2026-10-02T08:00:00Z",
            zip_code="06269",
            line="About half a truck.",
            data={"final_range": "$300-$400"},
        ),
    )
    _put(
        "estimates/2026-10/ccc.json",
        _record("ccc", ts="2026-10-03T12:00:00Z", zip_code="06268", line="$90 minimum."),
    )


def test_admin_requires_token(client):
    _seed()
    assert client.get("/admin/list").status_code == 401
    assert client.get("/admin/list", headers={"Authorization": "Bearer nope"}).status_code == 401
    assert client.get("/admin/list?token=nope").status_code == 401
    assert client.get("/admin/get?key=estimates/2026-09/aaa.json").status_code == 401


def test_admin_rejects_everything_when_token_unset(client, monkeypatch):
    from quote_intake.core.config import settings

    monkeypatch.setattr(settings, "admin_token", None)
    assert client.get("/admin/list", headers=ADMIN).status_code == 401
    assert client.get("/admin/list?token=").status_code == 401


def test_admin_accepts_bearer_or_query_token(client):
    assert client.get("/admin/list", headers=ADMIN).status_code == 200
    assert client.get("/admin/list?token=admin-secret").status_code == 200


def test_list_summarizes_records(client):
    _seed()
    resp = client.get("/admin/list", headers=ADMIN)
    assert resp.status_code == 200
    payload = resp.json()
    assert payload["next_cursor"] is None
    by_key = {item["key"]: item for item in payload["items"]}
    assert set(by_key) == {
        "estimates/2026-09/aaa.json",
        "estimates/2026-10/bbb.json",
        "estimates/2026-10/ccc.json",
    }

    aaa = by_key["estimates/2026-09/aaa.json"]
    assert aaa["date"] == "2026-09-30"
    assert aaa["zip"] == "06268"
    assert aaa["serviceable"] is True
    assert aaa["image_count"] == 2
    assert aaa["final_range"] == "$150"
    assert aaa["url"] == "http://testserver/blob/files/estimates/2026-09/aaa.json"
    assert aaa["size"] > 0

    assert by_key["estimates/2026-10/bbb.json"]["final_range"] == "$300-$400"


def test_list_filters_by_zip_and_date(client):
    _seed()
    by_zip = client.get("/admin/list?zip=06268", headers=ADMIN).json()
    assert sorted(i["key"] for i in by_zip["items"]) == [
        "estimates/2026-09/aaa.json",
        "estimates/2026-10/ccc.json",
    ]

    by_date = client.get("/admin/list?date=2026-10-02", headers=ADMIN).json()
    assert [i["key"] for i in by_date["items"]] == ["estimates/2026-10/bbb.json"]

    bad = client.get("/admin/list?date=october", headers=ADMIN)
    assert bad.status_code == 422


def test_list_paginates_with_cursor(client):
    _seed()
    seen: list[str] = []
    cursor = None
    for _ in range(3):
        params = {"limit": 1}
        if cursor:
            params["cursor"] = cursor
        page = client.get("/admin/list", params=params, headers=ADMIN).json()
        assert len(page["items"]) == 1
        seen.append(page["items"][0]["key"])
        cursor = page["next_cursor"]
    assert cursor is None
    assert seen == [
        "estimates/2026-09/aaa.json",
        "estimates/2026-10/bbb.json",
        "estimates/2026-10/ccc.json",
    ]


def test_filtered_pagination_does_not_skip_matches(client):
    _seed()
    first = client.get("/admin/list?zip=06268&limit=1", headers=ADMIN).json()
    assert [i["key"] for i in first["items"]] == ["estimates/2026-09/aaa.json"]
    assert first["next_cursor"]

    second = client.get(
        "/admin/list", params={"zip": "06268", "limit": 1, "cursor": first["next_cursor"]}, headers=ADMIN
    ).json()
    assert [i["key"] for i in second["items"]] == ["estimates/2026-10/ccc.json"]
    assert second["next_cursor"] is None


def test_invalid_cursor_is_rejected(client):
    resp = client.get("/admin/list", params={"cursor": "a"}, headers=ADMIN)
    assert resp.status_code == 400


def test_legacy_results_keys_are_listed(client, monkeypatch):
    from quote_intake.core.config import settings

    monkeypatch.setattr(settings, "records_prefix", "results/")
    _put(
        "results/2025-08-24/06268-2025-08-24T12-34-56-789Z.json",
        {"quote_line": "$120 - $180 for a recliner.", "result": {"price_range": "$120-$180"}},
    )
    _put(
        "results/2025-08-25/06250-2025-08-25T09-00-00-000Z.json",
        {"quote_line": "Outside our service area.", "serviceable": False},
    )

    items = client.get("/admin/list", headers=ADMIN).json()["items"]
    by_zip = {i["zip"]: i for i in items}
    assert by_zip["06268"]["date"] == "2025-08-24"
    assert by_zip["06268"]["customer_line"] == "$120 - $180 for a recliner."
    assert by_zip["06268"]["final_range"] == "$120-$180"
    assert by_zip["06250"]["serviceable"] is False

    day = client.get("/admin/list?date=2025-08-25", headers=ADMIN).json()["items"]
    assert [i["zip"] for i in day] == ["06250"]


def test_unreadable_record_is_listed_with_blank_fields(client):
    from quote_intake.core.storage import get_storage

    get_storage().put(key="estimates/2026-10/broken.json", body=b"{not json")
    items = client.get("/admin/list", headers=ADMIN).json()["items"]
    assert len(items) == 1
    assert items[0]["date"] is not None
    assert items[0]["customer_line"] == ""
    assert items[0]["serviceable"] is False


def test_get_record_by_url_and_key(client):
    _seed()
    url = "http://testserver/blob/files/estimates/2026-10/bbb.json"
    by_url = client.get("/admin/get", params={"url": url}, headers=ADMIN)
    assert by_url.status_code == 200
    assert by_url.headers["content-type"].startswith("application/json")
    assert by_url.json()["id"] == "bbb"

    by_key = client.get("/admin/get", params={"key": "estimates/2026-10/bbb.json"}, headers=ADMIN)
    assert by_key.json() == by_url.json()


def test_get_rejects_foreign_or_missing_records(client):
    _seed()
    foreign = client.get(
        "/admin/get", params={"url": "http://169.254.169.254/latest/meta-data"}, headers=ADMIN
    )
    assert foreign.status_code == 400

    traversal = client.get(
        "/admin/get", params={"url": "http://testserver/blob/files/../secrets.json"}, headers=ADMIN
    )
    assert traversal.status_code == 400

    assert client.get("/admin/get", headers=ADMIN).status_code == 400

    missing = client.get("/admin/get", params={"key": "estimates/2026-10/zzz.json"}, headers=ADMIN)
    assert missing.status_code == 404
