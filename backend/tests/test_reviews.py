from datetime import datetime

import pytest

from profreviews.aggregates import current_trimester
from profreviews.models import Professor, Course, ProfessorCourse
from sqlmodel import select


@pytest.fixture()
def author(make_user, login):
    make_user(email="autor@correo.unimet.edu.ve")
    return login("autor@correo.unimet.edu.ve")


def _payload(professor, course, **overrides):
    body = {
        "professor_id": professor.id,
        "course_id": course.id,
        "quality": 4,
        "difficulty": 3,
        "would_take_again": True,
        "comment": "  Explica muy bien  ",
        "tags": ["clear", " ", "fair"],
    }
    body.update(overrides)
    return body


@pytest.mark.parametrize("now, expected", [
    (datetime(2025, 1, 15), "2025-1"),
    (datetime(2025, 4, 30), "2025-1"),
    (datetime(2025, 5, 1), "2025-2"),
    (datetime(2025, 9, 1), "2025-3"),
    (datetime(2025, 12, 31), "2025-3"),
])
def test_current_trimester(now, expected):
    assert current_trimester(now) == expected


def test_create_review_normalizes_fields(client, catalog, author):
    professor, course = catalog
    r = client.post("/api/reviews", json=_payload(professor, course), headers=author)
    assert r.status_code == 200, r.text
    data = r.json()["data"]
    assert data["comment"] == "Explica muy bien"
    assert data["tags"] == ["clear", "fair"]
    assert data["score"] == 4.0
    assert data["professor"]["full_name"] == "Maria Perez"
    assert data["useful_count"] == 0


def test_create_review_requires_login(client, catalog):
    professor, course = catalog
    assert client.post("/api/reviews", json=_payload(professor, course)).status_code == 401


def test_create_review_validates_ranges_and_references(client, catalog, author):
    professor, course = catalog
    assert client.post("/api/reviews", json=_payload(professor, course, quality=6), headers=author).status_code == 422
    assert client.post("/api/reviews", json=_payload(professor, course, professor_id=999), headers=author).status_code == 404
    assert client.post("/api/reviews", json=_payload(professor, course, course_id=999), headers=author).status_code == 404


def test_aggregates_follow_new_reviews(client, catalog, author, db):
    professor, course = catalog
    client.post("/api/reviews", json=_payload(professor, course, quality=5, difficulty=2), headers=author)
    client.post("/api/reviews", json=_payload(professor, course, quality=3, difficulty=4, would_take_again=False), headers=author)

    db.expire_all()
    p = db.get(Professor, professor.id)
    c = db.get(Course, course.id)
    link = db.exec(select(ProfessorCourse).where(ProfessorCourse.professor_id == professor.id)).one()
    for target in (p, c, link):
        assert target.reviews_count == 2
        assert target.avg_rating == 4.0
        assert target.avg_difficulty == 3.0
        assert target.would_take_again_rate == 0.5


def test_list_filters_and_orders(client, catalog, author):
    professor, course = catalog
    for quality in (2, 5, 3):
        client.post("/api/reviews", json=_payload(professor, course, quality=quality), headers=author)

    r = client.get("/api/reviews", params={"min_quality": 3, "order_by": "quality", "order": "asc"})
    body = r.json()
    assert body["total"] == 2
    assert [item["quality"] for item in body["data"]] == [3, 5]

    r = client.get("/api/reviews", params={"limit": 1, "offset": 1, "order_by": "quality"})
    assert r.json()["total"] == 3
    assert [item["quality"] for item in r.json()["data"]] == [3]


def test_listing_does_not_consume_quota(client, catalog, author):
    professor, course = catalog
    client.post("/api/reviews", json=_payload(professor, course), headers=author)
    for _ in range(5):
        client.get("/api/reviews", headers={"X-Device-Id": "d1"})
    status = client.get("/api/access/status", headers={"X-Device-Id": "d1"}).json()["data"]
    assert status["remaining"] == 3


def test_my_reviews(client, catalog, author, make_user, login):
    professor, course = catalog
    client.post("/api/reviews", json=_payload(professor, course), headers=author)
    make_user(email="otro@correo.unimet.edu.ve")
    other = login("otro@correo.unimet.edu.ve")

    assert len(client.get("/api/reviews/mine", headers=author).json()["data"]) == 1
    assert client.get("/api/reviews/mine", headers=other).json()["data"] == []


def test_useful_vote_toggles(client, catalog, author):
    professor, course = catalog
    review_id = client.post("/api/reviews", json=_payload(professor, course), headers=author).json()["data"]["id"]

    r = client.post(f"/api/reviews/{review_id}/vote", headers=author)
    assert r.json()["data"] == {"voted": True, "vote_count": 1}
    assert client.get(f"/api/reviews/{review_id}/votes", headers=author).json()["data"] == {"voted": True, "vote_count": 1}

    r = client.post(f"/api/reviews/{review_id}/vote", headers=author)
    assert r.json()["data"] == {"voted": False, "vote_count": 0}

    anonymous = client.get(f"/api/reviews/{review_id}/votes").json()["data"]
    assert anonymous == {"voted": False, "vote_count": 0}


def test_voting_requires_login(client, catalog, author):
    professor, course = catalog
    review_id = client.post("/api/reviews", json=_payload(professor, course), headers=author).json()["data"]["id"]
    assert client.post(f"/api/reviews/{review_id}/vote").status_code == 401
