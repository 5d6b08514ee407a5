from models import Notification


IDEA = {
    "title": "StudyBuddy",
    "category": "EdTech",
    "briefDescription": "Peer tutoring marketplace",
    "teamSize": 3,
    "fundingRequired": "5000",
    "tags": "ai, edtech",
}


def test_submit_requires_title_and_category(client, people, auth):
    r = client.post("/api/startups", headers=auth("student"), json={"title": "Half"})
    assert r.status_code == 400
    assert r.get_json()["message"] == "Incomplete data."
    assert client.post("/api/startups", headers=auth("teacher"), json=IDEA).status_code == 403


def test_submit_and_list(app, client, people, auth):
    r = client.post("/api/startups", headers=auth("student"), json=IDEA)
    assert r.status_code == 201
    idea = r.get_json()["data"]
    assert idea["studentId"] == people.student
    assert idea["studentName"] == "Stu Dent"
    assert idea["tags"] == ["ai", "edtech"]
    assert idea["attachments"] == []
    assert idea["status"] == "pending"
    assert idea["briefDescription"] == "Peer tutoring marketplace"

    assert len(client.get("/api/startups", headers=auth("student")).get_json()["data"]) == 1
    assert client.get("/api/startups", headers=auth("student2")).get_json()["data"] == []
    assert len(client.get("/api/startups", headers=auth("admin")).get_json()["data"]) == 1

    with app.app_context():
        n = Notification.query.filter_by(type="startup_submission").one()
        assert n.user_role == "admin"
        assert n.link == "/admin/startups"


def test_review(app, client, people, auth):
    sid = client.post("/api/startups", headers=auth("student"), json=IDEA).get_json()["data"]["id"]
    url = f"/api/startups/{sid}/review"
    assert client.put(url, headers=auth("teacher"), json={"status": "approved"}).status_code == 403
    assert client.put(url, headers=auth("admin"), json={"status": "maybe"}).status_code == 422
    r = client.put(url, headers=auth("admin"), json={"status": "approved", "feedback": "Great pitch"})
    assert r.status_code == 200
    data = r.get_json()["data"]
    assert data["status"] == "approved"
    assert data["adminRemarks"] == "Great pitch"
    assert data["reviewedAt"]

    with app.app_context():
        n = Notification.query.filter_by(type="startup_review").one()
        assert (n.user_role, n.user_id) == ("student", people.student)
        assert "has been marked as Approved" in n.message
        assert n.link == "/student/startup"
    assert client.put("/api/startups/999/review", headers=auth("admin"), json={"status": "rejected"}).status_code == 404
