def add_topic(client, headers, title="Sorting", **extra):
    r = client.post("/api/syllabus/topics", headers=headers, json={"title": title, **extra})
    assert r.status_code == 201, r.get_json()
    return r.get_json()["data"]


def test_topics_and_subtopics(client, people, auth):
    topic = add_topic(client, auth("teacher"), description="Algorithms", weeks="1-2")
    assert topic["completed"] is False
    r = client.post("/api/syllabus/subtopics", headers=auth("teacher"),
                    json={"title": "Quicksort", "parentId": topic["id"]})
    assert r.status_code == 201
    sub = r.get_json()["data"]
    assert sub["parentId"] == topic["id"]

    data = client.get("/api/syllabus", headers=auth("teacher")).get_json()["data"]
    assert [t["title"] for t in data["topics"]] == ["Sorting"]
    assert [s["title"] for s in data["subtopics"]] == ["Quicksort"]
    assert client.get("/api/syllabus", headers=auth("other_teacher")).get_json()["data"] == {"topics": [], "subtopics": []}

    r = client.patch(f"/api/syllabus/subtopics/{sub['id']}/toggle", headers=auth("teacher"))
    assert r.get_json()["data"]["completed"] is True
    r = client.patch(f"/api/syllabus/topics/{topic['id']}/toggle", headers=auth("teacher"))
    assert r.get_json()["data"]["completed"] is True
    r = client.patch(f"/api/syllabus/topics/{topic['id']}/toggle", headers=auth("teacher"))
    assert r.get_json()["data"]["completed"] is False

    r = client.put(f"/api/syllabus/topics/{topic['id']}", headers=auth("teacher"), json={"weeks": "3"})
    assert r.get_json()["data"]["weeks"] == "3"
    r = client.put(f"/api/syllabus/subtopics/{sub['id']}", headers=auth("teacher"), json={"title": "Mergesort"})
    assert r.get_json()["data"]["title"] == "Mergesort"

    assert client.delete(f"/api/syllabus/topics/{topic['id']}", headers=auth("teacher")).status_code == 200
    assert client.get("/api/syllabus", headers=auth("teacher")).get_json()["data"]["subtopics"] == []


def test_ownership(client, people, auth):
    mine = add_topic(client, auth("teacher"))
    theirs = add_topic(client, auth("other_teacher"), title="Graphs")
    assert client.put(f"/api/syllabus/topics/{mine['id']}", headers=auth("other_teacher"),
                      json={"title": "x"}).status_code == 403
    assert client.patch(f"/api/syllabus/topics/{mine['id']}/toggle", headers=auth("other_teacher")).status_code == 403
    assert client.post("/api/syllabus/subtopics", headers=auth("teacher"),
                       json={"title": "BFS", "parentId": theirs["id"]}).status_code == 403

    sub = client.post("/api/syllabus/subtopics", headers=auth("teacher"),
                      json={"title": "Heaps", "parentId": mine["id"]}).get_json()["data"]
    # cannot move a subtopic under someone else's topic
    r = client.put(f"/api/syllabus/subtopics/{sub['id']}", headers=auth("teacher"), json={"parentId": theirs["id"]})
    assert r.status_code == 403
    assert client.delete(f"/api/syllabus/subtopics/{sub['id']}", headers=auth("other_teacher")).status_code == 403


def test_validation(client, people, auth):
    assert client.post("/api/syllabus/topics", headers=auth("teacher"), json={}).status_code == 422
    assert client.post("/api/syllabus/subtopics", headers=auth("teacher"), json={"title": "x"}).status_code == 422
    assert client.post("/api/syllabus/subtopics", headers=auth("teacher"),
                       json={"title": "x", "parentId": 404}).status_code == 404
    assert client.get("/api/syllabus", headers=auth("student")).status_code == 403


def test_admin_progress(client, people, auth):
    first = add_topic(client, auth("teacher"), title="One")
    add_topic(client, auth("teacher"), title="Two")
    client.patch(f"/api/syllabus/topics/{first['id']}/toggle", headers=auth("teacher"))

    r = client.get("/api/admin/syllabus-progress", headers=auth("admin"))
    assert r.status_code == 200
    rows = {row["teacher"]["name"]: row for row in r.get_json()["data"]}
    assert rows["Tom Teacher"]["total_topics"] == 2
    assert rows["Tom Teacher"]["completed_topics"] == 1
    assert rows["Tom Teacher"]["progress_percentage"] == 50
    assert rows["Tom Teacher"]["last_updated"]
    assert rows["Olga Other"]["progress_percentage"] == 0
    assert rows["Olga Other"]["last_updated"] is None

    detail = client.get(f"/api/admin/syllabus/{people.teacher}", headers=auth("admin")).get_json()["data"]
    assert detail["teacher"]["email"] == "teacher@example.com"
    assert len(detail["topics"]) == 2
    assert client.get("/api/admin/syllabus/999", headers=auth("admin")).status_code == 404
    assert client.get("/api/admin/syllabus-progress", headers=auth("teacher")).status_code == 403
