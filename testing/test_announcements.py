from models import db, Notification


def create(client, headers, title, audience=None):
    body = {"title": title, "content": f"{title} body"}
    if audience:
        body["target_audience"] = audience
    r = client.post("/api/announcements", headers=headers, json=body)
    assert r.status_code == 201, r.get_json()
    return r.get_json()["data"]


def titles(client, headers):
    r = client.get("/api/announcements", headers=headers)
    assert r.status_code == 200
    return {a["title"] for a in r.get_json()["data"]}


def test_visibility_by_role(client, people, auth):
    create(client, auth("admin"), "For students", "student")
    create(client, auth("admin"), "For teachers", "teacher")
    create(client, auth("admin"), "For all")
    create(client, auth("other_teacher"), "Olga to students", "student")

    assert titles(client, auth("student")) == {"For students", "For all", "Olga to students"}
    assert titles(client, auth("teacher")) == {"For teachers", "For all"}
    # a teacher also sees what they posted, whatever the audience
    assert titles(client, auth("other_teacher")) == {"For teachers", "For all", "Olga to students"}
    assert len(titles(client, auth("admin"))) == 4


def test_create_defaults_and_creator_name(client, people, auth):
    a = create(client, auth("teacher"), "Lab moved")
    assert a["target_audience"] == "all"
    assert a["creator_name"] == "Tom Teacher"
    assert a["created_by_role"] == "teacher"


def test_create_validation(client, people, auth):
    r = client.post("/api/announcements", headers=auth("admin"), json={"title": "No content"})
    assert r.status_code == 422
    r = client.post("/api/announcements", headers=auth("admin"),
                    json={"title": "x", "content": "y", "target_audience": "parents"})
    assert r.status_code == 422
    r = client.post("/api/announcements", headers=auth("student"), json={"title": "x", "content": "y"})
    assert r.status_code == 403


def test_show_hides_other_audiences(client, people, auth):
    a = create(client, auth("admin"), "Staff only", "teacher")
    assert client.get(f"/api/announcements/{a['id']}", headers=auth("teacher")).status_code == 200
    assert client.get(f"/api/announcements/{a['id']}", headers=auth("student")).status_code == 404


def test_only_creator_or_admin_edits(client, people, auth):
    a = create(client, auth("teacher"), "Mine")
    r = client.put(f"/api/announcements/{a['id']}", headers=auth("other_teacher"), json={"title": "Hijack"})
    assert r.status_code == 403
    assert client.delete(f"/api/announcements/{a['id']}", headers=auth("other_teacher")).status_code == 403

    r = client.put(f"/api/announcements/{a['id']}", headers=auth("teacher"), json={"title": "Mine v2"})
    assert r.status_code == 200
    assert r.get_json()["data"]["title"] == "Mine v2"

    assert client.delete(f"/api/announcements/{a['id']}", headers=auth("admin")).status_code == 200
    assert client.get(f"/api/announcements/{a['id']}", headers=auth("admin")).status_code == 404


def test_admin_post_cannot_be_edited_by_teacher_with_same_id(client, people, auth):
    # ownership is (role, id), not just id
    a = create(client, auth("admin"), "Admin note")
    r = client.put(f"/api/announcements/{a['id']}", headers=auth("teacher"), json={"title": "x"})
    assert r.status_code == 403


def test_fan_out_follows_audience(app, client, people, auth):
    create(client, auth("admin"), "Exams " + "x" * 120, "student")
    with app.app_context():
        rows = Notification.query.filter_by(type="announcement").all()
        assert {(n.user_role, n.user_id) for n in rows} == {("student", people.student), ("student", people.student2)}
        n = rows[0]
        assert n.title.startswith("New Announcement: Exams")
        assert n.message.endswith("...")
        assert len(n.message) == 103
        assert n.link == "/student/announcements"

    create(client, auth("admin"), "Everyone")
    with app.app_context():
        roles = [n.user_role for n in Notification.query.filter_by(title="New Announcement: Everyone")]
        assert sorted(roles) == ["student", "student", "teacher", "teacher"]
        db.session.remove()
