import base64
import os

PNG = b"\x89PNG\r\n\x1a\nfake-image-bytes"


def test_update_profile_with_photo(app, client, people, auth):
    photo = "data:image/png;base64," + base64.b64encode(PNG).decode()
    r = client.put("/api/profile/update", headers=auth("teacher"),
                   json={"fullName": "Tom T. Teacher", "email": "Tom@School.edu", "profilePhoto": photo})
    assert r.status_code == 200
    data = r.get_json()["data"]
    assert data["name"] == "Tom T. Teacher"
    assert data["email"] == "tom@school.edu"
    assert data["role"] == "teacher"
    assert data["profile_photo"].startswith(f"/uploads/profiles/teacher_{people.teacher}_")
    assert data["profile_photo"].endswith(".png")
    path = os.path.join(app.config["UPLOAD_DIR"], data["profile_photo"][len("/uploads/"):])
    with open(path, "rb") as fh:
        assert fh.read() == PNG


def test_update_profile_validation(client, people, auth):
    assert client.put("/api/profile/update", headers=auth("student"), json={"fullName": "x"}).status_code == 422
    r = client.put("/api/profile/update", headers=auth("student"),
                   json={"fullName": "Stu", "email": "sam@example.com"})
    assert r.status_code == 409
    r = client.put("/api/profile/update", headers=auth("student"),
                   json={"fullName": "Stu", "email": "student@example.com", "profilePhoto": "data:text/plain;base64,aGk="})
    assert r.status_code == 422
    r = client.put("/api/profile/update", headers=auth("student"),
                   json={"fullName": "Stu", "email": "student@example.com", "profilePhoto": "data:image/png;base64,***"})
    assert r.status_code == 422


def test_same_email_in_another_role_is_allowed(client, people, auth):
    r = client.put("/api/profile/update", headers=auth("admin"),
                   json={"fullName": "Alice", "email": "teacher@example.com"})
    assert r.status_code == 200


def test_change_password(client, people, auth):
    url = "/api/profile/change-password"
    r = client.put(url, headers=auth("student"), json={"newPassword": "abcdef"})
    assert r.status_code == 422
    assert "currentPassword" in r.get_json()["errors"]
    r = client.put(url, headers=auth("student"), json={"currentPassword": "nope", "newPassword": "abcdef"})
    assert r.status_code == 400
    assert r.get_json()["message"] == "Incorrect current password"
    r = client.put(url, headers=auth("student"), json={"currentPassword": "student123", "newPassword": "abc"})
    assert r.status_code == 422
    r = client.put(url, headers=auth("student"), json={"currentPassword": "student123", "newPassword": "abcdef"})
    assert r.status_code == 200

    r = client.post("/api/auth/login", json={"email": "student@example.com", "password": "abcdef", "role": "student"})
    assert r.status_code == 200
