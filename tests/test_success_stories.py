import pytest

from conftest import PNG_BYTES


def _png(name):
    return ("images", (name, PNG_BYTES, "image/png"))


@pytest.fixture
def author(make_user):
    user, headers = make_user("farmer", name="Amina")
    return {"user": user, "headers": headers}


def _create_story(client, author, title="Doubled my maize yield", files=None, **fields):
    data = {
        "title": title,
        "content": "Switched to drip irrigation and certified seed.",
        "crop_type": "Maize",
        "location": "Nakuru",
        "yield_improvement": "45.5",
        "yield_unit": "%",
    }
    data.update(fields)
    r = client.post("/api/success-stories", data=data, files=files, headers=author["headers"])
    assert r.status_code == 201, r.text
    return r.json()["story"]


def test_create_story_with_images_and_captions(client, author, public_dir):
    story = _create_story(
        client,
        author,
        files=[_png("before.png"), _png("after.png")],
        captions=["Before", "After"],
    )

    assert story["user"]["name"] == "Amina"
    assert story["yield_improvement"] == 45.5
    assert story["comments_count"] == 0
    assert [(i["caption"], i["order"]) for i in story["images"]] == [("Before", 0), ("After", 1)]
    for image in story["images"]:
        assert image["image_path"].startswith("success_stories/")
        assert (public_dir / image["image_path"]).is_file()


def test_story_requires_title_and_content(client, author):
    r = client.post("/api/success-stories", data={"title": "Only a title"}, headers=author["headers"])
    assert r.status_code == 422

    anonymous = client.post("/api/success-stories", data={"title": "T", "content": "C"})
    assert anonymous.status_code == 401


def test_bad_image_rejected(client, author):
    r = client.post(
        "/api/success-stories",
        data={"title": "T", "content": "C"},
        files=[("images", ("notes.txt", b"plain text", "text/plain"))],
        headers=author["headers"],
    )

    assert r.status_code == 422
    assert "images.0" in r.json()["errors"]


def test_update_appends_images_after_existing(client, author):
    story = _create_story(client, author, files=[_png("one.png")])

    r = client.put(
        f"/api/success-stories/{story['id']}",
        data={"title": "Tripled my maize yield", "captions": ["Harvest"]},
        files=[_png("two.png")],
        headers=author["headers"],
    )

    assert r.status_code == 200
    updated = r.json()["story"]
    assert updated["title"] == "Tripled my maize yield"
    assert updated["content"] == story["content"]
    assert [(i["order"], i["caption"]) for i in updated["images"]] == [(0, None), (1, "Harvest")]


def test_only_author_or_admin_manage(client, author, make_user, public_dir):
    story = _create_story(client, author, files=[_png("one.png")])
    _, stranger = make_user("farmer")
    _, admin = make_user("admin")
    url = f"/api/success-stories/{story['id']}"

    assert client.put(url, data={"title": "Hijacked"}, headers=stranger).status_code == 403
    assert client.delete(url, headers=stranger).status_code == 403

    assert client.delete(url, headers=admin).status_code == 200
    assert client.get(url).status_code == 404
    assert not (public_dir / story["images"][0]["image_path"]).exists()


def test_list_filters_and_my_stories(client, author, make_user):
    _create_story(client, author, title="Maize story")
    _create_story(client, author, title="Cassava story", crop_type="Cassava")
    other, other_headers = make_user("farmer")
    _create_story(client, {"headers": other_headers}, title="Beans story", crop_type="Beans")

    listed = client.get("/api/success-stories").json()["stories"]
    assert listed["total"] == 3
    assert [s["title"] for s in listed["results"]] == ["Beans story", "Cassava story", "Maize story"]

    cassava = client.get("/api/success-stories", params={"crop_type": "Cassava"}).json()["stories"]
    assert [s["title"] for s in cassava["results"]] == ["Cassava story"]

    searched = client.get("/api/success-stories", params={"search": "beans"}).json()["stories"]
    assert [s["title"] for s in searched["results"]] == ["Beans story"]

    mine = client.get("/api/success-stories/my-stories", headers=author["headers"]).json()["stories"]
    assert {s["title"] for s in mine["results"]} == {"Maize story", "Cassava story"}


def test_detail_counts_views_and_reports_like(client, author, make_user):
    story = _create_story(client, author)
    _, reader = make_user("customer")
    url = f"/api/success-stories/{story['id']}"

    liked = client.post(f"{url}/like", headers=reader).json()
    assert liked == {"message": "Story liked", "likes_count": 1, "is_liked": True}

    first = client.get(url, headers=reader).json()["story"]
    assert first["views_count"] == 1
    assert first["is_liked"] is True
    assert first["likes_count"] == 1

    second = client.get(url).json()["story"]
    assert second["views_count"] == 2
    assert "is_liked" not in second


# =========================
# COMMENTS
# =========================

def _comment(client, story, headers, text, parent_id=None):
    body = {"comment": text}
    if parent_id is not None:
        body["parent_id"] = parent_id
    return client.post(f"/api/success-stories/{story['id']}/comments", json=body, headers=headers)


def test_comment_tree_and_counter(client, author, make_user):
    story = _create_story(client, author)
    _, reader = make_user("farmer")

    top = _comment(client, story, reader, "How much did drip cost?").json()["comment"]
    reply = _comment(client, story, author["headers"], "About 300 dollars", parent_id=top["id"]).json()["comment"]
    _comment(client, story, reader, "Thanks!", parent_id=reply["id"])
    _comment(client, story, reader, "Great work")

    detail = client.get(f"/api/success-stories/{story['id']}").json()["story"]
    assert detail["comments_count"] == 4

    tree = detail["comments"]
    assert [c["comment"] for c in tree] == ["How much did drip cost?", "Great work"]
    assert tree[0]["depth"] == 0
    assert tree[0]["replies_count"] == 1
    nested = tree[0]["replies"][0]
    assert nested["comment"] == "About 300 dollars"
    assert nested["depth"] == 1
    assert nested["replies"][0]["depth"] == 2

    # the paginated listing shows the newest thread first
    listed = client.get(f"/api/success-stories/{story['id']}/comments").json()["comments"]
    assert listed["total"] == 2
    assert [c["comment"] for c in listed["results"]] == ["Great work", "How much did drip cost?"]
    assert listed["results"][1]["replies"][0]["replies"][0]["comment"] == "Thanks!"


def test_parent_must_belong_to_same_story(client, author):
    first = _create_story(client, author, title="First")
    second = _create_story(client, author, title="Second")
    foreign = _comment(client, first, author["headers"], "On the first").json()["comment"]

    r = _comment(client, second, author["headers"], "Misplaced", parent_id=foreign["id"])

    assert r.status_code == 422
    assert "parent_id" in r.json()["errors"]


def test_deleting_comment_removes_replies(client, author, make_user):
    story = _create_story(client, author)
    commenter, commenter_headers = make_user("farmer")
    _, stranger = make_user("farmer")

    top = _comment(client, story, commenter_headers, "Question").json()["comment"]
    _comment(client, story, author["headers"], "Answer", parent_id=top["id"])
    url = f"/api/success-stories/{story['id']}/comments/{top['id']}"

    assert client.delete(url, headers=stranger).status_code == 403

    # the story author may moderate comments on their story
    assert client.delete(url, headers=author["headers"]).status_code == 200

    detail = client.get(f"/api/success-stories/{story['id']}").json()["story"]
    assert detail["comments"] == []
    assert detail["comments_count"] == 0
