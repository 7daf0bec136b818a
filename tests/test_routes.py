import io

from conftest import ADMIN, COMPANY, TALENT, TALENT_2, as_user


def start_thread(client, content="Hello"):
    response = client.post(
        "/api/messages",
        json={"recipient_id": COMPANY, "content": content},
        headers=as_user(TALENT),
    )
    assert response.status_code == 201
    return response.get_json()


def test_missing_identity_is_unauthorized(client):
    response = client.get("/api/conversations")

    assert response.status_code == 401
    assert "X-User-Id" in response.get_json()["error"]


def test_unknown_route_returns_json(client):
    response = client.get("/api/nothing-here", headers=as_user(TALENT))

    assert response.status_code == 404
    assert "error" in response.get_json()


def test_message_round_trip(client):
    message = start_thread(client)
    conversation_id = message["conversation_id"]

    listing = client.get("/api/conversations", headers=as_user(COMPANY)).get_json()
    assert listing["conversations"][0]["unread_count"] == 1
    assert listing["conversations"][0]["last_message_text"] == "Hello"

    response = client.get(
        f"/api/conversations/{conversation_id}/messages", headers=as_user(COMPANY)
    )
    messages = response.get_json()["messages"]
    assert [m["content"] for m in messages] == ["Hello"]
    assert messages[0]["delivered_at"] is not None
    assert messages[0]["is_read"] is False

    response = client.post(
        f"/api/conversations/{conversation_id}/read", headers=as_user(COMPANY)
    )
    assert response.get_json() == {"marked_read": 1}

    unread = client.get(
        f"/api/conversations/{conversation_id}/unread_count", headers=as_user(COMPANY)
    )
    assert unread.get_json() == {"unread_count": 0}
    assert client.get("/api/unread_count", headers=as_user(COMPANY)).get_json() == {
        "unread_count": 0
    }


def test_reply_in_existing_conversation(client):
    conversation_id = start_thread(client)["conversation_id"]

    response = client.post(
        f"/api/conversations/{conversation_id}/messages",
        json={"recipient_id": TALENT, "content": "Hi Maria"},
        headers=as_user(COMPANY),
    )

    assert response.status_code == 201
    assert response.get_json()["recipient_id"] == TALENT


def test_outsider_cannot_read_conversation(client):
    conversation_id = start_thread(client)["conversation_id"]

    response = client.get(
        f"/api/conversations/{conversation_id}/messages", headers=as_user(ADMIN)
    )

    assert response.status_code == 403


def test_empty_message_rejected(client):
    response = client.post(
        "/api/messages", json={"recipient_id": COMPANY}, headers=as_user(TALENT)
    )

    assert response.status_code == 400


def test_edit_and_delete_are_sender_only(client):
    message = start_thread(client)

    response = client.patch(
        f"/api/messages/{message['id']}", json={"content": "Nope"}, headers=as_user(COMPANY)
    )
    assert response.status_code == 403

    response = client.delete(f"/api/messages/{message['id']}", headers=as_user(COMPANY))
    assert response.status_code == 403

    response = client.patch(
        f"/api/messages/{message['id']}",
        json={"content": "Hello there"},
        headers=as_user(TALENT),
    )
    assert response.status_code == 200
    assert response.get_json()["content"] == "Hello there"
    assert response.get_json()["edited_at"] is not None

    response = client.delete(f"/api/messages/{message['id']}", headers=as_user(TALENT))
    assert response.status_code == 200

    response = client.delete(f"/api/messages/{message['id']}", headers=as_user(TALENT))
    assert response.status_code == 404


def test_mark_delivered(client):
    message = start_thread(client)

    response = client.post(
        f"/api/messages/{message['id']}/delivered", headers=as_user(COMPANY)
    )

    assert response.status_code == 200
    assert response.get_json()["changed"] is True


def test_upload_and_send_attachment(client, storage):
    response = client.post(
        "/api/attachments",
        data={"file": (io.BytesIO(b"%PDF-1.4 resume"), "resume.pdf", "application/pdf")},
        content_type="multipart/form-data",
        headers=as_user(TALENT),
    )
    assert response.status_code == 201
    attachment = response.get_json()
    assert attachment["remote_ref"].startswith(f"message-attachments/{TALENT}/")
    assert attachment["access_url"].startswith("memory://")

    response = client.post(
        "/api/messages",
        json={
            "recipient_id": COMPANY,
            "attachment": {
                "remote_ref": attachment["remote_ref"],
                "display_name": attachment["display_name"],
                "size": attachment["size"],
                "mime_class": attachment["mime_class"],
            },
        },
        headers=as_user(TALENT),
    )
    assert response.status_code == 201
    sent = response.get_json()
    assert sent["attachment"]["remote_ref"] == attachment["remote_ref"]
    assert sent["attachment"]["access_url"].startswith("memory://")

    response = client.get(
        "/api/attachments/access_url",
        query_string={"ref": attachment["remote_ref"], "ttl": 60},
        headers=as_user(COMPANY),
    )
    assert response.get_json()["url"].startswith("memory://")


def upload_pdf(client, user_id, name="contract.pdf"):
    response = client.post(
        "/api/attachments",
        data={"file": (io.BytesIO(b"%PDF-1.4 private"), name, "application/pdf")},
        content_type="multipart/form-data",
        headers=as_user(user_id),
    )
    assert response.status_code == 201
    return response.get_json()


def test_access_url_refused_to_unrelated_user(client):
    attachment = upload_pdf(client, TALENT)

    response = client.get(
        "/api/attachments/access_url",
        query_string={"ref": attachment["remote_ref"]},
        headers=as_user(TALENT_2),
    )

    assert response.status_code == 403
    assert "url" not in response.get_json()


def test_access_url_revoked_when_message_deleted(client):
    attachment = upload_pdf(client, TALENT)
    sent = client.post(
        "/api/messages",
        json={
            "recipient_id": COMPANY,
            "attachment": {
                "remote_ref": attachment["remote_ref"],
                "display_name": attachment["display_name"],
                "size": attachment["size"],
                "mime_class": attachment["mime_class"],
            },
        },
        headers=as_user(TALENT),
    ).get_json()

    client.delete(f"/api/messages/{sent['id']}", headers=as_user(TALENT))

    response = client.get(
        "/api/attachments/access_url",
        query_string={"ref": attachment["remote_ref"]},
        headers=as_user(COMPANY),
    )
    assert response.status_code == 403


def test_cannot_send_someone_elses_attachment(client):
    attachment = upload_pdf(client, TALENT, "cv.pdf")

    response = client.post(
        "/api/messages",
        json={
            "recipient_id": COMPANY,
            "attachment": {
                "remote_ref": attachment["remote_ref"],
                "display_name": "cv.pdf",
                "size": attachment["size"],
                "mime_class": "file",
            },
        },
        headers=as_user(TALENT_2),
    )

    assert response.status_code == 403
    listing = client.get("/api/conversations", headers=as_user(TALENT_2)).get_json()
    assert listing["conversations"] == []


def test_user_cannot_open_admin_conversation(client):
    response = client.post(
        "/api/messages",
        json={"recipient_id": COMPANY, "content": "Official notice", "context": "admin"},
        headers=as_user(TALENT),
    )

    assert response.status_code == 403
    listing = client.get("/api/admin/conversations", headers=as_user(ADMIN)).get_json()
    assert listing["total"] == 0


def test_upload_validation_errors(client, storage):
    def upload(content, name, content_type):
        return client.post(
            "/api/attachments",
            data={"file": (io.BytesIO(content), name, content_type)},
            content_type="multipart/form-data",
            headers=as_user(TALENT),
        )

    assert upload(b"", "empty.pdf", "application/pdf").status_code == 400
    assert upload(b"PK", "a.zip", "application/zip").status_code == 415
    assert upload(b"x" * (2 * 1024 * 1024 + 1), "big.png", "image/png").status_code == 413
    assert storage.calls == []


def test_typing_routes(client):
    conversation_id = start_thread(client)["conversation_id"]

    client.post(f"/api/conversations/{conversation_id}/typing", headers=as_user(TALENT))
    response = client.get(
        f"/api/conversations/{conversation_id}/typing", headers=as_user(COMPANY)
    )
    assert response.get_json() == {"counterpart_typing": True}

    # the typer doesn't see their own signal
    response = client.get(
        f"/api/conversations/{conversation_id}/typing", headers=as_user(TALENT)
    )
    assert response.get_json() == {"counterpart_typing": False}

    client.delete(f"/api/conversations/{conversation_id}/typing", headers=as_user(TALENT))
    response = client.get(
        f"/api/conversations/{conversation_id}/typing", headers=as_user(COMPANY)
    )
    assert response.get_json() == {"counterpart_typing": False}


def test_typing_signal_expires(client, typing_clock):
    conversation_id = start_thread(client)["conversation_id"]

    client.post(f"/api/conversations/{conversation_id}/typing", headers=as_user(TALENT))
    typing_clock.advance(6)

    response = client.get(
        f"/api/conversations/{conversation_id}/typing", headers=as_user(COMPANY)
    )
    assert response.get_json() == {"counterpart_typing": False}


# admin


def test_admin_routes_reject_non_admins(client):
    response = client.get("/api/admin/conversations", headers=as_user(TALENT))

    assert response.status_code == 403


def test_admin_conversation_lifecycle(client):
    response = client.post(
        "/api/admin/conversations",
        json={"user_id": COMPANY, "subject": "Verification"},
        headers=as_user(ADMIN),
    )
    assert response.status_code == 200
    conversation_id = response.get_json()["id"]

    response = client.post(
        f"/api/admin/conversations/{conversation_id}/messages",
        json={"content": "Please upload your documents"},
        headers=as_user(ADMIN),
    )
    assert response.status_code == 201
    assert response.get_json()["recipient_id"] == COMPANY

    for field, value in [
        ("status", "pending"),
        ("priority", "high"),
        ("tags", ["kyc"]),
        ("notes", "waiting on docs"),
    ]:
        response = client.patch(
            f"/api/admin/conversations/{conversation_id}/{field}",
            json={field: value},
            headers=as_user(ADMIN),
        )
        assert response.status_code == 200

    detail = client.get(
        f"/api/admin/conversations/{conversation_id}", headers=as_user(ADMIN)
    ).get_json()
    assert detail["status"] == "pending"
    assert detail["priority"] == "high"
    assert detail["tags"] == ["kyc"]
    assert detail["admin_notes"] == "waiting on docs"
    assert detail["participants"][COMPANY]["company_name"] == "Tech Corp"
    assert [m["content"] for m in detail["messages"]] == ["Please upload your documents"]

    listing = client.get(
        "/api/admin/conversations",
        query_string={"status": "pending", "priority": "all", "q": "tech"},
        headers=as_user(ADMIN),
    ).get_json()
    assert listing["total"] == 1
    assert listing["items"][0]["id"] == conversation_id

    stats = client.get("/api/admin/conversations/stats", headers=as_user(ADMIN)).get_json()
    assert stats["pending"] == 1


def test_admin_rejects_bad_status(client):
    conversation_id = client.post(
        "/api/admin/conversations", json={"user_id": TALENT}, headers=as_user(ADMIN)
    ).get_json()["id"]

    response = client.patch(
        f"/api/admin/conversations/{conversation_id}/status",
        json={"status": "closed"},
        headers=as_user(ADMIN),
    )

    assert response.status_code == 400


def test_bulk_messages_partial_failure(client):
    response = client.post(
        "/api/admin/bulk_messages",
        json={"target_ids": [TALENT, "ghost"], "content": "Hi {{first_name}}"},
        headers=as_user(ADMIN),
    )

    assert response.status_code == 200
    result = response.get_json()
    assert result["success_count"] == 1
    assert result["failure_count"] == 1
    assert result["failures"][0]["target_id"] == "ghost"


def test_bulk_messages_all_failed(client):
    response = client.post(
        "/api/admin/bulk_messages",
        json={"target_ids": ["ghost-1", "ghost-2"], "content": "Hi"},
        headers=as_user(ADMIN),
    )

    assert response.status_code == 502
    assert response.get_json()["failure_count"] == 2


def test_delete_conversation_needs_confirmation(client):
    conversation_id = start_thread(client)["conversation_id"]

    response = client.delete(
        f"/api/admin/conversations/{conversation_id}", headers=as_user(ADMIN)
    )
    assert response.status_code == 409

    response = client.delete(
        f"/api/admin/conversations/{conversation_id}",
        json={"confirm": True},
        headers=as_user(ADMIN),
    )
    assert response.status_code == 200

    response = client.get(
        f"/api/conversations/{conversation_id}/messages", headers=as_user(TALENT)
    )
    assert response.status_code == 404
