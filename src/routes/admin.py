from flask import Blueprint, jsonify, request
import logging

from models.requests import (
    BulkMessageRequest,
    ConversationFilters,
    SEND_MESSAGE_FIELDS,
    attachment_from_payload,
)
from routes.messages import json_payload, serialize_message, services
from utils.auth import current_user_id
from utils.errors import ValidationError
from utils.util import validate_payload

logger = logging.getLogger("marketplace_messaging")

admin_bp = Blueprint("admin", __name__, url_prefix="/api/admin")

START_CONVERSATION_FIELDS = [
    {"field": "user_id", "type": str, "required": True},
    {"field": "subject", "type": str, "required": False},
]

ADMIN_MESSAGE_FIELDS = [
    f for f in SEND_MESSAGE_FIELDS if f["field"] != "recipient_id"
]


@admin_bp.route("/conversations", methods=["GET"])
def list_conversations():
    actor_id = current_user_id()
    filters = ConversationFilters.from_args(request.args)
    page = services().admin.list_conversations(actor_id, filters)
    return jsonify(page.to_dict()), 200


@admin_bp.route("/conversations/stats", methods=["GET"])
def conversation_stats():
    actor_id = current_user_id()
    return jsonify(services().admin.conversation_stats(actor_id)), 200


@admin_bp.route("/conversations", methods=["POST"])
def start_conversation():
    logger.info("admin start_conversation")
    actor_id = current_user_id()
    data = json_payload()
    validate_payload(data, START_CONVERSATION_FIELDS)

    conversation = services().admin.start_conversation(
        actor_id, data["user_id"], data.get("subject")
    )
    return jsonify(conversation.to_dict()), 200


@admin_bp.route("/conversations/<conversation_id>", methods=["GET"])
def get_conversation(conversation_id):
    actor_id = current_user_id()
    conversation, profiles, messages = services().admin.get_conversation_detail(
        actor_id, conversation_id
    )
    attachments = services().attachments

    data = conversation.to_dict()
    data["participants"] = {
        user_id: profile.to_dict() for user_id, profile in profiles.items()
    }
    data["messages"] = [serialize_message(m, attachments) for m in messages]
    return jsonify(data), 200


@admin_bp.route("/conversations/<conversation_id>/messages", methods=["POST"])
def send_message(conversation_id):
    logger.info(f"admin send_message: {conversation_id}")
    actor_id = current_user_id()
    data = json_payload()
    validate_payload(data, ADMIN_MESSAGE_FIELDS, ["content", "attachment"])

    message = services().admin.send_message(
        actor_id,
        conversation_id,
        data.get("content"),
        attachment_from_payload(data.get("attachment")),
    )
    return jsonify(serialize_message(message, services().attachments)), 201


@admin_bp.route("/bulk_messages", methods=["POST"])
def bulk_messages():
    logger.info("admin bulk_messages")
    actor_id = current_user_id()
    bulk_request = BulkMessageRequest.from_payload(json_payload())

    result = services().admin.bulk_send(actor_id, bulk_request)
    # partial failure is still a completed request
    status_code = 502 if result.all_failed else 200
    return jsonify(result.to_dict()), status_code


@admin_bp.route("/conversations/<conversation_id>/status", methods=["PATCH"])
def set_status(conversation_id):
    actor_id = current_user_id()
    data = json_payload()
    validate_payload(data, [{"field": "status", "type": str, "required": True}])
    conversation = services().admin.set_status(actor_id, conversation_id, data["status"])
    return jsonify(conversation.to_dict()), 200


@admin_bp.route("/conversations/<conversation_id>/priority", methods=["PATCH"])
def set_priority(conversation_id):
    actor_id = current_user_id()
    data = json_payload()
    validate_payload(data, [{"field": "priority", "type": str, "required": True}])
    conversation = services().admin.set_priority(
        actor_id, conversation_id, data["priority"]
    )
    return jsonify(conversation.to_dict()), 200


@admin_bp.route("/conversations/<conversation_id>/tags", methods=["PATCH"])
def set_tags(conversation_id):
    actor_id = current_user_id()
    data = json_payload()
    validate_payload(data, [{"field": "tags", "type": list[str], "required": True}])
    conversation = services().admin.set_tags(actor_id, conversation_id, data["tags"])
    return jsonify(conversation.to_dict()), 200


@admin_bp.route("/conversations/<conversation_id>/notes", methods=["PATCH"])
def set_notes(conversation_id):
    actor_id = current_user_id()
    data = json_payload()
    notes = data.get("notes")
    if notes is not None and not isinstance(notes, str):
        raise ValidationError("field notes must be of type str")
    conversation = services().admin.set_notes(actor_id, conversation_id, notes)
    return jsonify(conversation.to_dict()), 200


@admin_bp.route("/conversations/<conversation_id>", methods=["DELETE"])
def delete_conversation(conversation_id):
    logger.info(f"admin delete_conversation: {conversation_id}")
    actor_id = current_user_id()
    data = request.get_json(silent=True) or {}

    removed = services().admin.delete_conversation(
        actor_id, conversation_id, confirm=data.get("confirm") is True
    )
    return (
        jsonify({"status": "conversation deleted", "attachments_removed": removed}),
        200,
    )
