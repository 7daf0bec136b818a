from flask import Blueprint, current_app, jsonify, request
import logging

from models.enums import ConversationContext
from models.message import Message
from models.requests import DirectMessageRequest, EditMessageRequest, SendMessageRequest
from services import MessagingServices
from services.attachments import AttachmentPipeline
from utils.auth import current_user_id
from utils.errors import ValidationError

logger = logging.getLogger("marketplace_messaging")

messages_bp = Blueprint("messages", __name__, url_prefix="/api")


def services() -> MessagingServices:
    return current_app.extensions["messaging"]


def json_payload() -> dict:
    data = request.get_json(silent=True)
    if data is None:
        raise ValidationError("missing json payload")
    return data


def serialize_message(message: Message, attachments: AttachmentPipeline) -> dict:
    """Message as json, with a freshly signed url for its attachment"""
    data = message.to_dict()
    if message.attachment_ref:
        data["attachment"]["access_url"] = attachments.get_access_url(
            message.attachment_ref
        )
    return data


# conversations


@messages_bp.route("/conversations", methods=["POST"])
def start_conversation():
    logger.info("start_conversation")
    user_id = current_user_id()
    data = json_payload()

    counterpart_id = data.get("counterpart_id")
    if not isinstance(counterpart_id, str) or not counterpart_id.strip():
        raise ValidationError("payload missing required field: counterpart_id")
    if counterpart_id == user_id:
        raise ValidationError("cannot start a conversation with yourself")

    conversation_id = services().resolver.ensure_conversation(
        user_id,
        counterpart_id,
        ConversationContext.APPLICATION,
        data.get("subject"),
    )
    conversation = services().resolver.get_conversation(conversation_id)
    return jsonify(conversation.to_dict()), 200


@messages_bp.route("/conversations", methods=["GET"])
def list_conversations():
    user_id = current_user_id()
    return jsonify({"conversations": services().resolver.list_for_participant(user_id)}), 200


@messages_bp.route("/conversations/<conversation_id>/messages", methods=["GET"])
def get_messages(conversation_id):
    user_id = current_user_id()
    services().resolver.get_for_participant(conversation_id, user_id)
    messages = services().messages.list_messages(conversation_id, user_id)
    attachments = services().attachments
    return (
        jsonify({"messages": [serialize_message(m, attachments) for m in messages]}),
        200,
    )


@messages_bp.route("/conversations/<conversation_id>/messages", methods=["POST"])
def send_message(conversation_id):
    logger.info(f"send_message: {conversation_id}")
    user_id = current_user_id()
    send_request = SendMessageRequest.from_payload(json_payload(), conversation_id, user_id)
    message = services().messages.send(send_request)
    return jsonify(serialize_message(message, services().attachments)), 201


@messages_bp.route("/messages", methods=["POST"])
def send_direct_message():
    logger.info("send_direct_message")
    user_id = current_user_id()
    direct_request = DirectMessageRequest.from_payload(json_payload(), user_id)
    message = services().messages.send_direct(direct_request)
    return jsonify(serialize_message(message, services().attachments)), 201


@messages_bp.route("/conversations/<conversation_id>/read", methods=["POST"])
def mark_read(conversation_id):
    user_id = current_user_id()
    count = services().messages.mark_read(conversation_id, user_id)
    return jsonify({"marked_read": count}), 200


@messages_bp.route("/conversations/<conversation_id>/unread_count", methods=["GET"])
def conversation_unread_count(conversation_id):
    user_id = current_user_id()
    services().resolver.get_for_participant(conversation_id, user_id)
    count = services().messages.unread_count(conversation_id, user_id)
    return jsonify({"unread_count": count}), 200


@messages_bp.route("/unread_count", methods=["GET"])
def total_unread_count():
    user_id = current_user_id()
    return jsonify({"unread_count": services().messages.total_unread(user_id)}), 200


# single messages


@messages_bp.route("/messages/<int:message_id>/delivered", methods=["POST"])
def mark_delivered(message_id):
    user_id = current_user_id()
    changed = services().messages.mark_delivered(message_id, user_id)
    return jsonify({"delivered": True, "changed": changed}), 200


@messages_bp.route("/messages/<int:message_id>", methods=["PATCH"])
def edit_message(message_id):
    logger.info(f"edit_message: {message_id}")
    user_id = current_user_id()
    edit_request = EditMessageRequest.from_payload(json_payload(), message_id, user_id)
    message = services().messages.edit(edit_request)
    return jsonify(serialize_message(message, services().attachments)), 200


@messages_bp.route("/messages/<int:message_id>", methods=["DELETE"])
def delete_message(message_id):
    logger.info(f"delete_message: {message_id}")
    user_id = current_user_id()
    services().messages.delete(message_id, user_id)
    return jsonify({"status": "message deleted"}), 200


# attachments


@messages_bp.route("/attachments", methods=["POST"])
def upload_attachment():
    logger.info("upload_attachment")
    user_id = current_user_id()
    upload = request.files.get("file")
    if upload is None:
        raise ValidationError("multipart field 'file' is required")

    attachment = services().attachments.upload(
        upload.read(), user_id, upload.filename, upload.mimetype
    )
    data = attachment.to_dict()
    data["access_url"] = services().attachments.get_access_url(attachment.remote_ref)
    return jsonify(data), 201


@messages_bp.route("/attachments/access_url", methods=["GET"])
def attachment_access_url():
    user_id = current_user_id()
    remote_ref = request.args.get("ref")
    if not remote_ref:
        raise ValidationError("query parameter 'ref' is required")
    services().messages.authorize_attachment(remote_ref, user_id)
    ttl = request.args.get("ttl", type=int)
    if ttl is not None and ttl <= 0:
        raise ValidationError("'ttl' must be a positive number of seconds")
    return jsonify({"url": services().attachments.get_access_url(remote_ref, ttl)}), 200


# typing presence


@messages_bp.route("/conversations/<conversation_id>/typing", methods=["POST"])
def start_typing(conversation_id):
    user_id = current_user_id()
    services().resolver.get_for_participant(conversation_id, user_id)
    services().typing.signal_typing(conversation_id, user_id)
    return jsonify({"typing": True}), 200


@messages_bp.route("/conversations/<conversation_id>/typing", methods=["DELETE"])
def stop_typing(conversation_id):
    user_id = current_user_id()
    services().typing.signal_stopped_typing(conversation_id, user_id)
    return jsonify({"typing": False}), 200


@messages_bp.route("/conversations/<conversation_id>/typing", methods=["GET"])
def typing_status(conversation_id):
    user_id = current_user_id()
    services().resolver.get_for_participant(conversation_id, user_id)
    typing = services().typing.is_anyone_else_typing(conversation_id, user_id)
    return jsonify({"counterpart_typing": typing}), 200
