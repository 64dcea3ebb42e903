from __future__ import annotations
from flask import Blueprint, abort, current_app, jsonify, request

from ..runtime import get_runtime
from ..utils.signature import verify_signature
from .payloads import PING, PONG, Interaction

interactions_bp = Blueprint("interactions", __name__)


@interactions_bp.route("/interactions", methods=["POST"])
def receive_interaction():
    if current_app.config.get("VERIFY_SIGNATURES", True):
        ok = verify_signature(
            current_app.config.get("DISCORD_PUBLIC_KEY", ""),
            request.headers.get("X-Signature-Ed25519", ""),
            request.headers.get("X-Signature-Timestamp", ""),
            request.get_data(),
        )
        if not ok:
            current_app.logger.warning("Rejected interaction with invalid signature from %s", request.remote_addr)
            abort(401, "invalid request signature")

    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        abort(400, "invalid payload")
    if payload.get("type") == PING:
        return jsonify({"type": PONG})

    ix = Interaction(payload)
    current_app.logger.info("Interaction type=%s root=%s guild=%s user=%s", ix.type, ix.root, ix.guild_id, ix.user_id)
    return jsonify(get_runtime().registry.dispatch(ix))
