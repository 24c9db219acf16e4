"""
HTTP entry point for identity reconciliation.

    POST /identify         {"email": ..., "phoneNumber": ...}
    GET  /contacts/<id>    consolidated cluster of any contact
"""

from typing import Callable, Optional

from flask import Flask, jsonify, request
from pydantic import ValidationError
from sqlalchemy.orm import Session

from api.schemas import ErrorResponse, IdentifyRequest, render_contact
from config.logging import logger
from config.settings import settings
from processing.identity import (
    ErrorKind,
    IdentityError,
    IdentityResolver,
    InvalidInputError,
    KeyedLocks,
    SqlContactGateway,
)

STATUS_BY_KIND = {
    ErrorKind.INVALID_INPUT: 400,
    ErrorKind.CONFLICT_NOT_RESOLVABLE: 409,
    ErrorKind.STORE_FAILURE: 500,
}


def error_response(exc: IdentityError):
    status = STATUS_BY_KIND[exc.kind]
    if status >= 500:
        logger.error(f"Request failed: {exc}")
    else:
        logger.warning(f"Request rejected: {exc}")
    body = ErrorResponse(code=exc.kind.value, message=exc.message)
    return jsonify(body.model_dump()), status


def create_app(
    session_factory: Optional[Callable[[], Session]] = None,
    locks: Optional[KeyedLocks] = None,
    legacy_wire_names: Optional[bool] = None,
) -> Flask:
    """
    Build the Flask app.

    Args:
        session_factory: Callable returning a new SQLAlchemy session
            (defaults to processing.database.SessionLocal)
        locks: Lock registry shared by all requests (defaults to the
            process-wide registry)
        legacy_wire_names: Emit "primaryContatctId"; defaults to
            settings.LEGACY_WIRE_FIELD_NAMES
    """
    if session_factory is None:
        from processing.database import SessionLocal
        session_factory = SessionLocal
    if legacy_wire_names is None:
        legacy_wire_names = settings.LEGACY_WIRE_FIELD_NAMES

    app = Flask(__name__)

    def run_resolver(action):
        db = session_factory()
        try:
            return action(IdentityResolver(SqlContactGateway(db), locks=locks))
        finally:
            db.close()

    @app.post("/identify")
    def identify():
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            return error_response(InvalidInputError("Request body must be a JSON object"))

        try:
            body = IdentifyRequest.model_validate(payload)
        except ValidationError as exc:
            fields = ", ".join(".".join(str(p) for p in e["loc"]) for e in exc.errors())
            return error_response(InvalidInputError(f"Invalid value for {fields}"))

        try:
            contact = run_resolver(
                lambda resolver: resolver.resolve(email=body.email, phone=body.phone_number)
            )
        except IdentityError as exc:
            return error_response(exc)

        return jsonify(render_contact(contact, legacy_wire_names)), 200

    @app.get("/contacts/<int:contact_id>")
    def show_contact(contact_id: int):
        try:
            contact = run_resolver(lambda resolver: resolver.cluster_of(contact_id))
        except IdentityError as exc:
            return error_response(exc)

        if contact is None:
            body = ErrorResponse(code="not_found", message=f"No contact with id {contact_id}")
            return jsonify(body.model_dump()), 404
        return jsonify(render_contact(contact, legacy_wire_names)), 200

    return app
