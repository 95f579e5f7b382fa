"""Third-party service credentials for the client portal.

Credential fields are stored Fernet-encrypted. List responses only expose a
masked view; the full values are returned only when a client user asks for
one credential by id.
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
import logging

from database import database
from models import Credential, CredentialService, CredentialStatus, to_document
from services.errors import NotFoundError, ValidationError
from utils.credential_templates import CREDENTIAL_FIELDS, credentials_complete, empty_credentials
from utils.crypto import decrypt_fields, encrypt_fields

logger = logging.getLogger(__name__)


def _service(name: Optional[str]) -> CredentialService:
    try:
        return CredentialService(name)
    except ValueError:
        supported = ", ".join(s.value for s in CredentialService)
        raise ValidationError(f"Unsupported service. Must be one of: {supported}")


def _mask(value: Any) -> str:
    text = str(value or "")
    if not text:
        return ""
    return "*" * max(len(text) - 4, 4) + text[-4:] if len(text) > 4 else "****"


def _public(credential: Dict[str, Any], reveal: bool = False) -> Dict[str, Any]:
    service = CredentialService(credential["service_name"])
    fields = empty_credentials(service)
    if credential.get("encrypted_credentials"):
        fields.update(decrypt_fields(credential["encrypted_credentials"]))
    if not reveal:
        fields = {k: _mask(v) for k, v in fields.items()}
    public = {k: v for k, v in credential.items() if k not in ("_id", "encrypted_credentials")}
    public["credentials"] = fields
    return public


async def list_credentials(client_id: str) -> List[Dict[str, Any]]:
    """All supported services for the client, creating DISCONNECTED placeholders as needed."""
    db = database.get_db()
    stored = await db.credentials.find({"client_id": client_id}, {"_id": 0}).to_list(100)
    present = {c["service_name"] for c in stored}

    missing = [s for s in CredentialService if s.value not in present]
    for service in missing:
        placeholder = to_document(Credential(client_id=client_id, service_name=service))
        key = {"client_id": client_id, "service_name": service.value}
        # one record per (client_id, service_name), also under concurrent first reads
        await db.credentials.update_one(
            key,
            {"$setOnInsert": {k: v for k, v in placeholder.items() if k not in key}},
            upsert=True,
        )
    if missing:
        stored = await db.credentials.find({"client_id": client_id}, {"_id": 0}).to_list(100)

    order = [s.value for s in CredentialService]
    stored.sort(key=lambda c: order.index(c["service_name"]) if c["service_name"] in order else len(order))
    return [_public(c) for c in stored]


async def get_credential(client_id: str, credential_id: str) -> Dict[str, Any]:
    db = database.get_db()
    credential = await db.credentials.find_one({"credential_id": credential_id, "client_id": client_id}, {"_id": 0})
    if not credential:
        raise NotFoundError("Credential not found or access denied")
    return _public(credential, reveal=True)


async def save_credential(
    client_id: str,
    service_name: Optional[str],
    data: Optional[Dict[str, Any]],
    credential_id: Optional[str] = None,
) -> Dict[str, Any]:
    """Create or update a credential.

    Status becomes CONNECTED when every required field for the service is
    present, DISCONNECTED otherwise. Creating a second record for the same
    service is rejected.
    """
    db = database.get_db()
    if not service_name or data is None:
        raise ValidationError("Missing required fields")
    service = _service(service_name)

    known = CREDENTIAL_FIELDS[service]
    fields = {k: str(v).strip() for k, v in data.items() if k in known and v is not None}
    valid = credentials_complete(service, fields)
    now = datetime.now(timezone.utc)
    update = {
        "encrypted_credentials": encrypt_fields(fields),
        "status": (CredentialStatus.CONNECTED if valid else CredentialStatus.DISCONNECTED).value,
        "last_verified_at": now if valid else None,
        "updated_at": now,
    }

    if credential_id:
        existing = await db.credentials.find_one(
            {"credential_id": credential_id, "client_id": client_id}, {"_id": 0}
        )
        if not existing:
            raise NotFoundError("Credential not found or access denied")
        if existing["service_name"] != service.value:
            raise ValidationError("Service name does not match the stored credential")
        await db.credentials.update_one({"credential_id": credential_id}, {"$set": update})
        existing.update(update)
        document = existing
    else:
        if await db.credentials.find_one({"client_id": client_id, "service_name": service.value}, {"_id": 0, "credential_id": 1}):
            raise ValidationError("Credential for this service already exists")
        document = to_document(Credential(client_id=client_id, service_name=service))
        document.update(update)
        await db.credentials.insert_one(document)
        document.pop("_id", None)

    logger.info(f"Credential for {service.value} saved for client {client_id} ({document['status']})")
    return _public(document)


async def delete_credential(client_id: str, credential_id: str) -> None:
    db = database.get_db()
    result = await db.credentials.delete_one({"credential_id": credential_id, "client_id": client_id})
    if result.deleted_count == 0:
        raise NotFoundError("Credential not found or access denied")
