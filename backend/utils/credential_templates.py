"""Field templates and presence checks for third-party service credentials."""
from typing import Any, Dict

from models import CredentialService

# Field name -> required
CREDENTIAL_FIELDS: Dict[CredentialService, Dict[str, bool]] = {
    CredentialService.SLACK: {"workspaceUrl": True, "botUserOAuthToken": True, "signingSecret": True},
    CredentialService.GITHUB: {"personalAccessToken": True, "owner": True, "repository": False},
    CredentialService.JIRA: {"domain": True, "email": True, "apiToken": True},
    CredentialService.SALESFORCE: {
        "instanceUrl": True,
        "clientId": True,
        "clientSecret": True,
        "username": True,
        "password": True,
    },
    CredentialService.AWS: {"accessKeyId": True, "secretAccessKey": True, "region": True},
}


def empty_credentials(service: CredentialService) -> Dict[str, str]:
    return {name: "" for name in CREDENTIAL_FIELDS[service]}


def credentials_complete(service: CredentialService, data: Dict[str, Any]) -> bool:
    """True when every required field for the service is present and non-blank.

    Only presence is checked; nothing is verified against the provider.
    """
    for name, required in CREDENTIAL_FIELDS[service].items():
        if required and not str(data.get(name) or "").strip():
            return False
    return True
