"""
Encrypted credential store.

Credentials are encrypted with AES-256-GCM under a key derived from the
machine and user, so a copied state file is useless elsewhere. Two credential
kinds exist, the sales API and the FTP destination, each with its own schema.
"""
import getpass
import hashlib
import json
import logging
import os
import platform
import socket
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from morrisons_edi.storage.state import StateStore

logger = logging.getLogger(__name__)

API_CREDENTIALS_KEY = 'syncTool_apiCredentials'
FTP_CREDENTIALS_KEY = 'syncTool_ftpCredentials'

KEY_SALT = 'sync-tool-secret-salt-2024'
AAD = b'sync-tool-auth-v2'
IV_LENGTH = 12
TAG_LENGTH = 16

WEAK_SECRET_MARKERS = ('password', '123456')


class CredentialError(Exception):
    """Credentials could not be decrypted, parsed or validated"""
    pass


class ApiCredentials(BaseModel):
    """Sales API client credentials"""
    model_config = ConfigDict(populate_by_name=True)

    kind: Literal['api'] = 'api'
    client_id: str = Field(..., alias='clientId')
    secret_key: str = Field(..., alias='secretKey')
    account_key: str = Field('', alias='accountKey')

    def format_errors(self) -> List[str]:
        errors = []
        if len(self.client_id) < 8:
            errors.append('Client ID must be at least 8 characters')
        if len(self.secret_key) < 16:
            errors.append('Secret Key must be at least 16 characters')
        if len(self.account_key) < 8:
            errors.append('Account Key must be at least 8 characters')
        if any(marker in self.secret_key.lower() for marker in WEAK_SECRET_MARKERS):
            errors.append('Secret Key appears to be weak')
        return errors


class FtpCredentials(BaseModel):
    """Destination for built interchanges"""
    model_config = ConfigDict(populate_by_name=True)

    kind: Literal['ftp'] = 'ftp'
    host: str
    port: int = 22
    username: str
    password: str
    directory: str = '/'
    secure: bool = True

    @field_validator('host', 'username', 'directory')
    @classmethod
    def strip_whitespace(cls, v):
        return v.strip()

    def format_errors(self) -> List[str]:
        errors = []
        if len(self.host) < 3:
            errors.append('Host is required')
        if not 1 <= self.port <= 65535:
            errors.append('Port must be between 1 and 65535')
        if not self.username:
            errors.append('Username is required')
        if not self.password:
            errors.append('Password is required')
        return errors


Credentials = Union[ApiCredentials, FtpCredentials]

_KIND_KEYS = {
    'api': (API_CREDENTIALS_KEY, ApiCredentials),
    'ftp': (FTP_CREDENTIALS_KEY, FtpCredentials),
}


def migrate_api_payload(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Convert the legacy ``{username, password}`` API shape to the current one"""
    if 'clientId' in payload or 'client_id' in payload:
        return payload
    if 'username' in payload:
        return {
            'clientId': payload.get('username') or '',
            'secretKey': payload.get('password') or '',
            'accountKey': payload.get('accountKey') or '',
        }
    return payload


def _username() -> str:
    try:
        return getpass.getuser()
    except (KeyError, OSError):
        # no login name in some service environments
        return ''


def machine_key(user_data_path: str = '') -> bytes:
    """SHA-256 of machine and user identifiers plus the application salt"""
    machine_id = '|'.join([
        socket.gethostname(),
        _username(),
        user_data_path,
        platform.system().lower(),
        platform.machine(),
    ])
    digest = hashlib.sha256()
    digest.update(machine_id.encode('utf-8'))
    digest.update(KEY_SALT.encode('utf-8'))
    return digest.digest()


class Encryptor:
    """AES-256-GCM with a random 12 byte IV per message"""

    def __init__(self, key: bytes):
        if len(key) != 32:
            raise CredentialError('Encryption key must be 32 bytes')
        self._aesgcm = AESGCM(key)

    def encrypt(self, text: str) -> Dict[str, str]:
        iv = os.urandom(IV_LENGTH)
        sealed = self._aesgcm.encrypt(iv, text.encode('utf-8'), AAD)
        return {
            'encrypted': sealed[:-TAG_LENGTH].hex(),
            'iv': iv.hex(),
            'authTag': sealed[-TAG_LENGTH:].hex(),
            'aad': AAD.hex(),
            'timestamp': datetime.now().isoformat(),
        }

    def decrypt(self, blob: Dict[str, str]) -> str:
        try:
            iv = bytes.fromhex(blob['iv'])
            sealed = bytes.fromhex(blob['encrypted']) + bytes.fromhex(blob['authTag'])
            aad = bytes.fromhex(blob['aad']) if blob.get('aad') else AAD
            return self._aesgcm.decrypt(iv, sealed, aad).decode('utf-8')
        except (KeyError, TypeError, ValueError, InvalidTag) as e:
            raise CredentialError('Failed to decrypt data') from e


class CredentialStore:
    """
    Encrypted credentials kept in the state store.

    ``kind`` is ``'api'`` or ``'ftp'``. Legacy API credentials are migrated to
    the current schema the first time they are loaded.
    """

    def __init__(self, store: StateStore, key: Optional[bytes] = None):
        self.store = store
        self.encryptor = Encryptor(key or machine_key(str(store.path.parent)))

    @staticmethod
    def _resolve(kind: str):
        try:
            return _KIND_KEYS[kind]
        except KeyError:
            raise CredentialError(f"Unknown credential kind: {kind}")

    def save(self, kind: str, payload: Union[Credentials, Dict[str, Any]]) -> Credentials:
        """Validate and persist credentials; raises CredentialError on bad input"""
        store_key, model = self._resolve(kind)

        if isinstance(payload, BaseModel):
            payload = payload.model_dump(by_alias=True)
        try:
            credentials = model.model_validate(payload)
        except ValidationError as e:
            raise CredentialError(f"Invalid {kind} credentials: {e}") from e

        errors = credentials.format_errors()
        if errors:
            raise CredentialError('; '.join(errors))

        plaintext = json.dumps(credentials.model_dump(by_alias=True, exclude={'kind'}))
        self.store.set(store_key, self.encryptor.encrypt(plaintext))
        logger.info(f"{kind.upper()} credentials saved")
        return credentials

    def load(self, kind: str) -> Optional[Credentials]:
        store_key, model = self._resolve(kind)
        blob = self.store.get(store_key)
        if not blob:
            return None

        try:
            payload = json.loads(self.encryptor.decrypt(blob))
        except json.JSONDecodeError as e:
            raise CredentialError(f"Stored {kind} credentials are corrupt") from e

        migrated = False
        if kind == 'api':
            upgraded = migrate_api_payload(payload)
            migrated = upgraded is not payload
            payload = upgraded

        try:
            credentials = model.model_validate(payload)
        except ValidationError as e:
            raise CredentialError(f"Stored {kind} credentials are invalid: {e}") from e

        if migrated:
            logger.info("Migrating legacy API credentials to the current format")
            plaintext = json.dumps(credentials.model_dump(by_alias=True, exclude={'kind'}))
            self.store.set(store_key, self.encryptor.encrypt(plaintext))

        return credentials

    def clear(self, kind: str):
        store_key, _ = self._resolve(kind)
        self.store.delete(store_key)
        logger.info(f"{kind.upper()} credentials cleared")

    def status(self) -> Dict[str, bool]:
        """Which credential kinds are configured"""
        return {kind: self.store.has(store_key) for kind, (store_key, _) in _KIND_KEYS.items()}
