# File: fleet_permits/db/firebase_store.py
import json
import logging
import os
from typing import Any, Dict, Mapping, Optional

import requests
from google.auth.transport.requests import Request
from google.oauth2 import service_account

from fleet_permits.core.config import settings
from fleet_permits.core.exceptions import StoreError
from fleet_permits.db.store import EntryStore, check_disjoint_paths, split_path

logger = logging.getLogger(__name__)

FIREBASE_SCOPES = [
    "https://www.googleapis.com/auth/firebase.database",
    "https://www.googleapis.com/auth/userinfo.email",
]


class FirebaseStore(EntryStore):
    """Entry store backed by the Firebase Realtime Database REST API"""

    def __init__(
        self,
        database_url: Optional[str] = None,
        service_account_path: Optional[str] = None,
        timeout: Optional[int] = None,
        session: Optional[requests.Session] = None,
    ):
        self.database_url = (database_url or settings.FIREBASE_DATABASE_URL or "").rstrip("/")
        if not self.database_url:
            raise StoreError("FIREBASE_DATABASE_URL is not configured")
        self.timeout = timeout or settings.FIREBASE_REQUEST_TIMEOUT
        self.session = session or requests.Session()
        self.credentials = None
        self._initialize_credentials(service_account_path or settings.FIREBASE_SERVICE_ACCOUNT_PATH)

    def _initialize_credentials(self, service_account_path: Optional[str]):
        """Load the service account used to sign database requests"""
        if service_account_path and os.path.exists(service_account_path):
            with open(service_account_path, "r") as f:
                service_account_info = json.load(f)

            self.credentials = service_account.Credentials.from_service_account_info(
                service_account_info,
                scopes=FIREBASE_SCOPES,
            )
            logger.info(f"Firebase store initialized for project {service_account_info.get('project_id')}")
        else:
            logger.warning("Firebase service account not found. Database requests will be unauthenticated.")

    def _get_access_token(self) -> Optional[str]:
        if not self.credentials:
            return None
        if not self.credentials.valid:
            try:
                self.credentials.refresh(Request())
            except Exception as e:
                logger.error(f"Failed to get Firebase access token: {str(e)}")
                raise StoreError(f"Failed to authenticate with Firebase: {str(e)}") from e
        return self.credentials.token

    def _url(self, path: str) -> str:
        return f"{self.database_url}/{'/'.join(split_path(path))}.json"

    def _params(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        params = dict(extra or {})
        token = self._get_access_token()
        if token:
            params["access_token"] = token
        return params

    def _request(self, method: str, path: str, params: Optional[Dict[str, str]] = None, payload: Any = None) -> Any:
        url = self._url(path)
        try:
            response = self.session.request(
                method,
                url,
                params=self._params(params),
                json=payload,
                timeout=self.timeout,
            )
        except requests.exceptions.RequestException as e:
            logger.error(f"Firebase {method} {path} failed: {str(e)}")
            raise StoreError(f"Firebase request failed: {str(e)}") from e

        if response.status_code != 200:
            logger.error(f"Firebase {method} {path} returned {response.status_code}: {response.text}")
            raise StoreError(f"Firebase {method} {path} returned {response.status_code}")

        return response.json()

    def get(self, path: str) -> Optional[Any]:
        data = self._request("GET", path)
        if isinstance(data, dict):
            return {key: data[key] for key in sorted(data)}
        return data

    def query_by_field(self, path: str, field: str, value: Any) -> Dict[str, Any]:
        # Requires ".indexOn" for the field in the database rules
        data = self._request(
            "GET",
            path,
            params={"orderBy": json.dumps(field), "equalTo": json.dumps(value)},
        )
        if not isinstance(data, dict):
            return {}
        return {key: data[key] for key in sorted(data)}

    def atomic_update(self, updates: Mapping[str, Any]) -> None:
        if not updates:
            return
        check_disjoint_paths(updates.keys())
        payload = {"/".join(split_path(path)): value for path, value in updates.items()}
        self._request("PATCH", "", payload=payload)
        logger.debug(f"Firebase multi-path update of {len(payload)} paths applied")
