"""
User directory client.

WHAT: A Directory that asks the case-booking application's user API
which staff hold a role in a country, and which departments a member
belongs to.

WHY: Role-based recipients ("every Admin in Singapore") only mean
something against the booking application's own user list. This
service keeps no copy of it.

HOW:
- GET {DIRECTORY_API_URL}/users?role=...&country=... returns a JSON list
  of user records in the booking application's camelCase export shape
- GET {DIRECTORY_API_URL}/users/{id} returns one record (404: unknown)
- DIRECTORY_API_TOKEN, when set, is sent as a bearer token
build_directory() picks this client when DIRECTORY_API_URL is set and
an empty InMemoryDirectory otherwise.
"""

import logging
from typing import Any, Dict, List, Optional

import httpx

from casenotify.core.config import settings
from casenotify.core.exceptions import DirectoryUnavailableError
from casenotify.services.recipient_resolver import (
    Directory,
    DirectoryMember,
    InMemoryDirectory,
    member_from_record,
)


logger = logging.getLogger(__name__)


class HttpDirectory:
    """
    Directory backed by the booking application's user API.

    Example:
        directory = HttpDirectory("https://booking.hospital.sg/api", token="...")
        members = await directory.members_of_role("Admin", "Singapore")
    """

    def __init__(self, base_url: str, token: Optional[str] = None, timeout: Optional[float] = None):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout or settings.DIRECTORY_TIMEOUT_SECONDS

    def _headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _get(self, path: str, params: Optional[Dict[str, str]] = None) -> Optional[Any]:
        """
        GET a directory resource.

        Returns:
            Parsed JSON body, or None for 404

        Raises:
            DirectoryUnavailableError: Network failure or any other error status
        """
        try:
            async with httpx.AsyncClient(timeout=self.timeout, follow_redirects=False) as client:
                response = await client.get(
                    f"{self.base_url}{path}", params=params, headers=self._headers()
                )
        except httpx.RequestError as e:
            logger.error(f"User directory request {path} failed: {e}")
            raise DirectoryUnavailableError(path=path) from e

        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            logger.error(f"User directory returned {response.status_code} for {path}")
            raise DirectoryUnavailableError(
                message=f"User directory returned {response.status_code}", path=path
            )
        try:
            return response.json()
        except ValueError as e:
            raise DirectoryUnavailableError(message="User directory returned invalid JSON", path=path) from e

    async def members_of_role(self, role: str, country: Optional[str]) -> List[DirectoryMember]:
        params = {"role": role}
        if country:
            params["country"] = country
        records = await self._get("/users", params=params) or []
        members = []
        for record in records:
            try:
                member = member_from_record(record)
            except (KeyError, TypeError):
                logger.warning(f"Skipping directory record without an id for role {role}")
                continue
            # Only members of the role in the country, whatever the server returned
            if member.role == role and (country is None or country in member.countries):
                members.append(member)
        return members

    async def departments_of(self, member_id: str) -> List[str]:
        record = await self._get(f"/users/{member_id}")
        if not record:
            return []
        return [str(department) for department in record.get("departments") or ()]


def build_directory() -> Directory:
    """The directory named by settings; an empty one when none is configured."""
    if settings.DIRECTORY_API_URL:
        logger.info(f"Using user directory at {settings.DIRECTORY_API_URL}")
        return HttpDirectory(
            settings.DIRECTORY_API_URL,
            token=settings.DIRECTORY_API_TOKEN,
            timeout=settings.DIRECTORY_TIMEOUT_SECONDS,
        )
    logger.warning("DIRECTORY_API_URL is not set; role-based recipients will resolve to nobody")
    return InMemoryDirectory()
