"""
Recipient Resolver.

WHAT: Turns a rule's recipient policy and a case into the set of email
addresses that should receive the notification.

WHY: Policies mix directory roles, department narrowing, literal
addresses and the case submitter. Keeping the computation pure (no
enabled flag, no sending) makes it easy to reason about: the result is
a set union, and department filters can only ever narrow it.

HOW:
1. Add explicit addresses as written
2. Expand each role through the Directory (members in the case's country)
3. Drop members outside the case's department (require_same_department)
4. Drop members outside department_filter (when non-empty)
5. Add the submitter (include_submitter)
Addresses are compared case-insensitively and the first spelling seen is
kept, so an explicit address reaches the provider exactly as entered.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Protocol, Set

from casenotify.schemas.case import CaseSnapshot
from casenotify.schemas.notification_rule import NotificationRule, RecipientPolicy


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DirectoryMember:
    """A staff member as the user directory reports them."""

    id: str
    email: Optional[str]
    name: Optional[str] = None
    role: Optional[str] = None
    countries: tuple = ()
    departments: tuple = ()


def member_from_record(record: Dict[str, Any]) -> DirectoryMember:
    """Build a member from a user record as the booking application exports it (camelCase)."""
    return DirectoryMember(
        id=str(record["id"]),
        email=record.get("email"),
        name=record.get("name"),
        role=record.get("role"),
        countries=tuple(record.get("countries") or ()),
        departments=tuple(record.get("departments") or ()),
    )


class Directory(Protocol):
    """Lookup capability over the booking application's user directory."""

    async def members_of_role(self, role: str, country: Optional[str]) -> List[DirectoryMember]:
        ...

    async def departments_of(self, member_id: str) -> List[str]:
        ...


class InMemoryDirectory:
    """
    Directory backed by a list of members.

    Used when the host application hands over its user list, and in tests.
    """

    def __init__(self, members: Iterable[DirectoryMember] = ()):
        self._members: Dict[str, DirectoryMember] = {member.id: member for member in members}

    @classmethod
    def from_records(cls, records: Iterable[Dict[str, Any]]) -> "InMemoryDirectory":
        return cls(member_from_record(record) for record in records)

    async def members_of_role(self, role: str, country: Optional[str]) -> List[DirectoryMember]:
        return [
            member
            for member in self._members.values()
            if member.role == role and (country is None or country in member.countries)
        ]

    async def departments_of(self, member_id: str) -> List[str]:
        member = self._members.get(member_id)
        return list(member.departments) if member else []


def _folded(values: Iterable[str]) -> Set[str]:
    return {value.strip().casefold() for value in values if value and value.strip()}


class RecipientSet:
    """Addresses in insertion order, deduplicated case-insensitively."""

    def __init__(self):
        self._addresses: Dict[str, str] = {}

    def add(self, address: Optional[str]) -> None:
        address = (address or "").strip()
        if address:
            self._addresses.setdefault(address.casefold(), address)

    def update(self, addresses: Iterable[Optional[str]]) -> None:
        for address in addresses:
            self.add(address)

    def as_list(self) -> List[str]:
        return list(self._addresses.values())


class RecipientResolver:
    """
    Computes the resolved recipient list for a rule and a case.

    Example:
        resolver = RecipientResolver(directory)
        addresses = await resolver.resolve(rule, case)
        # ["Billing@Hosp.sg", "ops1@hosp.sg", "nurse@hosp.sg"]
    """

    def __init__(self, directory: Directory):
        self.directory = directory

    async def _role_members(self, policy: RecipientPolicy, case: CaseSnapshot) -> List[str]:
        case_departments = _folded([case.department] if case.department else [])
        wanted_departments = _folded(policy.department_filter)
        addresses: List[str] = []

        for role in policy.roles:
            members = await self.directory.members_of_role(role, case.country)
            for member in members:
                if not member.email:
                    logger.debug(f"Directory member {member.id} in role {role} has no mailbox")
                    continue
                if policy.require_same_department or wanted_departments:
                    departments = _folded(await self.directory.departments_of(member.id))
                    if policy.require_same_department and not departments & case_departments:
                        continue
                    if wanted_departments and not departments & wanted_departments:
                        continue
                addresses.append(member.email)
        return addresses

    async def resolve(self, rule: NotificationRule, case: CaseSnapshot) -> List[str]:
        """
        Resolved, deduplicated recipient addresses.

        An empty list is a valid answer (nothing to send), not an error.
        The rule's enabled flag is not consulted here.
        """
        policy = rule.recipients
        recipients = RecipientSet()
        recipients.update(policy.explicit_addresses)
        recipients.update(await self._role_members(policy, case))

        if policy.include_submitter:
            submitter = case.submitter_address
            if submitter:
                recipients.add(submitter)
            else:
                logger.debug(f"Case {case.case_reference_number} has no submitter mailbox")

        return recipients.as_list()
