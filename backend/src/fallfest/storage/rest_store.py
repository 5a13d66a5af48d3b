"""Participant store on a hosted PostgREST table (Supabase-style REST API)."""

from collections.abc import Iterable
from datetime import datetime
from typing import Any

import httpx

from fallfest.logging_config import get_logger
from fallfest.referral.errors import DuplicateParticipant, StoreUnavailable
from fallfest.referral.models import (
    NewParticipant,
    Participant,
    is_unset_referred_by,
    parse_referred_by,
)
from fallfest.referral.store import ParticipantStore
from fallfest.settings import settings

logger = get_logger(__name__)

PAGE_SIZE = 1000  # PostgREST default max-rows
UNSET_FILTER = "(referred_by.is.null,referred_by.eq.,referred_by.eq.-)"


def _parse_timestamp(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


def row_to_participant(row: dict[str, Any]) -> Participant:
    """Convert a JSON row from the hosted table to the domain type."""
    raw = row.get("referred_by")
    return Participant(
        id=int(row["id"]),
        user_id=str(row["user_id"]),
        referral_code=row["referral_code"],
        email=row.get("email"),
        full_name=row.get("fullName"),
        institution=row.get("institution"),
        referred_by=parse_referred_by(raw),
        locked=not is_unset_referred_by(raw),
        created_at=_parse_timestamp(row.get("created_at")),
    )


class RestParticipantStore(ParticipantStore):
    """Participant store speaking the PostgREST query dialect over HTTPS.

    The conditional attribution is a single ``PATCH`` filtered on
    ``referred_by`` being unset; the returned representation tells whether
    this request won.
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        table: str | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        base_url = base_url or settings.rest_url
        api_key = api_key or settings.rest_api_key
        if not base_url or not api_key:
            raise ValueError("REST store requires FALLFEST_REST_URL and FALLFEST_REST_API_KEY")

        self.table = table or settings.registrations_table
        self.client = client or httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            timeout=settings.request_timeout_seconds,
        )
        self.client.headers.update({
            "apikey": api_key,
            "Authorization": f"Bearer {api_key}",
            "Accept": "application/json",
        })

    @property
    def path(self) -> str:
        return f"/rest/v1/{self.table}"

    async def _request(self, method: str, params: Any = None, **kwargs: Any) -> httpx.Response:
        try:
            response = await self.client.request(method, self.path, params=params, **kwargs)
        except httpx.HTTPError as e:
            logger.error("store_request_failed", method=method, error=str(e))
            raise StoreUnavailable(str(e)) from e

        if response.status_code >= 400 and response.status_code != 409:
            logger.error(
                "store_request_rejected",
                method=method,
                status=response.status_code,
                body=response.text[:200],
            )
            raise StoreUnavailable(f"Store answered {response.status_code}")
        return response

    @staticmethod
    def _rows(response: httpx.Response) -> list[dict[str, Any]]:
        """Decode a JSON array of rows; anything else is a store failure."""
        try:
            rows = response.json()
        except ValueError as e:
            logger.error(
                "store_response_undecodable",
                status=response.status_code,
                body=response.text[:200],
            )
            raise StoreUnavailable("Store returned a non-JSON body") from e
        if not isinstance(rows, list) or not all(isinstance(row, dict) for row in rows):
            logger.error(
                "store_response_malformed",
                status=response.status_code,
                body=response.text[:200],
            )
            raise StoreUnavailable("Store returned an unexpected payload")
        return rows

    @staticmethod
    def _participants(rows: list[dict[str, Any]]) -> list[Participant]:
        try:
            return [row_to_participant(row) for row in rows]
        except (KeyError, TypeError, ValueError) as e:
            logger.error("store_row_malformed", error=str(e))
            raise StoreUnavailable(f"Store returned a malformed row: {e}") from e

    async def _select(self, params: list[tuple[str, str]]) -> list[Participant]:
        response = await self._request("GET", params=[("select", "*"), *params])
        return self._participants(self._rows(response))

    async def _select_one(self, column: str, value: Any) -> Participant | None:
        participants = await self._select([(column, f"eq.{value}"), ("limit", "1")])
        return participants[0] if participants else None

    async def code_exists(self, code: str) -> bool:
        response = await self._request(
            "GET",
            params=[("select", "id"), ("referral_code", f"eq.{code}"), ("limit", "1")],
        )
        return bool(self._rows(response))

    async def get_by_id(self, participant_id: int) -> Participant | None:
        return await self._select_one("id", participant_id)

    async def get_by_user_id(self, user_id: str) -> Participant | None:
        return await self._select_one("user_id", user_id)

    async def get_by_code(self, code: str) -> Participant | None:
        return await self._select_one("referral_code", code)

    async def get_many(self, participant_ids: Iterable[int]) -> list[Participant]:
        ids = sorted(set(participant_ids))
        participants: list[Participant] = []
        for start in range(0, len(ids), PAGE_SIZE):
            chunk = ",".join(str(i) for i in ids[start:start + PAGE_SIZE])
            participants.extend(
                await self._select([("id", f"in.({chunk})"), ("order", "id.asc")])
            )
        return participants

    async def insert(self, participant: NewParticipant) -> Participant:
        payload = {
            "user_id": participant.user_id,
            "email": participant.email,
            "fullName": participant.full_name,
            "institution": participant.institution,
            "referral_code": participant.referral_code,
            "referred_by": str(participant.referred_by) if participant.referred_by is not None else None,
        }
        response = await self._request(
            "POST",
            json=payload,
            headers={"Prefer": "return=representation"},
        )
        if response.status_code == 409:
            logger.warning("registration_insert_conflict", user_id=participant.user_id)
            raise DuplicateParticipant(participant.user_id)

        created = self._participants(self._rows(response))
        if not created:
            raise StoreUnavailable("Store returned no row for the insert")
        result = created[0]
        logger.info(
            "registration_created",
            participant_id=result.id,
            code=result.referral_code,
            referred_by=result.referred_by,
        )
        return result

    async def set_referred_by_if_unset(self, participant_id: int, referrer_id: int) -> bool:
        response = await self._request(
            "PATCH",
            params=[("id", f"eq.{participant_id}"), ("or", UNSET_FILTER)],
            json={"referred_by": str(referrer_id)},
            headers={"Prefer": "return=representation"},
        )
        if response.status_code == 409:
            raise StoreUnavailable("Store rejected attribution update")
        return len(self._rows(response)) == 1

    async def count_referred_by(self, participant_id: int) -> int:
        response = await self._request(
            "HEAD",
            params=[("select", "id"), ("referred_by", f"eq.{participant_id}")],
            headers={"Prefer": "count=exact"},
        )
        content_range = response.headers.get("content-range", "")
        total = content_range.rpartition("/")[2]
        if not total.isdigit():
            raise StoreUnavailable(f"Store returned no count: {content_range!r}")
        return int(total)

    async def list_referred_by(self, participant_id: int) -> list[Participant]:
        return await self._select([
            ("referred_by", f"eq.{participant_id}"),
            ("order", "created_at.asc,id.asc"),
        ])

    async def list_referral_edges(self) -> list[str]:
        edges: list[str] = []
        offset = 0
        while True:
            response = await self._request(
                "GET",
                params=[
                    ("select", "referred_by"),
                    ("referred_by", "not.is.null"),
                    ("referred_by", "neq."),
                    ("referred_by", "neq.-"),
                    ("order", "id.asc"),
                    ("limit", str(PAGE_SIZE)),
                    ("offset", str(offset)),
                ],
            )
            rows = self._rows(response)
            edges.extend(str(row.get("referred_by")) for row in rows)
            if len(rows) < PAGE_SIZE:
                return edges
            offset += PAGE_SIZE

    async def close(self) -> None:
        await self.client.aclose()
