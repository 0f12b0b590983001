from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime

import httpx

from ingest.fetch import fetch
from ingest.parsers.gov import GovFeed, parse_gov_feed
from ingest.parsers.partner import PartnerFeed, parse_partner_feed
from normalize.models import FeedSource, RawIncident, SourceKind
from normalize.normalize import normalize_gov_incident, normalize_partner_alert


logger = logging.getLogger(__name__)

FeedDocument = PartnerFeed | GovFeed

# One malformed record is skipped; the rest of the document is still used.
_RECORD_ERRORS = (AttributeError, TypeError, ValueError, OverflowError, OSError)


class FetchError(Exception):
    """A feed could not be fetched or parsed.

    ``kind`` is one of ``network``, ``http_status`` or ``parse``.
    """

    def __init__(self, kind: str, *, status: int | None = None, detail: str = "") -> None:
        self.kind = kind
        self.status = status
        self.detail = detail
        super().__init__(self.label)

    @property
    def label(self) -> str:
        if self.kind == "http_status":
            return f"http_{self.status}"
        if self.detail:
            return f"{self.kind}:{self.detail}"
        return self.kind


@dataclass(frozen=True)
class FetchedDocument:
    document: FeedDocument
    status_code: int | None
    fetch_ms: int | None
    fetched_at: datetime


@dataclass(frozen=True)
class FetchResult:
    source: FeedSource
    incidents: list[RawIncident] = field(default_factory=list)
    error: FetchError | None = None
    status_code: int | None = None
    fetch_ms: int | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class FeedAdapter:
    kind: SourceKind

    def __init__(self, *, user_agent: str) -> None:
        self.user_agent = user_agent

    def parse(self, data: bytes) -> FeedDocument:
        raise NotImplementedError

    def normalize(
        self, document: FeedDocument, source: FeedSource, fetched_at: datetime
    ) -> list[RawIncident]:
        raise NotImplementedError

    def request_headers(self, source: FeedSource) -> dict[str, str] | None:
        return None

    async def fetch_document(
        self, client: httpx.AsyncClient, source: FeedSource
    ) -> FetchedDocument:
        fetched_at = datetime.now(tz=UTC)
        try:
            status_code, content, elapsed_ms = await fetch(
                client,
                url=source.url,
                user_agent=self.user_agent,
                extra_headers=self.request_headers(source),
            )
        except httpx.TimeoutException as e:
            raise FetchError("network", detail="timeout") from e
        except httpx.RequestError as e:
            raise FetchError(
                "network", detail=f"request_error:{e.__class__.__name__}"
            ) from e

        if content is None:
            raise FetchError("http_status", status=status_code)

        try:
            document = self.parse(content)
        except ValueError as e:
            raise FetchError("parse", status=status_code) from e

        return FetchedDocument(
            document=document,
            status_code=status_code,
            fetch_ms=elapsed_ms,
            fetched_at=fetched_at,
        )

    async def fetch(self, client: httpx.AsyncClient, source: FeedSource) -> FetchResult:
        """Fetch and normalize one source. Never raises ``FetchError``."""
        try:
            fetched = await self.fetch_document(client, source)
        except FetchError as e:
            return FetchResult(source=source, error=e, status_code=e.status)
        return FetchResult(
            source=source,
            incidents=self.normalize(fetched.document, source, fetched.fetched_at),
            status_code=fetched.status_code,
            fetch_ms=fetched.fetch_ms,
        )


class PartnerFeedAdapter(FeedAdapter):
    kind = SourceKind.PARTNER

    def parse(self, data: bytes) -> PartnerFeed:
        return parse_partner_feed(data)

    def normalize(
        self, document: FeedDocument, source: FeedSource, fetched_at: datetime
    ) -> list[RawIncident]:
        if not isinstance(document, PartnerFeed):
            raise TypeError(f"partner adapter got {type(document).__name__}")
        incidents: list[RawIncident] = []
        for alert in document.alerts:
            try:
                incident = normalize_partner_alert(
                    source_id=source.id, record=alert, fetched_at=fetched_at
                )
            except _RECORD_ERRORS as e:
                logger.warning(
                    "normalize.skip source_id=%s uuid=%r reason=%s",
                    source.id,
                    alert.get("uuid"),
                    e.__class__.__name__,
                )
                continue
            if incident is None:
                logger.warning(
                    "normalize.skip source_id=%s uuid=%s reason=no_location",
                    source.id,
                    alert.get("uuid"),
                )
                continue
            incidents.append(incident)
        return incidents


class GovFeedAdapter(FeedAdapter):
    kind = SourceKind.GOVERNMENT

    def __init__(
        self,
        *,
        user_agent: str,
        account_key: str | None,
        street: str | None = "Singapore Road",
        city: str | None = "Singapore",
        country: str | None = "SG",
    ) -> None:
        super().__init__(user_agent=user_agent)
        self.account_key = account_key
        self.street = street
        self.city = city
        self.country = country

    def parse(self, data: bytes) -> GovFeed:
        return parse_gov_feed(data)

    def request_headers(self, source: FeedSource) -> dict[str, str] | None:
        return {source.api_key_header or "AccountKey": self.account_key or ""}

    async def fetch_document(
        self, client: httpx.AsyncClient, source: FeedSource
    ) -> FetchedDocument:
        if not self.account_key:
            return FetchedDocument(
                document=GovFeed(records=[]),
                status_code=None,
                fetch_ms=None,
                fetched_at=datetime.now(tz=UTC),
            )
        return await super().fetch_document(client, source)

    def normalize(
        self, document: FeedDocument, source: FeedSource, fetched_at: datetime
    ) -> list[RawIncident]:
        if not isinstance(document, GovFeed):
            raise TypeError(f"government adapter got {type(document).__name__}")
        incidents: list[RawIncident] = []
        for record in document.records:
            try:
                incident = normalize_gov_incident(
                    source_id=source.id,
                    record=record,
                    fetched_at=fetched_at,
                    street=self.street,
                    city=self.city,
                    country=self.country,
                )
            except _RECORD_ERRORS as e:
                logger.warning(
                    "normalize.skip source_id=%s type=%r reason=%s",
                    source.id,
                    record.get("Type"),
                    e.__class__.__name__,
                )
                continue
            if incident is None:
                logger.warning(
                    "normalize.skip source_id=%s type=%r reason=no_location",
                    source.id,
                    record.get("Type"),
                )
                continue
            incidents.append(incident)
        return incidents


def build_adapters(
    *, user_agent: str, gov_account_key: str | None
) -> dict[SourceKind, FeedAdapter]:
    return {
        SourceKind.PARTNER: PartnerFeedAdapter(user_agent=user_agent),
        SourceKind.GOVERNMENT: GovFeedAdapter(
            user_agent=user_agent, account_key=gov_account_key
        ),
    }
