"""Job payloads, queue names and retry options.

Payloads travel as camelCase JSON (the web application enqueues the same
shapes), so every model accepts both field names and aliases.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

CRAWL_QUEUE = "website-crawl"
PAGE_PARSE_QUEUE = "website-page-parse"
WEBPAGE_PARSE_QUEUE = "webpage-parsing"

CRAWL_JOB = "crawl-website"
PAGE_PARSE_JOB = "parse-website-page"
WEBPAGE_PARSE_JOB = "parse-webpage"


class JobOptions(BaseModel):
    attempts: int = Field(default=2, ge=1)
    # Delay before retry n is backoff_delay_s * 2 ** (n - 1).
    backoff_delay_s: float = Field(default=30.0, ge=0)

    def delay_for(self, attempt: int) -> float:
        return self.backoff_delay_s * (2 ** max(0, attempt - 1))


CRAWL_JOB_OPTIONS = JobOptions(attempts=2, backoff_delay_s=60.0)
PAGE_PARSE_JOB_OPTIONS = JobOptions(attempts=2, backoff_delay_s=30.0)
WEBPAGE_PARSE_JOB_OPTIONS = JobOptions(attempts=2, backoff_delay_s=30.0)


class JobPayload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class CrawlJobPayload(JobPayload):
    source_id: str
    website_url: str
    is_incremental: bool = False

    @field_validator("source_id", "website_url")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class PageParseJobPayload(JobPayload):
    source_id: str
    page_id: str
    page_url: str
    previous_hash: Optional[str] = None


class WebpageParseJobPayload(JobPayload):
    source_id: str
    webpage_url: str
