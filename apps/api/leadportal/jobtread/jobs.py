"""Job listing: imported leads enriched with their CRM jobs, contracts and estimates.

Account ids and job ids are sent to the CRM in fixed-size batches. Each batch is
fault tolerant on its own, so a failing batch leaves the affected customers with
empty ``jobs``/``contracts``/``estimates`` while the other batches still apply.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator, Sequence
from typing import Any

from leadportal.core.config import get_settings
from leadportal.jobtread.client import JobTreadClient
from leadportal.jobtread.query import dig, document, select as field, where_all, where_eq, where_in
from leadportal.jobtread.workflow import INTEGRATION_PLATFORM, ImportConfig


logger = logging.getLogger("leadportal.jobtread.jobs")

DOCUMENT_KINDS = (("contract", "contracts"), ("estimate", "estimates"))


def batched(values: Sequence[str], size: int) -> Iterator[list[str]]:
    for start in range(0, len(values), size):
        yield list(values[start:start + size])


def classify_documents(documents: list[dict[str, Any]]) -> dict[str, list[dict[str, Any]]]:
    buckets: dict[str, list[dict[str, Any]]] = {bucket: [] for _, bucket in DOCUMENT_KINDS}
    for item in documents:
        full_name = item.get("fullName") or ""
        lowered = full_name.lower()
        for needle, bucket in DOCUMENT_KINDS:
            if needle in lowered:
                buckets[bucket].append(
                    {"fullName": full_name, "price": item.get("price") or 0, "status": item.get("status") or ""}
                )
    return buckets


class JobListingService:
    def __init__(self, client: JobTreadClient, config: ImportConfig, batch_size: int | None = None) -> None:
        self.client = client
        self.config = config
        self.batch_size = batch_size or get_settings().jobtread_batch_size

    def _accounts_query(self, batch: list[str]) -> dict[str, Any]:
        return document(
            field(
                "organization",
                field(
                    "accounts",
                    "nextPage",
                    "previousPage",
                    field("nodes", "id", "name", field("jobs", field("nodes", "id", "name"), args={})),
                    args={
                        "where": where_all(where_eq("type", "customer"), where_in("id", batch)),
                        "size": self.batch_size,
                    },
                ),
                args={"id": self.config.organization_id},
            )
        )

    def _documents_query(self, batch: list[str]) -> dict[str, Any]:
        return document(
            field(
                "organization",
                field(
                    "jobs",
                    "nextPage",
                    "previousPage",
                    field("nodes", "id", field("documents", field("nodes", "fullName", "price", "status"), args={})),
                    args={"where": where_in("id", batch), "size": self.batch_size},
                ),
                args={"id": self.config.organization_id},
            )
        )

    async def _fetch_batches(
        self,
        ids: list[str],
        build_query,
        collection: str,
        grant_key: str,
    ) -> list[dict[str, Any]]:
        nodes: list[dict[str, Any]] = []
        for number, batch in enumerate(batched(ids, self.batch_size), start=1):
            try:
                response = await self.client.query(build_query(batch), grant_key)
            except Exception as exc:
                logger.warning(
                    "jobtread.batch_failed",
                    extra={"step": collection, "batch": number, "error": str(exc)},
                )
                continue
            nodes.extend(dig(response, "organization", collection, "nodes", default=[]) or [])
        return nodes

    async def enrich(self, customers: list[dict[str, Any]], grant_key: str | None) -> list[dict[str, Any]]:
        for customer in customers:
            customer["integration_name"] = None
            customer["jobs"] = []
            customer["estimates"] = []
            customer["contracts"] = []

        account_ids = [
            customer["integration_id"]
            for customer in customers
            if customer.get("integration_platform") == INTEGRATION_PLATFORM and customer.get("integration_id")
        ]
        if not account_ids:
            return customers
        if not self.config.organization_id:
            logger.warning("jobtread.jobs_skipped", extra={"reason": "organization id not configured"})
            return customers
        if not grant_key:
            logger.warning("jobtread.jobs_skipped", extra={"reason": "grant key not configured"})
            return customers

        accounts = await self._fetch_batches(account_ids, self._accounts_query, "accounts", grant_key)
        by_account = {account.get("id"): account for account in accounts if isinstance(account, dict)}
        for customer in customers:
            account = by_account.get(customer.get("integration_id"))
            if account is None or customer.get("integration_platform") != INTEGRATION_PLATFORM:
                continue
            customer["integration_name"] = account.get("name")
            customer["jobs"] = dig(account, "jobs", "nodes", default=[]) or []

        job_ids = [job["id"] for customer in customers for job in customer["jobs"] if job.get("id")]
        if not job_ids:
            return customers

        jobs = await self._fetch_batches(job_ids, self._documents_query, "jobs", grant_key)
        documents_by_job = {job.get("id"): dig(job, "documents", "nodes", default=[]) or [] for job in jobs}
        for customer in customers:
            for job in customer["jobs"]:
                buckets = classify_documents(documents_by_job.get(job.get("id"), []))
                customer["contracts"].extend(buckets["contracts"])
                customer["estimates"].extend(buckets["estimates"])
        return customers
