from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import HTTPException, status

from leadportal.jobtread.client import JobTreadClient
from leadportal.jobtread.query import dig, document, select as field
from leadportal.jobtread.workflow import ImportConfig


logger = logging.getLogger("leadportal.jobtread.customers")

CUSTOM_FIELD_PAGE_SIZE = 25


def _account_query(customer_id: str) -> dict[str, Any]:
    return document(
        field(
            "account",
            "id",
            "name",
            "type",
            "isTaxable",
            "createdAt",
            field(
                "customFieldValues",
                field("nodes", "id", "value", field("customField", "id", "name")),
                args={"size": CUSTOM_FIELD_PAGE_SIZE},
            ),
            args={"id": customer_id},
        )
    )


def _jobs_query(organization_id: str, customer_id: str) -> dict[str, Any]:
    return document(
        field(
            "organization",
            field(
                "jobs",
                field(
                    "nodes",
                    "id",
                    "name",
                    "number",
                    "status",
                    "createdAt",
                    "estimatedCost",
                    "estimatedDuration",
                    "description",
                    field("account", "id", "name"),
                ),
                args={
                    "where": [["accountId", "=", customer_id]],
                    "sortBy": [{"field": "createdAt", "order": "desc"}],
                },
            ),
            args={"id": organization_id},
        )
    )


def _locations_query(organization_id: str, customer_id: str) -> dict[str, Any]:
    return document(
        field(
            "organization",
            field(
                "locations",
                field("nodes", "id", "name", "address", "createdAt"),
                args={"where": [["accountId", "=", customer_id]]},
            ),
            args={"id": organization_id},
        )
    )


class CustomerService:
    def __init__(self, client: JobTreadClient, config: ImportConfig) -> None:
        self.client = client
        self.config = config

    async def get_customer(self, customer_id: str, grant_key: str | None) -> dict[str, Any]:
        if not self.config.organization_id:
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="JobTread organization ID not configured",
            )
        if not grant_key:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="JobTread grant key not configured for this user",
            )

        response = await self.client.query(_account_query(customer_id), grant_key)
        account = dig(response, "account")
        if not account:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Customer not found")

        jobs_result, locations_result = await asyncio.gather(
            self.client.query(_jobs_query(self.config.organization_id, customer_id), grant_key),
            self.client.query(_locations_query(self.config.organization_id, customer_id), grant_key),
            return_exceptions=True,
        )
        return {
            "customer": account,
            "jobs": self._nodes(jobs_result, "jobs", customer_id),
            "locations": self._nodes(locations_result, "locations", customer_id),
        }

    def _nodes(self, result: Any, collection: str, customer_id: str) -> list[dict[str, Any]]:
        if isinstance(result, BaseException):
            logger.warning(
                "jobtread.customer_lookup_partial",
                extra={"customer_id": customer_id, "step": collection, "error": str(result)},
            )
            return []
        return dig(result, "organization", collection, "nodes", default=[]) or []
