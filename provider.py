from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Protocol

from plaid.api import plaid_api
from plaid.api_client import ApiClient
from plaid.configuration import Configuration
from plaid.exceptions import ApiException
from plaid.model.transactions_recurring_get_request import (
    TransactionsRecurringGetRequest,
)
from plaid.model.transactions_sync_request import TransactionsSyncRequest
from pydantic import ValidationError

from config import get_settings
from errors import ProviderError
from schemas import ProviderStream, ProviderTransaction

logger = logging.getLogger(__name__)

PLAID_ENV_HOSTS = {
    "sandbox": "https://sandbox.plaid.com",
    "development": "https://development.plaid.com",
    "production": "https://production.plaid.com",
}


@dataclass(frozen=True)
class SyncPage:
    added: list[ProviderTransaction]
    has_more: bool
    next_cursor: Optional[str]


@dataclass(frozen=True)
class RecurringStreams:
    inflow_streams: list[ProviderStream] = field(default_factory=list)
    outflow_streams: list[ProviderStream] = field(default_factory=list)

    def all(self) -> list[ProviderStream]:
        return [*self.inflow_streams, *self.outflow_streams]


class TransactionProvider(Protocol):
    def fetch_transactions(
        self, access_token: str, cursor: Optional[str]
    ) -> SyncPage: ...

    def fetch_recurring_streams(
        self, access_token: str, account_ids: list[str]
    ) -> RecurringStreams: ...


def _detailed_category(raw: dict) -> Optional[str]:
    pfc = raw.get("personal_finance_category") or {}
    if isinstance(pfc, dict):
        return pfc.get("detailed")
    return None


def parse_provider_transaction(raw: dict) -> Optional[ProviderTransaction]:
    try:
        return ProviderTransaction(
            transaction_id=raw.get("transaction_id"),
            account_id=raw.get("account_id"),
            date=raw.get("date"),
            amount=Decimal(str(raw.get("amount"))),
            pending=bool(raw.get("pending", False)),
            pending_transaction_id=raw.get("pending_transaction_id"),
            iso_currency_code=raw.get("iso_currency_code"),
            merchant_name=raw.get("merchant_name"),
            name=raw.get("name"),
            detailed_category=_detailed_category(raw),
        )
    except (ValidationError, ArithmeticError) as exc:
        logger.warning(
            f"provider_transaction_skipped: id={raw.get('transaction_id')} error={exc}"
        )
        return None


def parse_provider_stream(raw: dict) -> Optional[ProviderStream]:
    average = raw.get("average_amount") or {}
    frequency = raw.get("frequency")
    try:
        return ProviderStream(
            stream_id=raw.get("stream_id"),
            account_id=raw.get("account_id"),
            merchant_name=raw.get("merchant_name"),
            description=raw.get("description"),
            detailed_category=_detailed_category(raw),
            frequency=str(frequency).lower() if frequency else None,
            average_amount=Decimal(str(average.get("amount") or 0)),
            transaction_ids=list(raw.get("transaction_ids") or []),
        )
    except (ValidationError, ArithmeticError) as exc:
        logger.warning(
            f"provider_stream_skipped: id={raw.get('stream_id')} error={exc}"
        )
        return None


class PlaidProvider:
    """Transaction sync and recurring stream lookup backed by the Plaid API."""

    def __init__(self, client: Optional[plaid_api.PlaidApi] = None) -> None:
        self.client = client or self._build_client()

    @staticmethod
    def _build_client() -> plaid_api.PlaidApi:
        settings = get_settings()
        if settings.plaid_env not in PLAID_ENV_HOSTS:
            raise ProviderError(f"Invalid Plaid environment: {settings.plaid_env}")
        configuration = Configuration(
            host=PLAID_ENV_HOSTS[settings.plaid_env],
            api_key={
                "clientId": settings.plaid_client_id,
                "secret": settings.plaid_secret,
            },
        )
        return plaid_api.PlaidApi(ApiClient(configuration))

    def fetch_transactions(
        self, access_token: str, cursor: Optional[str]
    ) -> SyncPage:
        if cursor:
            request = TransactionsSyncRequest(access_token=access_token, cursor=cursor)
        else:
            request = TransactionsSyncRequest(access_token=access_token)
        try:
            response = self.client.transactions_sync(request).to_dict()
        except ApiException as exc:
            raise ProviderError(f"Plaid transactions sync failed: {exc}") from exc
        added = [
            txn
            for txn in (parse_provider_transaction(raw) for raw in response["added"])
            if txn is not None
        ]
        return SyncPage(
            added=added,
            has_more=bool(response.get("has_more")),
            next_cursor=response.get("next_cursor"),
        )

    def fetch_recurring_streams(
        self, access_token: str, account_ids: list[str]
    ) -> RecurringStreams:
        request = TransactionsRecurringGetRequest(
            access_token=access_token, account_ids=account_ids
        )
        try:
            response = self.client.transactions_recurring_get(request).to_dict()
        except ApiException as exc:
            raise ProviderError(f"Plaid recurring lookup failed: {exc}") from exc
        inflow = [
            s
            for s in (parse_provider_stream(raw) for raw in response["inflow_streams"])
            if s is not None
        ]
        outflow = [
            s
            for s in (parse_provider_stream(raw) for raw in response["outflow_streams"])
            if s is not None
        ]
        return RecurringStreams(inflow_streams=inflow, outflow_streams=outflow)
