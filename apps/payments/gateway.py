"""
Transfer gateway adapter.

A facilitated transfer moves money in two legs through the platform's
master balance: source -> balance (gross) and balance -> destination
(net). The platform fee stays in the balance. Callers only ever see a
FacilitatedTransfer, whose canonical id is the final leg's id.
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

import requests
from asgiref.sync import sync_to_async

from django.conf import settings

from apps.core.exceptions import TransferInitiationError
from apps.payments.fees import FeeCalculation, calculate_platform_fee

logger = logging.getLogger(__name__)


@dataclass
class TransferRequest:
    source: str
    destination: str
    amount: Decimal
    currency: str = 'USD'
    metadata: dict = field(default_factory=dict)


@dataclass(frozen=True)
class FacilitatedTransfer:
    transfer_id: str
    leg_ids: tuple
    transfer_url: str
    fee: FeeCalculation

    @classmethod
    def from_legs(cls, transfer_url: Optional[str], leg_ids, fee: FeeCalculation):
        """
        Build the canonical result from the gateway's raw legs.

        The last leg id is the transfer the lender sees; the fee hop
        before it stays internal.
        """
        leg_ids = tuple(leg_id for leg_id in leg_ids if leg_id)
        if not transfer_url or not leg_ids:
            raise TransferInitiationError(
                detail='Failed to create transfer: gateway returned no transfer.'
            )
        return cls(
            transfer_id=leg_ids[-1],
            leg_ids=leg_ids,
            transfer_url=transfer_url,
            fee=fee,
        )


class TransferGateway(ABC):

    @abstractmethod
    async def create_facilitated_transfer(self, request: TransferRequest) -> FacilitatedTransfer:
        """Initiate both legs and return the canonical transfer."""


def transfer_id_from_url(url: Optional[str]) -> Optional[str]:
    if not url:
        return None
    return url.rstrip('/').rsplit('/', 1)[-1] or None


class DwollaGateway(TransferGateway):
    """
    Dwolla REST client built on requests.

    The OAuth token and master balance URL are cached per instance and
    shared by the worker threads running concurrent transfers.
    """

    BASE_URLS = {
        'sandbox': 'https://api-sandbox.dwolla.com',
        'production': 'https://api.dwolla.com',
    }
    MEDIA_TYPE = 'application/vnd.dwolla.v1.hal+json'

    def __init__(self, key: str, secret: str, environment: str = 'sandbox',
                 timeout: int = 20, fee_settings: Optional[dict] = None,
                 session: Optional[requests.Session] = None):
        try:
            self.base_url = self.BASE_URLS[environment]
        except KeyError:
            raise ValueError(f"Unknown Dwolla environment '{environment}'.")
        self.key = key
        self.secret = secret
        self.timeout = timeout
        self.fee_settings = fee_settings
        self.session = session or requests.Session()
        self._token = None
        self._token_expires_at = 0.0
        self._balance_url = None
        self._lock = threading.Lock()

    async def create_facilitated_transfer(self, request: TransferRequest) -> FacilitatedTransfer:
        return await sync_to_async(self.facilitated_transfer, thread_sensitive=False)(request)

    def facilitated_transfer(self, request: TransferRequest) -> FacilitatedTransfer:
        fee = calculate_platform_fee(request.amount, self.fee_settings)

        logger.info(
            "Creating facilitated transfer: gross=%s fee=%s net=%s metadata=%s",
            fee.gross_amount,
            fee.platform_fee,
            fee.net_amount,
            request.metadata,
        )

        balance_url = self.master_balance_url()

        leg1_url = self.create_transfer(
            source=request.source,
            destination=balance_url,
            amount=fee.gross_amount,
            currency=request.currency,
            metadata=dict(
                request.metadata,
                step='source_to_balance',
                gross_amount=str(fee.gross_amount),
                platform_fee=str(fee.platform_fee),
            ),
        )
        leg2_url = self.create_transfer(
            source=balance_url,
            destination=request.destination,
            amount=fee.net_amount,
            currency=request.currency,
            metadata=dict(
                request.metadata,
                step='balance_to_destination',
                net_amount=str(fee.net_amount),
                platform_fee_retained=str(fee.platform_fee),
            ),
        )

        return FacilitatedTransfer.from_legs(
            transfer_url=leg2_url,
            leg_ids=[transfer_id_from_url(leg1_url), transfer_id_from_url(leg2_url)],
            fee=fee,
        )

    def create_transfer(self, source, destination, amount, currency, metadata) -> Optional[str]:
        """POST one transfer leg. Returns the new transfer's URL."""
        body = {
            '_links': {
                'source': {'href': source},
                'destination': {'href': destination},
            },
            'amount': {'currency': currency, 'value': str(amount)},
            'metadata': {key: str(value) for key, value in metadata.items()},
        }
        response = self._request('POST', f'{self.base_url}/transfers', json=body)
        url = response.headers.get('Location')
        logger.info("Transfer leg %s created: %s", metadata.get('step'), url)
        return url

    def master_balance_url(self) -> str:
        if self._balance_url:
            return self._balance_url

        root = self._request('GET', f'{self.base_url}/').json()
        account_url = root['_links']['account']['href']
        sources = self._request('GET', f'{account_url}/funding-sources').json()
        for source in sources.get('_embedded', {}).get('funding-sources', []):
            if source.get('type') == 'balance':
                self._balance_url = source['_links']['self']['href']
                return self._balance_url

        raise TransferInitiationError(detail='Could not get Master Account Balance URL.')

    def access_token(self) -> str:
        with self._lock:
            if self._token and time.monotonic() < self._token_expires_at:
                return self._token

            try:
                response = self.session.post(
                    f'{self.base_url}/token',
                    data={'grant_type': 'client_credentials'},
                    auth=(self.key, self.secret),
                    timeout=self.timeout,
                )
            except requests.RequestException as exc:
                raise TransferInitiationError(detail=f'Dwolla authentication failed: {exc}') from exc
            if not response.ok:
                raise TransferInitiationError(
                    detail=f'Dwolla authentication failed ({response.status_code}).'
                )

            token = response.json()
            self._token = token['access_token']
            # Refresh a minute early
            self._token_expires_at = time.monotonic() + int(token.get('expires_in', 3600)) - 60
            return self._token

    def _request(self, method: str, url: str, **kwargs) -> requests.Response:
        headers = {
            'Accept': self.MEDIA_TYPE,
            'Content-Type': self.MEDIA_TYPE,
            'Authorization': f'Bearer {self.access_token()}',
        }
        try:
            response = self.session.request(
                method, url, headers=headers, timeout=self.timeout, **kwargs,
            )
        except requests.RequestException as exc:
            raise TransferInitiationError(detail=f'Dwolla request failed: {exc}') from exc

        if not response.ok:
            try:
                message = response.json().get('message', '')
            except ValueError:
                message = response.text[:200]
            logger.error("Dwolla %s %s returned %d: %s", method, url, response.status_code, message)
            raise TransferInitiationError(
                detail=f'Dwolla {method} returned {response.status_code}: {message}'
            )
        return response


def get_transfer_gateway() -> TransferGateway:
    """Build the configured gateway from settings.DWOLLA."""
    config = settings.DWOLLA
    return DwollaGateway(
        key=config['KEY'],
        secret=config['SECRET'],
        environment=config.get('ENVIRONMENT', 'sandbox'),
        timeout=config.get('TIMEOUT', 20),
    )
