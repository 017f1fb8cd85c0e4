import asyncio
import httpx
import logging
from typing import Optional, Dict, List
from erp_agent.core.exceptions import PublishError
from erp_agent.services.change_detector import Product

logger = logging.getLogger(__name__)

class SyncPublisher:
    """
    Отправка пакета измененных товаров на сайт.

    Одна попытка на цикл. timeout ограничивает всю доставку целиком
    (соединение, отправка и чтение ответа), а не отдельные операции httpx.
    """

    def __init__(
        self,
        url: str,
        token: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self.url = url
        self.token = token
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json", "User-Agent": "ERP-Site-Agent/1.0"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def connect(self) -> None:
        if self._client is not None:
            return
        self._client = httpx.AsyncClient(
            headers=self.headers,
            timeout=self.timeout,
            limits=httpx.Limits(max_connections=2),
            transport=self._transport
        )
        logger.info(f"Sync publisher ready for {self.url}")

    async def disconnect(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            await client.aclose()

    async def __aenter__(self) -> "SyncPublisher":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.disconnect()

    async def send(self, batch: List[Product]) -> None:
        """Одна отправка пакета, без повторов: повтор - это следующий цикл"""
        await self.connect()
        payload = {"updates": [product.to_dict() for product in batch]}

        try:
            response = await asyncio.wait_for(self._client.post(self.url, json=payload), self.timeout)
        except (asyncio.TimeoutError, httpx.TimeoutException) as e:
            raise PublishError(f"Abandoned after {self.timeout}s: {e!r}") from e
        except httpx.InvalidURL as e:
            raise PublishError(f"Invalid site URL {self.url!r}: {e}") from e
        except httpx.HTTPError as e:
            raise PublishError(f"Connection failed: {e!r}") from e

        if not response.is_success:
            error_msg = f"Site responded {response.status_code} - {response.text[:200]}"
            raise PublishError(error_msg, response_status=response.status_code)

    async def publish(self, batch: List[Product]) -> bool:
        """True - сайт подтвердил прием (2xx), False - любая ошибка"""
        try:
            await self.send(batch)
        except PublishError as e:
            logger.warning(f"Publishing {len(batch)} products failed: {e}")
            return False
        except Exception as e:
            logger.exception(f"Unexpected error publishing {len(batch)} products: {e}")
            return False

        logger.info(f"Published {len(batch)} products to site")
        return True
