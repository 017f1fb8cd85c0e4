from typing import Optional


class AgentError(Exception):
    """Базовое исключение агента"""
    status_code: int = 500
    title: str = "Internal agent error"


class StoreConnectionError(AgentError):
    """База ERP недоступна"""
    status_code = 503
    title = "Store offline"


class DataSourceError(AgentError):
    """Ошибка выполнения запроса к базе ERP"""
    status_code = 500
    title = "Store query failed"


class PublishError(AgentError):
    """Ошибка доставки пакета на сайт"""
    title = "Publish failed"

    def __init__(self, message: str, response_status: Optional[int] = None):
        self.response_status = response_status
        super().__init__(message)


class OrderValidationError(AgentError):
    """Некорректный заказ (нет клиента или позиций)"""
    status_code = 400
    title = "Invalid order"


class ProductNotFoundError(AgentError):
    """Товар из заказа не найден в каталоге ERP"""
    status_code = 422
    title = "Order could not be processed"

    def __init__(self, sku: str):
        self.sku = sku
        super().__init__(f"Product not found or inactive: {sku}")


class PersistenceError(AgentError):
    """Не удалось сохранить курсор синхронизации"""
    title = "Cursor persistence failed"
