"""
Таблицы ERP, с которыми работает агент.

Схема принадлежит ERP: агент ее не создает и не мигрирует, только читает
каталог/остатки и пишет заказы. Имена колонок - как в базе ERP.
"""

from sqlalchemy import Column, Integer, String, Numeric, DateTime
from erp_agent.database import Base


class ErpProduct(Base):
    """Справочник товаров (PRODUTOS)"""
    __tablename__ = "PRODUTOS"

    code = Column("CODIGO", Integer, primary_key=True, autoincrement=False)
    barcode = Column("CBARRA", String(60), nullable=True, index=True)  # sku на сайте
    name = Column("NOME", String(120), nullable=True)
    price = Column("PCO_VENDA", Numeric(14, 2), nullable=True)
    changed_at = Column("DATA_ALTERACAO", DateTime, nullable=True)

    def __repr__(self):
        return f"<ErpProduct {self.code} ({self.barcode})>"


class ErpProductStock(Base):
    """Остатки и цены по магазинам (PRODLOJAS)"""
    __tablename__ = "PRODLOJAS"

    product_code = Column("CODIGO", Integer, primary_key=True, autoincrement=False)
    store_code = Column("CODLOJA", Integer, primary_key=True, autoincrement=False)
    current_stock = Column("EST_ATUAL", Integer, nullable=True)
    sale_price = Column("PCO_VENDA", Numeric(14, 2), nullable=True)

    def __repr__(self):
        return f"<ErpProductStock {self.product_code}@{self.store_code}: {self.current_stock}>"


class ErpOrder(Base):
    """Заголовок заказа (ORCPERSON)"""
    __tablename__ = "ORCPERSON"

    id = Column("CODIGO", Integer, primary_key=True, autoincrement=False)
    store_code = Column("CODLOJA", Integer, nullable=False)
    issued_at = Column("EMISSAO", DateTime, nullable=False)
    customer_name = Column("NOME", String(50), nullable=True)
    seller_code = Column("CODVENDEDOR", Integer, nullable=True)
    gross_total = Column("TOTALBRUTO", Numeric(14, 2), nullable=False)
    net_total = Column("TOTALLIQUIDO", Numeric(14, 2), nullable=False)
    note = Column("OBSERVACAO", String(200), nullable=True)
    user_name = Column("NOMEUSUARIO", String(30), nullable=True)
    sequence = Column("SEQUENCIA", Integer, nullable=False)

    def __repr__(self):
        return f"<ErpOrder {self.id} (seq {self.sequence})>"


class ErpOrderLine(Base):
    """Позиция заказа (ORCPERSONI)"""
    __tablename__ = "ORCPERSONI"

    order_id = Column("CODIGOI", Integer, primary_key=True, autoincrement=False)
    line_number = Column("ITEM", Integer, primary_key=True, autoincrement=False)
    product_code = Column("CODPRODUTO", Integer, nullable=False)
    description = Column("DESCRICAO", String(120), nullable=True)
    quantity = Column("QUANTIDADE", Numeric(14, 3), nullable=False)
    unit_price = Column("UNITARIO", Numeric(14, 2), nullable=False)
    line_total = Column("VLTOTAL", Numeric(14, 2), nullable=False)
    created_at = Column("DATA", DateTime, nullable=False)

    def __repr__(self):
        return f"<ErpOrderLine {self.order_id}/{self.line_number}>"
