"""Customer lookups used by the PDV (customer CRUD lives elsewhere)."""
from typing import List

from sqlalchemy import or_

from estoque_pdv.exceptions import NotFoundError
from estoque_pdv.models import Customer


def get_customer(session, customer_id: int, tenant_id: str) -> Customer:
    """Active customer of the tenant, or NotFoundError."""
    customer = session.query(Customer).filter(
        Customer.id == customer_id,
        Customer.tenant_id == tenant_id,
        Customer.active.is_(True)
    ).first()

    if not customer:
        raise NotFoundError('Cliente não encontrado.', payload={'customer_id': customer_id})
    return customer


def search_customers(session, tenant_id: str, term: str, limit: int = 20) -> List[Customer]:
    """Search active customers by name or CPF/CNPJ."""
    query = session.query(Customer).filter(
        Customer.tenant_id == tenant_id,
        Customer.active.is_(True)
    )
    term = (term or '').strip()
    if term:
        like = f'%{term}%'
        query = query.filter(or_(Customer.name.ilike(like), Customer.tax_id.ilike(like)))
    return query.order_by(Customer.name).limit(limit).all()
