import pytest
from decimal import Decimal
import uuid

from estoque_pdv import create_app
from estoque_pdv import database
from estoque_pdv.database import get_session
from estoque_pdv.models import Product, Customer

TENANT_ID = 'loja-centro'
OTHER_TENANT_ID = 'loja-bairro'
USER_ID = 'operador-1'


@pytest.fixture(scope='function')
def app():
    """Create application instance for testing (fresh in-memory database)."""
    app = create_app('config.TestConfig')
    yield app
    database.db_session.remove()
    database.Base.metadata.drop_all(database.engine)
    database.engine.dispose()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture
def headers():
    """Identity headers forwarded by the auth gateway."""
    return {'X-Tenant-Id': TENANT_ID, 'X-User-Id': USER_ID}


@pytest.fixture(scope='function')
def session(app):
    """Create database session for testing."""
    session = get_session()
    yield session
    session.rollback()
    session.close()


@pytest.fixture
def tenant_id():
    return TENANT_ID


@pytest.fixture
def user_id():
    return USER_ID


@pytest.fixture
def make_product(session):
    """Factory inserting a product directly (stock == initial_stock)."""
    counter = {'code': 100}

    def _make(name=None, stock=10, min_stock=2, cost_price='5.00', sale_price='10.00',
              tenant_id=TENANT_ID, **extra):
        counter['code'] += 1
        product = Product(
            tenant_id=tenant_id,
            code=str(counter['code']).zfill(3),
            name=name or f'Produto {uuid.uuid4().hex[:6]}',
            stock=stock,
            initial_stock=stock,
            min_stock=min_stock,
            cost_price=Decimal(cost_price),
            sale_price=Decimal(sale_price),
            active=extra.pop('active', True),
            created_by=USER_ID,
            **extra
        )
        session.add(product)
        session.commit()
        return product

    return _make


@pytest.fixture
def product(make_product):
    """Stock 10, minimum 2, cost 5.00, sale 10.00."""
    return make_product(name='Arroz 5kg')


@pytest.fixture
def product_b(make_product):
    """Stock 5, minimum 1, cost 2.00, sale 4.50."""
    return make_product(name='Feijão 1kg', stock=5, min_stock=1, cost_price='2.00', sale_price='4.50')


@pytest.fixture
def customer(session):
    """Customer with R$ 100,00 of credit."""
    customer = Customer(
        tenant_id=TENANT_ID,
        name='Ana Souza',
        tax_id='123.456.789-00',
        credit_limit=Decimal('100.00'),
        active=True
    )
    session.add(customer)
    session.commit()
    return customer
