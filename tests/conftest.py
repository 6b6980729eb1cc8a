import pytest
from decimal import Decimal

from config import TestConfig
from proposals import create_app
from proposals.database import create_all, get_session
from proposals.models import Product


@pytest.fixture(scope='function')
def app(tmp_path):
    """Application on a throwaway SQLite file and local artifact folder."""

    class Config(TestConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'proposals.db'}"
        ARTIFACT_LOCAL_PATH = str(tmp_path / 'artifacts')
        PRICE_IMPORT_FOLDER = str(tmp_path / 'price-import')

    app = create_app(Config)
    with app.app_context():
        create_all()
        yield app
        get_session().remove()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def session(app):
    """Create database session for testing."""
    session = get_session()
    yield session
    session.rollback()


def make_product(session, sku, name, unit_price, currency='EUR', active=True, **kwargs):
    product = Product(
        sku=sku,
        name=name,
        unit_price=Decimal(unit_price),
        currency=currency,
        active=active,
        commitment_term=kwargs.pop('commitment_term', '12 months'),
        billing_frequency=kwargs.pop('billing_frequency', 'Monthly'),
        **kwargs
    )
    session.add(product)
    session.commit()
    return product


@pytest.fixture(scope='function')
def voice_product(session):
    """Enterprise voice seat at 15.00 EUR."""
    return make_product(session, 'VOD-EV-001', 'Enterprise Voice Standard', '15.00', category='Voice')


@pytest.fixture(scope='function')
def wan_product(session):
    return make_product(session, 'VOD-NW-001', 'Managed SD-WAN Basic', '250.00',
                        category='Network', commitment_term='36 months')


@pytest.fixture(scope='function')
def inactive_product(session):
    return make_product(session, 'VOD-OLD-001', 'Legacy PBX', '99.00', active=False, category='Voice')


@pytest.fixture(scope='function')
def quote_payload(voice_product):
    """Acme: 10 voice seats at 10% off."""
    return {
        'customer_name': 'Acme Ltd',
        'customer_email': 'buyer@acme.example',
        'customer_company': 'Acme Holdings',
        'line_items': [
            {'product_id': voice_product.id, 'quantity': 10, 'discount_percent': 10},
        ],
    }


@pytest.fixture(scope='function')
def product_factory(session):
    """Create extra catalog products inside a test."""
    def factory(sku, name, unit_price, **kwargs):
        return make_product(session, sku, name, unit_price, **kwargs)
    return factory
